import json
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RefreshRun(Base):
    __tablename__ = "refresh_runs"

    id = Column(Integer, primary_key=True)
    trigger = Column(String, nullable=False)
    fetched_at = Column(DateTime, nullable=False)
    threat_level = Column(String, nullable=False)
    source_errors_json = Column(Text, nullable=False, default="[]")
    record_counts_json = Column(Text, nullable=False, default="{}")
    latitude = Column(Float)
    longitude = Column(Float)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "trigger": self.trigger,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "threat_level": self.threat_level,
            "source_errors": json.loads(self.source_errors_json or "[]"),
            "record_counts": json.loads(self.record_counts_json or "{}"),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
