from contextlib import contextmanager
from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker

from sentinel_aggregator.config import AppConfig
from sentinel_aggregator.models import Base


def engine_options(database_url: str) -> Dict[str, Any]:
    # Scheduler and request threads share the sqlite file.
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {}


def init_db(config: AppConfig):
    engine = create_engine(config.database_url, future=True, **engine_options(config.database_url))
    Base.metadata.create_all(engine)
    return scoped_session(sessionmaker(bind=engine, autoflush=False))


@contextmanager
def session_scope(Session) -> Iterator:
    session = Session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
