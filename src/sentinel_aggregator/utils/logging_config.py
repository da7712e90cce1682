import json
import logging
import sys
import uuid
from typing import Any, Dict

from flask import g, request

EXTRA_FIELDS = ("source", "reason", "trigger", "error", "latitude", "longitude")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base: Dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if getattr(record, "request_id", None):
            base["request_id"] = getattr(record, "request_id")
        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                base[name] = getattr(record, name)
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base, default=str)


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            record.request_id = getattr(g, "request_id", None)
        except RuntimeError:
            record.request_id = None
        return True


def configure_logging(log_level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestIdFilter())
    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers = [handler]


def ensure_request_id():
    req_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    g.request_id = req_id
    return req_id
