from __future__ import annotations

import json
import logging
import sys
from typing import Any

import structlog

from ..settings import get_settings
from .context import get_audit_fields


def _add_audit_context(_: logging.Logger, __: str, event_dict: dict) -> dict:
    for k, v in get_audit_fields().items():
        event_dict.setdefault(k, v)
    return event_dict


_CONFIGURED = False


def configure_logging(*, level: str | int | None = None) -> None:
    """
    Configure stdlib logging + structlog to output structured JSON to stdout.

    `level` defaults to the LOG_LEVEL setting.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    pre_chain = [
        _add_audit_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=pre_chain,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level if level is not None else str(get_settings().log_level).upper())

    # boto is chatty at INFO; keep it out of audit logs.
    for name in ("boto3", "botocore", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            _add_audit_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: str | None = None):
    return structlog.get_logger(name)


def safe_sample(items: Any, max_items: int = 10) -> Any:
    """
    JSON-safe, bounded view of a collection for log fields.

    Long lists are truncated to `max_items` with the total attached; anything
    that cannot be serialized is replaced by a short marker instead of failing
    the log call.
    """
    try:
        if isinstance(items, (list, tuple)) and len(items) > max_items:
            payload: Any = {
                "truncated": True,
                "totalLength": len(items),
                "items": list(items[:max_items]),
            }
        else:
            payload = list(items) if isinstance(items, tuple) else items
        return json.loads(json.dumps(payload, default=_to_jsonable))
    except (TypeError, ValueError) as e:
        total = len(items) if isinstance(items, (list, tuple)) else None
        return {"unserializable": True, "error": str(e), "totalLength": total}


def _to_jsonable(obj: Any) -> Any:
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
