"""
Structured Logging

JSON lines in production, one readable line per record in DEBUG.
Every logger accepts `extra_data={...}`; the entity ids in it (delivery,
driver, seller, wallet owner) are also lifted to top-level keys so a
single delivery can be followed across services, and phone numbers are
masked before anything is written.
"""
import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

TRACE_KEYS = ("delivery_id", "driver_id", "seller_id", "user_id")

# ספריות רועשות - רק אזהרות ומעלה
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio")


def mask_phone(phone: str | None) -> str | None:
    """הסתרת 4 ספרות אחרונות של טלפון ללוגים"""
    if phone is None:
        return None
    if len(phone) < 4:
        return "****"
    return phone[:-4] + "****"


def _scrub(extra_data: dict[str, Any]) -> dict[str, Any]:
    return {
        key: mask_phone(str(value)) if "phone" in key and value is not None else value
        for key, value in extra_data.items()
    }


class JSONFormatter(logging.Formatter):

    def __init__(self, app_name: str = "delivery-market") -> None:
        super().__init__()
        self.app_name = app_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "app": self.app_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            extra = _scrub(extra_data)
            entry.update({key: extra[key] for key in TRACE_KEYS if extra.get(key) is not None})
            entry["extra"] = extra

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """DEBUG: correlation id and extra_data on the same line"""

    def __init__(self) -> None:
        super().__init__("%(asctime)s | %(levelname)-8s | %(name)s | [%(cid)s] | %(message)s%(kv)s", "%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        record.cid = correlation_id_var.get() or "-"
        extra_data = getattr(record, "extra_data", None)
        record.kv = ""
        if extra_data:
            record.kv = " | " + " ".join(f"{k}={v}" for k, v in _scrub(extra_data).items())
        return super().format(record)


class StructuredLogger(logging.Logger):
    """Logger whose level methods take `extra_data=`"""

    def _log(self, level, msg, args, exc_info=None, extra=None, stack_info=False, stacklevel=1, extra_data=None):
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        # +1: the caller of info()/warning(), not this frame
        super()._log(level, msg, args, exc_info, extra, stack_info, stacklevel + 1)


logging.setLoggerClass(StructuredLogger)


def setup_logging(level: str = "INFO", json_format: bool = True, app_name: str = "delivery-market") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(app_name) if json_format else ReadableFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Current correlation id; one is created for work outside a request"""
    return correlation_id_var.get() or set_correlation_id()


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore


def log_async_operation(operation_name: str):
    """
    Time a service operation.

    Completion is logged at INFO. Failures are logged at WARNING with the
    error code of domain exceptions (conflicts, invalid transitions) and
    re-raised untouched.
    """
    def decorator(func):
        op_logger = get_logger(func.__module__)

        @wraps(func)
        async def wrapper(*args, **kwargs):
            started = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                error_code = getattr(e, "error_code", None)
                op_logger.warning(
                    f"Failed {operation_name}: {e}",
                    extra_data={
                        "operation": operation_name,
                        "duration_ms": round((time.monotonic() - started) * 1000, 1),
                        "error_type": type(e).__name__,
                        "error_code": getattr(error_code, "value", error_code),
                    },
                )
                raise

            op_logger.info(
                f"Completed {operation_name}",
                extra_data={
                    "operation": operation_name,
                    "duration_ms": round((time.monotonic() - started) * 1000, 1),
                },
            )
            return result

        return wrapper
    return decorator
