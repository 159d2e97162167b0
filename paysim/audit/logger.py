import json
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from loguru import logger

from paysim.security.redaction import redact

DEFAULT_SERVICE = "checkout-simulator"


def format_entry(record) -> str:
    """Loguru formatter: one JSON object per line.

    Records bound with an `entry` dict are emitted as-is; anything else logged
    through loguru directly is wrapped in the same envelope.
    """
    entry = record["extra"].get("entry")
    if entry is None:
        entry = {
            "@timestamp": record["time"].astimezone(timezone.utc).isoformat(),
            "level": record["level"].name.lower(),
            "category": record["extra"].get("category", "system_event"),
            "service": record["extra"].get("service") or DEFAULT_SERVICE,
            "message": redact(record["message"]),
        }
    record["extra"]["_json"] = json.dumps(entry, default=str, ensure_ascii=False)
    return "{extra[_json]}\n"


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None, service: str = DEFAULT_SERVICE):
    logger.remove()
    logger.configure(extra={"service": service, "category": "system_event"})
    logger.add(sys.stderr, level=level, format=format_entry, backtrace=False, diagnose=False)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        logger.add(
            os.path.join(log_dir, "application.log"),
            level=level,
            format=format_entry,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
        logger.add(
            os.path.join(log_dir, "error.log"),
            level="ERROR",
            format=format_entry,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
    return logger


class StructuredLogger:
    """
    Audit/security/system logger. One method per category; every field goes
    through `redact` before it reaches a sink.
    """

    def __init__(self, service: str = DEFAULT_SERVICE, base_logger=None):
        self.service = service
        self._logger = base_logger or logger

    def _emit(self, level: str, category: str, message: str,
              request: Optional[Dict[str, Any]] = None, **fields: Any) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "@timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.lower(),
            "category": category,
            "service": self.service,
            "message": redact(message),
        }
        entry.update(redact(fields))
        if request:
            entry["request"] = redact(request)
        self._logger.bind(category=category, entry=entry).log(level.upper(), message)
        return entry

    def payment_request(self, message: str, request: Optional[Dict[str, Any]] = None, **fields: Any):
        return self._emit("INFO", "payment_request", message, request, **fields)

    def security_event(self, event: str, request: Optional[Dict[str, Any]] = None,
                       severity: str = "medium", **fields: Any):
        level = "WARNING" if severity in ("medium", "high") else "INFO"
        return self._emit(level, "security_event", f"Security event: {event}", request,
                          event=event, severity=severity, **fields)

    def system_event(self, event: str, level: str = "INFO", **fields: Any):
        return self._emit(level, "system_event", f"System event: {event}", None, event=event, **fields)

    def api_access(self, method: str, path: str, status_code: int, duration_ms: float,
                   request: Optional[Dict[str, Any]] = None, **fields: Any):
        level = "WARNING" if status_code >= 400 else "INFO"
        return self._emit(level, "api_access", f"{method} {path} {status_code}", request,
                          method=method, path=path, statusCode=status_code,
                          durationMs=round(duration_ms, 2), **fields)

    def rate_limit(self, key_id: str, count: int, limit: int,
                   request: Optional[Dict[str, Any]] = None, **fields: Any):
        return self._emit("WARNING", "rate_limit", "Rate limit exceeded", request,
                          keyId=key_id, count=count, limit=limit, **fields)

    def application_error(self, error: BaseException, request: Optional[Dict[str, Any]] = None,
                          **fields: Any):
        detail = {
            "name": type(error).__name__,
            "message": str(error),
            "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }
        return self._emit("ERROR", "application_error", f"Application error: {error}", request,
                          error=detail, **fields)

    def performance_metrics(self, operation: str, duration_ms: float,
                            request: Optional[Dict[str, Any]] = None, **fields: Any):
        return self._emit("INFO", "performance_metrics", f"Performance: {operation}", request,
                          operation=operation, durationMs=round(duration_ms, 2), **fields)

    def fatal(self, error: BaseException, **fields: Any):
        detail = {
            "name": type(error).__name__,
            "message": str(error),
            "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }
        return self._emit("CRITICAL", "application_error", f"Fatal error: {error}", None,
                          error=detail, **fields)
