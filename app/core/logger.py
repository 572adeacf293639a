import logging
import sys
import traceback
from typing import Any, Dict, List, Optional

from pythonjsonlogger import jsonlogger

from app.core.config import settings
from app.middleware.logging import get_request_id

LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(message)s %(name)s %(request_id)s "
    "%(pathname)s %(lineno)s %(funcName)s"
)

# Extra fields promoted to Cloud Logging labels (filterable in Logs Explorer)
LABEL_FIELDS = ("request_id", "error_code", "operation", "audit_request_id")

DEFAULT_QUIET_LOGGERS = [
    "uvicorn.access",
    "google.auth",
    "urllib3",
    "sqlalchemy.engine",
]


class RequestIdFilter(logging.Filter):
    """Stamps the active request correlation id on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = get_request_id() or None
        return True


class GoogleCloudFormatter(jsonlogger.JsonFormatter):
    """
    JSON lines in the shape Cloud Run's log agent understands: ``severity``,
    ``message``, ``stack_trace`` for Error Reporting, trace/span correlation
    and source location. Allowlist correlation fields become labels.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.project_id = settings.GOOGLE_CLOUD_PROJECT

    def process_log_record(self, log_record: Dict[str, Any]) -> Dict[str, Any]:
        if "levelname" in log_record:
            log_record["severity"] = log_record.pop("levelname")
        if "msg" in log_record:
            log_record["message"] = log_record.pop("msg")

        exc_info = log_record.pop("exc_info", None)
        if exc_info and exc_info != "None":
            if isinstance(exc_info, tuple):
                log_record["stack_trace"] = "".join(traceback.format_exception(*exc_info))
            else:
                log_record["stack_trace"] = str(exc_info)

        if "request_id" in log_record and not log_record["request_id"]:
            log_record.pop("request_id")

        labels = {
            field: str(log_record[field]) for field in LABEL_FIELDS if log_record.get(field)
        }
        if labels:
            log_record["logging.googleapis.com/labels"] = labels

        self._add_trace(log_record)

        if "pathname" in log_record and "lineno" in log_record:
            log_record["logging.googleapis.com/sourceLocation"] = {
                "file": log_record.pop("pathname"),
                "line": str(log_record.pop("lineno")),
                "function": log_record.pop("funcName", "unknown"),
            }

        return log_record

    def _add_trace(self, log_record: Dict[str, Any]) -> None:
        # Trace ids are only meaningful with a project to resolve them against
        if not self.project_id:
            return
        trace_id = log_record.pop("trace_id", None)
        if trace_id:
            log_record["logging.googleapis.com/trace"] = (
                f"projects/{self.project_id}/traces/{trace_id}"
            )
        if "span_id" in log_record:
            log_record["logging.googleapis.com/spanId"] = log_record.pop("span_id")


def setup_logging(quiet_loggers: Optional[List[str]] = None) -> logging.Logger:
    """
    Routes every logger through one stdout JSON handler.

    Safe to call more than once: existing root handlers are replaced.
    ``quiet_loggers`` are raised to WARNING (defaults to ``DEFAULT_QUIET_LOGGERS``).
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(GoogleCloudFormatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ"))
    root_logger.addHandler(handler)

    try:
        root_logger.setLevel(settings.LOG_LEVEL.upper())
    except (ValueError, TypeError):
        root_logger.setLevel(logging.INFO)

    for name in DEFAULT_QUIET_LOGGERS if quiet_loggers is None else quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("app").info(
        "Logging initialized.",
        extra={"log_level": logging.getLevelName(root_logger.level)},
    )
    return root_logger
