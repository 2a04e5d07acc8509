import json
import logging
from datetime import datetime, timezone

EXTRA_FIELDS = (
    "document_id", "tag_id", "user_id", "tag_name", "event", "error_code", "path", "star_count", "is_public",
)


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False)


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """
    Configure the root logger once at startup.

    Args:
        level: Log level name (DEBUG, INFO, ...)
        fmt: "json" for structured output, anything else for plain text
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_catalog", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._catalog = True
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def log_event(event: str, payload: dict) -> None:
    """
    Default event publisher: writes each catalog event to the log.
    """
    logging.getLogger("catalog.events").info(event, extra={"event": event, **payload})
