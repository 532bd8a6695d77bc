"""Structured logging configuration for r2drop."""

import json
import logging
import sys
from datetime import datetime, timezone

# Extra attributes the client attaches to its log records.
_EXTRA_FIELDS = ("operation", "key", "upload_id", "part_number", "attempt", "status")


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Every entry carries timestamp, level, logger and message, plus
    ``exception`` when the record has one. Client log calls attach context
    through ``extra=``; whichever of these are set are copied into the entry:

    - ``operation``: request label, e.g. ``put_object`` or ``upload_part``
    - ``key``: object key the request targets
    - ``upload_id``: multipart upload id
    - ``part_number``: 1-based part number
    - ``attempt``: attempt that just failed, on retry warnings
    - ``status``: HTTP status of the response
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Configure root logging with the specified level and format.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: Format type, 'text' for human-readable or 'json' for structured.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)

    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    root.addHandler(handler)

    # httpx logs every request at INFO, which is noise next to our own logs.
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
