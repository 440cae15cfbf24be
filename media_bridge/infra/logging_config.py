# media_bridge/infra/logging_config.py
import json
import logging
import sys
from datetime import datetime, timezone
from urllib.parse import urlsplit

# Extra attributes copied from LogRecord into structured output, in this order
CONTEXT_FIELDS = (
    "request_id", "url_host", "method", "path", "client_ip",
    "status_code", "duration_ms", "outcome", "code", "error_type",
)

# Shown in console lines as short labels
CONSOLE_LABELS = {"request_id": "req", "url_host": "host", "outcome": "outcome"}


def _context_of(record: logging.LogRecord) -> dict:
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers in prod"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_context_of(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output for local runs"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, self.RESET)
        when = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")

        labels = []
        for name, label in CONSOLE_LABELS.items():
            value = getattr(record, name, None)
            if value is None:
                continue
            if name == "request_id":
                value = str(value)[:8]
            labels.append(f"{label}={value}")
        context = f" [{' '.join(labels)}]" if labels else ""

        line = f"{color}{when} {record.levelname:<8}{self.RESET} {record.name}{context}: {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """
    Configure the root logger with a single stdout handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: JSON lines (prod) instead of colored console output
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    # uvicorn access lines duplicate RequestLoggingMiddleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.client").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={level.upper()}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


class LogContext:
    """Bind request_id / url_host to every record logged through it"""

    def __init__(
            self,
            logger: logging.Logger,
            request_id: str | None = None,
            url_host: str | None = None,
    ):
        self.logger = logger
        self.context = {}
        if request_id is not None:
            self.context["request_id"] = request_id
        if url_host is not None:
            self.context["url_host"] = url_host

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = dict(kwargs.pop("extra", None) or {})
        extra.update(self.context)
        self.logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)


def mask_url(url: str) -> str:
    """Reduce a URL to scheme://host[:port]/path for logging.

    Example: ``mask_url("https://cdn.example.com/a.jpg?token=abc")`` → ``"https://cdn.example.com/a.jpg"``

    Query strings, fragments and userinfo are never written to logs.
    """
    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
        port = parts.port
    except ValueError:
        return "<unparseable>"
    if port:
        host = f"{host}:{port}"
    return f"{parts.scheme}://{host}{parts.path}"
