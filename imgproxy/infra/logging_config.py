# imgproxy/infra/logging_config.py
"""
Logging setup: JSON lines in production, coloured single lines in dev.

Request context (request id, upstream host, redirect depth, upstream status)
travels as ``extra`` fields on the record; ``LogContext`` attaches them.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from urllib.parse import urlsplit

# Extra record attributes copied into JSON logs
CONTEXT_FIELDS = ("request_id", "target_host", "redirect_depth", "upstream_status")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _now().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update(
            (name, getattr(record, name)) for name in CONTEXT_FIELDS if hasattr(record, name)
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line output for local runs"""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _context(record: logging.LogRecord) -> str:
        parts = []
        if hasattr(record, "request_id"):
            parts.append(f"req={str(record.request_id)[:8]}")
        if hasattr(record, "target_host"):
            parts.append(f"host={record.target_host}")
        if hasattr(record, "redirect_depth"):
            parts.append(f"depth={record.redirect_depth}")
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, self.RESET)
        line = (
            f"{color}[{_now():%Y-%m-%d %H:%M:%S}] {record.levelname:8}{self.RESET} "
            f"{record.name}{self._context(record)} - {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """Replace root handlers with a single stdout handler"""
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())
    root.addHandler(handler)

    # Third-party noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("aiohttp.client").setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """Logger wrapper that stamps every record with request context"""

    def __init__(
            self,
            logger: logging.Logger,
            request_id: str | None = None,
            target_host: str | None = None,
    ):
        self.logger = logger
        self.context: dict = {}
        if request_id is not None:
            self.context["request_id"] = request_id
        if target_host is not None:
            self.context["target_host"] = target_host

    def bind(self, **fields) -> "LogContext":
        """Copy with extra fields; ``None`` values are skipped."""
        bound = LogContext(self.logger)
        bound.context = dict(self.context)
        bound.context.update({k: v for k, v in fields.items() if v is not None})
        return bound

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = {**kwargs.pop("extra", {}), **self.context}
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
    """Reduce a URL to scheme and host for logging.

    ``mask_url("https://images.unsplash.com/photo-1?ixid=abc")``
    gives ``"https://images.unsplash.com/…"``.  Paths and query strings of
    proxied images can carry signed tokens.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<unparsable>"
    if not parts.scheme or not parts.netloc:
        return "<relative>"
    return f"{parts.scheme}://{parts.netloc.rsplit('@', 1)[-1]}/…"
