import json
import logging
import os
import sys
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

# Context var to carry a request id through the request lifecycle
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# structured fields callers attach with logger.info(..., extra={...})
REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "client", "user_agent")
DOMAIN_FIELDS = ("event", "user_id", "game_id", "game_status", "wrong_guesses", "hints_used", "error", "errors", "url")


def _extras(record: logging.LogRecord, keys) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key in keys:
        val = getattr(record, key, None)
        if val is not None:
            out[key] = val
    return out


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        rid = request_id_ctx.get()
        if rid:
            payload["request_id"] = rid
        payload.update(_extras(record, REQUEST_FIELDS + DOMAIN_FIELDS))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class PrettyFormatter(logging.Formatter):
    """Colorized single-line output for terminals."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    GREY = "\033[90m"
    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{self.RESET}" if self.use_color and color else text

    def _status_color(self, status: int) -> str:
        if status < 300:
            return "\033[32m"
        if status < 400:
            return "\033[36m"
        if status < 500:
            return "\033[33m"
        return "\033[31m"

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        parts: List[str] = [
            self._paint(level, self.LEVEL_COLORS.get(level, "")),
            self.formatTime(record, datefmt="%H:%M:%S"),
        ]
        rid = request_id_ctx.get()
        if rid:
            parts.append(self._paint(f"rid={rid}", "\033[35m"))
        parts.append(self._paint(record.name, "\033[34m"))

        req = _extras(record, REQUEST_FIELDS)
        if "method" in req:
            parts.append(self._paint(req["method"], self.BOLD))
        if "path" in req:
            parts.append(self._paint(str(req["path"]), "\033[36m"))
        status = req.get("status")
        if isinstance(status, int):
            parts.append(self._paint(str(status), self._status_color(status)))
        if "duration_ms" in req:
            parts.append(self._paint(f"{req['duration_ms']}ms", self.GREY))

        msg = record.getMessage()
        if msg:
            parts.extend(["-", msg])

        domain = _extras(record, DOMAIN_FIELDS)
        domain.pop("event", None)
        if domain:
            ctx = " ".join(f"{k}={v}" for k, v in domain.items())
            parts.append(self._paint(f"[{ctx}]", self.GREY))

        if record.exc_info:
            parts.append("\n" + self.formatException(record.exc_info))
        return " ".join(parts)


def _isatty(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except Exception:
        return False


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure root and uvicorn loggers.

    LOG_FORMAT=pretty|json picks the formatter; unset means pretty on a TTY,
    JSON otherwise. LOG_COLOR=0 disables ANSI colors in pretty mode.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for h in root.handlers[:]:
        root.removeHandler(h)

    fmt_env = os.getenv("LOG_FORMAT", "").lower()
    use_pretty = fmt_env == "pretty" or (fmt_env == "" and _isatty(sys.stdout))
    use_color = use_pretty and os.getenv("LOG_COLOR", "1").lower() not in ("0", "false", "no")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(PrettyFormatter(use_color=use_color) if use_pretty else JsonFormatter())
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = [handler]
        lg.setLevel(level)
        lg.propagate = False

    return root


def get_logger(name: str = "hangman") -> logging.Logger:
    return logging.getLogger(name)
