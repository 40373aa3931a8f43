import logging
import threading
from collections import deque
from datetime import datetime
from typing import Any, Callable

LogRecordDict = dict[str, Any]

# Attributes every LogRecord carries; anything else came in through `extra=`
_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class LogFeed(logging.Handler):
    """Logging handler that fans structured records out to subscribers.

    Keeps a bounded buffer of recent records so a debug view can show what
    happened before it subscribed.
    """

    def __init__(self, capacity: int = 200, level: int = logging.NOTSET):
        super().__init__(level)
        self._recent: deque[LogRecordDict] = deque(maxlen=capacity)
        self._subscribers: list[Callable[[LogRecordDict], None]] = []
        self._subscribers_lock = threading.Lock()

    def subscribe(self, callback: Callable[[LogRecordDict], None]) -> Callable[[], None]:
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def recent(self, limit: int | None = None) -> list[LogRecordDict]:
        with self._subscribers_lock:
            records = list(self._recent)
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records

    def clear(self) -> None:
        with self._subscribers_lock:
            self._recent.clear()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = to_dict(record)
        except Exception:
            self.handleError(record)
            return
        with self._subscribers_lock:
            self._recent.append(entry)
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(entry)
            except Exception:
                self.handleError(record)


def to_dict(record: logging.LogRecord) -> LogRecordDict:
    entry: LogRecordDict = {
        "time": datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    extra = {
        k: v if isinstance(v, (str, int, float, bool, type(None))) else repr(v)
        for k, v in vars(record).items()
        if k not in _STANDARD_ATTRS and not k.startswith("_")
    }
    if extra:
        entry["extra"] = extra
    if record.exc_info and record.exc_info[1] is not None:
        entry["error"] = repr(record.exc_info[1])
    return entry


log_feed = LogFeed()


def get_log_feed() -> LogFeed:
    """dictConfig factory so the configured handler is the shared feed."""
    return log_feed


def build_log_config(level_name: str, log_file: str | None = None) -> dict:
    """Return a logging config aligned with Uvicorn that also feeds the in-process log feed."""
    handlers = ["default", "feed"]
    config: dict = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": "%(asctime)s | %(levelname)s | %(client_addr)s - \"%(request_line)s\" %(status_code)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": "ext://sys.stdout",
            },
            "feed": {
                "()": "timetable_import.core.logs.get_log_feed",
            },
        },
        "loggers": {
            "uvicorn": {"level": level_name, "handlers": ["default"], "propagate": False},
            "uvicorn.error": {"level": level_name, "handlers": ["default"], "propagate": False},
            "uvicorn.access": {"level": "INFO", "handlers": ["access"], "propagate": False},
        },
        "root": {"level": level_name, "handlers": handlers},
    }
    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filename": log_file,
            "maxBytes": 5_000_000,
            "backupCount": 5,
            "encoding": "utf-8",
        }
        handlers.append("file")
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            config["loggers"][name]["handlers"].append("file")
    return config
