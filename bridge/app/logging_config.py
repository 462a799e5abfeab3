"""Logging bootstrap for the bridge service.

Everything goes to the console and to ``bridge-runtime.log``. Phase
transitions and gateway connection messages are also copied to
``bridge-session.log`` so a linking problem can be read back without the
request noise around it. Both files rotate at midnight UTC.
"""
from __future__ import annotations

from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict

from .config import Settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
RUNTIME_LOG = "bridge-runtime.log"
SESSION_LOG = "bridge-session.log"

SESSION_LOGGERS = (
    "bridge.app.session_store",
    "bridge.app.session_manager",
    "bridge.app.backend.ws_client",
)
QUIET_LOGGERS = ("httpx", "websockets", "uvicorn.access")


def _daily_file(path: Path, level: str, retention_days: int) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "formatter": "default",
        "level": level,
        "filename": str(path),
        "when": "midnight",
        "backupCount": max(int(retention_days), 1),
        "utc": True,
        "delay": True,
        "encoding": "utf-8",
    }


def build_logging_config(settings: Settings) -> Dict[str, Any]:
    level = settings.log_level.upper()
    # the session trail keeps INFO even when the service runs at WARNING
    session_level = "DEBUG" if level == "DEBUG" else "INFO"
    log_dir = Path(settings.log_directory).expanduser()

    loggers: Dict[str, Any] = {name: {"level": "WARNING"} for name in QUIET_LOGGERS}
    for name in SESSION_LOGGERS:
        loggers[name] = {"level": session_level, "handlers": ["session_file"]}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": LOG_FORMAT}},
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "default", "level": level},
            "runtime_file": _daily_file(log_dir / RUNTIME_LOG, level, settings.log_retention_days),
            "session_file": _daily_file(log_dir / SESSION_LOG, session_level, settings.log_retention_days),
        },
        "loggers": loggers,
        "root": {"level": level, "handlers": ["console", "runtime_file"]},
    }


def configure_logging(settings: Settings) -> None:
    Path(settings.log_directory).expanduser().mkdir(parents=True, exist_ok=True)
    dictConfig(build_logging_config(settings))


__all__ = [
    "QUIET_LOGGERS",
    "RUNTIME_LOG",
    "SESSION_LOG",
    "SESSION_LOGGERS",
    "build_logging_config",
    "configure_logging",
]
