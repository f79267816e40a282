# src/licensetag/utils/logging_config.py
"""
File logging for licensetag runs.

Usage:
    from licensetag.utils.logging_config import Logger, LogFiles, set_run_id

    set_run_id()
    Logger.info("tag run finished: 1200 records", file=LogFiles.RUNS)
    Logger.warning("line 17: malformed JSON", file=LogFiles.RECORDS)

Configuration via environment variables:
    LICENSETAG_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
    LICENSETAG_LOG_DIR: Base directory for log files (default: logs/)
    LICENSETAG_LOG_MAX_BYTES: Max size per log file in bytes (default: 10MB)
    LICENSETAG_LOG_BACKUP_COUNT: Number of backup files to keep (default: 5)
"""

from __future__ import annotations

import inspect
import logging
import os
import uuid
from contextvars import ContextVar
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

import yaml

_run_id_var: ContextVar[Optional[str]] = ContextVar("run_id", default=None)

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_FILE = "licensetag.log"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5
DEFAULT_FORMAT = "{timestamp} [{level}] [{run_id}] {filename}:{lineno} - {message}"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_CONFIG_FILE = Path(__file__).parent / "log_config.yaml"

_log = logging.getLogger(__name__)


class _LogFilesMeta(type):
    """Allows attribute access like LogFiles.RECORDS."""

    def __getattr__(cls, name: str) -> str:
        cls._load()
        key = name.lower()
        if key in cls._files:
            return cls._files[key]
        raise AttributeError(f"Log file '{name}' not found in config")


class LogFiles(metaclass=_LogFilesMeta):
    """
    Log file paths, relative to the log directory.

    Defaults can be overridden in the 'files' section of log_config.yaml
    next to this module.
    """

    _loaded = False
    _files: Dict[str, str] = {}

    @classmethod
    def _load(cls) -> None:
        if cls._loaded:
            return

        cls._files = {
            "runs": "runs/runs.log",
            "records": "records/records.log",
            "error": "errors/error.log",
        }
        if LOG_CONFIG_FILE.exists():
            try:
                with open(LOG_CONFIG_FILE, "r", encoding="utf-8") as f:
                    config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                _log.warning(f"Ignoring unreadable {LOG_CONFIG_FILE}: {e}")
            else:
                files = config.get("files") if isinstance(config, dict) else None
                if isinstance(files, dict):
                    cls._files.update({str(k).lower(): str(v) for k, v in files.items()})

        cls._loaded = True

    @classmethod
    def get(cls, name: str) -> str:
        cls._load()
        return cls._files.get(name.lower(), f"{name}/{name}.log")


LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_initialized = False
_config: dict = {}
_file_handlers: Dict[str, RotatingFileHandler] = {}


def _get_config() -> dict:
    return {
        "level": os.environ.get("LICENSETAG_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        "base_dir": os.environ.get("LICENSETAG_LOG_DIR", DEFAULT_LOG_DIR),
        "max_bytes": int(os.environ.get("LICENSETAG_LOG_MAX_BYTES", DEFAULT_MAX_BYTES)),
        "backup_count": int(os.environ.get("LICENSETAG_LOG_BACKUP_COUNT", DEFAULT_BACKUP_COUNT)),
    }


def _get_file_handler(file_path: str) -> RotatingFileHandler:
    if file_path not in _file_handlers:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=str(path),
            maxBytes=_config.get("max_bytes", DEFAULT_MAX_BYTES),
            backupCount=_config.get("backup_count", DEFAULT_BACKUP_COUNT),
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        _file_handlers[file_path] = handler
    return _file_handlers[file_path]


def _format_message(level: str, message: str, filename: str, lineno: int) -> str:
    return DEFAULT_FORMAT.format(
        timestamp=datetime.now().strftime(DEFAULT_DATE_FORMAT),
        level=level,
        run_id=_run_id_var.get() or "-",
        filename=filename,
        lineno=lineno,
        message=message,
    )


def _resolve_file_path(file: Optional[str]) -> str:
    base_dir = _config.get("base_dir", DEFAULT_LOG_DIR)
    return str(Path(base_dir) / (file or DEFAULT_LOG_FILE))


def _should_log(level: str) -> bool:
    current = _config.get("level", DEFAULT_LOG_LEVEL)
    return LOG_LEVELS.get(level, 0) >= LOG_LEVELS.get(current, logging.INFO)


def _write_log(level: str, message: str, file: Optional[str] = None) -> None:
    if not _should_log(level):
        return

    # Skip _write_log and the public Logger method.
    frame = inspect.currentframe()
    caller = frame.f_back.f_back if frame and frame.f_back else None
    filename = os.path.basename(caller.f_code.co_filename) if caller else "unknown"
    lineno = caller.f_lineno if caller else 0

    handler = _get_file_handler(_resolve_file_path(file))
    handler.emit(
        logging.makeLogRecord(
            {
                "msg": _format_message(level, message, filename, lineno),
                "levelname": level,
                "levelno": LOG_LEVELS.get(level, logging.INFO),
            }
        )
    )


class Logger:
    """
    Static logger writing to named, rotating log files.

    Initialization is implicit on first use; call ``Logger.init`` to override
    the environment configuration.
    """

    @staticmethod
    def init(
        level: Optional[str] = None,
        base_dir: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        global _initialized, _config

        if _initialized:
            return

        _config = _get_config()
        if level:
            _config["level"] = level.upper()
        if base_dir:
            _config["base_dir"] = base_dir
        if max_bytes:
            _config["max_bytes"] = max_bytes
        if backup_count:
            _config["backup_count"] = backup_count

        _initialized = True

    @staticmethod
    def _ensure_init() -> None:
        if not _initialized:
            Logger.init()

    @staticmethod
    def debug(message: str, file: Optional[str] = None) -> None:
        Logger._ensure_init()
        _write_log("DEBUG", message, file)

    @staticmethod
    def info(message: str, file: Optional[str] = None) -> None:
        Logger._ensure_init()
        _write_log("INFO", message, file)

    @staticmethod
    def warning(message: str, file: Optional[str] = None) -> None:
        Logger._ensure_init()
        _write_log("WARNING", message, file)

    @staticmethod
    def error(message: str, file: Optional[str] = None) -> None:
        Logger._ensure_init()
        _write_log("ERROR", message, file)

    @staticmethod
    def set_level(level: str) -> None:
        Logger._ensure_init()
        _config["level"] = level.upper()

    @staticmethod
    def close() -> None:
        """Close all file handlers and forget the configuration."""
        global _initialized

        for handler in _file_handlers.values():
            handler.close()
        _file_handlers.clear()
        _initialized = False


def set_run_id(run_id: Optional[str] = None) -> str:
    """Set the run id stamped on every line logged from this context."""
    rid = run_id or f"run-{uuid.uuid4().hex[:12]}"
    _run_id_var.set(rid)
    return rid


def get_run_id() -> Optional[str]:
    return _run_id_var.get()
