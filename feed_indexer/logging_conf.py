"""Logging for the indexer: structlog events rendered as JSON by stdlib handlers.

Every event carries a ``component`` field derived from its logger name
(``feed_indexer.scroll`` -> ``scroll``), so one ``indexer.log`` can be filtered
per subsystem. Events of ``feed_indexer.source.<handle>`` loggers are also
written to ``logs/sources/<handle>.log``.
"""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Iterable

import structlog
from pythonjsonlogger.jsonlogger import JsonFormatter

ROOT_LOGGER = "feed_indexer"
SOURCE_LOGGER_PREFIX = f"{ROOT_LOGGER}.source."
JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s"

_LOGGING_INITIALISED = False


def _default_log_dir() -> Path:
    env_root = os.environ.get("FEED_INDEXER_HOME")
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def _component_for(logger_name: str) -> str:
    if logger_name.startswith(SOURCE_LOGGER_PREFIX):
        return "source"
    if logger_name.startswith(ROOT_LOGGER + "."):
        return logger_name[len(ROOT_LOGGER) + 1 :].split(".", 1)[0]
    return "app"


def add_component(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor: tag events with the subsystem that emitted them."""

    if "component" not in event_dict:
        name = getattr(logger, "name", "") or ""
        event_dict["component"] = _component_for(name)
    return event_dict


def _logging_config(log_dir: Path, level: str) -> dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JsonFormatter, "fmt": JSON_FIELDS},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "json",
            },
            "indexer_file": {
                "class": "logging.FileHandler",
                "level": "INFO",
                "filename": str(log_dir / "indexer.log"),
                "encoding": "utf-8",
                "formatter": "json",
            },
            "error_file": {
                "class": "logging.FileHandler",
                "level": "ERROR",
                "filename": str(log_dir / "error.log"),
                "encoding": "utf-8",
                "formatter": "json",
            },
        },
        "loggers": {
            ROOT_LOGGER: {
                "handlers": ["console", "indexer_file", "error_file"],
                "level": level,
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Install handlers once; later calls only adjust the level."""

    global _LOGGING_INITIALISED
    level = "DEBUG" if verbose else "INFO"
    log_dir = _default_log_dir()
    (log_dir / "sources").mkdir(parents=True, exist_ok=True)

    if not _LOGGING_INITIALISED:
        logging.config.dictConfig(_logging_config(log_dir, level))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                add_component,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    elif verbose:
        logging.getLogger(ROOT_LOGGER).setLevel(logging.DEBUG)
    return structlog.get_logger(ROOT_LOGGER)


def _attach_source_file(logger_name: str, path: Path) -> None:
    py_logger = logging.getLogger(logger_name)
    target = str(path)
    if any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == target
        for handler in py_logger.handlers
    ):
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(JsonFormatter(JSON_FIELDS))
    handler.setLevel(logging.INFO)
    py_logger.addHandler(handler)


def source_logger(handle: str, verbose: bool = False) -> structlog.BoundLogger:
    """Logger for one feed source; also writes ``logs/sources/<handle>.log``."""

    configure_logging(verbose)
    logger_name = f"{SOURCE_LOGGER_PREFIX}{handle}"
    _attach_source_file(logger_name, source_log_path(handle))
    return structlog.get_logger(logger_name).bind(source=handle)


def source_log_path(handle: str) -> Path:
    return _default_log_dir() / "sources" / f"{handle}.log"


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_source_logs() -> Iterable[Path]:
    sources_dir = _default_log_dir() / "sources"
    if not sources_dir.exists():
        return []
    return sorted(sources_dir.glob("*.log"))


def log_dir() -> Path:
    return _default_log_dir()


__all__ = [
    "add_component",
    "available_source_logs",
    "configure_logging",
    "log_dir",
    "source_log_path",
    "source_logger",
    "tail_log",
]
