from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "motortrack"
LOG_FILE_NAME = "telemetry.log.jsonl"

# Degraded-but-successful outcomes; everything else is routine request traffic.
_WARNING_EVENTS: frozenset[str] = frozenset(
    {
        "road_snap_fallback",
        "directions_fallback",
        "route_candidate_skipped",
        "polyline_decode_failed",
        "location_data_quality",
    }
)

_logger: logging.Logger | None = None


def _log_dir_candidates(out_dir: str) -> Iterator[Path]:
    yield Path(out_dir) / "logs"
    yield Path(gettempdir()) / LOGGER_NAME / "logs"


def _writable_log_dir(out_dir: str) -> Path | None:
    for log_dir in _log_dir_candidates(out_dir):
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            probe = log_dir / ".writetest"
            probe.touch(exist_ok=True)
            probe.unlink(missing_ok=True)
        except OSError:
            continue
        return log_dir
    return None


def _formatter() -> jsonlogger.JsonFormatter:
    return jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(message)s",
        rename_fields={"asctime": "ts", "levelname": "level"},
    )


def get_logger() -> logging.Logger:
    """The package logger, configured once: JSON to stderr and, when possible, to a file."""
    logger = logging.getLogger(LOGGER_NAME)
    if getattr(logger, "_motortrack_handlers", False):
        return logger

    level = logging.getLevelName(settings.log_level.upper())
    logger.setLevel(level if isinstance(level, int) else logging.INFO)
    logger.propagate = False

    formatter = _formatter()
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    log_dir = _writable_log_dir(settings.out_dir) if settings.log_to_file else None
    if log_dir is not None:
        try:
            file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
        except OSError:
            file_handler = None
        if file_handler is not None:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger._motortrack_handlers = True  # type: ignore[attr-defined]
    return logger


def log_event(event: str, **fields: Any) -> None:
    """Emit one structured event; `event` is both the message and a top-level key."""
    global _logger
    if _logger is None:
        _logger = get_logger()
    level = logging.WARNING if event in _WARNING_EVENTS else logging.INFO
    _logger.log(level, event, extra={"event": event, **fields})
