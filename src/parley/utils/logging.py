"""Engine logging for editors that embed Parley.

Handlers are attached to the ``parley`` package logger, never to the root
logger, so the host application keeps its own logging configuration while
engine records still propagate to it.  The level comes from
:class:`~parley.services.settings.EngineSettings`: ``debug_logging`` forces
``DEBUG``, otherwise ``log_level`` (``PARLEY_LOG_LEVEL``) applies.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import EngineSettings

__all__ = ["ENGINE_LOGGER", "get_log_path", "resolve_level", "setup_logging", "shutdown_logging"]

ENGINE_LOGGER = "parley"
LOG_DIR_ENV = "PARLEY_LOG_DIR"
LOG_LEVEL_ENV = "PARLEY_LOG_LEVEL"
_DEFAULT_LOG_DIR = Path.home() / ".parley" / "logs"
_LOG_FILE_NAME = "parley.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
# Transport libraries that log every request and chunk at DEBUG.
_TRANSPORT_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "openai")

_handlers: list[logging.Handler] = []
_log_path: Path | None = None


def resolve_level(settings: EngineSettings | None = None, level: int | str | None = None) -> int:
    """Return the engine log level.

    An explicit ``level`` wins.  With ``settings``, ``debug_logging`` means
    ``DEBUG`` and ``log_level`` is used otherwise; without settings the
    ``PARLEY_LOG_LEVEL`` environment variable is consulted.  Unknown names
    fall back to ``INFO``.
    """

    candidates: list[int | str | None] = [level]
    if settings is not None:
        if settings.debug_logging:
            return logging.DEBUG
        candidates.append(settings.log_level)
    else:
        candidates.append(os.environ.get(LOG_LEVEL_ENV))
    for candidate in candidates:
        parsed = _parse_level(candidate)
        if parsed is not None:
            return parsed
    return logging.INFO


def setup_logging(
    settings: EngineSettings | None = None,
    *,
    level: int | str | None = None,
    log_dir: Path | str | None = None,
    console: bool = False,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Write engine records to a rotating ``parley.log``.

    The directory is ``log_dir``, then ``settings.log_dir``, then
    ``PARLEY_LOG_DIR``, then ``~/.parley/logs``.  A second call returns the
    active path unchanged unless ``force`` is set, in which case the previous
    handlers are replaced.
    """

    global _log_path
    if _handlers and not force and _log_path is not None:
        return _log_path
    shutdown_logging()

    resolved = resolve_level(settings, level)
    target_dir = _resolve_log_dir(log_dir or (settings.log_dir if settings is not None else None))
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILE_NAME

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())

    engine_logger = logging.getLogger(ENGINE_LOGGER)
    for handler in handlers:
        handler.setLevel(resolved)
        handler.setFormatter(formatter)
        engine_logger.addHandler(handler)
    engine_logger.setLevel(resolved)
    _quiet_transport_loggers(resolved)

    _handlers.extend(handlers)
    _log_path = log_path
    engine_logger.debug("Engine logging at %s into %s", logging.getLevelName(resolved), log_path)
    return log_path


def shutdown_logging() -> None:
    """Detach and close the handlers installed by :func:`setup_logging`."""

    global _log_path
    engine_logger = logging.getLogger(ENGINE_LOGGER)
    while _handlers:
        handler = _handlers.pop()
        engine_logger.removeHandler(handler)
        handler.close()
    _log_path = None


def get_log_path() -> Path | None:
    """Return the active log file, if engine logging has been configured."""

    return _log_path


def _parse_level(value: int | str | None) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return int(text)
    named = logging.getLevelName(text.upper())
    return named if isinstance(named, int) else None


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()


def _quiet_transport_loggers(engine_level: int) -> None:
    quiet_level = max(engine_level, logging.WARNING)
    for logger_name in _TRANSPORT_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
