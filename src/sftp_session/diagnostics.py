"""
Bridge from asyncssh's internal logging to the host application's logging.

asyncssh logs on the ``asyncssh`` logger. The bridge takes those records
over and re-emits them on ``sftp_session.engine`` with this level map:

    engine CRITICAL (fatal) -> CRITICAL
    engine ERROR            -> ERROR
    engine WARNING          -> DEBUG
    engine INFO             -> INFO
    engine DEBUG            -> DEBUG
    anything else           -> DEBUG

Engine warnings are deliberately demoted to DEBUG: asyncssh warns about
routine events (rejected auth methods, unknown channel requests) that are
noise for file-system users.
"""
from __future__ import annotations

import logging
import threading

ENGINE_LOGGER_NAME = "asyncssh"
HOST_LOGGER_NAME = "sftp_session.engine"

_LEVEL_MAP = {
    logging.CRITICAL: logging.CRITICAL,
    logging.ERROR: logging.ERROR,
    logging.WARNING: logging.DEBUG,
    logging.INFO: logging.INFO,
    logging.DEBUG: logging.DEBUG,
}

_install_lock = threading.Lock()
_installed: "EngineLogBridge | None" = None


def map_engine_level(level: int) -> int:
    """Return the host logging level for an engine record level."""
    return _LEVEL_MAP.get(level, logging.DEBUG)


class EngineLogBridge(logging.Handler):
    """
    Logging handler that forwards engine records to the host logger.

    The handler's filter asks is_enabled() first, so records the host
    logger would discard are dropped before any message formatting.
    """

    def __init__(self, target: logging.Logger | None = None) -> None:
        super().__init__(level=logging.NOTSET)
        self.target = target or logging.getLogger(HOST_LOGGER_NAME)

    def is_enabled(self, level: int) -> bool:
        """Check whether an engine record at ``level`` would be logged."""
        return self.target.isEnabledFor(map_engine_level(level))

    def engine_threshold(self) -> int:
        """
        Lowest engine level whose mapped level the host would log.

        Returns CRITICAL + 1 when nothing would be logged.
        """
        for level in sorted(_LEVEL_MAP):
            if self.is_enabled(level):
                return level
        return logging.CRITICAL + 1

    def sync_level(self, engine_logger: logging.Logger | None = None) -> None:
        """Set the engine logger's level so it skips records the host drops."""
        engine_logger = engine_logger or logging.getLogger(ENGINE_LOGGER_NAME)
        engine_logger.setLevel(self.engine_threshold())

    def filter(self, record: logging.LogRecord) -> bool:
        return self.is_enabled(record.levelno) and super().filter(record)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.target.log(map_engine_level(record.levelno), record.getMessage())
        except Exception:
            self.handleError(record)


def install_engine_log_bridge() -> EngineLogBridge:
    """
    Route asyncssh logging through the bridge. Idempotent.

    The engine logger stops propagating to the root logger so each record
    is reported once, at the mapped level. Every call re-syncs the engine
    logger's level with the host logger's current configuration.
    """
    global _installed
    with _install_lock:
        engine_logger = logging.getLogger(ENGINE_LOGGER_NAME)
        if _installed is None:
            bridge = EngineLogBridge()
            engine_logger.addHandler(bridge)
            engine_logger.propagate = False
            _installed = bridge
        _installed.sync_level(engine_logger)
        return _installed


def uninstall_engine_log_bridge() -> None:
    """Restore asyncssh's default logging."""
    global _installed
    with _install_lock:
        if _installed is not None:
            engine_logger = logging.getLogger(ENGINE_LOGGER_NAME)
            engine_logger.removeHandler(_installed)
            engine_logger.propagate = True
            engine_logger.setLevel(logging.NOTSET)
            _installed = None
