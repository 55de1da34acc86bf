"""Logging setup and per-session log files.

Everything goes to stderr; stdout stays free for whatever transport a calling
agent speaks. Records logged with ``extra={"session_id": ...}`` are also
copied to ``<workspace>/logs/session.log`` while that session is registered.
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
SESSION_LOG_NAME = "session.log"


class SessionLogHandler(logging.Handler):
    """Route records tagged with a ``session_id`` into that session's log."""

    def __init__(self, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._files: dict[str, Path] = {}
        self._files_lock = threading.Lock()
        self.setFormatter(logging.Formatter(LOG_FORMAT))

    def register(self, session_id: str, logs_dir: str | Path) -> Path:
        path = Path(logs_dir) / SESSION_LOG_NAME
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._files_lock:
            self._files[session_id] = path
        return path

    def unregister(self, session_id: str) -> None:
        with self._files_lock:
            self._files.pop(session_id, None)

    def is_registered(self, session_id: str) -> bool:
        return session_id in self._files

    def emit(self, record: logging.LogRecord) -> None:
        session_id = getattr(record, "session_id", None)
        if session_id is None:
            return
        with self._files_lock:
            path = self._files.get(session_id)
        if path is None:
            return
        try:
            with path.open("a", encoding="utf-8") as fh:
                fh.write(self.format(record) + "\n")
        except Exception:
            self.handleError(record)


_session_handler = SessionLogHandler()


def session_log_handler() -> SessionLogHandler:
    """Return the process-wide handler, attaching it to the package logger once."""
    pkg_logger = logging.getLogger("avdsession")
    if _session_handler not in pkg_logger.handlers:
        pkg_logger.addHandler(_session_handler)
    return _session_handler


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    session_log_handler()
