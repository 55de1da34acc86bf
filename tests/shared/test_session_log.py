"""Tests for the per-session log file handler."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from avdsession.shared.log import SESSION_LOG_NAME, SessionLogHandler


@pytest.fixture()
def test_logger() -> Iterator[tuple[logging.Logger, SessionLogHandler]]:
    handler = SessionLogHandler()
    log = logging.getLogger("avdsession.tests.session_log")
    log.setLevel(logging.INFO)
    log.addHandler(handler)
    yield log, handler
    log.removeHandler(handler)


class TestSessionLogHandler:
    def test_tagged_records_reach_session_file(
        self, tmp_path: Path, test_logger: tuple[logging.Logger, SessionLogHandler]
    ) -> None:
        log, handler = test_logger
        path = handler.register("sess_a", tmp_path / "logs")

        log.info("hello from a", extra={"session_id": "sess_a"})
        log.info("untagged")
        log.info("other session", extra={"session_id": "sess_b"})

        assert path == tmp_path / "logs" / SESSION_LOG_NAME
        content = path.read_text()
        assert "hello from a" in content
        assert "untagged" not in content
        assert "other session" not in content

    def test_unregister_stops_writing(
        self, tmp_path: Path, test_logger: tuple[logging.Logger, SessionLogHandler]
    ) -> None:
        log, handler = test_logger
        path = handler.register("sess_a", tmp_path)
        handler.unregister("sess_a")

        log.info("late", extra={"session_id": "sess_a"})

        assert not handler.is_registered("sess_a")
        assert not path.exists()

    def test_logger_adapter_tags_records(
        self, tmp_path: Path, test_logger: tuple[logging.Logger, SessionLogHandler]
    ) -> None:
        log, handler = test_logger
        path = handler.register("sess_a", tmp_path)

        logging.LoggerAdapter(log, {"session_id": "sess_a"}).info("via adapter")

        assert "via adapter" in path.read_text()
