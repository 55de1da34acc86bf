"""Tests for tool payload helpers."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from avdsession.shared.enums import ErrorKind
from avdsession.shared.exceptions import BootTimeoutError
from avdsession.shared.models import StartOptions
from avdsession.tools.payloads import Payload, error_payload, ok, tool_handler


def test_ok_payload() -> None:
    assert ok(session_id="s", stopped=True) == {"ok": True, "session_id": "s", "stopped": True}


def test_typed_error_keeps_kind() -> None:
    payload = error_payload(BootTimeoutError("slow", context={"timeout": 5}))
    assert payload == {
        "ok": False,
        "error": {"code": "EMULATOR_BOOT_TIMEOUT", "message": "slow", "details": {"timeout": 5}},
    }


def test_validation_error_is_invalid_argument() -> None:
    with pytest.raises(ValidationError) as excinfo:
        StartOptions(emulator_port=1)
    payload = error_payload(excinfo.value)
    assert payload["error"]["code"] == ErrorKind.INVALID_ARGUMENT.value
    assert payload["error"]["details"]["errors"]


def test_untyped_error_uses_fallback() -> None:
    payload = error_payload(RuntimeError("boom"), fallback=ErrorKind.ADB_COMMAND_FAILED)
    assert payload["error"] == {
        "code": "ADB_COMMAND_FAILED",
        "message": "boom",
        "details": {"exception": "RuntimeError"},
    }


class TestToolHandler:
    async def test_passes_through_success(self) -> None:
        @tool_handler()
        async def handler(value: int) -> Payload:
            return ok(value=value)

        assert await handler(3) == {"ok": True, "value": 3}

    async def test_converts_exceptions(self) -> None:
        @tool_handler(ErrorKind.PROXY_CONFIG_FAILED)
        async def handler() -> Payload:
            raise ValueError("bad")

        payload = await handler()
        assert payload["ok"] is False
        assert payload["error"]["code"] == "PROXY_CONFIG_FAILED"

    async def test_preserves_name(self) -> None:
        @tool_handler()
        async def start_session() -> Payload:
            return ok()

        assert start_session.__name__ == "start_session"
