"""Tests for frozen Pydantic domain models and the error hierarchy."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from avdsession.shared.enums import ErrorKind, SessionState
from avdsession.shared.exceptions import (
    AvdSessionError,
    BootTimeoutError,
    PortExhaustedError,
    SessionNotFoundError,
    StartFailedError,
)
from avdsession.shared.models import Session, StartOptions, device_id_for, generate_session_id


class TestSession:
    def test_create_with_defaults(self) -> None:
        session = Session(session_id="sess_1", avd_name="Phone", workspace_path="/tmp/ws/sess_1")
        assert session.state == SessionState.CREATE_WORKSPACE
        assert session.emulator_pid is None
        assert session.created_at

    def test_frozen_raises_on_mutation(self, sample_session: Session) -> None:
        with pytest.raises(ValidationError):
            sample_session.state = SessionState.READY  # type: ignore[misc]

    def test_model_copy_returns_new_instance(self, sample_session: Session) -> None:
        updated = sample_session.model_copy(update={"state": SessionState.READY})
        assert updated.state == SessionState.READY
        assert sample_session.state == SessionState.CREATE_WORKSPACE

    def test_device_id_derived_from_adb_port(self, sample_session: Session) -> None:
        assert sample_session.device_id == "emulator-5554"

    def test_meta_is_json_ready(self, sample_session: Session) -> None:
        meta = sample_session.meta()
        assert meta["state"] == "CREATE_WORKSPACE"
        assert meta["adb_port"] == 5555


class TestStartOptions:
    def test_defaults(self) -> None:
        options = StartOptions()
        assert options.headless is True
        assert options.emulator_port is None
        assert options.boot_timeout is None

    @pytest.mark.parametrize("port", [80, 70000])
    def test_port_out_of_range(self, port: int) -> None:
        with pytest.raises(ValidationError):
            StartOptions(emulator_port=port)

    def test_non_positive_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            StartOptions(boot_timeout=0)


class TestHelpers:
    def test_device_id_for(self) -> None:
        assert device_id_for(5557) == "emulator-5556"

    def test_session_ids_are_unique(self) -> None:
        ids = {generate_session_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(i.startswith("sess_") for i in ids)


class TestExceptions:
    def test_kind_and_payload(self) -> None:
        exc = SessionNotFoundError("gone", context={"session_id": "x"})
        assert exc.to_dict() == {
            "code": ErrorKind.SESSION_NOT_FOUND.value,
            "message": "gone",
            "details": {"session_id": "x"},
        }

    def test_payload_omits_empty_details(self) -> None:
        assert "details" not in BootTimeoutError("slow").to_dict()

    def test_port_exhausted_is_start_failure(self) -> None:
        exc = PortExhaustedError("none left")
        assert isinstance(exc, StartFailedError)
        assert isinstance(exc, AvdSessionError)
        assert exc.kind == ErrorKind.EMULATOR_START_FAILED
