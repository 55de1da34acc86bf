"""Frozen Pydantic domain models shared by all modules."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator

from avdsession.shared.enums import SessionState


def utc_now_iso() -> str:
    """Return a timezone-aware UTC ISO-8601 timestamp."""
    return datetime.now(timezone.utc).isoformat()


def generate_session_id() -> str:
    return f"sess_{uuid.uuid4().hex[:16]}"


def device_id_for(adb_port: int) -> str:
    """Map an emulator's adb (companion) port to its adb serial.

    The emulator registers as ``emulator-<console port>`` and the console
    port is always ``adb_port - 1``.
    """
    return f"emulator-{adb_port - 1}"


class StartOptions(BaseModel):
    """Caller input for one session start."""

    model_config = {"frozen": True}

    emulator_port: int | None = None
    headless: bool = True
    boot_timeout: float | None = Field(default=None, gt=0)

    @field_validator("emulator_port")
    @classmethod
    def _port_in_range(cls, value: int | None) -> int | None:
        if value is not None and not 1024 <= value <= 65534:
            raise ValueError("emulator_port must be between 1024 and 65534")
        return value


class Session(BaseModel):
    """One registry entry. Replaced wholesale on every update."""

    model_config = {"frozen": True}

    session_id: str
    avd_name: str
    emulator_port: int = 0
    adb_port: int = 0
    created_at: str = Field(default_factory=utc_now_iso)
    state: SessionState = SessionState.CREATE_WORKSPACE
    workspace_path: str
    emulator_pid: int | None = None

    @property
    def device_id(self) -> str:
        return device_id_for(self.adb_port)

    def meta(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class WorkspacePaths(BaseModel):
    model_config = {"frozen": True}

    path: str
    logs_dir: str
    screenshots_dir: str
    artifacts_dir: str
    meta_path: str


class AvdSetupResult(BaseModel):
    """What ``ensure_avd`` did on this call. Informational only."""

    model_config = {"frozen": True}

    avd_name: str
    was_created: bool = False
    was_rooted: bool = False
    healed: bool = False
    system_image: str


class EmulatorStartResult(BaseModel):
    model_config = {"frozen": True}

    pid: int
    console_port: int
    adb_port: int


class SessionStartResult(BaseModel):
    """Payload returned to the caller once a session is READY."""

    model_config = {"frozen": True}

    session_id: str
    workspace_path: str
    emulator_port: int
    adb_port: int
    device_id: str
    state: SessionState = SessionState.READY
    avd_setup: AvdSetupResult
