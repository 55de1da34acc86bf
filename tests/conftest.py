"""Shared pytest fixtures for the avdsession test suite."""

from __future__ import annotations

import stat
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from avdsession.config import Settings
from avdsession.shared.models import AvdSetupResult, EmulatorStartResult, Session


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Return a Settings instance with test defaults."""
    return Settings(
        workspaces_dir=str(tmp_path / "workspaces"),
        logs_dir=str(tmp_path / "logs"),
        android_sdk_root=str(tmp_path / "sdk"),
        emulator_path="emulator",
        adb_path="adb",
        avdmanager_path="avdmanager",
        sdkmanager_path="sdkmanager",
        rootavd_path=str(tmp_path / "rootAVD" / "rootAVD.sh"),
        boot_timeout_seconds=5.0,
        boot_poll_interval_seconds=0.05,
        command_timeout_seconds=5.0,
        max_sessions=4,
        avd_name="TestPhone",
    )


@pytest.fixture()
def avd_setup_result() -> AvdSetupResult:
    return AvdSetupResult(
        avd_name="TestPhone",
        was_created=False,
        was_rooted=False,
        system_image="system-images;android-34;google_apis_playstore;x86_64",
    )


@pytest.fixture()
def sample_session(tmp_path: Path) -> Session:
    return Session(
        session_id="sess_0000000000000001",
        avd_name="TestPhone",
        emulator_port=5554,
        adb_port=5555,
        workspace_path=str(tmp_path / "workspaces" / "sess_0000000000000001"),
        emulator_pid=4242,
    )


@pytest.fixture()
def mock_emulator() -> AsyncMock:
    """Mock emulator controller booting instantly on 5554/5555."""
    mock = AsyncMock()
    mock.start.return_value = EmulatorStartResult(pid=4242, console_port=5554, adb_port=5555)
    mock.wait_for_boot.return_value = None
    mock.stop.return_value = None
    return mock


@pytest.fixture()
def mock_avd_setup(avd_setup_result: AvdSetupResult) -> AsyncMock:
    mock = AsyncMock()
    mock.ensure_avd.return_value = avd_setup_result
    return mock


def mock_process(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> AsyncMock:
    """Mock of ``asyncio.subprocess.Process`` for ``communicate()`` callers."""
    proc = AsyncMock()
    proc.communicate.return_value = (stdout, stderr)
    proc.returncode = returncode
    proc.kill = lambda: None
    return proc


@pytest.fixture()
def make_proc() -> Callable[..., AsyncMock]:
    return mock_process


@pytest.fixture()
def write_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write an executable ``/bin/sh`` script into ``tmp_path/bin``."""

    def _write(name: str, body: str) -> Path:
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + body)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _write
