"""Protocol interfaces for session manager dependency injection."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from avdsession.shared.enums import SessionState
from avdsession.shared.models import AvdSetupResult, EmulatorStartResult, WorkspacePaths


@runtime_checkable
class AvdProvisioner(Protocol):
    """Protocol for keeping the managed AVD present and rooted."""

    async def ensure_avd(
        self, name: str | None = None, *, live_adb_port: int | None = None, in_use: bool = False
    ) -> AvdSetupResult:
        """Create, root and verify the AVD as needed.

        Raises:
            AvdSetupError: If provisioning fails
            RootVerificationError: If root cannot be established
        """
        ...


@runtime_checkable
class EmulatorController(Protocol):
    """Protocol for emulator process control."""

    async def start(
        self,
        avd_name: str,
        *,
        log_file: str | Path,
        port: int | None = None,
        headless: bool = True,
        read_only: bool = False,
    ) -> EmulatorStartResult:
        """Launch an emulator and return its pid and port pair.

        Raises:
            StartFailedError: If the emulator cannot be started
        """
        ...

    async def wait_for_boot(self, adb_port: int, timeout: float | None = None) -> None:
        """Block until the device reports boot completion.

        Raises:
            BootTimeoutError: If the deadline passes
        """
        ...

    async def stop(self, pid: int) -> None:
        """Stop the emulator; a dead pid is not an error."""
        ...


@runtime_checkable
class Workspaces(Protocol):
    """Protocol for per-session workspace directories."""

    async def create(self, session_id: str) -> WorkspacePaths: ...

    async def update_meta(self, session_id: str, fields: dict[str, object]) -> dict[str, object]: ...

    async def cleanup(self, session_id: str) -> None: ...


@runtime_checkable
class StateObserver(Protocol):
    """Receives one notification per session state transition."""

    def on_state_change(self, session_id: str, state: SessionState) -> None: ...
