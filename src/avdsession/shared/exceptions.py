"""Hierarchical exception types for session orchestration.

Every error carries an :class:`ErrorKind`, a human-readable message and an
optional context mapping so tool handlers can turn it into a payload.
"""

from __future__ import annotations

from typing import Any, ClassVar

from avdsession.shared.enums import ErrorKind


class AvdSessionError(Exception):
    """Base exception for all avdsession errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context or {})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.kind.value, "message": self.message}
        if self.context:
            payload["details"] = self.context
        return payload


class InternalError(AvdSessionError):
    """Unexpected failure wrapped into a typed error."""


# ── Sessions ───────────────────────────────────────────────────


class SessionNotFoundError(AvdSessionError):
    """No live session with the given id."""

    kind = ErrorKind.SESSION_NOT_FOUND


class InvalidArgumentError(AvdSessionError):
    """Caller supplied an unusable argument."""

    kind = ErrorKind.INVALID_ARGUMENT


# ── Emulator ───────────────────────────────────────────────────


class ImageNotFoundError(AvdSessionError):
    """Requested AVD is not among the available images."""

    kind = ErrorKind.AVD_NOT_FOUND


class EmulatorBinaryNotFoundError(AvdSessionError):
    """Emulator executable is missing."""

    kind = ErrorKind.EMULATOR_BINARY_NOT_FOUND


class StartFailedError(AvdSessionError):
    """Emulator process could not be launched or died right away."""

    kind = ErrorKind.EMULATOR_START_FAILED


class PortExhaustedError(StartFailedError):
    """No free even console port in the scanned range."""


class BootTimeoutError(AvdSessionError):
    """Device did not finish booting before the deadline."""

    kind = ErrorKind.EMULATOR_BOOT_TIMEOUT


# ── ADB ────────────────────────────────────────────────────────


class AdbNotFoundError(AvdSessionError):
    """adb executable is missing."""

    kind = ErrorKind.ADB_NOT_FOUND


class AdbCommandError(AvdSessionError):
    """adb command failed or timed out."""

    kind = ErrorKind.ADB_COMMAND_FAILED


class ProxyConfigError(AvdSessionError):
    """Global HTTP proxy could not be set."""

    kind = ErrorKind.PROXY_CONFIG_FAILED


# ── AVD setup ──────────────────────────────────────────────────


class AvdSetupError(AvdSessionError):
    """Creating, deleting or rooting the managed AVD failed."""

    kind = ErrorKind.AVD_SETUP_FAILED


class RootVerificationError(AvdSessionError):
    """Managed AVD still lacks root after setup or self-heal."""

    kind = ErrorKind.ROOT_VERIFICATION_FAILED
