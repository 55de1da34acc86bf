"""Domain enumerations used across all modules."""

from __future__ import annotations

from enum import Enum, unique


@unique
class SessionState(str, Enum):
    """Lifecycle states for one session-start attempt, in protocol order."""

    SETUP_AVD = "SETUP_AVD"
    CREATE_WORKSPACE = "CREATE_WORKSPACE"
    START_EMULATOR = "START_EMULATOR"
    WAIT_BOOT = "WAIT_BOOT"
    READY = "READY"
    ERROR = "ERROR"


@unique
class ErrorKind(str, Enum):
    """Machine-readable failure kinds surfaced to callers."""

    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    AVD_NOT_FOUND = "AVD_NOT_FOUND"
    EMULATOR_BINARY_NOT_FOUND = "EMULATOR_BINARY_NOT_FOUND"
    ADB_NOT_FOUND = "ADB_NOT_FOUND"
    EMULATOR_START_FAILED = "EMULATOR_START_FAILED"
    EMULATOR_BOOT_TIMEOUT = "EMULATOR_BOOT_TIMEOUT"
    PROXY_CONFIG_FAILED = "PROXY_CONFIG_FAILED"
    ADB_COMMAND_FAILED = "ADB_COMMAND_FAILED"
    AVD_SETUP_FAILED = "AVD_SETUP_FAILED"
    ROOT_VERIFICATION_FAILED = "ROOT_VERIFICATION_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
