"""Single-shot device commands addressed by session id."""

from __future__ import annotations

import re

from avdsession.adapters.adb import AdbClient
from avdsession.adapters.emulator import EmulatorAdapter
from avdsession.core.session_manager import SessionManager
from avdsession.shared.enums import ErrorKind
from avdsession.shared.exceptions import InvalidArgumentError, SessionNotFoundError
from avdsession.shared.models import Session
from avdsession.tools.payloads import Payload, ok, tool_handler

KEY_CODES: dict[str, int] = {
    # Navigation
    "HOME": 3,
    "BACK": 4,
    "MENU": 82,
    "APP_SWITCH": 187,
    # Media / hardware
    "VOLUME_UP": 24,
    "VOLUME_DOWN": 25,
    "VOLUME_MUTE": 164,
    "POWER": 26,
    "CAMERA": 27,
    # D-pad
    "DPAD_UP": 19,
    "DPAD_DOWN": 20,
    "DPAD_LEFT": 21,
    "DPAD_RIGHT": 22,
    "DPAD_CENTER": 23,
    # Editing
    "ENTER": 66,
    "TAB": 61,
    "SPACE": 62,
    "DEL": 67,
    "FORWARD_DEL": 112,
    "ESCAPE": 111,
    "SEARCH": 84,
    **{f"F{n}": 130 + n for n in range(1, 13)},
}

# Characters the device shell would otherwise interpret.
_SHELL_SPECIAL = re.compile(r"""([\\"'`$&;|<>()])""")

MITM_URL = "http://mitm.it"
MITM_INSTRUCTIONS = [
    '1. Tap on "Android" on the mitm.it page',
    "2. The certificate file will download",
    "3. Open the downloaded file and install the CA certificate",
    '4. If prompted, name it "mitmproxy" and select "VPN and apps" for credential use',
    "5. Confirm to the assistant when installation is complete",
]


def resolve_key_code(key: str) -> int:
    """Map a key name (``BACK``) or numeric string (``66``) to a key code.

    Raises:
        InvalidArgumentError: If the key is neither.
    """
    upper = key.strip().upper()
    if upper in KEY_CODES:
        return KEY_CODES[upper]
    if key.strip().isdigit():
        return int(key.strip())
    raise InvalidArgumentError(
        f'Unknown key: "{key}". Use a key name (BACK, HOME, ENTER, etc.) or numeric key code.',
        context={"key": key, "available_keys": sorted(KEY_CODES)},
    )


def escape_input_text(text: str) -> str:
    """Escape text for ``input text``; spaces become ``%s``."""
    return _SHELL_SPECIAL.sub(r"\\\1", text).replace(" ", "%s")


class DeviceTools:
    """Thin command wrappers consuming a session's device handle."""

    def __init__(self, manager: SessionManager, *, adb: AdbClient, emulator: EmulatorAdapter) -> None:
        self._manager = manager
        self._adb = adb
        self._emulator = emulator

    def _session(self, session_id: str) -> Session:
        session = self._manager.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found", context={"session_id": session_id})
        return session

    @tool_handler(ErrorKind.ADB_COMMAND_FAILED)
    async def key_event(self, session_id: str, key: str, *, long_press: bool = False) -> Payload:
        session = self._session(session_id)
        key_code = resolve_key_code(key)
        flag = " --longpress" if long_press else ""
        await self._adb.shell(session.device_id, f"input keyevent{flag} {key_code}", timeout=10)
        suffix = " [long press]" if long_press else ""
        return ok(
            key=key,
            key_code=key_code,
            long_press=long_press,
            message=f"Key event sent: {key} (code: {key_code}){suffix}",
        )

    @tool_handler(ErrorKind.ADB_COMMAND_FAILED)
    async def input_text(self, session_id: str, text: str) -> Payload:
        if not text:
            raise InvalidArgumentError("text must not be empty")
        session = self._session(session_id)
        await self._adb.shell(session.device_id, f'input text "{escape_input_text(text)}"', timeout=30)
        return ok(text=text, message=f'Text input sent: "{text}"')

    @tool_handler(ErrorKind.PROXY_CONFIG_FAILED)
    async def set_proxy(self, session_id: str, host: str = "10.0.2.2", port: int = 8080) -> Payload:
        session = self._session(session_id)
        await self._emulator.set_proxy(session.adb_port, host, port)
        return ok(device_id=session.device_id, proxy=f"{host}:{port}")

    @tool_handler(ErrorKind.PROXY_CONFIG_FAILED)
    async def clear_proxy(self, session_id: str) -> Payload:
        session = self._session(session_id)
        cleared = await self._emulator.clear_proxy(session.adb_port)
        return ok(device_id=session.device_id, cleared=cleared)

    @tool_handler(ErrorKind.ADB_COMMAND_FAILED)
    async def open_mitm_page(self, session_id: str) -> Payload:
        """Open mitm.it so the user can install the CA by hand."""
        session = self._session(session_id)
        await self._adb.shell(
            session.device_id, f'am start -a android.intent.action.VIEW -d "{MITM_URL}"', timeout=10
        )
        return ok(
            action="REQUIRES_USER_ACTION",
            message="Browser opened to mitm.it. ASK THE USER to install the certificate and confirm when done.",
            instructions=MITM_INSTRUCTIONS,
        )

    @tool_handler()
    async def install_mitm_cert(self, session_id: str, cert_path: str | None = None) -> Payload:
        session = self._session(session_id)
        installed = await self._emulator.install_mitm_certificate(session.adb_port, cert_path)
        return ok(device_id=session.device_id, installed_path=installed)
