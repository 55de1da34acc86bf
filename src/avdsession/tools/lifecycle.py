"""Session lifecycle tools: start, stop, get, list."""

from __future__ import annotations

from avdsession.core.session_manager import SessionManager
from avdsession.shared.exceptions import SessionNotFoundError
from avdsession.shared.models import StartOptions
from avdsession.tools.payloads import Payload, ok, tool_handler


class SessionTools:
    """Caller-facing wrappers returning structured payloads, never raising."""

    def __init__(self, manager: SessionManager) -> None:
        self._manager = manager

    @tool_handler()
    async def start(
        self,
        *,
        headless: bool = True,
        emulator_port: int | None = None,
        boot_timeout: float | None = None,
    ) -> Payload:
        options = StartOptions(headless=headless, emulator_port=emulator_port, boot_timeout=boot_timeout)
        result = await self._manager.start_session(options)
        return ok(**result.model_dump(mode="json"))

    @tool_handler()
    async def stop(self, session_id: str) -> Payload:
        await self._manager.stop_session(session_id)
        return ok(session_id=session_id, stopped=True)

    @tool_handler()
    async def get(self, session_id: str) -> Payload:
        session = self._manager.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found", context={"session_id": session_id})
        return ok(session={**session.meta(), "device_id": session.device_id})

    @tool_handler()
    async def list_sessions(self) -> Payload:
        sessions = [{**s.meta(), "device_id": s.device_id} for s in self._manager.list_sessions()]
        return ok(sessions=sessions, count=len(sessions))
