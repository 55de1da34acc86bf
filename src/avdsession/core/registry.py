"""In-memory session registry owned by the session manager."""

from __future__ import annotations

import asyncio
from typing import Any

from avdsession.shared.models import Session


class SessionRegistry:
    """Lock-guarded map of live sessions.

    Entries are frozen models, so readers always get a whole session: writers
    swap the entry for an updated copy instead of mutating it.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def insert(self, session: Session) -> None:
        async with self._lock:
            if session.session_id in self._sessions:
                raise KeyError(f"session {session.session_id} already registered")
            self._sessions[session.session_id] = session

    async def update(self, session_id: str, **changes: Any) -> Session | None:
        """Replace the entry with a copy carrying ``changes``.

        Returns None when the session was removed in the meantime.
        """
        async with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                return None
            updated = current.model_copy(update=changes)
            self._sessions[session_id] = updated
            return updated

    async def remove(self, session_id: str) -> Session | None:
        async with self._lock:
            return self._sessions.pop(session_id, None)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def values(self) -> list[Session]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
