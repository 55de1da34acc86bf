"""Tests for the in-memory session registry."""

from __future__ import annotations

import pytest

from avdsession.core.registry import SessionRegistry
from avdsession.shared.enums import SessionState
from avdsession.shared.models import Session


class TestSessionRegistry:
    async def test_insert_and_get(self, sample_session: Session) -> None:
        registry = SessionRegistry()
        await registry.insert(sample_session)

        assert registry.get(sample_session.session_id) == sample_session
        assert sample_session.session_id in registry
        assert len(registry) == 1

    async def test_duplicate_insert_rejected(self, sample_session: Session) -> None:
        registry = SessionRegistry()
        await registry.insert(sample_session)
        with pytest.raises(KeyError):
            await registry.insert(sample_session)

    async def test_update_swaps_entry(self, sample_session: Session) -> None:
        registry = SessionRegistry()
        await registry.insert(sample_session)

        updated = await registry.update(sample_session.session_id, state=SessionState.READY)

        assert updated is not None
        assert updated.state == SessionState.READY
        assert registry.get(sample_session.session_id) is updated
        assert sample_session.state == SessionState.CREATE_WORKSPACE

    async def test_update_after_remove_returns_none(self, sample_session: Session) -> None:
        registry = SessionRegistry()
        await registry.insert(sample_session)
        await registry.remove(sample_session.session_id)

        assert await registry.update(sample_session.session_id, state=SessionState.READY) is None
        assert registry.values() == []

    async def test_remove_unknown(self) -> None:
        assert await SessionRegistry().remove("nope") is None
