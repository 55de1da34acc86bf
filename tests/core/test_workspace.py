"""Tests for WorkspaceManager."""

from __future__ import annotations

import asyncio
import gc
import json
from pathlib import Path

import pytest

from avdsession.core.workspace import WorkspaceManager


@pytest.fixture()
def workspaces(tmp_path: Path) -> WorkspaceManager:
    return WorkspaceManager(tmp_path / "ws")


class TestWorkspaceManager:
    async def test_create_layout(self, workspaces: WorkspaceManager, tmp_path: Path) -> None:
        paths = await workspaces.create("sess_1")

        base = tmp_path / "ws" / "sess_1"
        assert paths.path == str(base)
        for sub in ("logs", "screenshots", "artifacts"):
            assert (base / sub).is_dir()
        meta = json.loads((base / "meta.json").read_text())
        assert meta["session_id"] == "sess_1"
        assert "created_at" in meta

    async def test_update_meta_merges(self, workspaces: WorkspaceManager) -> None:
        await workspaces.create("sess_1")
        await workspaces.update_meta("sess_1", {"state": "READY", "adb_port": 5555})
        meta = await workspaces.update_meta("sess_1", {"state": "ERROR"})

        assert meta["state"] == "ERROR"
        assert meta["adb_port"] == 5555
        assert await workspaces.read_meta("sess_1") == meta

    async def test_concurrent_updates_are_not_lost(self, workspaces: WorkspaceManager) -> None:
        await workspaces.create("sess_1")
        await asyncio.gather(*(workspaces.update_meta("sess_1", {f"k{i}": i}) for i in range(10)))
        meta = await workspaces.read_meta("sess_1")
        assert meta is not None
        assert all(meta[f"k{i}"] == i for i in range(10))

    async def test_meta_locks_released_after_update(self, workspaces: WorkspaceManager) -> None:
        await workspaces.update_meta("sess_rolled_back", {"state": "ERROR"})
        gc.collect()
        assert "sess_rolled_back" not in workspaces._meta_locks

    async def test_read_meta_missing(self, workspaces: WorkspaceManager) -> None:
        assert await workspaces.read_meta("nope") is None

    async def test_read_meta_corrupt(self, workspaces: WorkspaceManager) -> None:
        paths = await workspaces.create("sess_1")
        Path(paths.meta_path).write_text("{not json")
        assert await workspaces.read_meta("sess_1") is None

    async def test_cleanup_removes_tree(self, workspaces: WorkspaceManager) -> None:
        paths = await workspaces.create("sess_1")
        (Path(paths.artifacts_dir) / "capture.pcap").write_bytes(b"\x00")

        await workspaces.cleanup("sess_1")

        assert not Path(paths.path).exists()

    async def test_cleanup_missing_is_noop(self, workspaces: WorkspaceManager) -> None:
        await workspaces.cleanup("never-created")
