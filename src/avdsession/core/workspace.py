"""Per-session workspace directories and their ``meta.json`` record."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import weakref
from pathlib import Path
from typing import Any

import aiofiles

from avdsession.shared.models import WorkspacePaths, utc_now_iso

logger = logging.getLogger(__name__)

META_FILE = "meta.json"


class WorkspaceManager:
    """Creates, updates and removes ``<root>/<session_id>`` trees."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()
        self._meta_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def paths_for(self, session_id: str) -> WorkspacePaths:
        base = self.root / session_id
        return WorkspacePaths(
            path=str(base),
            logs_dir=str(base / "logs"),
            screenshots_dir=str(base / "screenshots"),
            artifacts_dir=str(base / "artifacts"),
            meta_path=str(base / META_FILE),
        )

    async def create(self, session_id: str) -> WorkspacePaths:
        """Create the directory tree and an initial metadata record."""
        paths = self.paths_for(session_id)
        for directory in (paths.logs_dir, paths.screenshots_dir, paths.artifacts_dir):
            Path(directory).mkdir(parents=True, exist_ok=True)
        await self.update_meta(session_id, {"session_id": session_id, "created_at": utc_now_iso()})
        logger.info("created workspace %s", paths.path, extra={"session_id": session_id})
        return paths

    async def read_meta(self, session_id: str) -> dict[str, Any] | None:
        meta_path = Path(self.paths_for(session_id).meta_path)
        if not meta_path.is_file():
            return None
        async with aiofiles.open(meta_path, "r") as f:
            raw = await f.read()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("corrupt %s, starting fresh", meta_path)
            return None
        return data if isinstance(data, dict) else None

    async def update_meta(self, session_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Merge ``fields`` into the persisted record, creating it if absent."""
        lock = self._meta_locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            meta_path = Path(self.paths_for(session_id).meta_path)
            meta_path.parent.mkdir(parents=True, exist_ok=True)
            current = await self.read_meta(session_id) or {}
            current.update(fields)
            current["updated_at"] = utc_now_iso()
            async with aiofiles.open(meta_path, "w") as f:
                await f.write(json.dumps(current, indent=2, sort_keys=True, default=str))
        return current

    async def cleanup(self, session_id: str) -> None:
        """Recursively delete the workspace; a missing directory is fine."""
        path = Path(self.paths_for(session_id).path)
        self._meta_locks.pop(session_id, None)
        if not path.exists():
            logger.debug("workspace %s already gone", path)
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, shutil.rmtree, path)
        logger.info("removed workspace %s", path)
