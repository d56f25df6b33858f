"""
Workspace Store

Persists research workspaces as JSON documents:

    <root>/workspaces/<workspace_id>.json   authoritative state, one per id
    <root>/index.json                       id -> {topic, phase} side index

Writes are whole-document and atomic (temp file + rename). Writers of one
workspace serialize on the per-id asyncio lock returned by `lock()`.
"""

import asyncio
import json
import logging
import os
import re
import tempfile
import weakref
from pathlib import Path
from typing import Optional

from agent.errors import InvalidTurnError
from agent.state import Workspace, utc_now

logger = logging.getLogger(__name__)

WORKSPACE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def validate_workspace_id(workspace_id: str) -> str:
    """Return the id unchanged, or raise InvalidTurnError."""
    if not isinstance(workspace_id, str) or not WORKSPACE_ID_PATTERN.match(workspace_id):
        raise InvalidTurnError(f"Invalid workspace id: {workspace_id!r}")
    return workspace_id


def _atomic_write(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class WorkspaceStore:
    """
    Read-full-state / write-full-state storage keyed by workspace id.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.workspaces_dir = self.root / "workspaces"
        # A lock lives only while some coroutine holds or awaits it
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _path(self, workspace_id: str) -> Path:
        return self.workspaces_dir / f"{validate_workspace_id(workspace_id)}.json"

    def lock(self, workspace_id: str) -> asyncio.Lock:
        """Get the lock that serializes writers of one workspace."""
        validate_workspace_id(workspace_id)
        lock = self._locks.get(workspace_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[workspace_id] = lock
        return lock

    def exists(self, workspace_id: str) -> bool:
        return self._path(workspace_id).exists()

    def load(self, workspace_id: str) -> Optional[Workspace]:
        """Load a workspace, or None if it has never been saved."""
        path = self._path(workspace_id)
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            corrupt = path.with_suffix(".corrupt")
            logger.error(f"Workspace {workspace_id} is unreadable ({e}); moved to {corrupt.name}")
            os.replace(path, corrupt)
            return None

        workspace = Workspace.from_dict(data)
        if not workspace.workspace_id:
            workspace.workspace_id = workspace_id
        return workspace

    def save(self, workspace: Workspace) -> None:
        """Write the full workspace state."""
        _atomic_write(self._path(workspace.workspace_id), workspace.to_dict())

    def list_ids(self) -> list[str]:
        if not self.workspaces_dir.exists():
            return []
        return sorted(p.stem for p in self.workspaces_dir.glob("*.json"))


class WorkspaceIndex:
    """
    Side-channel index of workspaces for enumeration.

    Not authoritative: the store holds the real state. The index is written
    after every successful turn so the background refresher can find
    workspaces without scanning every document.
    """

    def __init__(self, root: str | Path):
        self.index_file = Path(root) / "index.json"

    def _read(self) -> dict[str, dict]:
        if not self.index_file.exists():
            return {}
        try:
            return json.loads(self.index_file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Workspace index unreadable, starting fresh: {e}")
            return {}

    def record(self, workspace: Workspace) -> None:
        """Upsert the index entry for a workspace."""
        entries = self._read()
        entries[workspace.workspace_id] = {
            "topic": workspace.topic,
            "phase": workspace.phase.value,
            "updated_at": utc_now(),
        }
        _atomic_write(self.index_file, entries)

    def entries(self) -> list[dict]:
        """All entries as [{id, topic, phase, updated_at}], newest first."""
        items = [{"id": wid, **meta} for wid, meta in self._read().items()]
        return sorted(items, key=lambda x: x.get("updated_at", ""), reverse=True)

    def list_ids(self) -> list[str]:
        return list(self._read().keys())
