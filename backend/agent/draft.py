"""
Request-Scoped State Mutation

Every turn works against one in-memory draft of the workspace and writes it
exactly once, at the end of the turn:

    draft = WorkspaceDraft(store.load(id))   # copy of last durable state
    draft.commit_pending()                   # previous exchange -> history
    draft.patch(phase=..., plan=...)         # any number of merges
    draft.stage_exchange(user, reply)        # this exchange -> pending
    draft.flush(store)                       # the single durable write

Separate durable writes derived from the same stale read would overwrite
each other; patches against one draft compose in any order.

Long-running gathering is the exception: it persists its own progress
through a writer (below) so an interruption keeps what it found. A turn
that ran such an operation re-baselines its draft from the store before
flushing (see `mark_stale` / `resync`).
"""

import logging
from typing import Callable, Optional

from agent.state import ChatMessage, Phase, Workspace, utc_now
from services.workspace_store import WorkspaceStore

logger = logging.getLogger(__name__)


class WorkspaceDraft:
    """Mutable working copy of a workspace for the duration of one turn."""

    def __init__(self, snapshot: Workspace):
        self.workspace = snapshot.copy()
        self.stale = False
        self.flushed = False

    def patch(self, **updates) -> Workspace:
        """Merge field updates into the draft and stamp last_updated."""
        for name, value in updates.items():
            if not hasattr(self.workspace, name):
                raise AttributeError(f"Workspace has no field '{name}'")
            setattr(self.workspace, name, value)
        self.workspace.last_updated = utc_now()
        return self.workspace

    def advance(self, phase: Phase) -> Workspace:
        """Transition the draft's phase (transition table enforced)."""
        self.workspace.advance(phase)
        return self.patch()

    def commit_pending(self) -> bool:
        """
        Move the staged exchange from the previous turn into chat history.

        No-op when nothing is staged (first turn). Returns True if an
        exchange was committed.
        """
        ws = self.workspace
        if not ws.has_pending():
            return False

        self.patch(
            chat_history=ws.chat_history + [
                ChatMessage(role="user", content=ws.pending_user_msg),
                ChatMessage(role="assistant", content=ws.pending_assistant_msg),
            ],
            pending_user_msg="",
            pending_assistant_msg="",
        )
        return True

    def stage_exchange(self, user_message: str, assistant_message: str) -> None:
        """Record this turn's exchange; it is committed next turn."""
        self.patch(pending_user_msg=user_message, pending_assistant_msg=assistant_message)

    def mark_stale(self) -> None:
        """A sub-operation wrote newer state directly to the store."""
        self.stale = True

    def resync(self, persisted: Optional[Workspace]) -> None:
        """Re-baseline on the persisted state after a direct write."""
        if persisted is not None:
            self.workspace = persisted.copy()
        self.stale = False

    def flush(self, store: WorkspaceStore) -> Workspace:
        """Write the draft. Called once per turn."""
        if self.flushed:
            logger.warning(f"Workspace {self.workspace.workspace_id} flushed twice in one turn")
        store.save(self.workspace)
        self.flushed = True
        return self.workspace


Mutation = Callable[[Workspace], None]


class DirectWriter:
    """
    Persists a long operation's progress from its own evolving copy.

    For use inside a turn that already holds the workspace lock. Each
    `apply` mutates the copy and writes it whole; the owning draft is marked
    stale so the turn re-reads the store before its final flush.
    """

    def __init__(self, store: WorkspaceStore, draft: WorkspaceDraft):
        self.store = store
        self.draft = draft
        self.workspace = draft.workspace.copy()

    async def current(self) -> Workspace:
        return self.workspace

    async def apply(self, mutate: Mutation) -> Workspace:
        mutate(self.workspace)
        self.workspace.last_updated = utc_now()
        self.store.save(self.workspace)
        self.draft.mark_stale()
        return self.workspace


class LockedWriter:
    """
    Persists a background operation's progress against the latest state.

    Each `apply` takes the workspace lock, reloads, mutates and saves, so
    turns that committed in between are never overwritten.
    """

    def __init__(self, store: WorkspaceStore, workspace_id: str):
        self.store = store
        self.workspace_id = workspace_id

    async def current(self) -> Optional[Workspace]:
        async with self.store.lock(self.workspace_id):
            return self.store.load(self.workspace_id)

    async def apply(self, mutate: Mutation) -> Optional[Workspace]:
        async with self.store.lock(self.workspace_id):
            workspace = self.store.load(self.workspace_id)
            if workspace is None:
                logger.error(f"Workspace {self.workspace_id} vanished during background write")
                return None
            mutate(workspace)
            workspace.last_updated = utc_now()
            self.store.save(workspace)
            return workspace


StateWriter = DirectWriter | LockedWriter
