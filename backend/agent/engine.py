"""
Workflow Engine

Entry point for one inbound chat turn:

    {workspaceId?, message} -> {message, workspaceId, phase, sourceCount}

Per turn, under the workspace lock:

    1. Load the workspace (or start a new one) into a draft
    2. Commit the previous turn's staged exchange into history
    3. Dispatch to the current phase's handler
    4. Re-read the store if the handler persisted progress directly
    5. Stage this exchange and flush the draft (the turn's one write)
    6. Record the workspace in the index

Background gathering ("find more papers", resuming an interrupted gather)
runs as asyncio tasks owned by the engine and writes through LockedWriter.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from agent.analyzer import PaperAnalyzer
from agent.config import WorkflowConfig
from agent.draft import LockedWriter, WorkspaceDraft
from agent.errors import InvalidTurnError
from agent.gathering import PaperSearch, SourceGatherer
from agent.llm import TextModel
from agent.phases import PLAN_REQUEST_LABEL, PLAN_SENTINEL, PhaseHandlers
from agent.planner import PlanGenerator
from agent.state import Phase, Workspace
from services.workspace_store import WorkspaceIndex, WorkspaceStore, validate_workspace_id

logger = logging.getLogger(__name__)

# Staged in place of a blank reply so the exchange still commits
EMPTY_REPLY = "I couldn't generate a reply. Please try again."


@dataclass
class TurnResult:
    """Reply to one inbound turn."""
    message: str
    workspace_id: str
    phase: Phase
    source_count: int

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "workspaceId": self.workspace_id,
            "phase": self.phase.value,
            "sourceCount": self.source_count,
        }


class WorkflowEngine:
    """Runs chat turns against persisted research workspaces."""

    def __init__(
        self,
        store: WorkspaceStore,
        index: WorkspaceIndex,
        llm: TextModel,
        search: PaperSearch,
        config: Optional[WorkflowConfig] = None,
    ):
        self.store = store
        self.index = index
        self.search = search
        self.config = config or WorkflowConfig()

        analyzer = PaperAnalyzer(
            llm,
            abstract_chars=self.config.abstract_chars,
            max_tokens=self.config.analysis_tokens,
        )
        self.gatherer = SourceGatherer(search, analyzer, self.config)
        self.handlers = PhaseHandlers(
            llm=llm,
            planner=PlanGenerator(llm, max_tokens=self.config.plan_tokens),
            gatherer=self.gatherer,
            store=store,
            schedule_gather=self.schedule_gather,
            config=self.config,
        )

        self._tasks: set[asyncio.Task] = set()
        self._gathering: set[str] = set()

    # =========================================================================
    # Turns
    # =========================================================================

    async def handle_turn(self, workspace_id: Optional[str], message: Optional[str]) -> TurnResult:
        """
        Process one chat turn.

        Args:
            workspace_id: Existing workspace id, or None/empty to start one
            message: The user's message (or the plan sentinel)

        Returns:
            TurnResult with the reply and the workspace's resulting phase

        Raises:
            InvalidTurnError: Missing message or malformed workspace id.
                Raised before any state is read or written.
        """
        if not isinstance(message, str) or not message.strip():
            raise InvalidTurnError("Message is required")
        message = message.strip()

        if workspace_id:
            validate_workspace_id(workspace_id)
        else:
            workspace_id = uuid.uuid4().hex

        async with self.store.lock(workspace_id):
            snapshot = self.store.load(workspace_id)
            if snapshot is None:
                logger.info(f"Creating workspace {workspace_id}")
                snapshot = Workspace(workspace_id=workspace_id)

            draft = WorkspaceDraft(snapshot)
            draft.commit_pending()
            logger.info(f"Turn for {workspace_id} in phase {draft.workspace.phase.value}")

            try:
                reply = await self.handlers.dispatch(draft, message)
            except Exception as e:
                logger.exception(f"Turn failed for workspace {workspace_id}")
                reply = f"Something went wrong: {e}. Please try again."

            if not reply or not reply.strip():
                logger.warning(f"Empty reply for workspace {workspace_id}, using fallback")
                reply = EMPTY_REPLY

            if draft.stale:
                draft.resync(self.store.load(workspace_id))

            label = PLAN_REQUEST_LABEL if message == PLAN_SENTINEL else message
            draft.stage_exchange(label, reply)
            workspace = draft.flush(self.store)

        self.index.record(workspace)

        return TurnResult(
            message=reply,
            workspace_id=workspace_id,
            phase=workspace.phase,
            source_count=len(workspace.sources),
        )

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        """
        Read a workspace for display.

        The staged exchange is shown as committed, matching what the next
        turn will see.
        """
        workspace = self.store.load(workspace_id)
        if workspace is None:
            return None
        draft = WorkspaceDraft(workspace)
        draft.commit_pending()
        return draft.workspace

    # =========================================================================
    # Background gathering
    # =========================================================================

    def schedule_gather(self, workspace_id: str) -> bool:
        """
        Start gathering for a workspace in the background.

        Returns:
            False if a gather is already running for this workspace
        """
        if workspace_id in self._gathering:
            logger.info(f"Gathering already running for {workspace_id}")
            return False

        self._gathering.add(workspace_id)
        task = asyncio.create_task(self._gather(workspace_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _gather(self, workspace_id: str) -> None:
        try:
            workspace = await self.gatherer.run(LockedWriter(self.store, workspace_id))
            if workspace is not None:
                self.index.record(workspace)
        except Exception:
            logger.exception(f"Background gathering failed for {workspace_id}")
        finally:
            self._gathering.discard(workspace_id)

    def is_gathering(self, workspace_id: str) -> bool:
        return workspace_id in self._gathering

    async def wait_for_background(self) -> None:
        """Wait until every background task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def create_engine(config: Optional[WorkflowConfig] = None) -> WorkflowEngine:
    """Build an engine wired to arXiv and the configured language model."""
    from agent.llm import LLMClient
    from agent.providers import get_http_client
    from services.arxiv import ArxivClient

    config = config or WorkflowConfig.from_env()
    logger.info(f"Workspace data directory: {config.data_dir}")

    return WorkflowEngine(
        store=WorkspaceStore(config.data_dir),
        index=WorkspaceIndex(config.data_dir),
        llm=LLMClient(),
        search=ArxivClient(get_http_client(), timeout=config.search_timeout),
        config=config,
    )
