"""
Phase Handlers

One handler per workflow phase, selected by a dispatch table keyed on
`Phase`. Handlers mutate the turn's draft and return the reply text; they
never write to the store themselves, except through the gatherer's writer.

    clarification  one scoping question per turn; only the plan sentinel
                   moves on to planning
    planning       generate the plan, then gather sources synchronously
    gathering /    auto-recover to ongoing once analyses are done,
    summarizing    otherwise report progress and resume gathering
    ongoing        commands (progress, papers, more sources) or Q&A
"""

import logging
import re
from typing import Awaitable, Callable, Optional

from agent.config import WorkflowConfig
from agent.draft import DirectWriter, WorkspaceDraft
from agent.gathering import SourceGatherer
from agent.llm import TextModel, as_text
from agent.planner import PlanGenerator
from agent.processors import clean_question
from agent.prompts import (
    answer_system_prompt,
    clarification_system_prompt,
    render_papers,
    render_plan,
    render_progress,
)
from agent.state import (
    ChatMessage,
    Phase,
    Workspace,
    analysis_complete,
    build_context_summary,
)
from services.workspace_store import WorkspaceStore

logger = logging.getLogger(__name__)


# The frontend's "Generate plan" button sends this exact message. Free text
# mentioning a plan never triggers planning.
PLAN_SENTINEL = "__GENERATE_PLAN__"
PLAN_REQUEST_LABEL = "📋 Generate my research plan"

NO_TOPIC_REPLY = "Please tell me your research topic first before generating a plan."
MORE_SOURCES_REPLY = '🔍 Searching for more papers. Say "show progress" to check.'


# =============================================================================
# Clarification fact extraction
# =============================================================================

_LEVEL_PATTERNS = [
    (re.compile(r"undergrad|undergraduate|bachelor"), "undergraduate"),
    (re.compile(r"phd|doctoral|doctorate"), "PhD student"),
    (re.compile(r"grad student|graduate student|masters student"), "graduate student"),
]

_PURPOSE_PATTERNS = [
    (re.compile(r"thesis|dissertation"), "thesis"),
    (re.compile(r"paper|publication|publish"), "research paper"),
    (re.compile(r"class|course|assignment|homework"), "class assignment"),
    (re.compile(r"curious|curiosity|interest|learning|explore"), "personal curiosity"),
]

FOCUS_MIN_WORDS = 7


def extract_facts(message: str, workspace: Workspace) -> dict[str, str]:
    """
    Pull academic level, purpose and focus area out of a message.

    Only keys not already set on the workspace are returned, so earlier
    answers are never overwritten.
    """
    lower = message.lower()
    known = workspace.clarifications
    facts: dict[str, str] = {}

    if not known.get("academic_level"):
        for pattern, value in _LEVEL_PATTERNS:
            if pattern.search(lower):
                facts["academic_level"] = value
                break

    if not known.get("purpose"):
        for pattern, value in _PURPOSE_PATTERNS:
            if pattern.search(lower):
                facts["purpose"] = value
                break

    text = message.strip()
    if (
        not known.get("focus_area")
        and workspace.topic
        and text != workspace.topic
        and len(text.split()) >= FOCUS_MIN_WORDS
    ):
        facts["focus_area"] = text

    return facts


# =============================================================================
# Ongoing commands
# =============================================================================

# Checked in order; the first match wins
COMMANDS: list[tuple[str, tuple[str, ...]]] = [
    ("progress", ("show progress", "summarize progress")),
    ("papers", ("show papers", "show sources", "list papers")),
    ("more_sources", ("find more", "add more", "more papers")),
]


def match_command(message: str) -> Optional[str]:
    lower = message.lower()
    for name, triggers in COMMANDS:
        if any(trigger in lower for trigger in triggers):
            return name
    return None


# =============================================================================
# Handlers
# =============================================================================

Handler = Callable[[WorkspaceDraft, str], Awaitable[str]]


class PhaseHandlers:
    """
    The phase state machine's per-phase behaviour.

    `schedule_gather(workspace_id)` starts gathering in the background (the
    engine owns background tasks); it returns False if one is already
    running for that workspace.
    """

    def __init__(
        self,
        llm: TextModel,
        planner: PlanGenerator,
        gatherer: SourceGatherer,
        store: WorkspaceStore,
        schedule_gather: Callable[[str], bool],
        config: Optional[WorkflowConfig] = None,
    ):
        self.llm = llm
        self.planner = planner
        self.gatherer = gatherer
        self.store = store
        self.schedule_gather = schedule_gather
        self.config = config or WorkflowConfig()

        self._handlers: dict[Phase, Handler] = {
            Phase.CLARIFICATION: self.handle_clarification,
            Phase.PLANNING: self.handle_planning,
            Phase.GATHERING: self.handle_gathering,
            Phase.SUMMARIZING: self.handle_gathering,
            Phase.ONGOING: self.handle_ongoing,
        }

    async def dispatch(self, draft: WorkspaceDraft, message: str) -> str:
        """Route the turn to the handler for the draft's current phase."""
        handler = self._handlers[draft.workspace.phase]
        return await handler(draft, message)

    # -------------------------------------------------------------------------
    # Phase 1: clarification
    # -------------------------------------------------------------------------

    async def handle_clarification(self, draft: WorkspaceDraft, message: str) -> str:
        if message == PLAN_SENTINEL:
            if not draft.workspace.topic:
                return NO_TOPIC_REPLY
            draft.advance(Phase.PLANNING)
            return await self.handle_planning(draft, message)

        # The first message is the topic; it is never overwritten
        if not draft.workspace.topic:
            draft.patch(topic=message)

        facts = extract_facts(message, draft.workspace)
        if facts:
            draft.patch(clarifications={**draft.workspace.clarifications, **facts})

        ws = draft.workspace
        raw = await self.llm.complete(
            [
                ChatMessage(role="system", content=clarification_system_prompt(ws.topic, ws.chat_history, message)),
                ChatMessage(role="user", content=message),
            ],
            max_tokens=self.config.clarification_tokens,
        )
        return clean_question(as_text(raw))

    # -------------------------------------------------------------------------
    # Phase 2: planning (runs gathering before replying)
    # -------------------------------------------------------------------------

    async def handle_planning(self, draft: WorkspaceDraft, message: str) -> str:
        ws = draft.workspace
        plan = ws.plan
        if plan is None:
            plan = await self.planner.generate(ws.topic, ws.chat_history)

        draft.patch(plan=plan, research_goals=build_context_summary(ws))
        draft.advance(Phase.GATHERING)
        reply = render_plan(ws.topic, plan)

        # Writes its own progress; the engine resyncs the draft afterwards
        await self.gatherer.run(DirectWriter(self.store, draft))
        return reply

    # -------------------------------------------------------------------------
    # Phases 3-4: gathering / summarizing
    # -------------------------------------------------------------------------

    async def handle_gathering(self, draft: WorkspaceDraft, message: str) -> str:
        ws = draft.workspace
        if analysis_complete(ws, self.config.max_analyses):
            logger.info(f"Workspace {ws.workspace_id} analyses complete, recovering to ongoing")
            draft.advance(Phase.ONGOING)
            return await self.handle_ongoing(draft, message)

        if self.schedule_gather(ws.workspace_id):
            logger.info(f"Resuming interrupted gathering for {ws.workspace_id}")

        return (
            f"⏳ Still gathering papers ({len(ws.sources)} found so far). "
            'Try again in a moment, or say "show progress".'
        )

    # -------------------------------------------------------------------------
    # Phase 5: ongoing
    # -------------------------------------------------------------------------

    async def handle_ongoing(self, draft: WorkspaceDraft, message: str) -> str:
        ws = draft.workspace
        command = match_command(message)

        if command == "progress":
            return render_progress(ws)
        if command == "papers":
            return render_papers(ws)
        if command == "more_sources":
            self.schedule_gather(ws.workspace_id)
            return MORE_SOURCES_REPLY

        return await self.answer(ws, message)

    async def answer(self, ws: Workspace, message: str) -> str:
        """Free-form Q&A grounded in the gathered papers."""
        messages = [
            ChatMessage(role="system", content=answer_system_prompt(ws, self.config.context_papers)),
            *ws.chat_history[-self.config.history_window:],
            ChatMessage(role="user", content=message),
        ]
        return as_text(await self.llm.complete(messages, max_tokens=self.config.answer_tokens))
