"""
Research Workspace State

The persisted state of one research session, plus the phase lifecycle:

    clarification -> planning -> gathering -> summarizing -> ongoing

Phases only move forward along the transition table. The single extra edge
(gathering -> ongoing) is the auto-recovery path for a workspace whose
analyses already finished but whose phase was never advanced.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from agent.errors import InvalidTransitionError
from services.arxiv import Paper


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Phase(str, Enum):
    """Phases of the research workflow."""
    CLARIFICATION = "clarification"  # Scope the topic
    PLANNING = "planning"            # Generate the research plan
    GATHERING = "gathering"          # Search for papers
    SUMMARIZING = "summarizing"      # Analyze papers
    ONGOING = "ongoing"              # Commands and free-form Q&A


TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.CLARIFICATION: frozenset({Phase.PLANNING}),
    Phase.PLANNING: frozenset({Phase.GATHERING}),
    Phase.GATHERING: frozenset({Phase.SUMMARIZING, Phase.ONGOING}),
    Phase.SUMMARIZING: frozenset({Phase.ONGOING}),
    Phase.ONGOING: frozenset(),
}


def can_transition(current: Phase, requested: Phase) -> bool:
    """Check whether the transition table allows current -> requested."""
    return requested in TRANSITIONS[current]


# Keys allowed in Workspace.clarifications
CLARIFICATION_KEYS = ("academic_level", "purpose", "focus_area")


@dataclass
class ChatMessage:
    """One conversational turn."""
    role: str  # "system" | "user" | "assistant"
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> "ChatMessage":
        return cls(role=data.get("role", "user"), content=data.get("content", ""))


@dataclass
class ResearchPlan:
    """Structured research plan produced once per workspace."""
    subtopics: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    outline: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "subtopics": self.subtopics,
            "keywords": self.keywords,
            "outline": self.outline,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResearchPlan":
        return cls(
            subtopics=list(data.get("subtopics", [])),
            keywords=list(data.get("keywords", [])),
            outline=list(data.get("outline", [])),
            created_at=data.get("created_at", ""),
        )


@dataclass
class PaperInsight:
    """Per-paper analysis. Empty fields mean the analysis failed."""
    paper_id: str
    relevance_summary: str = ""
    key_findings: str = ""
    research_impact: str = ""

    def to_dict(self) -> dict:
        return {
            "paper_id": self.paper_id,
            "relevance_summary": self.relevance_summary,
            "key_findings": self.key_findings,
            "research_impact": self.research_impact,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PaperInsight":
        return cls(
            paper_id=data.get("paper_id", ""),
            relevance_summary=data.get("relevance_summary", ""),
            key_findings=data.get("key_findings", ""),
            research_impact=data.get("research_impact", ""),
        )


@dataclass
class Workspace:
    """
    Complete state for one research workspace.

    `chat_history` is the committed conversation. The exchange produced by
    the turn in flight is staged in `pending_user_msg` /
    `pending_assistant_msg` and committed at the start of the next turn.
    """

    # === IDENTITY ===
    workspace_id: str = ""
    topic: str = ""
    research_goals: str = ""  # context summary captured at planning time

    # === PROGRESS ===
    phase: Phase = Phase.CLARIFICATION
    clarifications: dict[str, str] = field(default_factory=dict)
    plan: Optional[ResearchPlan] = None

    # === SOURCES ===
    sources: list[Paper] = field(default_factory=list)
    paper_insights: dict[str, PaperInsight] = field(default_factory=dict)

    # === CONVERSATION ===
    chat_history: list[ChatMessage] = field(default_factory=list)
    pending_user_msg: str = ""
    pending_assistant_msg: str = ""

    last_updated: str = field(default_factory=utc_now)

    def advance(self, phase: Phase) -> None:
        """Move to `phase`, enforcing the transition table."""
        if phase == self.phase:
            return
        if not can_transition(self.phase, phase):
            raise InvalidTransitionError(self.phase.value, phase.value)
        self.phase = phase

    def has_pending(self) -> bool:
        return bool(self.pending_user_msg and self.pending_assistant_msg)

    def source_ids(self) -> set[str]:
        return {p.id for p in self.sources}

    def copy(self) -> "Workspace":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "workspace_id": self.workspace_id,
            "topic": self.topic,
            "research_goals": self.research_goals,
            "phase": self.phase.value,
            "clarifications": dict(self.clarifications),
            "plan": self.plan.to_dict() if self.plan else None,
            "sources": [p.to_dict() for p in self.sources],
            "paper_insights": {k: v.to_dict() for k, v in self.paper_insights.items()},
            "chat_history": [m.to_dict() for m in self.chat_history],
            "pending_user_msg": self.pending_user_msg,
            "pending_assistant_msg": self.pending_assistant_msg,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Workspace":
        """Deserialize from dictionary."""
        plan = data.get("plan")
        workspace = cls(
            workspace_id=data.get("workspace_id", ""),
            topic=data.get("topic", ""),
            research_goals=data.get("research_goals", ""),
            clarifications={
                k: v for k, v in (data.get("clarifications") or {}).items()
                if k in CLARIFICATION_KEYS
            },
            plan=ResearchPlan.from_dict(plan) if plan else None,
            sources=[Paper.from_dict(p) for p in data.get("sources", [])],
            paper_insights={
                k: PaperInsight.from_dict(v)
                for k, v in (data.get("paper_insights") or {}).items()
            },
            chat_history=[ChatMessage.from_dict(m) for m in data.get("chat_history", [])],
            pending_user_msg=data.get("pending_user_msg", ""),
            pending_assistant_msg=data.get("pending_assistant_msg", ""),
            last_updated=data.get("last_updated", ""),
        )
        try:
            workspace.phase = Phase(data.get("phase", "clarification"))
        except ValueError:
            workspace.phase = Phase.CLARIFICATION
        return workspace


# =============================================================================
# Helpers
# =============================================================================

def dedupe_papers(papers: list[Paper]) -> list[Paper]:
    """Drop repeated paper ids, keeping first-seen order."""
    seen: set[str] = set()
    unique = []
    for paper in papers:
        if paper.id in seen:
            continue
        seen.add(paper.id)
        unique.append(paper)
    return unique


def merge_sources(existing: list[Paper], incoming: list[Paper]) -> list[Paper]:
    """Append incoming papers whose ids are not already present."""
    return dedupe_papers(list(existing) + list(incoming))


def build_context_summary(workspace: Workspace) -> str:
    """One-line research context: topic plus any captured clarifications."""
    c = workspace.clarifications
    parts = [f"Topic: {workspace.topic}"]
    if c.get("focus_area"):
        parts.append(f"Focus: {c['focus_area']}")
    if c.get("purpose"):
        parts.append(f"Purpose: {c['purpose']}")
    if c.get("academic_level"):
        parts.append(f"Level: {c['academic_level']}")
    return " | ".join(parts)


def analysis_complete(workspace: Workspace, window: int) -> bool:
    """
    Whether a gathering/summarizing workspace may jump straight to ongoing.

    Requires at least one source and an insight (possibly empty) for every
    source in the analysis window, i.e. the first `window` sources.
    """
    if not workspace.sources:
        return False
    return all(p.id in workspace.paper_insights for p in workspace.sources[:window])
