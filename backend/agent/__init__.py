# Research workflow agent

from agent.config import WorkflowConfig
from agent.errors import InvalidTransitionError, InvalidTurnError, WorkflowError
from agent.state import (
    ChatMessage,
    PaperInsight,
    Phase,
    ResearchPlan,
    Workspace,
)

__all__ = [
    # Config
    "WorkflowConfig",
    # Errors
    "WorkflowError",
    "InvalidTurnError",
    "InvalidTransitionError",
    # State
    "ChatMessage",
    "PaperInsight",
    "Phase",
    "ResearchPlan",
    "Workspace",
]
