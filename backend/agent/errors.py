"""
Workflow Errors

Exceptions raised by the research workflow engine.

External-service failures (search, model) never surface here: their
adapters degrade to empty results or fallbacks instead.
"""


class WorkflowError(Exception):
    """Base class for workflow engine errors."""


class InvalidTurnError(WorkflowError, ValueError):
    """Inbound turn is malformed (missing message, bad workspace id)."""


class InvalidTransitionError(WorkflowError):
    """A phase change not allowed by the transition table."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move from phase '{current}' to '{requested}'")
