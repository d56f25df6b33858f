"""
Language Model Adapter

Narrow text-in/text-out contract used by the workflow:

    reply = await llm.complete([ChatMessage("system", ...), ChatMessage("user", ...)], max_tokens=512)

Backed by a PydanticAI Agent. System messages become the agent's
instructions, earlier user/assistant turns become message history, and the
final user message is the prompt.
"""

import json
import logging
from typing import Optional, Protocol

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from agent.state import ChatMessage

logger = logging.getLogger(__name__)


class TextModel(Protocol):
    """Anything the workflow can ask for a completion."""

    async def complete(self, messages: list[ChatMessage], max_tokens: int = 1024) -> str:
        ...


def to_model_history(messages: list[ChatMessage]) -> list[ModelMessage]:
    """Convert user/assistant turns to PydanticAI message history."""
    history: list[ModelMessage] = []
    for msg in messages:
        if msg.role == "user":
            history.append(ModelRequest(parts=[UserPromptPart(content=msg.content)]))
        elif msg.role == "assistant":
            history.append(ModelResponse(parts=[TextPart(content=msg.content)]))
    return history


def as_text(output) -> str:
    """Models occasionally hand back structured payloads; always return text."""
    if isinstance(output, str):
        return output
    if output is None:
        return ""
    try:
        return json.dumps(output)
    except (TypeError, ValueError):
        return str(output)


class LLMClient:
    """
    PydanticAI-backed implementation of TextModel.

    The model is resolved lazily so importing the workflow never requires
    credentials.
    """

    def __init__(self, model: Optional[Model] = None):
        self._model = model

    @property
    def model(self) -> Model:
        if self._model is None:
            from agent.providers import get_default_model
            self._model = get_default_model()
        return self._model

    async def complete(self, messages: list[ChatMessage], max_tokens: int = 1024) -> str:
        """
        Run one completion.

        Args:
            messages: Ordered system/user/assistant messages; the last
                      non-system message is the prompt
            max_tokens: Output token limit

        Returns:
            The model's reply as text
        """
        instructions = "\n\n".join(m.content for m in messages if m.role == "system")
        turns = [m for m in messages if m.role != "system"]

        prompt = turns[-1].content if turns else ""
        history = to_model_history(turns[:-1])

        agent = Agent(self.model, instructions=instructions or None)
        result = await agent.run(
            prompt,
            message_history=history or None,
            model_settings={"max_tokens": max_tokens},
        )
        return as_text(result.output)
