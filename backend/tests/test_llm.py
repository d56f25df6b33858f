"""
Tests for the language model adapter and provider selection.
"""

import pytest


class TestLLMClient:
    """Test the PydanticAI-backed completion adapter."""

    @pytest.mark.asyncio
    async def test_complete_maps_roles(self):
        from pydantic_ai.messages import ModelMessage, ModelRequest, ModelResponse, TextPart, UserPromptPart
        from pydantic_ai.models.function import AgentInfo, FunctionModel

        from agent.llm import LLMClient
        from agent.state import ChatMessage

        seen = {}

        def respond(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            seen["messages"] = messages
            seen["settings"] = info.model_settings
            return ModelResponse(parts=[TextPart(content="Which city?")])

        reply = await LLMClient(FunctionModel(respond)).complete(
            [
                ChatMessage(role="system", content="Be brief."),
                ChatMessage(role="user", content="hi"),
                ChatMessage(role="assistant", content="hello"),
                ChatMessage(role="user", content="traffic forecasting"),
            ],
            max_tokens=99,
        )

        assert reply == "Which city?"

        messages = seen["messages"]
        assert [type(m) for m in messages] == [ModelRequest, ModelResponse, ModelRequest]
        prompt = messages[-1]
        assert [p.content for p in prompt.parts if isinstance(p, UserPromptPart)] == ["traffic forecasting"]
        assert prompt.instructions == "Be brief."
        assert seen["settings"]["max_tokens"] == 99

    def test_history_conversion_skips_system(self):
        from pydantic_ai.messages import ModelRequest, ModelResponse

        from agent.llm import to_model_history
        from agent.state import ChatMessage

        history = to_model_history([
            ChatMessage(role="system", content="ignored"),
            ChatMessage(role="user", content="q"),
            ChatMessage(role="assistant", content="a"),
        ])
        assert [type(m) for m in history] == [ModelRequest, ModelResponse]

    def test_as_text(self):
        from agent.llm import as_text

        assert as_text("plain") == "plain"
        assert as_text(None) == ""
        assert as_text({"a": 1}) == '{"a": 1}'


class TestProviders:
    """Test environment-driven model selection."""

    def test_unknown_provider(self):
        from agent.providers import get_model

        with pytest.raises(ValueError, match="Unknown provider"):
            get_model(provider="carrier-pigeon")

    def test_openai_compatible(self, monkeypatch):
        from pydantic_ai.models.openai import OpenAIChatModel

        from agent.providers import get_model

        monkeypatch.delenv("SCOUT_LLM_MODEL", raising=False)
        model = get_model(provider="openai", api_key="test-key", base_url="http://localhost:11434/v1")
        assert isinstance(model, OpenAIChatModel)
        assert model.model_name == "gpt-4o-mini"

    def test_model_from_env(self, monkeypatch):
        from agent.providers import get_model

        monkeypatch.setenv("SCOUT_LLM_PROVIDER", "anthropic")
        monkeypatch.setenv("SCOUT_LLM_MODEL", "claude-haiku-4-5")
        monkeypatch.setenv("SCOUT_LLM_API_KEY", "test-key")

        assert get_model().model_name == "claude-haiku-4-5"
