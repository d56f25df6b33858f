"""
Model Gateway for PydanticAI

Builds the PydanticAI model used by the research workflow from environment
configuration:

    SCOUT_LLM_PROVIDER   "anthropic" (default) or "openai" (any
                         OpenAI-compatible endpoint)
    SCOUT_LLM_MODEL      model id (default depends on provider)
    SCOUT_LLM_API_KEY    API key
    SCOUT_LLM_BASE_URL   optional gateway / proxy URL
"""

import os
from functools import cache
from typing import Optional

from dotenv import load_dotenv
load_dotenv()  # Ensure .env is loaded

import httpx
from anthropic import AsyncAnthropic
from pydantic_ai.models import Model
from pydantic_ai.models.anthropic import AnthropicModel
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.anthropic import AnthropicProvider
from pydantic_ai.providers.openai import OpenAIProvider


DEFAULT_PROVIDER = "anthropic"
DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-5",
    "openai": "gpt-4o-mini",
}


@cache
def _cached_http_client(
    timeout: int = 300,
    connect: int = 5,
    read: int = 300,
) -> httpx.AsyncClient:
    """Create a cached HTTP client for connection pooling."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout=timeout, connect=connect, read=read),
    )


def get_http_client() -> httpx.AsyncClient:
    """Get or create the shared HTTP client."""
    client = _cached_http_client()
    if client.is_closed:
        _cached_http_client.cache_clear()
        client = _cached_http_client()
    return client


def get_model(
    provider: Optional[str] = None,
    model_id: Optional[str] = None,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
) -> Model:
    """
    Get a model for the given provider; unset arguments come from the env.

    Raises:
        ValueError: If the provider is unknown
    """
    provider = (provider or os.getenv("SCOUT_LLM_PROVIDER") or DEFAULT_PROVIDER).lower()
    if provider not in DEFAULT_MODELS:
        raise ValueError(
            f"Unknown provider: {provider}. "
            f"Available providers: {', '.join(DEFAULT_MODELS)}"
        )

    model_id = model_id or os.getenv("SCOUT_LLM_MODEL") or DEFAULT_MODELS[provider]
    api_key = api_key or os.getenv("SCOUT_LLM_API_KEY")
    base_url = base_url or os.getenv("SCOUT_LLM_BASE_URL") or None
    http_client = get_http_client()

    if provider == "anthropic":
        client = AsyncAnthropic(api_key=api_key, base_url=base_url, http_client=http_client)
        return AnthropicModel(model_id, provider=AnthropicProvider(anthropic_client=client))

    return OpenAIChatModel(
        model_id,
        provider=OpenAIProvider(api_key=api_key, base_url=base_url, http_client=http_client),
    )


@cache
def get_default_model() -> Model:
    """Get the env-configured model (built once per process)."""
    return get_model()
