"""Providers package for PydanticAI integration."""

from agent.providers.gateway import get_default_model, get_http_client, get_model

__all__ = ["get_default_model", "get_http_client", "get_model"]
