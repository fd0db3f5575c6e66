"""Resolution of the chat model connected to a node.

The host connects either an agno chat model or a plain :class:`ModelConfig`
to the node's language-model input. Both are reduced to the
``provider/model`` name and API key the automation library expects.
"""

from __future__ import annotations

import os
from pathlib import Path

from agno.models.base import Model
from pydantic import BaseModel, Field

from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = ["ModelConfig", "ResolvedModel", "normalize_provider", "resolve_model"]

# API key environment variable per automation-library provider
PROVIDER_API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",  # Also used for Gemini
    "deepseek": "DEEPSEEK_API_KEY",
    "groq": "GROQ_API_KEY",
    "cerebras": "CEREBRAS_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

_GOOGLE_PROVIDERS = frozenset({"google", "google_genai", "google_vertexai", "gemini", "vertexai"})


class ModelConfig(BaseModel):
    """Configuration for the model driving the automation library."""

    provider: str = Field(description="Model provider (openai, anthropic, google, deepseek, etc)")
    id: str = Field(description="Model ID specific to the provider")
    api_key: str | None = Field(default=None, description="Optional API key (usually from env vars)")


class ResolvedModel(BaseModel):
    """A model ready to hand to the automation library."""

    provider: str
    id: str
    api_key: str = Field(repr=False)

    @property
    def model_name(self) -> str:
        return f"{self.provider}/{self.id}"


def _get_secret(name: str) -> str | None:
    """Read a secret from NAME or NAME_FILE."""
    value = os.getenv(name)
    if value:
        return value
    file_path = os.getenv(f"{name}_FILE")
    if file_path and Path(file_path).exists():
        return Path(file_path).read_text(encoding="utf-8").strip() or None
    return None


def normalize_provider(provider: str, model_id: str) -> str:
    """Map a provider name onto the one the automation library uses.

    Args:
        provider: Provider name as reported by the connected model
        model_id: Model ID, consulted for providers that host other vendors' models

    Returns:
        Lowercase provider name

    """
    normalized = provider.strip().lower().replace(" ", "_")
    if normalized in _GOOGLE_PROVIDERS:
        return "google"
    if "deepseek" in model_id.lower():
        return "deepseek"
    return normalized


def resolve_model(connection: object) -> ResolvedModel:
    """Resolve the connected model into provider, model ID and API key.

    Args:
        connection: An agno chat model or a ModelConfig

    Returns:
        The resolved model

    Raises:
        ValueError: If no chat model is connected, or it lacks an ID or API key

    """
    if isinstance(connection, ModelConfig):
        provider, model_id, api_key = connection.provider, connection.id, connection.api_key
    elif isinstance(connection, Model):
        provider = connection.provider or type(connection).__name__
        model_id = connection.id
        api_key = getattr(connection, "api_key", None)
    else:
        msg = "A Chat Model is required"
        raise ValueError(msg)  # noqa: TRY004

    if not isinstance(model_id, str) or not model_id:
        msg = "Model must be a string"
        raise ValueError(msg)  # noqa: TRY004

    normalized = normalize_provider(provider, model_id)
    if api_key is None and normalized in PROVIDER_API_KEY_ENV:
        api_key = _get_secret(PROVIDER_API_KEY_ENV[normalized])
    if not isinstance(api_key, str) or not api_key:
        msg = "API Key is not defined in the input connection data"
        raise ValueError(msg)

    resolved = ResolvedModel(provider=normalized, id=model_id, api_key=api_key)
    logger.info("Using AI model", provider=resolved.provider, id=resolved.id, model_name=resolved.model_name)
    return resolved
