"""
Engine provider factory.

Selects the provider from environment configuration and keeps one lazily
created default instance.
"""

import os
import logging
from typing import Optional

from .gemini import GeminiProvider, DEFAULT_GEMINI_MODEL
from ..utils.llm import BaseLLMClient
from ..utils.llm_constants import DEFAULT_TEMPERATURE, DEFAULT_TOP_K

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("gemini",)

_default_provider: Optional[BaseLLMClient] = None


def create_provider(provider_name: Optional[str] = None, **kwargs) -> BaseLLMClient:
    """
    Create an engine provider instance.

    Args:
        provider_name: Name of provider to create ('gemini' or None for LLM_PROVIDER)
        **kwargs: Provider-specific configuration (api_key, model_name, temperature, top_k)

    Returns:
        BaseLLMClient instance

    Raises:
        ValueError: If provider_name is invalid or provider cannot be created
    """
    if provider_name is None:
        provider_name = os.getenv("LLM_PROVIDER", "gemini").lower()

    if provider_name == "gemini":
        return GeminiProvider(
            api_key=kwargs.get("api_key"),
            model_name=kwargs.get("model_name", os.getenv("LLM_MODEL", DEFAULT_GEMINI_MODEL)),
            temperature=kwargs.get("temperature", float(os.getenv("LLM_TEMPERATURE", str(DEFAULT_TEMPERATURE)))),
            top_k=kwargs.get("top_k", int(os.getenv("LLM_TOP_K", str(DEFAULT_TOP_K)))),
        )
    raise ValueError(
        f"Unknown LLM provider: {provider_name}. "
        f"Supported providers: {', '.join(SUPPORTED_PROVIDERS)}"
    )


def get_default_provider() -> BaseLLMClient:
    """
    Get or create the default engine provider.

    Uses LLM_PROVIDER, GOOGLE_API_KEY, LLM_MODEL, LLM_TEMPERATURE and LLM_TOP_K.
    """
    global _default_provider

    if _default_provider is None:
        _default_provider = create_provider()
        logger.info(f"Created default LLM provider: {type(_default_provider).__name__}")

    return _default_provider


def reset_default_provider() -> None:
    """Drop the default provider so the next call re-reads configuration."""
    global _default_provider
    _default_provider = None
    logger.info("Reset default LLM provider")
