"""
Engine provider implementations.

Currently supports Google Gemini via GeminiProvider.
"""

from .gemini import GeminiProvider
from .factory import create_provider, get_default_provider, reset_default_provider

__all__ = [
    "GeminiProvider",
    "create_provider",
    "get_default_provider",
    "reset_default_provider",
]
