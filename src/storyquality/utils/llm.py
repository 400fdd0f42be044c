"""
Reasoning-engine client abstraction.

Concrete providers (see ``storyquality.providers``) implement
``BaseLLMClient``; everything else in the package talks to this interface
only. The module also holds the helpers that turn raw engine text into JSON.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Optional, Any

logger = logging.getLogger(__name__)


class BaseLLMClient(ABC):
    """
    Provider-agnostic text generation interface.

    Implementations must raise ``TimeoutError`` (or another exception) when a
    call does not finish within ``timeout`` seconds; callers treat any raised
    exception as a transport failure.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Identifier of the model this client talks to."""

    @abstractmethod
    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_k: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Generate text from a prompt.

        Args:
            prompt: User prompt
            system_prompt: Instruction prompt (optional)
            temperature: Sampling temperature override
            max_tokens: Maximum output tokens
            top_k: Top-k sampling cutoff
            timeout: Per-call timeout in seconds

        Returns:
            Raw response text
        """

    def check_availability(self) -> bool:
        """Check whether the backend is reachable. Providers may override."""
        return True


def strip_code_fences(text: str) -> str:
    """
    Remove a surrounding markdown code fence from engine output.

    Handles both ```json and bare ``` openings.
    """
    cleaned = (text or "").strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json"):]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_json_response(text: str) -> Any:
    """
    Parse engine output as JSON after stripping code fences.

    Raises:
        ValueError: If the response is empty or not valid JSON
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise ValueError("Empty response from engine")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValueError(f"Response is not valid JSON: {e}") from e
