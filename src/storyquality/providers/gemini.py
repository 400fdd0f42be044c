"""
Google Gemini engine provider.

All Gemini-specific code lives here so the rest of the package only depends
on ``BaseLLMClient``.
"""

import os
import logging
import time
from typing import Optional, List

import google.generativeai as genai
from google.generativeai.types import GenerationConfig

from ..utils.llm import BaseLLMClient
from ..utils.llm_constants import (
    DEFAULT_MODEL_ID,
    DEFAULT_TEMPERATURE,
    DEFAULT_TOP_K,
    DEFAULT_MAX_TOKENS,
    GEMINI_MAX_OUTPUT_TOKENS,
)

logger = logging.getLogger(__name__)

# Used when the model list cannot be fetched from the API
FALLBACK_ALLOWED_MODELS: List[str] = [
    "gemini-2.5-flash",
    "gemini-2.5-pro",
    "gemini-2.0-flash",
    "gemini-1.5-pro",
    "gemini-1.5-flash",
]

DEFAULT_GEMINI_MODEL = DEFAULT_MODEL_ID


def _validate_gemini_model_name(model_name: str, available_models: Optional[List[str]] = None) -> str:
    """
    Validate a model name and return it with the ``models/`` prefix.

    Args:
        model_name: Model name (with or without 'models/' prefix)
        available_models: Model names fetched from the API (fallback list if None)

    Raises:
        ValueError: If the model is not available
    """
    base_name = model_name.replace("models/", "")
    if available_models is None:
        available_models = FALLBACK_ALLOWED_MODELS
    normalized_available = [m.replace("models/", "") for m in available_models]

    if base_name not in normalized_available:
        raise ValueError(
            f"Invalid Gemini model: {model_name}. Allowed models: {', '.join(normalized_available)}"
        )
    return f"models/{base_name}"


class GeminiProvider(BaseLLMClient):
    """
    Provider for the Google Gemini API.

    Sampling settings given to ``generate`` override the instance defaults.
    The per-call timeout is passed to the API as a request option; an
    expired deadline surfaces as an exception from ``generate``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_GEMINI_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        top_k: int = DEFAULT_TOP_K,
    ):
        """
        Initialize Gemini provider.

        Args:
            api_key: Google API key (if None, uses GOOGLE_API_KEY env var)
            model_name: Model name (default: gemini-2.5-flash)
            temperature: Default sampling temperature
            top_k: Default top-k cutoff

        Raises:
            ValueError: If no API key is configured or the model is invalid
        """
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        if not self.api_key:
            raise ValueError("GOOGLE_API_KEY environment variable is required")

        genai.configure(api_key=self.api_key)

        try:
            self.available_models = []
            for model in genai.list_models():
                name = model.name if hasattr(model, "name") else str(model)
                name = name.replace("models/", "")
                if name and name not in self.available_models:
                    self.available_models.append(name)
            logger.info(f"Fetched {len(self.available_models)} available Gemini models dynamically")
        except Exception as e:
            logger.error(f"Failed to fetch available Gemini models, using fallback list: {e}", exc_info=True)
            self.available_models = FALLBACK_ALLOWED_MODELS.copy()

        self._model_name = _validate_gemini_model_name(model_name, self.available_models)
        self.temperature = temperature
        self.top_k = top_k

        logger.info(f"Initialized GeminiProvider with model: {self._model_name}")

    @property
    def model_name(self) -> str:
        """Get the model name being used by this provider."""
        return self._model_name

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
        Generate text using the configured Gemini model.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt
            temperature: Sampling temperature (overrides instance default)
            max_tokens: Maximum output tokens (capped at the Gemini limit)
            top_k: Top-k cutoff (overrides instance default)
            timeout: Request deadline in seconds

        Returns:
            Generated text (empty if the model returned none)

        Raises:
            Exception: If the API call fails or times out
        """
        start_time = time.time()
        model = genai.GenerativeModel(self.model_name)

        full_prompt = prompt
        if system_prompt:
            full_prompt = f"{system_prompt}\n\n{prompt}"

        generation_config = GenerationConfig(
            temperature=temperature if temperature is not None else self.temperature,
            top_k=top_k if top_k is not None else self.top_k,
            max_output_tokens=min(max_tokens or DEFAULT_MAX_TOKENS, GEMINI_MAX_OUTPUT_TOKENS),
        )

        request_options = {"timeout": timeout} if timeout else None
        try:
            response = model.generate_content(
                full_prompt,
                generation_config=generation_config,
                request_options=request_options,
            )
        except (ConnectionError, TimeoutError, OSError) as e:
            logger.error(f"Network error generating content with Gemini: {e}", exc_info=True)
            raise
        except Exception as e:
            logger.error(f"Error generating content with Gemini: {e}", exc_info=True)
            raise

        duration_ms = int((time.time() - start_time) * 1000)
        finish_reason = "STOP"
        if getattr(response, "candidates", None):
            finish_reason = getattr(response.candidates[0], "finish_reason", "STOP")

        try:
            text = response.text
        except ValueError:
            # Raised by the SDK when the response has no text parts
            text = ""

        if not text:
            logger.warning(f"Gemini generation finished with reason: {finish_reason}. No text returned.")
            return ""

        if str(finish_reason).endswith("MAX_TOKENS"):
            logger.warning(
                f"Gemini generation hit MAX_TOKENS limit ({max_tokens} tokens). Output may be truncated."
            )
        logger.debug(f"Gemini call finished in {duration_ms}ms with reason: {finish_reason}")
        return text.strip()

    def check_availability(self) -> bool:
        """Check that the configured model is among the available models."""
        base_model = self.model_name.replace("models/", "")
        is_available = base_model in self.available_models
        if not is_available:
            logger.warning(
                f"Configured Gemini model '{self.model_name}' not found in available models: {self.available_models}"
            )
        return is_available
