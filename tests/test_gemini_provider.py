"""
Tests for the Gemini provider and the provider factory.

All calls to the Gemini SDK are mocked.
"""

from unittest.mock import MagicMock, patch

import pytest

from storyquality.providers import factory
from storyquality.providers.gemini import (
    FALLBACK_ALLOWED_MODELS,
    GeminiProvider,
    _validate_gemini_model_name,
)


@pytest.fixture
def mock_genai():
    """Patch the Gemini SDK module used by the provider."""
    with patch("storyquality.providers.gemini.genai") as genai, \
            patch("storyquality.providers.gemini.GenerationConfig") as generation_config:
        model_entry = MagicMock()
        model_entry.name = "models/gemini-2.5-flash"
        genai.list_models.return_value = [model_entry]
        genai.generation_config = generation_config
        yield genai


def make_response(text="  {\"issues\": []}  ", finish_reason="STOP"):
    response = MagicMock()
    response.text = text
    candidate = MagicMock()
    candidate.finish_reason = finish_reason
    response.candidates = [candidate]
    return response


class TestModelValidation:
    """Test model name validation."""

    def test_prefix_added(self):
        assert _validate_gemini_model_name("gemini-2.5-flash") == "models/gemini-2.5-flash"
        assert _validate_gemini_model_name("models/gemini-1.5-pro") == "models/gemini-1.5-pro"

    def test_unknown_model_rejected(self):
        with pytest.raises(ValueError, match="Invalid Gemini model"):
            _validate_gemini_model_name("gpt-4")

    def test_uses_available_models(self):
        assert _validate_gemini_model_name("gemini-exp", ["models/gemini-exp"]) == "models/gemini-exp"


class TestGeminiProvider:
    """Test provider construction and generation."""

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ValueError, match="GOOGLE_API_KEY"):
            GeminiProvider()

    def test_init_configures_sdk(self, mock_genai):
        provider = GeminiProvider(api_key="test-key")

        mock_genai.configure.assert_called_once_with(api_key="test-key")
        assert provider.model_name == "models/gemini-2.5-flash"
        assert provider.available_models == ["gemini-2.5-flash"]
        assert provider.check_availability() is True

    def test_model_list_failure_uses_fallback(self, mock_genai):
        mock_genai.list_models.side_effect = RuntimeError("network down")

        provider = GeminiProvider(api_key="test-key", model_name="gemini-1.5-flash")

        assert provider.available_models == FALLBACK_ALLOWED_MODELS
        assert provider.model_name == "models/gemini-1.5-flash"

    def test_generate_passes_settings(self, mock_genai):
        model = mock_genai.GenerativeModel.return_value
        model.generate_content.return_value = make_response()
        provider = GeminiProvider(api_key="test-key", temperature=0.5, top_k=20)

        text = provider.generate("User Story: x", system_prompt="Rules", max_tokens=50000, timeout=30)

        assert text == '{"issues": []}'
        mock_genai.GenerativeModel.assert_called_once_with("models/gemini-2.5-flash")
        args, kwargs = model.generate_content.call_args
        assert args[0] == "Rules\n\nUser Story: x"
        assert kwargs["request_options"] == {"timeout": 30}
        mock_genai.generation_config.assert_called_once_with(
            temperature=0.5,
            top_k=20,
            max_output_tokens=8192,
        )

    def test_generate_overrides_defaults(self, mock_genai):
        model = mock_genai.GenerativeModel.return_value
        model.generate_content.return_value = make_response()
        provider = GeminiProvider(api_key="test-key")

        provider.generate("x", temperature=0.1, top_k=3, max_tokens=100)

        mock_genai.generation_config.assert_called_once_with(temperature=0.1, top_k=3, max_output_tokens=100)
        assert model.generate_content.call_args[1]["request_options"] is None

    def test_generate_propagates_errors(self, mock_genai):
        model = mock_genai.GenerativeModel.return_value
        model.generate_content.side_effect = TimeoutError("deadline")
        provider = GeminiProvider(api_key="test-key")

        with pytest.raises(TimeoutError):
            provider.generate("x", timeout=5)

    def test_blocked_response_returns_empty(self, mock_genai):
        def no_text(self):
            raise ValueError("no parts")

        response = MagicMock()
        type(response).text = property(no_text)
        response.candidates = []
        mock_genai.GenerativeModel.return_value.generate_content.return_value = response
        provider = GeminiProvider(api_key="test-key")

        assert provider.generate("x") == ""


class TestProviderFactory:
    """Test provider selection."""

    def teardown_method(self):
        factory.reset_default_provider()

    def test_create_gemini(self, mock_genai, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "env-key")
        monkeypatch.delenv("LLM_MODEL", raising=False)
        provider = factory.create_provider("gemini")
        assert isinstance(provider, GeminiProvider)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            factory.create_provider("openai")

    def test_default_provider_cached(self, mock_genai, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "env-key")
        monkeypatch.setenv("LLM_PROVIDER", "gemini")
        monkeypatch.delenv("LLM_MODEL", raising=False)
        first = factory.get_default_provider()
        assert factory.get_default_provider() is first
        factory.reset_default_provider()
        assert factory.get_default_provider() is not first
