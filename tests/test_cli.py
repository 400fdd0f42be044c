"""
Tests for the command-line interface.

The engine provider is replaced with a scripted client, so no network
calls are made.
"""

import json

import pytest
from click.testing import CliRunner

from storyquality.cli import cli

from conftest import ENGLISH_STORY, GERMAN_STORY, FakeLLMClient, full_pipeline_responses


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def scripted_provider(monkeypatch):
    """Route the default provider lookup to a scripted client."""
    client = FakeLLMClient()
    monkeypatch.setattr("storyquality.providers.factory.get_default_provider", lambda: client)
    return client


class TestParseCommand:
    """Test the parse command."""

    def test_parse_german(self, runner):
        result = runner.invoke(cli, ["parse", GERMAN_STORY])

        assert result.exit_code == 0
        assert "Role:        Benutzer" in result.output
        assert "Benefit:     ich auf mein Konto zugreifen kann" in result.output
        assert "Confidence:  high" in result.output
        assert "Completeness: 100" in result.output

    def test_parse_english(self, runner):
        result = runner.invoke(cli, ["parse", ENGLISH_STORY])

        assert result.exit_code == 0
        assert "Role:        project manager" in result.output

    def test_parse_unstructured(self, runner):
        result = runner.invoke(cli, ["parse", "Make exports faster"])

        assert result.exit_code == 0
        assert "No user story template detected." in result.output
        assert "Completeness: 0" in result.output


class TestPromptsCommand:
    """Test the prompts command."""

    def test_lists_versions(self, runner):
        result = runner.invoke(cli, ["prompts"])

        assert result.exit_code == 0
        line = result.output.strip().splitlines()[0]
        assert line.startswith("v1: ambiguity_analysis")
        assert "rewrite" in line

    def test_json_listing(self, runner):
        result = runner.invoke(cli, ["prompts", "--json"])

        listing = json.loads(result.output)
        assert "analyze" in listing["v1"]
        assert "acceptance_criteria" in listing["v1"]


class TestAnalyzeCommand:
    """Test the analyze command."""

    def test_pipeline_markdown(self, runner, scripted_provider):
        scripted_provider.responses.extend(full_pipeline_responses())

        result = runner.invoke(cli, ["analyze", GERMAN_STORY])

        assert result.exit_code == 0
        assert "✓ ambiguity_analysis (completed, 1 findings)" in result.output
        assert "# User Story Quality Report" in result.output
        assert "- **Score:** 72/100" in result.output
        assert len(scripted_provider.calls) == 6

    def test_pipeline_json_with_context(self, runner, scripted_provider, tmp_path):
        scripted_provider.responses.extend(full_pipeline_responses())
        context_file = tmp_path / "context.txt"
        context_file.write_text("Only SSO is allowed", encoding="utf-8")

        result = runner.invoke(cli, ["analyze", GERMAN_STORY, "--format", "json", "--context", str(context_file)])

        assert result.exit_code == 0
        assert "Only SSO is allowed" in scripted_provider.calls[0]["prompt"]
        document = json.loads(result.output[result.output.index("{\n"):])
        assert document["analysis"]["overallScore"] == 72

    def test_failed_stages_warn(self, runner, scripted_provider):
        responses = full_pipeline_responses()
        responses[0:1] = ["not json", "still not json"]
        scripted_provider.responses.extend(responses)

        result = runner.invoke(cli, ["analyze", GERMAN_STORY])

        assert result.exit_code == 0
        assert "✗ ambiguity_analysis (failed" in result.output
        assert "Warning: 1 stage(s) failed" in result.output

    def test_legacy_mode(self, runner, scripted_provider):
        scripted_provider.responses.append(json.dumps({"issues": [], "score": 90}))

        result = runner.invoke(cli, ["analyze", GERMAN_STORY, "--mode", "analyze"])

        assert result.exit_code == 0
        assert "- **Score:** 90/100" in result.output

    def test_empty_story_exits_with_error(self, runner, scripted_provider):
        result = runner.invoke(cli, ["analyze", "   "])

        assert result.exit_code == 1
        assert "Error: Story text cannot be empty." in result.output
        assert scripted_provider.calls == []

    def test_unknown_prompt_version(self, runner, scripted_provider):
        result = runner.invoke(cli, ["analyze", GERMAN_STORY, "--prompt-version", "v0"])

        assert result.exit_code == 1
        assert "Unknown prompt version: v0." in result.output

    def test_unconfigured_engine(self, runner, monkeypatch):
        def no_provider():
            raise ValueError("GOOGLE_API_KEY environment variable is required")

        monkeypatch.setattr("storyquality.providers.factory.get_default_provider", no_provider)

        result = runner.invoke(cli, ["analyze", GERMAN_STORY, "--mode", "analyze"])

        assert result.exit_code == 1
        assert "Error: GOOGLE_API_KEY environment variable is required" in result.output
