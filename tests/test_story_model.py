"""
Tests for the Story model, snapshots and version history.
"""

import pytest
from pydantic import ValidationError

from storyquality.history import VersionHistory
from storyquality.models import AcceptanceCriterion, RewriteCandidate, RuntimeConfig, Story

from conftest import GERMAN_STORY


class TestStoryCreation:
    """Test creating stories."""

    def test_create_seeds_parse_and_history(self):
        story = Story.create(f"  {GERMAN_STORY}  ", project_id="PRJ-1")

        assert story.id.startswith("story_")
        assert story.original_text == GERMAN_STORY
        assert story.current_text == GERMAN_STORY
        assert story.structured_model.role == "Benutzer"
        assert story.meta.project_id == "PRJ-1"
        assert len(story.version_history) == 1
        assert story.version_history[0].action == "initial"
        assert story.version_history[0].story_text_at_time == GERMAN_STORY

    @pytest.mark.parametrize("text", ["", "   \n"])
    def test_empty_text_rejected(self, text):
        with pytest.raises(ValidationError):
            Story(original_text=text)

    def test_unstructured_text_has_no_model(self):
        assert Story.create("Make login faster").structured_model is None

    def test_candidate_requires_text(self):
        with pytest.raises(ValidationError):
            RewriteCandidate(id="rw_1", suggested_text="")

    def test_criterion_edited_fields_validated(self):
        with pytest.raises(ValidationError):
            AcceptanceCriterion(id="ac_1", edited_fields={"status": "accepted"})


class TestSetOriginalText:
    """Test replacing the original text."""

    def test_resets_derived_state_but_keeps_audit(self, analysed_story):
        from storyquality.decisions import DecisionTracker
        DecisionTracker(analysed_story).accept_rewrite("rw_1")
        analysed_story.overall_score = 40

        analysed_story.set_original_text("As a buyer I want to pay by card so that checkout is quick.")

        assert analysed_story.current_text == analysed_story.original_text
        assert analysed_story.findings == []
        assert analysed_story.rewrite_candidates == []
        assert analysed_story.criteria == []
        assert analysed_story.overall_score is None
        assert analysed_story.selected_rewrite_id is None
        assert analysed_story.structured_model.role == "buyer"
        assert len(analysed_story.decisions) == 1
        assert [e.action for e in analysed_story.version_history] == ["initial", "rewrite_accepted", "initial"]

    def test_rejects_empty(self, german_story):
        with pytest.raises(ValueError):
            german_story.set_original_text("  ")
        assert german_story.original_text == GERMAN_STORY


class TestSnapshots:
    """Test serialization round trips through the repository format."""

    def test_snapshot_round_trip(self, analysed_story):
        analysed_story.get_finding("amb_1").is_relevant = True
        snapshot = analysed_story.to_snapshot()

        restored = Story.from_snapshot(snapshot)

        assert restored == analysed_story
        assert restored.relevant_findings()[0].id == "amb_1"

    def test_snapshot_is_plain_json(self, analysed_story):
        snapshot = analysed_story.to_snapshot()
        assert isinstance(snapshot["findings"][0], dict)
        assert isinstance(snapshot["version_history"][0]["timestamp"], str)


class TestVersionHistory:
    """Test the append-only version history."""

    def test_append_snapshots_text_and_model(self, german_story):
        history = VersionHistory(german_story)
        german_story.current_text = "Als Admin möchte ich Nutzer sperren."

        entry = history.append("manual_edit", "edited")

        assert entry.story_text_at_time == "Als Admin möchte ich Nutzer sperren."
        assert history.latest() == entry
        assert len(history.entries) == 2

    def test_snapshot_is_a_copy(self, german_story):
        entry = german_story.version_history[0]
        german_story.structured_model.role = "Changed"
        assert entry.structured_model_at_time.role == "Benutzer"

    def test_entries_are_immutable(self, german_story):
        with pytest.raises(ValidationError):
            german_story.version_history[0].story_text_at_time = "rewritten"

    def test_compare(self, german_story):
        history = VersionHistory(german_story)
        german_story.current_text = "Als Kunde möchte ich bestellen."
        newer = history.append("manual_edit")

        comparison = history.compare(german_story.version_history[0].id, newer.id)

        assert comparison["changed"] is True
        assert comparison["to_version"] == newer.id
        assert "-" + GERMAN_STORY in comparison["diff"]
        assert "+Als Kunde möchte ich bestellen." in comparison["diff"]

    def test_compare_unknown_version(self, german_story):
        with pytest.raises(KeyError):
            VersionHistory(german_story).compare(german_story.version_history[0].id, "version_nope")


class TestRuntimeConfig:
    """Test engine settings."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("LLM_TEMPERATURE", "0.3")
        monkeypatch.setenv("LLM_TOP_K", "12")
        monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "999")
        monkeypatch.setenv("PROMPT_VERSION", "v1")

        config = RuntimeConfig.from_env()

        assert config.temperature == 0.3
        assert config.top_k == 12
        assert config.timeout_seconds == 120

    def test_bounds(self):
        with pytest.raises(ValidationError):
            RuntimeConfig(temperature=3.0)
        with pytest.raises(ValidationError):
            RuntimeConfig(timeout_seconds=1)
