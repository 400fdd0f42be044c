"""
Tests for mapping raw engine output onto the closed vocabularies.
"""

import pytest

from storyquality.normalization import (
    assign_id,
    normalize_candidate,
    normalize_category,
    normalize_confidence,
    normalize_criteria,
    normalize_finding,
    normalize_findings,
    normalize_severity,
    normalize_structured_model,
)


class TestVocabularies:
    """Test category, severity and confidence mapping."""

    @pytest.mark.parametrize("raw,expected", [
        ("ambiguity", "ambiguity"),
        ("Vague_Language", "vague_language"),
        ("clarity", "vague_language"),
        ("completeness", "missing_context"),
        ("testability", "not_testable"),
        ("scope", "too_broad_scope"),
        ("consistency", "inconsistency"),
        ("nonsense", "other"),
        (None, "other"),
    ])
    def test_normalize_category(self, raw, expected):
        assert normalize_category(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("critical", "critical"),
        ("HIGH", "major"),
        ("medium", "minor"),
        ("low", "info"),
        ("blocker", "info"),
    ])
    def test_normalize_severity(self, raw, expected):
        assert normalize_severity(raw) == expected

    def test_unknown_confidence_is_medium(self):
        assert normalize_confidence("certain") == "medium"
        assert normalize_confidence("Low") == "low"


class TestAssignId:
    """Test id assignment for engine items."""

    def test_keeps_unused_engine_id(self):
        seen = set()
        assert assign_id("amb_7", "amb", seen) == "amb_7"
        assert seen == {"amb_7"}

    def test_generates_id_when_missing(self):
        seen = set()
        assert assign_id(None, "amb", seen) == "amb_1"
        assert assign_id("", "amb", seen) == "amb_2"

    def test_replaces_duplicate_id(self):
        seen = {"amb_1"}
        new_id = assign_id("amb_1", "amb", seen)
        assert new_id != "amb_1"
        assert new_id in seen
        assert len(seen) == 2

    def test_skips_taken_generated_ids(self):
        seen = {"x", "amb_2"}
        assert assign_id(None, "amb", seen) == "amb_3"


class TestFindings:
    """Test finding normalization."""

    def test_full_finding(self):
        raw = {
            "id": "amb_1",
            "category": "clarity",
            "severity": "high",
            "affectedSection": "goal",
            "textReference": "schnell",
            "reasoning": "'schnell' is not measurable",
            "clarificationQuestion": "How fast?",
            "suggestedAction": "Name a response time",
            "confidence": "high",
        }
        finding = normalize_finding(raw, "ambiguity_analysis", set())

        assert finding.id == "amb_1"
        assert finding.stage == "ambiguity_analysis"
        assert finding.category == "vague_language"
        assert finding.severity == "major"
        assert finding.affected_section == "goal"
        assert finding.clarification_question == "How fast?"
        assert finding.suggested_action == "Name a response time"
        assert finding.is_relevant is None
        assert finding.user_note == ""

    def test_legacy_message_fills_text_fields(self):
        finding = normalize_finding({"message": "Benefit missing", "category": "completeness"}, "analyze", set())

        assert finding.text_reference == "Benefit missing"
        assert finding.reasoning == "Benefit missing"
        assert finding.category == "missing_context"
        assert finding.id == "issue_1"

    def test_stage_specific_suggestion_fields(self):
        finding = normalize_finding({"suggestedBenefit": "Saves 5 minutes"}, "business_value", set())
        assert finding.suggested_action == "Saves 5 minutes"

        finding = normalize_finding({"alternativeFormulation": "Without naming a tool"}, "solution_bias", set())
        assert finding.suggested_action == "Without naming a tool"

    def test_unknown_section_is_overall(self):
        finding = normalize_finding({"affectedSection": "title"}, "quality_check", set())
        assert finding.affected_section == "overall"

    def test_malformed_entries_skipped(self):
        findings = normalize_findings(["oops", None, {"reasoning": "ok"}], "quality_check")
        assert len(findings) == 1
        assert findings[0].id == "qual_1"

    def test_ids_unique_across_stages(self):
        seen = set()
        first = normalize_findings([{"id": "x"}], "ambiguity_analysis", seen)
        second = normalize_findings([{"id": "x"}], "quality_check", seen)
        assert first[0].id == "x"
        assert second[0].id != "x"


class TestStructuredModel:
    def test_from_dict(self):
        model = normalize_structured_model({
            "role": "Benutzer",
            "goal": "einloggen",
            "benefit": "Zugriff",
            "constraints": ["nur intern", ""],
            "parseConfidence": "high",
        })
        assert model.role == "Benutzer"
        assert model.constraints == ["nur intern"]
        assert model.parse_confidence == "high"

    def test_non_dict_is_none(self):
        assert normalize_structured_model("Benutzer") is None
        assert normalize_structured_model(None) is None

    def test_empty_constraints_become_none(self):
        assert normalize_structured_model({"role": "x", "constraints": []}).constraints is None


class TestCandidates:
    """Test rewrite candidate normalization."""

    def test_unknown_finding_ids_dropped(self):
        candidate = normalize_candidate(
            {"text": "Als Kunde ...", "addressedIssueIds": ["amb_1", "ghost_9"]},
            set(),
            {"amb_1"},
        )
        assert candidate.addressed_finding_ids == ["amb_1"]
        assert candidate.status == "pending"
        assert candidate.id == "rw_1"

    def test_suggested_text_and_improvements(self):
        candidate = normalize_candidate(
            {"suggestedText": "As a buyer ...", "improvements": ["Role", "Benefit"]},
            set(),
        )
        assert candidate.suggested_text == "As a buyer ..."
        assert candidate.explanation == "Role, Benefit"

    def test_candidate_without_text_is_none(self):
        assert normalize_candidate({"explanation": "nothing"}, set()) is None

    def test_changes_parsed(self):
        candidate = normalize_candidate(
            {"text": "x", "changes": [{"type": "added", "description": "Benefit"}, "junk"]},
            set(),
        )
        assert len(candidate.changes) == 1
        assert candidate.changes[0].type == "added"


class TestCriteria:
    def test_defaults_for_unknown_type_and_priority(self):
        criteria = normalize_criteria([
            {"given": "a", "when": "b", "then": "c", "type": "weird", "priority": "urgent"},
            "not a dict",
        ])
        assert len(criteria) == 1
        assert criteria[0].type == "happy_path"
        assert criteria[0].priority == "should"
        assert criteria[0].id == "ac_1"
        assert criteria[0].status == "pending"
