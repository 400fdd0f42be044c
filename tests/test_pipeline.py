"""
Tests for the multi-stage analysis pipeline and legacy analyze mode.
"""

import json
from unittest.mock import MagicMock

import pytest

from storyquality.invoker import StageInvoker, StageOutput
from storyquality.models import PIPELINE_STAGES, StructuredStoryModel
from storyquality.pipeline import PipelineRunner
from storyquality.utils.errors import StageInvocationError, ValidationError

from conftest import GERMAN_STORY, criteria_json, full_pipeline_responses, stage_json


@pytest.fixture
def runner(invoker):
    return PipelineRunner(invoker)


class TestFullRun:
    """Test a run where every stage succeeds."""

    def test_all_stages_complete_in_order(self, runner, fake_client):
        fake_client.responses.extend(full_pipeline_responses())

        result = runner.run(GERMAN_STORY)

        assert [r.stage for r in result.stage_results] == list(PIPELINE_STAGES)
        assert all(r.status == "completed" for r in result.stage_results)
        assert result.completed_count == 6
        assert len(fake_client.calls) == 6

    def test_findings_and_score(self, runner, fake_client):
        fake_client.responses.extend(full_pipeline_responses())

        result = runner.run(GERMAN_STORY)

        assert [f.id for f in result.all_findings] == ["amb_1", "qual_1"]
        assert result.all_findings[1].category == "not_testable"
        assert result.overall_score == 72
        assert result.score_source == "stage"
        assert result.issues_by_category["ambiguity"] == 1
        assert result.issues_by_category["not_testable"] == 1
        assert result.prioritized_issue_ids == ["amb_1", "qual_1"]
        assert result.summary == "Login method unclear."

    def test_stage_extras(self, runner, fake_client):
        fake_client.responses.extend(full_pipeline_responses())

        result = runner.run(GERMAN_STORY)

        assert result.structured_model.goal == "einloggen"
        assert result.value_assessment == {"hasBusinessValue": True}
        assert result.has_solution_bias is False
        assert [c.id for c in result.criteria] == ["ac_1"]
        assert result.criteria[0].priority == "must"
        assert result.coverage == {"happyPath": True}
        assert result.open_questions == ["Is SSO required?"]

    def test_later_stages_see_earlier_results(self, runner, fake_client):
        fake_client.responses.extend(full_pipeline_responses())

        runner.run(GERMAN_STORY)

        structure_prompt = fake_client.calls[1]["system_prompt"]
        assert '"amb_1"' in structure_prompt
        assert "Login method unclear." in structure_prompt

    def test_structure_check_model_flows_into_later_stages(self, runner, fake_client):
        fake_client.responses.extend(full_pipeline_responses())

        runner.run(GERMAN_STORY, structured_model=StructuredStoryModel(role="Gast", goal="x", benefit="y"))

        assert "- Role: Gast" in fake_client.calls[0]["prompt"]
        assert "- Goal: einloggen" in fake_client.calls[2]["prompt"]

    def test_stage_score_is_clamped(self, runner, fake_client):
        responses = full_pipeline_responses()
        responses[2] = stage_json(overallScore=140)
        fake_client.responses.extend(responses)

        assert runner.run(GERMAN_STORY).overall_score == 100

    def test_derived_score_without_quality_score(self, runner, fake_client):
        responses = full_pipeline_responses()
        responses[2] = stage_json(issues=[{"severity": "critical"}])
        fake_client.responses.extend(responses)

        result = runner.run(GERMAN_STORY)

        # major (10) + critical (20)
        assert result.overall_score == 70
        assert result.score_source == "derived"


class TestPartialFailure:
    """Test that one failing stage never stops the run."""

    def test_failed_stage_recorded_and_run_continues(self, runner, fake_client):
        responses = full_pipeline_responses()
        responses[1:2] = ["not json", "still not json"]
        fake_client.responses.extend(responses)

        result = runner.run(GERMAN_STORY)

        statuses = {r.stage: r.status for r in result.stage_results}
        assert statuses["structure_check"] == "failed"
        assert all(status == "completed" for stage, status in statuses.items() if stage != "structure_check")
        assert result.failed_stages == ["structure_check"]
        failed = result.stage_results[1]
        assert "structure_check" in failed.error
        assert failed.finding_ids == []
        assert result.structured_model is None

    def test_every_stage_failing(self, runner, fake_client):
        fake_client.default = "garbage"

        result = runner.run(GERMAN_STORY)

        assert result.failed_stages == list(PIPELINE_STAGES)
        assert result.all_findings == []
        assert result.overall_score == 100
        assert result.summary == "0 of 6 stages completed"
        assert len(fake_client.calls) == 12

    def test_unexpected_exception_is_captured(self):
        invoker = MagicMock(spec=StageInvoker)

        def invoke(stage, *args, **kwargs):
            if stage == "quality_check":
                raise RuntimeError("boom")
            return StageOutput(operation=stage, data=json.loads(criteria_json()), raw_response="", attempts=1)

        invoker.invoke.side_effect = invoke
        result = PipelineRunner(invoker).run(GERMAN_STORY)

        failed = [r for r in result.stage_results if r.status == "failed"]
        assert [r.stage for r in failed] == ["quality_check"]
        assert failed[0].error == "RuntimeError: boom"


class TestRunOptions:
    """Test stage selection, callbacks and input validation."""

    def test_disabled_stages_are_skipped(self, invoker, fake_client):
        fake_client.responses.append(stage_json(issues=[{"id": "amb_1", "severity": "minor"}]))

        result = PipelineRunner(invoker, stages=["ambiguity_analysis"]).run(GERMAN_STORY)

        assert len(fake_client.calls) == 1
        assert [r.status for r in result.stage_results] == ["completed"] + ["skipped"] * 5
        assert result.summary == "1 of 1 stages completed"

    def test_unknown_stage_rejected(self, invoker):
        with pytest.raises(ValueError, match="Unknown pipeline stages"):
            PipelineRunner(invoker, stages=["spelling"])

    def test_callback_receives_each_stage(self, runner, fake_client):
        fake_client.responses.extend(full_pipeline_responses())
        seen = []

        runner.run(GERMAN_STORY, on_stage_complete=lambda r: seen.append(r.stage))

        assert seen == list(PIPELINE_STAGES)

    def test_failing_callback_does_not_abort(self, runner, fake_client):
        fake_client.responses.extend(full_pipeline_responses())

        def callback(result):
            raise RuntimeError("ui gone")

        result = runner.run(GERMAN_STORY, on_stage_complete=callback)
        assert result.completed_count == 6

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_text_rejected_before_any_call(self, runner, fake_client, text):
        with pytest.raises(ValidationError):
            runner.run(text)
        assert fake_client.calls == []


class TestLegacyAnalyze:
    """Test the single-shot analyze mode."""

    def test_analyze(self, runner, fake_client):
        fake_client.responses.append(json.dumps({
            "issues": [{"message": "Benefit missing", "category": "completeness", "severity": "high"}],
            "score": 65,
            "suggestions": ["Add a benefit"],
        }))

        result = runner.analyze(GERMAN_STORY)

        assert len(fake_client.calls) == 1
        assert result.stage_results == []
        assert result.overall_score == 65
        assert result.score_source == "stage"
        assert result.summary == "Add a benefit"
        finding = result.all_findings[0]
        assert finding.id == "issue_1"
        assert finding.category == "missing_context"
        assert finding.severity == "major"
        assert finding.reasoning == "Benefit missing"

    def test_analyze_summary_fallback(self, runner, fake_client):
        fake_client.responses.append(json.dumps({"issues": [], "score": 90}))
        assert runner.analyze(GERMAN_STORY).summary == "0 issues found"

    def test_analyze_failure_raises(self, runner, fake_client):
        fake_client.responses.extend([json.dumps({"issues": []}), json.dumps({"issues": []})])
        with pytest.raises(StageInvocationError):
            runner.analyze(GERMAN_STORY)
