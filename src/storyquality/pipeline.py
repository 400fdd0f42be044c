"""
PipelineRunner - multi-stage story analysis

Stages run strictly in this order, each one seeing the accumulated results
of every stage before it:

1. ambiguity_analysis
2. structure_check (may replace the structured model)
3. quality_check (may supply the overall score)
4. business_value
5. solution_bias
6. acceptance_criteria

A failing stage is recorded and the run continues with the next stage.
The legacy single-shot ``analyze`` mode is available via ``PipelineRunner.analyze``.
"""

import logging
import time
from typing import Dict, Any, Optional, Callable, Iterable, List

from .aggregator import collect_findings, derive_score, issues_by_category, prioritized_issue_ids
from .invoker import StageInvoker
from .models import (
    PIPELINE_STAGES,
    ContextSnippet,
    Finding,
    PipelineResult,
    PipelineStageResult,
    RuntimeConfig,
    StructuredStoryModel,
)
from .normalization import normalize_criteria, normalize_findings, normalize_structured_model
from .utils.errors import StageInvocationError, ValidationError

logger = logging.getLogger(__name__)

StageCallback = Callable[[PipelineStageResult], None]


def _numeric_score(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0, min(100, int(round(value))))


def _require_text(story_text: Optional[str]) -> None:
    if not story_text or not story_text.strip():
        raise ValidationError("Story text cannot be empty", details={"field": "story_text"})


class PipelineRunner:
    """
    Runs the ordered analysis stages over one story text.

    Stages not listed in ``stages`` are recorded as skipped so the result
    always reports every stage in canonical order.
    """

    def __init__(self, invoker: Optional[StageInvoker] = None, stages: Optional[Iterable[str]] = None):
        """
        Initialize the runner.

        Args:
            invoker: StageInvoker to use (a default one if None)
            stages: Stages to run (default: all)

        Raises:
            ValueError: If an unknown stage is requested
        """
        self.invoker = invoker or StageInvoker()
        enabled = list(stages) if stages is not None else list(PIPELINE_STAGES)
        unknown = [s for s in enabled if s not in PIPELINE_STAGES]
        if unknown:
            raise ValueError(f"Unknown pipeline stages: {', '.join(unknown)}")
        self.enabled_stages = set(enabled)

    def run(
        self,
        story_text: str,
        structured_model: Optional[StructuredStoryModel] = None,
        context_snippets: Iterable[ContextSnippet] = (),
        additional_context: Optional[str] = None,
        runtime_config: Optional[RuntimeConfig] = None,
        on_stage_complete: Optional[StageCallback] = None,
    ) -> PipelineResult:
        """
        Run the full pipeline.

        Args:
            story_text: Story text to analyse
            structured_model: Starting structured model (e.g. from the heuristic parser)
            context_snippets: Retrieved context passages
            additional_context: Free-form user context
            runtime_config: Engine settings shared by every stage
            on_stage_complete: Called with each stage result as soon as it settles

        Returns:
            PipelineResult

        Raises:
            ValidationError: If story_text is empty (no stage runs)
        """
        _require_text(story_text)
        runtime_config = runtime_config or RuntimeConfig()
        context_snippets = list(context_snippets or ())

        current_model = structured_model
        accumulated_results: Dict[str, Dict[str, Any]] = {}
        findings_by_stage: Dict[str, List[Finding]] = {}
        stage_results: List[PipelineStageResult] = []
        seen_ids: set = set()
        stage_score: Optional[int] = None
        extras: Dict[str, Any] = {
            "value_assessment": None,
            "has_solution_bias": None,
            "criteria": [],
            "coverage": None,
            "open_questions": [],
        }

        for stage in PIPELINE_STAGES:
            if stage not in self.enabled_stages:
                result = PipelineStageResult(stage=stage, status="skipped")
                stage_results.append(result)
                self._notify(on_stage_complete, result)
                continue

            logger.info(f"Running pipeline stage: {stage}")
            start_time = time.time()
            try:
                output = self.invoker.invoke(
                    stage,
                    story_text,
                    structured_model=current_model,
                    context_snippets=context_snippets,
                    previous_results=dict(accumulated_results),
                    runtime_config=runtime_config,
                    additional_context=additional_context,
                )
                data = output.data
                findings = normalize_findings(data.get("issues") or [], stage, seen_ids)
                summary = str(data.get("summary") or "").strip()

                if stage == "structure_check":
                    engine_model = normalize_structured_model(data.get("structuredModel"))
                    if engine_model is not None:
                        current_model = engine_model
                elif stage == "quality_check":
                    stage_score = _numeric_score(data.get("overallScore"))
                elif stage == "business_value":
                    if isinstance(data.get("valueAssessment"), dict):
                        extras["value_assessment"] = data["valueAssessment"]
                elif stage == "solution_bias":
                    if isinstance(data.get("hasSolutionBias"), bool):
                        extras["has_solution_bias"] = data["hasSolutionBias"]
                elif stage == "acceptance_criteria":
                    extras["criteria"] = normalize_criteria(data.get("criteria") or [])
                    if isinstance(data.get("coverage"), dict):
                        extras["coverage"] = data["coverage"]
                    extras["open_questions"] = [
                        str(q) for q in data.get("openQuestions") or [] if str(q).strip()
                    ]

                findings_by_stage[stage] = findings
                accumulated_results[stage] = {
                    "issues": [
                        {
                            "id": f.id,
                            "category": f.category,
                            "severity": f.severity,
                            "textReference": f.text_reference,
                        }
                        for f in findings
                    ],
                    "summary": summary,
                }
                result = PipelineStageResult(
                    stage=stage,
                    status="completed",
                    finding_ids=[f.id for f in findings],
                    duration_ms=int((time.time() - start_time) * 1000),
                    summary=summary,
                )
                logger.info(f"Stage {stage} completed with {len(findings)} findings")
            except StageInvocationError as e:
                logger.error(f"Stage {stage} failed: {e.message}")
                result = self._failed(stage, e.message, start_time)
            except Exception as e:
                logger.error(f"Stage {stage} failed unexpectedly: {e}", exc_info=True)
                result = self._failed(stage, f"{type(e).__name__}: {e}", start_time)

            stage_results.append(result)
            self._notify(on_stage_complete, result)

        all_findings = collect_findings(stage_results, findings_by_stage)
        if stage_score is not None:
            overall_score, score_source = stage_score, "stage"
        else:
            overall_score, score_source = derive_score(all_findings), "derived"

        completed = sum(1 for r in stage_results if r.status == "completed")
        summaries = [r.summary for r in stage_results if r.status == "completed" and r.summary]
        summary = " ".join(summaries) or f"{completed} of {len(self.enabled_stages)} stages completed"

        logger.info(
            f"Pipeline finished: {completed}/{len(self.enabled_stages)} stages completed, "
            f"{len(all_findings)} findings, score {overall_score} ({score_source})"
        )
        return PipelineResult(
            stage_results=stage_results,
            all_findings=all_findings,
            structured_model=current_model,
            overall_score=overall_score,
            score_source=score_source,
            summary=summary,
            issues_by_category=issues_by_category(all_findings),
            prioritized_issue_ids=prioritized_issue_ids(all_findings),
            **extras,
        )

    def analyze(
        self,
        story_text: str,
        structured_model: Optional[StructuredStoryModel] = None,
        context_snippets: Iterable[ContextSnippet] = (),
        additional_context: Optional[str] = None,
        runtime_config: Optional[RuntimeConfig] = None,
    ) -> PipelineResult:
        """
        Legacy single-shot analysis.

        One ``analyze`` call; findings are normalized and the score is taken
        from the response.

        Raises:
            ValidationError: If story_text is empty
            StageInvocationError: If the call fails after its retry
        """
        _require_text(story_text)
        output = self.invoker.invoke(
            "analyze",
            story_text,
            structured_model=structured_model,
            context_snippets=context_snippets,
            runtime_config=runtime_config or RuntimeConfig(),
            additional_context=additional_context,
        )
        data = output.data
        findings = normalize_findings(data.get("issues") or [], "analyze")
        suggestions = [str(s).strip() for s in data.get("suggestions") or [] if str(s).strip()]
        summary = " ".join(suggestions) or f"{len(findings)} issues found"

        return PipelineResult(
            all_findings=findings,
            structured_model=structured_model,
            overall_score=_numeric_score(data.get("score")),
            score_source="stage",
            summary=summary,
            issues_by_category=issues_by_category(findings),
            prioritized_issue_ids=prioritized_issue_ids(findings),
        )

    @staticmethod
    def _failed(stage: str, error: str, start_time: float) -> PipelineStageResult:
        return PipelineStageResult(
            stage=stage,
            status="failed",
            duration_ms=int((time.time() - start_time) * 1000),
            error=error,
        )

    @staticmethod
    def _notify(callback: Optional[StageCallback], result: PipelineStageResult) -> None:
        if callback is None:
            return
        try:
            callback(result)
        except Exception as e:
            logger.warning(f"on_stage_complete callback raised for {result.stage}: {e}", exc_info=True)
