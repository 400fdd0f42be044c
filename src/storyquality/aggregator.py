"""
IssueAggregator: merge stage findings into one issue set.

Findings are concatenated in stage-emission order with no content
deduplication (ids are already unique per run). The derived score starts
at 100 and subtracts a fixed penalty per finding by severity, clamped to
the 0-100 range. All functions are pure and never raise.
"""

from typing import Dict, List, Iterable

from .models import ISSUE_CATEGORIES, SEVERITY_RANK, Finding, PipelineStageResult
from .utils.llm_constants import BASE_QUALITY_SCORE, SEVERITY_PENALTIES


def collect_findings(
    stage_results: Iterable[PipelineStageResult],
    findings_by_stage: Dict[str, List[Finding]]
) -> List[Finding]:
    """
    Concatenate findings of completed stages in stage order.

    Args:
        stage_results: Stage results in the order they ran
        findings_by_stage: Findings emitted per stage

    Returns:
        Flat list of findings
    """
    merged = []
    for result in stage_results:
        if result.status != "completed":
            continue
        merged.extend(findings_by_stage.get(result.stage, []))
    return merged


def derive_score(findings: Iterable[Finding]) -> int:
    """100 minus 20/10/5/2 per critical/major/minor/info finding, clamped to [0, 100]."""
    score = BASE_QUALITY_SCORE
    for finding in findings:
        score -= SEVERITY_PENALTIES.get(finding.severity, 0)
    return max(0, min(100, score))


def issues_by_category(findings: Iterable[Finding]) -> Dict[str, int]:
    """Histogram over every category, zero counts included."""
    counts = {category: 0 for category in ISSUE_CATEGORIES}
    for finding in findings:
        counts[finding.category] = counts.get(finding.category, 0) + 1
    return counts


def prioritize(findings: Iterable[Finding]) -> List[Finding]:
    """Stable sort, most severe first."""
    return sorted(findings, key=lambda f: SEVERITY_RANK.get(f.severity, len(SEVERITY_RANK)))


def prioritized_issue_ids(findings: Iterable[Finding]) -> List[str]:
    return [f.id for f in prioritize(findings)]


class IssueAggregator:
    """Aggregated view over a list of findings."""

    def __init__(self, findings: Iterable[Finding]):
        self.findings = list(findings)

    @classmethod
    def from_stages(
        cls,
        stage_results: Iterable[PipelineStageResult],
        findings_by_stage: Dict[str, List[Finding]]
    ) -> "IssueAggregator":
        return cls(collect_findings(stage_results, findings_by_stage))

    @property
    def score(self) -> int:
        return derive_score(self.findings)

    @property
    def by_category(self) -> Dict[str, int]:
        return issues_by_category(self.findings)

    @property
    def prioritized_ids(self) -> List[str]:
        return prioritized_issue_ids(self.findings)
