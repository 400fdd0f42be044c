"""
Export projections for stories.

Markdown and JSON renderings of a story's final state. The projections are
pure: they read only the story and never the clock or the filesystem, so
the same story always exports to the same content. The HTTP layer wraps
the content in a download response.
"""

import json
import re
import logging
from typing import Dict, Any, List, Tuple

from .aggregator import prioritize
from .models import Finding, PipelineStageResult, Story
from .utils.errors import ValidationError

logger = logging.getLogger(__name__)

EXPORT_FORMATS = {
    "markdown": ("text/markdown", "md"),
    "json": ("application/json", "json"),
}

FLAGGED_SEVERITIES = ("critical", "major")

_NON_ALPHANUMERIC_PATTERN = re.compile(r'[^a-zA-Z0-9_-]')


def export_filename(story: Story, format_type: str) -> str:
    """Download name such as ``user_story_story_1a2b3c4d.md``."""
    _, extension = EXPORT_FORMATS[format_type]
    safe_id = _NON_ALPHANUMERIC_PATTERN.sub('', story.id)
    return f"user_story_{safe_id}.{extension}"


def decision_counts(story: Story) -> Dict[str, int]:
    counts = {"accepted": 0, "edited": 0, "rejected": 0}
    for decision in story.decisions:
        counts[decision.decision] += 1
    return counts


def optimised_text(story: Story) -> str:
    """Current text if it differs from the original, else empty."""
    if story.selected_rewrite_id or story.current_text != story.original_text:
        return story.current_text
    return ""


def flagged_findings(story: Story) -> List[Finding]:
    """Critical and major findings, most severe first, whether or not curated."""
    return prioritize(f for f in story.findings if f.severity in FLAGGED_SEVERITIES)


def _stage_line(result: PipelineStageResult) -> str:
    line = f"- **{result.stage}:** {result.status} ({len(result.finding_ids)} findings)"
    if result.summary:
        line += f" {result.summary}"
    if result.error:
        line += f" Error: {result.error}"
    return line


def export_markdown(story: Story) -> str:
    """
    Render the story as a Markdown quality report.

    Sections: Meta, Original Story, Optimised Story, Structured Story (when
    present), Pipeline Stages and Quality Analysis (after a run), Flagged
    Findings, Acceptance Criteria (final criteria only) and Decisions.
    """
    meta = story.meta
    lines = [
        "# User Story Quality Report",
        "",
        "## Meta",
        f"- **Project ID:** {meta.project_id or 'N/A'}",
        f"- **Prompt Version:** {meta.prompt_version}",
        f"- **Model:** {meta.model_id}",
        f"- **Last Run:** {meta.last_run_at or 'N/A'}",
        "",
        "---",
        "",
        "## Original Story",
        story.original_text,
        "",
        "## Optimised Story",
        optimised_text(story) or "_No optimised version selected_",
        "",
    ]

    structured = story.structured_model
    if structured is not None:
        lines.extend([
            "## Structured Story",
            f"- **Role:** {structured.role}",
            f"- **Goal:** {structured.goal}",
            f"- **Benefit:** {structured.benefit}",
        ])
        if structured.constraints:
            lines.append(f"- **Constraints:** {', '.join(structured.constraints)}")
        lines.append("")

    if story.stage_results:
        completed = sum(1 for r in story.stage_results if r.status == "completed")
        lines.append(f"## Pipeline Stages ({completed} of {len(story.stage_results)} completed)")
        lines.extend(_stage_line(result) for result in story.stage_results)
        lines.append("")

    if story.overall_score is not None:
        relevant = story.relevant_findings()
        lines.extend([
            "## Quality Analysis",
            f"- **Score:** {story.overall_score}/100",
            f"- **Findings:** {len(story.findings)} ({len(relevant)} marked relevant)",
        ])
        for finding in relevant:
            lines.append(f"  - [{finding.severity}] {finding.category}: {finding.reasoning}")
        lines.append("")

    flagged = flagged_findings(story)
    if flagged:
        lines.append(f"## Flagged Findings ({len(flagged)})")
        for finding in flagged:
            line = f"- [{finding.severity}] {finding.category}: {finding.reasoning}"
            if finding.text_reference:
                line += f' ("{finding.text_reference}")'
            if finding.user_note:
                line += f" Note: {finding.user_note}"
            lines.append(line)
        lines.append("")

    final = story.final_criteria()
    lines.extend(["---", "", f"## Acceptance Criteria ({len(final)})"])
    if final:
        blocks = []
        for index, criterion in enumerate(final, start=1):
            heading = f"### Criterion {index}"
            if criterion.title:
                heading += f": {criterion.title}"
            block = [
                heading,
                f"- **Given:** {criterion.given}",
                f"- **When:** {criterion.when}",
                f"- **Then:** {criterion.then}",
            ]
            if criterion.notes:
                block.append(f"- **Notes:** {criterion.notes}")
            blocks.append("\n".join(block))
        lines.append("\n\n".join(blocks))
    else:
        lines.append("_No acceptance criteria defined_")

    counts = decision_counts(story)
    lines.extend([
        "",
        "---",
        "",
        "## Decisions",
        f"- Accepted: {counts['accepted']}",
        f"- Edited: {counts['edited']}",
        f"- Rejected: {counts['rejected']}",
        "",
        "---",
        "",
        "_Generated with User Story Quality Assistant_",
        "",
    ])
    return "\n".join(lines)


def export_json(story: Story) -> Dict[str, Any]:
    """Render the story as a JSON-serializable export document."""
    structured = story.structured_model
    return {
        "meta": story.meta.model_dump(mode="json"),
        "userStory": {
            "id": story.id,
            "original": story.original_text,
            "optimised": optimised_text(story) or None,
            "structured": structured.model_dump(mode="json") if structured else None,
        },
        "analysis": {
            "overallScore": story.overall_score,
            "summary": story.analysis_summary,
            "issuesByCategory": story.issues_by_category,
            "relevantFindings": [f.model_dump(mode="json") for f in story.relevant_findings()],
            "criticalFindings": [f.model_dump(mode="json") for f in flagged_findings(story)],
        },
        "stageResults": [r.model_dump(mode="json") for r in story.stage_results],
        "acceptanceCriteria": [
            {
                "id": c.id,
                "title": c.title,
                "given": c.given,
                "when": c.when,
                "then": c.then,
                "notes": c.notes,
                "type": c.type,
                "priority": c.priority,
            }
            for c in story.final_criteria()
        ],
        "coverage": story.coverage,
        "decisions": {
            "summary": decision_counts(story),
            "details": [d.model_dump(mode="json") for d in story.decisions],
        },
        "versionHistory": [e.model_dump(mode="json") for e in story.version_history],
    }


def export_story(story: Story, format_type: str) -> Tuple[str, str, str]:
    """
    Export a story in the requested format.

    Args:
        story: Story to export
        format_type: ``markdown`` or ``json``

    Returns:
        Tuple of (content, mimetype, filename)

    Raises:
        ValidationError: If the format is not supported
    """
    format_type = (format_type or "").lower()
    if format_type not in EXPORT_FORMATS:
        raise ValidationError(
            f"Unsupported export format: {format_type}. Supported formats: {', '.join(EXPORT_FORMATS)}",
            details={"format": format_type, "supported_formats": list(EXPORT_FORMATS)}
        )

    if format_type == "markdown":
        content = export_markdown(story)
    else:
        content = json.dumps(export_json(story), ensure_ascii=False, indent=2)

    mimetype, _ = EXPORT_FORMATS[format_type]
    logger.info(f"Exported story {story.id} as {format_type}")
    return content, mimetype, export_filename(story, format_type)
