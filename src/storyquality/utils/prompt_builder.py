"""
Prompt assembly for engine calls.

Builds the engine request parameter object, the context string handed to
every call, and the rendered system and user prompts.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Iterable, Tuple

from ..models import ContextSnippet, Finding, RuntimeConfig, StructuredStoryModel
from ..prompts import (
    get_template,
    format_quality_rules,
    format_vocabulary,
    format_few_shot_examples,
)

# Sent when the human marked no finding relevant
NO_FINDINGS_TEXT = "No specific findings - general quality improvement"

# Rendered in place of {{previousResults}} for the first stage
NO_PREVIOUS_RESULTS_TEXT = "None (first stage)"

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass
class EngineRequest:
    """Everything one engine call needs."""
    operation: str
    story_text: str
    prompt_version: str
    structured_story: Optional[Dict[str, Any]] = None
    context: Optional[str] = None
    relevant_findings: Optional[List[Dict[str, Any]]] = None
    previous_results: Optional[Dict[str, Any]] = None
    runtime_config: RuntimeConfig = field(default_factory=RuntimeConfig)


def build_context_string(
    snippets: Iterable[ContextSnippet] = (),
    additional_context: Optional[str] = None
) -> Optional[str]:
    """
    Join retrieved snippets and the user's additional context.

    Snippets become ``[documentName] text`` blocks separated by blank lines;
    the additional context is appended last.

    Returns:
        Context string, or None when there is nothing to send
    """
    parts = []
    for snippet in snippets or ():
        if not snippet.text.strip():
            continue
        prefix = f"[{snippet.document_name}] " if snippet.document_name else ""
        parts.append(f"{prefix}{snippet.text.strip()}")
    if additional_context and additional_context.strip():
        parts.append(additional_context.strip())
    return "\n\n".join(parts) if parts else None


def structured_story_payload(structured: Optional[StructuredStoryModel]) -> Optional[Dict[str, Any]]:
    if structured is None:
        return None
    payload = {
        "role": structured.role,
        "goal": structured.goal,
        "benefit": structured.benefit,
    }
    if structured.constraints:
        payload["constraints"] = list(structured.constraints)
    return payload


def relevant_findings_payload(findings: Iterable[Finding]) -> List[Dict[str, Any]]:
    """Serialize findings the human marked relevant (id, category, reasoning, note)."""
    payload = []
    for finding in findings:
        entry = {
            "id": finding.id,
            "category": finding.category,
            "reasoning": finding.reasoning,
        }
        if finding.user_note:
            entry["userNote"] = finding.user_note
        payload.append(entry)
    return payload


def format_relevant_findings(relevant: Optional[List[Dict[str, Any]]]) -> Tuple[str, List[str]]:
    """
    Render relevant findings for a prompt.

    Returns:
        Tuple of (rendered text, finding ids sent). With no findings the text
        is NO_FINDINGS_TEXT and the id list is empty.
    """
    if not relevant:
        return NO_FINDINGS_TEXT, []
    lines = []
    for entry in relevant:
        line = f"[{entry['id']}] {entry['category']}: {entry['reasoning']}"
        if entry.get("userNote"):
            line += f" (note: {entry['userNote']})"
        lines.append(line)
    return "\n".join(lines), [entry["id"] for entry in relevant]


def render_template(template: str, substitutions: Dict[str, str]) -> str:
    """Replace ``{{name}}`` markers; unknown markers are left untouched."""
    def _replace(match):
        name = match.group(1)
        return substitutions.get(name, match.group(0))
    return _PLACEHOLDER.sub(_replace, template)


def build_system_prompt(request: EngineRequest) -> str:
    """Render the version-pinned instruction template for a request."""
    version = request.prompt_version
    findings_text, _ = format_relevant_findings(request.relevant_findings)
    if request.previous_results:
        previous = json.dumps(request.previous_results, ensure_ascii=False, indent=2)
    else:
        previous = NO_PREVIOUS_RESULTS_TEXT
    return render_template(
        get_template(request.operation, version),
        {
            "qualityRules": format_quality_rules(version),
            "vocabulary": format_vocabulary(version),
            "fewShotExamples": format_few_shot_examples(request.operation, version),
            "previousResults": previous,
            "relevantFindings": findings_text,
        },
    )


def build_user_prompt(request: EngineRequest) -> str:
    """Story text, structured fields and context as one user prompt."""
    prompt = f"User Story:\n{request.story_text}"
    structured = request.structured_story
    if structured:
        prompt += (
            "\n\nStructured fields:"
            f"\n- Role: {structured.get('role') or 'not specified'}"
            f"\n- Goal: {structured.get('goal') or 'not specified'}"
            f"\n- Benefit: {structured.get('benefit') or 'not specified'}"
        )
        if structured.get("constraints"):
            prompt += f"\n- Constraints: {', '.join(structured['constraints'])}"
    if request.context:
        prompt += f"\n\nAdditional context:\n{request.context}"
    return prompt
