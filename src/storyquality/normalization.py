"""
Normalization of engine responses into the canonical story models.

The reasoning engine answers with free-form strings for categories,
severities and confidence levels. Everything is mapped onto the closed
vocabularies in ``storyquality.models`` here, so the rest of the package
never sees an unknown value.
"""

import logging
from typing import Dict, Any, Optional, List, Iterable, Set

from .models import (
    ISSUE_CATEGORIES,
    SEVERITIES,
    CONFIDENCE_LEVELS,
    AFFECTED_SECTIONS,
    CRITERION_TYPES,
    CRITERION_PRIORITIES,
    Finding,
    RewriteCandidate,
    RewriteChange,
    AcceptanceCriterion,
    StructuredStoryModel,
)

logger = logging.getLogger(__name__)

# Older engine vocabulary mapped onto current categories
CATEGORY_ALIASES = {
    "completeness": "missing_context",
    "clarity": "vague_language",
    "testability": "not_testable",
    "scope": "too_broad_scope",
    "consistency": "inconsistency",
}

SEVERITY_ALIASES = {
    "high": "major",
    "medium": "minor",
    "low": "info",
    "error": "major",
    "warning": "minor",
}

# Id prefixes per stage, used when the engine omits or repeats an id
STAGE_ID_PREFIXES = {
    "ambiguity_analysis": "amb",
    "structure_check": "struct",
    "quality_check": "qual",
    "business_value": "bv",
    "solution_bias": "sb",
    "acceptance_criteria": "ac",
    "analyze": "issue",
    "rewrite": "rw",
}

# Stage-specific fields that carry a suggested fix
_SUGGESTION_FIELDS = ("suggestedAction", "suggestedBenefit", "alternativeFormulation")


def _key(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def normalize_category(value: Any) -> str:
    """Map a raw category onto ISSUE_CATEGORIES; unknown values become ``other``."""
    key = _key(value)
    if key in ISSUE_CATEGORIES:
        return key
    return CATEGORY_ALIASES.get(key, "other")


def normalize_severity(value: Any) -> str:
    """Map a raw severity onto SEVERITIES; unknown values become ``info``."""
    key = _key(value)
    if key in SEVERITIES:
        return key
    return SEVERITY_ALIASES.get(key, "info")


def normalize_confidence(value: Any) -> str:
    """Map a raw confidence onto CONFIDENCE_LEVELS; unknown values become ``medium``."""
    key = _key(value)
    return key if key in CONFIDENCE_LEVELS else "medium"


def normalize_affected_section(value: Any) -> str:
    key = _key(value)
    return key if key in AFFECTED_SECTIONS else "overall"


def normalize_criterion_type(value: Any) -> str:
    key = _key(value)
    return key if key in CRITERION_TYPES else "happy_path"


def normalize_criterion_priority(value: Any) -> str:
    key = _key(value)
    return key if key in CRITERION_PRIORITIES else "should"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [_text(item) for item in value if _text(item)]


def assign_id(raw_id: Any, prefix: str, seen_ids: Set[str]) -> str:
    """
    Keep the engine's id if it is non-empty and unused, otherwise generate one.

    Args:
        raw_id: Id proposed by the engine (may be missing)
        prefix: Prefix for generated ids
        seen_ids: Ids already taken in this run; updated in place

    Returns:
        An id not previously in ``seen_ids``
    """
    candidate = _text(raw_id)
    if not candidate or candidate in seen_ids:
        counter = len(seen_ids) + 1
        candidate = f"{prefix}_{counter}"
        while candidate in seen_ids:
            counter += 1
            candidate = f"{prefix}_{counter}"
    seen_ids.add(candidate)
    return candidate


def normalize_finding(raw: Dict[str, Any], stage: str, seen_ids: Set[str]) -> Finding:
    """
    Build a Finding from one raw engine issue.

    The legacy analyze format only carries ``message``; it is used as both
    text reference and reasoning.
    """
    message = _text(raw.get("message"))
    suggestion = None
    for field in _SUGGESTION_FIELDS:
        suggestion = _optional_text(raw.get(field))
        if suggestion:
            break

    return Finding(
        id=assign_id(raw.get("id"), STAGE_ID_PREFIXES.get(stage, "finding"), seen_ids),
        stage=stage,
        category=normalize_category(raw.get("category")),
        severity=normalize_severity(raw.get("severity")),
        affected_section=normalize_affected_section(raw.get("affectedSection")),
        text_reference=_text(raw.get("textReference")) or message,
        reasoning=_text(raw.get("reasoning")) or message,
        clarification_question=_optional_text(raw.get("clarificationQuestion")),
        suggested_action=suggestion,
        confidence=normalize_confidence(raw.get("confidence")),
    )


def normalize_findings(
    raw_issues: Iterable[Any],
    stage: str,
    seen_ids: Optional[Set[str]] = None
) -> List[Finding]:
    """
    Normalize a list of raw engine issues.

    Non-dict entries are skipped with a warning.

    Args:
        raw_issues: The ``issues`` array from an engine response
        stage: Stage or operation that produced them
        seen_ids: Ids already used in this run (shared across stages)

    Returns:
        List of Finding objects with unique ids
    """
    if seen_ids is None:
        seen_ids = set()
    findings = []
    for raw in raw_issues or []:
        if not isinstance(raw, dict):
            logger.warning(f"Skipping malformed issue from {stage}: {raw!r}")
            continue
        findings.append(normalize_finding(raw, stage, seen_ids))
    return findings


def normalize_structured_model(raw: Any) -> Optional[StructuredStoryModel]:
    """Build a StructuredStoryModel from a ``structuredModel`` response block."""
    if not isinstance(raw, dict):
        return None
    constraints = _string_list(raw.get("constraints"))
    return StructuredStoryModel(
        role=_text(raw.get("role")),
        goal=_text(raw.get("goal")),
        benefit=_text(raw.get("benefit")),
        constraints=constraints or None,
        parse_confidence=normalize_confidence(raw.get("parseConfidence")),
    )


def normalize_candidate(
    raw: Dict[str, Any],
    seen_ids: Set[str],
    known_finding_ids: Optional[Set[str]] = None
) -> Optional[RewriteCandidate]:
    """
    Build a RewriteCandidate from one raw engine candidate.

    Addressed finding ids not in ``known_finding_ids`` are dropped. Returns
    None when the candidate carries no text.
    """
    text = _text(raw.get("text")) or _text(raw.get("suggestedText"))
    if not text:
        logger.warning(f"Skipping rewrite candidate without text: {raw.get('id')!r}")
        return None

    explanation = _text(raw.get("explanation"))
    if not explanation:
        explanation = ", ".join(_string_list(raw.get("improvements")))

    addressed = _string_list(raw.get("addressedIssueIds"))
    if known_finding_ids is not None:
        addressed = [fid for fid in addressed if fid in known_finding_ids]

    changes = []
    for change in raw.get("changes") or []:
        if isinstance(change, dict):
            changes.append(RewriteChange(
                type=_text(change.get("type")) or "modified",
                description=_text(change.get("description")),
            ))

    return RewriteCandidate(
        id=assign_id(raw.get("id"), STAGE_ID_PREFIXES["rewrite"], seen_ids),
        suggested_text=text,
        explanation=explanation,
        addressed_finding_ids=addressed,
        changes=changes,
        confidence=normalize_confidence(raw.get("confidence")),
        open_questions=_string_list(raw.get("openQuestions")),
    )


def normalize_criterion(raw: Dict[str, Any], seen_ids: Set[str]) -> AcceptanceCriterion:
    """Build an AcceptanceCriterion from one raw engine criterion."""
    return AcceptanceCriterion(
        id=assign_id(raw.get("id"), STAGE_ID_PREFIXES["acceptance_criteria"], seen_ids),
        title=_text(raw.get("title")),
        given=_text(raw.get("given")),
        when=_text(raw.get("when")),
        then=_text(raw.get("then")),
        notes=_optional_text(raw.get("notes")),
        type=normalize_criterion_type(raw.get("type")),
        priority=normalize_criterion_priority(raw.get("priority")),
        confidence=normalize_confidence(raw.get("confidence")),
    )


def normalize_criteria(raw_criteria: Iterable[Any], seen_ids: Optional[Set[str]] = None) -> List[AcceptanceCriterion]:
    if seen_ids is None:
        seen_ids = set()
    return [
        normalize_criterion(raw, seen_ids)
        for raw in raw_criteria or []
        if isinstance(raw, dict)
    ]
