"""
Heuristic structural parser for user stories.

Extracts role, goal and benefit from free text without calling the engine.
German "Als ... möchte ich ..., damit ..." phrasing is tried first; the
English "As a ... I want ... so that ..." phrasing is only used when neither
a German role nor a German goal was found.
"""

import re
import logging
from typing import Optional, List

from .models import StructuredStoryModel
from .utils.llm_constants import COMPLETENESS_WEIGHTS

logger = logging.getLogger(__name__)

ROLE_PLACEHOLDER = "Nicht erkannt"
GOAL_PLACEHOLDER = "Nicht erkannt"
BENEFIT_PLACEHOLDER = "Nicht angegeben"

GERMAN_PATTERNS = {
    "role": re.compile(
        r"\bals\s+(?:ein(?:e|er|em|en)?\s+)?(.+?)(?:\s+möchte|\s+will|\s+wünsche|\s+brauche)",
        re.IGNORECASE,
    ),
    "goal": re.compile(
        r"(?:möchte ich|will ich|wünsche ich|brauche ich)\s+(.+?)"
        r"(?:\s*,?\s*damit|\s*,?\s*um\s+zu|\s*,?\s*sodass|\s*\.|$)",
        re.IGNORECASE,
    ),
    "benefit": re.compile(r"(?:damit|um zu|sodass)\s+(.+?)(?:\.|$)", re.IGNORECASE),
}

ENGLISH_PATTERNS = {
    "role": re.compile(
        r"\bas\s+(?:(?:an|a)\s+)?(.+?)(?:\s*,?\s*i\s+want|\s*,?\s*i\s+need|\s*,?\s*i\s+would\s+like)",
        re.IGNORECASE,
    ),
    "goal": re.compile(
        r"(?:i\s+want|i\s+need|i\s+would\s+like)\s+(?:to\s+)?(.+?)"
        r"(?:\s*,?\s*so\s+that|\s*,?\s*in\s+order\s+to|\s*\.|$)",
        re.IGNORECASE,
    ),
    "benefit": re.compile(r"(?:so\s+that|in\s+order\s+to)\s+(.+?)(?:\.|$)", re.IGNORECASE),
}

CONSTRAINT_PATTERNS = [
    re.compile(r"(?:aber|jedoch|allerdings)\s+(.+?)(?:\.|$)", re.IGNORECASE),
    re.compile(r"(?:außer|ausgenommen)\s+(.+?)(?:\.|$)", re.IGNORECASE),
    re.compile(r"(?:nicht|ohne)\s+(.+?)(?:\.|$)", re.IGNORECASE),
]

_TRAILING_PUNCTUATION = re.compile(r"[,;:]+$")
_WHITESPACE = re.compile(r"\s+")


def clean_extracted_text(text: str) -> str:
    """Remove trailing ``,;:`` and collapse whitespace."""
    text = _TRAILING_PUNCTUATION.sub("", text.strip())
    return _WHITESPACE.sub(" ", text).strip()


def _match_group(pattern: re.Pattern, text: str) -> str:
    match = pattern.search(text)
    if not match or match.group(1) is None:
        return ""
    return match.group(1).strip()


def extract_constraints(text: str) -> Optional[List[str]]:
    """
    Collect constraint clauses in pattern order.

    Args:
        text: Story text

    Returns:
        Deduplicated constraint list, or None if none were found
    """
    constraints: List[str] = []
    for pattern in CONSTRAINT_PATTERNS:
        for match in pattern.finditer(text):
            constraint = clean_extracted_text(match.group(1))
            if constraint and constraint not in constraints:
                constraints.append(constraint)
    return constraints or None


def parse_user_story(text: str) -> Optional[StructuredStoryModel]:
    """
    Parse a user story into role/goal/benefit/constraints.

    Missing fields are filled with the placeholders ``Nicht erkannt`` (role,
    goal) and ``Nicht angegeben`` (benefit).

    Args:
        text: Free-form story text

    Returns:
        StructuredStoryModel, or None when no structure was detected
    """
    normalized = (text or "").strip()
    if not normalized:
        return None

    german_role = _match_group(GERMAN_PATTERNS["role"], normalized)
    german_goal = _match_group(GERMAN_PATTERNS["goal"], normalized)

    if german_role or german_goal:
        patterns = GERMAN_PATTERNS
        role, goal = german_role, german_goal
    else:
        patterns = ENGLISH_PATTERNS
        role = _match_group(patterns["role"], normalized)
        goal = _match_group(patterns["goal"], normalized)
    benefit = _match_group(patterns["benefit"], normalized)

    role = clean_extracted_text(role)
    goal = clean_extracted_text(goal)
    benefit = clean_extracted_text(benefit)

    if not role and not goal and not benefit:
        logger.debug("No story structure detected")
        return None

    warnings = []
    if not role:
        warnings.append("Role not recognized")
    if not goal:
        warnings.append("Goal not recognized")
    if not benefit:
        warnings.append("Benefit not stated")

    found = sum(1 for value in (role, goal, benefit) if value)
    if found == 3:
        confidence = "high"
    elif found == 2:
        confidence = "medium"
    else:
        confidence = "low"

    return StructuredStoryModel(
        role=role or ROLE_PLACEHOLDER,
        goal=goal or GOAL_PLACEHOLDER,
        benefit=benefit or BENEFIT_PLACEHOLDER,
        constraints=extract_constraints(normalized),
        parse_confidence=confidence,
        parse_warnings=warnings,
    )


def calculate_completeness(structured: Optional[StructuredStoryModel]) -> int:
    """Weighted completeness score (role 35, goal 40, benefit 25)."""
    if structured is None:
        return 0
    score = 0
    if structured.role and structured.role != ROLE_PLACEHOLDER:
        score += COMPLETENESS_WEIGHTS["role"]
    if structured.goal and structured.goal != GOAL_PLACEHOLDER:
        score += COMPLETENESS_WEIGHTS["goal"]
    if structured.benefit and structured.benefit != BENEFIT_PLACEHOLDER:
        score += COMPLETENESS_WEIGHTS["benefit"]
    return score
