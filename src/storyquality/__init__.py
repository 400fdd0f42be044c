"""
User Story Quality Assistant

A pipeline that reviews agile user stories for ambiguity, structure and
INVEST quality, lets a human curate the findings, and produces rewrites
and Given/When/Then acceptance criteria.
"""

from .models import (
    Story,
    StructuredStoryModel,
    Finding,
    RewriteCandidate,
    AcceptanceCriterion,
    Decision,
    PipelineResult,
    RuntimeConfig,
)
from .parser import parse_user_story, calculate_completeness

__version__ = "0.1.0"

__all__ = [
    "Story",
    "StructuredStoryModel",
    "Finding",
    "RewriteCandidate",
    "AcceptanceCriterion",
    "Decision",
    "PipelineResult",
    "RuntimeConfig",
    "parse_user_story",
    "calculate_completeness",
]
