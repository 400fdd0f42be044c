"""
Story validation service.

Handles all input validation for story operations, including:
- Story text and additional context validation
- Context snippet payloads
- Finding curation and criterion edit payloads
- Analysis mode, export format and pagination parameters
"""

import logging
from typing import Dict, Any, Optional, List, Tuple

from ..exports import EXPORT_FORMATS
from ..models import EDITABLE_CRITERION_FIELDS, CRITERION_TYPES, CRITERION_PRIORITIES, ContextSnippet
from ..prompts import available_versions
from ..utils.errors import ValidationError
from ..utils.llm_constants import MAX_STORY_TEXT_LENGTH, MAX_ADDITIONAL_CONTEXT_LENGTH

logger = logging.getLogger(__name__)

ANALYSIS_MODES = ("pipeline", "analyze")


class StoryValidationService:
    """Service for validating story input parameters."""

    MAX_NOTE_LENGTH = 2000
    MAX_SNIPPETS = 20

    def validate_story_text(self, text: Any, field: str = "text") -> str:
        """
        Validate story text.

        Args:
            text: Raw text from the request
            field: Field name reported in error details

        Returns:
            Stripped text

        Raises:
            ValidationError: If text is missing, empty or too long
        """
        if text is None or not isinstance(text, str):
            raise ValidationError(
                "Story text is required.",
                details={"field": field}
            )
        text = text.strip()
        if not text:
            raise ValidationError(
                "Story text cannot be empty.",
                details={"field": field}
            )
        if len(text) > MAX_STORY_TEXT_LENGTH:
            raise ValidationError(
                f"Story text is too long (maximum {MAX_STORY_TEXT_LENGTH} characters).",
                details={
                    "field": field,
                    "length": len(text),
                    "max_length": MAX_STORY_TEXT_LENGTH
                }
            )
        return text

    def validate_additional_context(self, context: Any) -> Optional[str]:
        if context is None:
            return None
        if not isinstance(context, str):
            raise ValidationError(
                "Additional context must be a string if provided.",
                details={"field": "additional_context", "type": type(context).__name__}
            )
        context = context.strip()
        if len(context) > MAX_ADDITIONAL_CONTEXT_LENGTH:
            raise ValidationError(
                f"Additional context is too long (maximum {MAX_ADDITIONAL_CONTEXT_LENGTH} characters).",
                details={
                    "field": "additional_context",
                    "length": len(context),
                    "max_length": MAX_ADDITIONAL_CONTEXT_LENGTH
                }
            )
        return context or None

    def validate_context_snippets(self, snippets: Any) -> List[ContextSnippet]:
        """
        Validate retrieved context snippets.

        Accepts dicts with ``text`` and optional ``document_name`` /
        ``documentName`` and ``relevance_score`` / ``relevanceScore``.
        """
        if snippets is None:
            return []
        if not isinstance(snippets, list):
            raise ValidationError(
                "Context snippets must be a list.",
                details={"field": "context_snippets", "type": type(snippets).__name__}
            )
        if len(snippets) > self.MAX_SNIPPETS:
            raise ValidationError(
                f"Too many context snippets (maximum {self.MAX_SNIPPETS}).",
                details={"field": "context_snippets", "count": len(snippets), "max_count": self.MAX_SNIPPETS}
            )

        validated = []
        for index, raw in enumerate(snippets):
            if not isinstance(raw, dict) or not isinstance(raw.get("text"), str) or not raw["text"].strip():
                raise ValidationError(
                    "Each context snippet needs a non-empty 'text'.",
                    details={"field": f"context_snippets[{index}]"}
                )
            score = raw.get("relevance_score", raw.get("relevanceScore"))
            if score is not None and (isinstance(score, bool) or not isinstance(score, (int, float))):
                raise ValidationError(
                    "Snippet relevance score must be a number.",
                    details={"field": f"context_snippets[{index}].relevance_score"}
                )
            validated.append(ContextSnippet(
                text=raw["text"],
                document_name=raw.get("document_name") or raw.get("documentName"),
                relevance_score=score,
            ))
        return validated

    def validate_analysis_mode(self, mode: Any) -> str:
        mode = mode or "pipeline"
        if mode not in ANALYSIS_MODES:
            raise ValidationError(
                f"Invalid analysis mode: {mode}. Must be one of: {', '.join(ANALYSIS_MODES)}",
                details={"field": "mode", "allowed": list(ANALYSIS_MODES)}
            )
        return mode

    def validate_prompt_version(self, version: Any) -> Optional[str]:
        if version is None:
            return None
        if version not in available_versions():
            raise ValidationError(
                f"Unknown prompt version: {version}.",
                details={"field": "prompt_version", "available_versions": available_versions()}
            )
        return version

    def validate_finding_decision(self, payload: Dict[str, Any]) -> Tuple[Optional[bool], Optional[str]]:
        """
        Validate a finding curation payload.

        Returns:
            Tuple of (relevant, note). ``relevant`` is None for a note-only update.

        Raises:
            ValidationError: If neither field is usable
        """
        relevant = payload.get("relevant")
        if relevant is not None and not isinstance(relevant, bool):
            raise ValidationError(
                "'relevant' must be true or false.",
                details={"field": "relevant", "type": type(relevant).__name__}
            )
        note = payload.get("note")
        if note is not None:
            if not isinstance(note, str):
                raise ValidationError(
                    "'note' must be a string.",
                    details={"field": "note", "type": type(note).__name__}
                )
            if len(note) > self.MAX_NOTE_LENGTH:
                raise ValidationError(
                    f"Note is too long (maximum {self.MAX_NOTE_LENGTH} characters).",
                    details={"field": "note", "length": len(note), "max_length": self.MAX_NOTE_LENGTH}
                )
        if relevant is None and note is None:
            raise ValidationError(
                "Provide 'relevant', 'note' or both.",
                details={"fields": ["relevant", "note"]}
            )
        return relevant, note

    def validate_edited_text(self, edited_text: Any) -> Optional[str]:
        if edited_text is None:
            return None
        return self.validate_story_text(edited_text, field="edited_text")

    def validate_criterion_edits(self, edits: Any) -> Optional[Dict[str, Any]]:
        """Validate criterion field overrides."""
        if edits is None:
            return None
        if not isinstance(edits, dict):
            raise ValidationError(
                "'edits' must be an object.",
                details={"field": "edits", "type": type(edits).__name__}
            )
        unknown = [key for key in edits if key not in EDITABLE_CRITERION_FIELDS]
        if unknown:
            raise ValidationError(
                f"Unknown criterion fields: {', '.join(unknown)}",
                details={"field": "edits", "unknown": unknown, "allowed": list(EDITABLE_CRITERION_FIELDS)}
            )
        for key, value in edits.items():
            if value is not None and not isinstance(value, str):
                raise ValidationError(
                    f"Criterion field '{key}' must be a string.",
                    details={"field": f"edits.{key}"}
                )
        edits = {key: value for key, value in edits.items() if value is not None}
        if "type" in edits and edits["type"] not in CRITERION_TYPES:
            raise ValidationError(
                f"Invalid criterion type: {edits['type']}",
                details={"field": "edits.type", "allowed": list(CRITERION_TYPES)}
            )
        if "priority" in edits and edits["priority"] not in CRITERION_PRIORITIES:
            raise ValidationError(
                f"Invalid criterion priority: {edits['priority']}",
                details={"field": "edits.priority", "allowed": list(CRITERION_PRIORITIES)}
            )
        return edits or None

    def validate_export_format(self, format_type: Any) -> str:
        format_type = (format_type or "markdown").lower()
        if format_type not in EXPORT_FORMATS:
            raise ValidationError(
                f"Unsupported export format: {format_type}",
                details={"field": "format", "supported_formats": list(EXPORT_FORMATS)}
            )
        return format_type

    def validate_pagination(self, page: Any, per_page: Any, max_per_page: int = 100) -> Tuple[int, int]:
        """
        Validate pagination parameters.

        Raises:
            ValidationError: If either value is not a positive integer in range
        """
        try:
            page = int(page) if page is not None else 1
            per_page = int(per_page) if per_page is not None else 50
        except (TypeError, ValueError):
            raise ValidationError(
                "Pagination parameters must be integers.",
                details={"page": page, "per_page": per_page}
            )
        if page < 1:
            raise ValidationError("Page must be at least 1.", details={"page": page})
        if per_page < 1 or per_page > max_per_page:
            raise ValidationError(
                f"per_page must be between 1 and {max_per_page}.",
                details={"per_page": per_page, "max_per_page": max_per_page}
            )
        return page, per_page
