"""
Shared helpers for route handlers and services.
"""

import logging
from typing import Dict, Any, Optional

from flask import request

from ..utils.errors import ValidationError
from ..utils.repository import StoryRepository, create_story_repository

logger = logging.getLogger(__name__)

_story_repository: Optional[StoryRepository] = None


def get_story_repository() -> StoryRepository:
    """Get or create the process-wide story repository."""
    global _story_repository
    if _story_repository is None:
        _story_repository = create_story_repository()
        logger.info(f"Created story repository: {type(_story_repository).__name__}")
    return _story_repository


def reset_story_repository() -> None:
    global _story_repository
    _story_repository = None


def get_json_body(required: bool = True) -> Dict[str, Any]:
    """
    Read the JSON object body of the current request.

    Args:
        required: Raise if the body is missing

    Raises:
        ValidationError: If the body is missing (when required) or not an object
    """
    data = request.get_json(silent=True)
    if data is None:
        if required:
            raise ValidationError("Request body must be JSON.", details={"content_type": request.content_type})
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.", details={"type": type(data).__name__})
    return data
