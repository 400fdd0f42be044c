"""
Utility modules for the User Story Quality Assistant.

Modules:
- errors: API error hierarchy and Flask error handlers
- llm: Engine client interface and response parsing
- llm_constants: Engine defaults, retry and scoring constants
- prompt_builder: Engine request and prompt assembly
- repository: Story snapshot storage contract
"""

from .errors import (
    APIError,
    ValidationError,
    NotFoundError,
    RateLimitError,
    ServiceUnavailableError,
    StageInvocationError,
)
from .llm import BaseLLMClient, strip_code_fences, parse_json_response

__all__ = [
    "APIError",
    "ValidationError",
    "NotFoundError",
    "RateLimitError",
    "ServiceUnavailableError",
    "StageInvocationError",
    "BaseLLMClient",
    "strip_code_fences",
    "parse_json_response",
]
