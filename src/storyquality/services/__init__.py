"""
Service layer for the User Story Quality Assistant.

Services hold the business logic between the HTTP/CLI surfaces and the
core components. They handle:
- Input validation
- Loading and saving story snapshots
- Orchestrating pipeline, decision and generator components

Services are independent of the HTTP layer and can be used by:
- Flask route handlers
- CLI commands
"""

from .story_validation_service import StoryValidationService
from .story_workflow_service import StoryWorkflowService

__all__ = [
    'StoryValidationService',
    'StoryWorkflowService',
]
