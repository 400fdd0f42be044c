"""
Story repository abstraction layer.

The core never persists on its own. Callers hand ``Story.to_snapshot()``
dictionaries to a repository when they want a story saved, and rebuild
stories with ``Story.from_snapshot()`` after loading.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Any

logger = logging.getLogger(__name__)


class StoryRepository(ABC):
    """
    Abstract interface for story snapshot storage.

    Implementations decide where snapshots live; the workflow service only
    relies on this contract.
    """

    @abstractmethod
    def save(self, snapshot: Dict[str, Any]) -> bool:
        """
        Save a story snapshot, replacing any previous snapshot with the same id.

        Args:
            snapshot: Dictionary produced by ``Story.to_snapshot()``

        Returns:
            True if successful, False otherwise
        """

    @abstractmethod
    def load(self, story_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a story snapshot.

        Args:
            story_id: Unique identifier for the story

        Returns:
            Snapshot dictionary if found, None otherwise
        """

    @abstractmethod
    def list(self, page: int = 1, per_page: int = 50,
             project_id: Optional[str] = None) -> Dict[str, Any]:
        """
        List story snapshots with pagination.

        Args:
            page: Page number (1-indexed)
            per_page: Number of items per page
            project_id: Optional project filter

        Returns:
            Dictionary with 'stories' list and 'pagination' metadata
        """

    @abstractmethod
    def delete(self, story_id: str) -> bool:
        """
        Delete a story snapshot.

        Returns:
            True if a snapshot was deleted, False otherwise
        """

    def count(self, project_id: Optional[str] = None) -> int:
        """Total number of stored stories."""
        result = self.list(page=1, per_page=1, project_id=project_id)
        return result.get("pagination", {}).get("total", 0)


class InMemoryStoryRepository(StoryRepository):
    """
    Process-local repository.

    Snapshots are deep-copied on the way in and out so callers can never
    mutate stored state by accident.
    """

    def __init__(self):
        self._stories: Dict[str, Dict[str, Any]] = {}

    def save(self, snapshot: Dict[str, Any]) -> bool:
        story_id = snapshot.get("id")
        if not story_id:
            logger.error("Refusing to save snapshot without an id")
            return False
        self._stories[story_id] = copy.deepcopy(snapshot)
        return True

    def load(self, story_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self._stories.get(story_id)
        return copy.deepcopy(snapshot) if snapshot is not None else None

    def list(self, page: int = 1, per_page: int = 50,
             project_id: Optional[str] = None) -> Dict[str, Any]:
        stories = [
            s for s in self._stories.values()
            if project_id is None or s.get("meta", {}).get("project_id") == project_id
        ]
        stories.sort(key=lambda s: s.get("updated_at", ""), reverse=True)

        total = len(stories)
        page = max(1, page)
        per_page = max(1, per_page)
        start = (page - 1) * per_page
        items = [
            {
                "id": s["id"],
                "current_text": s.get("current_text", ""),
                "overall_score": s.get("overall_score"),
                "updated_at": s.get("updated_at"),
            }
            for s in stories[start:start + per_page]
        ]
        return {
            "stories": items,
            "pagination": {
                "page": page,
                "per_page": per_page,
                "total": total,
                "total_pages": (total + per_page - 1) // per_page,
            },
        }

    def delete(self, story_id: str) -> bool:
        return self._stories.pop(story_id, None) is not None


def create_story_repository() -> StoryRepository:
    """Create the repository used by the application."""
    return InMemoryStoryRepository()
