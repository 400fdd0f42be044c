"""
Version history for a story.

Entries are appended, never edited or removed. Each entry snapshots the
story text and structured model at the moment of the change.
"""

import difflib
import logging
from typing import TYPE_CHECKING, Dict, Any, List, Optional

from .models import VersionHistoryEntry

if TYPE_CHECKING:
    from .models import Story

logger = logging.getLogger(__name__)


class VersionHistory:
    """Append-only view over ``Story.version_history``."""

    def __init__(self, story: "Story"):
        self.story = story

    def append(self, action: str, description: str = "") -> VersionHistoryEntry:
        """
        Snapshot the story's current text and structured model.

        Args:
            action: One of initial, rewrite_accepted, manual_edit, criteria_added
            description: Human-readable description of the change

        Returns:
            The new entry
        """
        model = self.story.structured_model
        entry = VersionHistoryEntry(
            story_text_at_time=self.story.current_text,
            structured_model_at_time=model.model_copy(deep=True) if model else None,
            action=action,
            description=description,
        )
        self.story.version_history.append(entry)
        self.story.touch()
        logger.debug(f"Recorded {action} version for story {self.story.id}")
        return entry

    @property
    def entries(self) -> List[VersionHistoryEntry]:
        return list(self.story.version_history)

    def latest(self) -> Optional[VersionHistoryEntry]:
        return self.story.version_history[-1] if self.story.version_history else None

    def get(self, entry_id: str) -> Optional[VersionHistoryEntry]:
        return next((e for e in self.story.version_history if e.id == entry_id), None)

    def compare(self, from_id: str, to_id: str) -> Dict[str, Any]:
        """
        Compare the text of two versions.

        Args:
            from_id: Older entry id
            to_id: Newer entry id

        Returns:
            Dict with both ids, a unified diff and whether the text changed

        Raises:
            KeyError: If either entry is unknown
        """
        older = self.get(from_id)
        newer = self.get(to_id)
        if older is None or newer is None:
            missing = from_id if older is None else to_id
            raise KeyError(f"Unknown version: {missing}")

        diff = list(difflib.unified_diff(
            older.story_text_at_time.splitlines(),
            newer.story_text_at_time.splitlines(),
            fromfile=older.id,
            tofile=newer.id,
            lineterm="",
        ))
        return {
            "from_version": older.id,
            "to_version": newer.id,
            "changed": older.story_text_at_time != newer.story_text_at_time,
            "diff": diff,
        }
