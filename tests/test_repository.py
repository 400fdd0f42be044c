"""
Tests for story repository implementations.
"""

import pytest

from storyquality.api.helpers import get_story_repository, reset_story_repository
from storyquality.utils.repository import InMemoryStoryRepository


@pytest.fixture
def sample_snapshot():
    """Sample story snapshot for testing."""
    return {
        "id": "story_test123",
        "original_text": "Als Nutzer möchte ich suchen.",
        "current_text": "Als Nutzer möchte ich suchen.",
        "overall_score": 80,
        "meta": {"project_id": "PRJ-1"},
        "updated_at": "2024-01-01T00:00:00",
    }


class TestInMemoryRepository:
    """Test suite for InMemoryStoryRepository."""

    def test_save_and_load(self, repository, sample_snapshot):
        assert repository.save(sample_snapshot) is True
        assert repository.load("story_test123") == sample_snapshot
        assert repository.load("story_other") is None

    def test_snapshots_are_copies(self, repository, sample_snapshot):
        repository.save(sample_snapshot)
        sample_snapshot["meta"]["project_id"] = "changed"

        loaded = repository.load("story_test123")
        loaded["current_text"] = "mutated"

        stored = repository.load("story_test123")
        assert stored["meta"]["project_id"] == "PRJ-1"
        assert stored["current_text"] == "Als Nutzer möchte ich suchen."

    def test_save_without_id(self, repository):
        assert repository.save({"current_text": "x"}) is False
        assert repository.count() == 0

    def test_list_with_pagination(self, repository, sample_snapshot):
        """Newest first, paged and summarized."""
        for i in range(5):
            snapshot = dict(sample_snapshot, id=f"story_{i}", updated_at=f"2024-01-0{i + 1}T00:00:00")
            repository.save(snapshot)

        result = repository.list(page=1, per_page=2)

        assert [s["id"] for s in result["stories"]] == ["story_4", "story_3"]
        assert set(result["stories"][0]) == {"id", "current_text", "overall_score", "updated_at"}
        assert result["pagination"] == {"page": 1, "per_page": 2, "total": 5, "total_pages": 3}
        assert [s["id"] for s in repository.list(page=3, per_page=2)["stories"]] == ["story_0"]

    def test_list_by_project(self, repository, sample_snapshot):
        repository.save(sample_snapshot)
        repository.save(dict(sample_snapshot, id="story_other", meta={"project_id": "PRJ-2"}))

        assert repository.count(project_id="PRJ-2") == 1
        assert repository.count() == 2

    def test_delete(self, repository, sample_snapshot):
        repository.save(sample_snapshot)

        assert repository.delete("story_test123") is True
        assert repository.delete("story_test123") is False
        assert repository.load("story_test123") is None


class TestDefaultRepository:
    """Test the process-wide repository."""

    def teardown_method(self):
        reset_story_repository()

    def test_default_is_shared(self):
        reset_story_repository()
        first = get_story_repository()

        assert isinstance(first, InMemoryStoryRepository)
        assert get_story_repository() is first

        reset_story_repository()
        assert get_story_repository() is not first
