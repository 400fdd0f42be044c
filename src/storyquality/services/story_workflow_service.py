"""
Story workflow service.

Orchestrates one story through the review workflow:
- Creating stories and replacing or editing their text
- Running the analysis pipeline (or legacy single-shot analysis)
- Curating findings
- Generating, accepting and rejecting rewrites and acceptance criteria
- Version history, comparison and export

The service is the single writer of a story. It loads the snapshot, applies
one operation and saves the snapshot back to the repository.
"""

import logging
from typing import Dict, Any, Optional, Callable, Iterable, List, Tuple, TYPE_CHECKING

from ..decisions import DecisionTracker
from ..exports import export_story
from ..generators import CriteriaGenerator, RewriteGenerator
from ..history import VersionHistory
from ..invoker import StageInvoker
from ..models import (
    AcceptanceCriterion,
    ContextSnippet,
    Decision,
    PipelineResult,
    RewriteCandidate,
    RuntimeConfig,
    Story,
    create_timestamp,
)
from ..normalization import assign_id
from ..parser import parse_user_story
from ..pipeline import PipelineRunner, StageCallback
from ..utils.errors import NotFoundError, ServiceUnavailableError, ValidationError
from ..utils.llm_constants import LOG_PREVIEW_CHARS
from ..api.helpers import get_story_repository
from .story_validation_service import StoryValidationService

if TYPE_CHECKING:
    from ..utils.repository import StoryRepository

logger = logging.getLogger(__name__)


def _keep_decided(items: list) -> list:
    """Items a human already decided on; pending ones are replaced on regeneration."""
    return [item for item in items if item.status != "pending"]


class StoryWorkflowService:
    """Service for the story review workflow."""

    def __init__(
        self,
        repository: Optional['StoryRepository'] = None,
        invoker_factory: Optional[Callable[[], StageInvoker]] = None,
        runtime_config: Optional[RuntimeConfig] = None
    ):
        """
        Initialize story workflow service.

        Args:
            repository: Story repository instance (uses get_story_repository() if None)
            invoker_factory: Factory returning the StageInvoker for engine calls
            runtime_config: Engine settings (read from the environment if None)
        """
        self._repository = repository
        self._invoker_factory = invoker_factory or StageInvoker
        self._runtime_config = runtime_config
        self.validation_service = StoryValidationService()

    @property
    def repository(self) -> 'StoryRepository':
        """Get story repository instance."""
        if self._repository is None:
            return get_story_repository()
        return self._repository

    @property
    def runtime_config(self) -> RuntimeConfig:
        if self._runtime_config is None:
            self._runtime_config = RuntimeConfig.from_env()
        return self._runtime_config

    def _resolve_config(self, prompt_version: Optional[str] = None) -> RuntimeConfig:
        if prompt_version:
            return self.runtime_config.model_copy(update={"prompt_version": prompt_version})
        return self.runtime_config

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def get_story(self, story_id: str) -> Story:
        """
        Load a story by ID.

        Raises:
            NotFoundError: If story not found
        """
        snapshot = self.repository.load(story_id)
        if not snapshot:
            raise NotFoundError("Story", story_id)
        return Story.from_snapshot(snapshot)

    def _save(self, story: Story) -> Story:
        story.touch()
        if not self.repository.save(story.to_snapshot()):
            logger.error(f"Failed to save story {story.id}")
            raise ServiceUnavailableError("storage", "Failed to save story. Please try again.")
        return story

    def list_stories(self, page: int = 1, per_page: int = 50, project_id: Optional[str] = None) -> Dict[str, Any]:
        page, per_page = self.validation_service.validate_pagination(page, per_page)
        return self.repository.list(page=page, per_page=per_page, project_id=project_id)

    def delete_story(self, story_id: str) -> bool:
        if not self.repository.delete(story_id):
            raise NotFoundError("Story", story_id)
        logger.info(f"Deleted story {story_id}")
        return True

    # ------------------------------------------------------------------
    # Story text
    # ------------------------------------------------------------------

    def create_story(self, text: Any, project_id: Optional[str] = None) -> Story:
        """
        Create a story from the first human input.

        Raises:
            ValidationError: If text is empty or too long
        """
        text = self.validation_service.validate_story_text(text)
        story = Story.create(text, project_id=project_id)
        story.meta.prompt_version = self.runtime_config.prompt_version
        story.meta.model_id = self.runtime_config.model_id
        logger.info(f"Created story {story.id}: {text[:LOG_PREVIEW_CHARS]}...")
        return self._save(story)

    def replace_original_text(self, story_id: str, text: Any) -> Story:
        """Replace the original text, resetting all derived state."""
        text = self.validation_service.validate_story_text(text)
        story = self.get_story(story_id)
        story.set_original_text(text)
        logger.info(f"Replaced original text of story {story_id}")
        return self._save(story)

    def edit_current_text(self, story_id: str, text: Any) -> Story:
        """
        Manually edit the current text.

        Clears the rewrite selection (the selected candidate returns to
        pending) and records a manual_edit version.
        """
        text = self.validation_service.validate_story_text(text)
        story = self.get_story(story_id)

        if story.selected_rewrite_id:
            selected = story.get_candidate(story.selected_rewrite_id)
            if selected is not None:
                selected.status = "pending"
                selected.edited_text = None
            story.selected_rewrite_id = None

        story.current_text = text
        parsed = parse_user_story(text)
        if parsed is not None:
            story.structured_model = parsed
        VersionHistory(story).append("manual_edit", "Story text edited manually")
        return self._save(story)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_story(
        self,
        story_id: str,
        mode: str = "pipeline",
        context_snippets: Iterable[ContextSnippet] = (),
        additional_context: Optional[str] = None,
        prompt_version: Optional[str] = None,
        on_stage_complete: Optional[StageCallback] = None
    ) -> Tuple[Story, PipelineResult]:
        """
        Analyse the story's current text.

        Args:
            story_id: Story identifier
            mode: ``pipeline`` (all stages) or ``analyze`` (legacy single call)
            context_snippets: Retrieved context passages
            additional_context: Free-form user context
            prompt_version: Prompt registry version override
            on_stage_complete: Progress callback for pipeline mode

        Returns:
            Tuple of (updated story, pipeline result)

        Raises:
            NotFoundError: If story not found
            ValidationError: If the mode or prompt version is invalid
            StageInvocationError: If legacy analysis fails
        """
        mode = self.validation_service.validate_analysis_mode(mode)
        prompt_version = self.validation_service.validate_prompt_version(prompt_version)
        config = self._resolve_config(prompt_version)
        story = self.get_story(story_id)

        invoker = self._invoker_factory()
        runner = PipelineRunner(invoker)
        if mode == "analyze":
            result = runner.analyze(
                story.current_text,
                structured_model=story.structured_model,
                context_snippets=context_snippets,
                additional_context=additional_context,
                runtime_config=config,
            )
        else:
            result = runner.run(
                story.current_text,
                structured_model=story.structured_model,
                context_snippets=context_snippets,
                additional_context=additional_context,
                runtime_config=config,
                on_stage_complete=on_stage_complete,
            )

        self._apply_analysis(story, result, config, invoker.model_name)
        logger.info(f"Analysed story {story_id} in {mode} mode: score {result.overall_score}")
        return self._save(story), result

    def _apply_analysis(
        self,
        story: Story,
        result: PipelineResult,
        config: RuntimeConfig,
        model_id: Optional[str] = None
    ) -> None:
        story.findings = list(result.all_findings)
        story.overall_score = result.overall_score
        story.analysis_summary = result.summary
        story.stage_results = list(result.stage_results)
        story.issues_by_category = dict(result.issues_by_category)
        story.prioritized_issue_ids = list(result.prioritized_issue_ids)
        if result.structured_model is not None:
            story.structured_model = result.structured_model
        if result.criteria:
            self._merge_criteria(story, result.criteria)
            story.coverage = result.coverage
            story.open_questions = list(result.open_questions)
        story.meta.prompt_version = config.prompt_version
        story.meta.model_id = model_id or config.model_id
        story.meta.last_run_at = create_timestamp()

    @staticmethod
    def _merge_criteria(story: Story, new_criteria: List[AcceptanceCriterion]) -> None:
        kept = _keep_decided(story.criteria)
        seen_ids = {c.id for c in kept}
        merged = list(kept)
        for criterion in new_criteria:
            new_id = assign_id(criterion.id, "ac", seen_ids)
            merged.append(criterion if new_id == criterion.id else criterion.model_copy(update={"id": new_id}))
        story.criteria = merged

    # ------------------------------------------------------------------
    # Findings
    # ------------------------------------------------------------------

    def curate_finding(
        self,
        story_id: str,
        finding_id: str,
        relevant: Optional[bool] = None,
        note: Optional[str] = None
    ) -> Tuple[Story, Optional[Decision], bool]:
        """
        Mark a finding relevant or irrelevant and/or annotate it.

        Returns:
            Tuple of (story, decision or None, whether the finding exists)
        """
        story = self.get_story(story_id)
        tracker = DecisionTracker(story)

        if relevant is None:
            found = tracker.annotate_finding(finding_id, note or "")
            return self._save(story) if found else story, None, found

        if relevant:
            decision = tracker.accept_finding(finding_id, note=note)
        else:
            decision = tracker.reject_finding(finding_id, note=note)
        if decision is None:
            return story, None, False
        return self._save(story), decision, True

    # ------------------------------------------------------------------
    # Rewrites
    # ------------------------------------------------------------------

    def generate_rewrites(
        self,
        story_id: str,
        context_snippets: Iterable[ContextSnippet] = (),
        additional_context: Optional[str] = None,
        prompt_version: Optional[str] = None
    ) -> Tuple[Story, List[RewriteCandidate]]:
        """
        Generate rewrite candidates from the findings marked relevant.

        Pending candidates from earlier runs are replaced; decided ones are kept.

        Raises:
            NotFoundError: If story not found
            StageInvocationError: If the engine call fails
        """
        config = self._resolve_config(self.validation_service.validate_prompt_version(prompt_version))
        story = self.get_story(story_id)
        candidates = RewriteGenerator(self._invoker_factory()).generate(
            story,
            context_snippets=context_snippets,
            additional_context=additional_context,
            runtime_config=config,
        )
        story.rewrite_candidates = _keep_decided(story.rewrite_candidates) + candidates
        return self._save(story), candidates

    def accept_rewrite(
        self,
        story_id: str,
        candidate_id: str,
        edited_text: Any = None
    ) -> Tuple[Story, Optional[Decision]]:
        edited_text = self.validation_service.validate_edited_text(edited_text)
        story = self.get_story(story_id)
        decision = DecisionTracker(story).accept_rewrite(candidate_id, edited_text=edited_text)
        return (self._save(story) if decision else story), decision

    def reject_rewrite(self, story_id: str, candidate_id: str) -> Tuple[Story, Optional[Decision]]:
        story = self.get_story(story_id)
        decision = DecisionTracker(story).reject_rewrite(candidate_id)
        return (self._save(story) if decision else story), decision

    # ------------------------------------------------------------------
    # Acceptance criteria
    # ------------------------------------------------------------------

    def generate_criteria(
        self,
        story_id: str,
        context_snippets: Iterable[ContextSnippet] = (),
        additional_context: Optional[str] = None,
        prompt_version: Optional[str] = None
    ) -> Story:
        """
        Generate acceptance criteria for the current text.

        Raises:
            NotFoundError: If story not found
            StageInvocationError: If the engine call fails
        """
        config = self._resolve_config(self.validation_service.validate_prompt_version(prompt_version))
        story = self.get_story(story_id)
        result = CriteriaGenerator(self._invoker_factory()).generate(
            story,
            context_snippets=context_snippets,
            additional_context=additional_context,
            runtime_config=config,
        )
        self._merge_criteria(story, result.criteria)
        story.coverage = result.coverage
        story.open_questions = list(result.open_questions)
        return self._save(story)

    def accept_criterion(
        self,
        story_id: str,
        criterion_id: str,
        edits: Any = None
    ) -> Tuple[Story, Optional[Decision]]:
        edits = self.validation_service.validate_criterion_edits(edits)
        story = self.get_story(story_id)
        try:
            decision = DecisionTracker(story).accept_criterion(criterion_id, edits=edits)
        except ValueError as e:
            raise ValidationError(str(e), details={"field": "edits"})
        return (self._save(story) if decision else story), decision

    def reject_criterion(self, story_id: str, criterion_id: str) -> Tuple[Story, Optional[Decision]]:
        story = self.get_story(story_id)
        decision = DecisionTracker(story).reject_criterion(criterion_id)
        return (self._save(story) if decision else story), decision

    # ------------------------------------------------------------------
    # History and export
    # ------------------------------------------------------------------

    def get_history(self, story_id: str) -> Dict[str, Any]:
        story = self.get_story(story_id)
        return {
            "story_id": story.id,
            "version_history": [e.model_dump(mode="json") for e in story.version_history],
            "decisions": [d.model_dump(mode="json") for d in story.decisions],
            "total_versions": len(story.version_history),
        }

    def compare_versions(self, story_id: str, from_id: Optional[str] = None, to_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Compare two versions (default: first and latest).

        Raises:
            NotFoundError: If story not found
            ValidationError: If fewer than two versions exist or an id is unknown
        """
        story = self.get_story(story_id)
        entries = story.version_history
        if len(entries) < 2 and (from_id is None or to_id is None):
            raise ValidationError(
                "Not enough versions to compare. Need at least 2 versions.",
                details={"story_id": story_id, "version_count": len(entries)}
            )
        from_id = from_id or entries[0].id
        to_id = to_id or entries[-1].id
        try:
            comparison = VersionHistory(story).compare(from_id, to_id)
        except KeyError as e:
            raise ValidationError(
                f"Version not found: {e.args[0]}",
                details={"story_id": story_id, "available_versions": [x.id for x in entries]}
            )
        comparison["story_id"] = story_id
        return comparison

    def export(self, story_id: str, format_type: Any = "markdown") -> Tuple[str, str, str]:
        """
        Export a story.

        Returns:
            Tuple of (content, mimetype, filename)
        """
        format_type = self.validation_service.validate_export_format(format_type)
        return export_story(self.get_story(story_id), format_type)
