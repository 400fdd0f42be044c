"""
Rewrite and acceptance-criteria generation.

Both generators are thin layers over ``StageInvoker`` that condition the
engine on the findings a human marked relevant. Neither mutates the story;
the workflow service stores what they return.
"""

import logging
from typing import Iterable, List, Optional

from .invoker import StageInvoker
from .models import ContextSnippet, CriteriaResult, RewriteCandidate, RuntimeConfig, Story
from .normalization import normalize_candidate, normalize_criteria

logger = logging.getLogger(__name__)


class RewriteGenerator:
    """Produces rewrite candidates for a story's current text."""

    def __init__(self, invoker: Optional[StageInvoker] = None):
        self.invoker = invoker or StageInvoker()

    def generate(
        self,
        story: Story,
        context_snippets: Iterable[ContextSnippet] = (),
        additional_context: Optional[str] = None,
        runtime_config: Optional[RuntimeConfig] = None,
    ) -> List[RewriteCandidate]:
        """
        Generate rewrite candidates.

        Only findings with ``is_relevant`` True are sent. Addressed finding
        ids the story does not know are dropped from each candidate.

        Args:
            story: Story to rewrite
            context_snippets: Retrieved context passages
            additional_context: Free-form user context
            runtime_config: Engine settings

        Returns:
            Pending RewriteCandidate objects

        Raises:
            StageInvocationError: If the engine call fails after its retry
        """
        relevant = story.relevant_findings()
        logger.info(f"Generating rewrites for story {story.id} from {len(relevant)} relevant findings")

        output = self.invoker.invoke(
            "rewrite",
            story.current_text,
            structured_model=story.structured_model,
            context_snippets=context_snippets,
            relevant_findings=relevant,
            runtime_config=runtime_config,
            additional_context=additional_context,
        )

        known_ids = {f.id for f in story.findings}
        seen_ids = {c.id for c in story.rewrite_candidates}
        candidates = []
        for raw in output.data.get("candidates") or []:
            if not isinstance(raw, dict):
                continue
            candidate = normalize_candidate(raw, seen_ids, known_ids)
            if candidate is not None:
                candidates.append(candidate)
        logger.info(f"Received {len(candidates)} rewrite candidates for story {story.id}")
        return candidates


class CriteriaGenerator:
    """Produces Given/When/Then acceptance criteria for a story."""

    def __init__(self, invoker: Optional[StageInvoker] = None):
        self.invoker = invoker or StageInvoker()

    def generate(
        self,
        story: Story,
        context_snippets: Iterable[ContextSnippet] = (),
        additional_context: Optional[str] = None,
        runtime_config: Optional[RuntimeConfig] = None,
    ) -> CriteriaResult:
        """
        Generate acceptance criteria for the story's current text.

        Coverage and open questions are passed through as the engine sent them.

        Raises:
            StageInvocationError: If the engine call fails after its retry
        """
        relevant = story.relevant_findings()
        output = self.invoker.invoke(
            "acceptance_criteria",
            story.current_text,
            structured_model=story.structured_model,
            context_snippets=context_snippets,
            relevant_findings=relevant,
            runtime_config=runtime_config,
            additional_context=additional_context,
        )
        data = output.data
        seen_ids = {c.id for c in story.criteria}
        criteria = normalize_criteria(data.get("criteria") or [], seen_ids)
        coverage = data.get("coverage") if isinstance(data.get("coverage"), dict) else None
        open_questions = data.get("openQuestions") if isinstance(data.get("openQuestions"), list) else []
        logger.info(f"Received {len(criteria)} acceptance criteria for story {story.id}")
        return CriteriaResult(
            criteria=criteria,
            coverage=coverage,
            open_questions=[str(q) for q in open_questions],
        )
