"""
DecisionTracker: human curation of findings, rewrites and criteria.

Every successful call appends exactly one ``Decision`` to the story's
decision log. Decisions are never edited or removed. Calls that name an
unknown target are logged and return None without changing the story.
"""

import logging
from typing import Dict, Any, Optional

from .history import VersionHistory
from .models import (
    CRITERION_PRIORITIES,
    CRITERION_TYPES,
    EDITABLE_CRITERION_FIELDS,
    AcceptanceCriterion,
    Decision,
    Story,
)
from .parser import parse_user_story

logger = logging.getLogger(__name__)


def _criterion_snapshot(criterion: AcceptanceCriterion) -> str:
    return f"{criterion.title}: {criterion.as_sentence()}" if criterion.title else criterion.as_sentence()


class DecisionTracker:
    """
    Applies human decisions to one story.

    Example:
        >>> tracker = DecisionTracker(story)
        >>> tracker.accept_finding("amb_1", note="Needs a number")
        >>> tracker.accept_rewrite("rw_2", edited_text="Als Benutzer ...")
    """

    def __init__(self, story: Story):
        self.story = story
        self.history = VersionHistory(story)

    def _record(
        self,
        target_type: str,
        target_id: str,
        decision: str,
        original: str,
        edited: Optional[str] = None
    ) -> Decision:
        record = Decision(
            target_type=target_type,
            target_id=target_id,
            decision=decision,
            original_value_snapshot=original,
            edited_value_snapshot=edited,
        )
        self.story.decisions.append(record)
        self.story.touch()
        logger.info(f"Recorded {decision} decision on {target_type} {target_id} for story {self.story.id}")
        return record

    def _unknown(self, target_type: str, target_id: str) -> None:
        logger.warning(f"Ignoring decision on unknown {target_type} '{target_id}' in story {self.story.id}")
        return None

    # ------------------------------------------------------------------
    # Findings
    # ------------------------------------------------------------------

    def accept_finding(self, finding_id: str, note: Optional[str] = None) -> Optional[Decision]:
        """Mark a finding relevant (optionally annotating it)."""
        return self._curate_finding(finding_id, True, note)

    def reject_finding(self, finding_id: str, note: Optional[str] = None) -> Optional[Decision]:
        """Mark a finding irrelevant (optionally annotating it)."""
        return self._curate_finding(finding_id, False, note)

    def _curate_finding(self, finding_id: str, relevant: bool, note: Optional[str]) -> Optional[Decision]:
        finding = self.story.get_finding(finding_id)
        if finding is None:
            return self._unknown("finding", finding_id)
        finding.is_relevant = relevant
        if note is not None:
            finding.user_note = note
        return self._record(
            "finding",
            finding_id,
            "accepted" if relevant else "rejected",
            finding.reasoning,
            note or None,
        )

    def annotate_finding(self, finding_id: str, note: str) -> bool:
        """
        Set a finding's note without recording a decision.

        Returns:
            True if the finding exists
        """
        finding = self.story.get_finding(finding_id)
        if finding is None:
            self._unknown("finding", finding_id)
            return False
        finding.user_note = note
        self.story.touch()
        return True

    # ------------------------------------------------------------------
    # Rewrites
    # ------------------------------------------------------------------

    def accept_rewrite(self, candidate_id: str, edited_text: Optional[str] = None) -> Optional[Decision]:
        """
        Select a rewrite candidate as the current text.

        With ``edited_text`` the candidate becomes ``edited`` and the edited
        text becomes current; otherwise the suggested text does. A previously
        selected candidate goes back to pending.
        """
        candidate = self.story.get_candidate(candidate_id)
        if candidate is None:
            return self._unknown("rewrite", candidate_id)

        previous = self.story.get_candidate(self.story.selected_rewrite_id) if self.story.selected_rewrite_id else None
        if previous is not None and previous.id != candidate.id:
            previous.status = "pending"
            previous.edited_text = None

        edited = edited_text.strip() if edited_text and edited_text.strip() else None
        if edited is not None:
            candidate.status = "edited"
            candidate.edited_text = edited
        else:
            candidate.status = "accepted"
            candidate.edited_text = None

        self.story.selected_rewrite_id = candidate.id
        self.story.current_text = candidate.effective_text
        parsed = parse_user_story(self.story.current_text)
        if parsed is not None:
            self.story.structured_model = parsed

        decision = self._record(
            "rewrite",
            candidate_id,
            "edited" if edited is not None else "accepted",
            candidate.suggested_text,
            edited,
        )
        self.history.append(
            "rewrite_accepted",
            f"Rewrite {candidate_id} {'edited and ' if edited is not None else ''}accepted",
        )
        return decision

    def reject_rewrite(self, candidate_id: str) -> Optional[Decision]:
        """Reject a candidate; rejecting the selected one restores the original text."""
        candidate = self.story.get_candidate(candidate_id)
        if candidate is None:
            return self._unknown("rewrite", candidate_id)

        candidate.status = "rejected"
        candidate.edited_text = None
        if self.story.selected_rewrite_id == candidate_id:
            self.story.selected_rewrite_id = None
            self.story.current_text = self.story.original_text
            parsed = parse_user_story(self.story.original_text)
            if parsed is not None:
                self.story.structured_model = parsed
            self.history.append("manual_edit", f"Rewrite {candidate_id} rejected, original text restored")

        return self._record("rewrite", candidate_id, "rejected", candidate.suggested_text)

    # ------------------------------------------------------------------
    # Acceptance criteria
    # ------------------------------------------------------------------

    def accept_criterion(self, criterion_id: str, edits: Optional[Dict[str, Any]] = None) -> Optional[Decision]:
        """
        Accept a criterion, optionally overriding some of its fields.

        Raises:
            ValueError: If ``edits`` names a field that cannot be edited
        """
        criterion = self.story.get_criterion(criterion_id)
        if criterion is None:
            return self._unknown("criterion", criterion_id)

        edits = {k: v for k, v in (edits or {}).items() if v is not None}
        unknown = [k for k in edits if k not in EDITABLE_CRITERION_FIELDS]
        if unknown:
            raise ValueError(f"Unknown criterion fields: {', '.join(unknown)}")
        if "type" in edits and edits["type"] not in CRITERION_TYPES:
            raise ValueError(f"Invalid criterion type: {edits['type']}")
        if "priority" in edits and edits["priority"] not in CRITERION_PRIORITIES:
            raise ValueError(f"Invalid criterion priority: {edits['priority']}")

        original = _criterion_snapshot(criterion)
        if edits:
            criterion.edited_fields = edits
            criterion.status = "edited"
            edited = _criterion_snapshot(criterion.effective())
        else:
            criterion.edited_fields = {}
            criterion.status = "accepted"
            edited = None

        decision = self._record(
            "criterion",
            criterion_id,
            "edited" if edits else "accepted",
            original,
            edited,
        )
        self.history.append("criteria_added", f"Acceptance criterion {criterion_id} added")
        return decision

    def reject_criterion(self, criterion_id: str) -> Optional[Decision]:
        """Mark a criterion rejected; it stays in the working list but is never final."""
        criterion = self.story.get_criterion(criterion_id)
        if criterion is None:
            return self._unknown("criterion", criterion_id)
        criterion.status = "rejected"
        criterion.edited_fields = {}
        return self._record("criterion", criterion_id, "rejected", _criterion_snapshot(criterion))

    # ------------------------------------------------------------------
    # Generic entry point
    # ------------------------------------------------------------------

    def decide(
        self,
        target_type: str,
        target_id: str,
        decision: str,
        edited_value: Any = None
    ) -> Optional[Decision]:
        """
        Dispatch a decision by target type.

        ``edited_value`` is the edited text for rewrites, a field dict for
        criteria and a note for findings.

        Raises:
            ValueError: If the target type or decision is unknown
        """
        if decision not in ("accepted", "rejected", "edited"):
            raise ValueError(f"Unknown decision: {decision}")
        accept = decision in ("accepted", "edited")

        if target_type == "finding":
            if accept:
                return self.accept_finding(target_id, note=edited_value)
            return self.reject_finding(target_id, note=edited_value)
        if target_type == "rewrite":
            if accept:
                return self.accept_rewrite(target_id, edited_text=edited_value if decision == "edited" else None)
            return self.reject_rewrite(target_id)
        if target_type == "criterion":
            if accept:
                return self.accept_criterion(target_id, edits=edited_value if decision == "edited" else None)
            return self.reject_criterion(target_id)
        raise ValueError(f"Unknown decision target: {target_type}")
