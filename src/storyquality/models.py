"""
Canonical user story data model.

This module defines the structure of a story under review using Pydantic
for validation and type safety. All pipeline, decision and export code works
on these models so there is exactly one shape for a story, its findings,
rewrite candidates, acceptance criteria, decisions and version history.
"""

import os
import uuid
from datetime import datetime
from typing import Dict, Any, Optional, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils.llm_constants import (
    DEFAULT_TEMPERATURE,
    DEFAULT_TOP_K,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL_ID,
    DEFAULT_PROMPT_VERSION,
    DEFAULT_TIMEOUT_SECONDS,
    MIN_TIMEOUT_SECONDS,
    MAX_TIMEOUT_SECONDS,
)


# ---------------------------------------------------------------------------
# Closed vocabularies
# ---------------------------------------------------------------------------

ISSUE_CATEGORIES = (
    "ambiguity",
    "missing_role",
    "missing_goal",
    "missing_benefit",
    "vague_language",
    "too_broad_scope",
    "solution_bias",
    "persona_unclear",
    "business_value_gap",
    "not_testable",
    "inconsistency",
    "missing_context",
    "technical_debt",
    "other",
)

# Ordered most to least severe
SEVERITIES = ("critical", "major", "minor", "info")
SEVERITY_RANK = {severity: rank for rank, severity in enumerate(SEVERITIES)}

CONFIDENCE_LEVELS = ("high", "medium", "low")

AFFECTED_SECTIONS = ("role", "goal", "benefit", "constraint", "acceptance_criteria", "overall")

# Canonical full-pipeline order
PIPELINE_STAGES = (
    "ambiguity_analysis",
    "structure_check",
    "quality_check",
    "business_value",
    "solution_bias",
    "acceptance_criteria",
)

CRITERION_TYPES = ("happy_path", "edge_case", "error_case", "negative_case")
CRITERION_PRIORITIES = ("must", "should", "could")
CANDIDATE_STATUSES = ("pending", "accepted", "rejected", "edited")
DECISION_TYPES = ("accepted", "rejected", "edited")
DECISION_TARGETS = ("finding", "rewrite", "criterion")
HISTORY_ACTIONS = ("initial", "rewrite_accepted", "manual_edit", "criteria_added")

IssueCategory = Literal[
    "ambiguity", "missing_role", "missing_goal", "missing_benefit",
    "vague_language", "too_broad_scope", "solution_bias", "persona_unclear",
    "business_value_gap", "not_testable", "inconsistency", "missing_context",
    "technical_debt", "other",
]
Severity = Literal["critical", "major", "minor", "info"]
Confidence = Literal["high", "medium", "low"]
AffectedSection = Literal["role", "goal", "benefit", "constraint", "acceptance_criteria", "overall"]
PipelineStage = Literal[
    "ambiguity_analysis", "structure_check", "quality_check",
    "business_value", "solution_bias", "acceptance_criteria",
]
StageStatus = Literal["completed", "skipped", "failed"]
CriterionType = Literal["happy_path", "edge_case", "error_case", "negative_case"]
CriterionPriority = Literal["must", "should", "could"]
CandidateStatus = Literal["pending", "accepted", "rejected", "edited"]
DecisionType = Literal["accepted", "rejected", "edited"]
DecisionTarget = Literal["finding", "rewrite", "criterion"]
HistoryAction = Literal["initial", "rewrite_accepted", "manual_edit", "criteria_added"]

# Fields of a criterion a human may override when accepting it
EDITABLE_CRITERION_FIELDS = ("title", "given", "when", "then", "notes", "type", "priority")


def generate_id(prefix: str) -> str:
    """Return a short unique identifier such as ``finding_1a2b3c4d``."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def create_timestamp() -> str:
    """Return the current time as an ISO-8601 string."""
    return datetime.now().isoformat()


# ---------------------------------------------------------------------------
# Story building blocks
# ---------------------------------------------------------------------------

class StructuredStoryModel(BaseModel):
    """Role/goal/benefit/constraints decomposition of a story."""
    role: str = ""
    goal: str = ""
    benefit: str = ""
    constraints: Optional[List[str]] = None
    parse_confidence: Confidence = "low"
    parse_warnings: List[str] = Field(default_factory=list)


class ContextSnippet(BaseModel):
    """A retrieved passage from a context document."""
    text: str
    document_name: Optional[str] = None
    relevance_score: Optional[float] = None


class Finding(BaseModel):
    """
    One quality problem surfaced by a pipeline stage.

    Only the human-curation fields (``is_relevant`` and ``user_note``) change
    after creation.
    """
    id: str
    stage: str
    category: IssueCategory = "other"
    severity: Severity = "info"
    affected_section: AffectedSection = "overall"
    text_reference: str = ""
    reasoning: str = ""
    clarification_question: Optional[str] = None
    suggested_action: Optional[str] = None
    confidence: Confidence = "medium"
    is_relevant: Optional[bool] = None
    user_note: str = ""


class RewriteChange(BaseModel):
    """Single change a rewrite candidate claims to make."""
    type: str = "modified"
    description: str = ""


class RewriteCandidate(BaseModel):
    """A full proposed replacement text for the story."""
    id: str
    suggested_text: str = Field(..., min_length=1)
    explanation: str = ""
    addressed_finding_ids: List[str] = Field(default_factory=list)
    changes: List[RewriteChange] = Field(default_factory=list)
    confidence: Confidence = "medium"
    open_questions: List[str] = Field(default_factory=list)
    status: CandidateStatus = "pending"
    edited_text: Optional[str] = None
    created_at: str = Field(default_factory=create_timestamp)

    @property
    def effective_text(self) -> str:
        """Text that becomes current when this candidate is selected."""
        if self.status == "edited" and self.edited_text:
            return self.edited_text
        return self.suggested_text


class AcceptanceCriterion(BaseModel):
    """A Given/When/Then acceptance criterion."""
    id: str
    title: str = ""
    given: str = ""
    when: str = ""
    then: str = ""
    notes: Optional[str] = None
    type: CriterionType = "happy_path"
    priority: CriterionPriority = "should"
    confidence: Confidence = "medium"
    status: CandidateStatus = "pending"
    edited_fields: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("edited_fields")
    def validate_edited_fields(cls, v):
        """Only known criterion fields may be overridden."""
        unknown = [key for key in v if key not in EDITABLE_CRITERION_FIELDS]
        if unknown:
            raise ValueError(f"Unknown criterion fields: {', '.join(unknown)}")
        return v

    def effective(self) -> "AcceptanceCriterion":
        """Return the criterion with any human edits applied."""
        if not self.edited_fields:
            return self
        return self.model_copy(update=self.edited_fields)

    def as_sentence(self) -> str:
        """Render as a single Given/When/Then line."""
        return f"Given {self.given}, When {self.when}, Then {self.then}"


class Decision(BaseModel):
    """Append-only audit record of one human action."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: generate_id("decision"))
    target_type: DecisionTarget
    target_id: str
    decision: DecisionType
    original_value_snapshot: str = ""
    edited_value_snapshot: Optional[str] = None
    timestamp: str = Field(default_factory=create_timestamp)


class VersionHistoryEntry(BaseModel):
    """Append-only snapshot of the story text at one point in time."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: generate_id("version"))
    timestamp: str = Field(default_factory=create_timestamp)
    story_text_at_time: str
    structured_model_at_time: Optional[StructuredStoryModel] = None
    action: HistoryAction
    description: str = ""


class PipelineStageResult(BaseModel):
    """Outcome of one pipeline stage."""
    stage: PipelineStage
    status: StageStatus
    finding_ids: List[str] = Field(default_factory=list)
    duration_ms: int = Field(default=0, ge=0)
    error: Optional[str] = None
    summary: str = ""


class RuntimeConfig(BaseModel):
    """Engine runtime settings for one invocation."""
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    top_k: int = Field(default=DEFAULT_TOP_K, ge=1)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=1)
    model_id: str = DEFAULT_MODEL_ID
    prompt_version: str = DEFAULT_PROMPT_VERSION
    timeout_seconds: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS, ge=MIN_TIMEOUT_SECONDS, le=MAX_TIMEOUT_SECONDS
    )

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        """
        Build a runtime config from environment variables.

        Uses LLM_TEMPERATURE, LLM_TOP_K, LLM_MAX_TOKENS, LLM_MODEL,
        PROMPT_VERSION and LLM_TIMEOUT_SECONDS, falling back to the defaults.
        """
        timeout = float(os.getenv("LLM_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
        return cls(
            temperature=float(os.getenv("LLM_TEMPERATURE", str(DEFAULT_TEMPERATURE))),
            top_k=int(os.getenv("LLM_TOP_K", str(DEFAULT_TOP_K))),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", str(DEFAULT_MAX_TOKENS))),
            model_id=os.getenv("LLM_MODEL", DEFAULT_MODEL_ID),
            prompt_version=os.getenv("PROMPT_VERSION", DEFAULT_PROMPT_VERSION),
            timeout_seconds=min(max(timeout, MIN_TIMEOUT_SECONDS), MAX_TIMEOUT_SECONDS),
        )


class MetaInfo(BaseModel):
    """Provenance of the last engine run."""
    project_id: Optional[str] = None
    prompt_version: str = DEFAULT_PROMPT_VERSION
    model_id: str = DEFAULT_MODEL_ID
    last_run_at: Optional[str] = None


class PipelineResult(BaseModel):
    """Everything a pipeline (or legacy analyze) run produced."""
    stage_results: List[PipelineStageResult] = Field(default_factory=list)
    all_findings: List[Finding] = Field(default_factory=list)
    structured_model: Optional[StructuredStoryModel] = None
    overall_score: int = Field(default=100, ge=0, le=100)
    score_source: Literal["stage", "derived"] = "derived"
    summary: str = ""
    issues_by_category: Dict[str, int] = Field(default_factory=dict)
    prioritized_issue_ids: List[str] = Field(default_factory=list)
    value_assessment: Optional[Dict[str, Any]] = None
    has_solution_bias: Optional[bool] = None
    criteria: List[AcceptanceCriterion] = Field(default_factory=list)
    coverage: Optional[Dict[str, Any]] = None
    open_questions: List[str] = Field(default_factory=list)

    @property
    def completed_count(self) -> int:
        return sum(1 for r in self.stage_results if r.status == "completed")

    @property
    def failed_stages(self) -> List[str]:
        return [r.stage for r in self.stage_results if r.status == "failed"]


class CriteriaResult(BaseModel):
    """Acceptance criteria plus the engine's coverage report."""
    criteria: List[AcceptanceCriterion] = Field(default_factory=list)
    coverage: Optional[Dict[str, Any]] = None
    open_questions: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Story
# ---------------------------------------------------------------------------

class Story(BaseModel):
    """
    Canonical story under review.

    This is the single state object for one story. The workflow service is
    its only writer; DecisionTracker and VersionHistory mutate it through
    the methods below so the audit invariants hold.
    """
    id: str = Field(default_factory=lambda: generate_id("story"), pattern=r"^story_[a-f0-9]{8}$")
    original_text: str = Field(..., min_length=1)
    current_text: str = ""
    structured_model: Optional[StructuredStoryModel] = None

    # Analysis
    findings: List[Finding] = Field(default_factory=list)
    overall_score: Optional[int] = Field(default=None, ge=0, le=100)
    analysis_summary: str = ""
    stage_results: List[PipelineStageResult] = Field(default_factory=list)
    issues_by_category: Dict[str, int] = Field(default_factory=dict)
    prioritized_issue_ids: List[str] = Field(default_factory=list)

    # Rewrites
    rewrite_candidates: List[RewriteCandidate] = Field(default_factory=list)
    selected_rewrite_id: Optional[str] = None

    # Acceptance criteria
    criteria: List[AcceptanceCriterion] = Field(default_factory=list)
    coverage: Optional[Dict[str, Any]] = None
    open_questions: List[str] = Field(default_factory=list)

    # Audit
    decisions: List[Decision] = Field(default_factory=list)
    version_history: List[VersionHistoryEntry] = Field(default_factory=list)

    meta: MetaInfo = Field(default_factory=MetaInfo)
    created_at: str = Field(default_factory=create_timestamp)
    updated_at: str = Field(default_factory=create_timestamp)

    @field_validator("original_text")
    def validate_original_text(cls, v):
        """Story text must contain something besides whitespace."""
        if not v.strip():
            raise ValueError("Story text cannot be empty")
        return v.strip()

    def model_post_init(self, __context: Any) -> None:
        if not self.current_text:
            self.current_text = self.original_text

    @classmethod
    def create(cls, text: str, project_id: Optional[str] = None) -> "Story":
        """
        Create a new story from the first human input.

        Seeds the structured model with the heuristic parser and records the
        initial version.
        """
        from .parser import parse_user_story
        from .history import VersionHistory

        story = cls(original_text=text, meta=MetaInfo(project_id=project_id))
        story.structured_model = parse_user_story(story.original_text)
        VersionHistory(story).append("initial", "Story submitted")
        return story

    def set_original_text(self, text: str) -> None:
        """
        Replace the original text and reset all derived state.

        Decisions and version history are audit records and survive the reset.
        """
        from .parser import parse_user_story
        from .history import VersionHistory

        if not text or not text.strip():
            raise ValueError("Story text cannot be empty")
        self.original_text = text.strip()
        self.current_text = self.original_text
        self.structured_model = parse_user_story(self.original_text)
        self.findings = []
        self.overall_score = None
        self.analysis_summary = ""
        self.stage_results = []
        self.issues_by_category = {}
        self.prioritized_issue_ids = []
        self.rewrite_candidates = []
        self.selected_rewrite_id = None
        self.criteria = []
        self.coverage = None
        self.open_questions = []
        VersionHistory(self).append("initial", "Original story replaced")

    def touch(self) -> None:
        self.updated_at = create_timestamp()

    def get_finding(self, finding_id: str) -> Optional[Finding]:
        return next((f for f in self.findings if f.id == finding_id), None)

    def get_candidate(self, candidate_id: str) -> Optional[RewriteCandidate]:
        return next((c for c in self.rewrite_candidates if c.id == candidate_id), None)

    def get_criterion(self, criterion_id: str) -> Optional[AcceptanceCriterion]:
        return next((c for c in self.criteria if c.id == criterion_id), None)

    def relevant_findings(self) -> List[Finding]:
        """Findings the human explicitly marked relevant."""
        return [f for f in self.findings if f.is_relevant is True]

    def final_criteria(self) -> List[AcceptanceCriterion]:
        """Accepted or edited criteria with edits applied."""
        return [c.effective() for c in self.criteria if c.status in ("accepted", "edited")]

    def to_snapshot(self) -> Dict[str, Any]:
        """Serializable snapshot for the persistence collaborator."""
        return self.model_dump(mode="json")

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "Story":
        """Rebuild a story from a snapshot (with validation)."""
        return cls.model_validate(data)
