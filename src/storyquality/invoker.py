"""
StageInvoker: one validated call to the reasoning engine.

Every pipeline stage, rewrite and criteria request goes through
``StageInvoker.invoke``. The invoker renders the version-pinned template,
calls the engine client, strips code fences, parses JSON and validates the
shape of the answer. On any failure it retries exactly once with an
instruction to return structured output only; a second failure raises
``StageInvocationError``. The invoker holds no state between calls.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Any, Optional, Callable, Tuple, Iterable, List

from .models import (
    PIPELINE_STAGES,
    ContextSnippet,
    Finding,
    RuntimeConfig,
    StructuredStoryModel,
)
from .utils.errors import ServiceUnavailableError, StageInvocationError
from .utils.llm import BaseLLMClient, parse_json_response
from .utils.llm_constants import MAX_STAGE_ATTEMPTS, RETRY_INSTRUCTION_SUFFIX, LOG_PREVIEW_CHARS
from .utils.prompt_builder import (
    EngineRequest,
    build_context_string,
    build_system_prompt,
    build_user_prompt,
    relevant_findings_payload,
    structured_story_payload,
)

logger = logging.getLogger(__name__)

ShapeValidator = Callable[[Any], Tuple[bool, str]]


@dataclass
class StageOutput:
    """Validated engine answer for one operation."""
    operation: str
    data: Dict[str, Any]
    raw_response: str
    attempts: int


def validate_stage_shape(data: Any) -> Tuple[bool, str]:
    """Pipeline stages must return an ``issues`` list."""
    if not isinstance(data, dict):
        return False, "response is not a JSON object"
    if not isinstance(data.get("issues"), list):
        return False, "missing 'issues' list"
    return True, ""


def validate_rewrite_shape(data: Any) -> Tuple[bool, str]:
    if not isinstance(data, dict):
        return False, "response is not a JSON object"
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return False, "missing or empty 'candidates' list"
    return True, ""


def validate_criteria_shape(data: Any) -> Tuple[bool, str]:
    if not isinstance(data, dict):
        return False, "response is not a JSON object"
    criteria = data.get("criteria")
    if not isinstance(criteria, list) or not criteria:
        return False, "missing or empty 'criteria' list"
    return True, ""


def validate_analyze_shape(data: Any) -> Tuple[bool, str]:
    """Legacy analyze needs an ``issues`` list and a numeric ``score``."""
    ok, reason = validate_stage_shape(data)
    if not ok:
        return ok, reason
    score = data.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return False, "missing numeric 'score'"
    return True, ""


DEFAULT_VALIDATORS: Dict[str, ShapeValidator] = {
    stage: validate_stage_shape for stage in PIPELINE_STAGES
}
DEFAULT_VALIDATORS["acceptance_criteria"] = validate_criteria_shape
DEFAULT_VALIDATORS["rewrite"] = validate_rewrite_shape
DEFAULT_VALIDATORS["analyze"] = validate_analyze_shape


class StageInvoker:
    """
    Calls the engine for one operation with validation and a single retry.

    Example:
        >>> invoker = StageInvoker(client)
        >>> output = invoker.invoke("ambiguity_analysis", "Als Benutzer ...")
        >>> output.data["issues"]
    """

    def __init__(
        self,
        client: Optional[BaseLLMClient] = None,
        validators: Optional[Dict[str, ShapeValidator]] = None
    ):
        """
        Initialize the invoker.

        Args:
            client: Engine client (default provider if None)
            validators: Per-operation shape predicates overriding the defaults
        """
        self._client = client
        self.validators = dict(DEFAULT_VALIDATORS)
        if validators:
            self.validators.update(validators)

    @property
    def client(self) -> BaseLLMClient:
        """
        Lazy-load the default provider so tests can inject a client.

        Raises:
            ServiceUnavailableError: If no provider can be configured (e.g. missing API key)
        """
        if self._client is None:
            from .providers.factory import get_default_provider
            try:
                self._client = get_default_provider()
            except ValueError as e:
                logger.error(f"Reasoning engine unavailable: {e}")
                raise ServiceUnavailableError("reasoning engine", str(e))
        return self._client

    @property
    def model_name(self) -> Optional[str]:
        """Model of the client in use, or None before the first call configured one."""
        return self._client.model_name if self._client is not None else None

    def build_request(
        self,
        operation: str,
        story_text: str,
        structured_model: Optional[StructuredStoryModel] = None,
        context_snippets: Iterable[ContextSnippet] = (),
        previous_results: Optional[Dict[str, Any]] = None,
        relevant_findings: Optional[List[Finding]] = None,
        runtime_config: Optional[RuntimeConfig] = None,
        additional_context: Optional[str] = None,
    ) -> EngineRequest:
        runtime_config = runtime_config or RuntimeConfig()
        return EngineRequest(
            operation=operation,
            story_text=story_text,
            prompt_version=runtime_config.prompt_version,
            structured_story=structured_story_payload(structured_model),
            context=build_context_string(context_snippets, additional_context),
            relevant_findings=(
                relevant_findings_payload(relevant_findings) if relevant_findings is not None else None
            ),
            previous_results=previous_results,
            runtime_config=runtime_config,
        )

    def invoke(
        self,
        operation: str,
        story_text: str,
        structured_model: Optional[StructuredStoryModel] = None,
        context_snippets: Iterable[ContextSnippet] = (),
        previous_results: Optional[Dict[str, Any]] = None,
        relevant_findings: Optional[List[Finding]] = None,
        runtime_config: Optional[RuntimeConfig] = None,
        additional_context: Optional[str] = None,
    ) -> StageOutput:
        """
        Run one engine operation.

        Args:
            operation: Pipeline stage, ``rewrite`` or ``analyze``
            story_text: Current story text
            structured_model: Current structured decomposition
            context_snippets: Retrieved context passages
            previous_results: Accumulated results of earlier stages
            relevant_findings: Findings the human marked relevant
            runtime_config: Sampling, model and timeout settings
            additional_context: Free-form context supplied by the user

        Returns:
            StageOutput with the parsed, shape-checked data

        Raises:
            StageInvocationError: If both attempts fail
            ServiceUnavailableError: If no engine client can be configured
            ValueError: If the operation or prompt version is unknown
        """
        if operation not in self.validators:
            raise ValueError(f"Unknown operation: {operation}")

        request = self.build_request(
            operation,
            story_text,
            structured_model=structured_model,
            context_snippets=context_snippets,
            previous_results=previous_results,
            relevant_findings=relevant_findings,
            runtime_config=runtime_config,
            additional_context=additional_context,
        )
        return self._call_with_retry(request)

    def _call_with_retry(self, request: EngineRequest) -> StageOutput:
        client = self.client
        config = request.runtime_config
        system_prompt = build_system_prompt(request)
        user_prompt = build_user_prompt(request)
        validator = self.validators[request.operation]

        logger.info(
            f"Invoking {request.operation} (prompt {request.prompt_version}) for story: "
            f"{request.story_text[:LOG_PREVIEW_CHARS]}..."
        )

        last_error = ""
        for attempt in range(1, MAX_STAGE_ATTEMPTS + 1):
            raw_response = None
            prompt = user_prompt if attempt == 1 else user_prompt + RETRY_INSTRUCTION_SUFFIX
            start_time = time.time()
            try:
                raw_response = client.generate(
                    prompt,
                    system_prompt=system_prompt,
                    temperature=config.temperature,
                    max_tokens=config.max_tokens,
                    top_k=config.top_k,
                    timeout=config.timeout_seconds,
                )
            except Exception as e:
                # Timeouts and transport errors both count as a failed attempt
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(f"{request.operation} attempt {attempt} failed: {last_error}")
                continue

            try:
                data = parse_json_response(raw_response)
            except ValueError as e:
                last_error = str(e)
                logger.warning(f"{request.operation} attempt {attempt} returned unparseable output: {e}")
                continue

            ok, reason = validator(data)
            if not ok:
                last_error = f"invalid response shape: {reason}"
                logger.warning(f"{request.operation} attempt {attempt} returned {last_error}")
                continue

            duration_ms = int((time.time() - start_time) * 1000)
            logger.info(f"{request.operation} succeeded on attempt {attempt} in {duration_ms}ms")
            return StageOutput(
                operation=request.operation,
                data=data,
                raw_response=raw_response,
                attempts=attempt,
            )

        logger.error(f"{request.operation} failed after {MAX_STAGE_ATTEMPTS} attempts: {last_error}")
        raise StageInvocationError(request.operation, last_error, raw_response=raw_response)
