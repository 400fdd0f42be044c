"""
Flask route handlers for the User Story Quality API.

Routes are thin: they read the request, call the workflow service and
serialize the result. All business rules live in the services.
"""

import logging
from io import BytesIO
from typing import TYPE_CHECKING, Dict, Any, Optional

if TYPE_CHECKING:
    from flask import Flask
    from flask_limiter import Limiter

from flask import request, jsonify, current_app, send_file

from ..models import Decision, Story
from ..parser import parse_user_story, calculate_completeness
from ..prompts import available_versions, OPERATIONS
from ..services import StoryValidationService, StoryWorkflowService
from ..utils.llm_constants import DEFAULT_PROMPT_VERSION
from .helpers import get_json_body

logger = logging.getLogger(__name__)

_validation_service = StoryValidationService()


def _workflow() -> StoryWorkflowService:
    return current_app.extensions["workflow_service"]


def _story_response(story: Story, **extra) -> Dict[str, Any]:
    response = {"success": True, "story": story.to_snapshot()}
    response.update(extra)
    return response


def _decision_response(story: Story, decision: Optional[Decision]) -> Dict[str, Any]:
    return _story_response(
        story,
        recorded=decision is not None,
        decision=decision.model_dump(mode="json") if decision else None,
    )


def _engine_inputs(data: Dict[str, Any]) -> Dict[str, Any]:
    """Common optional inputs of engine-backed routes."""
    return {
        "context_snippets": _validation_service.validate_context_snippets(data.get("context_snippets")),
        "additional_context": _validation_service.validate_additional_context(data.get("additional_context")),
        "prompt_version": data.get("prompt_version"),
    }


def register_routes(flask_app: 'Flask', limiter_instance: 'Limiter') -> None:
    """
    Register all application routes.

    Args:
        flask_app: Flask application instance
        limiter_instance: Limiter instance for rate limiting
    """

    @flask_app.route('/api/health')
    def health():
        """Liveness check."""
        return jsonify({"status": "ok"})

    @flask_app.route('/api/prompt-versions', methods=['GET'])
    def prompt_versions():
        """List registered prompt versions and the operations they cover."""
        return jsonify({
            "versions": available_versions(),
            "default": DEFAULT_PROMPT_VERSION,
            "operations": list(OPERATIONS),
        })

    @flask_app.route('/api/parse', methods=['POST'])
    def parse_story():
        """Heuristic role/goal/benefit parse of ``{text}``."""
        data = get_json_body()
        text = _validation_service.validate_story_text(data.get("text"))
        structured = parse_user_story(text)
        return jsonify({
            "detected": structured is not None,
            "structured": structured.model_dump(mode="json") if structured else None,
            "completeness": calculate_completeness(structured),
        })

    @flask_app.route('/api/stories', methods=['POST'])
    def create_story():
        """Create a story from ``{text, project_id?}``."""
        data = get_json_body()
        story = _workflow().create_story(data.get("text"), project_id=data.get("project_id"))
        return jsonify(_story_response(story)), 201

    @flask_app.route('/api/stories', methods=['GET'])
    def list_stories():
        result = _workflow().list_stories(
            page=request.args.get("page", 1),
            per_page=request.args.get("per_page", 50),
            project_id=request.args.get("project_id"),
        )
        return jsonify({"success": True, **result})

    @flask_app.route('/api/stories/<story_id>', methods=['GET'])
    def get_story(story_id: str):
        return jsonify(_story_response(_workflow().get_story(story_id)))

    @flask_app.route('/api/stories/<story_id>', methods=['DELETE'])
    def delete_story(story_id: str):
        _workflow().delete_story(story_id)
        return jsonify({"success": True, "story_id": story_id})

    @flask_app.route('/api/stories/<story_id>/original', methods=['PUT'])
    def replace_original(story_id: str):
        """Replace the original text; derived state is reset."""
        data = get_json_body()
        story = _workflow().replace_original_text(story_id, data.get("text"))
        return jsonify(_story_response(story))

    @flask_app.route('/api/stories/<story_id>/text', methods=['PUT'])
    def edit_text(story_id: str):
        """Manual edit of the current text."""
        data = get_json_body()
        story = _workflow().edit_current_text(story_id, data.get("text"))
        return jsonify(_story_response(story))

    @flask_app.route('/api/stories/<story_id>/analyze', methods=['POST'])
    @limiter_instance.limit(lambda: current_app.config["ANALYZE_RATE_LIMIT"])
    def analyze_story(story_id: str):
        """Run the analysis pipeline (``mode``: pipeline or analyze)."""
        data = get_json_body(required=False)
        story, result = _workflow().analyze_story(
            story_id,
            mode=data.get("mode", "pipeline"),
            **_engine_inputs(data),
        )
        return jsonify(_story_response(story, result=result.model_dump(mode="json")))

    @flask_app.route('/api/stories/<story_id>/findings/<finding_id>', methods=['POST'])
    def curate_finding(story_id: str, finding_id: str):
        """Mark a finding relevant/irrelevant and/or annotate it."""
        data = get_json_body()
        relevant, note = _validation_service.validate_finding_decision(data)
        story, decision, found = _workflow().curate_finding(story_id, finding_id, relevant=relevant, note=note)
        response = _decision_response(story, decision)
        response["found"] = found
        return jsonify(response)

    @flask_app.route('/api/stories/<story_id>/rewrites', methods=['POST'])
    @limiter_instance.limit(lambda: current_app.config["ANALYZE_RATE_LIMIT"])
    def generate_rewrites(story_id: str):
        """Generate rewrite candidates from the findings marked relevant."""
        data = get_json_body(required=False)
        story, candidates = _workflow().generate_rewrites(story_id, **_engine_inputs(data))
        return jsonify(_story_response(
            story,
            candidates=[c.model_dump(mode="json") for c in candidates],
        ))

    @flask_app.route('/api/stories/<story_id>/rewrites/<candidate_id>/accept', methods=['POST'])
    def accept_rewrite(story_id: str, candidate_id: str):
        data = get_json_body(required=False)
        story, decision = _workflow().accept_rewrite(story_id, candidate_id, edited_text=data.get("edited_text"))
        return jsonify(_decision_response(story, decision))

    @flask_app.route('/api/stories/<story_id>/rewrites/<candidate_id>/reject', methods=['POST'])
    def reject_rewrite(story_id: str, candidate_id: str):
        story, decision = _workflow().reject_rewrite(story_id, candidate_id)
        return jsonify(_decision_response(story, decision))

    @flask_app.route('/api/stories/<story_id>/criteria', methods=['POST'])
    @limiter_instance.limit(lambda: current_app.config["ANALYZE_RATE_LIMIT"])
    def generate_criteria(story_id: str):
        """Generate Given/When/Then acceptance criteria."""
        data = get_json_body(required=False)
        story = _workflow().generate_criteria(story_id, **_engine_inputs(data))
        return jsonify(_story_response(story))

    @flask_app.route('/api/stories/<story_id>/criteria/<criterion_id>/accept', methods=['POST'])
    def accept_criterion(story_id: str, criterion_id: str):
        data = get_json_body(required=False)
        story, decision = _workflow().accept_criterion(story_id, criterion_id, edits=data.get("edits"))
        return jsonify(_decision_response(story, decision))

    @flask_app.route('/api/stories/<story_id>/criteria/<criterion_id>/reject', methods=['POST'])
    def reject_criterion(story_id: str, criterion_id: str):
        story, decision = _workflow().reject_criterion(story_id, criterion_id)
        return jsonify(_decision_response(story, decision))

    @flask_app.route('/api/stories/<story_id>/history', methods=['GET'])
    def get_history(story_id: str):
        """Version history and decision log."""
        return jsonify({"success": True, **_workflow().get_history(story_id)})

    @flask_app.route('/api/stories/<story_id>/compare', methods=['GET'])
    def compare_versions(story_id: str):
        """Diff two versions (default: first and latest)."""
        comparison = _workflow().compare_versions(
            story_id,
            from_id=request.args.get("from"),
            to_id=request.args.get("to"),
        )
        return jsonify({"success": True, **comparison})

    @flask_app.route('/api/stories/<story_id>/export', methods=['GET'])
    def export_story(story_id: str):
        """Download the story as Markdown or JSON."""
        content, mimetype, filename = _workflow().export(story_id, request.args.get("format", "markdown"))
        buffer = BytesIO(content.encode("utf-8"))
        return send_file(
            buffer,
            mimetype=mimetype,
            as_attachment=True,
            download_name=filename,
        )
