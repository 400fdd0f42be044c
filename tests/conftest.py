"""
Shared pytest fixtures for test suite.

This module provides common fixtures used across multiple test files,
reducing duplication and ensuring consistency.
"""

import json
from typing import Any, Dict, List, Optional

import pytest

from storyquality.app import create_app
from storyquality.invoker import StageInvoker
from storyquality.models import Finding, RewriteCandidate, AcceptanceCriterion, Story, RuntimeConfig
from storyquality.services import StoryWorkflowService
from storyquality.utils.llm import BaseLLMClient
from storyquality.utils.repository import InMemoryStoryRepository


GERMAN_STORY = "Als Benutzer möchte ich mich einloggen können, damit ich auf mein Konto zugreifen kann."
ENGLISH_STORY = "As a project manager, I want to export reports so that I can share them with stakeholders."


# ============================================================================
# Scripted engine client
# ============================================================================
# FakeLLMClient replays a fixed list of responses, one per generate() call.
# An entry that is an Exception instance is raised instead of returned.
# Every call is recorded so tests can assert on prompts and parameters.

class FakeLLMClient(BaseLLMClient):
    """Engine client that replays scripted responses."""

    def __init__(self, responses: Optional[List[Any]] = None, default: Optional[Any] = None):
        self.responses = list(responses or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    @property
    def model_name(self) -> str:
        return "fake-model"

    def generate(self, prompt, system_prompt=None, temperature=None, max_tokens=None, top_k=None, timeout=None):
        self.calls.append({
            "prompt": prompt,
            "system_prompt": system_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_k": top_k,
            "timeout": timeout,
        })
        if self.responses:
            response = self.responses.pop(0)
        elif self.default is not None:
            response = self.default
        else:
            raise AssertionError("FakeLLMClient ran out of scripted responses")
        if isinstance(response, Exception):
            raise response
        return response


def stage_json(issues: Optional[List[Dict[str, Any]]] = None, summary: str = "", **extra) -> str:
    """Serialize a pipeline stage answer."""
    payload = {"issues": issues or [], "summary": summary}
    payload.update(extra)
    return json.dumps(payload)


def criteria_json(criteria: Optional[List[Dict[str, Any]]] = None, **extra) -> str:
    payload = {
        "issues": [],
        "criteria": criteria if criteria is not None else [
            {
                "id": "ac_1",
                "title": "Successful login",
                "given": "a registered user",
                "when": "they enter valid credentials",
                "then": "they see their account",
                "type": "happy_path",
                "priority": "must",
            }
        ],
    }
    payload.update(extra)
    return json.dumps(payload)


def rewrite_json(candidates: Optional[List[Dict[str, Any]]] = None) -> str:
    return json.dumps({
        "candidates": candidates if candidates is not None else [
            {
                "id": "rw_1",
                "text": "Als Kunde möchte ich mich mit E-Mail einloggen, damit ich meine Bestellungen sehe.",
                "explanation": "Clarifies role and benefit",
                "addressedIssueIds": ["amb_1"],
            }
        ]
    })


def full_pipeline_responses() -> List[str]:
    """One successful answer per stage, in canonical order."""
    return [
        stage_json(
            issues=[{
                "id": "amb_1",
                "category": "ambiguity",
                "severity": "major",
                "textReference": "einloggen",
                "reasoning": "Login method is not specified",
            }],
            summary="Login method unclear.",
        ),
        stage_json(
            structuredModel={"role": "Benutzer", "goal": "einloggen", "benefit": "Kontozugriff"},
        ),
        stage_json(
            issues=[{"id": "qual_1", "category": "testability", "severity": "minor", "reasoning": "No measurable outcome"}],
            overallScore=72,
        ),
        stage_json(valueAssessment={"hasBusinessValue": True}),
        stage_json(hasSolutionBias=False),
        criteria_json(coverage={"happyPath": True}, openQuestions=["Is SSO required?"]),
    ]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fake_client():
    """Empty scripted client; tests append to ``fake_client.responses``."""
    return FakeLLMClient()


@pytest.fixture
def invoker(fake_client):
    return StageInvoker(fake_client)


@pytest.fixture
def runtime_config():
    return RuntimeConfig()


@pytest.fixture
def german_story():
    """A freshly created German story."""
    return Story.create(GERMAN_STORY)


@pytest.fixture
def analysed_story(german_story):
    """Story with two findings, two rewrite candidates and two criteria."""
    story = german_story
    story.findings = [
        Finding(id="amb_1", stage="ambiguity_analysis", category="ambiguity", severity="major",
                reasoning="Login method is not specified"),
        Finding(id="qual_1", stage="quality_check", category="not_testable", severity="minor",
                reasoning="No measurable outcome"),
    ]
    story.rewrite_candidates = [
        RewriteCandidate(id="rw_1", suggested_text="Als Kunde möchte ich mich mit E-Mail einloggen, damit ich bestelle."),
        RewriteCandidate(id="rw_2", suggested_text="Als Kunde möchte ich mich per SSO einloggen, damit ich Zeit spare."),
    ]
    story.criteria = [
        AcceptanceCriterion(id="ac_1", title="Login", given="a user", when="they log in", then="they see the account"),
        AcceptanceCriterion(id="ac_2", title="Bad password", given="a user", when="the password is wrong",
                            then="an error is shown", type="error_case"),
    ]
    return story


@pytest.fixture
def repository():
    return InMemoryStoryRepository()


@pytest.fixture
def workflow_service(repository, fake_client):
    """Workflow service wired to the scripted client and an in-memory repository."""
    return StoryWorkflowService(
        repository=repository,
        invoker_factory=lambda: StageInvoker(fake_client),
        runtime_config=RuntimeConfig(),
    )


@pytest.fixture
def app(workflow_service):
    return create_app(
        workflow_service=workflow_service,
        config={"TESTING": True, "RATELIMIT_ENABLED": False},
    )


@pytest.fixture
def client(app):
    """Create a test client for the Flask app."""
    with app.test_client() as client:
        yield client
