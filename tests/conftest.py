"""Pytest configuration and fixtures."""

import json
from typing import Dict, List, Optional

import pytest

import app.models  # noqa: F401
from app.agents.executor import STAGE_AGENTS
from app.config import Settings
from app.database import Base, create_db_engine
from app.dependencies import build_services
from app.services.llm_client import ModelRequest, ModelResult

IDEA_TEXT = "Meal planner for nurses"  # 23 chars
IDEA_TEXT_24 = "Meal planner for nurses!"

STAGE_PAYLOADS = {
    "refiner": {
        "problem_statement": "Shift workers struggle to plan healthy meals.",
        "assumptions": ["Nurses lack time", "Nurses want healthier food"],
        "proposed_solution": "A planner that adapts meals to rotating shifts.",
        "message": "I've identified the core problem: rotating shifts make meal planning hard.",
    },
    "reality_checker": {
        "assumptions": ["Nurses will log their shifts"],
        "testable_claims": ["Nurses will sign up from a landing page"],
        "failure_points": ["Low retention after the first week"],
        "message": "The Refiner laid out a clear problem, but retention is my main concern.",
    },
    "assassin": {
        "veto": False,
        "message": "The Refiner and Reality Checker raised fair points, but nothing here is fatal.",
    },
    "cost": {
        "implementation_cost": "Low: a mobile app with a recipe database",
        "maintenance_cost": "Low: recipes change rarely",
        "operational_risk": "Medium: depends on a shift-schedule import",
        "cognitive_load": "Low: one screen per day",
        "message": "The Assassin let this through; costs are low and the main risk is operational.",
    },
    "synthesizer": {
        "constrained_version": "A weekly plan generated from a manually entered shift pattern.",
        "open_risks": ["Retention", "Schedule import"],
        "recommendation": "PROCEED",
        "message": "After hearing from the Refiner, Reality Checker, Assassin and Cost Analyst, I recommend we proceed.",
    },
}

VETO_PAYLOAD = {
    "veto": True,
    "kill_reason": "Existing calendar apps already solve this with less effort.",
    "failure_mode": "simpler_solution_exists",
    "message": "The Refiner and Reality Checker both point to a solved problem. I'm issuing a veto.",
}


def stage_for_prompt(system_prompt: str) -> str:
    """Identify which stage a system prompt belongs to."""
    for stage, agent_class in STAGE_AGENTS.items():
        if f"You are the {agent_class.AGENT_NAME} agent" in system_prompt:
            return stage.value
    raise AssertionError("Unrecognized system prompt")


class ScriptedLLM:
    """Model caller stub: per-stage scripted responses, every call recorded.

    A stage's script is consumed in order; its last entry repeats. Entries
    are payload dicts (returned as JSON content), raw strings, or exceptions.
    """

    def __init__(self, scripts: Optional[Dict[str, List]] = None):
        self.scripts = {stage: [payload] for stage, payload in STAGE_PAYLOADS.items()}
        for stage, script in (scripts or {}).items():
            self.scripts[stage] = list(script)
        self.calls: List[str] = []
        self.requests: List[ModelRequest] = []

    def call(self, request: ModelRequest) -> ModelResult:
        stage = stage_for_prompt(request.system_prompt)
        self.calls.append(stage)
        self.requests.append(request)

        script = self.scripts[stage]
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, BaseException):
            raise item

        content = item if isinstance(item, str) else json.dumps(item)
        return ModelResult(content=content, usage_tokens=100, model="test-model")

    def count(self, stage: str) -> int:
        return self.calls.count(stage)


@pytest.fixture
def test_settings():
    """Settings for an in-memory database and no background workers."""
    return Settings(
        DATABASE_URL="sqlite://",
        OPENROUTER_API_KEY="test-key",
        RUN_MIGRATIONS=False,
        WORKER_THREADS=0,
    )


@pytest.fixture(scope="function")
def db_engine(test_settings):
    """Create a test database for each test."""
    engine = create_db_engine(test_settings.DATABASE_URL)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def sleeps():
    """Recorded retry delays, in seconds."""
    return []


@pytest.fixture
def services(test_settings, db_engine, llm, sleeps):
    return build_services(test_settings, db_engine=db_engine, llm_client=llm, sleep=sleeps.append)


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def engine(services):
    return services.engine


@pytest.fixture
def new_run(services):
    """Factory creating a run in INIT (with its queued job)."""

    def _create(idea_text: str = IDEA_TEXT_24):
        return services.launcher.start(idea_text)

    return _create
