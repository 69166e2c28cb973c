"""Tests for the orchestration engine."""

import threading

import pytest

from app.agents.executor import StepExecutor
from app.pipeline.engine import PipelineEngine
from app.schemas.run import RunStatus
from app.services.errors import CallSignal, ModelCallError, RunNotFoundError
from app.services.run_store import turn_operation
from tests.conftest import IDEA_TEXT_24, STAGE_PAYLOADS, VETO_PAYLOAD, ScriptedLLM, stage_for_prompt


class ProcessKilled(BaseException):
    """Simulates the worker process dying mid-run."""


class RecordingStore:
    """Wraps a run store and records the status after every committed patch."""

    def __init__(self, store):
        self.store = store
        self.statuses = []
        self.patches = []

    def read(self, run_id):
        return self.store.read(run_id)

    def patch_fields(self, run_id, operations):
        operations = list(operations)
        run = self.store.patch_fields(run_id, operations)
        self.patches.append([op.path for op in operations])
        self.statuses.append(run.status)
        return run

    def append_turn(self, run_id, position, turn, extra_operations=None):
        return self.patch_fields(run_id, [turn_operation(position, turn), *(extra_operations or [])])


def build_engine(services, llm, store=None):
    """Engine over the shared store with its own model caller."""
    store = store or services.store
    executor = StepExecutor(llm, store, max_attempts=3, base_delay=1.0, sleep=lambda seconds: None)
    return PipelineEngine(store, executor)


def test_completed_run(engine, new_run, llm, store):
    """Test a full run ending COMPLETED with a CONTINUE decision."""
    run = new_run(IDEA_TEXT_24)
    assert len(IDEA_TEXT_24) == 24

    outcome = engine.run(run.id)

    assert outcome.status == RunStatus.COMPLETED
    assert outcome.turn_count == 5
    assert outcome.result["decision"] == "CONTINUE"

    stored = store.read(run.id)
    assert stored.status == RunStatus.COMPLETED
    assert [turn.turn_number for turn in stored.conversation] == [1, 2, 3, 4, 5]
    assert [turn.agent_name for turn in stored.conversation] == [
        "Refiner", "Reality Checker", "Assassin", "Cost Analyst", "Synthesizer",
    ]
    assert stored.result["summary"] == STAGE_PAYLOADS["synthesizer"]["message"]
    assert stored.completed_at is not None
    assert stored.metadata["agent_count"] == 5
    assert stored.metadata["veto_occurred"] is False
    assert stored.error_message is None
    assert llm.calls == ["refiner", "reality_checker", "assassin", "cost", "synthesizer"]


def test_vetoed_run(services, new_run, store):
    """Test that a veto ends the run after three turns."""
    llm = ScriptedLLM({"assassin": [VETO_PAYLOAD]})
    run = new_run()

    outcome = build_engine(services, llm).run(run.id)

    assert outcome.status == RunStatus.VETOED
    assert outcome.result["decision"] == "STOP"
    assert outcome.result["veto_reason"] == VETO_PAYLOAD["kill_reason"]
    assert outcome.result["failure_mode"] == "simpler_solution_exists"
    assert llm.count("cost") == 0
    assert llm.count("synthesizer") == 0

    stored = store.read(run.id)
    assert len(stored.conversation) == 3
    assert stored.metadata["veto_occurred"] is True
    assert stored.completed_at is not None


def test_stop_recommendation(services, new_run):
    """Test that a STOP recommendation completes with a STOP decision."""
    synthesizer = dict(STAGE_PAYLOADS["synthesizer"], recommendation="stop")
    llm = ScriptedLLM({"synthesizer": [synthesizer]})

    outcome = build_engine(services, llm).run(new_run().id)

    assert outcome.status == RunStatus.COMPLETED
    assert outcome.result["decision"] == "STOP"


def test_other_recommendation_is_conditional(services, new_run):
    """Test that any other recommendation maps to CONDITIONAL."""
    synthesizer = dict(STAGE_PAYLOADS["synthesizer"], recommendation="RESEARCH_FIRST")
    llm = ScriptedLLM({"synthesizer": [synthesizer]})

    outcome = build_engine(services, llm).run(new_run().id)

    assert outcome.result["decision"] == "CONDITIONAL"


def test_fatal_stage_fails_run(services, new_run, store):
    """Test that a fatal stage error marks the run FAILED without a result."""
    llm = ScriptedLLM({"reality_checker": ["not json at all"]})
    run = new_run()

    outcome = build_engine(services, llm).run(run.id)

    assert outcome.status == RunStatus.FAILED
    assert outcome.error_message
    assert llm.count("reality_checker") == 1
    assert llm.count("assassin") == 0

    stored = store.read(run.id)
    assert stored.status == RunStatus.FAILED
    assert stored.result is None
    assert stored.error_message == outcome.error_message
    assert len(stored.conversation) == 1


def test_exhausted_retries_fail_run(services, new_run, store):
    """Test that a stage failing on every attempt fails the run."""
    server_error = ModelCallError("Server error: 503", CallSignal.SERVER_ERROR, 503)
    llm = ScriptedLLM({"cost": [server_error]})
    run = new_run()

    outcome = build_engine(services, llm).run(run.id)

    assert outcome.status == RunStatus.FAILED
    assert "3 attempts" in outcome.error_message
    assert llm.count("cost") == 3
    assert llm.count("synthesizer") == 0
    assert len(store.read(run.id).conversation) == 3


def test_retries_do_not_duplicate_turns(services, new_run, store, sleeps):
    """Test that absorbed retries leave exactly one turn per stage."""
    rate_limited = ModelCallError("Rate limit error: 429", CallSignal.RATE_LIMIT, 429)
    llm = ScriptedLLM({"assassin": [rate_limited, rate_limited, STAGE_PAYLOADS["assassin"]]})
    for agent in services.executor.agents.values():
        agent.llm = llm
    run = new_run()

    outcome = services.engine.run(run.id)

    assert outcome.status == RunStatus.COMPLETED
    assert [turn.turn_number for turn in store.read(run.id).conversation] == [1, 2, 3, 4, 5]
    assert sleeps == [2.0, 4.0]


def test_resume_from_checkpoint(services, new_run, store):
    """Test that a crashed run resumes without re-running recorded stages."""
    first_llm = ScriptedLLM({"assassin": [ProcessKilled()]})
    run = new_run()

    with pytest.raises(ProcessKilled):
        build_engine(services, first_llm).run(run.id)

    checkpoint = store.read(run.id)
    assert checkpoint.status == RunStatus.AGENTS_RUNNING
    assert len(checkpoint.conversation) == 2

    second_llm = ScriptedLLM()
    outcome = build_engine(services, second_llm).run(run.id)

    assert outcome.status == RunStatus.COMPLETED
    assert second_llm.calls == ["assassin", "cost", "synthesizer"]
    assert first_llm.count("refiner") == 1
    assert first_llm.count("reality_checker") == 1

    stored = store.read(run.id)
    assert [turn.turn_number for turn in stored.conversation] == [1, 2, 3, 4, 5]
    assert stored.conversation[:2] == checkpoint.conversation


def test_resume_during_synthesis(services, new_run, store):
    """Test that a run that crashed in synthesis only calls the synthesizer."""
    first_llm = ScriptedLLM({"synthesizer": [ProcessKilled()]})
    run = new_run()

    with pytest.raises(ProcessKilled):
        build_engine(services, first_llm).run(run.id)
    assert store.read(run.id).status == RunStatus.SYNTHESIZING

    second_llm = ScriptedLLM()
    outcome = build_engine(services, second_llm).run(run.id)

    assert outcome.status == RunStatus.COMPLETED
    assert second_llm.calls == ["synthesizer"]


def test_terminal_run_not_rerun(engine, new_run, llm):
    """Test that re-running a finished run changes nothing."""
    run = new_run()
    first = engine.run(run.id)
    calls = len(llm.calls)

    second = engine.run(run.id)

    assert second == first
    assert len(llm.calls) == calls


def test_failed_run_not_resumed(services, new_run, store):
    """Test that a FAILED run stays FAILED when its job is redelivered."""
    run = new_run()
    build_engine(services, ScriptedLLM({"refiner": ["{}"]})).run(run.id)

    llm = ScriptedLLM()
    outcome = build_engine(services, llm).run(run.id)

    assert outcome.status == RunStatus.FAILED
    assert llm.calls == []


def test_status_never_moves_backward(services, new_run):
    """Test the observed status sequence and that transitions share the turn's patch."""
    recording = RecordingStore(services.store)
    run = new_run()

    build_engine(services, ScriptedLLM(), store=recording).run(run.id)

    assert recording.statuses == [
        RunStatus.AGENTS_RUNNING,
        RunStatus.AGENTS_RUNNING,
        RunStatus.AGENTS_RUNNING,
        RunStatus.AGENTS_RUNNING,
        RunStatus.SYNTHESIZING,
        RunStatus.COMPLETED,
    ]
    assert recording.patches[4] == ["/conversation/3", "/status"]
    assert recording.patches[5] == ["/conversation/4", "/status", "/result", "/completed_at", "/metadata"]


def test_veto_finalized_with_turn(services, new_run):
    """Test that the veto turn and VETOED status are one write."""
    recording = RecordingStore(services.store)
    run = new_run()

    build_engine(services, ScriptedLLM({"assassin": [VETO_PAYLOAD]}), store=recording).run(run.id)

    assert recording.statuses[-1] == RunStatus.VETOED
    assert recording.patches[-1] == ["/conversation/2", "/status", "/result", "/completed_at", "/metadata"]


def test_missing_run(engine):
    """Test that an unknown run id is reported."""
    with pytest.raises(RunNotFoundError):
        engine.run("run_2025-01-01_missing0")


def test_idea_text_mismatch_fails(engine, new_run, llm):
    """Test that a run invoked with a different idea text fails."""
    run = new_run()

    outcome = engine.run(run.id, idea_text="A completely different idea")

    assert outcome.status == RunStatus.FAILED
    assert llm.calls == []


def test_fail_keeps_terminal_run(engine, new_run):
    """Test that failing an already finished run leaves it as it is."""
    run = new_run()
    engine.run(run.id)

    outcome = engine.fail(run.id, "late failure")

    assert outcome.status == RunStatus.COMPLETED
    assert outcome.error_message is None


def test_heartbeat_after_each_write(engine, new_run):
    """Test that the heartbeat runs once per committed write."""
    beats = []

    engine.run(new_run().id, heartbeat=lambda: beats.append(1))

    # BEGIN plus five turns
    assert len(beats) == 6


class GatedLLM(ScriptedLLM):
    """Scripted model caller that runs a hook before answering a stage."""

    def __init__(self, hooks):
        super().__init__()
        self.hooks = hooks

    def call(self, request):
        hook = self.hooks.get(stage_for_prompt(request.system_prompt))
        if hook is not None:
            hook()
        return super().call(request)


class SignallingStore(RecordingStore):
    """Sets an event once a turn at ``position`` is committed."""

    def __init__(self, store, position, event):
        super().__init__(store)
        self.position = position
        self.event = event

    def append_turn(self, run_id, position, turn, extra_operations=None):
        run = super().append_turn(run_id, position, turn, extra_operations)
        if position == self.position:
            self.event.set()
        return run


def wait(event):
    assert event.wait(5), "timed out waiting for the other delivery"


def test_overlapping_deliveries_complete_run(services, new_run, store):
    """Test that a second delivery losing the race for a turn leaves the run to the first."""
    first_in_assassin = threading.Event()
    second_started = threading.Event()
    first_recorded = threading.Event()
    second_done = threading.Event()

    def first_assassin():
        first_in_assassin.set()
        wait(second_started)

    def second_assassin():
        second_started.set()
        wait(first_recorded)

    first_llm = GatedLLM({"assassin": first_assassin, "cost": lambda: wait(second_done)})
    second_llm = GatedLLM({"assassin": second_assassin})
    first = build_engine(services, first_llm, store=SignallingStore(services.store, 2, first_recorded))
    second = build_engine(services, second_llm)
    run = new_run()
    outcomes = {}

    def drive(name, pipeline_engine):
        outcomes[name] = pipeline_engine.run(run.id)

    first_thread = threading.Thread(target=drive, args=("first", first))
    second_thread = threading.Thread(target=drive, args=("second", second))

    first_thread.start()
    wait(first_in_assassin)
    second_thread.start()
    second_thread.join(10)
    second_done.set()
    first_thread.join(10)

    assert outcomes["second"].status == RunStatus.AGENTS_RUNNING
    assert outcomes["second"].finished is False
    assert outcomes["second"].error_message is None
    assert second_llm.calls == ["assassin"]

    assert outcomes["first"].status == RunStatus.COMPLETED
    stored = store.read(run.id)
    assert stored.status == RunStatus.COMPLETED
    assert stored.error_message is None
    assert [turn.turn_number for turn in stored.conversation] == [1, 2, 3, 4, 5]
