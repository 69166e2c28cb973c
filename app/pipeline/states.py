"""Run status lattice, stage sequence and pure transition logic.

Nothing here performs I/O. Given a committed run document, ``next_action``
always returns the same action, so re-entering the engine at any committed
checkpoint repeats no completed side effect.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import ValidationError as PydanticValidationError

from app.schemas.agents import AssassinOutput, StageId, SynthesizerOutput
from app.schemas.run import Decision, PatchOperation, RunDocument, RunStatus, Turn
from app.services.errors import CheckpointError

STAGE_SEQUENCE = (
    StageId.REFINER,
    StageId.REALITY_CHECKER,
    StageId.ASSASSIN,
    StageId.COST,
    StageId.SYNTHESIZER,
)

VETO_POSITION = STAGE_SEQUENCE.index(StageId.ASSASSIN)  # 0-based
SYNTHESIS_POSITION = STAGE_SEQUENCE.index(StageId.SYNTHESIZER)

TERMINAL_STATUSES = frozenset({RunStatus.VETOED, RunStatus.COMPLETED, RunStatus.FAILED})
TERMINAL_RESULT_STATUSES = frozenset({RunStatus.VETOED, RunStatus.COMPLETED})

_TRANSITIONS = {
    RunStatus.INIT: {RunStatus.AGENTS_RUNNING, RunStatus.FAILED},
    RunStatus.AGENTS_RUNNING: {RunStatus.SYNTHESIZING, RunStatus.VETOED, RunStatus.FAILED},
    RunStatus.SYNTHESIZING: {RunStatus.COMPLETED, RunStatus.FAILED},
    RunStatus.VETOED: set(),
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
}

_RECOMMENDATION_DECISIONS = {
    "PROCEED": Decision.CONTINUE,
    "STOP": Decision.STOP,
}


def can_transition(current: RunStatus, target: RunStatus) -> bool:
    """Status moves forward only; rewriting the current status is a no-op."""
    return current == target or target in _TRANSITIONS[current]


class ActionKind(str, Enum):
    """What the engine does next."""

    BEGIN = "begin"
    RUN_STAGE = "run_stage"
    ENTER_SYNTHESIS = "enter_synthesis"
    FINALIZE_VETOED = "finalize_vetoed"
    FINALIZE_COMPLETED = "finalize_completed"
    DONE = "done"


# Actions that only write fields and can ride along with the turn that caused them
FOLDABLE_ACTIONS = frozenset({ActionKind.ENTER_SYNTHESIS, ActionKind.FINALIZE_VETOED, ActionKind.FINALIZE_COMPLETED})


class Action(NamedTuple):
    kind: ActionKind
    stage: Optional[StageId] = None
    position: Optional[int] = None  # 0-based turn position for RUN_STAGE


def verify_checkpoint(turns: List[Turn]) -> None:
    """Check that recorded turns are a prefix of the stage sequence.

    Raises:
        CheckpointError: On extra turns, gaps, reordering or a turn past a veto
    """
    if len(turns) > len(STAGE_SEQUENCE):
        raise CheckpointError(f"Conversation has {len(turns)} turns; the pipeline has {len(STAGE_SEQUENCE)} stages")

    for position, turn in enumerate(turns):
        expected = STAGE_SEQUENCE[position]
        if turn.turn_number != position + 1 or turn.stage_id != expected:
            raise CheckpointError(
                f"Turn at position {position} is {turn.stage_id.value}#{turn.turn_number}, "
                f"expected {expected.value}#{position + 1}"
            )

    if len(turns) > VETO_POSITION + 1 and is_veto(turns[VETO_POSITION]):
        raise CheckpointError("Turns recorded after a veto")


def is_veto(turn: Turn) -> bool:
    """Whether an assassin turn vetoed the idea."""
    output = _stage_output(turn)
    return isinstance(output, AssassinOutput) and output.veto


def next_action(run: RunDocument) -> Action:
    """Decide the next step for a run from its committed state."""
    if run.status in TERMINAL_STATUSES:
        return Action(ActionKind.DONE)

    turns = run.conversation
    verify_checkpoint(turns)

    if run.status == RunStatus.INIT:
        if turns:
            raise CheckpointError("Run in INIT already has turns")
        return Action(ActionKind.BEGIN)

    count = len(turns)

    if run.status == RunStatus.SYNTHESIZING and count < SYNTHESIS_POSITION:
        raise CheckpointError(f"Run is SYNTHESIZING with only {count} turns")

    if count > VETO_POSITION and is_veto(turns[VETO_POSITION]):
        return Action(ActionKind.FINALIZE_VETOED)

    if count >= SYNTHESIS_POSITION and run.status == RunStatus.AGENTS_RUNNING:
        return Action(ActionKind.ENTER_SYNTHESIS)

    if count == len(STAGE_SEQUENCE):
        return Action(ActionKind.FINALIZE_COMPLETED)

    return Action(ActionKind.RUN_STAGE, stage=STAGE_SEQUENCE[count], position=count)


def map_recommendation(recommendation: Optional[str]) -> Decision:
    """PROCEED -> CONTINUE, STOP -> STOP, anything else -> CONDITIONAL."""
    return _RECOMMENDATION_DECISIONS.get((recommendation or "").upper(), Decision.CONDITIONAL)


def build_vetoed_result(turns: List[Turn]) -> Dict[str, Any]:
    """Terminal result from the first three turns."""
    assassin_turn = turns[VETO_POSITION]
    output = _stage_output(assassin_turn)
    return {
        "summary": assassin_turn.message,
        "decision": Decision.STOP.value,
        "veto_reason": output.kill_reason,
        "failure_mode": output.failure_mode,
        "key_risks": [],
        "key_assumptions": [],
        "ranked_recommendations": [],
    }


def build_completed_result(turns: List[Turn]) -> Dict[str, Any]:
    """Terminal result from the synthesizer turn."""
    synthesizer_turn = turns[SYNTHESIS_POSITION]
    output = _stage_output(synthesizer_turn)
    if not isinstance(output, SynthesizerOutput):
        raise CheckpointError("Final turn is not a synthesizer turn")
    return {
        "summary": synthesizer_turn.message,
        "decision": map_recommendation(output.recommendation).value,
        "recommendation": output.recommendation,
        "constrained_version": output.constrained_version,
        "open_risks": list(output.open_risks),
        "key_risks": list(output.open_risks),
        "key_assumptions": [],
        "ranked_recommendations": [],
    }


def build_metadata(run: RunDocument, status: RunStatus, completed_at: datetime) -> Dict[str, Any]:
    """Run metadata recorded at finalization."""
    turns = run.conversation
    return {
        "agent_count": len(turns),
        "veto_occurred": status == RunStatus.VETOED,
        "llm_model": turns[-1].model_id if turns else None,
        "total_tokens": sum(turn.usage_tokens for turn in turns),
        "total_duration_ms": max(0, int((completed_at - run.created_at).total_seconds() * 1000)),
    }


def action_operations(action: Action, run: RunDocument, now: datetime) -> List[PatchOperation]:
    """Field operations that carry out a non-stage action."""
    if action.kind == ActionKind.BEGIN:
        return [_status(RunStatus.AGENTS_RUNNING)]

    if action.kind == ActionKind.ENTER_SYNTHESIS:
        return [_status(RunStatus.SYNTHESIZING)]

    if action.kind == ActionKind.FINALIZE_VETOED:
        return _finalize(RunStatus.VETOED, build_vetoed_result(run.conversation), run, now)

    if action.kind == ActionKind.FINALIZE_COMPLETED:
        return _finalize(RunStatus.COMPLETED, build_completed_result(run.conversation), run, now)

    raise ValueError(f"Action {action.kind.value} has no field operations")


def failure_operations(error_message: str) -> List[PatchOperation]:
    return [
        _status(RunStatus.FAILED),
        PatchOperation(op="replace", path="/error_message", value=error_message),
    ]


def _status(status: RunStatus) -> PatchOperation:
    return PatchOperation(op="replace", path="/status", value=status.value)


def _finalize(status: RunStatus, result: Dict[str, Any], run: RunDocument, now: datetime) -> List[PatchOperation]:
    return [
        _status(status),
        PatchOperation(op="add", path="/result", value=result),
        PatchOperation(op="replace", path="/completed_at", value=now),
        PatchOperation(op="replace", path="/metadata", value=build_metadata(run, status, now)),
    ]


def _stage_output(turn: Turn):
    try:
        return turn.output()
    except PydanticValidationError as e:
        raise CheckpointError(f"Recorded {turn.stage_id.value} turn has invalid output: {e}") from e
