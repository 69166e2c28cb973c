"""Orchestration engine: drives a run through the fixed stage sequence.

The engine re-reads nothing between steps: every write returns the
committed document, and the next action is computed from it. Re-entering
``run`` after a crash or a redelivered job resumes from the last committed
checkpoint without calling the model again for a recorded stage.

If two deliveries of the same run overlap, the first to record a turn
keeps driving the run; the other stops without writing anything.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel

from app.agents.executor import StepExecutor
from app.database import utcnow
from app.pipeline.states import (
    FOLDABLE_ACTIONS,
    TERMINAL_STATUSES,
    Action,
    ActionKind,
    action_operations,
    failure_operations,
    next_action,
)
from app.schemas.run import RunDocument, RunStatus
from app.services.errors import (
    CheckpointError,
    PersistenceError,
    RunConflictError,
    RunNotFoundError,
    TurnConflictError,
)
from app.services.run_store import RunStateStore

logger = logging.getLogger(__name__)


class PipelineOutcome(BaseModel):
    """Outcome of one engine invocation."""

    run_id: str
    status: RunStatus
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    turn_count: int = 0

    @property
    def finished(self) -> bool:
        """False when the run was left to another delivery."""
        return self.status in TERMINAL_STATUSES


class PipelineEngine:
    """Runs the five-stage evaluation pipeline for one run at a time."""

    def __init__(
        self,
        store: RunStateStore,
        executor: StepExecutor,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the engine."""
        self.store = store
        self.executor = executor
        self.clock = clock

    def run(
        self,
        run_id: str,
        idea_text: Optional[str] = None,
        heartbeat: Optional[Callable[[], Any]] = None,
    ) -> PipelineOutcome:
        """
        Drive a run to a terminal state.

        Args:
            run_id: Run identifier
            idea_text: Expected idea text; must match the persisted run if given
            heartbeat: Called after every committed write (the worker renews its job lease)

        Returns:
            PipelineOutcome with status VETOED, COMPLETED or FAILED, or the
            current non-terminal status if another delivery recorded a turn first

        Raises:
            RunNotFoundError: If the run does not exist
        """
        run = self.store.read(run_id)
        if run is None:
            raise RunNotFoundError(run_id)

        logger.info(
            f"AgentPipeline: starting for run {run_id} "
            f"(status {run.status.value}, {len(run.conversation)} turns recorded)"
        )

        try:
            if idea_text is not None and idea_text != run.idea_text:
                raise RunConflictError(f"Run {run_id} was created for a different idea text")
            run = self._drive(run, heartbeat)
        except Exception as e:
            logger.error(f"AgentPipeline: run {run_id} failed: {e}", exc_info=True)
            return self.fail(run_id, str(e) or type(e).__name__)

        logger.info(f"AgentPipeline: run {run_id} left as {run.status.value}")
        return self._outcome(run)

    def fail(self, run_id: str, error_message: str) -> PipelineOutcome:
        """Record FAILED with an error message. Already-terminal runs are left as they are."""
        try:
            run = self.store.patch_fields(run_id, failure_operations(error_message))
        except RunConflictError:
            run = self.store.read(run_id)
            logger.warning(f"AgentPipeline: run {run_id} already terminal ({run.status.value}), not marking FAILED")
            return self._outcome(run)
        except PersistenceError as e:
            logger.error(f"AgentPipeline: could not record failure of run {run_id}: {e}")
            return PipelineOutcome(run_id=run_id, status=RunStatus.FAILED, error_message=error_message)

        return self._outcome(run)

    def _drive(self, run: RunDocument, heartbeat: Optional[Callable[[], Any]]) -> RunDocument:
        while True:
            action = next_action(run)

            if action.kind == ActionKind.DONE:
                return run

            if action.kind == ActionKind.RUN_STAGE:
                run, recorded = self._run_stage(run, action)
                if not recorded:
                    return run
            else:
                logger.info(f"AgentPipeline: {action.kind.value} for run {run.id}")
                run = self.store.patch_fields(run.id, action_operations(action, run, self.clock()))

            if heartbeat is not None:
                heartbeat()

    def _run_stage(self, run: RunDocument, action: Action) -> Tuple[RunDocument, bool]:
        """Execute and record one stage. Returns the run and whether this call recorded the turn."""
        logger.info(f"AgentPipeline: calling {action.stage.value} (turn {action.position + 1})")

        turn = self.executor.execute(action.stage.value, run.idea_text, run.conversation)
        if turn.turn_number != action.position + 1:
            raise CheckpointError(f"Stage {action.stage.value} produced turn {turn.turn_number}, expected {action.position + 1}")

        # Status transitions caused by this turn are written in the same patch
        projected = run.model_copy(update={"conversation": [*run.conversation, turn]})
        follow_up = next_action(projected)
        extra_operations = []
        if follow_up.kind in FOLDABLE_ACTIONS:
            logger.info(f"AgentPipeline: {follow_up.kind.value} for run {run.id}")
            extra_operations = action_operations(follow_up, projected, self.clock())

        try:
            return self.executor.persist(run.id, turn, extra_operations), True
        except TurnConflictError as e:
            if e.position != action.position:
                raise
            current = self.store.read(run.id)
            logger.warning(
                f"AgentPipeline: turn {turn.turn_number} of run {run.id} was recorded by another delivery, "
                f"leaving the run to it (status {current.status.value})"
            )
            return current, False

    def _outcome(self, run: RunDocument) -> PipelineOutcome:
        return PipelineOutcome(
            run_id=run.id,
            status=run.status,
            result=run.result,
            error_message=run.error_message,
            turn_count=len(run.conversation),
        )
