"""Run state store: create, read and atomic field-level patches of run documents."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.database import utcnow
from app.models.run import Run
from app.pipeline.states import TERMINAL_RESULT_STATUSES, can_transition
from app.schemas.run import PatchOperation, RunDocument, RunStatus, Turn
from app.services.errors import (
    CheckpointError,
    PersistenceError,
    RunConflictError,
    RunNotFoundError,
    TurnConflictError,
)

logger = logging.getLogger(__name__)

# Patchable top-level fields -> ORM attribute
FIELD_ATTRIBUTES = {
    "status": "status",
    "result": "result",
    "metadata": "run_metadata",
    "error_message": "error_message",
    "completed_at": "completed_at",
}

WRITE_ONCE_FIELDS = {"result", "completed_at"}


def to_document(run: Run) -> RunDocument:
    """Convert a Run row to its document form."""
    return RunDocument(
        id=run.id,
        status=run.status,
        idea_text=run.idea_text,
        preset_id=run.preset_id,
        conversation=[Turn.model_validate(turn) for turn in (run.conversation or [])],
        result=run.result,
        metadata=run.run_metadata,
        error_message=run.error_message,
        created_at=run.created_at,
        updated_at=run.updated_at,
        completed_at=run.completed_at,
        ttl=run.ttl,
    )


def turn_operation(position: int, turn: Turn) -> PatchOperation:
    """Position-addressed operation recording ``turn`` at 0-based ``position``."""
    return PatchOperation(op="add", path=f"/conversation/{position}", value=turn.model_dump(mode="json"))


class RunStateStore:
    """Persists run documents.

    Writes are explicit field-level patches applied atomically under a row
    lock; callers never read-modify-write whole documents.
    """

    def __init__(self, session_factory: sessionmaker):
        """Initialize the store."""
        self.session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Run store unavailable: {e}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def create(
        self,
        document: RunDocument,
        before_commit: Optional[Callable[[Session], None]] = None,
    ) -> RunDocument:
        """
        Insert a new run.

        Args:
            document: The run in its initial state
            before_commit: Adds dependent rows (the run's job) to the same transaction

        Raises:
            RunConflictError: If a run with the same id exists
        """
        with self._session() as db:
            if db.get(Run, document.id) is not None:
                raise RunConflictError(f"Run {document.id} already exists")

            run = Run(
                id=document.id,
                status=document.status.value,
                idea_text=document.idea_text,
                preset_id=document.preset_id,
                conversation=[turn.model_dump(mode="json") for turn in document.conversation],
                result=document.result,
                run_metadata=document.metadata,
                error_message=document.error_message,
                created_at=document.created_at,
                updated_at=document.updated_at,
                completed_at=document.completed_at,
                ttl=document.ttl,
            )
            db.add(run)
            try:
                db.flush()  # Run row must exist before dependent rows
                if before_commit is not None:
                    before_commit(db)
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise RunConflictError(f"Run {document.id} already exists") from e

            logger.info(f"Created run {run.id}")
            return to_document(run)

    def read(self, run_id: str) -> Optional[RunDocument]:
        """Read a run, or None if it does not exist."""
        with self._session() as db:
            run = db.get(Run, run_id)
            if run is None:
                return None
            return to_document(run)

    def patch_fields(self, run_id: str, operations: Iterable[PatchOperation]) -> RunDocument:
        """
        Apply an ordered list of field operations as one atomic update.

        Args:
            run_id: Run identifier
            operations: Ordered operations; all apply or none do

        Returns:
            The updated run document

        Raises:
            RunNotFoundError: If the run does not exist
            RunConflictError: On a backward status transition or write-once violation
            CheckpointError: On a turn that does not fit the conversation
            PersistenceError: On any storage failure
        """
        operations = list(operations)

        with self._session() as db:
            run = db.query(Run).filter(Run.id == run_id).with_for_update().first()
            if run is None:
                raise RunNotFoundError(run_id)

            conversation = list(run.conversation or [])
            for operation in operations:
                self._apply(run, conversation, operation)

            self._check_result_invariant(run)

            run.conversation = conversation
            run.updated_at = utcnow()
            db.commit()

            logger.info(f"Patched run {run_id}: {', '.join(o.path for o in operations)}")
            return to_document(run)

    def append_turn(
        self,
        run_id: str,
        position: int,
        turn: Turn,
        extra_operations: Optional[List[PatchOperation]] = None,
    ) -> RunDocument:
        """Record a turn at ``position`` together with any follow-up operations."""
        operations = [turn_operation(position, turn)]
        operations.extend(extra_operations or [])
        return self.patch_fields(run_id, operations)

    def _apply(self, run: Run, conversation: List[dict], operation: PatchOperation) -> None:
        parts = operation.path.strip("/").split("/")

        if parts[0] == "conversation" and len(parts) == 2:
            self._apply_turn(conversation, parts[1], operation.value)
            return

        if len(parts) != 1 or parts[0] not in FIELD_ATTRIBUTES:
            raise PersistenceError(f"Path {operation.path} is not patchable")

        field = parts[0]
        attribute = FIELD_ATTRIBUTES[field]
        value = operation.value

        if field == "status":
            current = RunStatus(run.status)
            target = RunStatus(value)
            if not can_transition(current, target):
                raise RunConflictError(f"Run {run.id}: illegal status transition {current.value} -> {target.value}")
            value = target.value
        elif field == "completed_at" and isinstance(value, str):
            value = datetime.fromisoformat(value)

        existing = getattr(run, attribute)
        if field in WRITE_ONCE_FIELDS and existing is not None:
            if existing != value:
                raise RunConflictError(f"Run {run.id}: {field} is already set")
            return

        setattr(run, attribute, value)

    def _apply_turn(self, conversation: List[dict], index: str, value) -> None:
        turn = Turn.model_validate(value)
        record = turn.model_dump(mode="json")

        if index == "-":
            position = len(conversation)
        else:
            try:
                position = int(index)
            except ValueError as e:
                raise PersistenceError(f"Invalid conversation index {index!r}") from e

        if turn.turn_number != position + 1:
            raise CheckpointError(f"Turn {turn.turn_number} cannot be recorded at position {position}")

        if position > len(conversation):
            raise CheckpointError(
                f"Turn {turn.turn_number} would leave a gap after {len(conversation)} recorded turns"
            )

        if position < len(conversation):
            if conversation[position] != record:
                raise TurnConflictError(
                    f"Turn {turn.turn_number} is already recorded with different content", position
                )
            return

        conversation.append(record)

    def _check_result_invariant(self, run: Run) -> None:
        has_result_status = RunStatus(run.status) in TERMINAL_RESULT_STATUSES
        if has_result_status and run.result is None:
            raise RunConflictError(f"Run {run.id}: status {run.status} requires a result")
        if not has_result_status and run.result is not None:
            raise RunConflictError(f"Run {run.id}: status {run.status} cannot carry a result")
