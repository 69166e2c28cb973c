"""Error taxonomy shared by the model caller, store, executor and engine."""

from enum import Enum
from typing import Optional


class CallSignal(str, Enum):
    """Failure signal attached to a model call error."""

    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    OTHER = "other"


class PipelineError(Exception):
    """Base class for pipeline errors."""


class ValidationError(PipelineError):
    """Request input the user can correct. Never retried."""


class ModelCallError(PipelineError):
    """A single model call failed."""

    def __init__(self, message: str, signal: CallSignal = CallSignal.OTHER, status_code: Optional[int] = None):
        super().__init__(message)
        self.signal = signal
        self.status_code = status_code


class StageRetryableError(PipelineError):
    """Transient failure the retry policy may absorb."""


class StageFatalError(PipelineError):
    """A stage could not produce a valid result. Aborts the run."""

    def __init__(self, message: str, stage_id: Optional[str] = None):
        super().__init__(message)
        self.stage_id = stage_id


class RetryExhaustedError(StageFatalError):
    """Every attempt failed with a retryable error."""

    def __init__(self, message: str, attempts: int, stage_id: Optional[str] = None):
        super().__init__(message, stage_id=stage_id)
        self.attempts = attempts


class PersistenceError(PipelineError):
    """The run store is unavailable or rejected a write."""


class RunNotFoundError(PersistenceError):
    """No run exists with the given id."""

    def __init__(self, run_id: str):
        super().__init__(f"Run {run_id} not found")
        self.run_id = run_id


class RunConflictError(PersistenceError):
    """A write conflicts with the run's current state."""


class TurnConflictError(RunConflictError):
    """A different turn is already recorded at the position being written."""

    def __init__(self, message: str, position: int):
        super().__init__(message)
        self.position = position


class CheckpointError(PersistenceError):
    """Persisted conversation does not match the stage sequence."""
