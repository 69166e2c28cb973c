"""Run-related Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.agents import StageId, StageOutput, parse_stage_output
from app.services.validators import validate_idea_text


class RunStatus(str, Enum):
    """Run lifecycle status."""

    INIT = "INIT"
    AGENTS_RUNNING = "AGENTS_RUNNING"
    SYNTHESIZING = "SYNTHESIZING"
    VETOED = "VETOED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Decision(str, Enum):
    """Decision reported in a run's terminal result."""

    STOP = "STOP"
    CONTINUE = "CONTINUE"
    CONDITIONAL = "CONDITIONAL"


class Turn(BaseModel):
    """Persisted output of one stage. Immutable once built."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    turn_number: int = Field(ge=1)
    stage_id: StageId
    agent_name: str
    message: str
    structured_output: Dict[str, Any]
    model_id: Optional[str] = None
    usage_tokens: int = 0
    duration_ms: int = 0
    created_at: datetime

    def output(self) -> StageOutput:
        """Stage-specific view of ``structured_output``."""
        return parse_stage_output(self.stage_id.value, self.structured_output)


class RunDocument(BaseModel):
    """Full persisted run, as returned by ``GET /runs/{id}``."""

    id: str
    status: RunStatus
    idea_text: str
    preset_id: str
    conversation: List[Turn] = []
    result: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    ttl: int


class PatchOperation(BaseModel):
    """One field-level operation of an atomic run patch."""

    op: Literal["replace", "add"]
    path: str
    value: Any = None


class PreflightData(BaseModel):
    """Answers to preflight questions."""

    preflight_id: str
    answers: Dict[str, str] = {}


class RunCreate(BaseModel):
    """Schema for creating a new run."""

    idea_text: str
    preset_id: Optional[str] = None
    preflight_data: Optional[PreflightData] = None

    @field_validator("idea_text")
    @classmethod
    def _check_idea_text(cls, value: str) -> str:
        error = validate_idea_text(value)
        if error:
            raise ValueError(error)
        return value


class RunCreateResponse(BaseModel):
    """Response after creating a run."""

    run_id: str
    status: RunStatus
    created_at: datetime


class PreflightRequest(BaseModel):
    """Schema for a preflight check."""

    idea_text: str = Field(min_length=1, max_length=5000)
    preset_id: Optional[str] = None


class PreflightQuestion(BaseModel):
    """Clarification question, expressed as i18n keys."""

    id: str
    question: str
    required: bool
    default_answers: List[str] = []


class PreflightResponse(BaseModel):
    """Preflight result."""

    preflight_id: str
    ready: bool
    questions: List[PreflightQuestion]
