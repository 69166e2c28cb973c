"""Stage output schemas.

Each stage returns a JSON object with a conversational ``message`` plus a
stage-specific field set. The field sets form a closed union tagged by
``stage_id``; the stored ``structured_output`` of a turn omits the tag.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator


class StageId(str, Enum):
    """Fixed pipeline stage identifiers, in execution order."""

    REFINER = "refiner"
    REALITY_CHECKER = "reality_checker"
    ASSASSIN = "assassin"
    COST = "cost"
    SYNTHESIZER = "synthesizer"


# Refiner
class RefinerOutput(BaseModel):
    """Structured idea: problem, assumptions, solution."""

    stage_id: Literal["refiner"] = "refiner"
    problem_statement: str
    assumptions: List[str]
    proposed_solution: str


# Reality Checker
class RealityCheckerOutput(BaseModel):
    """Challenged assumptions and ways the idea could fail."""

    stage_id: Literal["reality_checker"] = "reality_checker"
    assumptions: List[str]
    testable_claims: List[str]
    failure_points: List[str]


# Assassin
class AssassinOutput(BaseModel):
    """Veto decision."""

    stage_id: Literal["assassin"] = "assassin"
    veto: bool
    kill_reason: Optional[str] = None
    failure_mode: Optional[str] = None  # e.g. 'no_real_user', 'economic_nonviability'

    @field_validator("failure_mode")
    @classmethod
    def _normalize_failure_mode(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().lower() or None

    @model_validator(mode="after")
    def _veto_needs_reason(self) -> "AssassinOutput":
        if self.veto and not (self.kill_reason or "").strip():
            raise ValueError("kill_reason is required when veto is true")
        return self


# Cost Analyst
class CostOutput(BaseModel):
    """Low/Medium/High ratings, each with a short explanation."""

    stage_id: Literal["cost"] = "cost"
    implementation_cost: str
    maintenance_cost: str
    operational_risk: str
    cognitive_load: str


# Synthesizer
class SynthesizerOutput(BaseModel):
    """Final recommendation."""

    stage_id: Literal["synthesizer"] = "synthesizer"
    constrained_version: str
    open_risks: List[str]
    recommendation: str  # 'RESEARCH_FIRST', 'PROCEED', 'STOP', 'PIVOT'

    @field_validator("recommendation")
    @classmethod
    def _normalize_recommendation(cls, value: str) -> str:
        return value.strip().upper()


StageOutput = Annotated[
    Union[RefinerOutput, RealityCheckerOutput, AssassinOutput, CostOutput, SynthesizerOutput],
    Field(discriminator="stage_id"),
]

_stage_output_adapter = TypeAdapter(StageOutput)


def parse_stage_output(stage_id: str, data: Dict[str, Any]) -> StageOutput:
    """Validate a stage's field set into its tagged variant.

    Raises:
        pydantic.ValidationError: If the fields do not match the stage's shape
    """
    payload = dict(data)
    payload["stage_id"] = StageId(stage_id).value
    return _stage_output_adapter.validate_python(payload)


def dump_structured_output(output: BaseModel) -> Dict[str, Any]:
    """Serialize a stage output for storage, without the tag."""
    return output.model_dump(mode="json", exclude={"stage_id"})
