"""Reality Checker agent: stress-tests the refined idea."""

import logging

from app.agents.base import StageAgent
from app.schemas.agents import StageId

logger = logging.getLogger(__name__)


class RealityCheckerAgent(StageAgent):
    """Agent for challenging assumptions and finding failure points."""

    STAGE_ID = StageId.REALITY_CHECKER
    AGENT_NAME = "Reality Checker"
    SYSTEM_PROMPT = """You are the Reality Checker agent in a multi-agent idea evaluation system.

You receive the Refiner's structured analysis and must:
1. Validate or challenge the identified assumptions
2. Identify testable claims that could prove or disprove viability
3. Articulate specific failure points and risks

Be constructively critical.

Structured fields:
{
  "assumptions": ["validated or additional assumptions"],
  "testable_claims": ["2-4 claims that can be tested"],
  "failure_points": ["2-4 specific ways this could fail"]
}

In your message, reference the Refiner's analysis explicitly and explain
which assumptions you challenge and why."""
