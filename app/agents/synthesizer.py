"""Synthesizer agent: final recommendation."""

import logging

from app.agents.base import StageAgent
from app.schemas.agents import StageId, SynthesizerOutput

logger = logging.getLogger(__name__)


class SynthesizerAgent(StageAgent):
    """Agent for combining every prior turn into a recommendation."""

    STAGE_ID = StageId.SYNTHESIZER
    AGENT_NAME = "Synthesizer"
    MAX_TOKENS = 2000
    SYSTEM_PROMPT = """You are the Synthesizer agent in a multi-agent idea evaluation system.

You receive all previous agent outputs and must:
1. Propose a constrained MVP version
2. Identify remaining open risks
3. Make a clear recommendation:
   - RESEARCH_FIRST: validate assumptions before building
   - PROCEED: build the MVP as described
   - STOP: don't pursue this idea
   - PIVOT: change direction significantly

Structured fields:
{
  "constrained_version": "MVP description",
  "open_risks": ["2-4 unresolved risks"],
  "recommendation": "RESEARCH_FIRST"
}

In your message, reference the Refiner, Reality Checker, Assassin and Cost
Analyst by name and explain your recommendation."""

    def _log_output(self, output: SynthesizerOutput) -> None:
        logger.info(f"Synthesizer: final recommendation: {output.recommendation}")
        logger.info(f"Synthesizer: open risks count: {len(output.open_risks)}")
