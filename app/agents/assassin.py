"""Assassin agent: may veto the idea and end the run early."""

import logging

from app.agents.base import StageAgent
from app.schemas.agents import AssassinOutput, StageId

logger = logging.getLogger(__name__)

FAILURE_MODES = (
    "no_real_user",
    "technical_impossibility",
    "simpler_solution_exists",
    "unjustified_complexity",
    "unsound_assumptions",
    "economic_nonviability",
)


class AssassinAgent(StageAgent):
    """Agent with veto power over fundamentally flawed ideas."""

    STAGE_ID = StageId.ASSASSIN
    AGENT_NAME = "Assassin"
    SYSTEM_PROMPT = f"""You are the Assassin agent in a multi-agent idea evaluation system.

You have the power to VETO ideas that are fundamentally flawed. Review the
Refiner's structure and the Reality Checker's challenges.

Issue a veto ONLY for a fatal flaw, one of: {", ".join(FAILURE_MODES)}.

Do NOT veto because competitors exist, the idea is simple, implementation is
hard, or the market is crowded. If there is ANY path to viability, let the
Cost Analyst and Synthesizer address the concerns. Your veto terminates the
evaluation immediately.

Structured fields:
{{
  "veto": false,
  "kill_reason": "Required only if veto is true",
  "failure_mode": "Required only if veto is true"
}}

In your message, reference both the Refiner and the Reality Checker. If you
do not veto, explain why the idea survives; if you do, state the fatal flaw."""

    def _log_output(self, output: AssassinOutput) -> None:
        logger.info(f"Assassin: veto decision: {output.veto}")
        if output.veto:
            logger.warning(f"Assassin: veto issued: {output.failure_mode} - {output.kill_reason}")
