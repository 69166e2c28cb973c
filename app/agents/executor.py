"""Step executor: runs one pipeline stage and persists its turn."""

import logging
import time
from typing import Callable, Dict, List, Optional, Type

from app.agents.assassin import AssassinAgent
from app.agents.base import StageAgent
from app.agents.cost import CostAnalystAgent
from app.agents.reality_checker import RealityCheckerAgent
from app.agents.refiner import RefinerAgent
from app.agents.synthesizer import SynthesizerAgent
from app.schemas.agents import StageId
from app.schemas.run import PatchOperation, RunDocument, Turn
from app.services.llm_client import LLMClient
from app.services.retry import DEFAULT_MAX_ATTEMPTS
from app.services.run_store import RunStateStore

logger = logging.getLogger(__name__)

# Agent registry
STAGE_AGENTS: Dict[StageId, Type[StageAgent]] = {
    StageId.REFINER: RefinerAgent,
    StageId.REALITY_CHECKER: RealityCheckerAgent,
    StageId.ASSASSIN: AssassinAgent,
    StageId.COST: CostAnalystAgent,
    StageId.SYNTHESIZER: SynthesizerAgent,
}


class StepExecutor:
    """Runs stage agents and records their turns through the run store."""

    def __init__(
        self,
        llm_client: LLMClient,
        store: RunStateStore,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize executor with one agent per stage."""
        self.store = store
        self.agents: Dict[StageId, StageAgent] = {
            stage: agent_class(llm_client, max_attempts=max_attempts, base_delay=base_delay, sleep=sleep)
            for stage, agent_class in STAGE_AGENTS.items()
        }

    def execute(self, stage_id: str, idea_text: str, conversation: List[Turn]) -> Turn:
        """
        Produce the turn for one stage.

        Raises:
            StageFatalError: If the stage cannot produce a valid result
        """
        agent = self.agents[StageId(stage_id)]
        return agent.execute(idea_text, conversation)

    def persist(
        self,
        run_id: str,
        turn: Turn,
        extra_operations: Optional[List[PatchOperation]] = None,
    ) -> RunDocument:
        """Record a turn at its position, atomically with any follow-up operations."""
        logger.info(f"Adding turn {turn.turn_number} ({turn.agent_name}) to run {run_id}")
        return self.store.append_turn(run_id, turn.turn_number - 1, turn, extra_operations)
