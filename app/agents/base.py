"""Base stage agent: build the call, run it under the retry policy, normalize the turn."""

import json
import logging
import time
from typing import Any, Callable, Dict, List, Tuple

from pydantic import ValidationError as PydanticValidationError

from app.database import utcnow
from app.schemas.agents import StageId, StageOutput, dump_structured_output, parse_stage_output
from app.schemas.run import Turn
from app.services.errors import StageFatalError
from app.services.llm_client import LLMClient, ModelRequest
from app.services.retry import DEFAULT_MAX_ATTEMPTS, as_stage_error, with_retry
from app.services.validators import truncate_message

logger = logging.getLogger(__name__)

JSON_INSTRUCTIONS = """
Respond with ONE JSON object containing the structured fields above plus:
  "message": a conversational message (100-250 words, max 700 characters)
  written in first person that references the previous agents by name.
"""


def build_user_prompt(idea_text: str, conversation: List[Turn]) -> str:
    """
    Build the user prompt: the idea plus every prior turn.

    Prior messages are truncated to keep the payload bounded.
    """
    prompt = f"Idea to evaluate:\n{idea_text}\n\n"

    if conversation:
        prompt += "Previous agent analysis:\n"
        for turn in conversation:
            message = turn.message or json.dumps(turn.structured_output)
            prompt += f"\n{turn.agent_name}: {truncate_message(message)}\n"

    prompt += "\nNow provide YOUR analysis as a single JSON object with the required fields and your message."
    return prompt


class StageAgent:
    """Base class for the five stage agents."""

    STAGE_ID: StageId
    AGENT_NAME: str
    SYSTEM_PROMPT: str
    TEMPERATURE = 0.2
    MAX_TOKENS = 1500

    def __init__(
        self,
        llm_client: LLMClient,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize stage agent."""
        self.llm = llm_client
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep

    @property
    def system_prompt(self) -> str:
        return self.SYSTEM_PROMPT.strip() + "\n" + JSON_INSTRUCTIONS

    def build_request(self, idea_text: str, conversation: List[Turn]) -> ModelRequest:
        return ModelRequest(
            system_prompt=self.system_prompt,
            user_prompt=build_user_prompt(idea_text, conversation),
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )

    def execute(self, idea_text: str, conversation: List[Turn]) -> Turn:
        """
        Run this stage once, under the retry policy.

        Args:
            idea_text: The idea under evaluation
            conversation: Turns recorded so far, in order

        Returns:
            The normalized turn, numbered after the existing conversation

        Raises:
            StageFatalError: If no valid result is produced within the retry budget
        """
        stage = self.STAGE_ID.value
        logger.info(f"{self.AGENT_NAME}: starting analysis")

        request = self.build_request(idea_text, conversation)
        start = time.monotonic()

        try:
            result = with_retry(
                lambda: self.llm.call(request),
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                sleep=self.sleep,
                label=f"{self.AGENT_NAME} call",
            )
        except Exception as e:
            logger.error(f"{self.AGENT_NAME}: failed: {e}")
            stage_error = as_stage_error(e, stage)
            if stage_error is e:
                raise
            raise stage_error from e

        duration_ms = int((time.monotonic() - start) * 1000)
        output, message = self._parse(result.content)
        self._log_output(output)

        logger.info(f"{self.AGENT_NAME}: analysis complete ({duration_ms}ms, {result.usage_tokens} tokens)")

        return Turn(
            turn_number=len(conversation) + 1,
            stage_id=self.STAGE_ID,
            agent_name=self.AGENT_NAME,
            message=truncate_message(message),
            structured_output=dump_structured_output(output),
            model_id=result.model,
            usage_tokens=result.usage_tokens,
            duration_ms=duration_ms,
            created_at=utcnow(),
        )

    def _parse(self, content: str) -> Tuple[StageOutput, str]:
        """Validate model content into this stage's output shape."""
        stage = self.STAGE_ID.value
        try:
            data: Dict[str, Any] = json.loads(content)
        except ValueError as e:
            raise StageFatalError(f"{self.AGENT_NAME} returned invalid JSON: {e}", stage_id=stage) from e

        if not isinstance(data, dict):
            raise StageFatalError(f"{self.AGENT_NAME} returned {type(data).__name__}, expected an object", stage_id=stage)

        message = data.pop("message", None)
        if not isinstance(message, str) or not message.strip():
            raise StageFatalError(f"{self.AGENT_NAME} returned no conversational message", stage_id=stage)

        try:
            output = parse_stage_output(stage, data)
        except PydanticValidationError as e:
            raise StageFatalError(f"{self.AGENT_NAME} output failed validation: {e}", stage_id=stage) from e

        return output, message

    def _log_output(self, output: StageOutput) -> None:
        """Log stage-specific highlights (to be overridden by subclasses)."""
