"""
Curriculum advisor chat.

Free-text conversation about a curriculum on top of the configured
GenerationClient. The client history is cleaned into strictly alternating
user/model turns before it is sent; the current message is always the final
user turn.
"""

import logging
from typing import List, Optional, Sequence

from alignment_api.analysis_schema import ChatRequest, ChatTurn
from alignment_api.config import AnalysisSettings
from alignment_api.errors import ChatRequestError, GenerationUnavailable
from alignment_api.generation_client import GenerationClient

logger = logging.getLogger(__name__)

ADVISOR_INSTRUCTION = (
    "You are a helpful AI assistant specializing in curriculum analysis and educational strategy "
    "for K-12 and higher education. Provide insightful, actionable advice, and maintain a "
    "professional and supportive tone. Be concise but thorough in your explanations."
)
CHAT_ROLES = ("user", "model")


def advisor_instruction(curriculum_context: str = "") -> str:
    context = (curriculum_context or "").strip()
    if not context:
        return ADVISOR_INSTRUCTION
    return (
        f"{ADVISOR_INSTRUCTION} The user is currently focusing on a curriculum with the following "
        f'context: "{context}". Please tailor your responses considering this specific curriculum.'
    )


def effective_history(history: Sequence[ChatTurn]) -> List[ChatTurn]:
    """
    Keep user/model turns, drop a leading model greeting and check alternation.

    Raises ChatRequestError when two consecutive turns share a role or the
    history already ends with a user turn.
    """
    turns = [turn for turn in history if turn.role in CHAT_ROLES and turn.text.strip()]
    while turns and turns[0].role == "model":
        turns = turns[1:]

    for previous, current in zip(turns, turns[1:]):
        if previous.role == current.role:
            raise ChatRequestError(
                f"Chat history must alternate between user and model turns (two '{current.role}' turns in a row)"
            )
    if turns and turns[-1].role == "user":
        raise ChatRequestError("Chat history must end with a model turn before the next user message")
    return turns


class CurriculumAdvisor:
    def __init__(self, generation_client: Optional[GenerationClient], settings: Optional[AnalysisSettings] = None):
        self.generation_client = generation_client
        self.settings = settings or AnalysisSettings()

    async def reply(self, request: ChatRequest) -> str:
        if self.generation_client is None:
            raise GenerationUnavailable("Generation service is not configured (missing API key)")

        message = (request.message or "").strip()
        if not message:
            raise ChatRequestError("Message is required and must be a non-empty string.")

        history = effective_history(request.history)
        logger.info("Advisor chat request (%d earlier turns, context=%s)", len(history), bool(request.curriculum_context))
        return await self.generation_client.generate(
            message,
            system_instruction=advisor_instruction(request.curriculum_context),
            temperature=self.settings.chat_temperature,
            max_output_tokens=self.settings.chat_max_output_tokens,
            json_mode=False,
            history=history,
        )
