"""
Structured-completion client.

Sends one prompt to the injected GenerationClient, recovers a JSON object from
the free-text reply and retries the whole call a bounded number of times.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional

from alignment_api.config import AnalysisSettings
from alignment_api.errors import (
    GenerationServiceError,
    GenerationUnavailable,
    InvalidOutput,
)
from alignment_api.generation_client import GenerationClient

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are an expert curriculum analyst. Respond ONLY with a single valid JSON object. "
    "Do not include explanations, markdown formatting or any text outside the JSON object."
)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


def _try_load_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def parse_json_object(raw: str) -> Optional[Dict[str, Any]]:
    """
    Recover a JSON object from a model reply.

    Tries the trimmed text, then the interior of a fenced block, then the span
    from the first ``{`` to the last ``}``. Returns None when nothing parses to
    an object.
    """
    if not raw:
        return None
    text = raw.strip()

    parsed = _try_load_object(text)
    if parsed is not None:
        return parsed

    fence = _FENCE_RE.search(text)
    if fence:
        parsed = _try_load_object(fence.group(1))
        if parsed is not None:
            return parsed

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return _try_load_object(text[start:end + 1])
    return None


class StructuredCompletionClient:
    """Retrying JSON-object completion over a GenerationClient."""

    def __init__(
        self,
        generation_client: Optional[GenerationClient],
        settings: Optional[AnalysisSettings] = None,
        sleep=asyncio.sleep,
    ):
        self.generation_client = generation_client
        self.settings = settings or AnalysisSettings()
        self._sleep = sleep

    @property
    def available(self) -> bool:
        return self.generation_client is not None

    async def complete(self, prompt: str, expected_key: Optional[str] = None) -> Dict[str, Any]:
        if self.generation_client is None:
            raise GenerationUnavailable("Generation service is not configured (missing API key)")

        max_attempts = max(1, self.settings.completion_max_attempts)
        last_raw: Optional[str] = None
        last_problem = "no response"
        service_failure: Optional[GenerationServiceError] = None

        for attempt in range(1, max_attempts + 1):
            try:
                raw = await self.generation_client.generate(
                    prompt,
                    system_instruction=SYSTEM_INSTRUCTION,
                    temperature=self.settings.temperature,
                    max_output_tokens=self.settings.max_output_tokens,
                    json_mode=True,
                )
            except GenerationServiceError as exc:
                if not exc.retryable:
                    logger.error("Generation service refused the request: %s", exc)
                    raise GenerationUnavailable(str(exc)) from exc
                service_failure = exc
                logger.warning("Generation attempt %d/%d failed: %s", attempt, max_attempts, exc)
            else:
                service_failure = None
                last_raw = raw
                parsed = parse_json_object(raw)
                if parsed is None:
                    last_problem = "reply did not contain a JSON object"
                elif expected_key and expected_key not in parsed:
                    last_problem = f"reply is missing the '{expected_key}' key"
                else:
                    if attempt > 1:
                        logger.info("Structured completion succeeded on attempt %d", attempt)
                    return parsed
                logger.warning("Completion attempt %d/%d unusable: %s", attempt, max_attempts, last_problem)

            if attempt < max_attempts:
                await self._sleep(self.settings.completion_retry_delay_seconds * attempt)

        if service_failure is not None:
            raise GenerationUnavailable(str(service_failure)) from service_failure

        logger.warning(
            "Structured completion gave up after %d attempts; last raw reply: %s",
            max_attempts,
            (last_raw or "")[:500],
        )
        raise InvalidOutput(
            f"Model output could not be parsed after {max_attempts} attempts: {last_problem}",
            raw_response=last_raw,
            attempts=max_attempts,
        )
