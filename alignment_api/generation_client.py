"""
Narrow text-generation interface and its provider implementations.

Each provider wraps a synchronous SDK client, pushes the blocking call off the
event loop with ``asyncio.to_thread`` and maps SDK failures onto the typed
GenerationServiceError hierarchy.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import openai
from openai import OpenAI

from alignment_api.analysis_schema import ChatTurn
from alignment_api.config import AnalysisSettings
from alignment_api.errors import (
    GenerationModelNotFound,
    GenerationModelUnavailable,
    GenerationQuotaExceeded,
    GenerationServiceError,
    GenerationUnauthorized,
)

try:
    from google import genai
    from google.genai import types as genai_types
    GENAI_AVAILABLE = True
except ImportError:
    GENAI_AVAILABLE = False
    genai = None  # type: ignore
    genai_types = None  # type: ignore

try:
    import anthropic
    from anthropic import Anthropic
    ANTHROPIC_AVAILABLE = True
except ImportError:
    ANTHROPIC_AVAILABLE = False
    anthropic = None  # type: ignore
    Anthropic = None  # type: ignore

logger = logging.getLogger(__name__)


def classify_service_error(exc: Exception) -> GenerationServiceError:
    """Map a provider exception onto the typed failure it represents."""
    message = str(exc)
    lowered = message.lower()
    status = getattr(exc, "status_code", None) or getattr(exc, "code", None)

    if status in (401, 403) or "api key not valid" in lowered or "invalid api key" in lowered or "unauthorized" in lowered:
        return GenerationUnauthorized(f"Generation service rejected the API key: {message}")
    if status == 429 or "quota" in lowered or "rate limit" in lowered or "rate_limit" in lowered:
        return GenerationQuotaExceeded(f"Generation service quota exceeded: {message}")
    if status == 404 or "not found" in lowered or "is not supported" in lowered:
        return GenerationModelNotFound(f"Generation model not found: {message}")
    if status == 503 or "overloaded" in lowered or "unavailable" in lowered:
        return GenerationModelUnavailable(f"Generation model unavailable: {message}")
    return GenerationModelUnavailable(f"Generation request failed: {message}")


def _role_messages(history: Optional[Sequence[ChatTurn]]) -> List[Dict[str, str]]:
    """OpenAI and Claude call the model side of a conversation "assistant"."""
    return [
        {"role": "assistant" if turn.role == "model" else "user", "content": turn.text}
        for turn in history or []
    ]


def _gemini_contents(prompt: str, history: Optional[Sequence[ChatTurn]]):
    if not history:
        return prompt
    contents = [{"role": turn.role, "parts": [{"text": turn.text}]} for turn in history]
    contents.append({"role": "user", "parts": [{"text": prompt}]})
    return contents


class GenerationClient(ABC):
    """
    One prompt in, raw reply text out.

    ``history`` carries earlier conversation turns (oldest first, alternating
    user and model) for multi-turn callers such as the advisor chat.
    """

    provider: str = "unknown"

    def __init__(self, model: str):
        self.model = model

    @property
    def label(self) -> str:
        return f"{self.provider}:{self.model}"

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        system_instruction: str,
        temperature: float,
        max_output_tokens: int,
        json_mode: bool = True,
        history: Optional[Sequence[ChatTurn]] = None,
    ) -> str:
        raise NotImplementedError


class OpenAIGenerationClient(GenerationClient):
    provider = "openai"

    def __init__(self, api_key: str, model: str, client: Optional[OpenAI] = None):
        super().__init__(model)
        self.client = client or OpenAI(api_key=api_key)

    async def generate(self, prompt, *, system_instruction, temperature, max_output_tokens, json_mode=True, history=None):
        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_instruction},
                *_role_messages(history),
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_output_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await asyncio.to_thread(self.client.chat.completions.create, **kwargs)
        except openai.AuthenticationError as exc:
            raise GenerationUnauthorized(f"Generation service rejected the API key: {exc}") from exc
        except openai.RateLimitError as exc:
            raise GenerationQuotaExceeded(f"Generation service quota exceeded: {exc}") from exc
        except openai.NotFoundError as exc:
            raise GenerationModelNotFound(f"Generation model not found: {exc}") from exc
        except openai.OpenAIError as exc:
            raise classify_service_error(exc) from exc

        return response.choices[0].message.content or ""


class GeminiGenerationClient(GenerationClient):
    provider = "gemini"

    def __init__(self, api_key: str, model: str, client=None):
        super().__init__(model)
        if client is None:
            if not GENAI_AVAILABLE:
                raise RuntimeError("google-genai is required for Gemini (pip install google-genai)")
            client = genai.Client(api_key=api_key)
        self.client = client

    async def generate(self, prompt, *, system_instruction, temperature, max_output_tokens, json_mode=True, history=None):
        config_kwargs = {
            "system_instruction": system_instruction,
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        if json_mode:
            config_kwargs["response_mime_type"] = "application/json"

        try:
            response = await asyncio.to_thread(
                self.client.models.generate_content,
                model=self.model,
                contents=_gemini_contents(prompt, history),
                config=genai_types.GenerateContentConfig(**config_kwargs) if genai_types else config_kwargs,
            )
        except Exception as exc:
            raise classify_service_error(exc) from exc

        return getattr(response, "text", None) or ""


class ClaudeGenerationClient(GenerationClient):
    provider = "claude"

    def __init__(self, api_key: str, model: str, client=None):
        super().__init__(model)
        if client is None:
            if not ANTHROPIC_AVAILABLE:
                raise RuntimeError("anthropic SDK is required for Claude (pip install anthropic)")
            client = Anthropic(api_key=api_key)
        self.client = client

    async def generate(self, prompt, *, system_instruction, temperature, max_output_tokens, json_mode=True, history=None):
        try:
            response = await asyncio.to_thread(
                self.client.messages.create,
                model=self.model,
                max_tokens=max_output_tokens,
                temperature=temperature,
                system=system_instruction,
                messages=[
                    *_role_messages(history),
                    {"role": "user", "content": prompt},
                ],
            )
        except Exception as exc:
            raise classify_service_error(exc) from exc

        parts = []
        for block in getattr(response, "content", None) or []:
            text = getattr(block, "text", None)
            if text:
                parts.append(text)
        return "".join(parts)


PROVIDERS = {
    "openai": OpenAIGenerationClient,
    "gemini": GeminiGenerationClient,
    "claude": ClaudeGenerationClient,
}


def build_generation_client(settings: AnalysisSettings) -> Optional[GenerationClient]:
    """
    Construct the configured provider once at process start.

    Returns None when the provider's API key is missing; callers then report
    the generation service as unavailable instead of failing at import time.
    """
    provider_cls = PROVIDERS.get(settings.generation_provider)
    if provider_cls is None:
        logger.error("Unknown GENERATION_PROVIDER '%s'", settings.generation_provider)
        return None

    api_key = settings.api_key
    if not api_key:
        logger.warning(
            "No API key configured for generation provider '%s'; analysis runs will report the service as unavailable",
            settings.generation_provider,
        )
        return None

    try:
        client = provider_cls(api_key=api_key, model=settings.model)
    except RuntimeError as exc:
        logger.error("Generation provider '%s' could not be initialised: %s", settings.generation_provider, exc)
        return None

    logger.info("Generation client ready (%s)", client.label)
    return client
