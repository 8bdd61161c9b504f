"""
Runtime configuration for the curriculum alignment API.

Values come from environment variables (optionally loaded from a ``.env`` file
at the repository root or next to this package). Every setting has a default
suitable for local development.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
ROOT_DIR = BASE_DIR.parent

# Root .env first, then fallback to local
load_dotenv(ROOT_DIR / ".env")
load_dotenv(BASE_DIR / ".env")

TRUTHY = {"1", "true", "yes"}

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "gemini": "gemini-2.5-flash",
    "claude": "claude-sonnet-4-5",
}


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in TRUTHY


def _split_env_list(raw: Optional[str]) -> List[str]:
    """Split comma/space separated env vars into clean origin entries."""
    if not raw:
        return []
    items = []
    for part in raw.replace(" ", ",").split(","):
        cleaned = part.strip().rstrip("/")
        if cleaned:
            items.append(cleaned)
    return items


@dataclass
class AnalysisSettings:
    """Configuration for the analysis pipeline and its collaborators."""
    generation_provider: str = "openai"
    generation_model: Optional[str] = None
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    temperature: float = 0.1
    max_output_tokens: int = 1024
    chat_temperature: float = 0.7
    chat_max_output_tokens: int = 2048

    completion_max_attempts: int = 3
    completion_retry_delay_seconds: float = 1.0

    max_text_chars: int = 6000
    min_text_chars: int = 20
    timeout_seconds: float = 90.0
    concurrent_evaluators: bool = True

    curriculum_store: str = "supabase"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    curricula_table: str = "curricula"
    storage_fetch_timeout_seconds: float = 30.0

    benchmarks_path: Optional[str] = None

    poll_interval_seconds: float = 3.0
    poll_warn_after_seconds: float = 75.0
    poll_max_consecutive_failures: int = 3

    cors_allow_all: bool = False
    cors_origins: List[str] = field(default_factory=list)

    @property
    def api_key(self) -> Optional[str]:
        if self.generation_provider == "gemini":
            return self.gemini_api_key
        if self.generation_provider == "claude":
            return self.anthropic_api_key
        return self.openai_api_key

    @property
    def model(self) -> str:
        return self.generation_model or DEFAULT_MODELS.get(self.generation_provider, DEFAULT_MODELS["openai"])

    @classmethod
    def from_env(cls) -> "AnalysisSettings":
        provider = (os.getenv("GENERATION_PROVIDER") or "openai").strip().lower()
        model_env = {
            "openai": "OPENAI_MODEL",
            "gemini": "GEMINI_MODEL",
            "claude": "CLAUDE_MODEL",
        }.get(provider, "OPENAI_MODEL")

        cors_origins: List[str] = []
        for key in ("FRONTEND_URL", "CORS_ALLOW_ORIGINS"):
            cors_origins.extend(_split_env_list(os.getenv(key)))

        return cls(
            generation_provider=provider,
            generation_model=os.getenv("GENERATION_MODEL") or os.getenv(model_env),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            temperature=float(os.getenv("GENERATION_TEMPERATURE", "0.1")),
            max_output_tokens=int(os.getenv("GENERATION_MAX_OUTPUT_TOKENS", "1024")),
            chat_temperature=float(os.getenv("CHAT_TEMPERATURE", "0.7")),
            chat_max_output_tokens=int(os.getenv("CHAT_MAX_OUTPUT_TOKENS", "2048")),
            completion_max_attempts=int(os.getenv("COMPLETION_MAX_ATTEMPTS", "3")),
            completion_retry_delay_seconds=float(os.getenv("COMPLETION_RETRY_DELAY_SECONDS", "1.0")),
            max_text_chars=int(os.getenv("ANALYSIS_MAX_TEXT_CHARS", "6000")),
            min_text_chars=int(os.getenv("ANALYSIS_MIN_TEXT_CHARS", "20")),
            timeout_seconds=float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "90")),
            concurrent_evaluators=_env_bool("ANALYSIS_CONCURRENT_EVALUATORS", True),
            curriculum_store=(os.getenv("CURRICULUM_STORE") or "supabase").strip().lower(),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=(
                os.getenv("SUPABASE_SERVICE_ROLE_KEY")
                or os.getenv("SUPABASE_SERVICE_KEY")
                or os.getenv("SUPABASE_ANON_KEY")
            ),
            curricula_table=os.getenv("SUPABASE_CURRICULA_TABLE", "curricula"),
            storage_fetch_timeout_seconds=float(os.getenv("STORAGE_FETCH_TIMEOUT_SECONDS", "30")),
            benchmarks_path=os.getenv("BENCHMARKS_PATH") or None,
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "3")),
            poll_warn_after_seconds=float(os.getenv("POLL_WARN_AFTER_SECONDS", "75")),
            poll_max_consecutive_failures=int(os.getenv("POLL_MAX_CONSECUTIVE_FAILURES", "3")),
            cors_allow_all=_env_bool("CORS_ALLOW_ALL", False),
            cors_origins=cors_origins,
        )
