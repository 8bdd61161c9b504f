"""
Pytest configuration and fixtures for analysis tests.

Provides fake generation and storage collaborators so the pipeline can be
exercised without API keys or network access.
"""

import json
import re
from typing import Callable, Dict, List, Optional

import pytest

from alignment_api.benchmarks import load_benchmarks
from alignment_api.config import AnalysisSettings
from alignment_api.errors import StorageFetchError
from alignment_api.generation_client import GenerationClient
from alignment_api.repository import InMemoryCurriculumRepository
from alignment_api.storage import FetchedDocument
from alignment_api.structured_completion import StructuredCompletionClient


class FakeGenerationClient(GenerationClient):
    """Returns scripted replies (the last one repeats) or delegates to a responder."""

    provider = "fake"

    def __init__(self, replies=None, responder: Optional[Callable[[str], str]] = None):
        super().__init__("fake-model")
        self.replies = list(replies or [])
        self.responder = responder
        self.prompts: List[str] = []
        self.calls: List[Dict] = []

    async def generate(self, prompt, *, system_instruction, temperature, max_output_tokens, json_mode=True, history=None):
        self.prompts.append(prompt)
        self.calls.append({
            "system_instruction": system_instruction,
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
            "json_mode": json_mode,
            "history": list(history or []),
        })
        if self.responder is not None:
            return self.responder(prompt)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeStorageGateway:
    """Serves documents from a dict keyed by address."""

    def __init__(self, documents: Optional[Dict[str, FetchedDocument]] = None):
        self.documents = documents or {}
        self.fetched: List[str] = []

    async def fetch(self, address):
        self.fetched.append(address)
        if address not in self.documents:
            raise StorageFetchError(address, "Not Found", status_code=404)
        return self.documents[address]


def _excerpt(prompt: str) -> str:
    return prompt.split("Curriculum excerpt:", 1)[-1].lower()


def curriculum_responder(prompt: str) -> str:
    """Answers each aspect prompt from the course names present in the excerpt."""
    header = prompt.split("Curriculum excerpt:", 1)[0].lower()
    text = _excerpt(prompt)

    if "admissions" in header:
        checks = {
            "englishUnits": "english",
            "mathUnits": "algebra",
            "scienceUnits": "biology",
            "historyUnits": "history",
            "electivesUnits": "computer science",
        }
        findings = [
            {
                "criterionId": criterion_id,
                "verdict": "Met" if keyword in text else "Gap",
                "justification": f"Mentions {keyword}." if keyword in text else "Not mentioned.",
            }
            for criterion_id, keyword in checks.items()
        ]
        return _json({"summary": "Core admissions units are covered.", "findings": findings})

    if "introductory" in header:
        return _json({
            "summary": "Most introductory themes are present.",
            "findings": [
                {"criterionId": "english", "verdict": "Met", "justification": "Composition and literature."},
                {"criterionId": "math", "verdict": "Partially Met", "justification": "Algebra only."},
                {"criterionId": "science", "verdict": "Met", "justification": "Biology with labs."},
                {"criterionId": "humanities", "verdict": "likely met", "justification": "World history."},
                {"criterionId": "arts", "verdict": "Gap", "justification": "No arts courses."},
            ],
        })

    return "```json\n" + _json({
        "summary": "Good fit for health and professional services.",
        "findings": [
            {"criterionId": "health", "alignmentScorePercent": 70, "keySkillsCovered": ["Scientific Literacy (Biology/Chemistry)"], "identifiedGaps": ["Patient Care Fundamentals"], "justification": "Biology coursework."},
            {"criterionId": "manufacturing", "alignmentScorePercent": 35, "keySkillsCovered": ["Problem-Solving"], "identifiedGaps": ["Safety Protocols"], "justification": "Algebra only."},
            {"criterionId": "retail", "alignmentScorePercent": 40, "keySkillsCovered": ["Communication"], "identifiedGaps": [], "justification": "English coursework."},
            {"criterionId": "professional", "alignmentScorePercent": 75, "keySkillsCovered": ["Basic IT Literacy/Computer Science"], "identifiedGaps": [], "justification": "Computer science."},
        ],
    }) + "\n```"


def _json(value) -> str:
    return json.dumps(value)


SAMPLE_CURRICULUM = (
    "Grady County High School Curriculum Guide\n"
    "English I-IV: grammar, composition and American literature.\n"
    "Algebra I, Geometry and Algebra II.\n"
    "Biology with laboratory, Chemistry.\n"
    "World History, US History and Government.\n"
    "Computer Science Principles and Spanish I-II.\n"
)


@pytest.fixture
def settings():
    return AnalysisSettings(
        completion_retry_delay_seconds=0.0,
        timeout_seconds=5.0,
        curriculum_store="memory",
        poll_interval_seconds=0.0,
    )


@pytest.fixture
def benchmarks():
    return load_benchmarks()


@pytest.fixture
def repository():
    return InMemoryCurriculumRepository()


@pytest.fixture
def sample_document():
    return FetchedDocument(content=SAMPLE_CURRICULUM.encode("utf-8"), media_type="text/plain")


@pytest.fixture
def fake_generation():
    return FakeGenerationClient(responder=curriculum_responder)


@pytest.fixture
def completion_client(fake_generation, settings):
    return StructuredCompletionClient(fake_generation, settings)


def count_prompts(client: FakeGenerationClient, pattern: str) -> int:
    return sum(1 for prompt in client.prompts if re.search(pattern, prompt, re.IGNORECASE))
