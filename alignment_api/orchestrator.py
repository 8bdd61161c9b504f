"""
Analysis orchestrator.

Drives one run for one curriculum record through the state machine
NOT_STARTED -> PROCESSING -> {COMPLETED | FAILED}. The final record update
always happens in a ``finally`` block, so a crash, a fatal stage error or a
timeout cancellation still leaves the record in FAILED. A run whose
cancellation token was signalled by a newer trigger skips that write.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from alignment_api.analysis_schema import AnalysisReport, AnalysisStatus, CurriculumRecord
from alignment_api.benchmarks import BenchmarkSet, load_benchmarks
from alignment_api.config import AnalysisSettings
from alignment_api.errors import ExtractionError, PersistenceError, RunSuperseded, StorageFetchError
from alignment_api.evaluators import AspectResult, BenchmarkEvaluator, default_evaluators
from alignment_api.gap_analysis import build_gap_analysis
from alignment_api.repository import CurriculumRepository
from alignment_api.storage import StorageGateway
from alignment_api.structured_completion import StructuredCompletionClient
from alignment_api.text_extractor import extract_text

logger = logging.getLogger(__name__)

ENGINE_ID = "alignment-engine/1.0"
MAX_OVERALL_SCORE = 98
SNIPPET_CHARS = 100

INSUFFICIENT_DATA_TEXT = "Insufficient Data"
ALL_ASPECTS_FAILED_TEXT = "Analysis Failed"
PARTIAL_FAILURE_PREFIX = "Partial Failure"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CancellationToken:
    """Signalled when a newer trigger supersedes the run holding it."""

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "superseded by a newer analysis run") -> None:
        self._cancelled = True
        self.reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RunSuperseded(self.reason or "run cancelled")


@dataclass
class RunOutcome:
    curriculum_id: str
    status: AnalysisStatus
    error: Optional[str] = None
    report: Optional[Dict[str, Any]] = None
    persisted: bool = False
    superseded: bool = False


def status_text_for_score(score: int) -> str:
    if score >= 85:
        return "Strong Overall Alignment"
    if score >= 70:
        return "Good Overall Alignment"
    if score >= 50:
        return "Moderate Overall Alignment"
    return "Needs Improvement"


def overall_score(total: float, maximum: float) -> int:
    if maximum <= 0:
        return 0
    return max(0, min(MAX_OVERALL_SCORE, round(100 * total / maximum)))


def text_snippet(text: str) -> str:
    if len(text) <= SNIPPET_CHARS:
        return text
    return text[:SNIPPET_CHARS] + "..."


class AnalysisOrchestrator:
    def __init__(
        self,
        repository: CurriculumRepository,
        storage: StorageGateway,
        completion_client: StructuredCompletionClient,
        evaluators: Optional[List[BenchmarkEvaluator]] = None,
        settings: Optional[AnalysisSettings] = None,
        benchmarks: Optional[BenchmarkSet] = None,
    ):
        self.repository = repository
        self.storage = storage
        self.completion_client = completion_client
        self.settings = settings or completion_client.settings
        self.benchmarks = benchmarks or load_benchmarks(self.settings.benchmarks_path)
        self.evaluators = evaluators if evaluators is not None else default_evaluators(
            completion_client, self.benchmarks, self.settings
        )

    @property
    def analyzed_by(self) -> str:
        client = self.completion_client.generation_client
        engine = client.label if client is not None else "unconfigured"
        return f"{ENGINE_ID} ({engine})"

    def mark_processing(self, curriculum_id: str) -> CurriculumRecord:
        """Reset a record for a fresh run: PROCESSING, no report, no error."""
        return self.repository.update(
            curriculum_id,
            {
                "analysis_status": AnalysisStatus.PROCESSING,
                "analysis_error": None,
                "analysis_results": None,
                "last_analysis_completed_at": None,
                "last_analysis_triggered_at": utcnow(),
            },
        )

    async def run(self, curriculum_id: str, token: Optional[CancellationToken] = None) -> RunOutcome:
        token = token or CancellationToken()
        outcome = RunOutcome(
            curriculum_id=curriculum_id,
            status=AnalysisStatus.FAILED,
            error="Analysis did not complete.",
        )
        should_write = True
        logger.info("Analysis run started for curriculum %s", curriculum_id)

        try:
            record = self.repository.find_by_id(curriculum_id)
            if record is None:
                logger.warning("Curriculum %s disappeared before analysis started", curriculum_id)
                should_write = False
                outcome.error = "Curriculum not found."
                return outcome

            token.raise_if_cancelled()
            try:
                document = await self.storage.fetch(record.storage_address or "")
            except StorageFetchError as exc:
                logger.warning("Fetch failed for curriculum %s: %s", curriculum_id, exc)
                outcome.error = f"Blob fetch failed: {exc}"
                return outcome

            token.raise_if_cancelled()
            try:
                text = extract_text(document.content, document.media_type)
            except ExtractionError as exc:
                logger.warning("Extraction failed for curriculum %s: %s", curriculum_id, exc)
                outcome.error = f"Text extraction failed: {exc}"
                return outcome

            text = text.strip()
            if len(text) < self.settings.min_text_chars:
                message = f"Extracted text too short for analysis (min {self.settings.min_text_chars} chars)."
                logger.info("Curriculum %s has %d usable characters; skipping evaluators", curriculum_id, len(text))
                outcome.error = message
                outcome.report = self._insufficient_report(text, message).to_json_dict()
                return outcome

            results = await self._run_evaluators(text, token)
            token.raise_if_cancelled()

            report = self._merge(results, text)
            outcome.report = report.to_json_dict()
            if report.errors:
                outcome.status = AnalysisStatus.FAILED
                outcome.error = "; ".join(report.errors)
            else:
                outcome.status = AnalysisStatus.COMPLETED
                outcome.error = None
            return outcome

        except RunSuperseded as exc:
            logger.info("Run for curriculum %s abandoned: %s", curriculum_id, exc)
            should_write = False
            outcome.superseded = True
            return outcome
        except asyncio.CancelledError:
            logger.error("Run for curriculum %s was cancelled before completion", curriculum_id)
            outcome.status = AnalysisStatus.FAILED
            outcome.error = (
                f"Analysis was interrupted before completion "
                f"(time limit {self.settings.timeout_seconds:.0f}s)."
            )
            outcome.report = None
            raise
        except Exception as exc:
            logger.exception("Analysis run for curriculum %s crashed", curriculum_id)
            outcome.status = AnalysisStatus.FAILED
            outcome.error = f"Background task crashed: {exc}"
            outcome.report = None
            return outcome
        finally:
            if token.cancelled:
                should_write = False
                outcome.superseded = True
            if should_write:
                outcome.persisted = self._finalize(outcome)

    async def _run_evaluators(self, text: str, token: CancellationToken) -> List[AspectResult]:
        if self.settings.concurrent_evaluators:
            gathered = await asyncio.gather(
                *(evaluator.evaluate(text) for evaluator in self.evaluators),
                return_exceptions=True,
            )
            results = []
            for evaluator, item in zip(self.evaluators, gathered):
                if isinstance(item, asyncio.CancelledError):
                    raise item
                if isinstance(item, BaseException):
                    results.append(self._crashed_result(evaluator, item))
                else:
                    results.append(item)
            return results

        results = []
        for evaluator in self.evaluators:
            token.raise_if_cancelled()
            try:
                results.append(await evaluator.evaluate(text))
            except Exception as exc:
                results.append(self._crashed_result(evaluator, exc))
        return results

    @staticmethod
    def _crashed_result(evaluator: BenchmarkEvaluator, exc: BaseException) -> AspectResult:
        logger.error("Evaluator %s raised unexpectedly: %s", type(evaluator).__name__, exc)
        return evaluator.failure(str(exc))

    def _merge(self, results: List[AspectResult], text: str) -> AnalysisReport:
        total = sum(result.partial_score for result in results)
        maximum = sum(result.partial_max for result in results)
        errors = [result.error for result in results if result.error]
        score = overall_score(total, maximum)

        if errors and all(result.error for result in results):
            status_text = ALL_ASPECTS_FAILED_TEXT
        elif errors:
            status_text = f"{PARTIAL_FAILURE_PREFIX}: {status_text_for_score(score)}"
        else:
            status_text = status_text_for_score(score)

        return AnalysisReport(
            last_analyzed=utcnow(),
            analyzed_by=self.analyzed_by,
            overall_alignment_score=score,
            overall_status_text=status_text,
            aspects={result.aspect: result.to_section() for result in results},
            gap_analysis=build_gap_analysis(results, self.benchmarks),
            errors=errors,
            analysis_complete=not errors,
            extracted_text_snippet=text_snippet(text),
        )

    def _insufficient_report(self, text: str, message: str) -> AnalysisReport:
        return AnalysisReport(
            last_analyzed=utcnow(),
            analyzed_by=self.analyzed_by,
            overall_alignment_score=0,
            overall_status_text=INSUFFICIENT_DATA_TEXT,
            errors=[message],
            analysis_complete=False,
            extracted_text_snippet=text_snippet(text),
        )

    def _finalize(self, outcome: RunOutcome) -> bool:
        try:
            self.repository.update(
                outcome.curriculum_id,
                {
                    "analysis_status": outcome.status,
                    "analysis_error": outcome.error,
                    "analysis_results": outcome.report,
                    "last_analysis_completed_at": utcnow(),
                },
            )
        except PersistenceError as exc:
            logger.critical(
                "Final status write failed for curriculum %s (status %s): %s",
                outcome.curriculum_id, outcome.status.value, exc,
            )
            return False

        logger.info(
            "Analysis run for curriculum %s finished with status %s",
            outcome.curriculum_id, outcome.status.value,
        )
        return True
