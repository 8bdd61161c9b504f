"""
Client-side poller for the analysis status endpoint.

Triggers a run on a deployed API and polls ``analysis-status`` until the run
reaches a terminal status. Transient failures (transport errors, 5xx replies,
unreadable bodies) are tolerated up to a consecutive limit.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx

from alignment_api.analysis_schema import AnalysisStatus
from alignment_api.config import AnalysisSettings
from alignment_api.errors import PollingError

logger = logging.getLogger(__name__)


@dataclass
class PollUpdate:
    status: str
    elapsed_seconds: float
    message: str
    warning: Optional[str] = None


@dataclass
class PollResult:
    status: AnalysisStatus
    error: Optional[str]
    results: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)
    elapsed_seconds: float = 0.0
    polls: int = 0


def waiting_message(elapsed_seconds: float) -> str:
    seconds = int(elapsed_seconds)
    if seconds < 10:
        return "Analysis started, extracting document text..."
    if seconds < 30:
        return f"Analysis in progress ({seconds}s elapsed), evaluating benchmarks..."
    if seconds < 60:
        return f"Still analyzing ({seconds}s elapsed), this usually takes under a minute..."
    return f"Analysis is taking longer than usual ({seconds}s elapsed)..."


def timeout_warning(elapsed_seconds: float) -> str:
    return (
        f"Analysis has been running for {int(elapsed_seconds)}s and may have exceeded "
        "the hosting time limit. The status will update if it finishes; otherwise trigger it again."
    )


class _TransientPollFailure(Exception):
    pass


class AnalysisStatusPoller:
    def __init__(
        self,
        base_url: str,
        settings: Optional[AnalysisSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        on_update: Optional[Callable[[PollUpdate], None]] = None,
        sleep=asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url = base_url.rstrip("/")
        self.settings = settings or AnalysisSettings()
        self._client = client
        self.on_update = on_update
        self._sleep = sleep
        self._clock = clock

    def _url(self, curriculum_id: str, action: str) -> str:
        return f"{self.base_url}/api/curricula/{curriculum_id}/{action}"

    async def _request(self, method: str, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url)
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await client.request(method, url)

    async def trigger(self, curriculum_id: str) -> Dict[str, Any]:
        try:
            response = await self._request("POST", self._url(curriculum_id, "trigger-analysis"))
        except httpx.HTTPError as exc:
            raise PollingError(f"Could not reach the analysis API: {exc}") from exc
        if response.status_code == 404:
            raise PollingError(f"Curriculum {curriculum_id} not found")
        if response.status_code != 202:
            raise PollingError(f"Trigger failed with status {response.status_code}: {response.text[:200]}")
        return response.json()

    async def fetch_status(self, curriculum_id: str) -> Dict[str, Any]:
        try:
            response = await self._request("GET", self._url(curriculum_id, "analysis-status"))
        except httpx.HTTPError as exc:
            raise _TransientPollFailure(f"transport error: {exc}") from exc

        if response.status_code == 404:
            raise PollingError(f"Curriculum {curriculum_id} not found")
        if response.status_code >= 500:
            raise _TransientPollFailure(f"server returned {response.status_code}")
        if response.status_code != 200:
            raise PollingError(f"Status request failed with status {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise _TransientPollFailure("unreadable status payload") from exc
        if not isinstance(payload, dict):
            raise _TransientPollFailure(f"status payload is a {type(payload).__name__}, not an object")
        return payload

    async def wait_for_completion(self, curriculum_id: str, max_wait_seconds: Optional[float] = None) -> PollResult:
        started = self._clock()
        failures = 0
        polls = 0
        warned = False
        max_failures = max(1, self.settings.poll_max_consecutive_failures)

        while True:
            elapsed = self._clock() - started
            try:
                payload = await self.fetch_status(curriculum_id)
            except _TransientPollFailure as exc:
                failures += 1
                logger.warning("Status poll %d/%d failed: %s", failures, max_failures, exc)
                if failures >= max_failures:
                    raise PollingError(
                        f"Stopped polling after {failures} consecutive failures: {exc}"
                    ) from exc
            else:
                failures = 0
                polls += 1
                status = payload.get("analysisStatus")
                if status in (AnalysisStatus.COMPLETED.value, AnalysisStatus.FAILED.value):
                    result_status = AnalysisStatus(status)
                    error = payload.get("analysisError") if result_status == AnalysisStatus.FAILED else None
                    logger.info("Analysis for %s finished with %s after %.1fs", curriculum_id, status, elapsed)
                    return PollResult(
                        status=result_status,
                        error=error,
                        results=payload.get("analysisResults") or {},
                        payload=payload,
                        elapsed_seconds=elapsed,
                        polls=polls,
                    )

                warning = None
                if elapsed >= self.settings.poll_warn_after_seconds:
                    warning = timeout_warning(elapsed)
                    if not warned:
                        logger.warning("Analysis for %s still running after %.0fs", curriculum_id, elapsed)
                        warned = True
                if self.on_update is not None:
                    self.on_update(PollUpdate(
                        status=str(status),
                        elapsed_seconds=elapsed,
                        message=waiting_message(elapsed),
                        warning=warning,
                    ))

            if max_wait_seconds is not None and elapsed >= max_wait_seconds:
                raise PollingError(f"Analysis did not finish within {max_wait_seconds:.0f}s")
            await self._sleep(self.settings.poll_interval_seconds)
