"""
Registry of background analysis runs.

Each trigger spawns one detached task bounded by the run timeout. Runs are
tracked by run id; starting a new run for a curriculum signals the previous
in-flight run's cancellation token so it abandons its final write.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from alignment_api.orchestrator import CancellationToken, RunOutcome

logger = logging.getLogger(__name__)

RunCallable = Callable[[str, CancellationToken], Awaitable[RunOutcome]]


class RunState(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SUPERSEDED = "superseded"


@dataclass
class AnalysisRun:
    """One background analysis run."""
    id: str
    curriculum_id: str
    token: CancellationToken
    created_at: datetime
    state: RunState = RunState.RUNNING
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    task: Optional[asyncio.Task] = None

    def to_dict(self) -> Dict[str, Any]:
        duration = None
        if self.completed_at:
            duration = round((self.completed_at - self.created_at).total_seconds(), 2)
        return {
            "runId": self.id,
            "curriculumId": self.curriculum_id,
            "state": self.state.value,
            "createdAt": self.created_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "durationSeconds": duration,
            "errorMessage": self.error_message,
        }


class RunRegistry:
    def __init__(self, timeout_seconds: float = 90.0, history_size: int = 50):
        self.timeout_seconds = timeout_seconds
        self.history_size = history_size
        self._active: Dict[str, AnalysisRun] = {}
        self._latest_by_curriculum: Dict[str, str] = {}
        self._history: List[AnalysisRun] = []

    def start(self, curriculum_id: str, run_callable: RunCallable) -> AnalysisRun:
        """Spawn a run without awaiting it. Must be called from the event loop."""
        previous_id = self._latest_by_curriculum.get(curriculum_id)
        previous = self._active.get(previous_id) if previous_id else None
        if previous is not None:
            previous.token.cancel(f"superseded by a newer trigger for curriculum {curriculum_id}")
            logger.info("Run %s for curriculum %s signalled to abandon its result", previous.id, curriculum_id)

        run = AnalysisRun(
            id=str(uuid4()),
            curriculum_id=curriculum_id,
            token=CancellationToken(),
            created_at=datetime.now(timezone.utc),
        )
        self._active[run.id] = run
        self._latest_by_curriculum[curriculum_id] = run.id
        run.task = asyncio.create_task(self._execute(run, run_callable))
        logger.info("Started analysis run %s for curriculum %s", run.id, curriculum_id)
        return run

    async def _execute(self, run: AnalysisRun, run_callable: RunCallable) -> None:
        try:
            outcome = await asyncio.wait_for(
                run_callable(run.curriculum_id, run.token),
                timeout=self.timeout_seconds,
            )
            if outcome.superseded:
                run.state = RunState.SUPERSEDED
            elif outcome.error:
                run.state = RunState.FAILED
                run.error_message = outcome.error
            else:
                run.state = RunState.COMPLETED

        except asyncio.TimeoutError:
            run.state = RunState.TIMED_OUT
            run.error_message = f"Run exceeded {self.timeout_seconds:.0f}s"
            logger.error("Analysis run %s timed out after %.0fs", run.id, self.timeout_seconds)

        except Exception as exc:
            run.state = RunState.FAILED
            run.error_message = str(exc)
            logger.exception("Analysis run %s failed: %s", run.id, exc)

        finally:
            run.completed_at = datetime.now(timezone.utc)
            self._active.pop(run.id, None)
            if self._latest_by_curriculum.get(run.curriculum_id) == run.id:
                self._latest_by_curriculum.pop(run.curriculum_id, None)
            self._history.append(run)
            if len(self._history) > self.history_size:
                del self._history[: len(self._history) - self.history_size]

    def get(self, run_id: str) -> Optional[AnalysisRun]:
        if run_id in self._active:
            return self._active[run_id]
        for run in reversed(self._history):
            if run.id == run_id:
                return run
        return None

    def active_for(self, curriculum_id: str) -> Optional[AnalysisRun]:
        run_id = self._latest_by_curriculum.get(curriculum_id)
        return self._active.get(run_id) if run_id else None

    async def wait_all(self) -> None:
        """Await every in-flight run; used by the CLI and tests."""
        tasks = [run.task for run in self._active.values() if run.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "activeCount": len(self._active),
            "timeoutSeconds": self.timeout_seconds,
            "active": [run.to_dict() for run in self._active.values()],
            "recent": [run.to_dict() for run in reversed(self._history[-10:])],
        }


_run_registry: Optional[RunRegistry] = None


def get_run_registry(timeout_seconds: Optional[float] = None) -> RunRegistry:
    """Get or create the process-wide run registry."""
    global _run_registry
    if _run_registry is None:
        _run_registry = RunRegistry(timeout_seconds=timeout_seconds or 90.0)
    return _run_registry


def reset_run_registry() -> None:
    """Reset the process-wide run registry (for testing)."""
    global _run_registry
    _run_registry = None
