#!/usr/bin/env python3
"""
FastAPI application for curriculum alignment analysis.
Registers curricula, triggers background analysis runs and reports their status.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
import logging

from alignment_api.advisor_chat import CurriculumAdvisor
from alignment_api.analysis_schema import ChatRequest, CurriculumCreate, CurriculumRecord
from alignment_api.benchmarks import BenchmarkSet
from alignment_api.config import AnalysisSettings
from alignment_api.errors import (
    ChatRequestError,
    GenerationModelNotFound,
    GenerationQuotaExceeded,
    GenerationServiceError,
    GenerationUnauthorized,
    GenerationUnavailable,
    PersistenceError,
)
from alignment_api.evaluators import BenchmarkEvaluator
from alignment_api.generation_client import GenerationClient, build_generation_client
from alignment_api.orchestrator import AnalysisOrchestrator
from alignment_api.repository import CurriculumRepository, build_repository
from alignment_api.run_registry import RunRegistry, get_run_registry
from alignment_api.storage import StorageGateway, guess_media_type
from alignment_api.structured_completion import StructuredCompletionClient
from alignment_api.text_extractor import is_supported

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TRIGGER_MESSAGE = "Analysis has been initiated. Please check status periodically."


def _get_allowed_origins(settings: AnalysisSettings) -> List[str]:
    """Build CORS origins list from defaults + environment overrides."""
    default_origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    if settings.cors_allow_all:
        logger.info("CORS_ALLOW_ALL enabled - allowing all origins")
        return ["*"]

    # Preserve ordering but remove duplicates
    seen = set()
    merged: List[str] = []
    for origin in default_origins + settings.cors_origins:
        if origin and origin not in seen:
            seen.add(origin)
            merged.append(origin)

    logger.info("Allowed CORS origins: %s", merged)
    return merged


# Initialize FastAPI app
app = FastAPI(
    title="Curriculum Alignment API",
    description="REST API for automated curriculum alignment analysis",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_allowed_origins(AnalysisSettings.from_env()),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global service instances
settings: Optional[AnalysisSettings] = None
orchestrator: Optional[AnalysisOrchestrator] = None
run_registry: Optional[RunRegistry] = None
advisor: Optional[CurriculumAdvisor] = None


def configure_services(
    app_settings: Optional[AnalysisSettings] = None,
    repository: Optional[CurriculumRepository] = None,
    storage: Optional[StorageGateway] = None,
    generation_client: Optional[GenerationClient] = None,
    evaluators: Optional[List[BenchmarkEvaluator]] = None,
    benchmarks: Optional[BenchmarkSet] = None,
    registry: Optional[RunRegistry] = None,
) -> AnalysisOrchestrator:
    """Wire the analysis services. Called on startup, or directly by tests and the CLI."""
    global settings, orchestrator, run_registry, advisor

    settings = app_settings or AnalysisSettings.from_env()
    repository = repository or build_repository(settings)
    if storage is None:
        storage = StorageGateway(settings, supabase_client=getattr(repository, "client", None))
    if generation_client is None:
        generation_client = build_generation_client(settings)

    completion_client = StructuredCompletionClient(generation_client, settings)
    orchestrator = AnalysisOrchestrator(
        repository=repository,
        storage=storage,
        completion_client=completion_client,
        evaluators=evaluators,
        settings=settings,
        benchmarks=benchmarks,
    )
    run_registry = registry or get_run_registry(settings.timeout_seconds)
    advisor = CurriculumAdvisor(generation_client, settings)
    logger.info(
        "Analysis services configured (store=%s, generation=%s)",
        type(repository).__name__,
        generation_client.label if generation_client else "unconfigured",
    )
    return orchestrator


def reset_services() -> None:
    """Drop configured services (for testing)."""
    global settings, orchestrator, run_registry, advisor
    settings = None
    orchestrator = None
    run_registry = None
    advisor = None


@app.on_event("startup")
async def startup_event():
    """Initialize analysis services on startup unless already configured"""
    if orchestrator is not None:
        return
    try:
        configure_services()
    except Exception as e:
        logger.error(f"Failed to initialize analysis services: {e}")
        raise


def _require_orchestrator() -> AnalysisOrchestrator:
    if orchestrator is None or run_registry is None:
        raise HTTPException(status_code=503, detail="Analysis services not initialized")
    return orchestrator


def _load_record(curriculum_id: str) -> CurriculumRecord:
    try:
        record = _require_orchestrator().repository.find_by_id(curriculum_id)
    except PersistenceError as e:
        logger.error(f"Failed to load curriculum {curriculum_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load curriculum")
    if record is None:
        raise HTTPException(status_code=404, detail="Curriculum not found")
    return record


@app.get("/api/health")
async def health_check() -> Dict[str, Any]:
    """Simple health check for deploy environments."""
    client = orchestrator.completion_client.generation_client if orchestrator else None
    return {
        "status": "ok",
        "configured": orchestrator is not None,
        "generation": client.label if client else "unconfigured",
        "activeRuns": run_registry.snapshot()["activeCount"] if run_registry else 0,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/api/curricula", status_code=201)
async def create_curriculum(payload: CurriculumCreate) -> Dict[str, Any]:
    """Register an already-stored curriculum document."""
    active = _require_orchestrator()
    if not is_supported(guess_media_type(payload.original_file_name)):
        raise HTTPException(status_code=400, detail="Only PDF, DOCX and plain-text files are supported")

    try:
        record = active.repository.create(
            name=payload.name,
            original_file_name=payload.original_file_name,
            storage_address=payload.storage_address,
            school_tag=payload.school_tag,
        )
    except PersistenceError as e:
        logger.error(f"Failed to create curriculum: {e}")
        raise HTTPException(status_code=500, detail="Unable to create curriculum record")
    return record.to_json_dict()


@app.get("/api/curricula/{curriculum_id}")
async def get_curriculum(curriculum_id: str) -> Dict[str, Any]:
    return _load_record(curriculum_id).to_json_dict()


@app.post("/api/curricula/{curriculum_id}/trigger-analysis", status_code=202)
async def trigger_analysis(curriculum_id: str) -> Dict[str, Any]:
    """
    Reset the record to PROCESSING and start a fresh background run.
    Returns immediately; clients poll analysis-status for the outcome.
    """
    active = _require_orchestrator()
    try:
        _load_record(curriculum_id)
        record = active.mark_processing(curriculum_id)
    except HTTPException:
        raise
    except PersistenceError as e:
        logger.error(f"Failed to reset curriculum {curriculum_id} for analysis: {e}")
        raise HTTPException(status_code=500, detail="Failed to start analysis")

    run = run_registry.start(curriculum_id, active.run)
    logger.info(f"Analysis triggered for curriculum {curriculum_id} (run {run.id})")

    return {
        "message": TRIGGER_MESSAGE,
        "runId": run.id,
        "curriculum": record.status_payload(),
    }


@app.get("/api/curricula/{curriculum_id}/analysis-status")
async def get_analysis_status(curriculum_id: str) -> Dict[str, Any]:
    return _load_record(curriculum_id).status_payload()


@app.get("/api/analysis/runs")
async def list_analysis_runs() -> Dict[str, Any]:
    """Active and recent background runs for monitoring."""
    _require_orchestrator()
    return run_registry.snapshot()


@app.post("/api/ai/chat")
async def advisor_chat(payload: ChatRequest) -> Dict[str, str]:
    """Curriculum advisor conversation; history alternates user and model turns."""
    if advisor is None:
        raise HTTPException(status_code=503, detail="Analysis services not initialized")

    try:
        reply = await advisor.reply(payload)
    except ChatRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GenerationUnavailable as e:
        logger.error(f"Advisor chat requested without a generation service: {e}")
        raise HTTPException(status_code=500, detail="AI Service is not configured. Please check server logs and API key.")
    except GenerationUnauthorized as e:
        logger.error(f"Advisor chat rejected by generation service: {e}")
        raise HTTPException(status_code=401, detail="AI API key is invalid or not authorized.")
    except GenerationQuotaExceeded as e:
        logger.warning(f"Advisor chat quota exceeded: {e}")
        raise HTTPException(status_code=429, detail="AI API quota exceeded. Please try again later.")
    except GenerationModelNotFound as e:
        logger.error(f"Advisor chat model missing: {e}")
        raise HTTPException(
            status_code=404,
            detail=f"AI Model not found or not supported. Please check model name or API key permissions. Details: {e}",
        )
    except GenerationServiceError as e:
        logger.error(f"Advisor chat failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to get response from AI. Details: {e}")

    return {"reply": reply}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "alignment_api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
