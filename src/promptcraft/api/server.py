"""
FastAPI server for promptcraft.

Endpoints:
- GET /health: component status and uptime
- GET /stages: the generation stages and their configured models
- GET /state: current generation state with progress and description
- POST /generate: run one generation and return its final state
- POST /cancel: stop the running generation before its next stage
- POST /reset: return the store to idle

Usage:
    $ uvicorn promptcraft.api.server:app --reload --port 8000
    # or
    $ promptcraft serve

    $ curl -X POST http://localhost:8000/generate \
      -H 'Content-Type: application/json' \
      -d '{"prompt":"Build a timer","mode":"multi"}'

Configuration:
    - CRAFT_API__HOST=127.0.0.1
    - CRAFT_API__PORT=8000
    - CRAFT_API__ENABLE_CORS=true
"""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .. import __version__
from ..config.container import Container, setup_container
from ..config.settings import get_settings
from ..core.models import PipelineMode, StageKind
from ..core.orchestrator import PipelineOrchestrator
from ..observability.logging import get_logger, setup_logging
from ..observability.metrics import get_metrics_collector
from ..observability.tracing import setup_tracing

logger = get_logger(__name__)

# Global state
orchestrator: PipelineOrchestrator | None = None
container: Container | None = None


def _reset_globals_for_tests() -> None:
    """Reset global state for test isolation."""
    global orchestrator, container
    orchestrator = None
    container = None


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=5000, description="What to build")
    mode: Literal["single", "multi"] | None = Field(None, description="Defaults to the configured mode")
    extra_instructions: str | None = Field(None, max_length=2000)


class ExecutionModel(BaseModel):
    stage: str
    status: str
    content: str | None = None
    error: str | None = None
    duration_seconds: float
    timestamp: float


class StateResponse(BaseModel):
    status: str
    mode: str
    prompt: str | None = None
    final_artifact: str | None = None
    error: str | None = None
    start_time: float | None = None
    end_time: float | None = None
    active_phase: str | None = None
    current_stage: str | None = None
    executions: list[ExecutionModel] = Field(default_factory=list)
    progress: float = 0.0
    phase_description: str = ""
    execution_summary: str = ""


class GenerateResponse(BaseModel):
    success: bool
    session_id: str | None = None
    state: StateResponse
    execution_time: float = 0.0


class StageInfo(BaseModel):
    stage: str
    display_name: str
    model: str
    description: str


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    components: dict[str, str]
    metrics: dict[str, Any] = Field(default_factory=dict)


def _state_response(current: PipelineOrchestrator) -> StateResponse:
    store = current.store
    return StateResponse(
        **store.state.to_dict(),
        progress=store.progress_fraction,
        phase_description=store.phase_description,
        execution_summary=store.execution_summary,
    )


def _require_orchestrator() -> PipelineOrchestrator:
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    global container, orchestrator

    container = getattr(app.state, "container_override", None) or setup_container()
    settings = container.settings
    logger.info("Starting promptcraft API server...")

    if settings.observability.enable_tracing:
        setup_tracing(
            service_name=settings.observability.service_name,
            service_version=settings.observability.service_version,
            otlp_endpoint=settings.observability.otlp_endpoint,
        )

    orchestrator = container.get("orchestrator")
    app.state.startup_time = time.time()

    logger.info("promptcraft API server ready")

    yield

    logger.info("Shutting down promptcraft API server...")
    await container.cleanup()


def create_app(app_container: Container | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = app_container.settings if app_container else get_settings()
    setup_logging(settings.observability.log_level)

    app = FastAPI(
        title="promptcraft",
        description="Staged prompt-to-app generation pipeline",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.container_override = app_container

    if settings.api.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.api.cors_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["content-type"],
        )

    @app.get("/health", response_model=HealthResponse)
    async def health_check_endpoint() -> HealthResponse:
        startup_time = getattr(app.state, "startup_time", time.time())
        components = {
            "config": "healthy",
            "orchestrator": "healthy" if orchestrator is not None else "not_initialized",
            "inference_key": "configured" if settings.inference.api_key else "missing",
        }
        healthy = components["orchestrator"] == "healthy"
        return HealthResponse(
            status="healthy" if healthy else "unhealthy",
            version=__version__,
            uptime_seconds=max(0.0, time.time() - startup_time),
            components=components,
            metrics=get_metrics_collector().snapshot(),
        )

    @app.get("/stages", response_model=list[StageInfo])
    async def list_stages_endpoint() -> list[StageInfo]:
        return [
            StageInfo(
                stage=stage.value,
                display_name=stage.display_name,
                model=settings.stages.for_stage(stage).model,
                description=stage.description,
            )
            for stage in StageKind.ordered()
        ]

    @app.get("/state", response_model=StateResponse)
    async def get_state_endpoint() -> StateResponse:
        return _state_response(_require_orchestrator())

    @app.post("/generate", response_model=GenerateResponse)
    async def generate_endpoint(request: GenerateRequest) -> GenerateResponse:
        current = _require_orchestrator()
        if current.store.is_generating:
            raise HTTPException(status_code=409, detail="A generation is already running")

        mode = PipelineMode(request.mode) if request.mode else None
        start_time = time.time()
        logger.info("Processing generate request", prompt_length=len(request.prompt), mode=request.mode or "default")

        final = await current.generate(request.prompt, mode=mode, extra_instructions=request.extra_instructions)
        execution_time = time.time() - start_time

        logger.info(
            "Generate request finished",
            status=final.status.value,
            execution_time=round(execution_time, 3),
        )
        return GenerateResponse(
            success=final.final_artifact is not None,
            session_id=current.session_id,
            state=_state_response(current),
            execution_time=execution_time,
        )

    @app.post("/cancel")
    async def cancel_endpoint() -> dict[str, bool]:
        return {"cancelled": _require_orchestrator().cancel()}

    @app.post("/reset", response_model=StateResponse)
    async def reset_endpoint() -> StateResponse:
        current = _require_orchestrator()
        if current.store.is_generating:
            raise HTTPException(status_code=409, detail="Cannot reset while a generation is running")
        current.reset()
        return _state_response(current)

    return app


app = create_app()
