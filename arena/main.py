"""Debate Arena FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from arena.api.routes import router as api_router
from arena.config import get_settings
from arena.lib.exceptions import (
    ArenaError,
    DuplicateSubmissionError,
    JobNotFoundError,
    JobStateError,
    LLMError,
    PermissionDeniedError,
    RoomNotFoundError,
    StateMachineError,
    ValidationError,
)
from arena.lib.generative import GenerativeClient
from arena.lib.llm import close_llm_client, get_llm_client
from arena.lib.models import HealthResponse
from arena.orchestrator.engine import ArenaEngine, create_engine

VERSION = "0.1.0"

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan Management
# =============================================================================


def build_lifespan(engine: ArenaEngine | None = None):
    """Lifespan that owns the engine; a prebuilt engine is used as-is."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan handler."""
        settings = get_settings()

        # Startup
        logger.info("Starting Debate Arena...")
        logger.info(f"Debug mode: {settings.debug}")
        logger.info(f"Database: {settings.database_url}")

        active = engine
        if active is None:
            if not (
                settings.has_anthropic_key
                or settings.has_openai_key
                or settings.has_openrouter_key
            ):
                logger.warning("No API keys configured - LLM calls will fail")
            llm_client = await get_llm_client()
            active = create_engine(
                generative=GenerativeClient(llm_client, settings),
                settings=settings,
            )

        await active.start()
        app.state.engine = active
        logger.info(f"Engine ready, worker running: {active.worker.running}")

        yield

        # Shutdown
        logger.info("Shutting down Debate Arena...")
        await active.stop()
        await close_llm_client()
        logger.info("Shutdown complete")

    return lifespan


# =============================================================================
# Application Factory
# =============================================================================


def create_app(engine: ArenaEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Debate Arena",
        description="AI-adjudicated multi-round debate orchestration",
        version=VERSION,
        lifespan=build_lifespan(engine),
        debug=settings.debug,
    )
    if engine is not None:
        app.state.engine = engine

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    register_exception_handlers(app)

    # Routes
    app.include_router(api_router, prefix="/api")

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="ok", version=VERSION)

    return app


# =============================================================================
# Exception Handlers
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers."""

    @app.exception_handler(RoomNotFoundError)
    async def room_not_found_handler(
        request: Request, exc: RoomNotFoundError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"detail": exc.message, "room_id": exc.room_id},
        )

    @app.exception_handler(JobNotFoundError)
    async def job_not_found_handler(
        request: Request, exc: JobNotFoundError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"detail": exc.message, "job_id": exc.job_id},
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "detail": exc.message,
                "field": exc.field,
                "value": str(exc.value) if exc.value else None,
            },
        )

    @app.exception_handler(PermissionDeniedError)
    async def permission_handler(
        request: Request, exc: PermissionDeniedError
    ) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": exc.message})

    @app.exception_handler(StateMachineError)
    async def state_machine_handler(
        request: Request, exc: StateMachineError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(JobStateError)
    async def job_state_handler(request: Request, exc: JobStateError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={
                "detail": exc.message,
                "job_id": exc.job_id,
                "status": exc.actual_status,
            },
        )

    @app.exception_handler(DuplicateSubmissionError)
    async def duplicate_handler(
        request: Request, exc: DuplicateSubmissionError
    ) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": exc.message})

    @app.exception_handler(LLMError)
    async def llm_error_handler(request: Request, exc: LLMError) -> JSONResponse:
        logger.error(f"LLM error: {exc.message}")
        return JSONResponse(
            status_code=503,
            content={"detail": "LLM service error", "error": exc.message},
        )

    @app.exception_handler(ArenaError)
    async def arena_error_handler(request: Request, exc: ArenaError) -> JSONResponse:
        logger.error(f"Arena error: {exc.message}")
        return JSONResponse(
            status_code=500,
            content={"detail": exc.message, "details": exc.details},
        )


# =============================================================================
# Application Instance
# =============================================================================


app = create_app()
