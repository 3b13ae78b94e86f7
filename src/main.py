"""Dhyana API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.config import get_settings
from src.core.context import get_request_id
from src.core.database import init_async_cassandra, shutdown_async_cassandra
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.core.redis import init_redis, shutdown_redis
from src.governance.access_codes import AccessCodeManager
from src.governance.attendance import AttendanceGate
from src.governance.events import LessonEventPublisher
from src.governance.pauses import PauseBudgetTracker
from src.governance.repository import GovernanceRepository
from src.governance.router import admin_router as governance_admin_router
from src.governance.router import router as governance_router
from src.governance.router import sessions_router
from src.governance.service import ProgressGovernanceEngine
from src.health import router as health_router


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


# Application state for dependency injection
class AppState:
    """Application state container."""

    cassandra_session: Any = None
    governance_engine: ProgressGovernanceEngine | None = None


app_state = AppState()


def build_governance_engine(
    session: Any, redis_client: Any = None
) -> ProgressGovernanceEngine:
    """Wire the governance engine and its collaborators on one session."""
    settings = get_settings()
    repository = GovernanceRepository(
        session=session,
        keyspace=settings.cassandra_keyspace,
    )
    return ProgressGovernanceEngine(
        repository=repository,
        access_codes=AccessCodeManager(
            repository, code_length=settings.access_code_length
        ),
        attendance=AttendanceGate(repository, timezone=settings.attendance_timezone),
        pauses=PauseBudgetTracker(repository),
        events=LessonEventPublisher(redis_client),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Initialize Redis (non-critical - app works without it)
    redis_client = None
    try:
        redis_client = await init_redis()
        logger.info("redis_initialized")
    except Exception as e:
        logger.warning(
            "redis_init_skipped",
            error=str(e),
            message="Running without Redis - real-time lesson events disabled",
        )

    # Initialize Cassandra (async)
    try:
        app_state.cassandra_session = await init_async_cassandra()
        logger.info("cassandra_initialized")

        app_state.governance_engine = build_governance_engine(
            app_state.cassandra_session, redis_client
        )
        app.state.governance_engine = app_state.governance_engine
        logger.info(
            "governance_engine_initialized", redis_enabled=redis_client is not None
        )
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )

    yield

    # Shutdown
    logger.info("shutting_down_application")
    await shutdown_redis()
    await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # Always debug=False so Starlette's ServerErrorMiddleware never renders
    # stack traces; the handlers below log details and return safe messages.
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Dhyana - Lesson access and progress API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages.

        Denials arrive with a dict detail holding the reason code, which is
        passed through so clients can pick the remediation.
        """
        request_id = _get_request_id_safe(request)

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        content: dict[str, Any] = {
            "error": True,
            "status_code": exc.status_code,
            "request_id": request_id,
        }
        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            content["message"] = "Internal server error"
        elif isinstance(exc.detail, dict):
            content["message"] = exc.detail.get("message", "")
            content["reason"] = exc.detail.get("reason")
        else:
            content["message"] = str(exc.detail)

        return ORJSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle validation errors with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "message": "Validation error",
                "status_code": 422,
                "request_id": request_id,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler for unhandled exceptions.

        Never exposes stack traces or internal error details; they are logged.
        """
        request_id = _get_request_id_safe(request)

        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": request_id,
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(governance_router)
    app.include_router(governance_admin_router)
    app.include_router(sessions_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Dhyana API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
