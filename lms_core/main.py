"""LMS Core API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lms_core.catalog.service import CourseCatalog
from lms_core.config import Settings, get_settings
from lms_core.core.context import get_request_id
from lms_core.core.database import init_async_cassandra, shutdown_async_cassandra
from lms_core.core.exceptions import DomainError
from lms_core.core.http_errors import DOMAIN_ERROR_STATUS
from lms_core.core.logging import configure_structlog, get_logger
from lms_core.core.middleware import RequestContextMiddleware
from lms_core.core.redis import init_redis, shutdown_redis
from lms_core.enrollments.coordinator import EnrollmentCoordinator
from lms_core.enrollments.ledger import PurchaseLedger
from lms_core.enrollments.router import admin_router as enrollments_admin_router
from lms_core.enrollments.router import router as purchases_router
from lms_core.health import router as health_router
from lms_core.progress.router import router as progress_router
from lms_core.progress.service import ProgressService
from lms_core.users.service import UserDirectory


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


def wire_services(
    state: Any,
    session: Any,
    settings: Settings,
    redis_client: Any = None,
) -> None:
    """Build the engine services on a session and attach them to app state.

    Every service gets its collaborators through the constructor.
    """
    keyspace = settings.cassandra_keyspace

    catalog = CourseCatalog(session=session, keyspace=keyspace)
    users = UserDirectory(session=session, keyspace=keyspace)
    ledger = PurchaseLedger(
        session=session,
        keyspace=keyspace,
        catalog=catalog,
        redis=redis_client,
        cache_ttl=settings.access_cache_ttl_seconds,
        max_write_retries=settings.ledger_max_write_retries,
        default_currency=settings.default_currency,
    )

    state.course_catalog = catalog
    state.user_directory = users
    state.purchase_ledger = ledger
    state.progress_service = ProgressService(
        session=session,
        keyspace=keyspace,
        catalog=catalog,
        max_write_retries=settings.progress_max_write_retries,
    )
    state.enrollment_coordinator = EnrollmentCoordinator(
        ledger=ledger,
        catalog=catalog,
        users=users,
        max_write_retries=settings.ledger_max_write_retries,
        default_currency=settings.default_currency,
    )


async def _connect_access_cache(settings: Settings) -> Any:
    """Connect Redis for the enrollment check cache, or return None."""
    if not settings.access_cache_enabled:
        logger.info("access_cache_disabled")
        return None

    try:
        return await init_redis()
    except Exception as e:
        # Enrollment checks fall back to Cassandra on every call
        logger.warning("access_cache_unavailable", error=str(e))
        return None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Connect storage, wire services, and close connections on shutdown."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    redis_client = await _connect_access_cache(settings)

    try:
        session = await init_async_cassandra()
        wire_services(app.state, session, settings, redis_client)
        logger.info(
            "enrollment_services_initialized",
            keyspace=settings.cassandra_keyspace,
            access_cache=redis_client is not None,
        )
    except Exception as e:
        # Health stays up and reports degraded; service routes answer 503
        logger.error("database_init_failed", error=str(e))

    yield

    logger.info("shutting_down_application")
    await shutdown_redis()
    await shutdown_async_cassandra()


def _error_body(request: Request, status_code: int, message: str) -> dict[str, Any]:
    request_id = getattr(request.state, "request_id", None) or get_request_id()
    return {
        "error": True,
        "message": message,
        "status_code": status_code,
        "request_id": request_id,
    }


def register_exception_handlers(app: FastAPI) -> None:
    """Uniform error bodies: {error, message, status_code, request_id}."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )
        message = (
            str(exc.detail)
            if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
            or exc.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
            else "Internal server error"
        )
        return ORJSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.status_code, message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> ORJSONResponse:
        """Domain errors a route did not convert itself."""
        status_code = DOMAIN_ERROR_STATUS.get(
            exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        logger.warning(
            "domain_error",
            code=exc.code,
            status_code=status_code,
            path=request.url.path,
        )
        headers = (
            {"Retry-After": "1"}
            if status_code == status.HTTP_503_SERVICE_UNAVAILABLE
            else None
        )
        return ORJSONResponse(
            status_code=status_code,
            content=_error_body(request, status_code, exc.message),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )
        content = _error_body(
            request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error"
        )
        content["details"] = [
            {
                "field": ".".join(str(loc) for loc in err.get("loc", [])),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=content
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler: log everything, expose nothing."""
        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
        )
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(
                request,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "An unexpected error occurred. Please try again later.",
            ),
        )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Enrollment and progress API",
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

    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(progress_router)
    app.include_router(purchases_router)
    app.include_router(enrollments_admin_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "LMS Core API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
