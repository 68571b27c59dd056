"""
FastAPI application for the CloudVote API.

Every replica serves the same endpoints against the shared PostgreSQL store:
the live tally and audit tail, the vote write, a liveness probe, the HTML
dashboard and Prometheus metrics.
"""
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from pydantic import ValidationError as PydanticValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..shared.errors import ConnectivityError, PersistenceError, ValidationError
from .config import Settings, settings
from .models import (
    VoteRequest,
    VoteResponse,
    ErrorResponse,
    ConnectivityErrorResponse,
    LiveDataResponse,
)
from .runtime import VoteServices, build_services

logger = logging.getLogger(__name__)

DASHBOARD_PATH = Path(__file__).parent / "static" / "dashboard.html"

# Prometheus metrics
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)
live_data_errors = Counter(
    "live_data_errors_total",
    "Total number of failed live data reads"
)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)

# Settings of the most recently created application. The limiter, the router
# and the root logger are process-wide, so they follow the latest create_app().
_active_settings = settings

router = APIRouter()


def configure_logging(app_settings: Settings):
    """Configure the root logger from settings."""
    level = logging.DEBUG if app_settings.DEBUG else getattr(logging, app_settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logging.getLogger().setLevel(level)


def vote_rate_limit() -> str:
    """Rate limit for POST /vote, evaluated on every request."""
    return _active_settings.RATE_LIMIT


def get_services(request: Request) -> VoteServices:
    """Components built by the lifespan handler for this process."""
    return request.app.state.services


def client_address(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


async def read_candidate(request: Request) -> Optional[str]:
    """Extract the candidate from a JSON or form-encoded body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
    else:
        body = dict(await request.form())

    try:
        return VoteRequest.model_validate(body).candidate
    except PydanticValidationError:
        return None


@router.get("/health", response_class=PlainTextResponse)
async def health_check():
    """Liveness probe. Does not touch the store."""
    return PlainTextResponse("OK")


@router.get(
    "/api/live-data",
    response_model=LiveDataResponse,
    responses={
        503: {"model": ConnectivityErrorResponse, "description": "Store unreachable"}
    }
)
async def live_data(services: VoteServices = Depends(get_services)):
    """
    Current tally and most recent audit entries.

    The tally and the audit window are read concurrently and may reflect
    slightly different moments.
    """
    try:
        snapshot = await services.view.snapshot()
    except ConnectivityError as e:
        live_data_errors.inc()
        logger.error(f"DB Error: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Database connectivity interruption"}
        )
    except Exception as e:
        live_data_errors.inc()
        logger.error(f"Unexpected error reading live data: {e}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Database connectivity interruption"}
        )

    return LiveDataResponse.from_snapshot(snapshot, services.pod_id)


@router.post(
    "/vote",
    response_model=VoteResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid candidate"},
        429: {"description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Transaction failed"}
    }
)
@limiter.limit(vote_rate_limit)
async def submit_vote(request: Request, services: VoteServices = Depends(get_services)):
    """
    Cast a vote.

    - **candidate**: aws or azure, as JSON or form field

    The audit entry is written in the background; its outcome does not
    affect the response.
    """
    candidate = await read_candidate(request)

    try:
        await services.ledger.cast_vote(candidate, services.pod_id, client_address(request))
    except ValidationError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(message=str(e)).model_dump()
        )
    except PersistenceError as e:
        logger.error(f"Transaction failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(message="Transaction failed").model_dump()
        )
    except Exception as e:
        logger.error(f"Unexpected error submitting vote: {e}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(message="Transaction failed").model_dump()
        )

    return VoteResponse()


@router.get("/", response_class=HTMLResponse)
async def dashboard():
    """Live dashboard polling /api/live-data."""
    return HTMLResponse(DASHBOARD_PATH.read_text(encoding="utf-8"))


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def create_app(
    app_settings: Optional[Settings] = None,
    pool_factory: Optional[Callable[..., Awaitable[Any]]] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        app_settings: Settings to use (defaults to the environment)
        pool_factory: Replacement for asyncpg.create_pool

    Returns:
        FastAPI: Application whose lifespan owns the connection pool
    """
    global _active_settings
    app_settings = app_settings or settings
    _active_settings = app_settings
    configure_logging(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events."""
        logger.info(f"Starting {app_settings.SERVICE_NAME} on pod {app_settings.pod_id}...")

        try:
            app.state.services = await build_services(app_settings, pool_factory)
            logger.info(f"{app_settings.SERVICE_NAME} started successfully")
        except Exception as e:
            logger.error(f"Failed to start {app_settings.SERVICE_NAME}: {e}")
            raise

        yield

        logger.info(f"Shutting down {app_settings.SERVICE_NAME}...")
        try:
            await app.state.services.close()
            logger.info(f"{app_settings.SERVICE_NAME} shut down successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    app = FastAPI(
        title="CloudVote API",
        description="Replicated two-option voting with a live tally and audit trail",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=app_settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=app_settings.CORS_ALLOW_METHODS,
        allow_headers=app_settings.CORS_ALLOW_HEADERS,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.middleware("http")
    async def prometheus_middleware(request: Request, call_next):
        """Middleware to track request duration."""
        start = time.perf_counter()
        response = await call_next(request)
        request_duration.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).observe(time.perf_counter() - start)
        return response

    app.include_router(router)
    return app


app = create_app()


def run():
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "cloudvote.vote_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )


if __name__ == "__main__":
    run()
