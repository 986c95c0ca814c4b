"""
FastAPI Judicial Consultation API Server

Provides REST API endpoints for consulting judicial cases, searching the
local store and managing per-user monitoring lists.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Security, Header, Query, Request
from fastapi.responses import RedirectResponse
from fastapi.security import APIKeyHeader

from api.models import (
    ConsultRequest,
    MonitorRequest,
    CaseViewResponse,
    SearchResponse,
    ActivityListResponse,
    SubjectListResponse,
    MonitorResponse,
    MonitoredListResponse,
    HealthResponse,
    ErrorResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    sanitize_for_logging,
    RequestLoggingMiddleware,
)
from config_manager import get_config, configure_logging, ConfigurationError
from database.connection import DatabaseSettings, init_db, close_db
from database.consultation_service import ConsultationService, ClientContext
from database.monitoring import configure_monitoring, check_health
from portal_client import PortalClient

logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH", "config.yaml")
API_KEY = os.getenv("API_KEY", "")  # Required for monitoring endpoints
API_VERSION = "1.0.0"

# Global state
_service: Optional[ConsultationService] = None
_startup_time: Optional[datetime] = None
_executor = ThreadPoolExecutor(max_workers=8)  # For blocking portal and store calls

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Verify API key for protected endpoints.

    If API_KEY environment variable is not set, authentication is disabled.
    """
    if not API_KEY:
        # API key not configured - allow all requests (development mode)
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def get_consultation_service() -> ConsultationService:
    """Dependency to get the consultation service instance."""
    if _service is None:
        raise HTTPException(
            status_code=503, detail="Service not initialized. Service is starting up."
        )
    return _service


async def _run_blocking(func, *args, **kwargs):
    """Run a blocking service call without stalling the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor, partial(func, *args, **kwargs))


def _client_context(request: Request, user_id: Optional[str] = None) -> ClientContext:
    return ClientContext(
        user_id=user_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


# Create FastAPI application
app = FastAPI(
    title="Judicial Consultation API",
    description="API for consulting judicial cases from the Rama Judicial portal with a local cache",
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
async def startup():
    """Load configuration, open the store and build the consultation service."""
    global _service, _startup_time

    logger.info("Starting Judicial Consultation API...")

    try:
        config = get_config(CONFIG_PATH)
        configure_logging(config)
        configure_monitoring(
            slow_query_threshold_ms=config.monitoring.slow_query_threshold_ms,
            warning_threshold_ms=config.monitoring.warning_threshold_ms,
            enable_prometheus=config.monitoring.enable_prometheus,
        )
        logger.info(f"Configuration loaded from {config.config_path}")

        provider = init_db(DatabaseSettings.from_config(config.database))
        await _run_blocking(provider.create_tables)

        _service = ConsultationService(
            provider,
            PortalClient(config.portal),
            search_config=config.search,
        )
        _startup_time = datetime.now(timezone.utc)
        logger.info("API ready: portal=%s", config.portal.base_url)

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"Startup error: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down Judicial Consultation API...")
    close_db()


@app.post(
    "/api/judicial/consult",
    response_model=CaseViewResponse,
    responses={
        200: {"model": CaseViewResponse, "description": "Case returned from cache or portal"},
        404: {"model": ErrorResponse, "description": "Case not found on the portal"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
        503: {"model": ErrorResponse, "description": "Portal unavailable"},
    },
    summary="Consult a case",
    description="Return a case from the local store, scraping the portal when unknown or when a refresh is requested",
)
async def consult_case(
    body: ConsultRequest,
    request: Request,
    refresh: bool = Query(False, description="Force a fresh scrape"),
    fresh: bool = Query(False, description="Alias of refresh"),
    service: ConsultationService = Depends(get_consultation_service),
):
    """Consult a case by case number."""
    view = await _run_blocking(
        service.consult,
        body.case_number,
        force_refresh=refresh or fresh,
        client=_client_context(request),
    )
    return CaseViewResponse(success=True, **view.to_dict())


@app.get(
    "/api/judicial/search",
    response_model=SearchResponse,
    summary="Search stored cases",
    description="Case-insensitive search over cases already in the local store",
)
async def search_cases(
    q: Optional[str] = Query(None, max_length=200, description="Free text"),
    court: Optional[str] = Query(None, max_length=200),
    plaintiff: Optional[str] = Query(None, max_length=200),
    defendant: Optional[str] = Query(None, max_length=200),
    process_type: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, description="Page size, capped by configuration"),
    service: ConsultationService = Depends(get_consultation_service),
):
    """Search the local store; never contacts the portal."""
    result = await _run_blocking(
        service.search,
        query=q,
        court=court,
        plaintiff=plaintiff,
        defendant=defendant,
        process_type=process_type,
        page=page,
        limit=limit,
    )
    return SearchResponse(success=True, **result)


@app.get(
    "/api/judicial/monitored",
    response_model=MonitoredListResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Missing API key"},
        403: {"model": ErrorResponse, "description": "Invalid API key"},
    },
    summary="List monitored cases",
)
async def list_monitored(
    user_id: str = Header(..., alias="X-User-Id", min_length=1, max_length=100),
    service: ConsultationService = Depends(get_consultation_service),
    api_key: str = Depends(verify_api_key),
):
    """Cases on the caller's monitoring list."""
    results = await _run_blocking(service.list_monitored, user_id)
    return MonitoredListResponse(success=True, results=results, total=len(results))


@app.post(
    "/api/judicial/monitor",
    response_model=MonitorResponse,
    status_code=201,
    responses={
        401: {"model": ErrorResponse, "description": "Missing API key"},
        403: {"model": ErrorResponse, "description": "Invalid API key"},
        404: {"model": ErrorResponse, "description": "Case not found on the portal"},
        409: {"model": ErrorResponse, "description": "Case already monitored"},
        503: {"model": ErrorResponse, "description": "Portal unavailable"},
    },
    summary="Monitor a case",
)
async def monitor_case(
    body: MonitorRequest,
    request: Request,
    user_id: str = Header(..., alias="X-User-Id", min_length=1, max_length=100),
    service: ConsultationService = Depends(get_consultation_service),
    api_key: str = Depends(verify_api_key),
):
    """Add a case to the caller's monitoring list, scraping it first if unknown."""
    data = await _run_blocking(
        service.monitor,
        body.case_number,
        user_id,
        role=body.role,
        alias=body.alias,
        client=_client_context(request, user_id),
    )
    return MonitorResponse(success=True, message="Case added to monitoring list", data=data)


@app.delete(
    "/api/judicial/monitor/{case_number}",
    response_model=MonitorResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Missing API key"},
        403: {"model": ErrorResponse, "description": "Invalid API key"},
        404: {"model": ErrorResponse, "description": "Case not monitored"},
    },
    summary="Stop monitoring a case",
)
async def unmonitor_case(
    case_number: str,
    user_id: str = Header(..., alias="X-User-Id", min_length=1, max_length=100),
    service: ConsultationService = Depends(get_consultation_service),
    api_key: str = Depends(verify_api_key),
):
    """Remove a case from the caller's monitoring list."""
    removed = await _run_blocking(service.unmonitor, case_number, user_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Case is not on your monitoring list")
    logger.info("User %s stopped monitoring %s", sanitize_for_logging(user_id), sanitize_for_logging(case_number))
    return MonitorResponse(success=True, message="Case removed from monitoring list")


@app.get(
    "/api/judicial/{case_number}/activities",
    response_model=ActivityListResponse,
    responses={404: {"model": ErrorResponse, "description": "Case not stored"}},
    summary="List stored activities",
)
async def list_activities(
    case_number: str,
    service: ConsultationService = Depends(get_consultation_service),
):
    """Stored activities of a case, newest first."""
    activities = await _run_blocking(service.list_activities, case_number)
    return ActivityListResponse(success=True, case_number=case_number, activities=activities)


@app.get(
    "/api/judicial/{case_number}/subjects",
    response_model=SubjectListResponse,
    responses={404: {"model": ErrorResponse, "description": "Case not stored"}},
    summary="List stored parties",
)
async def list_subjects(
    case_number: str,
    service: ConsultationService = Depends(get_consultation_service),
):
    """Stored parties of a case."""
    subjects = await _run_blocking(service.list_subjects, case_number)
    return SubjectListResponse(success=True, case_number=case_number, subjects=subjects)


@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service and store health",
)
async def health_check(service: ConsultationService = Depends(get_consultation_service)):
    """Return store health and uptime. Always returns HTTP 200."""
    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    provider = service.provider
    status = await _run_blocking(check_health, provider.engine, provider.session_factory)

    return HealthResponse(
        status="healthy" if status.healthy else "unhealthy",
        database=status.to_dict(),
        version=API_VERSION,
        uptime_seconds=uptime_seconds,
        error_message=status.error,
    )


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
