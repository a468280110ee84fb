"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shelfwarden.api import auth, candidates, feedback, rules, scans, stats
from shelfwarden.config import get_settings
from shelfwarden.core.errors import (
    ConflictError,
    ExternalAdapterError,
    MaintenanceError,
    NotFoundError,
    RuleValidationError,
)
from shelfwarden.core.plex_connector import (
    PlexCatalogAdapter,
    PlexConnector,
    PlexDeletionExecutor,
)
from shelfwarden.core.scanner import ScanExecutor
from shelfwarden.models.database import async_session_maker, init_db

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    RuleValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    ExternalAdapterError: status.HTTP_502_BAD_GATEWAY,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    await init_db()
    if not settings.plex_configured:
        logger.warning("PLEX_URL/PLEX_TOKEN not set; scans and deletions will fail")
    yield
    app.state.scan_executor.shutdown()


app = FastAPI(
    title=settings.app_name,
    description="Rule-driven library maintenance for Plex media servers",
    version="0.1.0",
    lifespan=lifespan,
)

_plex = PlexConnector(settings.plex_url, settings.plex_token)
app.state.scan_executor = ScanExecutor(
    PlexCatalogAdapter(_plex, page_size=settings.catalog_page_size),
    async_session_maker,
    settings=settings,
)
app.state.deletion_executor = PlexDeletionExecutor(_plex)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(rules.router, prefix="/api/rules", tags=["Rules"])
app.include_router(scans.router, prefix="/api/scans", tags=["Scans"])
app.include_router(candidates.router, prefix="/api/candidates", tags=["Candidates"])
app.include_router(feedback.router, prefix="/api/feedback", tags=["Feedback"])
app.include_router(stats.router, prefix="/api/stats", tags=["Stats"])


@app.exception_handler(MaintenanceError)
async def maintenance_exception_handler(request: Request, exc: MaintenanceError):
    """Translate engine errors into the shared error body."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped_status in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = mapped_status
            break
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.summary, "errors": exc.errors},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return consistent 400 errors with actionable validation messages."""
    messages = []
    for error in exc.errors():
        location = " -> ".join(str(part) for part in error.get("loc", []))
        messages.append(f"{location}: {error.get('msg', 'Invalid input')}")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request input.",
            "errors": messages,
        },
    )


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "shelfwarden.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
