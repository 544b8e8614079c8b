"""FastAPI application entry point."""

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gvflow.config import Settings
from gvflow.db.database import close_database, init_database
from gvflow.errors import (
    Conflict,
    Forbidden,
    GvFlowError,
    InvalidArgument,
    MaxDepthExceeded,
    NotFound,
    UnparseableIdentifier,
)
from gvflow.services.container import build_services

settings = Settings.from_env()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    # Startup
    await init_database(settings.database_path)

    services = build_services(settings)
    app.state.services = services
    await services.start()

    synced = await services.variables.sync_all()
    logger.info(f"Synced {synced} entity variable(s) on startup")

    yield

    # Shutdown
    await services.shutdown()
    await close_database()


app = FastAPI(
    title="GV Flow",
    description="Global variable resolution and workflow execution",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware - allow any localhost port for local frontends
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://localhost(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_BY_ERROR: list[tuple[type[GvFlowError], int]] = [
    (NotFound, 404),
    (Forbidden, 403),
    (Conflict, 409),
    (MaxDepthExceeded, 422),
    (UnparseableIdentifier, 400),
    (InvalidArgument, 400),
]


@app.exception_handler(GvFlowError)
async def handle_service_error(request: Request, exc: GvFlowError) -> JSONResponse:
    """Map service errors to HTTP status codes."""
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)), 500
    )
    if status_code == 500:
        logger.error(f"Unhandled service error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers after app is created to avoid circular imports
from gvflow.api import variable_events, variables, workflows  # noqa: E402

app.include_router(variables.router, prefix="/api/v1", tags=["variables"])
app.include_router(variable_events.router, prefix="/api/v1", tags=["variable-events"])
app.include_router(workflows.router, prefix="/api/v1", tags=["workflows"])
