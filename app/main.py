"""
Dental Scheduling Agent API

FastAPI application entry point that ties all components together.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from app.config import settings
from app.api.routes import agent, health
from app.core.scheduling.dates import WEEKDAYS, parse_clock
from app.core.scheduling.gateway import get_gateway
from app.infra.claude import ClaudeClient


def setup_logging() -> None:
    """Configure logging based on environment."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)


def describe_office_hours(office_hours: dict[str, dict]) -> list[str]:
    """
    One "weekday: HH:MM-HH:MM" line per configured day.

    Raises:
        ValueError: If an open day has a malformed or inverted window
    """
    lines = []
    for day in WEEKDAYS:
        hours = office_hours.get(day)
        if not hours or hours.get("closed"):
            lines.append(f"{day}: closed")
            continue
        try:
            open_at = parse_clock(hours["open"])
            close_at = parse_clock(hours["close"])
        except (KeyError, ValueError) as e:
            raise ValueError(f"Invalid office hours for {day}: {hours}") from e
        if close_at <= open_at:
            raise ValueError(f"Office hours for {day} close before they open: {hours}")
        lines.append(f"{day}: {open_at:%H:%M}-{close_at:%H:%M}")
    return lines


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # === STARTUP ===
    setup_logging()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")

    health.set_start_time()

    for line in describe_office_hours(settings.office_hours):
        logger.info(f"Office hours {line}")

    if not settings.opendental_api_key:
        logger.warning("OPENDENTAL_API_KEY not set - gateway calls will be rejected")
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY not set - every turn will ask for clarification")

    logger.info(f"Application ready at http://{settings.host}:{settings.port}")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down application...")

    await get_gateway().close()
    logger.info("OpenDental client closed")

    if ClaudeClient._instance is not None:
        await ClaudeClient._instance.close()
        ClaudeClient.reset_instance()
        logger.info("Claude client closed")

    logger.info("Shutdown complete")


app = FastAPI(
    title="Dental Scheduling Agent API",
    description="""
    Conversational appointment scheduling for a dental office running OpenDental.

    ## Features
    - Book, reschedule, cancel and confirm appointments
    - Open-slot search with conflict checking against the live schedule
    - Recall, planned-treatment and ASAP-list workflows
    """,
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "detail": exc.errors(),
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    detail = str(exc) if settings.is_development else "Internal server error"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": detail,
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Log request duration in debug mode."""
    start_time = time.time()

    try:
        return await call_next(request)
    finally:
        if settings.debug:
            duration = time.time() - start_time
            logger.debug(
                f"{request.method} {request.url.path} "
                f"completed in {duration:.3f}s"
            )


app.include_router(health.router)
app.include_router(agent.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """
    Root endpoint.

    Returns basic API information.
    """
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "status": "running",
        "environment": settings.app_env,
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
