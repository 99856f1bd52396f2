"""Main FastAPI application with middleware and error handlers"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from notebook_engine import __version__
from notebook_engine.api.endpoints import get_engine, router
from notebook_engine.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    error_response,
    status_for,
)
from notebook_engine.config import settings
from notebook_engine.exceptions import EngineException
from notebook_engine.integration import EngineIntegration, get_integration, reset_integration
from notebook_engine.logging_config import setup_logging

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine components on startup and cancel running work on shutdown"""
    logger.info("Starting notebook engine API...")
    integration = get_integration()
    health = integration.health_check()
    logger.info(f"System health check: {health['overall_status']}")
    logger.info("API documentation available at /docs")

    yield

    logger.info("Shutting down notebook engine API...")
    reset_integration()
    logger.info("Notebook engine API shutdown complete")


# Create main application
app = FastAPI(
    title="Notebook Execution Engine API",
    description="Out-of-process code execution and model lifecycle for the analysis notebook",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Order matters - last added is outermost
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(EngineException)
async def engine_exception_handler(request: Request, exc: EngineException) -> JSONResponse:
    """
    Map engine exceptions to HTTP status codes.

    Returns:
        JSON response with the standard error body
    """
    return error_response(status_for(exc), type(exc).__name__, exc.message, request, exc.details)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """
    Handle request body validation errors.

    Returns:
        JSON response with validation error details
    """
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "ValidationError",
        "Request validation failed",
        request,
        {"validation_errors": errors}
    )


app.include_router(router)


@app.get("/health", tags=["Health"])
async def health_check(engine: EngineIntegration = Depends(get_engine)):
    """
    Health check endpoint.

    Returns:
        Health status with per-component details
    """
    health = engine.health_check()
    return {
        "status": health["overall_status"],
        "service": "notebook-engine",
        "version": __version__,
        "components": health["components"],
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "service": "Notebook Execution Engine API",
        "version": __version__,
        "status": "operational",
        "documentation": "/docs"
    }
