"""
FastAPI Application Main
========================

Main FastAPI application with routers, middleware and domain error mapping.
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
import logging
import time

from .routers import health_router, lending_router
from .. import __version__
from ..domain.exceptions import (
    BusinessRuleViolation, Conflict, DomainException, InvalidInput, InvalidTransition,
    NotFound, Unavailable
)
from ..infrastructure.config import get_config
from ..infrastructure.logging_config import setup_logging

logger = logging.getLogger(__name__)

# Load configuration
config = get_config()
setup_logging(config.logging)

# Create FastAPI app
app = FastAPI(
    title="Library Lending API",
    description="Borrowing, returns, renewals and reservations of physical library copies",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

STATUS_BY_ERROR = [
    (NotFound, 404),
    (Conflict, 409),
    (InvalidTransition, 409),
    (BusinessRuleViolation, 422),
    (InvalidInput, 400),
    (Unavailable, 503),
]


# Add timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time to response headers"""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException):
    """Translate domain errors to HTTP responses"""
    status_code = next((code for kind, code in STATUS_BY_ERROR if isinstance(exc, kind)), 400)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"error": type(exc).__name__, "detail": exc.message, **exc.details}),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error": str(exc)}
    )


# Include routers
app.include_router(health_router)
app.include_router(lending_router)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Library Lending API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Library Lending API")
    logger.info(f"Environment: {config.environment}")
    logger.info(f"Debug mode: {config.debug}")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Library Lending API")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lending.api.main:app",
        host=config.api.host,
        port=config.api.port,
        reload=config.api.reload,
        workers=config.api.workers
    )
