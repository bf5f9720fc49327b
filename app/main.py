from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import uvicorn

from .config import get_settings
from .database import engine, Base
from .api.v1.router import api_router
from .services.exceptions import (
    ConflictError,
    EstimationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .services.pricing import pricing_formula_text
from .utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    setup_logging(settings.log_level)
    logger.info("Starting %s (%s)", settings.app_name, pricing_formula_text())

    # Create database tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    # Shutdown
    logger.info("Shutting down %s", settings.app_name)
    await engine.dispose()


# Create FastAPI application
settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Sprint estimation and composition for studio engagements",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)

_STATUS_CODES = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (ConflictError, 409),
    (PermissionDeniedError, 403),
)


@app.exception_handler(EstimationError)
async def estimation_exception_handler(request: Request, exc: EstimationError):
    """Map service errors onto HTTP responses"""

    status_code = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 500)
    if status_code == 500:
        logger.error("Unhandled estimation error on %s %s: %s", request.method, request.url.path, exc.message)

    content = {"detail": exc.message, "type": type(exc).__name__}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=status_code, content=content)


# Include API routes
app.include_router(api_router, prefix="/api/v1")

# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
