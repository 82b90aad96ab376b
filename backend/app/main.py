"""tasksync Backend API - FastAPI application."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tasksync.protocols import ValidationError

from .config import get_settings
from .logging_config import get_logger
from .models import ErrorResponse
from .routes import sync_router, tasks_router

logger = get_logger("tasksync.backend")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    settings = get_settings()
    logger.info(f"Starting tasksync API (debug={settings.debug}, db={settings.database_path})")
    yield
    # Shutdown
    logger.info("Shutting down tasksync API")


app = FastAPI(
    title="tasksync API",
    description="Offline-first task manager with batch sync",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(request: Request, message: str, details=None) -> dict:
    return ErrorResponse(
        error=message,
        timestamp=datetime.now(timezone.utc),
        path=request.url.path,
        details=details,
    ).model_dump(mode="json")


@app.exception_handler(ValidationError)
async def task_validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=_error_body(request, str(exc)))


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(request, "Invalid request body", details=jsonable_encoder(exc.errors())),
    )


# Include routers
app.include_router(tasks_router, prefix="/api")
app.include_router(sync_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "service": "tasksync-backend",
        "version": "0.1.0",
        "status": "ok",
    }
