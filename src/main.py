"""FastAPI application initialization."""

from contextlib import asynccontextmanager
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.auth import router as auth_router
from src.api.middleware import CorrelationIdMiddleware
from src.api.password import router as password_router
from src.api.routes import router
from src.config import get_settings
from src.database import close_database, init_database, run_migrations
from src.services.credential_store import CredentialStoreError
from src.services.logging_service import configure_logging, get_logger
from src.services.redis_service import close_redis, get_redis


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger = get_logger("main")

    # The credential store is required; fail startup without it
    await init_database(settings.postgres_url)
    await run_migrations()
    logger.info("database_initialized")

    # Redis only backs the message cache
    redis_client = await get_redis(settings.redis_url)
    if redis_client is None:
        logger.warning(
            "redis_initialization_failed",
            note="Continuing without Redis - response messages will not be cached",
        )

    logger.info("application_started", log_level=settings.log_level)

    yield

    await close_database()
    await close_redis()

    logger.info("application_shutdown")


app = FastAPI(
    title="HIS Auth API",
    description="Login sessions, refresh tokens and OTP-based password reset",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with a 400 and the first failing field."""
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())
    logger = structlog.get_logger()

    errors = exc.errors()
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
        message = first_error.get("msg", "Validation failed")
        detail = f"Field '{field}': {message}"
    else:
        detail = "Request validation failed"

    logger.warning(
        "validation_error",
        correlation_id=correlation_id,
        detail=detail,
    )

    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation error",
            "detail": detail,
            "correlation_id": correlation_id,
        },
        headers={"X-Correlation-Id": correlation_id},
    )


@app.exception_handler(CredentialStoreError)
async def credential_store_exception_handler(
    request: Request, exc: CredentialStoreError
) -> JSONResponse:
    """Store connectivity failures are the only fatal errors; surface them as 500."""
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())
    logger = structlog.get_logger()
    logger.error("credential_store_error", correlation_id=correlation_id, error=str(exc))

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "correlation_id": correlation_id,
        },
        headers={"X-Correlation-Id": correlation_id},
    )


# CORS middleware for browser clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Correlation ID middleware for request tracking and observability
app.add_middleware(CorrelationIdMiddleware)

app.include_router(auth_router)
app.include_router(password_router)
app.include_router(router)
