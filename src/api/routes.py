"""API route definitions for health and response message endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from src.api.dependencies import get_response_message_service
from src.database import health_check as db_health_check
from src.services.redis_service import get_redis
from src.services.response_message_service import ResponseMessageService


router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Status and timestamp in ISO8601 format
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    db_healthy = await db_health_check()
    health_status["database"] = "healthy" if db_healthy else "unhealthy"

    redis_client = await get_redis()
    health_status["redis"] = "healthy" if redis_client else "unavailable"

    return health_status


@router.get("/messages/{alert_code}")
async def get_response_message(
    alert_code: str,
    service: ResponseMessageService = Depends(get_response_message_service),
) -> dict:
    """Resolve an alert code to its display type and message."""
    message_type, message = await service.get_message(alert_code)
    return {"alert_code": alert_code, "type": message_type, "message": message}
