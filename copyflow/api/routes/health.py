"""
Health API Routes
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from copyflow.config import Settings, get_settings, secret_value
from copyflow.database import database_health

router = APIRouter()


@router.get("/health")
async def health_check(settings: Settings = Depends(get_settings)) -> JSONResponse:
    """Application and database health"""
    db = database_health()
    ok = bool(db.get("ok"))
    return JSONResponse(
        status_code=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if ok else "degraded",
            "database": db,
            "integrations": {
                "clickup": secret_value(settings.clickup_api_token) is not None,
                "shade": secret_value(settings.shade_api_key) is not None,
                "shade_drive": bool(settings.shade_drive_id),
                "webhook_secret": secret_value(settings.clickup_webhook_secret) is not None,
            },
            "webhook_mode": settings.webhook_mode,
            "continuation_mode": settings.continuation_mode,
        },
    )
