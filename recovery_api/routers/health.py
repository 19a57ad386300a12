"""Health check endpoints for container orchestration."""

import time
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse

from recovery_api.config import settings
from recovery_api.dependencies import get_main_api_client
from recovery_api.services.main_api import MainApiClient

router = APIRouter(tags=["Health"])

_STARTED_AT = time.monotonic()


@router.get("/health", response_model=None)
async def health_check(
    main_api: MainApiClient = Depends(get_main_api_client),
) -> Response:
    """
    Health check endpoint with main API status.

    Returns 200 with {"status": "ok", "mainApi": "connected"} when the main
    API answers, 503 with {"status": "degraded", "mainApi": "disconnected"}
    otherwise.
    """
    api_healthy = await main_api.health_check()

    return JSONResponse(
        status_code=(
            status.HTTP_200_OK
            if api_healthy
            else status.HTTP_503_SERVICE_UNAVAILABLE
        ),
        content={
            "status": "ok" if api_healthy else "degraded",
            "service": settings.service_name,
            "mainApi": "connected" if api_healthy else "disconnected",
            "mainApiUrl": main_api.base_url,
            "messagingProvider": settings.messaging_provider,
            "timestamp": datetime.now(UTC).isoformat(),
            "uptime": round(time.monotonic() - _STARTED_AT, 3),
        },
    )


@router.get("/health/live")
async def liveness_probe() -> dict[str, Any]:
    """
    Liveness probe.

    Returns success if the process is running. Does not check the main API.
    """
    return {"status": "alive"}
