"""Health check endpoint."""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request

from app.core.dependencies import get_gateway
from app.services.gateway.relay import RelayGateway

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request, gateway: RelayGateway = Depends(get_gateway)):
    """Health check endpoint."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "activeSessions": gateway.registry.active_count,
    }
