"""Ephemeral realtime session endpoint."""
import logging
from fastapi import APIRouter, HTTPException

from app.services.realtime.bootstrap import SessionBootstrapError, create_ephemeral_session

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/api/session")
async def create_session():
    """Create an upstream realtime session for direct browser use."""
    try:
        return await create_ephemeral_session()
    except SessionBootstrapError as e:
        logger.error(f"[SESSION] Session creation failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create session")
