"""Ephemeral realtime session bootstrap over the vendor REST API."""
import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


class SessionBootstrapError(RuntimeError):
    """The upstream refused or failed to create an ephemeral session."""


async def create_ephemeral_session(
    client: Optional[httpx.AsyncClient] = None,
    model: Optional[str] = None,
    voice: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create an upstream realtime session for direct browser use.

    Args:
        client: Optional HTTP client, mainly for tests
        model: Realtime model; defaults to the configured one
        voice: Output voice; defaults to the configured one

    Returns:
        Session object returned by the upstream, including the client secret
    """
    url = f"{settings.openai_api_base}/realtime/sessions"
    body = {
        "model": model or settings.realtime_model,
        "voice": voice or settings.realtime_voice,
    }
    headers = {"Authorization": f"Bearer {settings.openai_api_key}"}

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.realtime_connect_timeout) as http:
                response = await http.post(url, json=body, headers=headers)
        else:
            response = await client.post(url, json=body, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        logger.error(f"[UPSTREAM] Session bootstrap rejected - Status: {e.response.status_code}")
        raise SessionBootstrapError(f"Upstream returned {e.response.status_code}") from e
    except httpx.HTTPError as e:
        logger.error(f"[UPSTREAM] Session bootstrap failed - Error: {type(e).__name__}: {str(e)}")
        raise SessionBootstrapError(str(e)) from e

    data = response.json()
    logger.info(f"[UPSTREAM] Ephemeral session created - Id: {data.get('id')}")
    return data
