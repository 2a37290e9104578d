"""
Forward messages the backup flow does not own to the habit-confirmation
responder (a separate service that handles "done" / "skipped" replies).

Fire-and-report: the responder answers the user itself, so a failure here is
logged and never surfaces to the webhook.
"""

import logging
from typing import Optional

import httpx

from ..core.config import get_settings

logger = logging.getLogger(__name__)

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(timeout=httpx.Timeout(connect=5, read=20, write=10, pool=5))
    return _client


async def close_client():
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


async def forward(params: dict[str, str], user_id: Optional[str] = None) -> Optional[int]:
    """
    POST the original form fields to HABIT_RESPONSE_URL.
    Returns the responder's status code, or None when nothing was sent.
    """
    settings = get_settings()
    if not settings.habit_response_url:
        logger.info("No HABIT_RESPONSE_URL configured; message from user %s not forwarded", user_id)
        return None

    headers = {}
    if settings.service_role_key:
        headers["Authorization"] = f"Bearer {settings.service_role_key}"

    try:
        resp = await _get_client().post(settings.habit_response_url, data=params, headers=headers)
    except httpx.HTTPError as e:
        logger.error("Error forwarding to habit responder for user %s: %s", user_id, e)
        return None

    logger.info("Habit responder status for user %s: %d", user_id, resp.status_code)
    return resp.status_code
