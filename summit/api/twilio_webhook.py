"""
Twilio inbound SMS webhook.

POST /webhooks/twilio: verify signature, acknowledge, process in background

Twilio gets an empty TwiML document straight away; the reply (if any) goes
out later through the REST API. Errors after the acknowledgment are logged
and never reach Twilio, so it does not retry the delivery.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.database import session_scope
from ..core.dependencies import get_db_factory, twilio_form
from ..orchestrator.orchestrator import handle_inbound

logger = logging.getLogger(__name__)

twilio_router = APIRouter(prefix="/webhooks", tags=["webhooks"])

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def twiml_ack() -> Response:
    return Response(content=EMPTY_TWIML, media_type="text/xml")


async def process_inbound(
    params: dict[str, str],
    factory: async_sessionmaker[AsyncSession],
) -> None:
    """Background task: one session, one inbound message."""
    try:
        async with session_scope(factory) as db:
            await handle_inbound(params, db)
    except Exception:
        logger.exception("Error processing inbound SMS from %s", params.get("From"))


@twilio_router.post("/twilio")
async def twilio_webhook(
    background_tasks: BackgroundTasks,
    params: dict[str, str] = Depends(twilio_form),
    factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
):
    """Acknowledge an inbound SMS and hand it to the orchestrator."""
    logger.info(
        "Inbound SMS webhook: sid=%s from=%s",
        params.get("MessageSid"), params.get("From"),
    )
    background_tasks.add_task(process_inbound, params, factory)
    return twiml_ack()
