"""
Main inbound loop.

Receive SMS → resolve sender → log → crisis check → per-user lock → route → reply → commit.

Runs once per webhook call with its own database session. The inbound row is
committed before routing so a failed plan change (which rolls back) never
loses the record of what the user sent.
"""

import logging
import time
from typing import Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.guardrails import check_input, is_crisis
from ..core.redis import UserBusyError, user_lock
from ..services import profiles
from ..services.sms import SmsLogOptions, log_inbound, send_sms
from .base_agent import AgentResponse, InboundContext
from .router import CRISIS_ROUTE, InboundRoute, route

logger = logging.getLogger(__name__)

BUSY_REPLY = "Still working on your last message. Give it a minute and text again."


def build_context(params: Mapping[str, str]) -> Optional[InboundContext]:
    """Form fields → InboundContext. None when there is nothing to route."""
    phone = (params.get("From") or "").strip()
    body = params.get("Body") or ""

    check = check_input(body, phone)
    if not phone or not check.allowed:
        logger.warning("Dropping inbound SMS (from=%r): %s", phone, check.reason or "no sender")
        return None

    return InboundContext(
        phone=phone,
        body=check.modified_input or body,
        message_sid=params.get("MessageSid") or params.get("SmsSid"),
        to_phone=params.get("To"),
        params=dict(params),
    )


async def _resolve_sender(ctx: InboundContext, db: AsyncSession) -> None:
    try:
        profile = await profiles.find_by_phone(db, ctx.phone)
    except SQLAlchemyError as e:
        # Unknown sender still gets crisis resources and HELP
        logger.error("Error looking up user by phone %s: %s", ctx.phone, e)
        await db.rollback()
        return
    if profile is not None:
        ctx.user_id = profile.id
        ctx.first_name = profile.first_name
        ctx.user_name = profile.display_name


async def _log_inbound(ctx: InboundContext, db: AsyncSession) -> None:
    try:
        await log_inbound(db, ctx.phone, ctx.body, ctx.message_sid, ctx.user_id, ctx.user_name)
        await db.commit()
    except SQLAlchemyError as e:
        logger.error("Error inserting inbound message from %s: %s", ctx.phone, e)
        await db.rollback()


async def _reply(ctx: InboundContext, db: AsyncSession, content: str, route_name: str) -> None:
    result = await send_sms(
        ctx.phone,
        content,
        log=SmsLogOptions(db=db, user_id=ctx.user_id, user_name=ctx.user_name),
    )
    if not result.success:
        logger.error("Reply to %s (%s) not delivered: %s", ctx.phone, route_name, result.error)


async def _run(ctx: InboundContext, db: AsyncSession, selected: InboundRoute) -> AgentResponse:
    response = await selected.handle(ctx, db)
    if response.content:
        await _reply(ctx, db, response.content, selected.name)
    await db.commit()
    return response


async def handle_inbound(params: Mapping[str, str], db: AsyncSession) -> Optional[AgentResponse]:
    """
    Process one inbound SMS end to end.

    Returns the AgentResponse that was acted on (None when dropped,
    unrouted or turned away by a busy lock). The reply, if any, has been
    sent and logged by the time this returns.
    """
    start = time.monotonic()

    ctx = build_context(params)
    if ctx is None:
        return None

    await _resolve_sender(ctx, db)
    logger.info(
        "Message from %s (%s): %r",
        ctx.phone, ctx.user_name or "unknown user", ctx.body[:80],
    )
    await _log_inbound(ctx, db)

    if is_crisis(ctx.body):
        # Never queued behind another message from the same user
        selected = CRISIS_ROUTE
        response = await _run(ctx, db, selected)
    else:
        try:
            async with user_lock(ctx.user_id):
                selected = await route(ctx, db)
                if selected is None:
                    return None
                response = await _run(ctx, db, selected)
        except UserBusyError:
            logger.warning("User %s busy, asking %s to resend", ctx.user_id, ctx.phone)
            await _reply(ctx, db, BUSY_REPLY, "busy")
            await db.commit()
            return None

    elapsed = int((time.monotonic() - start) * 1000)
    logger.info(
        "Handled SMS from %s via %s → step=%s complete=%s (%dms)",
        ctx.phone, selected.name, response.step, response.is_complete, elapsed,
    )
    return response
