"""
Inbound SMS router.

An ordered list of guarded routes, evaluated top to bottom; the first whose
guard matches handles the message:

  1. crisis         self-harm phrasing → fixed safety resources
  2. opt_out        STOP / UNSUBSCRIBE → sms_opt_in = false
  3. help           HELP → fixed help text
  4. backup_plan    BACKUP keyword, or a live backup session → dialogue
  5. habit_response anything else from a known user → sibling responder

Crisis is first and its guard touches nothing but the text, so it wins over
keywords and any conversation state.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..agents.backup_plan.handler import BackupPlanAgent
from ..agents.backup_plan.matchers import is_trigger
from ..core.config import get_settings
from ..core.guardrails import is_crisis, respond_to_crisis
from ..services import backup_sessions, habit_responder, profiles
from .base_agent import AgentResponse, InboundContext

logger = logging.getLogger(__name__)

Guard = Callable[[InboundContext, AsyncSession], Awaitable[bool]]
Handler = Callable[[InboundContext, AsyncSession], Awaitable[AgentResponse]]

OPT_OUT_KEYWORDS = frozenset({"STOP", "UNSUBSCRIBE"})
HELP_KEYWORD = "HELP"

backup_agent = BackupPlanAgent()


@dataclass(frozen=True)
class InboundRoute:
    name: str
    matches: Guard
    handle: Handler


def help_text() -> str:
    return f"Summit Health: For help, email {get_settings().support_email}. Reply STOP to unsubscribe."


# ── Guards ───────────────────────────────────────────────────────────

async def _crisis_guard(ctx: InboundContext, db: AsyncSession) -> bool:
    return is_crisis(ctx.body)


async def _opt_out_guard(ctx: InboundContext, db: AsyncSession) -> bool:
    return ctx.keyword in OPT_OUT_KEYWORDS


async def _help_guard(ctx: InboundContext, db: AsyncSession) -> bool:
    return ctx.keyword == HELP_KEYWORD


async def _backup_guard(ctx: InboundContext, db: AsyncSession) -> bool:
    if not ctx.user_id:
        return False
    return is_trigger(ctx.body) or await backup_sessions.has_live(db, ctx.user_id)


async def _known_user_guard(ctx: InboundContext, db: AsyncSession) -> bool:
    return ctx.user_id is not None


# ── Handlers ─────────────────────────────────────────────────────────

async def _handle_crisis(ctx: InboundContext, db: AsyncSession) -> AgentResponse:
    # Sends its own reply; content stays empty so nothing else is sent
    await respond_to_crisis(ctx.phone, db=db, user_id=ctx.user_id, user_name=ctx.user_name)
    return AgentResponse(is_complete=True, metadata={"crisis": True})


async def _handle_opt_out(ctx: InboundContext, db: AsyncSession) -> AgentResponse:
    logger.info("User %s requested opt-out via SMS", ctx.phone)
    if ctx.user_id:
        await profiles.opt_out(db, ctx.user_id)
    # The carrier sends its own STOP confirmation
    return AgentResponse(is_complete=True)


async def _handle_help(ctx: InboundContext, db: AsyncSession) -> AgentResponse:
    logger.info("User %s requested help via SMS", ctx.phone)
    return AgentResponse(content=help_text(), is_complete=True)


async def _handle_backup(ctx: InboundContext, db: AsyncSession) -> AgentResponse:
    return await backup_agent.handle(ctx, db)


async def _handle_habit_response(ctx: InboundContext, db: AsyncSession) -> AgentResponse:
    status = await habit_responder.forward(ctx.params, user_id=ctx.user_id)
    return AgentResponse(is_complete=True, metadata={"forward_status": status})


CRISIS_ROUTE = InboundRoute("crisis", _crisis_guard, _handle_crisis)

ROUTES: tuple[InboundRoute, ...] = (
    CRISIS_ROUTE,
    InboundRoute("opt_out", _opt_out_guard, _handle_opt_out),
    InboundRoute("help", _help_guard, _handle_help),
    InboundRoute(backup_agent.name, _backup_guard, _handle_backup),
    InboundRoute("habit_response", _known_user_guard, _handle_habit_response),
)


async def route(ctx: InboundContext, db: AsyncSession) -> Optional[InboundRoute]:
    """First matching route, or None (unknown sender, no keyword)."""
    for candidate in ROUTES:
        if await candidate.matches(ctx, db):
            logger.info("Router: %s → %s", ctx.phone, candidate.name)
            return candidate
    logger.info("Router: %s → no route", ctx.phone)
    return None
