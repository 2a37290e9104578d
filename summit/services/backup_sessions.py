"""
Backup-plan session persistence, one live conversation per user.

Used by:
  - BackupPlanAgent to load / advance / end the conversation each turn
  - the inbound router to decide whether a plain reply belongs to the dialogue

A session is live while expires_at is in the future. Expired rows are treated
as absent and are cleaned up the next time the user starts over.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..models.backup_session import BackupSession
from ..models.base import utcnow

logger = logging.getLogger(__name__)


async def start_new(
    db: AsyncSession,
    user_id: str,
    step: str,
    context: dict,
) -> BackupSession:
    """
    Delete every session the user has (live or expired), then insert a fresh one.
    Delete-then-insert in the same transaction keeps at most one row per user.
    """
    removed = await db.execute(
        delete(BackupSession)
        .where(BackupSession.user_id == user_id)
        .execution_options(synchronize_session="fetch")
    )
    if removed.rowcount:
        logger.info("Cleared %d old backup session(s) for user %s", removed.rowcount, user_id)

    now = utcnow()
    session = BackupSession(
        user_id=user_id,
        step=step,
        context=context,
        created_at=now,
        expires_at=now + timedelta(minutes=get_settings().backup_session_ttl_minutes),
    )
    db.add(session)
    await db.flush()
    logger.debug("Started backup session %s for user %s (step=%s)", session.id, user_id, step)
    return session


async def get_live(db: AsyncSession, user_id: str) -> Optional[BackupSession]:
    """Most recent unexpired session for the user, or None."""
    result = await db.execute(
        select(BackupSession)
        .where(
            BackupSession.user_id == user_id,
            BackupSession.expires_at > utcnow(),
        )
        .order_by(BackupSession.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def has_live(db: AsyncSession, user_id: str) -> bool:
    return await get_live(db, user_id) is not None


async def advance(
    db: AsyncSession,
    session_id: str,
    step: str,
    context: dict,
) -> None:
    """Replace step and context. The expiry is not extended."""
    await db.execute(
        update(BackupSession)
        .where(BackupSession.id == session_id)
        .values(step=step, context=context, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    await db.flush()
    logger.debug("Advanced backup session %s → %s", session_id, step)


async def end(db: AsyncSession, session_id: str) -> None:
    """Delete the session. Ending an already-gone session is a no-op."""
    await db.execute(
        delete(BackupSession)
        .where(BackupSession.id == session_id)
        .execution_options(synchronize_session="fetch")
    )
    await db.flush()
    logger.debug("Ended backup session %s", session_id)


async def end_all(db: AsyncSession, user_id: str) -> None:
    """Delete every session the user has, live or expired."""
    await db.execute(
        delete(BackupSession)
        .where(BackupSession.user_id == user_id)
        .execution_options(synchronize_session="fetch")
    )
    await db.flush()
