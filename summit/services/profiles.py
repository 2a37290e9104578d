"""
Profile lookups for inbound SMS. Every inbound message is matched to a user
by the sender's phone number.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.profile import Profile

logger = logging.getLogger(__name__)


async def find_by_phone(db: AsyncSession, phone: str) -> Optional[Profile]:
    result = await db.execute(
        select(Profile).where(Profile.phone == phone).order_by(Profile.created_at).limit(1)
    )
    return result.scalar_one_or_none()


async def opt_out(db: AsyncSession, user_id: str) -> None:
    """Turn off SMS for a user (STOP / UNSUBSCRIBE)."""
    await db.execute(
        update(Profile)
        .where(Profile.id == user_id)
        .values(sms_opt_in=False)
        .execution_options(synchronize_session="fetch")
    )
    await db.flush()
    logger.info("Updated user %s sms_opt_in to false", user_id)
