"""
Apply an agreed plan change to the habit tables.

Order of operations (all inside the caller's transaction):
  1. update the tracking-config target (if it changed)
  2. prune weekly_habits rows down to the new day count, keeping the weekdays
     circularly nearest to today
  3. rename the habit everywhere if its name embeds the old target
     ("10-minute meditation" → "5-minute meditation")
  4. insert one backup_plan_log row

Any database error rolls the whole change back and is reported as a failed
PlanChangeResult; nothing here raises. Callers must not touch ORM instances
loaded before the call after a failure (the rollback expires them).
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy import select, update, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..models.backup_plan_log import BackupPlanLog
from ..models.habit import HabitTrackingConfig, HabitTrackingEntry, WeeklyHabit

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

T = TypeVar("T")


@dataclass
class PlanChangeResult:
    success: bool
    error: Optional[str] = None
    change_type: Optional[str] = None
    kept_days: Optional[list[int]] = None
    new_habit_name: Optional[str] = None


# ── Pure helpers ─────────────────────────────────────────────────────

def round_half_up(value: float) -> int:
    """2.5 → 3, 1.5 → 2 (Python's round() would give 2 and 2)."""
    return int(math.floor(value + 0.5))


def format_number(value: Optional[float]) -> str:
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def format_days(days: Sequence[int]) -> str:
    return ", ".join(DAY_NAMES[d % 7] for d in days)


def today_weekday(tz_name: Optional[str] = None) -> int:
    """Current weekday with Sunday=0, in the configured timezone."""
    now = datetime.now(ZoneInfo(tz_name or get_settings().app_timezone))
    return (now.weekday() + 1) % 7


def circular_distance(a: int, b: int) -> int:
    diff = abs(a - b) % 7
    return min(diff, 7 - diff)


def choose_days_to_keep(
    items: Sequence[T],
    keep: int,
    today: int,
    day_of: Callable[[T], int] = lambda d: d,
) -> list[T]:
    """
    The `keep` items whose weekday is nearest to today. Ties keep input order
    (rows arrive sorted by weekday), so the choice is deterministic.
    """
    ranked = sorted(items, key=lambda item: circular_distance(day_of(item), today))
    return ranked[:max(keep, 0)]


def change_type_for(
    new_target: Optional[float],
    new_days: int,
    original_target: Optional[float],
    original_days: int,
) -> str:
    target_changed = new_target is not None and new_target != original_target
    days_changed = new_days != original_days
    if target_changed and not days_changed:
        return "reduce_target"
    if days_changed and not target_changed:
        return "reduce_days"
    return "both"


def derive_new_habit_name(
    habit_name: str,
    original_target: Optional[float],
    new_target: Optional[float],
) -> Optional[str]:
    """
    "Complete a 10-minute guided meditation" → "Complete a 5-minute guided meditation".
    Only a number directly followed by a space or hyphen is rewritten.
    """
    if original_target is None or new_target is None or original_target == new_target:
        return None

    pattern = re.compile(rf"\b{re.escape(format_number(original_target))}([-\s])", re.IGNORECASE)
    if not pattern.search(habit_name):
        return None
    new_str = format_number(new_target)
    return pattern.sub(lambda m: f"{new_str}{m.group(1)}", habit_name, count=1)


# ── Mutations ────────────────────────────────────────────────────────

async def apply_plan_changes(
    db: AsyncSession,
    user_id: str,
    habit_name: str,
    new_target: Optional[float],
    new_days: int,
    original_target: Optional[float],
    original_unit: Optional[str],
    original_days: int,
    reasoning: str,
    today: Optional[int] = None,
) -> PlanChangeResult:
    change_type = change_type_for(new_target, new_days, original_target, original_days)
    kept_days: Optional[list[int]] = None
    new_habit_name: Optional[str] = None
    step = "update target"

    try:
        # 1. Target
        if new_target is not None and new_target != original_target:
            await db.execute(
                update(HabitTrackingConfig)
                .where(
                    HabitTrackingConfig.user_id == user_id,
                    HabitTrackingConfig.habit_name == habit_name,
                )
                .values(metric_target=new_target)
                .execution_options(synchronize_session="fetch")
            )

        # 2. Days
        step = "update schedule"
        if new_days < original_days:
            rows = (
                await db.execute(
                    select(WeeklyHabit.id, WeeklyHabit.day_of_week)
                    .where(WeeklyHabit.user_id == user_id, WeeklyHabit.habit_name == habit_name)
                    .order_by(WeeklyHabit.day_of_week.asc())
                )
            ).all()
            if len(rows) > new_days:
                weekday = today_weekday() if today is None else today
                kept = choose_days_to_keep(rows, new_days, weekday, day_of=lambda r: r.day_of_week)
                kept_ids = {r.id for r in kept}
                remove_ids = [r.id for r in rows if r.id not in kept_ids]
                kept_days = sorted(r.day_of_week for r in kept)
                if remove_ids:
                    await db.execute(
                        delete(WeeklyHabit)
                        .where(WeeklyHabit.id.in_(remove_ids))
                        .execution_options(synchronize_session="fetch")
                    )
                logger.info(
                    "Pruned %s for user %s to %s (today=%s)",
                    habit_name, user_id, format_days(kept_days), DAY_NAMES[weekday],
                )

        # 3. Rename
        step = "rename habit"
        new_habit_name = derive_new_habit_name(habit_name, original_target, new_target)
        if new_habit_name:
            logger.info("Renaming habit: %r → %r", habit_name, new_habit_name)
            for model in (WeeklyHabit, HabitTrackingConfig, HabitTrackingEntry):
                await db.execute(
                    update(model)
                    .where(model.user_id == user_id, model.habit_name == habit_name)
                    .values(habit_name=new_habit_name)
                    .execution_options(synchronize_session="fetch")
                )

        # 4. Audit
        step = "write audit log"
        db.add(BackupPlanLog(
            user_id=user_id,
            habit_name=habit_name,
            change_type=change_type,
            original_value={"target": original_target, "unit": original_unit, "days": original_days},
            new_value={
                "target": new_target if new_target is not None else original_target,
                "unit": original_unit,
                "days": new_days,
                "habit_name": new_habit_name or habit_name,
            },
            ai_reasoning=reasoning,
        ))
        await db.flush()

    except SQLAlchemyError as e:
        logger.error("Error applying plan changes (%s) for user %s: %s", step, user_id, e)
        await db.rollback()
        return PlanChangeResult(success=False, error=f"Failed to {step}", change_type=change_type)

    return PlanChangeResult(
        success=True,
        change_type=change_type,
        kept_days=kept_days,
        new_habit_name=new_habit_name,
    )


async def remove_habit(
    db: AsyncSession,
    user_id: str,
    habit_name: str,
    original_target: Optional[float],
    original_unit: Optional[str],
    original_days: int,
    reasoning: str = "User chose to remove habit after nudge",
) -> PlanChangeResult:
    """Drop every schedule row, disable tracking, audit as 'remove'."""
    try:
        await db.execute(
            delete(WeeklyHabit)
            .where(WeeklyHabit.user_id == user_id, WeeklyHabit.habit_name == habit_name)
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(
            update(HabitTrackingConfig)
            .where(HabitTrackingConfig.user_id == user_id, HabitTrackingConfig.habit_name == habit_name)
            .values(tracking_enabled=False)
            .execution_options(synchronize_session="fetch")
        )
        db.add(BackupPlanLog(
            user_id=user_id,
            habit_name=habit_name,
            change_type="remove",
            original_value={"target": original_target, "unit": original_unit, "days": original_days},
            new_value={"target": 0, "unit": original_unit, "days": 0},
            ai_reasoning=reasoning,
        ))
        await db.flush()
    except SQLAlchemyError as e:
        logger.error("Error removing habit %r for user %s: %s", habit_name, user_id, e)
        await db.rollback()
        return PlanChangeResult(success=False, error="Failed to remove habit", change_type="remove")

    logger.info("Removed habit %r for user %s", habit_name, user_id)
    return PlanChangeResult(success=True, change_type="remove")
