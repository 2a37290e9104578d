"""
Read side of the habit tables, shaped for the SMS dialogue.

weekly_habits has one row per (habit, weekday); the dialogue wants one entry per
habit with its weekly day count and current target/unit from the tracking config.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.habit import HabitTrackingConfig, WeeklyHabit


@dataclass
class HabitSummary:
    habit_name: str
    days_count: int
    target: Optional[float] = None
    unit: Optional[str] = None


async def list_habit_summaries(db: AsyncSession, user_id: str) -> list[HabitSummary]:
    """Distinct habits in schedule order (first-created first)."""
    rows = (
        await db.execute(
            select(WeeklyHabit.habit_name, WeeklyHabit.day_of_week)
            .where(WeeklyHabit.user_id == user_id)
            .order_by(WeeklyHabit.created_at, WeeklyHabit.habit_name, WeeklyHabit.day_of_week)
        )
    ).all()
    if not rows:
        return []

    configs = (
        await db.execute(
            select(HabitTrackingConfig)
            .where(HabitTrackingConfig.user_id == user_id)
            .order_by(HabitTrackingConfig.created_at)
        )
    ).scalars().all()
    config_by_name: dict[str, HabitTrackingConfig] = {}
    for config in configs:
        config_by_name.setdefault(config.habit_name, config)

    summaries: dict[str, HabitSummary] = {}
    for habit_name, _day in rows:
        summary = summaries.get(habit_name)
        if summary is None:
            config = config_by_name.get(habit_name)
            summary = summaries[habit_name] = HabitSummary(
                habit_name=habit_name,
                days_count=0,
                target=config.metric_target if config else None,
                unit=config.metric_unit if config else None,
            )
        summary.days_count += 1
    return list(summaries.values())
