"""
Habit schedule, tracking config and tracking entries.

A single conceptual habit is identified by (user_id, habit_name) and has one
weekly_habits row per scheduled weekday. Renames must touch all three tables.
"""

from datetime import date

from sqlalchemy import String, Boolean, Integer, Float, Date
from sqlalchemy.orm import Mapped, mapped_column

from .base import TimestampedBase


class WeeklyHabit(TimestampedBase):
    __tablename__ = "weekly_habits"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    habit_name: Mapped[str] = mapped_column(String, nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0=Sunday … 6=Saturday


class HabitTrackingConfig(TimestampedBase):
    __tablename__ = "habit_tracking_config"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    habit_name: Mapped[str] = mapped_column(String, nullable=False)
    tracking_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    tracking_type: Mapped[str] = mapped_column(String, nullable=False, default="boolean")  # boolean, metric
    metric_unit: Mapped[str] = mapped_column(String, nullable=True)
    metric_target: Mapped[float] = mapped_column(Float, nullable=True)


class HabitTrackingEntry(TimestampedBase):
    __tablename__ = "habit_tracking_entries"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    habit_name: Mapped[str] = mapped_column(String, nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    metric_value: Mapped[float] = mapped_column(Float, nullable=True)
