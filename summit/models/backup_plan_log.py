"""
Audit trail of plan changes made over SMS. Insert-only.
"""

from sqlalchemy import String, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import TimestampedBase


class BackupPlanLog(TimestampedBase):
    __tablename__ = "backup_plan_log"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    habit_name: Mapped[str] = mapped_column(String, nullable=False)
    change_type: Mapped[str] = mapped_column(String, nullable=False)  # reduce_target, reduce_days, both, remove
    # {"target": 10, "unit": "minutes", "days": 5}; new_value also carries habit_name
    original_value: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    new_value: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    ai_reasoning: Mapped[str] = mapped_column(Text, nullable=True)
