"""
SMS backup-plan sessions.

One live row per user at most. The step column names the state; context holds
the step-specific payload (validated on every read, see agents/backup_plan/states.py).
"""

from datetime import datetime

from sqlalchemy import String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import TimestampedBase


class BackupSession(TimestampedBase):
    __tablename__ = "sms_backup_sessions"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    step: Mapped[str] = mapped_column(String, nullable=False)
    context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
