"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import TimestampedBase
from .profile import Profile
from .habit import WeeklyHabit, HabitTrackingConfig, HabitTrackingEntry
from .backup_session import BackupSession
from .backup_plan_log import BackupPlanLog
from .sms_message import SmsMessage

__all__ = [
    "TimestampedBase",
    "Profile",
    "WeeklyHabit", "HabitTrackingConfig", "HabitTrackingEntry",
    "BackupSession",
    "BackupPlanLog",
    "SmsMessage",
]
