"""
Inbound and outbound SMS log. One row per message, never updated.
"""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import TimestampedBase


class SmsMessage(TimestampedBase):
    __tablename__ = "sms_messages"

    direction: Mapped[str] = mapped_column(String, nullable=False)  # inbound, outbound
    phone: Mapped[str] = mapped_column(String, nullable=False, index=True)
    body: Mapped[str] = mapped_column(Text, nullable=True)
    user_id: Mapped[str] = mapped_column(String, nullable=True, index=True)
    user_name: Mapped[str] = mapped_column(String, nullable=True)
    sent_by_type: Mapped[str] = mapped_column(String, nullable=True)  # system, admin
    twilio_sid: Mapped[str] = mapped_column(String, nullable=True)
    twilio_status: Mapped[str] = mapped_column(String, nullable=True)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
