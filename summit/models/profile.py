"""
User profiles. Owned by the web app; the SMS service only reads them
(and flips sms_opt_in on STOP).
"""

from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from .base import TimestampedBase


class Profile(TimestampedBase):
    __tablename__ = "profiles"

    phone: Mapped[str] = mapped_column(String, nullable=True, index=True)  # E.164
    first_name: Mapped[str] = mapped_column(String, nullable=True)
    last_name: Mapped[str] = mapped_column(String, nullable=True)
    email: Mapped[str] = mapped_column(String, nullable=True)
    sms_opt_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @property
    def display_name(self) -> str | None:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or None
