"""
BaseAgent: every SMS conversation handler implements this interface.

No frameworks. Just a class with a handle() method that turns one inbound
text into (at most) one reply. Agents never send SMS themselves; the
orchestrator delivers AgentResponse.content through the delivery layer.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession


@dataclass
class InboundContext:
    """
    One inbound SMS plus the sender, resolved once per webhook call.

    Plain values only (no ORM instances) so handlers stay safe after a
    rollback expires whatever the session had loaded.
    """

    phone: str
    body: str
    message_sid: Optional[str] = None
    to_phone: Optional[str] = None
    user_id: Optional[str] = None
    first_name: Optional[str] = None
    user_name: Optional[str] = None
    params: dict[str, str] = field(default_factory=dict)  # raw form fields

    @property
    def keyword(self) -> str:
        """Upper-cased, trimmed body for keyword comparisons."""
        return self.body.strip().upper()

    @property
    def greeting_name(self) -> str:
        return self.first_name or "there"


@dataclass
class AgentResponse:
    """What an agent returns after handling a message."""

    content: str = ""                              # SMS reply; empty → nothing is sent
    step: Optional[str] = None                     # Conversation step after this turn (None → ended)
    is_complete: bool = False                      # Did this turn end the conversation?
    metadata: dict = field(default_factory=dict)   # Observability data


class BaseAgent:
    """
    Base class for SMS agents. Subclass and implement handle().

    Attributes:
        name:        Internal ID ("backup_plan")
        description: What it does (logged at routing time)
    """

    name: str = ""
    description: str = ""

    async def handle(self, ctx: InboundContext, db: AsyncSession) -> AgentResponse:
        """
        Handle one inbound message.

        Args:
            ctx: The message and the resolved sender
            db:  Database session for this webhook call

        Returns:
            AgentResponse with the reply text and the resulting step.
        """
        raise NotImplementedError(f"Agent '{self.name}' must implement handle()")
