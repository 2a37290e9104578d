"""
Guardrails: checks that run on every inbound SMS before anything else.

Layers:
  1. Input validation (empty / oversized bodies)
  2. Crisis detection (self-harm / suicide phrasing), absolute precedence
     over keywords and conversation state

The crisis patterns are a fixed list. A match never touches session state;
it only sends the fixed safety message.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# ── Configuration ─────────────────────────────────────────────────────

MAX_MESSAGE_LENGTH = 1600        # Twilio's concatenated SMS ceiling


@dataclass
class GuardrailResult:
    """Result of a guardrail check."""
    allowed: bool
    reason: Optional[str] = None
    modified_input: Optional[str] = None


# ── Input Guardrails ──────────────────────────────────────────────────

def check_input(message: str, phone: str = "") -> GuardrailResult:
    """
    Validate an inbound body before routing.
    Oversized bodies are truncated rather than dropped.
    """
    if not message or not message.strip():
        return GuardrailResult(allowed=False, reason="Message is empty.")

    if len(message) > MAX_MESSAGE_LENGTH:
        logger.warning("Oversized SMS from %s (%d chars), truncating", phone, len(message))
        return GuardrailResult(allowed=True, modified_input=message[:MAX_MESSAGE_LENGTH])

    return GuardrailResult(allowed=True)


# ── Crisis detection ──────────────────────────────────────────────────

CRISIS_PATTERNS = [
    re.compile(r"\b(kill\s*(my\s*)?self|suicide|suicidal)\b", re.IGNORECASE),
    re.compile(r"\b(want\s+to\s+die|wanna\s+die|ready\s+to\s+die)\b", re.IGNORECASE),
    re.compile(r"\b(end\s+(my\s+)?life|end\s+it\s+all)\b", re.IGNORECASE),
    re.compile(r"\b(self[\s-]?harm|hurt\s*(my\s*)?self|cutting\s*(my\s*)?self)\b", re.IGNORECASE),
    re.compile(r"\b(no\s+reason\s+to\s+live|better\s+off\s+dead)\b", re.IGNORECASE),
    re.compile(r"\b(overdose|od'?ing)\b", re.IGNORECASE),
]

CRISIS_RESPONSE = (
    "If you or someone you know is in crisis, please reach out:\n\n"
    "988 Suicide & Crisis Lifeline: Call or text 988\n"
    "Crisis Text Line: Text HOME to 741741\n"
    "Emergency: Call 911\n\n"
    "You are not alone. These services are free, confidential, and available 24/7."
)


def is_crisis(text: str) -> bool:
    """True if any crisis pattern matches the message."""
    return any(pattern.search(text or "") for pattern in CRISIS_PATTERNS)


async def respond_to_crisis(
    phone: str,
    db: Optional[AsyncSession] = None,
    user_id: Optional[str] = None,
    user_name: Optional[str] = None,
) -> None:
    """
    Send the fixed crisis resources. Works without a known user or a
    database session; delivery problems are logged, never raised.
    """
    from ..services.sms import SmsLogOptions, send_sms

    logger.warning("CRISIS message detected from %s, sending resources", phone)
    log = SmsLogOptions(db=db, user_id=user_id, user_name=user_name) if db is not None else None
    result = await send_sms(phone, CRISIS_RESPONSE, log=log)
    if not result.success:
        logger.error("Error sending crisis response SMS to %s: %s", phone, result.error)
