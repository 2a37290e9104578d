"""
Outbound SMS via the Twilio REST API.

  - Exponential backoff on 429 and network errors (1s, 2s, 4s by default)
  - Any other non-2xx response fails immediately
  - Optional logging to sms_messages; a logging failure never fails the send
  - Never raises: every outcome is an SmsResult
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.flags import get_flags
from ..models.sms_message import SmsMessage

logger = logging.getLogger(__name__)


@dataclass
class SmsResult:
    success: bool
    sid: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0


@dataclass
class SmsLogOptions:
    """Where (and with which extra columns) to record the outbound message."""
    db: AsyncSession
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


# ── Reusable client ──────────────────────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(timeout=httpx.Timeout(connect=5, read=15, write=10, pool=5))
    return _client


async def close_client():
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


# ── Send ─────────────────────────────────────────────────────────────

async def send_sms(
    to: str,
    body: str,
    log: Optional[SmsLogOptions] = None,
    max_retries: Optional[int] = None,
) -> SmsResult:
    """Send one SMS. At most max_retries + 1 carrier calls."""
    settings = get_settings()
    retries = settings.sms_max_retries if max_retries is None else max_retries

    if not (settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_phone_number):
        result = SmsResult(success=False, error="Twilio credentials not configured")
        logger.error("Cannot send SMS to %s: %s", to, result.error)
        await _log_outbound(log, to, body, result)
        return result

    url = f"{settings.twilio_api_base.rstrip('/')}/Accounts/{settings.twilio_account_sid}/Messages.json"
    auth = (settings.twilio_account_sid, settings.twilio_auth_token)
    form = {"To": to, "From": settings.twilio_phone_number, "Body": body}
    client = _get_client()

    result = SmsResult(success=False, error="Max retries exceeded")
    for attempt in range(retries + 1):
        result.attempts = attempt + 1
        delay = settings.sms_retry_base_delay * (2 ** attempt)
        try:
            resp = await client.post(url, data=form, auth=auth)
        except httpx.TransportError as e:
            if attempt < retries:
                logger.warning(
                    "SMS request failed (%s), retrying in %.1fs (attempt %d/%d)",
                    e, delay, attempt + 1, retries,
                )
                await asyncio.sleep(delay)
                continue
            result.error = str(e) or e.__class__.__name__
            break

        data = _json_or_empty(resp)

        if resp.is_success:
            result.success = True
            result.sid = data.get("sid")
            result.error = None
            await _log_outbound(log, to, body, result, status=data.get("status") or "sent")
            logger.info("SMS sent to %s (sid=%s)", to, result.sid)
            return result

        if resp.status_code == 429:
            if attempt < retries:
                logger.warning(
                    "SMS rate limited, retrying in %.1fs (attempt %d/%d)",
                    delay, attempt + 1, retries,
                )
                await asyncio.sleep(delay)
                continue
            result.error = "Rate limit exceeded after retries"
            break

        # Non-retryable API error
        result.error = data.get("message") or f"Twilio API error: {resp.status_code}"
        break

    logger.error("SMS to %s failed after %d attempt(s): %s", to, result.attempts, result.error)
    await _log_outbound(log, to, body, result)
    return result


def _json_or_empty(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


# ── Log ──────────────────────────────────────────────────────────────

async def _log_outbound(
    log: Optional[SmsLogOptions],
    phone: str,
    body: str,
    result: SmsResult,
    status: Optional[str] = None,
) -> None:
    if log is None or not get_flags().log_sms:
        return
    try:
        row = SmsMessage(
            direction="outbound",
            phone=phone,
            body=body,
            user_id=log.user_id,
            user_name=log.user_name,
            sent_by_type="system",
            twilio_sid=result.sid,
            twilio_status=status or ("sent" if result.success else "failed"),
            error_message=None if result.success else result.error,
            **log.extra,
        )
        # Savepoint: a failed insert must leave the caller's transaction usable
        async with log.db.begin_nested():
            log.db.add(row)
    except (SQLAlchemyError, TypeError) as e:
        logger.error("Error logging outbound SMS to %s: %s", phone, e)


async def log_inbound(
    db: AsyncSession,
    phone: str,
    body: str,
    message_sid: Optional[str],
    user_id: Optional[str] = None,
    user_name: Optional[str] = None,
) -> SmsMessage:
    """Record an inbound message. Raises SQLAlchemyError; the router decides."""
    row = SmsMessage(
        direction="inbound",
        phone=phone,
        body=body,
        user_id=user_id,
        user_name=user_name,
        twilio_sid=message_sid,
        twilio_status="received",
    )
    db.add(row)
    await db.flush()
    return row
