"""
FastAPI dependencies. Injected into route handlers.
"""

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import get_settings
from .database import get_session_factory
from .security import verify_twilio_signature


def get_db_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session factory for work that outlives the request (background tasks
    open their own session after the response is sent).
    """
    return get_session_factory()


def webhook_url(request: Request) -> str:
    """URL Twilio signed: the configured public URL, else what we received."""
    return get_settings().twilio_webhook_url or str(request.url)


async def twilio_form(
    request: Request,
    x_twilio_signature: str = Header(default=""),
) -> dict[str, str]:
    """
    Parse the form body and verify the Twilio signature over it.
    Raises 403 when the signature does not validate.
    """
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}

    if not verify_twilio_signature(webhook_url(request), params, x_twilio_signature):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid signature",
        )
    return params
