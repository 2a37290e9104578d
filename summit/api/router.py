"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter

from .twilio_webhook import twilio_router

router = APIRouter()


# ── Health (no auth) ─────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "service": "summit-sms"}


# ── Webhooks (signature-checked per request) ────────────────────────

router.include_router(twilio_router)
