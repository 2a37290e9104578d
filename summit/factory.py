"""
FastAPI application factory.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.database import init_db, close_db
from .core.redis import close_redis
from .api.router import router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Summit SMS",
        description="SMS backup-plan agent for Summit Health habits",
        version="1.0.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url=None,
    )

    # ── CORS ─────────────────────────────────────────────────────
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # ── Startup ──────────────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup():
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        logger.info("Starting Summit SMS (env=%s)", settings.env)

        await init_db()

        from .core.flags import get_flags
        from .services.llm import is_configured
        flags = get_flags()
        logger.info(
            "Flags: llm=%s (configured=%s) redis=%s enforce_signature=%s log_sms=%s",
            flags.use_llm, is_configured(), flags.use_redis,
            flags.enforce_twilio_signature, flags.log_sms,
        )
        if not settings.twilio_auth_token:
            logger.warning("TWILIO_AUTH_TOKEN not set: webhook signatures are not verified")

        logger.info("Summit SMS is ready")

    # ── Shutdown ─────────────────────────────────────────────────
    @app.on_event("shutdown")
    async def on_shutdown():
        from .services import habit_responder, llm, sms
        await sms.close_client()
        await llm.close_client()
        await habit_responder.close_client()
        await close_db()
        await close_redis()
        logger.info("Summit SMS shut down")

    # ── Routes ───────────────────────────────────────────────────
    app.include_router(router)

    return app
