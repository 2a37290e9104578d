"""Shared fixtures for summit tests."""

import json
from datetime import date
from typing import Optional
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from summit.core import redis as redis_lock
from summit.core.config import get_settings
from summit.core.database import Base
from summit.core.flags import get_flags
from summit.models import HabitTrackingConfig, HabitTrackingEntry, Profile, WeeklyHabit
from summit.services import habit_responder, llm, sms

TWILIO_AUTH_TOKEN = "test_auth_token"
SENDER = "+15551234567"


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch, tmp_path):
    """Prevent tests from reading real .env values or reaching real services."""
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setenv("TWILIO_ACCOUNT_SID", "ACtest")
    monkeypatch.setenv("TWILIO_AUTH_TOKEN", TWILIO_AUTH_TOKEN)
    monkeypatch.setenv("TWILIO_PHONE_NUMBER", "+15550000000")
    monkeypatch.setenv("TWILIO_API_BASE", "https://twilio.test/2010-04-01")
    monkeypatch.setenv("TWILIO_WEBHOOK_URL", "https://summit.test/webhooks/twilio")
    monkeypatch.setenv("SMS_MAX_RETRIES", "3")
    monkeypatch.setenv("SMS_RETRY_BASE_DELAY", "1.0")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://llm.test/v1")
    monkeypatch.setenv("HABIT_RESPONSE_URL", "")
    monkeypatch.setenv("HABITS_URL", "https://go.summithealth.app/habits")
    monkeypatch.setenv("APP_TIMEZONE", "UTC")
    monkeypatch.setenv("REDIS_URL", "")
    monkeypatch.setenv("FF_USE_LLM", "true")
    monkeypatch.setenv("FF_USE_REDIS", "false")
    monkeypatch.setenv("FF_ENFORCE_TWILIO_SIGNATURE", "false")
    monkeypatch.setenv("FF_LOG_SMS", "true")
    get_settings.cache_clear()
    get_flags.cache_clear()
    redis_lock._local_locks.clear()
    redis_lock._local_holders.clear()
    yield
    get_settings.cache_clear()
    get_flags.cache_clear()
    redis_lock._local_locks.clear()
    redis_lock._local_holders.clear()


# ── Outbound HTTP fakes ──────────────────────────────────────────────

class CarrierRecorder:
    """httpx.MockTransport handler standing in for the Twilio Messages API."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.queued: list = []

    def queue(self, *responses):
        """Responses (or exceptions) returned before the default 201."""
        self.queued.extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.queued:
            item = self.queued.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return httpx.Response(201, json={"sid": f"SM{len(self.requests):04d}", "status": "queued"})

    def forms(self) -> list[dict[str, str]]:
        return [
            {k: v[0] for k, v in parse_qs(r.content.decode()).items()}
            for r in self.requests
        ]

    @property
    def bodies(self) -> list[str]:
        return [form["Body"] for form in self.forms()]


@pytest.fixture(autouse=True)
def carrier(monkeypatch) -> CarrierRecorder:
    recorder = CarrierRecorder()
    monkeypatch.setattr(sms, "_client", httpx.AsyncClient(transport=httpx.MockTransport(recorder)))
    return recorder


class FakeCompletions:
    """httpx.MockTransport handler for the chat completion API."""

    def __init__(self):
        self.requests: list[dict] = []
        self.replies: list = []

    def reply(self, *contents):
        """Queue completion contents (str or dict → JSON) or httpx.Response objects."""
        self.replies.extend(contents)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if not self.replies:
            return httpx.Response(500, json={"error": {"message": "no reply queued"}})
        item = self.replies.pop(0)
        if isinstance(item, httpx.Response):
            return item
        content = item if isinstance(item, str) else json.dumps(item)
        return httpx.Response(200, json={
            "choices": [{"message": {"role": "assistant", "content": content}}],
            "usage": {"prompt_tokens": 10, "completion_tokens": 20},
        })


@pytest.fixture
def completions(monkeypatch) -> FakeCompletions:
    """Turns the LLM engine on with a fake backend."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    get_settings.cache_clear()
    fake = FakeCompletions()
    monkeypatch.setattr(llm, "_client", httpx.AsyncClient(transport=httpx.MockTransport(fake)))
    return fake


@pytest.fixture
def no_sleep(monkeypatch) -> list[float]:
    """Record retry delays instead of sleeping."""
    delays: list[float] = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(sms.asyncio, "sleep", fake_sleep)
    return delays


@pytest.fixture
def responder(monkeypatch) -> list[httpx.Request]:
    """Configure and capture the habit-confirmation responder."""
    monkeypatch.setenv("HABIT_RESPONSE_URL", "https://responder.test/habit-sms-response")
    monkeypatch.setenv("SERVICE_ROLE_KEY", "service-key")
    get_settings.cache_clear()
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="ok")

    monkeypatch.setattr(habit_responder, "_client", httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    return seen


# ── Database ─────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def create_profile(
    db: AsyncSession,
    phone: str = SENDER,
    first_name: str = "Sam",
    last_name: str = "Rivera",
) -> Profile:
    profile = Profile(phone=phone, first_name=first_name, last_name=last_name, sms_opt_in=True)
    db.add(profile)
    await db.commit()
    return profile


async def create_habit(
    db: AsyncSession,
    user_id: str,
    habit_name: str,
    days: list[int],
    target: Optional[float] = None,
    unit: Optional[str] = None,
    entries: int = 0,
) -> None:
    """One weekly_habits row per weekday plus a tracking config (and entries)."""
    for day in days:
        db.add(WeeklyHabit(user_id=user_id, habit_name=habit_name, day_of_week=day))
    db.add(HabitTrackingConfig(
        user_id=user_id,
        habit_name=habit_name,
        tracking_enabled=True,
        tracking_type="metric" if target is not None else "boolean",
        metric_unit=unit,
        metric_target=target,
    ))
    for i in range(entries):
        db.add(HabitTrackingEntry(
            user_id=user_id,
            habit_name=habit_name,
            entry_date=date(2026, 10, 1 + i),
            completed=True,
        ))
    await db.commit()


@pytest.fixture
def make_profile(db):
    async def _make(**kwargs) -> Profile:
        return await create_profile(db, **kwargs)
    return _make


@pytest.fixture
def make_habit(db):
    async def _make(user_id: str, habit_name: str, days: list[int], **kwargs) -> None:
        await create_habit(db, user_id, habit_name, days, **kwargs)
    return _make


@pytest.fixture
def text_in(session_factory):
    """Deliver one inbound SMS through the orchestrator, one session per message."""
    from summit.core.database import session_scope
    from summit.orchestrator.orchestrator import handle_inbound

    counter = {"n": 0}

    async def _send(body: str, phone: str = SENDER):
        counter["n"] += 1
        params = {"From": phone, "To": "+15550000000", "Body": body, "MessageSid": f"SMin{counter['n']:04d}"}
        async with session_scope(session_factory) as session:
            return await handle_inbound(params, session)
    return _send
