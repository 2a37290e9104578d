"""Tests for the backup-plan dialogue, driven through the inbound orchestrator."""

import pytest
import pytest_asyncio
from sqlalchemy import func, select, text

from summit.agents.backup_plan import messages
from summit.agents.backup_plan.handler import BackupPlanAgent
from summit.agents.backup_plan.matchers import (
    Reply,
    classify_yes_no,
    find_switch_habit,
    is_trigger,
    select_habit,
    wants_to_skip,
)
from summit.agents.backup_plan.states import CorruptSessionError, PresentedHabit, load_state
from summit.core.config import get_settings
from summit.core.guardrails import CRISIS_RESPONSE
from summit.models import BackupPlanLog, BackupSession, HabitTrackingConfig, WeeklyHabit
from summit.orchestrator.base_agent import InboundContext
from summit.services import backup_sessions
from summit.services.suggestions import RuleBasedSuggestionEngine

HABITS_URL = "https://go.summithealth.app/habits"


@pytest_asyncio.fixture
async def user(make_profile):
    return await make_profile()


async def _session(session_factory, user_id):
    async with session_factory() as db:
        return await backup_sessions.get_live(db, user_id)


async def _session_count(session_factory, user_id):
    async with session_factory() as db:
        return (
            await db.execute(
                select(func.count()).select_from(BackupSession).where(BackupSession.user_id == user_id)
            )
        ).scalar_one()


async def _schedule(session_factory, user_id, habit_name):
    async with session_factory() as db:
        rows = await db.execute(
            select(WeeklyHabit.day_of_week)
            .where(WeeklyHabit.user_id == user_id, WeeklyHabit.habit_name == habit_name)
        )
        return sorted(rows.scalars())


async def _config(session_factory, user_id, habit_name):
    async with session_factory() as db:
        return (
            await db.execute(
                select(HabitTrackingConfig).where(
                    HabitTrackingConfig.user_id == user_id,
                    HabitTrackingConfig.habit_name == habit_name,
                )
            )
        ).scalar_one()


async def _audit(session_factory):
    async with session_factory() as db:
        return (await db.execute(select(BackupPlanLog))).scalars().all()


# ── Matchers ─────────────────────────────────────────────────────────

HABITS = [
    PresentedHabit(habit_name="Drink water", current_target=64, current_unit="oz", current_days_count=7),
    PresentedHabit(habit_name="Morning walk", current_target=30, current_unit="minutes", current_days_count=5),
]


@pytest.mark.parametrize("body,expected", [
    ("BACKUP", True),
    ("backup please", True),
    ("  Backup", True),
    ("I need a backup", False),
    ("BACKUPS", False),
])
def test_trigger_keyword(body, expected):
    assert is_trigger(body) is expected


@pytest.mark.parametrize("body,expected", [
    ("Y", Reply.YES), (" okay ", Reply.YES), ("👍", Reply.YES),
    ("nah", Reply.NO), ("N", Reply.NO), ("👎", Reply.NO),
    ("yess", Reply.OTHER), ("no thanks", Reply.OTHER), ("", Reply.OTHER),
])
def test_yes_no_vocabulary(body, expected):
    assert classify_yes_no(body) is expected


def test_select_by_number_and_name():
    assert select_habit("2", HABITS).habit_name == "Morning walk"
    assert select_habit("2.", HABITS).habit_name == "Morning walk"
    assert select_habit("drink water", HABITS).habit_name == "Drink water"
    assert select_habit("water", HABITS).habit_name == "Drink water"
    assert select_habit("the morning walk please", HABITS).habit_name == "Morning walk"
    assert select_habit("3", HABITS) is None
    assert select_habit("   ", HABITS) is None


def test_switch_detection_uses_long_words_only():
    assert find_switch_habit("let's do the walk instead", HABITS, "Drink water").habit_name == "Morning walk"
    assert find_switch_habit("the one in the morning", HABITS, "Drink water").habit_name == "Morning walk"
    # "Drink water" is the current habit, never a switch target
    assert find_switch_habit("drink water 3x", HABITS, "Drink water") is None
    assert find_switch_habit("15 oz, 3x/week", HABITS, "Drink water") is None


def test_skip_vocabulary():
    assert wants_to_skip("just remove it")
    assert wants_to_skip("I DONT WANT this anymore")
    assert not wants_to_skip("15 oz, 3x/week")


def test_load_state_rejects_unknown_step():
    with pytest.raises(CorruptSessionError):
        load_state("celebrate", {})


def test_load_state_rejects_missing_fields():
    with pytest.raises(CorruptSessionError):
        load_state("confirm", {"habits_presented": []})


# ── Dialogue ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_full_sequence_with_custom_plan(user, make_habit, text_in, carrier, completions, session_factory):
    await make_habit(user.id, "Drink water", [0, 1, 2, 3, 4, 5, 6], target=64, unit="oz")
    completions.reply(
        {
            "message": "Got it, Drink water at 64 oz 7x/wk is a lot. How about 32 oz, 4x this week? Sound good? (Y/N)",
            "suggested_target": 32,
            "suggested_days": 4,
            "reasoning": "halved",
        },
        {"valid": True, "target": 15, "days": 3, "message": "Got it!"},
    )

    await text_in("BACKUP")
    assert carrier.bodies[-1].startswith("Hey Sam")
    assert "1. Drink water (64 oz, 7x/wk)" in carrier.bodies[-1]
    assert carrier.bodies[-1].endswith("Reply the number or name.")

    await text_in("1")
    assert carrier.bodies[-1].endswith("Sound good? (Y/N)")
    assert (await _session(session_factory, user.id)).step == "confirm"

    await text_in("N")
    assert carrier.bodies[-1] == messages.custom_prompt("oz")
    assert (await _session(session_factory, user.id)).step == "custom"

    await text_in("15 oz, 3x/week")
    reply = carrier.bodies[-1]
    assert reply.startswith("Done! Updated → Drink water: 15 oz, 3x/wk on ")
    assert reply.endswith(f"update your habits here: {HABITS_URL}")

    assert (await _config(session_factory, user.id, "Drink water")).metric_target == 15
    assert len(await _schedule(session_factory, user.id, "Drink water")) == 3
    audit = await _audit(session_factory)
    assert len(audit) == 1
    assert audit[0].change_type == "both"
    assert audit[0].ai_reasoning == "User custom adjustment: 15 oz, 3x/week"
    assert await _session_count(session_factory, user.id) == 0


@pytest.mark.asyncio
async def test_accepting_rule_based_suggestion(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "Run", [0, 1, 2, 3, 4, 5], target=9, unit="miles")

    await text_in("BACKUP")
    await text_in("1")
    assert "3 miles, 3x this week" in carrier.bodies[-1]

    await text_in("yes")

    assert carrier.bodies[-1].startswith("Done! Updated → Run: 3 miles, 3x/wk on ")
    assert messages.COACH_ACCEPTED in carrier.bodies[-1]
    assert (await _config(session_factory, user.id, "Run")).metric_target == 3
    assert len(await _schedule(session_factory, user.id, "Run")) == 3
    assert [a.change_type for a in await _audit(session_factory)] == ["both"]
    assert await _session(session_factory, user.id) is None


@pytest.mark.asyncio
async def test_rename_is_reported_in_confirmation(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "10-minute meditation", [1, 3, 5], target=10, unit="minutes")

    await text_in("BACKUP")
    await text_in("meditation")
    await text_in("Y")

    assert carrier.bodies[-1].startswith("Done! Updated → 3-minute meditation: 3 minutes, 2x/wk on ")
    assert await _schedule(session_factory, user.id, "10-minute meditation") == []
    assert len(await _schedule(session_factory, user.id, "3-minute meditation")) == 2


@pytest.mark.asyncio
async def test_unrecognized_selection_reprompts(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "Drink water", [1, 2], target=64, unit="oz")
    await make_habit(user.id, "Run", [3, 5], target=3, unit="miles")

    await text_in("BACKUP")
    await text_in("7")

    assert carrier.bodies[-1] == "Didn't catch that. Reply the number:\n1. Drink water\n2. Run"
    assert (await _session(session_factory, user.id)).step == "select_habit"


@pytest.mark.asyncio
async def test_confirm_reprompt_keeps_session(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "Run", [1, 3, 5], target=3, unit="miles")

    await text_in("BACKUP")
    await text_in("1")
    before = await _session(session_factory, user.id)
    await text_in("maybe?")

    assert carrier.bodies[-1] == messages.CONFIRM_REPROMPT
    after = await _session(session_factory, user.id)
    assert after.id == before.id
    assert after.step == "confirm"
    assert after.context == before.context


@pytest.mark.asyncio
async def test_custom_step_can_switch_habit(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "Drink water", [0, 1, 2, 3, 4, 5, 6], target=64, unit="oz")
    await make_habit(user.id, "Morning walk", [1, 2, 3, 4, 5], target=30, unit="minutes")

    await text_in("BACKUP")
    await text_in("1")
    await text_in("no")
    await text_in("actually the walk is the problem")

    assert "Morning walk" in carrier.bodies[-1]
    assert carrier.bodies[-1].endswith("(Y/N)")
    session = await _session(session_factory, user.id)
    assert session.step == "confirm"
    assert session.context["selected_habit"] == "Morning walk"
    assert session.context["original_days"] == 5


@pytest.mark.asyncio
async def test_custom_unparseable_reprompts(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "Run", [1, 3, 5], target=3, unit="miles")

    await text_in("BACKUP")
    await text_in("1")
    await text_in("n")
    await text_in("less please")

    assert carrier.bodies[-1] == 'What would work better? e.g. "15 miles, 3x/week"'
    assert (await _session(session_factory, user.id)).step == "custom"
    assert await _audit(session_factory) == []


@pytest.mark.asyncio
async def test_custom_partial_answer_keeps_original_target(
    user, make_habit, text_in, carrier, completions, session_factory,
):
    await make_habit(user.id, "Stretch", [0, 2, 4, 6], target=20, unit="minutes")
    completions.reply(
        {"message": "How about 7 minutes, 2x? Sound good? (Y/N)", "suggested_target": 7,
         "suggested_days": 2, "reasoning": "r"},
        {"valid": True, "target": None, "days": 2, "message": "ok"},
    )

    await text_in("BACKUP")
    await text_in("1")
    await text_in("N")
    await text_in("just twice a week")

    assert carrier.bodies[-1].startswith("Done! Updated → Stretch: 20 minutes, 2x/wk")
    assert (await _config(session_factory, user.id, "Stretch")).metric_target == 20
    assert [a.change_type for a in await _audit(session_factory)] == ["reduce_days"]


@pytest.mark.asyncio
async def test_custom_zero_days_is_rejected(user, make_habit, text_in, carrier, completions, session_factory):
    await make_habit(user.id, "Stretch", [0, 2, 4, 6], target=20, unit="minutes")
    completions.reply(
        {"message": "How about 7 minutes, 2x? Sound good? (Y/N)", "suggested_target": 7,
         "suggested_days": 2, "reasoning": "r"},
        {"valid": True, "target": 5, "days": 0, "message": "How many days a week?"},
    )

    await text_in("BACKUP")
    await text_in("1")
    await text_in("N")
    await text_in("5 minutes, zero days")

    assert carrier.bodies[-1] == "How many days a week?"
    assert (await _session(session_factory, user.id)).step == "custom"


@pytest.mark.asyncio
async def test_skip_then_minimal_version(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "Run", [0, 1, 2, 3, 4, 5], target=9, unit="miles")

    await text_in("BACKUP")
    await text_in("1")
    await text_in("N")
    await text_in("skip it")
    assert carrier.bodies[-1] == messages.nudge("miles")
    assert (await _session(session_factory, user.id)).step == "nudge_skip"

    await text_in("sure")

    # 9 / 5 = 1.8 → 2
    assert carrier.bodies[-1].startswith("Done! Updated → Run: 2 miles, 1x/wk on ")
    assert messages.COACH_MINIMAL in carrier.bodies[-1]
    assert len(await _schedule(session_factory, user.id, "Run")) == 1
    assert await _session(session_factory, user.id) is None


@pytest.mark.asyncio
async def test_skip_then_remove(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "Journal", [1, 4])

    await text_in("BACKUP")
    await text_in("journal")
    await text_in("N")
    await text_in("take it off my plan")
    assert carrier.bodies[-1] == messages.nudge(None)

    await text_in("nope")

    assert carrier.bodies[-1] == messages.removed("Journal")
    assert HABITS_URL in carrier.bodies[-1]
    assert await _schedule(session_factory, user.id, "Journal") == []
    assert (await _config(session_factory, user.id, "Journal")).tracking_enabled is False
    assert [a.change_type for a in await _audit(session_factory)] == ["remove"]
    assert await _session(session_factory, user.id) is None


@pytest.mark.asyncio
async def test_nudge_reprompt(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "Journal", [1, 4])

    await text_in("BACKUP")
    await text_in("1")
    await text_in("N")
    await text_in("cancel")
    await text_in("hmm")

    assert carrier.bodies[-1] == messages.NUDGE_REPROMPT
    assert (await _session(session_factory, user.id)).step == "nudge_skip"


@pytest.mark.asyncio
async def test_backup_without_habits(user, text_in, carrier, session_factory):
    await text_in("BACKUP")

    assert "you don't have any habits set up yet" in carrier.bodies[-1]
    assert await _session_count(session_factory, user.id) == 0


@pytest.mark.asyncio
async def test_backup_restarts_mid_conversation(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "Run", [1, 3, 5], target=3, unit="miles")

    await text_in("BACKUP")
    await text_in("1")
    await text_in("backup")

    assert carrier.bodies[-1].startswith("Hey Sam")
    assert (await _session(session_factory, user.id)).step == "select_habit"
    assert await _session_count(session_factory, user.id) == 1


@pytest.mark.asyncio
async def test_yes_without_session_starts_over(user, make_habit, db, carrier):
    await make_habit(user.id, "Run", [1, 3, 5], target=3, unit="miles")
    agent = BackupPlanAgent(engine=RuleBasedSuggestionEngine())
    ctx = InboundContext(phone=user.phone, body="Y", user_id=user.id, first_name="Sam")

    response = await agent.handle(ctx, db)
    await db.commit()

    assert response.step == "select_habit"
    assert response.content.startswith("Hey Sam")
    assert await _audit_count(db) == 0


async def _audit_count(db):
    return (await db.execute(select(func.count()).select_from(BackupPlanLog))).scalar_one()


@pytest.mark.asyncio
async def test_repeated_yes_after_commit_is_not_replayed(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "Run", [0, 1, 2, 3, 4, 5], target=9, unit="miles")

    await text_in("BACKUP")
    await text_in("1")
    await text_in("Y")
    sent = len(carrier.bodies)
    await text_in("Y")

    # No live session: "Y" goes to the habit responder, the plan is not touched again
    assert len(carrier.bodies) == sent
    assert len(await _audit(session_factory)) == 1
    assert (await _config(session_factory, user.id, "Run")).metric_target == 3


@pytest.mark.parametrize("step,context", [
    ("celebrate", {}),
    ("confirm", {"selected_habit": "Run"}),
    ("select_habit", {"habits_presented": "not a list"}),
])
@pytest.mark.asyncio
async def test_corrupt_session_is_ended(user, db, text_in, carrier, session_factory, step, context):
    await backup_sessions.start_new(db, user.id, step, context)
    await db.commit()

    await text_in("1")

    assert carrier.bodies[-1] == messages.RESTART
    assert await _session_count(session_factory, user.id) == 0


@pytest.mark.asyncio
async def test_crisis_leaves_session_untouched(user, make_habit, text_in, carrier, session_factory):
    await make_habit(user.id, "Run", [1, 3, 5], target=3, unit="miles")

    await text_in("BACKUP")
    await text_in("1")
    before = await _session(session_factory, user.id)

    await text_in("honestly I want to die")

    assert carrier.bodies[-1] == CRISIS_RESPONSE
    after = await _session(session_factory, user.id)
    assert after.id == before.id
    assert after.step == "confirm"
    assert after.context == before.context
    assert await _audit(session_factory) == []


@pytest.mark.asyncio
async def test_failed_commit_tells_user_and_ends_session(
    user, make_habit, db, text_in, carrier, session_factory,
):
    await make_habit(user.id, "Run", [0, 1, 2, 3, 4, 5], target=9, unit="miles")
    await db.execute(text(
        "CREATE TRIGGER block_audit BEFORE INSERT ON backup_plan_log "
        "BEGIN SELECT RAISE(ABORT, 'audit unavailable'); END"
    ))
    await db.commit()

    await text_in("BACKUP")
    await text_in("1")
    await text_in("Y")

    assert carrier.bodies[-1] == messages.UPDATE_FAILED
    assert await _session_count(session_factory, user.id) == 0
    # Rolled back as a unit
    assert (await _config(session_factory, user.id, "Run")).metric_target == 9
    assert len(await _schedule(session_factory, user.id, "Run")) == 6


@pytest.mark.asyncio
async def test_confirmation_uses_configured_habits_url(user, make_habit, text_in, carrier, monkeypatch):
    monkeypatch.setenv("HABITS_URL", "https://example.test/habits")
    get_settings.cache_clear()
    await make_habit(user.id, "Run", [1, 3, 5], target=3, unit="miles")

    await text_in("BACKUP")
    await text_in("1")
    await text_in("Y")

    assert carrier.bodies[-1].endswith("https://example.test/habits")


@pytest.mark.asyncio
async def test_custom_more_than_seven_days_is_rejected(
    user, make_habit, text_in, carrier, completions, session_factory,
):
    await make_habit(user.id, "Stretch", [0, 2, 4, 6], target=20, unit="minutes")
    completions.reply(
        {"message": "How about 7 minutes, 2x? Sound good? (Y/N)", "suggested_target": 7,
         "suggested_days": 2, "reasoning": "r"},
        {"valid": True, "target": 5, "days": 10, "message": "How many days a week (1-7)?"},
    )

    await text_in("BACKUP")
    await text_in("1")
    await text_in("N")
    await text_in("5 minutes, 10 times a week")

    assert carrier.bodies[-1] == "How many days a week (1-7)?"
    assert (await _session(session_factory, user.id)).step == "custom"
    assert await _audit(session_factory) == []


@pytest.mark.asyncio
async def test_database_error_mid_turn_asks_user_to_restart(
    user, make_habit, db, text_in, carrier, session_factory,
):
    await make_habit(user.id, "Run", [0, 1, 2, 3, 4, 5], target=9, unit="miles")
    await text_in("BACKUP")
    await db.execute(text(
        "CREATE TRIGGER block_session_update BEFORE UPDATE ON sms_backup_sessions "
        "BEGIN SELECT RAISE(ABORT, 'db down'); END"
    ))
    await db.commit()

    response = await text_in("1")

    assert response.content == messages.RESTART
    assert carrier.bodies[-1] == messages.RESTART
    assert len(carrier.requests) == 2
    assert await _session_count(session_factory, user.id) == 0
