"""
Backup-plan agent: lets a user scale back one habit over SMS.

Pipeline: start → select_habit → confirm → (custom ↔ nudge_skip) → commit

  start        BACKUP (or any text with no live session) lists the user's habits
  select_habit user picks one by number or name; a reduced plan is suggested
  confirm      Y applies the suggestion, N asks for the user's own numbers
  custom       free-text plan, a switch to another habit, or a skip request
  nudge_skip   Y applies a minimal version, N removes the habit

Every turn loads the session from the database and writes it back before
replying; nothing is kept in memory between messages.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...orchestrator.base_agent import AgentResponse, BaseAgent, InboundContext
from ...services import backup_sessions, plan_mutation
from ...services.habits import list_habit_summaries
from ...services.suggestions import SuggestionEngine, get_suggestion_engine
from . import messages
from .matchers import Reply, classify_yes_no, find_switch_habit, is_trigger, select_habit, wants_to_skip
from .states import (
    ConfirmState,
    CorruptSessionError,
    CustomState,
    NudgeSkipState,
    PresentedHabit,
    SelectHabitState,
    Step,
    dump_context,
    load_state,
    presented_from_summaries,
)

logger = logging.getLogger(__name__)


class BackupPlanAgent(BaseAgent):
    name = "backup_plan"
    description = "Scales back one habit when the user texts BACKUP"

    def __init__(self, engine: Optional[SuggestionEngine] = None):
        self._engine = engine

    @property
    def engine(self) -> SuggestionEngine:
        # Resolved per turn so flag / key changes apply without a restart
        return self._engine or get_suggestion_engine()

    async def handle(self, ctx: InboundContext, db: AsyncSession) -> AgentResponse:
        if not ctx.user_id:
            raise ValueError("BackupPlanAgent needs a known user")

        try:
            return await self._dispatch(ctx, db)
        except SQLAlchemyError as e:
            logger.error("Backup plan: database error for user %s: %s", ctx.user_id, e)
            await db.rollback()
            await self._abandon(ctx.user_id, db)
            return AgentResponse(content=messages.RESTART, is_complete=True, metadata={"error": str(e)})

    async def _abandon(self, user_id: str, db: AsyncSession) -> None:
        """Best effort: drop the user's session so the next text starts clean."""
        try:
            await backup_sessions.end_all(db, user_id)
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Backup plan: could not end session for user %s: %s", user_id, e)
            await db.rollback()

    async def _dispatch(self, ctx: InboundContext, db: AsyncSession) -> AgentResponse:
        session = await backup_sessions.get_live(db, ctx.user_id)
        if session is None or is_trigger(ctx.body):
            return await self._start(ctx, db)

        # Plain values only: a failed mutation rolls back and expires the row
        session_id = session.id
        try:
            state = load_state(session.step, session.context)
        except CorruptSessionError as e:
            logger.warning("Backup session %s unreadable, ending it: %s", session_id, e)
            await backup_sessions.end(db, session_id)
            return AgentResponse(content=messages.RESTART, is_complete=True, metadata={"error": str(e)})

        logger.info("Backup plan: user=%s step=%s", ctx.user_id, state.step)

        if isinstance(state, SelectHabitState):
            return await self._select_habit(ctx, db, session_id, state)
        elif isinstance(state, ConfirmState):
            return await self._confirm(ctx, db, session_id, state)
        elif isinstance(state, CustomState):
            return await self._custom(ctx, db, session_id, state)
        else:
            return await self._nudge_skip(ctx, db, session_id, state)

    # ── Steps ────────────────────────────────────────────────────────

    async def _start(self, ctx: InboundContext, db: AsyncSession) -> AgentResponse:
        summaries = await list_habit_summaries(db, ctx.user_id)
        if not summaries:
            await backup_sessions.end_all(db, ctx.user_id)
            logger.info("Backup plan: user %s has no habits", ctx.user_id)
            return AgentResponse(content=messages.no_habits(ctx.greeting_name), is_complete=True)

        state = SelectHabitState(habits_presented=presented_from_summaries(summaries))
        await backup_sessions.start_new(db, ctx.user_id, Step.SELECT_HABIT.value, dump_context(state))
        return AgentResponse(
            content=messages.start(ctx.greeting_name, state.habits_presented),
            step=Step.SELECT_HABIT.value,
            metadata={"habit_count": len(summaries)},
        )

    async def _select_habit(
        self, ctx: InboundContext, db: AsyncSession, session_id: str, state: SelectHabitState,
    ) -> AgentResponse:
        habit = select_habit(ctx.body, state.habits_presented)
        if habit is None:
            return AgentResponse(content=messages.reselect(state.habits_presented), step=state.step)
        return await self._suggest(ctx, db, session_id, state.habits_presented, habit)

    async def _confirm(
        self, ctx: InboundContext, db: AsyncSession, session_id: str, state: ConfirmState,
    ) -> AgentResponse:
        reply = classify_yes_no(ctx.body)

        if reply is Reply.YES:
            return await self._commit(
                ctx, db, session_id, state,
                new_target=state.suggested_target,
                new_days=state.suggested_days,
                reasoning=state.ai_reasoning,
                coaching=messages.COACH_ACCEPTED,
            )

        if reply is Reply.NO:
            custom = CustomState(**dump_context(state))
            await backup_sessions.advance(db, session_id, Step.CUSTOM.value, dump_context(custom))
            return AgentResponse(content=messages.custom_prompt(state.original_unit), step=Step.CUSTOM.value)

        return AgentResponse(content=messages.CONFIRM_REPROMPT, step=state.step)

    async def _custom(
        self, ctx: InboundContext, db: AsyncSession, session_id: str, state: CustomState,
    ) -> AgentResponse:
        # Order matters: a habit name wins over skip words, which win over parsing
        other = find_switch_habit(ctx.body, state.habits_presented, state.selected_habit)
        if other is not None:
            logger.info("Backup plan: user %s switching to %r", ctx.user_id, other.habit_name)
            return await self._suggest(ctx, db, session_id, state.habits_presented, other)

        if wants_to_skip(ctx.body):
            nudge = NudgeSkipState(**dump_context(state))
            await backup_sessions.advance(db, session_id, Step.NUDGE_SKIP.value, dump_context(nudge))
            return AgentResponse(content=messages.nudge(state.original_unit), step=Step.NUDGE_SKIP.value)

        parsed = await self.engine.parse_custom(
            ctx.body,
            state.selected_habit,
            state.original_target,
            state.original_unit,
            state.original_days,
        )
        if not parsed.valid or (parsed.target is None and parsed.days is None):
            return AgentResponse(content=parsed.message, step=state.step)

        new_target = parsed.target if parsed.target is not None else state.original_target
        new_days = parsed.days if parsed.days is not None else state.original_days
        if not 1 <= new_days <= 7 or (new_target is not None and new_target <= 0):
            logger.info("Backup plan: rejected custom plan target=%s days=%s", new_target, new_days)
            return AgentResponse(content=parsed.message, step=state.step)

        return await self._commit(
            ctx, db, session_id, state,
            new_target=new_target,
            new_days=new_days,
            reasoning=f"User custom adjustment: {ctx.body}",
            coaching=messages.COACH_CUSTOM,
        )

    async def _nudge_skip(
        self, ctx: InboundContext, db: AsyncSession, session_id: str, state: NudgeSkipState,
    ) -> AgentResponse:
        reply = classify_yes_no(ctx.body)

        if reply is Reply.YES:
            min_target = None
            if state.original_target:
                min_target = float(max(1, plan_mutation.round_half_up(state.original_target / 5)))
            return await self._commit(
                ctx, db, session_id, state,
                new_target=min_target,
                new_days=1,
                reasoning="User chose minimal version instead of skipping",
                coaching=messages.COACH_MINIMAL,
            )

        if reply is Reply.NO:
            result = await plan_mutation.remove_habit(
                db, ctx.user_id, state.selected_habit,
                state.original_target, state.original_unit, state.original_days,
            )
            await backup_sessions.end(db, session_id)
            if not result.success:
                return AgentResponse(content=messages.UPDATE_FAILED, is_complete=True, metadata={"error": result.error})
            return AgentResponse(
                content=messages.removed(state.selected_habit),
                is_complete=True,
                metadata={"change_type": result.change_type},
            )

        return AgentResponse(content=messages.NUDGE_REPROMPT, step=state.step)

    # ── Shared ───────────────────────────────────────────────────────

    async def _suggest(
        self,
        ctx: InboundContext,
        db: AsyncSession,
        session_id: str,
        habits_presented: list[PresentedHabit],
        habit: PresentedHabit,
    ) -> AgentResponse:
        engine = self.engine
        suggestion = await engine.suggest(
            habit.habit_name,
            habit.current_target,
            habit.current_unit,
            habit.current_days_count,
            ctx.greeting_name,
        )
        state = ConfirmState(
            habits_presented=habits_presented,
            selected_habit=habit.habit_name,
            original_target=habit.current_target,
            original_unit=habit.current_unit,
            original_days=habit.current_days_count,
            suggested_target=suggestion.suggested_target,
            suggested_days=suggestion.suggested_days,
            ai_reasoning=suggestion.reasoning,
        )
        await backup_sessions.advance(db, session_id, Step.CONFIRM.value, dump_context(state))
        return AgentResponse(
            content=suggestion.message,
            step=Step.CONFIRM.value,
            metadata={"habit": habit.habit_name, "engine": engine.name},
        )

    async def _commit(
        self,
        ctx: InboundContext,
        db: AsyncSession,
        session_id: str,
        state,
        new_target: Optional[float],
        new_days: int,
        reasoning: str,
        coaching: str,
    ) -> AgentResponse:
        result = await plan_mutation.apply_plan_changes(
            db,
            ctx.user_id,
            state.selected_habit,
            new_target=new_target,
            new_days=new_days,
            original_target=state.original_target,
            original_unit=state.original_unit,
            original_days=state.original_days,
            reasoning=reasoning,
        )
        await backup_sessions.end(db, session_id)

        if not result.success:
            return AgentResponse(content=messages.UPDATE_FAILED, is_complete=True, metadata={"error": result.error})

        content = messages.updated(
            result.new_habit_name or state.selected_habit,
            new_target,
            state.original_unit,
            new_days,
            result.kept_days,
            coaching,
        )
        return AgentResponse(
            content=content,
            is_complete=True,
            metadata={"change_type": result.change_type, "kept_days": result.kept_days},
        )
