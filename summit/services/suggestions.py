"""
Plan-reduction suggestions and custom-plan parsing.

Two interchangeable engines behind one interface:
  - LLMSuggestionEngine: asks the chat completion API for structured JSON,
    falls back per call to the rule-based engine on any failure
  - RuleBasedSuggestionEngine: deterministic formula, no network

The dialogue only ever sees SuggestionEngine, so it runs the same offline.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ValidationError

from ..core.flags import get_flags
from . import llm
from .plan_mutation import format_number, round_half_up

logger = logging.getLogger(__name__)


@dataclass
class Suggestion:
    message: str
    suggested_target: Optional[float]
    suggested_days: int
    reasoning: str


@dataclass
class CustomPlan:
    valid: bool
    target: Optional[float] = None
    days: Optional[int] = None
    message: str = ""


def _example_format(unit: Optional[str]) -> str:
    return f'"15 {unit or "units"}, 3x/week"'


class SuggestionEngine(ABC):
    name: str = ""

    @abstractmethod
    async def suggest(
        self,
        habit_name: str,
        current_target: Optional[float],
        current_unit: Optional[str],
        current_days: int,
        first_name: str,
    ) -> Suggestion:
        """Propose a smaller target and fewer days, as a ready-to-send SMS."""

    @abstractmethod
    async def parse_custom(
        self,
        user_text: str,
        habit_name: str,
        current_target: Optional[float],
        current_unit: Optional[str],
        current_days: int,
    ) -> CustomPlan:
        """Extract the user's own target / days-per-week from free text."""


# ── Deterministic engine ─────────────────────────────────────────────

class RuleBasedSuggestionEngine(SuggestionEngine):
    """~1/3 of the target, ~1/2 of the days (at least 2), never above current."""

    name = "rules"

    async def suggest(self, habit_name, current_target, current_unit, current_days, first_name):
        suggested_target = None
        if current_target:
            suggested_target = float(min(current_target, max(1, round_half_up(current_target / 3))))
        suggested_days = min(current_days, max(2, round_half_up(current_days / 2)))

        current = f"{format_number(current_target)} {current_unit or ''}".strip() if current_target else ""
        current_str = f"{current} {current_days}x/wk" if current else f"{current_days}x/wk"
        target_str = (
            f"{format_number(suggested_target)} {current_unit}, "
            if suggested_target and current_unit else ""
        )
        message = (
            f"Got it, {habit_name} at {current_str} is a lot when life's busy. "
            f"How about {target_str}{suggested_days}x this week? "
            f"Even small effort counts. Sound good? (Y/N)"
        )
        return Suggestion(
            message=message,
            suggested_target=suggested_target,
            suggested_days=suggested_days,
            reasoning="Fallback: reduced to ~1/3 target and ~1/2 frequency.",
        )

    async def parse_custom(self, user_text, habit_name, current_target, current_unit, current_days):
        return CustomPlan(
            valid=False,
            message=f"What would work better? e.g. {_example_format(current_unit)}",
        )


# ── LLM engine ───────────────────────────────────────────────────────

SUGGEST_SYSTEM_PROMPT = """You are Summit, a supportive health habit coach texting a user who already chose to scale a habit back. Do not re-explain why adjusting is ok. Just:
1. Briefly acknowledge the habit and current plan ("Got it, X at Y Z/wk is a lot when life's busy.")
2. Suggest a specific reduced target and frequency
3. Keep it under 250 chars, conversational and warm
4. No motivational science claims, just be direct and human
5. End with "Sound good? (Y/N)"

Respond with JSON only:
{
  "message": "the SMS to send (under 250 chars, ending with Sound good? (Y/N))",
  "suggested_target": number or null,
  "suggested_days": number,
  "reasoning": "brief internal reasoning about the reduction"
}"""

PARSE_SYSTEM_PROMPT = """You are Summit, reading a user's own habit plan adjustment. Extract their preferred target and frequency. Respond with JSON only:
{
  "valid": true/false,
  "target": number or null (their preferred target value),
  "days": number or null (their preferred days per week),
  "message": "a short confirmation or clarifying question (under 200 chars)"
}

If the message doesn't clearly state a plan, set valid=false and ask a clarifying question."""


class _SuggestionPayload(BaseModel):
    message: str
    suggested_target: Optional[float] = None
    suggested_days: int
    reasoning: str = ""


class _CustomPayload(BaseModel):
    valid: bool
    target: Optional[float] = None
    days: Optional[int] = None
    message: str = ""


class LLMSuggestionEngine(SuggestionEngine):
    name = "llm"

    def __init__(self, fallback: Optional[SuggestionEngine] = None):
        self.fallback = fallback or RuleBasedSuggestionEngine()

    async def suggest(self, habit_name, current_target, current_unit, current_days, first_name):
        prompt = (
            f"User: {first_name}\n"
            f"Habit: {habit_name}\n"
            f"Current target: {format_number(current_target) or 'N/A'} {current_unit or ''}\n"
            f"Current frequency: {current_days}x/week\n\n"
            "Suggest a realistic but still meaningful reduced plan. "
            "suggested_target and suggested_days must be lower than the current values."
        )
        try:
            data = await llm.chat_json(prompt, system=SUGGEST_SYSTEM_PROMPT, temperature=0.7, max_tokens=300)
            payload = _SuggestionPayload.model_validate(data)
            self._check_reduction(payload, current_target, current_days)
        except (llm.LLMError, ValidationError, ValueError) as e:
            logger.warning("Suggestion for %r fell back to rules: %s", habit_name, e)
            return await self.fallback.suggest(habit_name, current_target, current_unit, current_days, first_name)

        return Suggestion(
            message=payload.message.strip(),
            suggested_target=payload.suggested_target if current_target is not None else None,
            suggested_days=payload.suggested_days,
            reasoning=payload.reasoning,
        )

    @staticmethod
    def _check_reduction(payload: _SuggestionPayload, current_target: Optional[float], current_days: int) -> None:
        if "(Y/N)" not in payload.message:
            raise ValueError("message does not ask for Y/N")
        if payload.suggested_days < 1 or payload.suggested_days > current_days:
            raise ValueError(f"suggested_days {payload.suggested_days} not within 1..{current_days}")
        if payload.suggested_target is not None and current_target is not None:
            if payload.suggested_target <= 0 or payload.suggested_target > current_target:
                raise ValueError(f"suggested_target {payload.suggested_target} above {current_target}")

    async def parse_custom(self, user_text, habit_name, current_target, current_unit, current_days):
        prompt = (
            f"Habit: {habit_name}\n"
            f"Current: {format_number(current_target) or 'N/A'} {current_unit or ''}, {current_days}x/week\n"
            f'User says: "{user_text}"\n\n'
            "Parse what they want to change to."
        )
        try:
            data = await llm.chat_json(prompt, system=PARSE_SYSTEM_PROMPT, temperature=0.3, max_tokens=200)
            payload = _CustomPayload.model_validate(data)
        except (llm.LLMError, ValidationError) as e:
            logger.warning("Custom plan parse fell back to rules: %s", e)
            return await self.fallback.parse_custom(user_text, habit_name, current_target, current_unit, current_days)

        message = payload.message.strip() or f"What would work better? e.g. {_example_format(current_unit)}"
        return CustomPlan(valid=payload.valid, target=payload.target, days=payload.days, message=message)


def get_suggestion_engine() -> SuggestionEngine:
    """LLM engine when enabled and configured, otherwise the rule-based one."""
    if get_flags().use_llm and llm.is_configured():
        return LLMSuggestionEngine()
    return RuleBasedSuggestionEngine()
