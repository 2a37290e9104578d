"""
Conversation states for the backup-plan dialogue.

A session row stores `step` plus a JSON `context`. Each step has its own
context shape; loading validates the pair into one of the models below, so a
row with an unknown step or a missing field never reaches the handlers.
"""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError


class Step(str, Enum):
    SELECT_HABIT = "select_habit"
    CONFIRM = "confirm"
    CUSTOM = "custom"
    NUDGE_SKIP = "nudge_skip"


class PresentedHabit(BaseModel):
    """One numbered entry of the list shown to the user."""

    habit_name: str
    current_target: Optional[float] = None
    current_unit: Optional[str] = None
    current_days_count: int


class SelectHabitState(BaseModel):
    step: Literal["select_habit"] = "select_habit"
    habits_presented: list[PresentedHabit]


class _HabitChosen(BaseModel):
    habits_presented: list[PresentedHabit] = Field(default_factory=list)
    selected_habit: str
    original_target: Optional[float] = None
    original_unit: Optional[str] = None
    original_days: int


class ConfirmState(_HabitChosen):
    step: Literal["confirm"] = "confirm"
    suggested_target: Optional[float] = None
    suggested_days: int
    ai_reasoning: str = ""


class CustomState(_HabitChosen):
    step: Literal["custom"] = "custom"
    suggested_target: Optional[float] = None
    suggested_days: Optional[int] = None
    ai_reasoning: str = ""


class NudgeSkipState(_HabitChosen):
    step: Literal["nudge_skip"] = "nudge_skip"


SessionState = Annotated[
    Union[SelectHabitState, ConfirmState, CustomState, NudgeSkipState],
    Field(discriminator="step"),
]

_state_adapter = TypeAdapter(SessionState)


class CorruptSessionError(Exception):
    """Stored step/context cannot be interpreted."""


def load_state(step: str, context: Optional[dict]):
    if context is not None and not isinstance(context, dict):
        raise CorruptSessionError(f"step={step!r}: context is {type(context).__name__}, not an object")
    try:
        return _state_adapter.validate_python({**(context or {}), "step": step})
    except ValidationError as e:
        raise CorruptSessionError(f"step={step!r}: {e.error_count()} validation error(s)") from e


def dump_context(state: BaseModel) -> dict:
    """JSON-safe context for storage; the step lives in its own column."""
    return state.model_dump(mode="json", exclude={"step"})


def presented_from_summaries(summaries) -> list[PresentedHabit]:
    return [
        PresentedHabit(
            habit_name=s.habit_name,
            current_target=s.target,
            current_unit=s.unit,
            current_days_count=s.days_count,
        )
        for s in summaries
    ]
