"""
SMS copy for the backup-plan dialogue. Every outbound text the agent sends is
built here, so tone changes happen in one file.
"""

from typing import Optional, Sequence

from ...core.config import get_settings
from ...services.plan_mutation import format_days, format_number
from .states import PresentedHabit

CONFIRM_REPROMPT = "Reply Y to accept the new plan, or N to suggest your own."
NUDGE_REPROMPT = "Reply Y to try a minimal version, or N to remove it from your plan."
UPDATE_FAILED = "Sorry, had trouble updating that. Try texting BACKUP again?"
RESTART = "Something went wrong. Text BACKUP to start over."

COACH_ACCEPTED = "Showing up matters more than the duration. You've got this 💪"
COACH_CUSTOM = "Any effort counts, you're still in the game 💪"
COACH_MINIMAL = "Small wins add up 🙌"


def _habits_url() -> str:
    return get_settings().habits_url


def target_prefix(target: Optional[float], unit: Optional[str]) -> str:
    """"15 oz, " when both are known, otherwise empty."""
    if target and unit:
        return f"{format_number(target)} {unit}, "
    return ""


def habit_line(index: int, habit: PresentedHabit) -> str:
    prefix = target_prefix(habit.current_target, habit.current_unit)
    return f"{index}. {habit.habit_name} ({prefix}{habit.current_days_count}x/wk)"


def start(first_name: str, habits: Sequence[PresentedHabit]) -> str:
    lines = "\n".join(habit_line(i, h) for i, h in enumerate(habits, start=1))
    return (
        f"Hey {first_name}, no worries. Life happens. "
        f"Which habit feels like too much right now?\n\n{lines}\n\n"
        "Reply the number or name."
    )


def no_habits(first_name: str) -> str:
    return (
        f"Hey {first_name}, you don't have any habits set up yet. "
        f"Add some here: {_habits_url()}"
    )


def reselect(habits: Sequence[PresentedHabit]) -> str:
    names = "\n".join(f"{i}. {h.habit_name}" for i, h in enumerate(habits, start=1))
    return f"Didn't catch that. Reply the number:\n{names}"


def custom_prompt(unit: Optional[str]) -> str:
    return (
        f'No problem! Tell me your preferred target and days (e.g. "15 {unit or "units"}, 3x/week"), '
        "or reply with a different habit name to switch."
    )


def nudge(unit: Optional[str]) -> str:
    unit_str = f" of {unit}" if unit else ""
    return (
        f"Even 2 minutes{unit_str} keeps the habit alive and your momentum going. "
        "Want to try a super minimal version instead? (Y/N)"
    )


def updated(
    habit_name: str,
    target: Optional[float],
    unit: Optional[str],
    days: int,
    kept_days: Optional[Sequence[int]],
    coaching: str,
) -> str:
    days_str = f" on {format_days(kept_days)}" if kept_days else ""
    return (
        f"Done! Updated → {habit_name}: {target_prefix(target, unit)}{days}x/wk{days_str}.\n"
        f"{coaching}\n"
        f"Text BACKUP again anytime or update your habits here: {_habits_url()}"
    )


def removed(habit_name: str) -> str:
    return (
        f"Got it, {habit_name} has been removed from your plan. No judgment, just self-awareness.\n"
        f"You can add it back anytime: {_habits_url()}"
    )
