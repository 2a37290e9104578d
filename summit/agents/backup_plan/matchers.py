"""
Reply classification for the backup-plan dialogue.

Fixed vocabularies, exact match after trim + lowercase. Near misses
("yess", "nah thanks") are not recognized and get the step's re-prompt.
"""

import re
from enum import Enum
from typing import Optional, Sequence

from .states import PresentedHabit

TRIGGER_PATTERN = re.compile(r"^\s*BACKUP\b", re.IGNORECASE)

YES_WORDS = frozenset({"y", "yes", "yeah", "yep", "sure", "ok", "okay", "👍"})
NO_WORDS = frozenset({"n", "no", "nope", "nah", "👎"})

SKIP_KEYWORDS = (
    "skip", "cancel", "remove", "delete", "drop", "nothing", "none",
    "stop doing", "don't want", "dont want", "take it off", "get rid",
)

_LEADING_NUMBER = re.compile(r"^\s*(\d+)")

MIN_SHARED_WORD_LENGTH = 4


class Reply(str, Enum):
    YES = "yes"
    NO = "no"
    OTHER = "other"


def normalize(text: str) -> str:
    return (text or "").strip().lower()


def is_trigger(text: str) -> bool:
    """BACKUP as the first word, any case."""
    return bool(TRIGGER_PATTERN.match(text or ""))


def classify_yes_no(text: str) -> Reply:
    word = normalize(text)
    if word in YES_WORDS:
        return Reply.YES
    if word in NO_WORDS:
        return Reply.NO
    return Reply.OTHER


def wants_to_skip(text: str) -> bool:
    lowered = normalize(text)
    return any(keyword in lowered for keyword in SKIP_KEYWORDS)


def select_habit(text: str, habits: Sequence[PresentedHabit]) -> Optional[PresentedHabit]:
    """
    A leading number picks by position (1-based). Otherwise the first habit
    whose name equals, contains, or is contained in the reply.
    """
    match = _LEADING_NUMBER.match(text or "")
    if match:
        index = int(match.group(1)) - 1
        if 0 <= index < len(habits):
            return habits[index]

    lowered = normalize(text)
    if not lowered:
        return None
    for habit in habits:
        name = habit.habit_name.lower()
        if name == lowered or lowered in name or name in lowered:
            return habit
    return None


def find_switch_habit(
    text: str,
    habits: Sequence[PresentedHabit],
    current: str,
) -> Optional[PresentedHabit]:
    """
    Another presented habit the user is naming instead of the current one:
    its full name appears in the reply, or one of its words longer than
    three characters does.
    """
    lowered = normalize(text)
    if not lowered:
        return None
    current_lower = current.lower()
    for habit in habits:
        name = habit.habit_name.lower()
        if name == current_lower:
            continue
        if name in lowered:
            return habit
        words = [w for w in name.split() if len(w) >= MIN_SHARED_WORD_LENGTH]
        if any(word in lowered for word in words):
            return habit
    return None
