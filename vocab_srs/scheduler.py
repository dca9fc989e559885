import dataclasses
import datetime
import math
from typing import Iterable, List, Optional

from .errors import ValidationError
from .quality import validate_quality
from .structured import MAX_MASTERY, MIN_EASE_FACTOR, ScheduleState

MASTERY_GAIN = 10
MASTERY_LOSS = 5


def next_ease_factor(ease_factor: float, quality: int) -> float:
    """SM-2 E-Factor update, floored at 1.3."""
    new_ef = ease_factor + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02))
    if new_ef < MIN_EASE_FACTOR:
        new_ef = MIN_EASE_FACTOR
    return new_ef


def schedule(
    prior: ScheduleState,
    quality: int,
    now: datetime.datetime,
    correct: Optional[bool] = None,
) -> ScheduleState:
    """
    SM-2 (SuperMemo 2) scheduling step.

    The state machine has two phases:
      - Learning (repetitions 0-1): fixed intervals of 1 then 6 days.
      - Review (repetitions >= 2): previous interval x updated E-Factor.
    A lapse (quality < 3) drops back to the start of Learning but keeps the
    lowered E-Factor, so terms that fail often grow their intervals slowly.

    Quality grades (0-5):
      0 - complete blackout
      1 - wrong, but a quick near miss
      2 - wrong, partial understanding
      3 - correct with serious difficulty
      4 - correct after some hesitation
      5 - perfect, instant recall

    Args:
        prior: state before this review.
        quality: integer grade in [0,5].
        now: timezone-aware review time.
        correct: whether the originating exercise was answered correctly.
            Only drives the mastery accumulator; defaults to quality >= 3.

    Returns:
        The new ScheduleState. The caller persists it.

    Raises:
        ValidationError: bad quality or naive ``now``.
    """
    validate_quality(quality)
    now = as_utc(now)

    # Step 1: E-Factor is updated even on a lapse
    new_ef = next_ease_factor(prior.ease_factor, quality)

    # Step 2: repetitions and interval
    passed = quality >= 3
    if not passed:
        new_reps = 0
        new_interval = 1
    else:
        new_reps = prior.repetitions + 1
        if prior.repetitions == 0:
            new_interval = 1
        elif prior.repetitions == 1:
            new_interval = 6
        else:
            new_interval = max(1, _round_half_up(prior.interval_days * new_ef))

    # Step 3: reporting counters and the display-only mastery level
    if correct is None:
        correct = passed
    mastery = prior.mastery_level + (MASTERY_GAIN if correct else -MASTERY_LOSS)
    streak = prior.current_streak + 1 if passed else 0

    return dataclasses.replace(
        prior,
        repetitions=new_reps,
        ease_factor=new_ef,
        interval_days=new_interval,
        last_reviewed_at=now,
        next_review_at=now + datetime.timedelta(days=new_interval),
        times_correct=prior.times_correct + (1 if passed else 0),
        times_incorrect=prior.times_incorrect + (0 if passed else 1),
        mastery_level=max(0, min(MAX_MASTERY, mastery)),
        current_streak=streak,
        longest_streak=max(prior.longest_streak, streak),
    )


def select_due(
    states: Iterable[ScheduleState],
    now: datetime.datetime,
    limit: int,
) -> List[ScheduleState]:
    """Return states due at ``now``, most overdue first, at most ``limit`` of them."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
        raise ValidationError(f"limit must be a non-negative integer, got {limit!r}")
    now = as_utc(now)
    due = [state for state in states if state.is_due(now)]
    due.sort(key=lambda state: state.next_review_at)  # type: ignore[arg-type, return-value]
    return due[:limit]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def as_utc(value: datetime.datetime) -> datetime.datetime:
    if not isinstance(value, datetime.datetime):
        raise ValidationError(f"expected a datetime, got {value!r}")
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError("datetime must be timezone-aware")
    return value.astimezone(datetime.timezone.utc)
