import logging
import math
from typing import Any, Optional

from .errors import ValidationError
from .structured import ExerciseOutcome

logger = logging.getLogger(__name__)

FAST_TIME_MS = 1500     # < 1.5s = fast recall
NORMAL_TIME_MS = 3000   # < 3s = normal recall
SLOW_TIME_MS = 5000     # < 5s = slow but correct
GOOD_SCORE = 0.85

QUALITY_DESCRIPTIONS = {
    5: "Perfect - Fast recall",
    4: "Good - Normal recall",
    3: "Correct - Hesitant",
    2: "Partially correct",
    1: "Incorrect - Close attempt",
    0: "Incorrect - Needs practice",
}


def derive_quality(outcome: ExerciseOutcome) -> int:
    """
    Convert an exercise outcome into an SM-2 quality grade (0-5).

    Two stages:
      1. Classify the outcome itself (correctness, partial credit, hints,
         response time).
      2. For composite exercises (matching, sorting, multi-question), dampen
         the grade by the share of sub-items completed, so a half-finished
         matching board never reads as a confident recall.

    Raises:
        ValidationError: if the outcome is malformed.
    """
    validate_outcome(outcome)

    base = _base_quality(outcome)
    quality = _adjust_for_partial_success(base, outcome)
    logger.debug(
        "Derived quality %d (base %d) for %s outcome: correct=%s score=%s time=%s hints=%s",
        quality, base, outcome.exercise_kind, outcome.correct,
        outcome.score, outcome.time_taken_ms, outcome.hints_used,
    )
    return quality


def _base_quality(outcome: ExerciseOutcome) -> int:
    score = outcome.score
    time_taken = outcome.time_taken_ms

    if not outcome.correct:
        if 0 < score < 1:
            return 2
        if time_taken is not None and time_taken < FAST_TIME_MS:
            return 1
        return 0

    if outcome.hints_used:
        return 3

    if score < 1:
        return 4 if score >= GOOD_SCORE else 3

    if time_taken is None:
        return 4

    if time_taken < FAST_TIME_MS:
        return 5
    if time_taken < NORMAL_TIME_MS:
        return 4
    if time_taken < SLOW_TIME_MS:
        return 3
    # Slow but correct never drops below 3
    return 3


def _adjust_for_partial_success(base: int, outcome: ExerciseOutcome) -> int:
    ratio = completion_ratio(outcome)
    if ratio is None:
        return base
    if ratio == 1:
        return base
    if ratio >= 0.75:
        return min(base, 4)
    if ratio >= 0.5:
        return 3
    return 2


def completion_ratio(outcome: ExerciseOutcome) -> Optional[float]:
    """Share of sub-items completed, or None for single-term exercises."""
    if not outcome.is_composite or outcome.total is None or outcome.completed is None:
        return None
    return outcome.completed / outcome.total


def validate_outcome(outcome: ExerciseOutcome) -> None:
    if not isinstance(outcome.correct, bool):
        raise ValidationError("correct must be a boolean")
    if not _is_number(outcome.score) or not 0 <= outcome.score <= 1:
        raise ValidationError(f"score must be between 0 and 1, got {outcome.score!r}")
    check_count("time_taken_ms", outcome.time_taken_ms)
    check_count("hints_used", outcome.hints_used)
    if not outcome.exercise_kind or not isinstance(outcome.exercise_kind, str):
        raise ValidationError("exercise_kind is required")

    if outcome.completed is None and outcome.total is None:
        return
    if outcome.completed is None or outcome.total is None:
        raise ValidationError("completed and total must be given together")
    check_count("completed", outcome.completed)
    check_count("total", outcome.total)
    if outcome.total <= 0:
        raise ValidationError(f"total must be positive, got {outcome.total}")
    if outcome.completed > outcome.total:
        raise ValidationError(
            f"completed ({outcome.completed}) cannot exceed total ({outcome.total})"
        )


def validate_quality(quality: Any) -> int:
    """Return quality as int, or raise ValidationError if it is not an integer in [0,5]."""
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise ValidationError(f"quality must be an integer, got {quality!r}")
    if not 0 <= quality <= 5:
        raise ValidationError(f"quality must be between 0 and 5, got {quality}")
    return quality


def describe_quality(quality: int) -> str:
    return QUALITY_DESCRIPTIONS.get(quality, "Unknown quality")


def check_count(name: str, value: Optional[int]) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ValidationError(f"{name} cannot be negative, got {value}")


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)
