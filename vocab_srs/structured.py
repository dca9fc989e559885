import datetime
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
DEFAULT_INTERVAL_DAYS = 1
MAX_MASTERY = 100

# Exercises that grade several terms at once and report a {completed, total} pair
TERM_MATCHING = "term_matching"
CATEGORY_SORTING = "category_sorting"
COMPARATIVE_ANALYSIS = "comparative_analysis"
COMPOSITE_KINDS = frozenset({TERM_MATCHING, CATEGORY_SORTING, COMPARATIVE_ANALYSIS})


@dataclass(frozen=True)
class ScheduleState:
    term_id: str
    repetitions: int = 0
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval_days: int = DEFAULT_INTERVAL_DAYS
    next_review_at: Optional[datetime.datetime] = None
    last_reviewed_at: Optional[datetime.datetime] = None
    times_correct: int = 0
    times_incorrect: int = 0
    mastery_level: int = 0
    current_streak: int = 0
    longest_streak: int = 0

    def is_due(self, now: datetime.datetime) -> bool:
        return self.next_review_at is not None and self.next_review_at <= now

    def to_dict(self) -> Dict[str, Any]:
        """camelCase projection used by the HTTP API and the CLI."""
        data = asdict(self)
        return {
            "termId": data["term_id"],
            "repetitions": data["repetitions"],
            "easeFactor": round(data["ease_factor"], 4),
            "intervalDays": data["interval_days"],
            "nextReviewAt": _isoformat(self.next_review_at),
            "lastReviewedAt": _isoformat(self.last_reviewed_at),
            "timesCorrect": data["times_correct"],
            "timesIncorrect": data["times_incorrect"],
            "masteryLevel": data["mastery_level"],
            "currentStreak": data["current_streak"],
            "longestStreak": data["longest_streak"],
        }


@dataclass(frozen=True)
class ExerciseOutcome:
    correct: bool
    score: float
    exercise_kind: str = "visual_identification"
    time_taken_ms: Optional[int] = None
    hints_used: Optional[int] = None
    # Composite exercises only: matched pairs / categories / questions answered
    completed: Optional[int] = None
    total: Optional[int] = None

    @property
    def is_composite(self) -> bool:
        return self.exercise_kind in COMPOSITE_KINDS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExerciseOutcome":
        """Build an outcome from the camelCase JSON sent by exercise clients."""
        return cls(
            correct=data.get("correct"),  # type: ignore[arg-type]
            score=data.get("score", 1.0 if data.get("correct") else 0.0),
            exercise_kind=data.get("exerciseKind") or data.get("exerciseType") or "visual_identification",
            time_taken_ms=data.get("timeTakenMs", data.get("timeTaken")),
            hints_used=data.get("hintsUsed"),
            completed=data.get("completed"),
            total=data.get("total"),
        )


def _isoformat(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
