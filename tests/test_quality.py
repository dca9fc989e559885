"""Tests for deriving SM-2 quality grades from exercise outcomes."""
import pytest

from vocab_srs.errors import ValidationError
from vocab_srs.quality import derive_quality, describe_quality, validate_quality
from vocab_srs.structured import ExerciseOutcome


def outcome(**kwargs):
    defaults = {"correct": True, "score": 1.0, "exercise_kind": "visual_identification"}
    defaults.update(kwargs)
    return ExerciseOutcome(**defaults)


# ── Single-term outcomes ──────────────────────────────────────────

def test_fast_perfect_answer_is_quality_5():
    assert derive_quality(outcome(time_taken_ms=1000)) == 5


def test_slow_perfect_answer_is_quality_3():
    assert derive_quality(outcome(time_taken_ms=4000)) == 3


def test_incorrect_with_partial_credit_is_quality_2():
    assert derive_quality(outcome(correct=False, score=0.4)) == 2


def test_incorrect_partial_credit_wins_over_fast_attempt():
    assert derive_quality(outcome(correct=False, score=0.5, time_taken_ms=200)) == 2


def test_incorrect_fast_attempt_is_quality_1():
    assert derive_quality(outcome(correct=False, score=0.0, time_taken_ms=900)) == 1


def test_incorrect_slow_or_untimed_is_quality_0():
    assert derive_quality(outcome(correct=False, score=0.0, time_taken_ms=1500)) == 0
    assert derive_quality(outcome(correct=False, score=0.0)) == 0


def test_hints_cap_correct_answer_at_3_regardless_of_speed():
    assert derive_quality(outcome(hints_used=1, time_taken_ms=500)) == 3


def test_zero_hints_do_not_penalize():
    assert derive_quality(outcome(hints_used=0, time_taken_ms=500)) == 5


def test_correct_imperfect_score():
    assert derive_quality(outcome(score=0.9)) == 4
    assert derive_quality(outcome(score=0.85)) == 4
    assert derive_quality(outcome(score=0.6)) == 3


def test_correct_perfect_untimed_assumes_good_recall():
    assert derive_quality(outcome()) == 4


@pytest.mark.parametrize("time_ms,expected", [
    (0, 5),
    (1499, 5),
    (1500, 4),
    (2999, 4),
    (3000, 3),
    (4999, 3),
    (5000, 3),
    (60000, 3),
])
def test_response_time_thresholds(time_ms, expected):
    assert derive_quality(outcome(time_taken_ms=time_ms)) == expected


# ── Composite exercises ───────────────────────────────────────────

@pytest.mark.parametrize("completed,expected", [
    (4, 5),   # all pairs matched: base quality unchanged
    (3, 4),   # 75%: capped at 4
    (2, 3),   # 50%
    (1, 2),   # below half
    (0, 2),
])
def test_term_matching_dampened_by_completion(completed, expected):
    result = outcome(exercise_kind="term_matching", time_taken_ms=1000, completed=completed, total=4)
    assert derive_quality(result) == expected


def test_composite_cap_does_not_raise_a_lower_base():
    # 80% of categories, but hints were used: min(3, 4) == 3
    result = outcome(exercise_kind="category_sorting", hints_used=2, completed=4, total=5)
    assert derive_quality(result) == 3


def test_comparative_analysis_half_answered():
    result = outcome(exercise_kind="comparative_analysis", correct=False, score=0.0,
                     completed=3, total=6)
    assert derive_quality(result) == 3


def test_composite_pair_ignored_for_single_term_kind():
    result = outcome(exercise_kind="visual_identification", time_taken_ms=1000, completed=1, total=4)
    assert derive_quality(result) == 5


def test_composite_kind_without_pair_uses_base_quality():
    assert derive_quality(outcome(exercise_kind="term_matching", time_taken_ms=2000)) == 4


def test_quality_always_within_bounds():
    for correct in (True, False):
        for score in (0.0, 0.3, 0.85, 1.0):
            for time_ms in (None, 100, 2000, 4000, 9000):
                for hints in (None, 0, 2):
                    for pair in ((None, None), (0, 3), (2, 3), (3, 3)):
                        q = derive_quality(outcome(
                            correct=correct, score=score, time_taken_ms=time_ms, hints_used=hints,
                            exercise_kind="term_matching", completed=pair[0], total=pair[1],
                        ))
                        assert isinstance(q, int)
                        assert 0 <= q <= 5


# ── Validation ────────────────────────────────────────────────────

@pytest.mark.parametrize("kwargs", [
    {"score": 1.5},
    {"score": -0.1},
    {"score": float("nan")},
    {"time_taken_ms": -1},
    {"hints_used": -2},
    {"correct": None},
    {"exercise_kind": ""},
    {"exercise_kind": "term_matching", "completed": 1, "total": 0},
    {"exercise_kind": "term_matching", "completed": 5, "total": 4},
    {"exercise_kind": "term_matching", "completed": -1, "total": 4},
    {"exercise_kind": "term_matching", "completed": 1},
])
def test_malformed_outcome_rejected(kwargs):
    with pytest.raises(ValidationError):
        derive_quality(outcome(**kwargs))


def test_validation_error_is_a_value_error():
    with pytest.raises(ValueError):
        derive_quality(outcome(score=2))


@pytest.mark.parametrize("bad", [-1, 6, 2.5, "3", None, True])
def test_validate_quality_rejects(bad):
    with pytest.raises(ValidationError):
        validate_quality(bad)


def test_describe_quality():
    assert describe_quality(5) == "Perfect - Fast recall"
    assert describe_quality(0) == "Incorrect - Needs practice"
    assert describe_quality(9) == "Unknown quality"


def test_outcome_from_json_payload():
    parsed = ExerciseOutcome.from_dict({
        "correct": True,
        "score": 1,
        "timeTakenMs": 1200,
        "exerciseKind": "term_matching",
        "completed": 3,
        "total": 4,
    })
    assert parsed.is_composite
    assert parsed.time_taken_ms == 1200
    assert derive_quality(parsed) == 4


def test_outcome_from_json_defaults_score_from_correctness():
    assert ExerciseOutcome.from_dict({"correct": False}).score == 0.0
    assert ExerciseOutcome.from_dict({"correct": True}).score == 1.0
