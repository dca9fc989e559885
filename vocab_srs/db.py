from __future__ import annotations
from sqlalchemy import create_engine, Boolean, DateTime, Float, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session, Mapped, mapped_column
from sqlalchemy.orm.exc import StaleDataError
import datetime
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import ConflictError, NotFoundError, ValidationError
from .quality import check_count, derive_quality, validate_quality
from .scheduler import as_utc, schedule, select_due
from .structured import (
    DEFAULT_EASE_FACTOR,
    DEFAULT_INTERVAL_DAYS,
    ExerciseOutcome,
    ScheduleState,
)

logger = logging.getLogger(__name__)

DB_PATH: str = os.environ.get("VOCAB_SRS_DB", "vocab_srs.db")
AUTO_DISCOVER: bool = os.environ.get("VOCAB_SRS_AUTO_DISCOVER", "0") == "1"
MASTERED_THRESHOLD = 80

engine = create_engine(f"sqlite:///{DB_PATH}")
# Prevent attribute expiration on commit so returned objects remain accessible
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


class TermProgress(Base):
    """SM-2 schedule row, one per (user, term).

    Timestamps are stored as naive UTC. ``version_id`` makes every UPDATE
    conditional on the version that was read, so two reviews racing on the
    same row cannot both apply.
    """
    __tablename__ = "term_progress"
    __table_args__ = (
        UniqueConstraint("user", "term_id", name="uq_term_progress_user_term"),
        Index("ix_term_progress_user_next_review", "user", "next_review_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user: Mapped[str] = mapped_column(String, nullable=False)
    term_id: Mapped[str] = mapped_column(String, nullable=False)
    # SRS fields
    repetitions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ease_factor: Mapped[float] = mapped_column(Float, default=DEFAULT_EASE_FACTOR, nullable=False)
    interval_days: Mapped[int] = mapped_column(Integer, default=DEFAULT_INTERVAL_DAYS, nullable=False)
    next_review_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    last_reviewed_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)
    # Reporting only
    times_correct: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    times_incorrect: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    mastery_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    first_seen_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}


class ReviewHistory(Base):
    """Audit log: one row per applied review with before/after snapshots."""
    __tablename__ = "review_history"
    __table_args__ = (
        Index("ix_review_history_user_time", "user", "reviewed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user: Mapped[str] = mapped_column(String, nullable=False)
    term_id: Mapped[str] = mapped_column(String, nullable=False)
    quality: Mapped[int] = mapped_column(Integer, nullable=False)
    correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    time_taken_ms: Mapped[Optional[int]] = mapped_column(Integer)
    repetitions_before: Mapped[int] = mapped_column(Integer, nullable=False)
    ease_factor_before: Mapped[float] = mapped_column(Float, nullable=False)
    interval_days_before: Mapped[int] = mapped_column(Integer, nullable=False)
    mastery_level_before: Mapped[int] = mapped_column(Integer, nullable=False)
    repetitions_after: Mapped[int] = mapped_column(Integer, nullable=False)
    ease_factor_after: Mapped[float] = mapped_column(Float, nullable=False)
    interval_days_after: Mapped[int] = mapped_column(Integer, nullable=False)
    mastery_level_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reviewed_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)


def is_db_initialized() -> bool:
    """Check if the database is already initialized by checking if tables exist."""
    from sqlalchemy import inspect
    inspector = inspect(engine)
    table_names = inspector.get_table_names()
    return {"term_progress", "review_history"}.issubset(set(table_names))


def init_db() -> None:
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(bind=engine)


def get_session() -> Session:
    return SessionLocal()


# ----------------------------------------------------------------------
# Row <-> ScheduleState
# ----------------------------------------------------------------------
def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _resolve_now(now: Optional[datetime.datetime]) -> datetime.datetime:
    return _utcnow() if now is None else as_utc(now)


def _to_db(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    return value.astimezone(datetime.timezone.utc).replace(tzinfo=None)


def _from_db(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def _to_state(row: TermProgress) -> ScheduleState:
    return ScheduleState(
        term_id=row.term_id,
        repetitions=row.repetitions,
        ease_factor=row.ease_factor,
        interval_days=row.interval_days,
        next_review_at=_from_db(row.next_review_at),
        last_reviewed_at=_from_db(row.last_reviewed_at),
        times_correct=row.times_correct,
        times_incorrect=row.times_incorrect,
        mastery_level=row.mastery_level,
        current_streak=row.current_streak,
        longest_streak=row.longest_streak,
    )


def _apply_state(row: TermProgress, state: ScheduleState, now: datetime.datetime) -> None:
    row.repetitions = state.repetitions
    row.ease_factor = state.ease_factor
    row.interval_days = state.interval_days
    row.next_review_at = _to_db(state.next_review_at)  # type: ignore[assignment]
    row.last_reviewed_at = _to_db(state.last_reviewed_at)
    row.times_correct = state.times_correct
    row.times_incorrect = state.times_incorrect
    row.mastery_level = state.mastery_level
    row.current_streak = state.current_streak
    row.longest_streak = state.longest_streak
    row.updated_at = _to_db(now)  # type: ignore[assignment]


def _fresh_state(term_id: str, now: datetime.datetime) -> ScheduleState:
    """A just-discovered term: not reviewed yet, first due one interval from now."""
    return ScheduleState(
        term_id=term_id,
        next_review_at=now + datetime.timedelta(days=DEFAULT_INTERVAL_DAYS),
    )


def _new_row(user: str, term_id: str, now: datetime.datetime) -> TermProgress:
    row = TermProgress(user=user, term_id=term_id, first_seen_at=_to_db(now))
    _apply_state(row, _fresh_state(term_id, now), now)
    return row


def _get_row(session: Session, user: str, term_id: str) -> Optional[TermProgress]:
    return session.query(TermProgress).filter_by(user=user, term_id=term_id).one_or_none()


def _check_term_id(term_id: Any) -> str:
    if not isinstance(term_id, str) or not term_id.strip():
        raise ValidationError("termId is required")
    return term_id


def _check_limit(limit: Any) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
        raise ValidationError(f"limit must be a non-negative integer, got {limit!r}")
    return limit


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------
def discover_term(user: str, term_id: str, now: Optional[datetime.datetime] = None) -> ScheduleState:
    """Create the schedule row for a first exposure. Never overwrites an existing row."""
    _check_term_id(term_id)
    now = _resolve_now(now)

    with get_session() as session:
        row = _get_row(session, user, term_id)
        if row is not None:
            return _to_state(row)

        row = _new_row(user, term_id, now)
        session.add(row)
        try:
            session.commit()
        except IntegrityError:
            # Another request discovered the same term first; keep its row
            session.rollback()
            row = _get_row(session, user, term_id)
            if row is None:
                raise
            return _to_state(row)

        logger.info("Term discovered: user=%s term=%s", user, term_id)
        return _to_state(row)


# ----------------------------------------------------------------------
# Reviews
# ----------------------------------------------------------------------
def _review_row(
    session: Session,
    row: TermProgress,
    quality: int,
    now: datetime.datetime,
    correct: Optional[bool],
    response_time_ms: Optional[int],
) -> ScheduleState:
    prior = _to_state(row)
    updated = schedule(prior, quality, now, correct=correct)
    _apply_state(row, updated, now)
    session.add(ReviewHistory(
        user=row.user,
        term_id=row.term_id,
        quality=quality,
        correct=quality >= 3 if correct is None else correct,
        time_taken_ms=response_time_ms,
        repetitions_before=prior.repetitions,
        ease_factor_before=prior.ease_factor,
        interval_days_before=prior.interval_days,
        mastery_level_before=prior.mastery_level,
        repetitions_after=updated.repetitions,
        ease_factor_after=updated.ease_factor,
        interval_days_after=updated.interval_days,
        mastery_level_after=updated.mastery_level,
        reviewed_at=_to_db(now),
    ))
    return updated


def _load_rows(
    session: Session,
    user: str,
    term_ids: Iterable[str],
    now: datetime.datetime,
    auto_discover: bool,
) -> List[TermProgress]:
    rows: List[TermProgress] = []
    for term_id in term_ids:
        row = _get_row(session, user, term_id)
        if row is None:
            if not auto_discover:
                raise NotFoundError(user, term_id)
            row = _new_row(user, term_id, now)
            session.add(row)
            logger.info("Term implicitly discovered on review: user=%s term=%s", user, term_id)
        rows.append(row)
    return rows


def _commit_reviews(session: Session, user: str, term_ids: List[str]) -> None:
    try:
        session.commit()
    except (StaleDataError, IntegrityError):
        session.rollback()
        logger.warning("Concurrent review detected: user=%s terms=%s", user, term_ids)
        raise ConflictError(user, ", ".join(term_ids)) from None


def submit_review(
    user: str,
    term_id: str,
    quality: int,
    response_time_ms: Optional[int] = None,
    correct: Optional[bool] = None,
    now: Optional[datetime.datetime] = None,
    auto_discover: Optional[bool] = None,
) -> ScheduleState:
    """Apply one SM-2 review to the stored state and persist it atomically.

    Raises:
        ValidationError: bad quality, timing or term id; nothing is written.
        NotFoundError: the term was never discovered and auto-discovery is off.
        ConflictError: another review updated the row after it was read.
    """
    _check_term_id(term_id)
    validate_quality(quality)
    check_count("response_time_ms", response_time_ms)
    now = _resolve_now(now)
    if auto_discover is None:
        auto_discover = AUTO_DISCOVER

    with get_session() as session:
        row = _load_rows(session, user, [term_id], now, auto_discover)[0]
        updated = _review_row(session, row, quality, now, correct, response_time_ms)
        _commit_reviews(session, user, [term_id])

    logger.info(
        "Review recorded: user=%s term=%s quality=%d interval=%d ease=%.2f",
        user, term_id, quality, updated.interval_days, updated.ease_factor,
    )
    return updated


def submit_exercise_outcome(
    user: str,
    term_ids: Iterable[str],
    outcome: ExerciseOutcome,
    now: Optional[datetime.datetime] = None,
    auto_discover: Optional[bool] = None,
) -> Tuple[int, List[ScheduleState]]:
    """Derive a quality from a raw exercise outcome and review every term it covered.

    Composite exercises (matching, sorting) touch several terms; each gets the
    same dampened quality. All terms are written in one transaction.

    Returns:
        (quality, updated states in the order of ``term_ids``)
    """
    # Preserve order, drop duplicates so one exercise never reviews a term twice
    ids = list(dict.fromkeys(_check_term_id(t) for t in term_ids))
    if not ids:
        raise ValidationError("at least one termId is required")
    quality = derive_quality(outcome)
    now = _resolve_now(now)
    if auto_discover is None:
        auto_discover = AUTO_DISCOVER

    with get_session() as session:
        rows = _load_rows(session, user, ids, now, auto_discover)
        updated = [
            _review_row(session, row, quality, now, outcome.correct, outcome.time_taken_ms)
            for row in rows
        ]
        _commit_reviews(session, user, ids)

    logger.info(
        "Exercise recorded: user=%s kind=%s terms=%d quality=%d",
        user, outcome.exercise_kind, len(ids), quality,
    )
    return quality, updated


def reset_term_progress(user: str, term_id: str, now: Optional[datetime.datetime] = None) -> ScheduleState:
    """Put a term back to its just-discovered state. History is kept."""
    _check_term_id(term_id)
    now = _resolve_now(now)

    with get_session() as session:
        row = _get_row(session, user, term_id)
        if row is None:
            raise NotFoundError(user, term_id)
        state = _fresh_state(term_id, now)
        _apply_state(row, state, now)
        _commit_reviews(session, user, [term_id])

    logger.info("Progress reset: user=%s term=%s", user, term_id)
    return state


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------
def get_term_progress(user: str, term_id: str) -> ScheduleState:
    with get_session() as session:
        row = _get_row(session, user, term_id)
        if row is None:
            raise NotFoundError(user, term_id)
        return _to_state(row)


def list_due_terms(user: str, limit: int = 20, now: Optional[datetime.datetime] = None) -> List[ScheduleState]:
    """Terms due for review, most overdue first."""
    _check_limit(limit)
    now = _resolve_now(now)

    with get_session() as session:
        rows = (
            session.query(TermProgress)
            .filter(TermProgress.user == user, TermProgress.next_review_at <= _to_db(now))
            .order_by(TermProgress.next_review_at.asc(), TermProgress.id.asc())
            .limit(limit)
            .all()
        )
        states = [_to_state(row) for row in rows]
    return select_due(states, now, limit)


def get_review_history(user: str, term_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """Most recent reviews of a term, newest first."""
    _check_limit(limit)
    with get_session() as session:
        rows = (
            session.query(ReviewHistory)
            .filter(ReviewHistory.user == user, ReviewHistory.term_id == term_id)
            .order_by(ReviewHistory.reviewed_at.desc(), ReviewHistory.id.desc())
            .limit(limit)
            .all()
        )

    results: List[Dict[str, Any]] = []
    for row in rows:
        results.append({
            "quality": row.quality,
            "correct": row.correct,
            "timeTakenMs": row.time_taken_ms,
            "reviewedAt": _from_db(row.reviewed_at).isoformat(),  # type: ignore[union-attr]
            "before": {
                "repetitions": row.repetitions_before,
                "easeFactor": row.ease_factor_before,
                "intervalDays": row.interval_days_before,
                "masteryLevel": row.mastery_level_before,
            },
            "after": {
                "repetitions": row.repetitions_after,
                "easeFactor": row.ease_factor_after,
                "intervalDays": row.interval_days_after,
                "masteryLevel": row.mastery_level_after,
            },
        })
    return results


def get_user_stats(user: str, now: Optional[datetime.datetime] = None) -> Dict[str, Any]:
    """Overall progress: term counts by mastery, due count, average mastery, review streak."""
    now = _resolve_now(now)

    with get_session() as session:
        total = session.query(TermProgress).filter(TermProgress.user == user).count()
        mastered = (
            session.query(TermProgress)
            .filter(TermProgress.user == user, TermProgress.mastery_level >= MASTERED_THRESHOLD)
            .count()
        )
        learning = (
            session.query(TermProgress)
            .filter(
                TermProgress.user == user,
                TermProgress.mastery_level > 0,
                TermProgress.mastery_level < MASTERED_THRESHOLD,
            )
            .count()
        )
        due = (
            session.query(TermProgress)
            .filter(TermProgress.user == user, TermProgress.next_review_at <= _to_db(now))
            .count()
        )
        avg_mastery = (
            session.query(func.avg(TermProgress.mastery_level))
            .filter(TermProgress.user == user)
            .scalar()
        )
        review_times = (
            session.query(ReviewHistory.reviewed_at)
            .filter(ReviewHistory.user == user)
            .all()
        )

    review_dates = {_from_db(r.reviewed_at).date() for r in review_times}  # type: ignore[union-attr]
    current, longest = _review_streaks(review_dates, now.date())
    return {
        "total_terms": total,
        "mastered": mastered,
        "learning": learning,
        "due_for_review": due,
        "average_mastery": float(avg_mastery or 0),
        "streak": current,
        "longest_streak": longest,
    }


def _review_streaks(review_dates: set, today: datetime.date) -> Tuple[int, int]:
    # current streak (allow today or yesterday as start)
    current = 0
    check = today
    if check not in review_dates:
        check = today - datetime.timedelta(days=1)
    while check in review_dates:
        current += 1
        check -= datetime.timedelta(days=1)

    longest = 0
    if review_dates:
        sorted_dates = sorted(review_dates)
        run = 1
        for i in range(1, len(sorted_dates)):
            if sorted_dates[i] - sorted_dates[i - 1] == datetime.timedelta(days=1):
                run += 1
            else:
                longest = max(longest, run)
                run = 1
        longest = max(longest, run)
    return current, longest
