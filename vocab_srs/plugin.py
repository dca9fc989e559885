from . import db
from typing import Any, Optional

import llm  # type: ignore

hookimpl = llm.hookimpl  # type: ignore


@hookimpl  # type: ignore[misc]
def register_commands(cli: Any) -> None:
    import click
    from .errors import SchedulingError
    from .quality import describe_quality
    from .structured import ExerciseOutcome

    def echo_state(state: Any) -> None:
        next_review = state.next_review_at.strftime("%Y-%m-%d %H:%M UTC") if state.next_review_at else "-"
        click.echo(f"  Term: {state.term_id}")
        click.echo(f"  Repetitions: {state.repetitions}")
        click.echo(f"  Ease factor: {state.ease_factor:.2f}")
        click.echo(f"  Interval: {state.interval_days} day(s)")
        click.echo(f"  Next review: {next_review}")
        click.echo(f"  Mastery: {state.mastery_level}/100")

    @cli.command("srs-init-db")  # type: ignore[misc]
    def init_db() -> None:
        """Initialize the spaced repetition database."""
        db.init_db()
        click.echo("Database initialized.")

    @cli.command("srs-discover")  # type: ignore[misc]
    @click.argument("term_id")
    @click.option("--user", default="default_user", help="Learner name")
    def discover(term_id: str, user: str) -> None:
        """Start tracking a term the learner has just seen."""
        try:
            state = db.discover_term(user, term_id)
        except SchedulingError as e:
            click.echo(f"Error: {e}")
            return
        click.echo(f"Term '{term_id}' is being tracked.")
        echo_state(state)

    @cli.command("srs-review")  # type: ignore[misc]
    @click.argument("term_id")
    @click.argument("quality", type=int)
    @click.option("--user", default="default_user", help="Learner name")
    @click.option("--response-time-ms", type=int, default=None, help="Time taken to answer")
    @click.option("--discover", "auto_discover", is_flag=True, help="Start tracking the term if it is new")
    def review(term_id: str, quality: int, user: str, response_time_ms: Optional[int], auto_discover: bool) -> None:
        """Record a review (quality 0-5) and reschedule the term."""
        if quality < 0 or quality > 5:
            click.echo("Quality must be between 0-5 (0=forgot, 3=remembered with effort, 5=easy)")
            return
        try:
            state = db.submit_review(
                user, term_id, quality,
                response_time_ms=response_time_ms,
                auto_discover=auto_discover or None,
            )
        except SchedulingError as e:
            click.echo(f"Error: {e}")
            return

        click.echo(f"{describe_quality(quality)} (Quality: {quality}/5)")
        if quality >= 3:
            click.echo(f"Good! '{term_id}' scheduled in {state.interval_days} day(s).")
        else:
            click.echo(f"That's okay! '{term_id}' will be reviewed again tomorrow.")
        echo_state(state)

    @cli.command("srs-exercise")  # type: ignore[misc]
    @click.argument("term_ids", nargs=-1, required=True)
    @click.option("--user", default="default_user", help="Learner name")
    @click.option("--kind", default="visual_identification", help="Exercise kind, e.g. term_matching")
    @click.option("--correct/--incorrect", default=True, help="Whether the exercise was answered correctly")
    @click.option("--score", type=float, default=None, help="Score between 0 and 1 (default 1 if correct else 0)")
    @click.option("--time-ms", type=int, default=None, help="Time taken in milliseconds")
    @click.option("--hints", type=int, default=None, help="Number of hints used")
    @click.option("--completed", type=int, default=None, help="Sub-items completed (composite exercises)")
    @click.option("--total", type=int, default=None, help="Total sub-items (composite exercises)")
    def exercise(term_ids: Any, user: str, kind: str, correct: bool, score: Optional[float],
                 time_ms: Optional[int], hints: Optional[int],
                 completed: Optional[int], total: Optional[int]) -> None:
        """Grade a raw exercise result and reschedule every term it covered."""
        outcome = ExerciseOutcome(
            correct=correct,
            score=score if score is not None else (1.0 if correct else 0.0),
            exercise_kind=kind,
            time_taken_ms=time_ms,
            hints_used=hints,
            completed=completed,
            total=total,
        )
        try:
            quality, states = db.submit_exercise_outcome(user, list(term_ids), outcome)
        except SchedulingError as e:
            click.echo(f"Error: {e}")
            return

        click.echo(f"{describe_quality(quality)} (Quality: {quality}/5)")
        for state in states:
            echo_state(state)

    @cli.command("srs-due")  # type: ignore[misc]
    @click.option("--user", default="default_user", help="Learner name")
    @click.option("--limit", type=int, default=20, help="Maximum number of terms to list")
    def due(user: str, limit: int) -> None:
        """List terms due for review, most overdue first."""
        try:
            states = db.list_due_terms(user, limit=limit)
        except SchedulingError as e:
            click.echo(f"Error: {e}")
            return
        if not states:
            click.echo("No terms are due for review! All caught up!")
            return
        click.echo(f"{len(states)} term(s) due:")
        for state in states:
            click.echo(f"  {state.term_id}  (due {state.next_review_at:%Y-%m-%d %H:%M}, interval {state.interval_days}d)")

    @cli.command("srs-term")  # type: ignore[misc]
    @click.argument("term_id")
    @click.option("--user", default="default_user", help="Learner name")
    def term(term_id: str, user: str) -> None:
        """Show the schedule of a single term."""
        try:
            state = db.get_term_progress(user, term_id)
        except SchedulingError as e:
            click.echo(f"Error: {e}")
            return
        echo_state(state)
        click.echo(f"  Correct/incorrect: {state.times_correct}/{state.times_incorrect}")

    @cli.command("srs-stats")  # type: ignore[misc]
    @click.option("--user", default="default_user", help="Learner name")
    def stats(user: str) -> None:
        """Show overall progress for a learner."""
        result = db.get_user_stats(user)
        click.echo(f"Progress for {user}:")
        click.echo(f"  Terms tracked: {result['total_terms']}")
        click.echo(f"  Mastered: {result['mastered']}")
        click.echo(f"  Learning: {result['learning']}")
        click.echo(f"  Due for review: {result['due_for_review']}")
        click.echo(f"  Average mastery: {result['average_mastery']:.1f}")
        click.echo(f"  Streak: {result['streak']} day(s) (longest {result['longest_streak']})")

    @cli.command("srs-reset")  # type: ignore[misc]
    @click.argument("term_id")
    @click.option("--user", default="default_user", help="Learner name")
    @click.confirmation_option(prompt="Reset all scheduling progress for this term?")
    def reset(term_id: str, user: str) -> None:
        """Reset a term to its just-discovered state."""
        try:
            state = db.reset_term_progress(user, term_id)
        except SchedulingError as e:
            click.echo(f"Error: {e}")
            return
        click.echo(f"Progress for '{term_id}' reset.")
        echo_state(state)
