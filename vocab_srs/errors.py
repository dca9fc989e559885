class SchedulingError(Exception):
    """Base class for errors raised by the scheduling core."""


class ValidationError(SchedulingError, ValueError):
    """Malformed input, rejected before any state is touched."""


class NotFoundError(SchedulingError, LookupError):
    """No schedule row exists for the (user, term) pair."""

    def __init__(self, user: str, term_id: str) -> None:
        super().__init__(f"No progress for term '{term_id}' (user '{user}')")
        self.user = user
        self.term_id = term_id


class ConflictError(SchedulingError):
    """A concurrent review already updated this row; redo the whole cycle."""

    def __init__(self, user: str, term_id: str) -> None:
        super().__init__(f"Concurrent update on term '{term_id}' (user '{user}'), please retry")
        self.user = user
        self.term_id = term_id
