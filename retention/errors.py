"""Exception types raised by the retention engine."""


class RetentionError(Exception):
    """Base class for engine errors."""


class ValidationError(RetentionError, ValueError):
    """
    Request rejected before any state was touched.

    The message is meant to be shown to the caller as-is.
    """


class UnknownOutcomeError(ValidationError):
    """Outcome id is not in the outcome catalog."""

    def __init__(self, outcome_id: str):
        self.outcome_id = outcome_id
        super().__init__(f"Unknown outcome id: {outcome_id!r}")


class NotFoundError(RetentionError, LookupError):
    """Referenced record does not exist."""


class ConflictError(RetentionError):
    """
    Concurrent write could not be resolved within the retry budget.

    Transient: the caller may retry the whole request.
    """

    def __init__(self, client_id: str, attempts: int):
        self.client_id = client_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent update on client {client_id!r} still conflicting "
            f"after {attempts} attempts"
        )


class AttributeSourceError(RetentionError):
    """The client attribute source is unavailable or failed for a client."""


class TaskSourceError(RetentionError):
    """The external task signal could not be read."""
