"""
Tickler exception hierarchy.

Every error in the system inherits from TicklerError.
Each concern has its own error class for targeted catching.

Usage:
    try:
        await service.schedule(payload, "check weather", "tomorrow at 8am")
    except PastTimeError as e:
        # Tell the user to pick a future time
    except ParseError as e:
        # Tell the user the time phrase was not understood
    except TicklerError as e:
        # Anything else from the scheduler
"""


class TicklerError(Exception):
    """Base exception for all Tickler errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Setup Errors ━━━


class ConfigError(TicklerError):
    """Configuration is invalid, missing, or malformed."""

    pass


class ValidationError(TicklerError):
    """A scheduled intent violates a model invariant."""

    pass


# ━━━ Scheduling Errors ━━━


class ParseError(TicklerError):
    """No date or time could be extracted from a time expression."""

    def __init__(
        self,
        message: str,
        expression: str = "",
        details: dict | None = None,
    ):
        self.expression = expression
        super().__init__(message, details)


class PastTimeError(ParseError):
    """A one-off time expression resolved to a moment in the past."""

    def __init__(
        self,
        message: str,
        expression: str = "",
        resolved: float | None = None,
        details: dict | None = None,
    ):
        self.resolved = resolved
        super().__init__(message, expression, details)


class SchedulerNotStartedError(TicklerError):
    """The service was used before start() or open()."""

    pass


# ━━━ Runtime Errors ━━━


class StoreError(TicklerError):
    """Intent store failure: a database error or a duplicate id."""

    pass


class ExecutionError(TicklerError):
    """The executor callback failed or timed out for a fired intent."""

    def __init__(
        self,
        message: str,
        intent_id: str = "",
        timed_out: bool = False,
        details: dict | None = None,
    ):
        self.intent_id = intent_id
        self.timed_out = timed_out
        super().__init__(message, details)


class RehydrationError(TicklerError):
    """Active intents could not be restored at startup. Fatal."""

    pass
