"""Exception taxonomy for the intake engine.

Response malformation and merge type mismatches are recovered in-engine
and never raised. The classes below cover the failure modes that are
surfaced to callers.
"""

RETRY_MESSAGE = "Something went wrong while saving your intake. Please try again."


class IntakeError(Exception):
    """Base class for surfaced intake failures."""


class SessionNotFoundError(IntakeError, LookupError):
    """No intake session exists for the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"intake session {session_id} not found")
        self.session_id = session_id


class InvalidTransitionError(IntakeError, ValueError):
    """A status change not permitted by the session state machine."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot move intake session from {current} to {target}")
        self.current = current
        self.target = target


class VitalsValidationError(IntakeError, ValueError):
    """Vitals readings outside physiologic bounds.

    Raised before triage assessment runs. Distinct from an emergency
    triage outcome.

    Attributes:
        errors: Field name to validation message.
    """

    def __init__(self, errors: dict[str, str]) -> None:
        detail = "; ".join(f"{field}: {message}" for field, message in errors.items())
        super().__init__(f"invalid vitals: {detail}")
        self.errors = dict(errors)


class IntakeTransactionError(IntakeError):
    """A store transaction failed and was rolled back.

    The session is left in its pre-transaction state.

    Attributes:
        retryable: Whether the caller may safely retry.
        user_message: Generic message for the booking/session UI.
    """

    retryable = True
    user_message = RETRY_MESSAGE

    def __init__(self, operation: str, session_id: str) -> None:
        super().__init__(f"{operation} failed for intake session {session_id}")
        self.operation = operation
        self.session_id = session_id


class ConcurrentUpdateError(IntakeTransactionError):
    """Another writer changed the session since it was read."""
