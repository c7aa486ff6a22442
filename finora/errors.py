"""
Error taxonomy for Finora.

DESIGN DECISION: Identity and ownership failures (Unauthorized, NotFound)
are raised and fail fast. Every other FinoraError is caught at the service
boundary and returned to the caller as a failed ActionResult, carrying the
error's `code` so callers can branch without parsing messages.
"""


class FinoraError(Exception):
    """Base exception for all domain errors."""

    code = "ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class Unauthorized(FinoraError):
    """No authenticated identity was supplied."""

    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFound(FinoraError):
    """Entity is missing or not owned by the caller."""

    code = "NOT_FOUND"


class InvalidInput(FinoraError):
    """Unparseable amount/date, non-positive or over-precise amount."""

    code = "INVALID_INPUT"


class UnresolvableSchema(FinoraError):
    """Import could not locate the date and amount columns."""

    code = "UNRESOLVABLE_SCHEMA"

    def __init__(
        self,
        message: str = "Could not identify date and amount columns in the file",
    ):
        super().__init__(message)


class CouldNotExtract(FinoraError):
    """AI response was empty or could not be parsed."""

    code = "COULD_NOT_EXTRACT"


class PartialFailure(FinoraError):
    """A multi-row operation could not complete atomically and was rolled back."""

    code = "PARTIAL_FAILURE"
