"""
Error taxonomy for ceremony and repository failures.

Every error carries a ``public_message`` that is safe to return to a caller;
anything more detailed belongs in the server-side log only.
"""

from typing import Optional


class FidogateError(Exception):
    """Base class for all expected failures."""

    status_code: int = 400
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None):
        self.public_message = message or self.default_message
        super().__init__(self.public_message)


class ValidationError(FidogateError):
    status_code = 400
    default_message = "Invalid input"


class UnauthorizedCeremonyError(FidogateError):
    """Unknown user handle or unknown credential during authentication."""

    status_code = 401
    default_message = "Authentication failed"


class ForbiddenError(FidogateError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(FidogateError):
    status_code = 404
    default_message = "Not found"


class ExpiredChallengeError(FidogateError):
    """The ceremony challenge is missing, expired or already consumed."""

    status_code = 400
    default_message = "Ceremony challenge not found or expired"


class CeremonyFailedError(FidogateError):
    """The verification engine rejected an attestation or assertion."""

    status_code = 401
    default_message = "Ceremony verification failed"

    def __init__(self, message: Optional[str] = None, inner_message: Optional[str] = None):
        self.inner_message = inner_message
        if message and inner_message:
            message = f"{message} ({inner_message})"
        super().__init__(message)


class ReplaySuspectedError(FidogateError):
    """The signature counter did not advance; the credential may be cloned."""

    status_code = 401
    default_message = "Signature counter did not increase"


class ConflictError(FidogateError):
    status_code = 409
    default_message = "Conflict"


class InternalError(FidogateError):
    status_code = 500
    default_message = "Internal server error"


# Ceremony failures that anonymous flows collapse into one outcome
ANONYMOUS_CEREMONY_ERRORS = (
    UnauthorizedCeremonyError,
    ExpiredChallengeError,
    CeremonyFailedError,
    ReplaySuspectedError,
    ConflictError,
)
