"""Error taxonomy for the triage service.

Every error raised on the webhook path derives from TriageError and
carries the HTTP status code the FastAPI exception handler responds with.
Client-specific errors (GitHub, vector store, payment links, database)
subclass the category they belong to.
"""

from typing import Optional


class TriageError(Exception):
    """Base class for errors surfaced to the webhook caller.

    Attributes:
        message: Human-readable error description returned to the caller.
        status_code: HTTP status code for the response.
    """

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class AuthorizationError(TriageError):
    """Raised when a webhook signature or an engineer token is rejected."""

    status_code = 403


class NotFoundError(TriageError):
    """Raised when the customer owning a repository is unknown."""

    status_code = 500


class QuotaExceededError(TriageError):
    """Raised when a customer is over its usage limit.

    This is not a failure of the service: it gates labeling and tells the
    platform that payment is required.
    """

    status_code = 402


class UpstreamError(TriageError):
    """Raised when an external collaborator fails.

    Attributes:
        cause: The underlying exception, if any.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.cause = cause


class UpstreamTimeoutError(UpstreamError):
    """Raised when an external call exceeds its deadline."""


class ResolutionError(TriageError):
    """Raised when the model answer matches none of the repository labels.

    Attributes:
        answer: The raw model answer, kept for diagnosis.
    """

    status_code = 500

    def __init__(self, message: str, answer: str = ""):
        super().__init__(message)
        self.answer = answer
