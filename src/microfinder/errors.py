"""Error taxonomy shared by the analysis, persistence and session layers."""
from __future__ import annotations

from enum import Enum
from typing import ClassVar


class ErrorKind(str, Enum):
    """Stable identifiers callers branch on instead of matching messages."""

    NOT_AUTHENTICATED = "not_authenticated"
    NOT_AUTHORIZED_OR_NOT_FOUND = "not_authorized_or_not_found"
    NOT_FOUND = "not_found"
    ANALYSIS_TRANSPORT = "analysis_transport"
    ANALYSIS_SERVICE = "analysis_service"
    ANALYSIS_TIMEOUT = "analysis_timeout"
    ANALYSIS_MALFORMED_RESPONSE = "analysis_malformed_response"
    STORE_WRITE = "store_write"
    STORE_READ = "store_read"
    AUTHENTICATION = "authentication"
    INVALID_IMAGE = "invalid_image"
    INVALID_PROFILE = "invalid_profile"


class MicroFinderError(RuntimeError):
    """Base class for errors whose message is safe to show to the user."""

    kind: ClassVar[ErrorKind]
    default_message: ClassVar[str] = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotAuthenticatedError(MicroFinderError):
    """Raised when an operation needs a signed-in user and there is none."""

    kind = ErrorKind.NOT_AUTHENTICATED
    default_message = "You must be signed in to do that."


class NotAuthorizedOrNotFoundError(MicroFinderError):
    """Raised when a mutation matches no record owned by the current user.

    Missing records and records owned by someone else are reported the same
    way so callers cannot probe for the existence of other users' data.
    """

    kind = ErrorKind.NOT_AUTHORIZED_OR_NOT_FOUND
    default_message = "Discovery not found or you do not have access to it."


class NotFoundError(MicroFinderError):
    """Raised when a read by identifier matches no record."""

    kind = ErrorKind.NOT_FOUND
    default_message = "Discovery not found."


class AnalysisError(MicroFinderError):
    """Base class for failures of the external vision analysis call."""


class AnalysisTransportError(AnalysisError):
    kind = ErrorKind.ANALYSIS_TRANSPORT
    default_message = "Could not reach the analysis service. Check your connection and try again."


class AnalysisServiceError(AnalysisError):
    """The vision endpoint answered with a non-success status."""

    kind = ErrorKind.ANALYSIS_SERVICE

    def __init__(self, detail: str | None = None, *, status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"Analysis service error: {detail or 'unknown error'}")


class AnalysisTimeoutError(AnalysisError):
    kind = ErrorKind.ANALYSIS_TIMEOUT
    default_message = "Analysis took too long. Please try again."


class AnalysisMalformedResponseError(AnalysisError):
    kind = ErrorKind.ANALYSIS_MALFORMED_RESPONSE
    default_message = "The analysis service returned an unexpected response."


class StoreError(MicroFinderError):
    """Base class for persistence failures not covered by a more specific error."""


class StoreWriteError(StoreError):
    kind = ErrorKind.STORE_WRITE

    def __init__(self, upstream: str | None = None) -> None:
        self.upstream = upstream
        super().__init__(f"Failed to save discovery: {upstream or 'unknown error'}")


class StoreReadError(StoreError):
    kind = ErrorKind.STORE_READ

    def __init__(self, upstream: str | None = None) -> None:
        self.upstream = upstream
        super().__init__(f"Failed to load discoveries: {upstream or 'unknown error'}")


class AuthenticationError(MicroFinderError):
    """Raised when the authentication provider rejects or cannot serve a request."""

    kind = ErrorKind.AUTHENTICATION
    default_message = "Authentication failed. Please try again."


class InvalidImageError(MicroFinderError):
    kind = ErrorKind.INVALID_IMAGE
    default_message = "The selected image cannot be analysed."


class InvalidProfileError(MicroFinderError):
    kind = ErrorKind.INVALID_PROFILE
    default_message = "Username and full name are required."
