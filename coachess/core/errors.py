"""Exception taxonomy shared by every client component.

Errors propagate to the caller; nothing here retries or recovers.
"""

from __future__ import annotations

from typing import Any


class CoachessError(Exception):
    """Base class for all client errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotAuthenticated(CoachessError):
    """No usable session was available before a call was attempted."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class AuthError(CoachessError):
    """The identity endpoint rejected credentials, registration or a refresh."""

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class RateLimited(AuthError):
    """The identity endpoint is throttling requests."""


class RequestFailed(CoachessError):
    """A non-success response from the resource endpoint."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        code: str | None = None,
        hint: str | None = None,
        body: Any = None,
    ):
        self.status_code = status_code
        self.code = code
        self.hint = hint
        self.body = body
        super().__init__(message)


class RealtimeTransportError(CoachessError):
    """Socket-level failure of the realtime channel."""


class InviteError(CoachessError):
    """An invite could not be created or accepted."""


class AssignmentError(CoachessError):
    """An assignment violates the coach/content/player rules."""


class InvalidPosition(CoachessError, ValueError):
    """PGN or FEN text the rules library refuses."""
