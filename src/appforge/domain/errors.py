"""Error taxonomy shared by the HTTP controllers and the agent operations.

Quota and security errors must reach a caller that can abort the session;
everything raised during a conversational turn is otherwise recovered locally.
"""

from __future__ import annotations

from typing import Optional


class AppForgeError(Exception):
    """Base class for every error raised on purpose by this package."""


class InvalidRequestError(AppForgeError):
    """Malformed or missing request fields (HTTP 400)."""

    status_code = 400


class RateLimitExceededError(AppForgeError):
    """Rate or usage limit reached (HTTP 429)."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", retry_after_seconds: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.retry_after_seconds = retry_after_seconds


class SecurityError(AppForgeError):
    """Policy or safety rejection. Never degraded into a fallback."""

    status_code = 403


class InferenceError(AppForgeError):
    """Failure from the inference call or a tool it dispatched."""

    status_code = 502


class ProjectUpdateSummaryError(AppForgeError):
    """Failure while synthesizing a project-update memo."""


PROPAGATING_ERRORS = (RateLimitExceededError, SecurityError)
