"""Exception taxonomy for the RepoNest integration.

Defines a small hierarchy of exceptions used by the library core, services
and the WebSocket API. These extend Home Assistant's HomeAssistantError to
ensure consistent behavior when surfaced through the platform.

All exceptions accept a human-readable message. ``str(exception)`` returns the
message unchanged.
"""

from __future__ import annotations

from homeassistant.exceptions import HomeAssistantError


class RepoNestError(HomeAssistantError):
    """Base exception for RepoNest-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(RepoNestError):
    """Raised when a name, URL or id fails validation.

    ``code`` is a stable machine-readable reason such as ``empty-name``,
    ``missing-url``, ``bad-scheme`` or ``duplicate-id``.
    """

    def __init__(self, message: str, *, code: str = "invalid") -> None:
        super().__init__(message)
        self.code = code


class NotFoundError(RepoNestError):
    """Raised when a requested folder or repo does not exist."""


class ParseError(RepoNestError):
    """Raised when a library document cannot be decoded."""


class StorageError(RepoNestError):
    """Raised when storage operations fail or data is corrupted."""


class NoDataError(RepoNestError):
    """Raised when neither a persisted nor a seed document is available."""
