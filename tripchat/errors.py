"""Exception types shared across services and HTTP handlers."""
from __future__ import annotations

from typing import Any, Optional


class TripChatError(Exception):
    """Base class for all application errors."""


class AuthError(TripChatError):
    """Raised when sign-in, sign-up or token verification fails.

    The message is meant to be shown to the user next to the form.
    """


class BackendError(TripChatError):
    """Raised when the persistence backend returns an error status."""

    def __init__(self, status: int, message: str, response_json: Optional[dict[str, Any]] = None):
        super().__init__(f"Backend error {status}: {message}")
        self.status = status
        self.response_json = response_json or {}


class ConversationBusyError(TripChatError):
    """Raised when a send or regenerate starts while another one is in flight."""


class ImageError(TripChatError):
    """Raised for attachments that are not a usable image data URI."""
