"""Persistence adapter interface.

Authentication, session and message storage and the admin counters live
behind this interface. The chat service treats every call as an async
operation that may fail.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from functools import lru_cache
from typing import List, Literal

from tripchat.config import get_settings
from tripchat.models import AuthResult, ChatSession, SignUpData, StoredMessage, UserProfile

Role = Literal["user", "ai"]
Kind = Literal["text", "itinerary"]


class ChatBackend(ABC):
    """Abstract backend-as-a-service adapter."""

    name: str = "abstract"

    # --- Auth ---

    @abstractmethod
    async def get_current_user(self, token: str | None) -> UserProfile | None:
        """Resolve a bearer token to its user, or ``None`` if not signed in."""

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthResult:
        """Raises ``AuthError`` with a user-facing message on failure."""

    @abstractmethod
    async def sign_up(self, data: SignUpData) -> AuthResult:
        ...

    @abstractmethod
    async def sign_in_as_guest(self) -> AuthResult:
        ...

    @abstractmethod
    async def sign_out(self, token: str | None) -> None:
        ...

    # --- Data ---

    @abstractmethod
    async def get_sessions(self, user_id: str) -> List[ChatSession]:
        """Sessions owned by *user_id*, newest first."""

    @abstractmethod
    async def create_session(self, user_id: str, title: str) -> ChatSession:
        ...

    @abstractmethod
    async def get_messages(self, session_id: str) -> List[StoredMessage]:
        """Messages of *session_id*, oldest first."""

    @abstractmethod
    async def save_message(
        self, session_id: str, content: str, role: Role, kind: Kind | None = None
    ) -> StoredMessage:
        ...

    # --- Admin ---

    @abstractmethod
    async def get_all_users(self) -> List[UserProfile]:
        ...

    @abstractmethod
    async def get_all_chats_count(self) -> int:
        ...


@lru_cache()
def get_backend() -> ChatBackend:
    settings = get_settings()
    key = settings.backend.lower()
    if key == "firebase":
        from tripchat.services.firebase_db import FirebaseDB

        return FirebaseDB()
    if key == "local":
        from tripchat.services.local_db import LocalDB

        return LocalDB(settings.local_db_path)
    raise ValueError(f"Unsupported chat backend: {key}")
