"""JSON-file backend for local development and tests.

Everything lives in a single document:

    {"users": [...], "tokens": {token: user_id}, "chats": [...], "messages": [...]}

Pass ``path=None`` to keep the document in memory only.
"""
from __future__ import annotations

import asyncio
import json
import logging
import secrets
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List

import bcrypt

from tripchat.errors import AuthError
from tripchat.models import AuthResult, ChatSession, SignUpData, StoredMessage, UserProfile

from .backend import ChatBackend, Kind, Role

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalDB(ChatBackend):
    name = "local"

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._lock = asyncio.Lock()
        self._data: dict[str, Any] = {"users": [], "tokens": {}, "chats": [], "messages": []}
        if self._path is not None and self._path.exists():
            self._data.update(json.loads(self._path.read_text(encoding="utf-8")))
            logger.info("Loaded local chat store from %s", self._path)

    def _flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._data, indent=2), encoding="utf-8")

    def _issue_token(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        self._data["tokens"][token] = user_id
        return token

    @staticmethod
    def _profile(row: dict[str, Any]) -> UserProfile:
        return UserProfile.model_validate({k: v for k, v in row.items() if k != "password_hash"})

    # -------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------

    async def get_current_user(self, token: str | None) -> UserProfile | None:
        if not token:
            return None
        user_id = self._data["tokens"].get(token)
        if user_id is None:
            return None
        for row in self._data["users"]:
            if row["id"] == user_id:
                return self._profile(row)
        return None

    async def sign_in(self, email: str, password: str) -> AuthResult:
        async with self._lock:
            row = next((u for u in self._data["users"] if u.get("email") == email), None)
            if row is None:
                raise AuthError("Account not found. Please Sign Up.")
            if not bcrypt.checkpw(password.encode("utf-8"), row["password_hash"].encode("utf-8")):
                raise AuthError("Incorrect password.")
            token = self._issue_token(row["id"])
            self._flush()
        return AuthResult(user=self._profile(row), token=token)

    async def sign_up(self, data: SignUpData) -> AuthResult:
        async with self._lock:
            if any(u.get("email") == data.email for u in self._data["users"]):
                raise AuthError("User already exists. Please Log In.")
            row = {
                "id": uuid.uuid4().hex,
                "email": data.email,
                "first_name": data.first_name,
                "last_name": data.last_name,
                "usage_type": data.usage_type,
                "is_guest": False,
                "password_hash": bcrypt.hashpw(data.password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8"),
            }
            self._data["users"].append(row)
            token = self._issue_token(row["id"])
            self._flush()
        logger.info("Created local user id=%s", row["id"])
        return AuthResult(user=self._profile(row), token=token)

    async def sign_in_as_guest(self) -> AuthResult:
        async with self._lock:
            row = {
                "id": f"guest_{uuid.uuid4().hex}",
                "email": "guest@travel.ai",
                "first_name": "Guest",
                "last_name": "Traveler",
                "usage_type": "personal",
                "is_guest": True,
            }
            self._data["users"].append(row)
            token = self._issue_token(row["id"])
            self._flush()
        return AuthResult(user=self._profile(row), token=token)

    async def sign_out(self, token: str | None) -> None:
        async with self._lock:
            if token and self._data["tokens"].pop(token, None) is not None:
                self._flush()

    # -------------------------------------------------------------------
    # Sessions & messages
    # -------------------------------------------------------------------

    async def get_sessions(self, user_id: str) -> List[ChatSession]:
        rows = [c for c in self._data["chats"] if c["user_id"] == user_id]
        # chats are stored newest first, the stable sort keeps that on ties
        rows.sort(key=lambda c: c["created_at"], reverse=True)
        return [ChatSession.model_validate(r) for r in rows]

    async def create_session(self, user_id: str, title: str) -> ChatSession:
        async with self._lock:
            row = {"id": uuid.uuid4().hex, "user_id": user_id, "title": title, "created_at": _now()}
            self._data["chats"].insert(0, row)
            self._flush()
        return ChatSession.model_validate(row)

    async def get_messages(self, session_id: str) -> List[StoredMessage]:
        rows = [m for m in self._data["messages"] if m["chat_id"] == session_id]
        rows.sort(key=lambda m: m["created_at"])
        return [StoredMessage.model_validate(r) for r in rows]

    async def save_message(
        self, session_id: str, content: str, role: Role, kind: Kind | None = None
    ) -> StoredMessage:
        async with self._lock:
            row = {
                "id": uuid.uuid4().hex,
                "chat_id": session_id,
                "content": content,
                "role": role,
                "kind": kind,
                "created_at": _now(),
            }
            self._data["messages"].append(row)
            self._flush()
        logger.debug("Saved %s message to chat_id=%s", role, session_id)
        return StoredMessage.model_validate(row)

    # -------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------

    async def get_all_users(self) -> List[UserProfile]:
        return [self._profile(u) for u in self._data["users"]]

    async def get_all_chats_count(self) -> int:
        return len(self._data["chats"])
