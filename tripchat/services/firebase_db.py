"""Firebase backend: Realtime Database storage plus Firebase Auth.

Data is stored under the following path structure:

/profiles/{user_id}
/chats/{chat_id}                  {user_id, title, created_at}
/messages/{chat_id}/{message_id}  {content, role, kind, created_at}

``/chats`` needs ``".indexOn": ["user_id"]`` in the database rules for the
per-user session query. The Admin SDK is blocking, so every call runs in a
worker thread.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, List

import firebase_admin
from firebase_admin import auth, credentials, db

from tripchat.config import get_settings
from tripchat.errors import AuthError, BackendError
from tripchat.models import AuthResult, ChatSession, SignUpData, StoredMessage, UserProfile

from .backend import ChatBackend, Kind, Role
from .firebase_auth import FirebaseAuthClient

logger = logging.getLogger(__name__)
settings = get_settings()


def _init_app() -> None:
    """Initialise the Firebase Admin SDK exactly once."""

    if firebase_admin._apps:  # type: ignore[attr-defined]
        return
    try:
        if settings.firebase_credentials_json:
            # Accept path or JSON string
            cred_obj: credentials.Base = (
                credentials.Certificate(settings.firebase_credentials_json)
                if settings.firebase_credentials_json.endswith(".json")
                else credentials.Certificate(json.loads(settings.firebase_credentials_json))
            )
        else:
            # Attempt default credentials (useful on Cloud Run with workload identity)
            cred_obj = credentials.ApplicationDefault()

        firebase_admin.initialize_app(cred_obj, {"databaseURL": settings.database_url})
        logger.info("Firebase Admin SDK initialised.")
    except Exception as exc:  # pragma: no cover
        logger.exception("Failed to initialise Firebase Admin SDK: %s", exc)
        raise


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FirebaseDB(ChatBackend):  # pylint: disable=too-many-public-methods
    """Wrapper around Firebase Auth and Realtime Database operations."""

    name = "firebase"

    def __init__(self, auth_client: FirebaseAuthClient | None = None) -> None:
        _init_app()
        self._root = db.reference("/")
        if auth_client is None:
            if not settings.firebase_web_api_key:
                raise ValueError("FIREBASE_WEB_API_KEY is required for the firebase backend")
            auth_client = FirebaseAuthClient(api_key=settings.firebase_web_api_key)
        self._auth = auth_client
        # Guests created locally when anonymous sign-in is disabled upstream.
        self._local_guests: dict[str, UserProfile] = {}

    # -------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------

    async def get_current_user(self, token: str | None) -> UserProfile | None:
        if not token:
            return None
        if token in self._local_guests:
            return self._local_guests[token]
        try:
            claims = await asyncio.to_thread(auth.verify_id_token, token, check_revoked=True)
        except (auth.InvalidIdTokenError, auth.ExpiredIdTokenError, auth.RevokedIdTokenError) as exc:
            logger.info("Rejected id token: %s", exc)
            return None
        return await self._profile_for(
            claims["uid"],
            email=claims.get("email"),
            is_guest=claims.get("firebase", {}).get("sign_in_provider") == "anonymous",
        )

    async def sign_in(self, email: str, password: str) -> AuthResult:
        data = await self._auth.sign_in_with_password(email, password)
        user = await self._profile_for(data["localId"], email=data.get("email", email))
        return AuthResult(user=user, token=data["idToken"])

    async def sign_up(self, data: SignUpData) -> AuthResult:
        display_name = f"{data.first_name} {data.last_name}".strip() or None
        created = await self._auth.sign_up(data.email, data.password, display_name)
        user = UserProfile(
            id=created["localId"],
            email=data.email,
            first_name=data.first_name,
            last_name=data.last_name,
            usage_type=data.usage_type,
        )
        profile = user.model_dump(mode="json", exclude={"id"})
        if data.phone:
            profile["phone"] = data.phone
        try:
            await asyncio.to_thread(self._root.child("profiles").child(user.id).set, profile)
        except Exception as exc:
            # the auth account exists; the profile can be recreated from claims
            logger.error("Profile creation failed for user_id=%s: %s", user.id, exc)
        return AuthResult(user=user, token=created["idToken"])

    async def sign_in_as_guest(self) -> AuthResult:
        try:
            data = await self._auth.sign_in_anonymously()
        except (AuthError, BackendError) as exc:
            logger.warning("Anonymous login failed. Falling back to local guest: %s", exc)
            user = UserProfile(
                id=f"guest_{uuid.uuid4().hex}",
                email="guest@travel.ai",
                first_name="Guest",
                last_name="Traveler",
                is_guest=True,
            )
            token = f"guest.{uuid.uuid4().hex}"
            self._local_guests[token] = user
            return AuthResult(user=user, token=token)

        user = UserProfile(
            id=data["localId"], email="guest@anonymous", first_name="Guest", last_name="User", is_guest=True
        )
        return AuthResult(user=user, token=data["idToken"])

    async def sign_out(self, token: str | None) -> None:
        if not token:
            return
        if self._local_guests.pop(token, None) is not None:
            return
        try:
            claims = await asyncio.to_thread(auth.verify_id_token, token)
        except (auth.InvalidIdTokenError, auth.ExpiredIdTokenError) as exc:
            logger.info("Sign-out with invalid token ignored: %s", exc)
            return
        await asyncio.to_thread(auth.revoke_refresh_tokens, claims["uid"])
        logger.debug("Revoked refresh tokens for user_id=%s", claims["uid"])

    async def _profile_for(self, user_id: str, *, email: str | None, is_guest: bool = False) -> UserProfile:
        """Profile row if present, otherwise a profile derived from the email."""

        data = await asyncio.to_thread(self._root.child("profiles").child(user_id).get)
        if data:
            return UserProfile.model_validate({**data, "id": user_id, "email": data.get("email") or email})
        fallback_name = email.split("@")[0] if email else "Traveler"
        return UserProfile(id=user_id, email=email, first_name=fallback_name, is_guest=is_guest)

    # -------------------------------------------------------------------
    # Sessions & messages
    # -------------------------------------------------------------------

    async def get_sessions(self, user_id: str) -> List[ChatSession]:
        query = self._root.child("chats").order_by_child("user_id").equal_to(user_id)
        raw_items = await asyncio.to_thread(query.get) or {}
        sessions = [ChatSession.model_validate({**data, "id": key}) for key, data in raw_items.items()]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    async def create_session(self, user_id: str, title: str) -> ChatSession:
        data = {"user_id": user_id, "title": title, "created_at": _now()}
        # push() returns a reference with a generated key
        push_ref = await asyncio.to_thread(self._root.child("chats").push, data)
        logger.debug("Created chat id=%s for user_id=%s", push_ref.key, user_id)
        return ChatSession.model_validate({**data, "id": push_ref.key})

    async def get_messages(self, session_id: str) -> List[StoredMessage]:
        query = self._root.child("messages").child(session_id).order_by_child("created_at")
        raw_items = await asyncio.to_thread(query.get) or {}
        # raw_items is a dict keyed by message_id -> data
        messages = [StoredMessage.model_validate({**data, "id": key}) for key, data in raw_items.items()]
        messages.sort(key=lambda m: m.created_at)
        return messages

    async def save_message(
        self, session_id: str, content: str, role: Role, kind: Kind | None = None
    ) -> StoredMessage:
        data: dict[str, Any] = {"content": content, "role": role, "created_at": _now()}
        if kind is not None:
            data["kind"] = kind
        push_ref = await asyncio.to_thread(self._root.child("messages").child(session_id).push, data)
        logger.debug("Added message id=%s to chat_id=%s", push_ref.key, session_id)
        return StoredMessage.model_validate({**data, "id": push_ref.key})

    # -------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------

    async def get_all_users(self) -> List[UserProfile]:
        raw_items = await asyncio.to_thread(self._root.child("profiles").get) or {}
        return [UserProfile.model_validate({**data, "id": key}) for key, data in raw_items.items()]

    async def get_all_chats_count(self) -> int:
        keys = await asyncio.to_thread(self._root.child("chats").get, shallow=True) or {}
        return len(keys)
