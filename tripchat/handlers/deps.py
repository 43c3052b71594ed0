"""Shared FastAPI dependencies: backend, conversation manager and current user."""
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from tripchat.models import UserProfile
from tripchat.services.backend import ChatBackend, get_backend
from tripchat.services.chat import ChatService, ConversationManager
from tripchat.services.llm.registry import get_provider


def get_chat_backend() -> ChatBackend:
    return get_backend()


@lru_cache()
def get_manager() -> ConversationManager:
    return ConversationManager(get_backend(), get_provider)


def bearer_token(authorization: str | None = Header(None)) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


async def current_user(
    token: str | None = Depends(bearer_token),
    backend: ChatBackend = Depends(get_chat_backend),
) -> UserProfile:
    user = await backend.get_current_user(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


async def chat_service(
    user: UserProfile = Depends(current_user),
    manager: ConversationManager = Depends(get_manager),
) -> ChatService:
    service = manager.get(user.id)
    if service is None:
        service = await manager.login(user)
    return service
