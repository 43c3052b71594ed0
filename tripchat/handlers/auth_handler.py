"""Sign-in, sign-up, guest access and logout."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from tripchat.errors import AuthError, BackendError
from tripchat.models import AuthResult, SignUpData, UserProfile
from tripchat.services.backend import ChatBackend
from tripchat.services.chat import ConversationManager

from .deps import bearer_token, current_user, get_chat_backend, get_manager

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class LoginIn(BaseModel):
    email: str
    password: str


def _user_out(user: UserProfile) -> dict[str, Any]:
    return {**user.model_dump(mode="json"), "display_name": user.display_name}


async def _signed_in(result: AuthResult, manager: ConversationManager) -> dict[str, Any]:
    await manager.login(result.user)
    return {"token": result.token, "user": _user_out(result.user)}


def _auth_failure(exc: Exception) -> HTTPException:
    if isinstance(exc, AuthError):
        return HTTPException(status_code=401, detail=str(exc))
    logger.error("Auth backend failure: %s", exc)
    return HTTPException(status_code=502, detail="The sign-in service is unavailable. Please try again.")


@router.post("/login")
async def login(
    data: LoginIn,
    backend: ChatBackend = Depends(get_chat_backend),
    manager: ConversationManager = Depends(get_manager),
):
    try:
        result = await backend.sign_in(data.email, data.password)
    except (AuthError, BackendError) as exc:
        raise _auth_failure(exc) from exc
    return await _signed_in(result, manager)


@router.post("/signup")
async def signup(
    data: SignUpData,
    backend: ChatBackend = Depends(get_chat_backend),
    manager: ConversationManager = Depends(get_manager),
):
    try:
        result = await backend.sign_up(data)
    except (AuthError, BackendError) as exc:
        raise _auth_failure(exc) from exc
    return await _signed_in(result, manager)


@router.post("/guest")
async def guest(
    backend: ChatBackend = Depends(get_chat_backend),
    manager: ConversationManager = Depends(get_manager),
):
    try:
        result = await backend.sign_in_as_guest()
    except (AuthError, BackendError) as exc:
        raise _auth_failure(exc) from exc
    return await _signed_in(result, manager)


@router.post("/logout")
async def logout(
    user: UserProfile = Depends(current_user),
    token: str | None = Depends(bearer_token),
    backend: ChatBackend = Depends(get_chat_backend),
    manager: ConversationManager = Depends(get_manager),
):
    manager.logout(user.id)
    try:
        await backend.sign_out(token)
    except Exception as exc:
        logger.warning("Sign-out failed for user_id=%s: %s", user.id, exc)
    return {"status": "signed_out"}


@router.get("/me")
async def me(user: UserProfile = Depends(current_user)):
    return _user_out(user)
