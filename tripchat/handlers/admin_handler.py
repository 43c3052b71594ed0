"""Administrative reporting: registered users and total chat count."""
from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException

from tripchat.config import Settings, get_settings
from tripchat.models import UserProfile
from tripchat.services.backend import ChatBackend

from .deps import current_user, get_chat_backend

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


def _check_admin(user: UserProfile, settings: Settings) -> None:
    allowed = {email.lower() for email in settings.admin_emails}
    if not user.email or user.email.lower() not in allowed:
        raise HTTPException(status_code=403, detail="Forbidden")


@router.get("/stats")
async def stats(
    user: UserProfile = Depends(current_user),
    backend: ChatBackend = Depends(get_chat_backend),
    settings: Settings = Depends(get_settings),
):
    _check_admin(user, settings)
    try:
        users, chats_count = await asyncio.gather(backend.get_all_users(), backend.get_all_chats_count())
    except Exception as exc:
        logger.exception("Admin stats failed: %s", exc)
        raise HTTPException(status_code=502, detail="Could not load statistics") from exc
    return {
        "users": [{**u.model_dump(mode="json"), "display_name": u.display_name} for u in users],
        "users_count": len(users),
        "chats_count": chats_count,
    }
