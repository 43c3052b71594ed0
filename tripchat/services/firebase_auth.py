"""Firebase Identity Toolkit REST wrapper.

The Admin SDK cannot sign users in with a password, so sign-in, sign-up and
anonymous sign-in go through the public REST endpoints with the project's web
API key. Token verification stays with the Admin SDK (see ``firebase_db``).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from tripchat.errors import AuthError, BackendError

logger = logging.getLogger(__name__)

# Identity Toolkit error codes mapped to messages shown next to the form.
_FRIENDLY_ERRORS = {
    "EMAIL_NOT_FOUND": "Account not found. Please Sign Up.",
    "INVALID_PASSWORD": "Incorrect password.",
    "INVALID_LOGIN_CREDENTIALS": "Incorrect email or password.",
    "USER_DISABLED": "This account has been disabled.",
    "EMAIL_EXISTS": "User already exists. Please Log In.",
    "OPERATION_NOT_ALLOWED": "This sign-in method is disabled.",
    "ADMIN_ONLY_OPERATION": "This sign-in method is disabled.",
    "INVALID_EMAIL": "Please enter a valid email address.",
}


class FirebaseAuthClient:  # pylint: disable=too-few-public-methods
    """Minimal async client for the Identity Toolkit ``accounts:*`` endpoints."""

    _BASE_URL = "https://identitytoolkit.googleapis.com/v1"

    def __init__(self, *, api_key: str, client: httpx.AsyncClient | None = None) -> None:
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=10.0)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def sign_in_with_password(self, email: str, password: str) -> dict[str, Any]:
        return await self._post(
            "accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )

    async def sign_up(self, email: str, password: str, display_name: str | None = None) -> dict[str, Any]:
        payload: Dict[str, Any] = {"email": email, "password": password, "returnSecureToken": True}
        if display_name:
            payload["displayName"] = display_name
        return await self._post("accounts:signUp", payload)

    async def sign_in_anonymously(self) -> dict[str, Any]:
        # accounts:signUp without credentials creates an anonymous user
        return await self._post("accounts:signUp", {"returnSecureToken": True})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._BASE_URL}/{endpoint}"
        logger.debug("POST %s", url)
        try:
            resp = await self._client.post(url, params={"key": self._api_key}, json=payload)
        except httpx.HTTPError as exc:
            raise BackendError(0, f"Auth service unreachable: {exc}") from exc

        if resp.status_code >= 400:
            err_json: Optional[dict[str, Any]]
            try:
                err_json = resp.json()
            except ValueError:
                err_json = None
            code = ((err_json or {}).get("error") or {}).get("message", "")
            # codes may carry a suffix, e.g. "WEAK_PASSWORD : Password should be ..."
            key = code.split(":", 1)[0].strip()
            if resp.status_code == 400 and key:
                raise AuthError(_FRIENDLY_ERRORS.get(key, key.replace("_", " ").capitalize()))
            raise BackendError(resp.status_code, resp.text, err_json)
        return resp.json()

    async def close(self) -> None:
        await self._client.aclose()
