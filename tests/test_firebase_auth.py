import httpx
import pytest

from tripchat.errors import AuthError, BackendError
from tripchat.services.firebase_auth import FirebaseAuthClient


def _client(handler):
    return FirebaseAuthClient(api_key="web-key", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def test_sign_in_posts_credentials():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = request.read()
        return httpx.Response(200, json={"localId": "u1", "idToken": "tok"})

    result = await _client(handler).sign_in_with_password("ana@example.com", "secret1")

    assert result["idToken"] == "tok"
    assert "accounts:signInWithPassword" in seen["url"]
    assert "key=web-key" in seen["url"]
    assert b'"returnSecureToken":true' in seen["body"].replace(b" ", b"")


@pytest.mark.parametrize(
    "code, message",
    [
        ("EMAIL_NOT_FOUND", "Account not found. Please Sign Up."),
        ("EMAIL_EXISTS", "User already exists. Please Log In."),
        ("WEAK_PASSWORD : Password should be at least 6 characters", "Weak password"),
    ],
)
async def test_identity_errors_become_auth_errors(code, message):
    def handler(request):
        return httpx.Response(400, json={"error": {"code": 400, "message": code}})

    with pytest.raises(AuthError) as info:
        await _client(handler).sign_up("ana@example.com", "secret1")
    assert str(info.value) == message


async def test_server_errors_become_backend_errors():
    def handler(request):
        return httpx.Response(503, text="unavailable")

    with pytest.raises(BackendError) as info:
        await _client(handler).sign_in_anonymously()
    assert info.value.status == 503


async def test_network_errors_become_backend_errors():
    def handler(request):
        raise httpx.ConnectError("no route", request=request)

    with pytest.raises(BackendError) as info:
        await _client(handler).sign_in_anonymously()
    assert info.value.status == 0


class _RejectingAuth:
    async def sign_in_anonymously(self):
        raise AuthError("This sign-in method is disabled.")


async def test_guest_falls_back_to_local_user(monkeypatch):
    from tripchat.services import firebase_db

    monkeypatch.setattr(firebase_db, "_init_app", lambda: None)
    monkeypatch.setattr(firebase_db.db, "reference", lambda path: object())
    backend = firebase_db.FirebaseDB(auth_client=_RejectingAuth())

    result = await backend.sign_in_as_guest()

    assert result.user.is_guest is True
    assert result.user.id.startswith("guest_")
    assert await backend.get_current_user(result.token) == result.user
    await backend.sign_out(result.token)
    assert result.token not in backend._local_guests
