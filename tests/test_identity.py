import asyncio
import json

import httpx
import pytest

from agrismart import identity as identity_module
from agrismart.errors import ConfigurationError, IdentityError
from agrismart.identity import IdentityService


def make_service(handler, app=None, api_key="web-key"):
    return IdentityService(api_key=api_key, app=app, transport=httpx.MockTransport(handler))


def identity_error(message):
    return httpx.Response(400, json={"error": {"code": 400, "message": message, "errors": []}})


def test_sign_in_returns_user_and_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={"localId": "abc123", "email": "farmer@example.com", "displayName": "", "idToken": "id-token"},
        )

    user, token = asyncio.run(make_service(handler).sign_in("farmer@example.com", "secret123"))

    assert user.uid == "abc123"
    assert user.display_name is None
    assert token == "id-token"
    assert seen[0].url.path == "/v1/accounts:signInWithPassword"
    assert seen[0].url.params["key"] == "web-key"
    assert json.loads(seen[0].content)["returnSecureToken"] is True


def test_sign_up_sets_display_name():
    calls = []

    def handler(request):
        calls.append((request.url.path, json.loads(request.content)))
        if request.url.path.endswith("accounts:signUp"):
            return httpx.Response(200, json={"localId": "new1", "email": "new@example.com", "idToken": "first"})
        return httpx.Response(200, json={"localId": "new1", "displayName": "Ravi", "idToken": "second"})

    user, token = asyncio.run(make_service(handler).sign_up("new@example.com", "secret123", "Ravi"))

    assert user.display_name == "Ravi"
    assert token == "second"
    assert calls[1] == (
        "/v1/accounts:update",
        {"idToken": "first", "displayName": "Ravi", "returnSecureToken": True},
    )


def test_sign_up_survives_display_name_failure(caplog):
    def handler(request):
        if request.url.path.endswith("accounts:signUp"):
            return httpx.Response(200, json={"localId": "new1", "email": "new@example.com", "idToken": "first"})
        return identity_error("INVALID_ID_TOKEN")

    with caplog.at_level("WARNING", logger="agrismart.identity"):
        user, token = asyncio.run(make_service(handler).sign_up("new@example.com", "secret123", "Ravi"))

    assert user.uid == "new1"
    assert user.email == "new@example.com"
    assert user.display_name is None
    assert token == "first"
    assert "new1" in caplog.text


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("INVALID_LOGIN_CREDENTIALS", "Invalid email or password."),
        ("EMAIL_EXISTS", "An account with this email already exists."),
        ("WEAK_PASSWORD : Password should be at least 6 characters", "Password must be at least 6 characters long."),
        ("OPERATION_NOT_ALLOWED", "OPERATION_NOT_ALLOWED"),
    ],
)
def test_identity_errors_are_mapped(raw, expected):
    service = make_service(lambda request: identity_error(raw))

    with pytest.raises(IdentityError) as info:
        asyncio.run(service.sign_in("farmer@example.com", "secret123"))

    assert str(info.value) == expected
    assert info.value.code == raw.split(" : ")[0]


def test_missing_web_api_key():
    service = make_service(lambda request: httpx.Response(200), api_key=None)
    with pytest.raises(ConfigurationError):
        asyncio.run(service.sign_in("farmer@example.com", "secret123"))


def test_token_checks_need_firebase_app():
    service = make_service(lambda request: httpx.Response(200))
    with pytest.raises(ConfigurationError):
        service.verify_id_token("token")
    with pytest.raises(ConfigurationError):
        service.create_session_cookie("token")


def test_session_cookie_uses_admin_sdk(monkeypatch):
    firebase_app = object()
    captured = {}

    def fake_create_session_cookie(id_token, expires_in, app=None):
        captured.update(id_token=id_token, expires_in=expires_in, app=app)
        return "session-cookie"

    monkeypatch.setattr(identity_module.auth, "create_session_cookie", fake_create_session_cookie)
    service = IdentityService(api_key="web-key", app=firebase_app, session_days=5)

    assert service.create_session_cookie("id-token") == "session-cookie"
    assert captured["app"] is firebase_app
    assert captured["expires_in"].days == 5
