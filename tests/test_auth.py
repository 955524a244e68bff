"""Tests for the Firebase REST authentication provider and session storage."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest

from microfinder.auth import AuthChangeEvent, FirebaseAuthProvider, InMemoryAuthProvider
from microfinder.errors import AuthenticationError
from microfinder.models.session import Session
from microfinder.storage.session_store import FileSessionStore, MemorySessionStore


class _FirebaseStub:
    """Records requests and answers like the identity toolkit endpoints."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: dict[str, httpx.Response] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        endpoint = request.url.path.rsplit("/", 1)[-1]
        if endpoint in self.responses:
            return self.responses[endpoint]
        if endpoint in {"accounts:signInWithPassword", "accounts:signUp", "accounts:signInWithIdp"}:
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "localId": "uid-123",
                    "idToken": "id-token",
                    "refreshToken": "refresh-token",
                    "expiresIn": "3600",
                    "email": body.get("email", "oauth@example.com"),
                },
            )
        if endpoint == "token":
            return httpx.Response(
                200,
                json={"id_token": "id-token-2", "refresh_token": "refresh-token-2", "expires_in": "3600", "user_id": "uid-123"},
            )
        if endpoint == "accounts:createAuthUri":
            return httpx.Response(200, json={"authUri": "https://accounts.google.com/o/oauth2/auth?x=1", "sessionId": "sess-1"})
        if endpoint == "accounts:sendOobCode":
            return httpx.Response(200, json={"email": json.loads(request.content)["email"]})
        return httpx.Response(404, json={"error": {"message": "NOT_FOUND"}})


def _provider(stub: _FirebaseStub, store=None) -> FirebaseAuthProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return FirebaseAuthProvider("web-key", http_client=client, session_store=store)


@pytest.mark.asyncio
async def test_password_sign_in_persists_and_notifies() -> None:
    stub = _FirebaseStub()
    store = MemorySessionStore()
    provider = _provider(stub, store)
    events: list[tuple[AuthChangeEvent, str | None]] = []
    provider.on_auth_state_change(lambda event, session: events.append((event, session.user_id if session else None)))

    session = await provider.sign_in_with_password("ada@example.com", "secret123")

    assert session.user_id == "uid-123"
    assert session.email == "ada@example.com"
    assert not session.is_expired()
    assert store.load() == session
    assert events == [(AuthChangeEvent.SIGNED_IN, "uid-123")]
    request = stub.requests[0]
    assert request.url.params["key"] == "web-key"
    assert json.loads(request.content)["returnSecureToken"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "code, message",
    [
        ("INVALID_LOGIN_CREDENTIALS", "Invalid email or password."),
        ("EMAIL_EXISTS", "An account with this email already exists."),
        ("WEAK_PASSWORD : Password should be at least 6 characters", "Password should be at least 6 characters."),
        ("SOMETHING_NEW", "Authentication failed: SOMETHING_NEW"),
    ],
)
async def test_provider_error_codes_become_readable_messages(code: str, message: str) -> None:
    stub = _FirebaseStub()
    stub.responses["accounts:signUp"] = httpx.Response(400, json={"error": {"code": 400, "message": code}})

    with pytest.raises(AuthenticationError) as exc_info:
        await _provider(stub).sign_up("ada@example.com", "secret123")

    assert exc_info.value.message == message


@pytest.mark.asyncio
async def test_network_failure_is_authentication_error() -> None:
    def offline(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    provider = FirebaseAuthProvider("web-key", http_client=httpx.AsyncClient(transport=httpx.MockTransport(offline)))

    with pytest.raises(AuthenticationError, match="Check your connection"):
        await provider.sign_in_with_password("ada@example.com", "secret123")


@pytest.mark.asyncio
async def test_expired_stored_session_is_refreshed_on_get_session() -> None:
    stub = _FirebaseStub()
    store = MemorySessionStore(
        Session(
            user_id="uid-123",
            access_token="stale",
            refresh_token="refresh-token",
            email="ada@example.com",
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=5),
        )
    )
    provider = _provider(stub, store)
    events: list[AuthChangeEvent] = []
    provider.on_auth_state_change(lambda event, session: events.append(event))

    session = await provider.get_session()

    assert session is not None
    assert session.access_token == "id-token-2"
    assert session.email == "ada@example.com"
    assert events == [AuthChangeEvent.TOKEN_REFRESHED]
    form = parse_qs(stub.requests[0].content.decode())
    assert form == {"grant_type": ["refresh_token"], "refresh_token": ["refresh-token"]}


@pytest.mark.asyncio
async def test_unrefreshable_session_is_discarded() -> None:
    stub = _FirebaseStub()
    stub.responses["token"] = httpx.Response(400, json={"error": {"message": "INVALID_REFRESH_TOKEN"}})
    store = MemorySessionStore(
        Session(
            user_id="uid-123",
            access_token="stale",
            refresh_token="revoked",
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=5),
        )
    )

    assert await _provider(stub, store).get_session() is None
    assert store.load() is None


@pytest.mark.asyncio
async def test_oauth_flow_exchanges_callback_for_session() -> None:
    stub = _FirebaseStub()
    provider = _provider(stub)

    redirect = await provider.sign_in_with_oauth("google", "microfinder://login")
    session = await provider.complete_oauth("microfinder://login#id_token=abc")

    assert redirect.provider == "google.com"
    assert redirect.url.startswith("https://accounts.google.com/")
    assert session.user_id == "uid-123"
    idp_body = json.loads(stub.requests[1].content)
    assert idp_body["sessionId"] == "sess-1"
    assert idp_body["requestUri"] == "microfinder://login#id_token=abc"
    with pytest.raises(AuthenticationError, match="No OAuth sign-in"):
        await provider.complete_oauth("microfinder://login")


@pytest.mark.asyncio
async def test_oauth_without_url_fails() -> None:
    stub = _FirebaseStub()
    stub.responses["accounts:createAuthUri"] = httpx.Response(200, json={})

    with pytest.raises(AuthenticationError, match="No OAuth URL"):
        await _provider(stub).sign_in_with_oauth("github", "microfinder://login")


@pytest.mark.asyncio
async def test_sign_out_clears_store_and_notifies() -> None:
    stub = _FirebaseStub()
    store = MemorySessionStore()
    provider = _provider(stub, store)
    events: list[AuthChangeEvent] = []
    await provider.sign_in_with_password("ada@example.com", "secret123")
    provider.on_auth_state_change(lambda event, session: events.append(event))

    await provider.sign_out()

    assert store.load() is None
    assert await provider.get_session() is None
    assert events == [AuthChangeEvent.SIGNED_OUT]


@pytest.mark.asyncio
async def test_password_reset_request() -> None:
    stub = _FirebaseStub()

    await _provider(stub).reset_password_for_email("ada@example.com", "microfinder://reset-password")

    body = json.loads(stub.requests[0].content)
    assert body == {
        "requestType": "PASSWORD_RESET",
        "email": "ada@example.com",
        "continueUrl": "microfinder://reset-password",
    }


@pytest.mark.asyncio
async def test_in_memory_provider_rejects_bad_sign_up() -> None:
    provider = InMemoryAuthProvider()
    await provider.sign_up("ada@example.com", "secret123")

    with pytest.raises(AuthenticationError, match="already exists"):
        await provider.sign_up("ADA@example.com", "secret123")
    with pytest.raises(AuthenticationError, match="at least 6"):
        await provider.sign_up("grace@example.com", "123")

    await provider.reset_password_for_email("nobody@example.com", "microfinder://reset-password")
    assert provider.password_reset_requests == []


def test_file_session_store_round_trips(tmp_path: Path) -> None:
    store = FileSessionStore.from_path(str(tmp_path / "auth" / "session.json"))
    session = Session(
        user_id="uid-123",
        access_token="id-token",
        refresh_token="refresh-token",
        email="ada@example.com",
        expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
    )

    assert store.load() is None
    store.save(session)

    assert FileSessionStore.from_path(str(tmp_path / "auth" / "session.json")).load() == session
    store.clear()
    assert store.load() is None


def test_file_session_store_discards_corrupt_file(tmp_path: Path) -> None:
    target = tmp_path / "session.json"
    target.write_text("{not json", encoding="utf-8")

    assert FileSessionStore(path=target).load() is None


def test_file_session_store_falls_back_to_memory(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    store = FileSessionStore(path=blocker / "session.json")
    session = Session(user_id="uid-123", access_token="id-token")

    store.save(session)

    assert store.load() == session
