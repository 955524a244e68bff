"""Authentication providers backing the session gate."""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Tuple
from urllib.parse import parse_qs, urlencode, urlparse
from uuid import uuid4

import httpx

from microfinder.errors import AuthenticationError
from microfinder.models.session import Session
from microfinder.storage.session_store import MemorySessionStore, SessionStore

logger = logging.getLogger(__name__)


class AuthChangeEvent(str, Enum):
    """Session changes pushed to subscribers."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


AuthListener = Callable[[AuthChangeEvent, "Session | None"], None]


@dataclass(slots=True, frozen=True)
class OAuthRedirect:
    """Where to send the user to continue an OAuth sign-in."""

    provider: str
    url: str


class AuthSubscription:
    """Handle returned by :meth:`AuthProvider.on_auth_state_change`."""

    def __init__(self, provider: "AuthProvider", token: int) -> None:
        self._provider = provider
        self._token = token
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._provider._listeners.pop(self._token, None)
            self.active = False


class AuthProvider(ABC):
    """Interface to the service that issues and refreshes sessions."""

    def __init__(self) -> None:
        self._listeners: Dict[int, AuthListener] = {}
        self._next_token = 0

    @abstractmethod
    async def get_session(self) -> Session | None:  # pragma: no cover - interface stub
        """Return the current session, restoring or refreshing it when possible."""

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> Session:  # pragma: no cover - interface stub
        ...

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> Session:  # pragma: no cover - interface stub
        ...

    @abstractmethod
    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> OAuthRedirect:  # pragma: no cover - interface stub
        """Start an OAuth flow and return the URL the user must open."""

    @abstractmethod
    async def complete_oauth(self, callback_url: str) -> Session:  # pragma: no cover - interface stub
        """Exchange the redirect the OAuth flow came back with for a session."""

    @abstractmethod
    async def sign_out(self) -> None:  # pragma: no cover - interface stub
        ...

    @abstractmethod
    async def refresh_session(self) -> Session | None:  # pragma: no cover - interface stub
        ...

    @abstractmethod
    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:  # pragma: no cover - interface stub
        ...

    async def aclose(self) -> None:
        """Release network resources held by the provider."""

    def on_auth_state_change(self, callback: AuthListener) -> AuthSubscription:
        """Register ``callback`` for every subsequent session change."""

        token = self._next_token
        self._next_token += 1
        self._listeners[token] = callback
        return AuthSubscription(self, token)

    def _emit(self, event: AuthChangeEvent, session: Session | None) -> None:
        logger.debug("Auth state changed: %s", event.value)
        for listener in list(self._listeners.values()):
            listener(event, session)


_OAUTH_PROVIDER_IDS = {
    "google": "google.com",
    "apple": "apple.com",
    "github": "github.com",
    "facebook": "facebook.com",
    "twitter": "twitter.com",
    "microsoft": "microsoft.com",
}

_FIREBASE_ERROR_MESSAGES = {
    "EMAIL_NOT_FOUND": "Invalid email or password.",
    "INVALID_PASSWORD": "Invalid email or password.",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password.",
    "INVALID_EMAIL": "Please enter a valid email address.",
    "EMAIL_EXISTS": "An account with this email already exists.",
    "WEAK_PASSWORD": "Password should be at least 6 characters.",
    "USER_DISABLED": "This account has been disabled.",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts. Please try again later.",
    "TOKEN_EXPIRED": "Your session has expired. Please sign in again.",
    "INVALID_REFRESH_TOKEN": "Your session has expired. Please sign in again.",
    "USER_NOT_FOUND": "Your session has expired. Please sign in again.",
}


class FirebaseAuthProvider(AuthProvider):
    """Client-side Firebase Authentication through its REST API."""

    IDENTITY_URL = "https://identitytoolkit.googleapis.com/v1"
    TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

    def __init__(
        self,
        api_key: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        session_store: SessionStore | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__()
        if not api_key:
            raise ValueError("Firebase web API key is not configured")
        self._api_key = api_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()
        self._store = session_store or MemorySessionStore()
        self._timeout = timeout_seconds
        self._session: Session | None = None
        self._pending_oauth_session: str | None = None

    async def get_session(self) -> Session | None:
        session = self._session or self._store.load()
        if session is None:
            return None
        if session.is_expired():
            if not session.refresh_token:
                self._discard()
                return None
            try:
                return await self._refresh(session)
            except AuthenticationError:
                logger.info("Stored session could not be refreshed; signing out locally")
                self._discard()
                return None
        self._session = session
        return session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        data = await self._post(
            "accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return self._establish(self._session_from_identity(data), AuthChangeEvent.SIGNED_IN)

    async def sign_up(self, email: str, password: str) -> Session:
        data = await self._post(
            "accounts:signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return self._establish(self._session_from_identity(data), AuthChangeEvent.SIGNED_IN)

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> OAuthRedirect:
        provider_id = _OAUTH_PROVIDER_IDS.get(provider.lower(), provider)
        logger.info("Starting OAuth sign-in with provider %s", provider_id)
        data = await self._post(
            "accounts:createAuthUri",
            {"providerId": provider_id, "continueUri": redirect_to},
        )
        auth_uri = data.get("authUri")
        if not auth_uri:
            raise AuthenticationError("No OAuth URL returned by the sign-in service.")
        self._pending_oauth_session = data.get("sessionId")
        return OAuthRedirect(provider=provider_id, url=auth_uri)

    async def complete_oauth(self, callback_url: str) -> Session:
        if self._pending_oauth_session is None:
            raise AuthenticationError("No OAuth sign-in is in progress.")
        data = await self._post(
            "accounts:signInWithIdp",
            {
                "requestUri": callback_url,
                "sessionId": self._pending_oauth_session,
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
        )
        self._pending_oauth_session = None
        return self._establish(self._session_from_identity(data), AuthChangeEvent.SIGNED_IN)

    async def sign_out(self) -> None:
        # Firebase ID tokens are stateless; dropping them ends the session on this device.
        self._discard()
        self._emit(AuthChangeEvent.SIGNED_OUT, None)

    async def refresh_session(self) -> Session | None:
        session = self._session or self._store.load()
        if session is None or not session.refresh_token:
            return None
        return await self._refresh(session)

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        await self._post(
            "accounts:sendOobCode",
            {"requestType": "PASSWORD_RESET", "email": email, "continueUrl": redirect_to},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _refresh(self, session: Session) -> Session:
        try:
            response = await self._client.post(
                self.TOKEN_URL,
                params={"key": self._api_key},
                data={"grant_type": "refresh_token", "refresh_token": session.refresh_token},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise AuthenticationError("Could not reach the sign-in service. Check your connection.") from exc
        data = self._decode(response)
        if not data.get("id_token"):
            raise AuthenticationError("The sign-in service returned an unexpected response.")
        refreshed = Session(
            user_id=data.get("user_id") or session.user_id,
            access_token=data["id_token"],
            refresh_token=data.get("refresh_token") or session.refresh_token,
            email=session.email,
            expires_at=_expiry(data.get("expires_in")),
        )
        return self._establish(refreshed, AuthChangeEvent.TOKEN_REFRESHED)

    async def _post(self, endpoint: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(
                f"{self.IDENTITY_URL}/{endpoint}",
                params={"key": self._api_key},
                json=body,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("Firebase auth request %s failed", endpoint, exc_info=True)
            raise AuthenticationError("Could not reach the sign-in service. Check your connection.") from exc
        return self._decode(response)

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not response.is_success:
            code = ""
            error = payload.get("error") if isinstance(payload, dict) else None
            if isinstance(error, dict):
                code = str(error.get("message") or "")
            key = code.split(" ", 1)[0]
            message = _FIREBASE_ERROR_MESSAGES.get(key) or f"Authentication failed: {code or response.reason_phrase}"
            raise AuthenticationError(message)
        if not isinstance(payload, dict):
            raise AuthenticationError("The sign-in service returned an unexpected response.")
        return payload

    @staticmethod
    def _session_from_identity(data: Dict[str, Any]) -> Session:
        try:
            return Session(
                user_id=data["localId"],
                access_token=data["idToken"],
                refresh_token=data.get("refreshToken"),
                email=data.get("email"),
                expires_at=_expiry(data.get("expiresIn")),
            )
        except KeyError as exc:
            raise AuthenticationError("The sign-in service returned an unexpected response.") from exc

    def _establish(self, session: Session, event: AuthChangeEvent) -> Session:
        self._session = session
        self._store.save(session)
        self._emit(event, session)
        return session

    def _discard(self) -> None:
        self._session = None
        self._store.clear()


class InMemoryAuthProvider(AuthProvider):
    """Local account registry for development and tests."""

    _MIN_PASSWORD_LENGTH = 6

    def __init__(self, *, token_lifetime: timedelta = timedelta(hours=1)) -> None:
        super().__init__()
        self._token_lifetime = token_lifetime
        self._accounts: Dict[str, Tuple[bytes, bytes, str]] = {}
        self._refresh_tokens: Dict[str, Tuple[str, str]] = {}
        self._session: Session | None = None
        self._pending_oauth: str | None = None
        self.password_reset_requests: list[Tuple[str, str]] = []

    async def get_session(self) -> Session | None:
        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        account = self._accounts.get(email.lower())
        if account is None or not hmac.compare_digest(account[1], _hash_password(password, account[0])):
            raise AuthenticationError("Invalid email or password.")
        return self._issue(account[2], email.lower(), AuthChangeEvent.SIGNED_IN)

    async def sign_up(self, email: str, password: str) -> Session:
        key = email.lower()
        if "@" not in key:
            raise AuthenticationError("Please enter a valid email address.")
        if key in self._accounts:
            raise AuthenticationError("An account with this email already exists.")
        if len(password) < self._MIN_PASSWORD_LENGTH:
            raise AuthenticationError("Password should be at least 6 characters.")
        salt = secrets.token_bytes(16)
        user_id = str(uuid4())
        self._accounts[key] = (salt, _hash_password(password, salt), user_id)
        return self._issue(user_id, key, AuthChangeEvent.SIGNED_IN)

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> OAuthRedirect:
        self._pending_oauth = provider.lower()
        query = urlencode({"provider": self._pending_oauth, "redirect_to": redirect_to})
        return OAuthRedirect(provider=self._pending_oauth, url=f"https://auth.invalid/authorize?{query}")

    async def complete_oauth(self, callback_url: str) -> Session:
        if self._pending_oauth is None:
            raise AuthenticationError("No OAuth sign-in is in progress.")
        params = parse_qs(urlparse(callback_url).query)
        email = (params.get("email") or [f"{self._pending_oauth}-user@example.com"])[0].lower()
        self._pending_oauth = None
        account = self._accounts.get(email)
        if account is None:
            salt = secrets.token_bytes(16)
            account = (salt, _hash_password(secrets.token_hex(16), salt), str(uuid4()))
            self._accounts[email] = account
        return self._issue(account[2], email, AuthChangeEvent.SIGNED_IN)

    async def sign_out(self) -> None:
        if self._session is not None and self._session.refresh_token:
            self._refresh_tokens.pop(self._session.refresh_token, None)
        self._session = None
        self._emit(AuthChangeEvent.SIGNED_OUT, None)

    async def refresh_session(self) -> Session | None:
        if self._session is None or self._session.refresh_token not in self._refresh_tokens:
            return None
        user_id, email = self._refresh_tokens.pop(self._session.refresh_token)
        return self._issue(user_id, email, AuthChangeEvent.TOKEN_REFRESHED)

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        # Unknown addresses succeed silently so the call cannot probe for accounts.
        if email.lower() in self._accounts:
            self.password_reset_requests.append((email.lower(), redirect_to))

    def _issue(self, user_id: str, email: str, event: AuthChangeEvent) -> Session:
        refresh_token = secrets.token_urlsafe(24)
        self._refresh_tokens[refresh_token] = (user_id, email)
        self._session = Session(
            user_id=user_id,
            access_token=secrets.token_urlsafe(32),
            refresh_token=refresh_token,
            email=email,
            expires_at=datetime.now(timezone.utc) + self._token_lifetime,
        )
        self._emit(event, self._session)
        return self._session


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 100_000)


def _expiry(expires_in: Any) -> datetime | None:
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)
