"""Process-wide cache of the authenticated session."""
from __future__ import annotations

import logging

from microfinder.auth import AuthChangeEvent, AuthProvider, AuthSubscription, OAuthRedirect
from microfinder.models.session import Session

logger = logging.getLogger(__name__)


class SessionGate:
    """Answer "who is signed in" without awaiting the provider.

    The cached session is written only by the provider's change callback and
    by :meth:`sign_out`; every other component reads it. All mutation happens
    on the event loop thread, so no lock is taken.
    """

    def __init__(
        self,
        provider: AuthProvider,
        *,
        oauth_redirect_url: str = "microfinder://login",
        password_reset_redirect_url: str = "microfinder://reset-password",
    ) -> None:
        self._provider = provider
        self._oauth_redirect_url = oauth_redirect_url
        self._password_reset_redirect_url = password_reset_redirect_url
        self._session: Session | None = None
        self._subscription: AuthSubscription | None = None
        self._initialized = False
        self._event_seen = False

    async def __aenter__(self) -> "SessionGate":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    def current_user(self) -> str | None:
        """Return the signed-in user's id, or ``None``."""

        return self._session.user_id if self._session is not None else None

    def current_session(self) -> Session | None:
        return self._session

    async def initialize(self) -> None:
        """Load the existing session and follow provider changes from now on."""

        if self._initialized:
            return
        # Subscribe first so a change racing the initial lookup is not lost;
        # any event delivered during the lookup is newer than its result.
        self._event_seen = False
        self._subscription = self._provider.on_auth_state_change(self._on_auth_change)
        session = await self._provider.get_session()
        if not self._event_seen:
            self._session = session
        self._initialized = True
        logger.info("Session gate initialised (authenticated=%s)", self.is_authenticated)

    async def sign_in(self, email: str, password: str) -> Session:
        return await self._provider.sign_in_with_password(email, password)

    async def sign_up(self, email: str, password: str) -> Session:
        return await self._provider.sign_up(email, password)

    async def sign_in_with_oauth(self, provider: str, redirect_to: str | None = None) -> OAuthRedirect:
        return await self._provider.sign_in_with_oauth(provider, redirect_to or self._oauth_redirect_url)

    async def complete_oauth(self, callback_url: str) -> Session:
        return await self._provider.complete_oauth(callback_url)

    async def refresh(self) -> Session | None:
        return await self._provider.refresh_session()

    async def reset_password(self, email: str, redirect_to: str | None = None) -> None:
        await self._provider.reset_password_for_email(email, redirect_to or self._password_reset_redirect_url)

    async def sign_out(self) -> None:
        """Invalidate the provider session and forget the cached user."""

        try:
            await self._provider.sign_out()
        finally:
            self._session = None
        logger.info("Signed out")

    def close(self) -> None:
        """Release the provider subscription."""

        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._initialized = False

    def _on_auth_change(self, event: AuthChangeEvent, session: Session | None) -> None:
        self._event_seen = True
        if event is AuthChangeEvent.SIGNED_OUT:
            self._session = None
        else:
            self._session = session
