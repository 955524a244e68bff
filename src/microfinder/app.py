"""Composition root wiring the discovery pipeline together."""
from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from microfinder.analysis import AnalysisClient
from microfinder.auth import AuthProvider, FirebaseAuthProvider, InMemoryAuthProvider
from microfinder.config import AppSettings, get_settings
from microfinder.db.firebase import FirebaseHandle, initialize_firebase
from microfinder.logging import configure_logging
from microfinder.repositories.discovery_repository import (
    DiscoveryRepository,
    FirestoreDiscoveryRepository,
    InMemoryDiscoveryRepository,
)
from microfinder.repositories.profile_repository import (
    FirestoreProfileRepository,
    InMemoryProfileRepository,
    ProfileRepository,
)
from microfinder.services.discovery_service import DiscoveryService
from microfinder.session import SessionGate
from microfinder.storage.session_store import FileSessionStore, MemorySessionStore, SessionStore
from microfinder.vision import VisionModel, build_vision_model

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MicroFinderApp:
    """Live components of a running application."""

    settings: AppSettings
    http_client: httpx.AsyncClient
    auth_provider: AuthProvider
    session: SessionGate
    vision: VisionModel
    analysis_client: AnalysisClient
    discoveries: DiscoveryRepository
    profiles: ProfileRepository
    discovery_service: DiscoveryService
    firebase: FirebaseHandle | None = None

    async def __aenter__(self) -> "MicroFinderApp":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def start(self) -> None:
        """Restore the previous session and start following auth changes."""

        await self.session.initialize()

    async def close(self) -> None:
        """Release subscriptions and network resources."""

        self.session.close()
        await self.vision.aclose()
        await self.auth_provider.aclose()
        await self.http_client.aclose()
        if self.firebase is not None:
            await self.firebase.dispose()


def create_app(
    settings: AppSettings | None = None,
    *,
    vision: VisionModel | None = None,
    auth_provider: AuthProvider | None = None,
) -> MicroFinderApp:
    """Instantiate and wire the application components."""

    app_settings = settings or get_settings()
    configure_logging(app_settings.log_level)

    http_client = httpx.AsyncClient()

    if auth_provider is None:
        if app_settings.firebase_web_api_key:
            store: SessionStore
            if app_settings.session_store_path:
                store = FileSessionStore.from_path(app_settings.session_store_path)
            else:
                store = MemorySessionStore()
            auth_provider = FirebaseAuthProvider(
                app_settings.firebase_web_api_key,
                http_client=http_client,
                session_store=store,
            )
        else:
            logger.warning("No Firebase web API key configured; using local in-memory accounts")
            auth_provider = InMemoryAuthProvider()
    session = SessionGate(
        auth_provider,
        oauth_redirect_url=app_settings.oauth_redirect_url,
        password_reset_redirect_url=app_settings.password_reset_redirect_url,
    )

    if vision is None:
        vision = build_vision_model(app_settings, http_client=http_client)
    analysis_client = AnalysisClient(
        vision=vision,
        timeout_seconds=app_settings.analysis_timeout_seconds,
        enable_metrics=app_settings.enable_prometheus,
    )

    firebase_handle: FirebaseHandle | None = None
    discoveries: DiscoveryRepository
    profiles: ProfileRepository
    if app_settings.use_firestore:
        firebase_handle = initialize_firebase(app_settings)
        discoveries = FirestoreDiscoveryRepository(
            firebase_handle.client,
            session,
            firebase_handle.discoveries_collection,
            list_scope=app_settings.discovery_list_scope,
            enable_metrics=app_settings.enable_prometheus,
        )
        profiles = FirestoreProfileRepository(firebase_handle.client, session, firebase_handle.profiles_collection)
    else:
        discoveries = InMemoryDiscoveryRepository(
            session,
            list_scope=app_settings.discovery_list_scope,
            enable_metrics=app_settings.enable_prometheus,
        )
        profiles = InMemoryProfileRepository(session)

    return MicroFinderApp(
        settings=app_settings,
        http_client=http_client,
        auth_provider=auth_provider,
        session=session,
        vision=vision,
        analysis_client=analysis_client,
        discoveries=discoveries,
        profiles=profiles,
        discovery_service=DiscoveryService(
            analysis_client=analysis_client,
            repository=discoveries,
            max_image_bytes=app_settings.max_image_bytes,
        ),
        firebase=firebase_handle,
    )
