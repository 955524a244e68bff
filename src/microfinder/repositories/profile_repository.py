"""Repository abstractions for user profiles."""
from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from firebase_admin import firestore

from microfinder.errors import InvalidProfileError, NotAuthenticatedError, StoreReadError, StoreWriteError
from microfinder.models.profile import Profile
from microfinder.session import SessionGate

logger = logging.getLogger(__name__)

DEFAULT_USERNAME = "user"
DEFAULT_FULL_NAME = "New User"


class ProfileRepository(ABC):
    """Read and edit the signed-in user's profile."""

    def __init__(self, session: SessionGate) -> None:
        self._session = session

    async def get_current(self) -> Profile:
        """Return the signed-in user's profile, creating a default one on first use."""

        user_id, email = self._identity()
        try:
            row = await self._read(user_id)
        except Exception as exc:
            raise StoreReadError(str(exc)) from exc
        if row is not None:
            return Profile.model_validate(dict(row, id=user_id))

        username = email.split("@", 1)[0] if email else DEFAULT_USERNAME
        defaults = {"username": username or DEFAULT_USERNAME, "full_name": DEFAULT_FULL_NAME, "email": email}
        logger.info("Creating default profile for user %s", user_id)
        return await self._upsert(user_id, defaults, created=True)

    async def update_current(self, username: str, full_name: str) -> Profile:
        """Replace the display names of the signed-in user's profile."""

        user_id, email = self._identity()
        username = (username or "").strip()
        full_name = (full_name or "").strip()
        if not username or not full_name:
            raise InvalidProfileError()
        return await self._upsert(user_id, {"username": username, "full_name": full_name, "email": email})

    def _identity(self) -> tuple[str, str | None]:
        session = self._session.current_session()
        if session is None:
            raise NotAuthenticatedError()
        return session.user_id, session.email

    async def _upsert(self, user_id: str, fields: Dict[str, Any], *, created: bool = False) -> Profile:
        try:
            row = await self._write(user_id, fields, created=created)
        except Exception as exc:
            logger.error("Profile write failed for user %s: %s", user_id, exc)
            raise StoreWriteError(str(exc)) from exc
        return Profile.model_validate(dict(row, id=user_id))

    @abstractmethod
    async def _read(self, user_id: str) -> Optional[Dict[str, Any]]:  # pragma: no cover - interface stub
        ...

    @abstractmethod
    async def _write(self, user_id: str, fields: Dict[str, Any], *, created: bool) -> Dict[str, Any]:  # pragma: no cover - interface stub
        """Merge ``fields`` into the profile document and return the stored row."""


class InMemoryProfileRepository(ProfileRepository):
    """In-memory profile storage."""

    def __init__(self, session: SessionGate) -> None:
        super().__init__(session)
        self._storage: Dict[str, Dict[str, Any]] = {}

    async def _read(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = self._storage.get(user_id)
        return copy.deepcopy(row) if row is not None else None

    async def _write(self, user_id: str, fields: Dict[str, Any], *, created: bool) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        row = self._storage.setdefault(user_id, {"created_at": now})
        row.update(fields)
        if not created:
            row["updated_at"] = now
        return copy.deepcopy(row)


class FirestoreProfileRepository(ProfileRepository):
    """Firestore-backed profile storage keyed by user id."""

    def __init__(self, client: Any, session: SessionGate, collection: str = "profiles") -> None:
        super().__init__(session)
        self._client = client
        self._collection = collection

    async def _read(self, user_id: str) -> Optional[Dict[str, Any]]:
        def _get() -> Any:
            return self._client.collection(self._collection).document(user_id).get()

        snapshot = await asyncio.to_thread(_get)
        if snapshot is None or not getattr(snapshot, "exists", False):
            return None
        return snapshot.to_dict() or {}

    async def _write(self, user_id: str, fields: Dict[str, Any], *, created: bool) -> Dict[str, Any]:
        payload = dict(fields)
        payload["created_at" if created else "updated_at"] = firestore.SERVER_TIMESTAMP

        def _set() -> Dict[str, Any]:
            reference = self._client.collection(self._collection).document(user_id)
            reference.set(payload, merge=True)
            return reference.get().to_dict() or {}

        return await asyncio.to_thread(_set)
