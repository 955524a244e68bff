"""Repository abstractions for discovery records."""
from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Protocol
from uuid import uuid4

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import ValidationError

from microfinder.classification import normalize
from microfinder.errors import (
    MicroFinderError,
    NotAuthenticatedError,
    NotAuthorizedOrNotFoundError,
    NotFoundError,
    StoreReadError,
    StoreWriteError,
)
from microfinder.metrics import record_store_operation
from microfinder.models.discovery import Discovery, MicrobeAnalysis

logger = logging.getLogger(__name__)

ListScope = Literal["owner", "all"]

# Only these fields may change after creation; keys are accepted in wire or
# Python spelling and mapped onto the stored column name.
MUTABLE_FIELDS: Dict[str, str] = {
    "microbe_name": "microbe_name",
    "microbeName": "microbe_name",
    "classification": "classification",
    "analysis_results": "analysis_results",
    "analysisResults": "analysis_results",
    "description": "analysis_results",
}


class SessionSource(Protocol):
    """Anything that can name the signed-in user without awaiting."""

    def current_user(self) -> str | None:  # pragma: no cover - protocol
        ...


def project_update(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep the allow-listed mutable fields of ``fields``, normalising classification."""

    projected: Dict[str, Any] = {}
    for key, value in fields.items():
        column = MUTABLE_FIELDS.get(key)
        if column is None:
            logger.debug("Dropping non-updatable discovery field %r", key)
            continue
        if value is None:
            continue
        projected[column] = normalize(value).value if column == "classification" else str(value)
    return projected


class DiscoveryRepository(ABC):
    """Sole mediator between the application and stored discoveries.

    Every mutation derives the acting user from the live session and uses it
    as a predicate; no caller-supplied user id is ever trusted. Subclasses
    provide the storage primitives only.
    """

    def __init__(self, session: SessionSource, *, list_scope: ListScope = "owner", enable_metrics: bool = True) -> None:
        self._session = session
        self._list_scope = list_scope
        self._enable_metrics = enable_metrics

    async def save(self, image_url: str, analysis: MicrobeAnalysis) -> Discovery:
        """Persist a new discovery for the signed-in user."""

        user_id = self._require_user()
        characteristics = analysis.characteristics
        if not isinstance(characteristics, (list, tuple)):
            characteristics = []
        record = {
            "user_id": user_id,
            "image_url": image_url,
            "microbe_name": analysis.microbe_name,
            "classification": normalize(analysis.classification).value,
            "confidence_score": analysis.confidence,
            "characteristics": list(characteristics),
            "analysis_results": analysis.description,
            "raw_analysis": analysis.raw_payload(),
        }
        row = await self._write("save", self._insert(record))
        discovery = _to_discovery(row)
        logger.info("Saved discovery %s for user %s", discovery.id, user_id)
        return discovery

    async def list(self) -> List[Discovery]:
        """Return visible discoveries, most recently created first."""

        owner: Optional[str] = None
        if self._list_scope == "owner":
            owner = self._session.current_user()
            if owner is None:
                return []
        rows = await self._read("list", self._fetch_all(owner))
        return [_to_discovery(row) for row in rows]

    async def get_by_id(self, discovery_id: str) -> Discovery:
        """Return one discovery; reads are not filtered by owner."""

        row = await self._read("get", self._fetch(discovery_id))
        if row is None:
            raise NotFoundError()
        return _to_discovery(row)

    get = get_by_id

    async def update(self, discovery_id: str, fields: Mapping[str, Any]) -> Discovery:
        """Apply allow-listed edits to a discovery owned by the signed-in user."""

        user_id = self._require_user()
        projected = project_update(fields)
        row = await self._write("update", self._update_owned(discovery_id, user_id, projected))
        if row is None:
            raise NotAuthorizedOrNotFoundError()
        return _to_discovery(row)

    async def delete(self, discovery_id: str) -> None:
        """Irrecoverably remove a discovery owned by the signed-in user."""

        user_id = self._require_user()
        deleted = await self._write("delete", self._delete_owned(discovery_id, user_id))
        if not deleted:
            raise NotAuthorizedOrNotFoundError()
        logger.info("Deleted discovery %s", discovery_id)

    def _require_user(self) -> str:
        user_id = self._session.current_user()
        if user_id is None:
            raise NotAuthenticatedError("You must be signed in to save or change discoveries.")
        return user_id

    async def _write(self, operation: str, pending: Any) -> Any:
        try:
            result = await pending
        except MicroFinderError:
            self._record(operation, "error")
            raise
        except Exception as exc:
            self._record(operation, "error")
            logger.error("Discovery store %s failed: %s", operation, exc)
            raise StoreWriteError(str(exc)) from exc
        self._record(operation, "success")
        return result

    async def _read(self, operation: str, pending: Any) -> Any:
        try:
            result = await pending
        except MicroFinderError:
            self._record(operation, "error")
            raise
        except Exception as exc:
            self._record(operation, "error")
            logger.error("Discovery store %s failed: %s", operation, exc)
            raise StoreReadError(str(exc)) from exc
        self._record(operation, "success")
        return result

    def _record(self, operation: str, outcome: str) -> None:
        if self._enable_metrics:
            record_store_operation(operation, outcome)

    @abstractmethod
    async def _insert(self, record: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - interface stub
        """Store ``record`` and return the canonical row with id and timestamps."""

    @abstractmethod
    async def _fetch(self, discovery_id: str) -> Optional[Dict[str, Any]]:  # pragma: no cover - interface stub
        ...

    @abstractmethod
    async def _fetch_all(self, owner: Optional[str]) -> List[Dict[str, Any]]:  # pragma: no cover - interface stub
        """Return rows, restricted to ``owner`` when given, newest first."""

    @abstractmethod
    async def _update_owned(
        self, discovery_id: str, user_id: str, fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:  # pragma: no cover - interface stub
        """Update the row matching both id and owner; ``None`` when nothing matched."""

    @abstractmethod
    async def _delete_owned(self, discovery_id: str, user_id: str) -> bool:  # pragma: no cover - interface stub
        """Delete the row matching both id and owner; ``False`` when nothing matched."""


class InMemoryDiscoveryRepository(DiscoveryRepository):
    """In-memory repository useful for testing and offline use."""

    def __init__(self, session: SessionSource, **kwargs: Any) -> None:
        super().__init__(session, **kwargs)
        self._storage: Dict[str, Dict[str, Any]] = {}
        self._sequence: Dict[str, int] = {}
        self._counter = itertools.count()

    async def _insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        discovery_id = str(uuid4())
        row = copy.deepcopy(record)
        row.update(id=discovery_id, created_at=_utcnow(), updated_at=None)
        self._storage[discovery_id] = row
        self._sequence[discovery_id] = next(self._counter)
        return copy.deepcopy(row)

    async def _fetch(self, discovery_id: str) -> Optional[Dict[str, Any]]:
        row = self._storage.get(discovery_id)
        return copy.deepcopy(row) if row is not None else None

    async def _fetch_all(self, owner: Optional[str]) -> List[Dict[str, Any]]:
        rows = [row for row in self._storage.values() if owner is None or row["user_id"] == owner]
        rows.sort(key=lambda row: (row["created_at"], self._sequence[row["id"]]), reverse=True)
        return [copy.deepcopy(row) for row in rows]

    async def _update_owned(
        self, discovery_id: str, user_id: str, fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        row = self._storage.get(discovery_id)
        if row is None or row["user_id"] != user_id:
            return None
        row.update(copy.deepcopy(fields))
        row["updated_at"] = _utcnow()
        return copy.deepcopy(row)

    async def _delete_owned(self, discovery_id: str, user_id: str) -> bool:
        row = self._storage.get(discovery_id)
        if row is None or row["user_id"] != user_id:
            return False
        del self._storage[discovery_id]
        self._sequence.pop(discovery_id, None)
        return True


class FirestoreDiscoveryRepository(DiscoveryRepository):
    """Firestore-backed repository for discovery records.

    The owner-scoped listing filters on ``user_id`` and orders by
    ``created_at`` descending, which needs a composite index on
    ``(user_id ASC, created_at DESC)`` in the discoveries collection.
    """

    def __init__(self, client: Any, session: SessionSource, collection: str = "discoveries", **kwargs: Any) -> None:
        super().__init__(session, **kwargs)
        self._client = client
        self._collection = collection

    def _documents(self) -> Any:
        return self._client.collection(self._collection)

    async def _insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(record, created_at=firestore.SERVER_TIMESTAMP)

        def _write() -> Dict[str, Any]:
            reference = self._documents().document()
            reference.set(payload)
            return _row(reference.id, reference.get())

        return await asyncio.to_thread(_write)

    async def _fetch(self, discovery_id: str) -> Optional[Dict[str, Any]]:
        def _read() -> Any:
            return self._documents().document(discovery_id).get()

        snapshot = await asyncio.to_thread(_read)
        if snapshot is None or not getattr(snapshot, "exists", False):
            return None
        return _row(discovery_id, snapshot)

    async def _fetch_all(self, owner: Optional[str]) -> List[Dict[str, Any]]:
        def _read() -> List[Dict[str, Any]]:
            query = self._documents()
            if owner is not None:
                query = query.where(filter=FieldFilter("user_id", "==", owner))
            query = query.order_by("created_at", direction=firestore.Query.DESCENDING)
            return [_row(snapshot.id, snapshot) for snapshot in query.stream()]

        return await asyncio.to_thread(_read)

    async def _update_owned(
        self, discovery_id: str, user_id: str, fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        def _update() -> Optional[Dict[str, Any]]:
            reference = self._documents().document(discovery_id)
            snapshot = reference.get()
            if not getattr(snapshot, "exists", False) or (snapshot.to_dict() or {}).get("user_id") != user_id:
                return None
            try:
                reference.update(dict(fields, updated_at=firestore.SERVER_TIMESTAMP))
            except google_exceptions.NotFound:
                # Deleted between the ownership check and the write.
                return None
            return _row(discovery_id, reference.get())

        return await asyncio.to_thread(_update)

    async def _delete_owned(self, discovery_id: str, user_id: str) -> bool:
        def _delete() -> bool:
            reference = self._documents().document(discovery_id)
            snapshot = reference.get()
            if not getattr(snapshot, "exists", False) or (snapshot.to_dict() or {}).get("user_id") != user_id:
                return False
            reference.delete()
            return True

        return await asyncio.to_thread(_delete)


def _to_discovery(row: Dict[str, Any]) -> Discovery:
    try:
        return Discovery.model_validate(row)
    except ValidationError as exc:
        logger.error("Stored discovery %s is unreadable: %s", row.get("id"), exc)
        raise StoreReadError(f"discovery {row.get('id')} has invalid fields") from exc


def _row(discovery_id: str, snapshot: Any) -> Dict[str, Any]:
    data = dict(snapshot.to_dict() or {})
    data["id"] = discovery_id
    return data


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
