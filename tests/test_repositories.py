"""Tests for discovery repository implementations."""
from __future__ import annotations

import pytest

from microfinder.classification import Classification
from microfinder.errors import (
    NotAuthenticatedError,
    NotAuthorizedOrNotFoundError,
    NotFoundError,
    StoreReadError,
    StoreWriteError,
)
from microfinder.models.discovery import UNKNOWN_ORGANISM, MicrobeAnalysis
from microfinder.repositories.discovery_repository import (
    DiscoveryRepository,
    FirestoreDiscoveryRepository,
    InMemoryDiscoveryRepository,
    project_update,
)
from microfinder.results import Err, attempt
from tests.firestore_fakes import FakeFirestoreClient

_ECOLI_PAYLOAD = {
    "microbeName": "E. coli",
    "classification": "BACTERIA",
    "confidence": 0.92,
    "characteristics": ["rod-shaped", "gram-negative"],
    "description": "Common bacterium.",
}


def _analysis(**overrides: object) -> MicrobeAnalysis:
    return MicrobeAnalysis.from_payload({**_ECOLI_PAYLOAD, **overrides})


def _stored_row(repository: DiscoveryRepository, discovery_id: str) -> dict:
    if isinstance(repository, InMemoryDiscoveryRepository):
        return repository._storage[discovery_id]
    return repository._client.storage["discoveries"][discovery_id]


@pytest.fixture(params=["memory", "firestore"])
def repository(request: pytest.FixtureRequest, fake_session) -> DiscoveryRepository:
    if request.param == "memory":
        return InMemoryDiscoveryRepository(fake_session, enable_metrics=False)
    return FirestoreDiscoveryRepository(FakeFirestoreClient(), fake_session, "discoveries", enable_metrics=False)


@pytest.mark.asyncio
async def test_save_normalizes_and_stamps_session_user(repository: DiscoveryRepository) -> None:
    discovery = await repository.save("https://images.example/ecoli.jpg", _analysis())

    assert discovery.id
    assert discovery.user_id == "user-1"
    assert discovery.classification is Classification.BACTERIA
    assert discovery.confidence_score == 0.92
    assert discovery.characteristics == ["rod-shaped", "gram-negative"]
    assert discovery.analysis_results == "Common bacterium."
    assert discovery.raw_analysis == _ECOLI_PAYLOAD
    assert discovery.created_at is not None
    assert discovery.updated_at is None


@pytest.mark.asyncio
async def test_save_ignores_user_id_in_model_output(repository: DiscoveryRepository) -> None:
    discovery = await repository.save("https://images.example/x.jpg", _analysis(userId="attacker", user_id="attacker"))

    assert discovery.user_id == "user-1"


@pytest.mark.asyncio
async def test_save_without_characteristics_stores_empty_list(repository: DiscoveryRepository) -> None:
    payload = {key: value for key, value in _ECOLI_PAYLOAD.items() if key != "characteristics"}

    discovery = await repository.save("https://images.example/x.jpg", MicrobeAnalysis.from_payload(payload))

    assert discovery.characteristics == []


@pytest.mark.asyncio
async def test_save_without_session_writes_nothing(fake_session) -> None:
    client = FakeFirestoreClient()
    repository = FirestoreDiscoveryRepository(client, fake_session, "discoveries", enable_metrics=False)
    fake_session.user_id = None

    with pytest.raises(NotAuthenticatedError):
        await repository.save("https://images.example/x.jpg", _analysis())

    assert client.storage == {}


@pytest.mark.asyncio
async def test_round_trip_through_get_by_id(repository: DiscoveryRepository) -> None:
    saved = await repository.save("https://images.example/x.jpg", _analysis(classification="Fungi"))

    fetched = await repository.get_by_id(saved.id)

    assert fetched.microbe_name == "E. coli"
    assert fetched.classification is Classification.FUNGI
    assert fetched.characteristics == ["rod-shaped", "gram-negative"]
    assert fetched.analysis_results == "Common bacterium."


@pytest.mark.asyncio
async def test_get_by_id_missing_raises_not_found(repository: DiscoveryRepository) -> None:
    with pytest.raises(NotFoundError):
        await repository.get_by_id("does-not-exist")


@pytest.mark.asyncio
async def test_get_by_id_is_not_filtered_by_owner(repository: DiscoveryRepository, fake_session) -> None:
    saved = await repository.save("https://images.example/x.jpg", _analysis())
    fake_session.user_id = None

    assert (await repository.get_by_id(saved.id)).id == saved.id


@pytest.mark.asyncio
async def test_list_returns_newest_first_for_owner(repository: DiscoveryRepository, fake_session) -> None:
    first = await repository.save("https://images.example/1.jpg", _analysis(microbeName="first"))
    second = await repository.save("https://images.example/2.jpg", _analysis(microbeName="second"))
    fake_session.user_id = "user-2"
    await repository.save("https://images.example/3.jpg", _analysis(microbeName="other"))
    fake_session.user_id = "user-1"

    listed = await repository.list()

    assert [d.id for d in listed] == [second.id, first.id]


@pytest.mark.asyncio
async def test_list_signed_out_is_empty(repository: DiscoveryRepository, fake_session) -> None:
    await repository.save("https://images.example/1.jpg", _analysis())
    fake_session.user_id = None

    assert await repository.list() == []


@pytest.mark.asyncio
async def test_list_scope_all_includes_every_owner(fake_session) -> None:
    repository = InMemoryDiscoveryRepository(fake_session, list_scope="all", enable_metrics=False)
    await repository.save("https://images.example/1.jpg", _analysis())
    fake_session.user_id = "user-2"
    await repository.save("https://images.example/2.jpg", _analysis())

    listed = await repository.list()

    assert [d.user_id for d in listed] == ["user-2", "user-1"]


@pytest.mark.asyncio
async def test_update_applies_only_allow_listed_fields(repository: DiscoveryRepository) -> None:
    saved = await repository.save("https://images.example/x.jpg", _analysis())

    updated = await repository.update(
        saved.id,
        {
            "microbeName": "Escherichia coli",
            "classification": "VIRUS",
            "analysisResults": "Re-examined.",
            "userId": "attacker",
            "user_id": "attacker",
            "id": "other-id",
            "created_at": "1999-01-01T00:00:00Z",
            "characteristics": ["edited"],
            "image_url": "https://evil.example/x.jpg",
        },
    )

    assert updated.id == saved.id
    assert updated.user_id == "user-1"
    assert updated.microbe_name == "Escherichia coli"
    assert updated.classification is Classification.VIRUS
    assert updated.analysis_results == "Re-examined."
    assert updated.characteristics == saved.characteristics
    assert updated.image_url == saved.image_url
    assert updated.created_at == saved.created_at
    assert updated.updated_at is not None


@pytest.mark.asyncio
async def test_update_coerces_unknown_classification(repository: DiscoveryRepository) -> None:
    saved = await repository.save("https://images.example/x.jpg", _analysis(classification="virus"))

    updated = await repository.update(saved.id, {"classification": "archaea"})

    assert updated.classification is Classification.BACTERIA


@pytest.mark.asyncio
async def test_update_by_non_owner_changes_nothing(repository: DiscoveryRepository, fake_session) -> None:
    saved = await repository.save("https://images.example/x.jpg", _analysis())
    fake_session.user_id = "user-2"

    with pytest.raises(NotAuthorizedOrNotFoundError) as exc_info:
        await repository.update(saved.id, {"microbeName": "hijacked"})
    missing = None
    try:
        await repository.update("does-not-exist", {"microbeName": "hijacked"})
    except NotAuthorizedOrNotFoundError as exc:
        missing = exc

    assert missing is not None
    assert missing.message == exc_info.value.message
    unchanged = await repository.get_by_id(saved.id)
    assert unchanged == saved


@pytest.mark.asyncio
async def test_update_and_delete_require_session(repository: DiscoveryRepository, fake_session) -> None:
    saved = await repository.save("https://images.example/x.jpg", _analysis())
    fake_session.user_id = None

    with pytest.raises(NotAuthenticatedError):
        await repository.update(saved.id, {"microbeName": "x"})
    with pytest.raises(NotAuthenticatedError):
        await repository.delete(saved.id)


@pytest.mark.asyncio
async def test_delete_by_owner_removes_record(repository: DiscoveryRepository) -> None:
    saved = await repository.save("https://images.example/x.jpg", _analysis())

    await repository.delete(saved.id)

    with pytest.raises(NotFoundError):
        await repository.get_by_id(saved.id)
    with pytest.raises(NotAuthorizedOrNotFoundError):
        await repository.delete(saved.id)


@pytest.mark.asyncio
async def test_delete_by_non_owner_keeps_record(repository: DiscoveryRepository, fake_session) -> None:
    saved = await repository.save("https://images.example/x.jpg", _analysis())
    fake_session.user_id = "user-2"

    with pytest.raises(NotAuthorizedOrNotFoundError):
        await repository.delete(saved.id)

    assert (await repository.get_by_id(saved.id)) == saved


@pytest.mark.asyncio
async def test_store_failures_are_wrapped(fake_session) -> None:
    client = FakeFirestoreClient()
    repository = FirestoreDiscoveryRepository(client, fake_session, "discoveries", enable_metrics=False)
    client.fail_with = ConnectionError("firestore unavailable")

    with pytest.raises(StoreWriteError, match="Failed to save discovery: firestore unavailable"):
        await repository.save("https://images.example/x.jpg", _analysis())
    with pytest.raises(StoreReadError, match="firestore unavailable"):
        await repository.list()


def test_project_update_drops_unknown_and_none_fields() -> None:
    assert project_update({"microbe_name": "Giardia", "analysis_results": None, "confidence_score": 1.0}) == {
        "microbe_name": "Giardia"
    }
    assert project_update({"description": "Flagellated.", "classification": "Protozoa"}) == {
        "analysis_results": "Flagellated.",
        "classification": "protozoa",
    }


@pytest.mark.asyncio
async def test_legacy_rows_are_coerced_on_read(repository: DiscoveryRepository) -> None:
    saved = await repository.save("https://images.example/x.jpg", _analysis())
    row = _stored_row(repository, saved.id)
    row.update(confidence_score=None, microbe_name=None, characteristics=None, analysis_results=None)

    listed = await repository.list()
    fetched = await repository.get_by_id(saved.id)

    assert [d.confidence_score for d in listed] == [0.5]
    assert fetched.microbe_name == UNKNOWN_ORGANISM
    assert fetched.characteristics == []
    assert fetched.analysis_results == ""

    row["confidence_score"] = 1.5
    assert (await repository.get_by_id(saved.id)).confidence_score == 1.0


@pytest.mark.asyncio
async def test_unreadable_row_surfaces_as_store_read_error(repository: DiscoveryRepository) -> None:
    saved = await repository.save("https://images.example/x.jpg", _analysis())
    del _stored_row(repository, saved.id)["image_url"]

    result = await attempt(repository.list())

    assert isinstance(result, Err)
    assert isinstance(result.error, StoreReadError)
    with pytest.raises(StoreReadError, match="invalid fields"):
        await repository.get_by_id(saved.id)
