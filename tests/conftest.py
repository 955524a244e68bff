"""Shared pytest configuration for the MicroFinder test suite."""
from __future__ import annotations

import pytest

from microfinder.config import get_settings


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    """Reset cached settings around each test to honor environment changes."""

    get_settings.cache_clear()  # type: ignore[attr-defined]
    try:
        yield
    finally:
        get_settings.cache_clear()  # type: ignore[attr-defined]


class FakeSession:
    """Session source pinned to a fixed user, switchable mid-test."""

    def __init__(self, user_id: str | None = None) -> None:
        self.user_id = user_id

    def current_user(self) -> str | None:
        return self.user_id


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession("user-1")
