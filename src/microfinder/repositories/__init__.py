"""Persistence layer for discoveries and profiles."""

from .discovery_repository import DiscoveryRepository, FirestoreDiscoveryRepository, InMemoryDiscoveryRepository
from .profile_repository import FirestoreProfileRepository, InMemoryProfileRepository, ProfileRepository

__all__ = [
    "DiscoveryRepository",
    "FirestoreDiscoveryRepository",
    "InMemoryDiscoveryRepository",
    "ProfileRepository",
    "FirestoreProfileRepository",
    "InMemoryProfileRepository",
]
