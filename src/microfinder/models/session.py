"""Authenticated session state consumed by the session gate."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

# Refresh slightly early so a token never expires mid-request.
_EXPIRY_MARGIN = timedelta(seconds=60)


@dataclass(slots=True, frozen=True)
class Session:
    """Tokens and identity issued by the authentication provider."""

    user_id: str
    access_token: str
    refresh_token: str | None = None
    email: str | None = None
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = now or datetime.now(timezone.utc)
        return current >= self.expires_at - _EXPIRY_MARGIN

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat() if self.expires_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        expires_at = data.get("expires_at")
        return cls(
            user_id=data["user_id"],
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            email=data.get("email"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )
