"""Pydantic model for the user profile shown on the account screen."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Profile(BaseModel):
    """Display details stored per user in the profiles collection."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Owning user identifier; doubles as the document key.")
    username: str
    full_name: str
    email: str | None = None
    avatar_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
