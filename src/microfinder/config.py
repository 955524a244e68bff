"""Application configuration models and access helpers."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Runtime configuration sourced from environment variables."""

    environment: str = "development"
    log_level: str = "INFO"
    enable_prometheus: bool = True
    vision_provider: Literal["gemini", "openai"] = "gemini"
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.0-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    analysis_timeout_seconds: float = 60.0
    max_image_bytes: int = 5 * 1024 * 1024
    use_firestore: bool = False
    firebase_project_id: str | None = None
    firebase_credentials_path: str | None = None
    firebase_app_name: str | None = None
    firebase_web_api_key: str | None = None
    discoveries_collection: str = "discoveries"
    profiles_collection: str = "profiles"
    discovery_list_scope: Literal["owner", "all"] = "owner"
    oauth_redirect_url: str = "microfinder://login"
    password_reset_redirect_url: str = "microfinder://reset-password"
    session_store_path: str | None = None

    model_config = SettingsConfigDict(env_prefix="MICROFINDER_", case_sensitive=False)


@lru_cache
def get_settings() -> AppSettings:
    """Return a cached instance of the application settings."""

    return AppSettings()
