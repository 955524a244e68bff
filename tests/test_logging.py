"""Tests for logging configuration."""
from __future__ import annotations

import logging

import pytest

from microfinder import logging as microfinder_logging
from microfinder.logging import QUIET_LOGGERS, build_logging_config, configure_logging


def test_config_quiets_key_bearing_http_loggers() -> None:
    config = build_logging_config("debug")

    assert config["root"]["level"] == "DEBUG"
    assert config["loggers"]["httpx"] == {"level": "WARNING"}
    assert set(config["loggers"]) == set(QUIET_LOGGERS)


def test_repeated_configuration_only_changes_level(monkeypatch: pytest.MonkeyPatch) -> None:
    applied: list[dict] = []
    root = logging.getLogger()
    monkeypatch.setattr(microfinder_logging, "_configured", False)
    monkeypatch.setattr(microfinder_logging, "dictConfig", applied.append)
    monkeypatch.setattr(root, "level", root.level)

    configure_logging("info")
    configure_logging("debug")

    assert [config["root"]["level"] for config in applied] == ["INFO"]
    assert root.level == logging.DEBUG
