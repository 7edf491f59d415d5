"""Unit tests for settings loading."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from tmharness.config import Settings, get_settings, import_string
from tmharness.errors import ConfigurationError
from tmharness.nemesis.profiles import NemesisProfile

if TYPE_CHECKING:  # pragma: no cover - typing-only imports
    from pathlib import Path

    from _pytest.fixtures import FixtureRequest
    from _pytest.monkeypatch import MonkeyPatch
    from pytest_mock.plugin import MockerFixture


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: "MonkeyPatch", tmp_path: "Path") -> None:
    """Keep stray .env files and TMHARNESS_* variables out of the tests."""
    monkeypatch.chdir(tmp_path)
    for name in ("NODES", "NEMESIS_PROFILE", "TIME_LIMIT", "CONCURRENCY", "ENABLE_DUPLICATED_IDENTITY"):
        monkeypatch.delenv(f"TMHARNESS_{name}", raising=False)


def test_defaults() -> None:
    """Five nodes, no faults, two workers per node."""
    settings = get_settings()

    assert settings.nodes == ["n1", "n2", "n3", "n4", "n5"]
    assert settings.nemesis_profile is NemesisProfile.NONE
    assert settings.enable_duplicated_identity is False
    assert settings.effective_concurrency == 10
    assert settings.versions["tendermint"] == "0.10.0"


def test_environment_overrides(monkeypatch: "MonkeyPatch") -> None:
    """TMHARNESS_* variables are read, with comma-separated nodes."""
    monkeypatch.setenv("TMHARNESS_NODES", "a, b,c,d")
    monkeypatch.setenv("TMHARNESS_NEMESIS_PROFILE", "twofaced-validators")
    monkeypatch.setenv("TMHARNESS_ENABLE_DUPLICATED_IDENTITY", "true")
    monkeypatch.setenv("TMHARNESS_TIME_LIMIT", "12.5")

    settings = Settings()

    assert settings.nodes == ["a", "b", "c", "d"]
    assert settings.nemesis_profile is NemesisProfile.DUPLICATE_IDENTITY_PARTITION
    assert settings.enable_duplicated_identity is True
    assert settings.time_limit == 12.5
    assert settings.effective_concurrency == 8


def test_keyword_overrides_win(monkeypatch: "MonkeyPatch") -> None:
    """Explicit overrides beat the environment."""
    monkeypatch.setenv("TMHARNESS_NODES", "a,b,c,d")
    settings = get_settings(nodes="x,y", concurrency=4)

    assert settings.nodes == ["x", "y"]
    assert settings.effective_concurrency == 4


@pytest.mark.parametrize(
    "overrides",
    [
        {"nodes": "n1,n1,n2"},
        {"nodes": ""},
        {"nemesis_profile": "bridge"},
        {"time_limit": 0},
        {"rpc_timeout": -1},
        {"concurrency": 0},
        {"ops_per_key": 0},
    ],
)
def test_invalid_settings(overrides: dict) -> None:
    """Bad options are rejected when settings are built."""
    with pytest.raises(ValidationError):
        get_settings(**overrides)


def test_zero_stagger_is_allowed() -> None:
    """Workers may run back to back."""
    assert get_settings(stagger=0).stagger == 0


def test_import_string() -> None:
    """Dotted paths resolve to attributes; bad paths are configuration errors."""
    assert import_string("tmharness.config:Settings") is Settings
    with pytest.raises(ConfigurationError):
        import_string("tmharness.config.Settings")
    with pytest.raises(ConfigurationError):
        import_string("tmharness.config:Nope")
