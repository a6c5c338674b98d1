"""Shared test fixtures and configuration."""

import pytest

from nicindex.db import dispose_all
from nicindex.settings import reset_settings_cache

from utils import build_store


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep every test off the user's store and progress bars."""
    monkeypatch.setenv("NICINDEX_DB_PATH", str(tmp_path / "default-store"))
    monkeypatch.setenv("NICINDEX_SHOW_PROGRESS", "false")
    reset_settings_cache()
    yield
    dispose_all()
    reset_settings_cache()


@pytest.fixture
def store(tmp_path):
    """Engine over a store built from the sample APNIC feed."""
    engine, _ = build_store(tmp_path)
    return engine


@pytest.fixture
def store_stats(tmp_path):
    _, stats = build_store(tmp_path)
    return stats
