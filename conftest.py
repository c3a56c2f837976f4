"""Shared pytest fixtures."""

import pytest


@pytest.fixture
def memory_env(monkeypatch):
    """Environment selecting in-memory stores and a dummy API key."""
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("FAL_API_KEY", "test-key")
    monkeypatch.delenv("REDIS_URL", raising=False)
    return monkeypatch
