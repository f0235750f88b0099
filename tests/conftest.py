"""Shared pytest configuration and fixtures."""
from __future__ import annotations

import os

import pytest

# Provide required env vars before any app module is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("VISION_PROVIDER", "mock")
os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'screenshots.db'}"


@pytest.fixture
def recorded_sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(recorded_sleeps):
    async def _sleep(seconds: float) -> None:
        recorded_sleeps.append(float(seconds))
    return _sleep
