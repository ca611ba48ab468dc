"""Test-specific fixtures."""

import os

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from database import MemoryStore, get_store  # noqa: E402
from main import app  # noqa: E402


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def sample_state():
    return {
        "selectedYear": 2024,
        "hideWeekendColors": False,
        "holidaySummary": {"hrDays": [], "fdDays": []},
        "dayStates": {},
    }
