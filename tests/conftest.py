"""Pytest fixtures for kvmigrate tests"""
import json
import pytest
from datetime import datetime, timedelta, timezone

from kvmigrate.config import MigrationConfig
from kvmigrate.errors import StoreError
from kvmigrate.store import MemoryStore


class FlakyStore(MemoryStore):
    """MemoryStore that raises StoreError for selected operations.

    fail_set / fail_delete are predicates on the key; fail_list makes
    list_keys() raise.
    """

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_set = lambda key: False
        self.fail_delete = lambda key: False
        self.fail_list = False
        self.writes = []

    def set(self, key, value):
        if self.fail_set(key):
            raise StoreError(f"simulated write failure for {key}")
        self.writes.append(key)
        super().set(key, value)

    def delete(self, key):
        if self.fail_delete(key):
            raise StoreError(f"simulated delete failure for {key}")
        super().delete(key)

    def list_keys(self):
        if self.fail_list:
            raise StoreError("simulated listing failure")
        return super().list_keys()


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture
def config():
    """Default migration config under the 'app' namespace."""
    return MigrationConfig(namespace="app")


@pytest.fixture
def store():
    """Empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def flaky_store():
    """In-memory store with injectable failures."""
    return FlakyStore()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def seeded_store():
    """Store holding application records, an unrelated key and a ledger at 1.0.0."""
    return MemoryStore({
        "app-data-version": "1.0.0",
        "app-sections": json.dumps([{"id": "s1", "title": "Intro"}]),
        "app-business-plans": json.dumps([{"id": "p1", "name": "Bakery"}]),
        "other-tool-setting": "dark",
    })
