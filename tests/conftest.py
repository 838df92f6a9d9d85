"""
Shared pytest fixtures for xennon tests.

Stores are created under tmp_path with scheduled backups disabled so no
timer thread outlives a test.
"""

import json
from pathlib import Path

import pytest

from xennon import XennonStore


def on_disk(store: XennonStore) -> dict:
    """Parse the store file as it is on disk right now."""
    return json.loads(Path(store.path).read_text(encoding="utf-8"))


@pytest.fixture
def make_store(tmp_path):
    """Factory for stores in tmp_path; every store is closed at teardown."""
    opened = []

    def _make(name="test", **overrides):
        overrides.setdefault("backups", {"enabled": False})
        store = XennonStore(name=name, path=tmp_path, **overrides)
        opened.append(store)
        return store

    yield _make
    for store in opened:
        store.close()


@pytest.fixture
def store(make_store):
    return make_store()


@pytest.fixture
def people(store):
    """Store holding five people; returns (store, [ids])."""
    ids = store.add([
        {"name": "Ada", "age": 36, "team": "core"},
        {"name": "Bob", "age": "30", "team": "core"},
        {"name": "Cy", "age": 30, "team": "web"},
        {"name": "Di", "age": 41, "team": "web"},
        {"name": "Ed", "age": 22, "team": "ops"},
    ]).result()
    return store, ids
