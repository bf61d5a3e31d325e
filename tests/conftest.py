from datetime import datetime

import pytest

from bniconnect.backend import Backend
from bniconnect.base_utils import BaseUtils
from bniconnect.entities import USERS_KEY
from bniconnect.image_store import LocalImageStore
from bniconnect.simple_cache import SimpleCache

from helpers import MemoryDocumentStore, make_user, run


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def cache():
    return SimpleCache(ttl_seconds=60)


@pytest.fixture
def image_store(tmp_path):
    return LocalImageStore(str(tmp_path))


@pytest.fixture
def backend(store, image_store, cache):
    return Backend(store=store, image_store=image_store, cache=cache)


@pytest.fixture
def seed_users(store):
    def _seed(*users):
        run(store.write(USERS_KEY, list(users) or [make_user()]))
    return _seed


@pytest.fixture
def frozen_clock(monkeypatch):
    """Pin BaseUtils' clock. Returns a setter."""
    state = {"now": datetime(2026, 3, 10, 12, 0, 0)}
    monkeypatch.setattr(BaseUtils, "clock", staticmethod(lambda: state["now"]))

    def _set(dt):
        state["now"] = dt
    return _set
