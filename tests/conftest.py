from __future__ import annotations

import pytest

from fakes import FakeFetcher
from new_tube.core.store import PlaylistStore
from new_tube.core.sync_engine import SyncEngine


@pytest.fixture
def store(tmp_path):
    s = PlaylistStore(tmp_path / "new_tube.db")
    yield s
    s.close()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def engine(store: PlaylistStore, fetcher: FakeFetcher) -> SyncEngine:
    return SyncEngine(store, fetcher)
