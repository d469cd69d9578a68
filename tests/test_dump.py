from __future__ import annotations

import json

import pytest

from fakes import FakeFetcher, insufficient, row, snapshot
from new_tube.core.dump import dump_playlist_ids, load_playlist_ids, restore_playlists
from new_tube.core.models import NewTubeError
from new_tube.core.store import PlaylistStore
from new_tube.core.sync_engine import SyncEngine


def test_dump_writes_sorted_ids(tmp_path, store: PlaylistStore, engine: SyncEngine) -> None:
    store.upsert(row("P2", "B1", "B0"))
    store.upsert(row("P1", "A1", "A0"))
    path = tmp_path / "out" / "playlists.json"

    ids = dump_playlist_ids(engine, path)

    assert ids == ["P1", "P2"]
    assert json.loads(path.read_text()) == ["P1", "P2"]
    assert list(path.parent.glob(".playlists_*")) == []


def test_load_round_trip_into_empty_store(tmp_path, store: PlaylistStore, fetcher: FakeFetcher, engine: SyncEngine) -> None:
    path = tmp_path / "playlists.json"
    path.write_text(json.dumps(["P1", "P2", "P3"]))
    fetcher.results.update({
        "P1": snapshot("A1", "A0"),
        "P2": insufficient("P2"),
        "P3": snapshot("C1", "C0"),
    })

    added, failures = restore_playlists(engine, load_playlist_ids(path))

    assert added == ["P1", "P3"]
    assert [f.playlist_id for f in failures] == ["P2"]
    assert store.playlist_ids() == ["P1", "P3"]


def test_restore_skips_tracked_and_duplicate_ids(store: PlaylistStore, fetcher: FakeFetcher, engine: SyncEngine) -> None:
    store.upsert(row("P1", "A1", "A0"))
    fetcher.results["P2"] = snapshot("B1", "B0")

    added, failures = restore_playlists(engine, ["P1", "P2", "P2"])

    assert added == ["P2"]
    assert failures == []
    assert fetcher.calls == ["P2"]
    assert store.get("P1").video_id == "A1"


def test_load_missing_file(tmp_path) -> None:
    with pytest.raises(NewTubeError, match="not found"):
        load_playlist_ids(tmp_path / "nope.json")


@pytest.mark.parametrize("content", ["{not json", '{"ids": ["P1"]}', '["P1", 2]'])
def test_load_rejects_malformed_dump(tmp_path, content: str) -> None:
    path = tmp_path / "playlists.json"
    path.write_text(content)

    with pytest.raises(NewTubeError):
        load_playlist_ids(path)
