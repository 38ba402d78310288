"""Tests for the publish protocol."""

from pathlib import Path

import httpx
import pytest

from vaultdrops.common.models import CLASSMOD_TRACKER_ID, Boss
from vaultdrops.community.publish import PublishService
from vaultdrops.community.remote import JsonlRemoteStore, RemoteTransientError
from vaultdrops.community.results import ErrorKind
from vaultdrops.tracker.local_store import (
    BossTallyStore,
    ClassModTallyStore,
    MemoryKeyValueStore,
)


class FailingRemote:
    def __init__(self, error: Exception) -> None:
        self.error = error
        self.calls = 0

    async def upsert(self, table, record, conflict_key) -> None:
        self.calls += 1
        raise self.error

    async def select(self, table, filters=None):
        raise self.error


@pytest.fixture
def remote(tmp_path: Path) -> JsonlRemoteStore:
    return JsonlRemoteStore(tmp_path)


@pytest.mark.asyncio
async def test_publish_stores_record(remote: JsonlRemoteStore) -> None:
    service = PublishService(remote)
    result = await service.publish("splaszone", {"0": 7, "1": 2, "2": 0}, "client-1")

    assert result.ok
    assert result.record is not None
    assert result.record.total_trials == 9

    stored = await remote.select("submissions", {"tracker_id": "splaszone"})
    assert len(stored) == 1
    assert stored[0]["client_id"] == "client-1"
    assert stored[0]["counts_snapshot"] == {"0": 7, "1": 2, "2": 0}
    assert stored[0]["total_trials"] == 9


@pytest.mark.asyncio
async def test_empty_submission_is_rejected(remote: JsonlRemoteStore) -> None:
    result = await PublishService(remote).publish("splaszone", {"0": 0, "1": 0}, "client-1")
    assert not result.ok
    assert result.error.kind == ErrorKind.EMPTY_SUBMISSION
    assert await remote.select("submissions") == []


@pytest.mark.asyncio
@pytest.mark.parametrize("tracker_id", [None, ""])
async def test_missing_tracker_id(remote: JsonlRemoteStore, tracker_id) -> None:
    result = await PublishService(remote).publish(tracker_id, {"0": 1}, "client-1")
    assert result.error.kind == ErrorKind.MISSING_TRACKER_ID
    assert await remote.select("submissions") == []


@pytest.mark.asyncio
async def test_empty_check_runs_before_tracker_check(remote: JsonlRemoteStore) -> None:
    result = await PublishService(remote).publish(None, {}, "client-1")
    assert result.error.kind == ErrorKind.EMPTY_SUBMISSION


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [RemoteTransientError("503"), httpx.ConnectError("refused")],
)
async def test_remote_failure_becomes_publish_failed(error: Exception) -> None:
    failing = FailingRemote(error)
    result = await PublishService(failing).publish("splaszone", {"0": 1}, "client-1")
    assert failing.calls == 1
    assert result.error.kind == ErrorKind.PUBLISH_FAILED
    assert result.record is None


@pytest.mark.asyncio
async def test_corrupt_table_becomes_publish_failed(tmp_path: Path) -> None:
    (tmp_path / "submissions.jsonl").write_text("{not json\n")
    result = await PublishService(JsonlRemoteStore(tmp_path)).publish(
        "splaszone", {"0": 1}, "client-1"
    )
    assert result.error.kind == ErrorKind.PUBLISH_FAILED
    assert result.record is None


@pytest.mark.asyncio
async def test_negative_counts_fail_validation(remote: JsonlRemoteStore) -> None:
    result = await PublishService(remote).publish("splaszone", {"0": 3, "1": -1}, "client-1")
    assert result.error.kind == ErrorKind.PUBLISH_FAILED


@pytest.mark.asyncio
async def test_republish_replaces_previous(remote: JsonlRemoteStore) -> None:
    service = PublishService(remote)
    await service.publish("splaszone", {"0": 7, "1": 2}, "client-1")
    await service.publish("splaszone", {"0": 9, "1": 3}, "client-1")

    stored = await remote.select("submissions", {"tracker_id": "splaszone"})
    assert len(stored) == 1
    assert stored[0]["counts_snapshot"] == {"0": 9, "1": 3}


@pytest.mark.asyncio
async def test_publish_boss_uses_local_snapshot(remote: JsonlRemoteStore) -> None:
    boss = Boss(name="Splaszone", slug="splaszone", drops=["A", "B"], tracker_id="splaszone")
    store = BossTallyStore(MemoryKeyValueStore(), boss.slug, len(boss.columns))
    store.increment(0, 4)
    store.increment(2)

    result = await PublishService(remote).publish_boss(boss, store, "client-1")

    assert result.ok
    assert result.record.counts_snapshot == {"0": 4, "1": 0, "2": 1}
    # publishing never touches local counts
    assert store.counts == [4, 0, 1]


@pytest.mark.asyncio
async def test_publish_boss_without_tracker_id(remote: JsonlRemoteStore) -> None:
    boss = Boss(name="Voraxis", slug="voraxis", drops=["A"])
    store = BossTallyStore(MemoryKeyValueStore(), boss.slug, len(boss.columns))
    store.increment(0)
    result = await PublishService(remote).publish_boss(boss, store, "client-1")
    assert result.error.kind == ErrorKind.MISSING_TRACKER_ID


@pytest.mark.asyncio
async def test_publish_class_mods_sends_matrix(remote: JsonlRemoteStore) -> None:
    store = ClassModTallyStore(MemoryKeyValueStore())
    store.set_active_column(1)
    store.increment(4, 2)
    store.increment(0, 1)

    result = await PublishService(remote).publish_class_mods(store, "client-1")

    assert result.ok
    assert result.record.tracker_id == CLASSMOD_TRACKER_ID
    assert result.record.counts_snapshot["1-2"] == 1
    assert result.record.counts_snapshot["1-1"] == 1
    assert result.record.total_trials == 2
    assert len(result.record.counts_snapshot) == 16


@pytest.mark.asyncio
async def test_publish_class_mods_without_played_character_is_empty(
    remote: JsonlRemoteStore,
) -> None:
    store = ClassModTallyStore(MemoryKeyValueStore())
    store.increment(0, 0)
    result = await PublishService(remote).publish_class_mods(store, "client-1")
    assert result.error.kind == ErrorKind.EMPTY_SUBMISSION
