"""End-to-end flows: local tallying, publishing and community aggregation."""

from pathlib import Path

import pytest

from vaultdrops.analyst.stats import percent
from vaultdrops.common.models import Boss
from vaultdrops.community.aggregator import CommunityAggregator
from vaultdrops.community.publish import PublishService
from vaultdrops.community.remote import JsonlRemoteStore
from vaultdrops.tracker.client_id import get_client_id
from vaultdrops.tracker.local_store import BossTallyStore, JsonFileKeyValueStore

BOSS = Boss(name="Test Boss", slug="test-boss", drops=["ItemA", "ItemB"], tracker_id="test-boss")


def _client_store(tmp_path: Path, name: str, counts: list[int]) -> tuple[BossTallyStore, str]:
    kv = JsonFileKeyValueStore(tmp_path / f"{name}.json")
    store = BossTallyStore(kv, BOSS.slug, len(BOSS.columns))
    for column, n in enumerate(counts):
        store.increment(column, n)
    return store, get_client_id(kv)


def test_local_rates(tmp_path: Path) -> None:
    store, _ = _client_store(tmp_path, "client1", [7, 2, 1])
    assert store.total_trials == 10
    assert store.dedicated_total == 3
    assert percent(store.dedicated_total, store.total_trials) == 30.0


def test_local_counts_survive_restart(tmp_path: Path) -> None:
    _client_store(tmp_path, "client1", [7, 2, 1])
    kv = JsonFileKeyValueStore(tmp_path / "client1.json")
    assert BossTallyStore(kv, BOSS.slug, len(BOSS.columns)).counts == [7, 2, 1]


@pytest.mark.asyncio
async def test_two_clients_aggregate(tmp_path: Path) -> None:
    remote = JsonlRemoteStore(tmp_path / "shared")
    publisher = PublishService(remote)
    aggregator = CommunityAggregator(remote)

    store1, id1 = _client_store(tmp_path, "client1", [7, 2, 1])
    store2, id2 = _client_store(tmp_path, "client2", [3, 0, 2])
    assert id1 != id2

    assert (await publisher.publish_boss(BOSS, store1, id1)).ok
    assert (await publisher.publish_boss(BOSS, store2, id2)).ok

    agg = (await aggregator.aggregate_boss(BOSS.tracker_id, BOSS.columns)).aggregate
    assert agg.counts == [10, 2, 3]
    assert agg.total_trials == 15
    item_b = agg.cells[2].estimate
    assert item_b.point == pytest.approx(0.20)
    assert item_b.margin > 0


@pytest.mark.asyncio
async def test_republish_replaces_rather_than_adds(tmp_path: Path) -> None:
    remote = JsonlRemoteStore(tmp_path / "shared")
    publisher = PublishService(remote)
    aggregator = CommunityAggregator(remote)

    store1, id1 = _client_store(tmp_path, "client1", [7, 2, 1])
    store2, id2 = _client_store(tmp_path, "client2", [3, 0, 2])
    await publisher.publish_boss(BOSS, store1, id1)
    await publisher.publish_boss(BOSS, store2, id2)

    store1.increment(0, 2)
    store1.increment(1)
    await publisher.publish_boss(BOSS, store1, id1)

    agg = (await aggregator.aggregate_boss(BOSS.tracker_id, BOSS.columns)).aggregate
    assert agg.counts == [12, 3, 3]
    assert agg.total_trials == 18
    assert agg.submitters == 2


@pytest.mark.asyncio
async def test_republishing_unchanged_counts_is_idempotent(tmp_path: Path) -> None:
    remote = JsonlRemoteStore(tmp_path / "shared")
    publisher = PublishService(remote)
    aggregator = CommunityAggregator(remote)
    store1, id1 = _client_store(tmp_path, "client1", [7, 2, 1])

    await publisher.publish_boss(BOSS, store1, id1)
    first = (await aggregator.aggregate_boss(BOSS.tracker_id, BOSS.columns)).aggregate
    await publisher.publish_boss(BOSS, store1, id1)
    second = (await aggregator.aggregate_boss(BOSS.tracker_id, BOSS.columns)).aggregate

    assert first.counts == second.counts == [7, 2, 1]
    assert second.submitters == 1
