"""Tests for the community web service."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from vaultdrops.community.aggregator import CommunityAggregator
from vaultdrops.community.remote import RemoteUnavailableError
from vaultdrops.web.main import app

CATALOG = """\
bosses:
  - name: Splaszone
    drops: [ItemA, ItemB]
    tracker_id: splaszone
  - name: Voraxis
    drops: [Buoy]
"""


class DownRemote:
    async def upsert(self, table, record, conflict_key) -> None:
        raise RemoteUnavailableError("down")

    async def select(self, table, filters=None):
        raise RemoteUnavailableError("down")


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text(CATALOG)
    monkeypatch.setenv("VAULTDROPS_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("VAULTDROPS_CATALOG_PATH", str(catalog))
    monkeypatch.setenv("VAULTDROPS_REMOTE__BACKEND", "jsonl")
    monkeypatch.delenv("VAULTDROPS_LOGFIRE__TOKEN", raising=False)
    with TestClient(app) as test_client:
        yield test_client


def _submit(client: TestClient, client_id: str, counts: dict[str, int], tracker="splaszone"):
    return client.post(
        "/api/submissions",
        json={"tracker_id": tracker, "client_id": client_id, "counts_snapshot": counts},
    )


def test_list_bosses(client: TestClient):
    response = client.get("/api/bosses")
    assert response.status_code == 200
    bosses = response.json()
    assert [b["slug"] for b in bosses] == ["splaszone", "voraxis"]
    assert bosses[0]["columns"] == ["No drop", "ItemA", "ItemB"]
    assert bosses[1]["tracker_id"] is None


def test_submit_and_list(client: TestClient):
    response = _submit(client, "c1", {"0": 7, "1": 2, "2": 1})
    assert response.status_code == 200
    assert response.json()["total_trials"] == 10

    listed = client.get("/api/submissions", params={"tracker_id": "splaszone"}).json()
    assert len(listed) == 1
    assert listed[0]["client_id"] == "c1"


def test_empty_submission_is_400(client: TestClient):
    response = _submit(client, "c1", {"0": 0})
    assert response.status_code == 400
    assert "EmptySubmission" in response.json()["detail"]


def test_negative_counts_are_rejected(client: TestClient):
    assert _submit(client, "c1", {"0": -1}).status_code == 422


def test_boss_aggregate(client: TestClient):
    _submit(client, "c1", {"0": 7, "1": 2, "2": 1})
    _submit(client, "c2", {"0": 3, "1": 0, "2": 2})

    body = client.get("/api/bosses/splaszone/aggregate").json()
    assert body["stale"] is False
    assert body["error"] is None
    aggregate = body["aggregate"]
    assert aggregate["counts"] == [10, 2, 3]
    assert aggregate["total_trials"] == 15
    assert aggregate["cells"][2]["estimate"]["point"] == pytest.approx(0.2)


def test_republish_replaces_previous(client: TestClient):
    _submit(client, "c1", {"0": 7, "1": 2, "2": 1})
    _submit(client, "c2", {"0": 3, "1": 0, "2": 2})
    assert _submit(client, "c1", {"0": 9, "1": 3, "2": 1}).status_code == 200

    aggregate = client.get("/api/bosses/splaszone/aggregate").json()["aggregate"]
    assert aggregate["counts"] == [12, 3, 3]
    assert aggregate["submitters"] == 2


def test_unknown_boss_is_404(client: TestClient):
    assert client.get("/api/bosses/nobody/aggregate").status_code == 404


def test_boss_without_tracker_id_is_400(client: TestClient):
    response = client.get("/api/bosses/voraxis/aggregate")
    assert response.status_code == 400
    assert "MissingTrackerId" in response.json()["detail"]


def test_delete_submission(client: TestClient):
    _submit(client, "c1", {"0": 7, "1": 2, "2": 1})
    _submit(client, "c2", {"0": 3, "1": 0, "2": 2})

    response = client.delete("/api/submissions/splaszone/c2")
    assert response.status_code == 200
    assert response.json() == {"removed": 1}

    aggregate = client.get("/api/bosses/splaszone/aggregate").json()["aggregate"]
    assert aggregate["counts"] == [7, 2, 1]


def test_delete_missing_submission_is_404(client: TestClient):
    assert client.delete("/api/submissions/splaszone/nobody").status_code == 404


def test_classmods_aggregate(client: TestClient):
    _submit(client, "c1", {"0-0": 3, "0-1": 1}, tracker="classmods")
    _submit(client, "c2", {"9-9": 1}, tracker="classmods")

    body = client.get("/api/classmods/aggregate").json()
    aggregate = body["aggregate"]
    assert aggregate["labels"] == ["Vex", "Rafa", "Amon", "Harlowe"]
    assert aggregate["matrix"][0][:2] == [3, 1]
    assert aggregate["submitters"] == 1
    assert aggregate["skipped_records"] == 1


def test_failed_fetch_serves_stale_aggregate(client: TestClient):
    _submit(client, "c1", {"0": 4, "1": 1})
    assert client.get("/api/bosses/splaszone/aggregate").status_code == 200

    aggregator = client.app.state.aggregator
    aggregator._remote = DownRemote()

    body = client.get("/api/bosses/splaszone/aggregate").json()
    assert body["stale"] is True
    assert "AggregateFetchFailed" in body["error"]
    assert body["aggregate"]["counts"] == [4, 1, 0]


def test_failed_fetch_without_cache_is_502(client: TestClient):
    client.app.state.aggregator = CommunityAggregator(DownRemote())
    assert client.get("/api/bosses/splaszone/aggregate").status_code == 502


def test_failed_publish_is_502(client: TestClient):
    client.app.state.publish_service._remote = DownRemote()
    response = _submit(client, "c1", {"0": 1})
    assert response.status_code == 502
    assert "PublishFailed" in response.json()["detail"]


def test_request_id_header_is_accepted(client: TestClient):
    response = client.get("/api/bosses", headers={"x-request-id": "req-1"})
    assert response.status_code == 200
