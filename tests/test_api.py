"""
API tests through the full application wiring.

The upstream tracker is replaced by an in-memory client; everything else
(config files, SQLite store, cache, calculator) is the real thing. Runs use
the wall clock, and the fixture calendar lies entirely in the past, so every
cycle is closed and frozen on its first observation.
"""

import pytest
from fastapi.testclient import TestClient

from cycle_kpi.config import Settings
from cycle_kpi.infrastructure.tracker import ITrackerClient, TrackerIssue, TrackerLabel
from cycle_kpi.main import create_app

from conftest import utc

LABELS = [
    TrackerLabel("l-del", "DEL"),
    TrackerLabel("l-cancel", "DEL-CANCELLED"),
] + [TrackerLabel(f"l-c{i}", f"2026Q1-C{i}") for i in range(1, 7)]


class FakeTrackerClient(ITrackerClient):
    """Alpha has two committed C1 items, one of them done before the C1 end."""

    def __init__(self):
        self.closed = False

    async def list_labels(self):
        return list(LABELS)

    async def fetch_items(self, team_id, label_id):
        if team_id == "team-alpha" and label_id == "l-c1":
            return [
                TrackerIssue("A", "ENG-1", frozenset({"l-c1", "l-del"}), True, utc(2026, 1, 5)),
                TrackerIssue("B", "ENG-2", frozenset({"l-c1", "l-del"}), False, None),
                TrackerIssue("X", "ENG-3", frozenset({"l-c1", "l-del", "l-cancel"}), False, None),
            ]
        return []

    async def close(self):
        self.closed = True


@pytest.fixture
def tracker():
    return FakeTrackerClient()


@pytest.fixture
def client(config_files, sqlite_url, tracker):
    calendar_path, groups_path = config_files
    settings = Settings(
        _env_file=None,
        database_url=sqlite_url,
        calendar_path=calendar_path,
        groups_path=groups_path,
        kpi_evaluation_interval=0,
        config_watch_enabled=False,
    )
    app = create_app(settings, tracker_client=tracker)
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"] == "connected"
        assert body["checks"]["scheduler"] == "stopped"

    def test_root_lists_modules(self, client):
        body = client.get("/").json()
        assert set(body["modules"]) == {"kpi", "snapshots"}

    def test_correlation_id_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "req-123"})
        assert response.headers["X-Correlation-ID"] == "req-123"
        assert client.get("/health").headers["X-Correlation-ID"]


class TestKpiRuns:

    def test_latest_before_any_run_is_404(self, client):
        response = client.get("/kpi/runs/latest")
        assert response.status_code == 404
        assert "not found" in response.json()["detail"]

    def test_run_reports_every_group_and_cycle(self, client):
        response = client.post("/kpi/runs")
        assert response.status_code == 200
        body = response.json()

        assert [group["group"] for group in body["groups"]] == ["Alpha", "Beta"]
        assert all(len(group["rows"]) == 6 for group in body["groups"])
        assert body["current_cycle"] == "C6"
        assert body["headline_cycle"] == "C6"
        assert body["fallback_cycle"] == "C1"

        alpha_c1 = body["groups"][0]["rows"][0]
        assert alpha_c1["cycle"] == "C1"
        assert alpha_c1["status"] == "OK"
        assert alpha_c1["committed"] == 2
        assert alpha_c1["completed_by_end"] == 1
        assert alpha_c1["spillover"] == 1
        assert alpha_c1["delivery_pct"] == 50
        assert alpha_c1["delivery_pct_display"] == "50%"
        assert alpha_c1["frozen"] is True
        assert alpha_c1["active"] is False
        assert alpha_c1["open_item_ids"] == ["B"]

        latest = client.get("/kpi/runs/latest").json()
        assert latest["run_id"] == body["run_id"]

    def test_cycle_rows(self, client):
        client.post("/kpi/runs")

        response = client.get("/kpi/cycles/c1")
        assert response.status_code == 200
        body = response.json()
        assert body["cycle"] == "C1"
        assert body["committed_total"] == 2
        assert body["completed_total"] == 1
        assert body["spillover_total"] == 1
        assert body["delivery_pct"] == 50
        assert body["delivery_pct_display"] == "50%"
        assert [row["group"] for row in body["rows"]] == ["Alpha", "Beta"]

    def test_unknown_cycle_is_422(self, client):
        client.post("/kpi/runs")
        response = client.get("/kpi/cycles/C9")
        assert response.status_code == 422
        assert response.json()["details"] == {"cycle": "C9"}

    def test_cycle_rows_before_any_run_is_404(self, client):
        assert client.get("/kpi/cycles/C1").status_code == 404


class TestSnapshots:

    def test_snapshots_after_run(self, client):
        assert client.get("/snapshots").json()["total_count"] == 0

        client.post("/kpi/runs")

        listing = client.get("/snapshots").json()
        assert listing["total_count"] == 12
        assert client.get("/snapshots", params={"group": "Beta"}).json()["total_count"] == 6

        detail = client.get("/snapshots/Alpha/C1").json()
        assert detail["group"] == "Alpha"
        assert detail["cycle"] == "C1"
        assert detail["frozen"] is True
        assert detail["committed_count"] == 2
        assert detail["item_ids"] == ["A", "B"]

    def test_snapshot_not_found(self, client):
        response = client.get("/snapshots/Alpha/C1")
        assert response.status_code == 404

    def test_snapshot_invalid_cycle(self, client):
        assert client.get("/snapshots/Alpha/C0").status_code == 422


class TestCache:

    def test_cache_stats_and_clear(self, client):
        client.post("/kpi/runs")

        stats = client.get("/kpi/cache/stats").json()
        # label catalog plus one item list per (team, cycle label)
        assert stats["entries"] == 13
        assert stats["misses"] == 13

        client.post("/kpi/runs")
        assert client.get("/kpi/cache/stats").json()["hits"] == 13

        cleared = client.delete("/kpi/cache").json()
        assert cleared == {"cleared": 13}
        assert client.get("/kpi/cache/stats").json()["entries"] == 0


class TestLifecycle:

    def test_injected_client_is_not_closed(self, config_files, sqlite_url, tracker):
        calendar_path, groups_path = config_files
        settings = Settings(
            _env_file=None,
            database_url=sqlite_url,
            calendar_path=calendar_path,
            groups_path=groups_path,
            kpi_evaluation_interval=0,
            config_watch_enabled=False,
        )
        with TestClient(create_app(settings, tracker_client=tracker)):
            pass
        assert tracker.closed is False

    def test_missing_config_fails_startup(self, tmp_path, sqlite_url, tracker):
        settings = Settings(
            _env_file=None,
            database_url=sqlite_url,
            calendar_path=tmp_path / "missing.json",
            groups_path=tmp_path / "missing_groups.json",
            kpi_evaluation_interval=0,
            config_watch_enabled=False,
        )
        with pytest.raises(Exception):
            with TestClient(create_app(settings, tracker_client=tracker)):
                pass
