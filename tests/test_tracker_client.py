"""
Tests for the GraphQL tracker client and the cached gateway.

HTTP is served by httpx.MockTransport; no network access.
"""

import json
from datetime import timezone

import httpx
import pytest

from cycle_kpi.core import TrackerException
from cycle_kpi.infrastructure.tracker import (
    CircuitBreaker, CircuitState, LinearTrackerClient, TrackerIssue, TrackerLabel,
    parse_issue, parse_timestamp,
)
from cycle_kpi.kpi.infrastructure import CachedTrackerGateway
from cycle_kpi.shared.infrastructure.cache import TTLCache

from conftest import async_test

API_URL = "https://tracker.test/graphql"


def issue_node(issue_id, *label_ids, state="started", completed_at=None):
    return {
        "id": issue_id,
        "identifier": f"ENG-{issue_id}",
        "completedAt": completed_at,
        "state": {"type": state},
        "labels": {"nodes": [{"id": label_id, "name": label_id} for label_id in label_ids]},
    }


def make_client(handler, **kwargs) -> LinearTrackerClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("retry_backoff_seconds", 0)
    return LinearTrackerClient(API_URL, api_key="lin_api_key", http_client=http_client, **kwargs)


class TestParsing:

    def test_parse_completed_issue(self):
        issue = parse_issue(issue_node(
            "1", "l-del", "l-c1", state="completed", completed_at="2026-01-10T12:00:00.000Z"
        ))
        assert issue.is_done is True
        assert issue.label_ids == frozenset({"l-del", "l-c1"})
        assert issue.completed_at.tzinfo is not None
        assert issue.completed_at.utcoffset().total_seconds() == 0
        assert issue.identifier == "ENG-1"

    def test_parse_open_issue_without_labels(self):
        issue = parse_issue({"id": "2", "state": None, "labels": None})
        assert issue.is_done is False
        assert issue.completed_at is None
        assert issue.label_ids == frozenset()

    def test_parse_timestamp(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("2026-01-15T00:00:00Z").tzinfo is not None
        assert parse_timestamp("2026-01-15T00:00:00+00:00").astimezone(timezone.utc).day == 15


class TestPaginationAndRequests:

    @async_test
    async def test_fetch_items_follows_cursor(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            requests.append((request, body))
            if body["variables"]["after"] is None:
                page = {
                    "nodes": [issue_node("1", "l-c1")],
                    "pageInfo": {"hasNextPage": True, "endCursor": "cursor-1"},
                }
            else:
                page = {
                    "nodes": [issue_node("2", "l-c1", state="completed",
                                         completed_at="2026-01-05T00:00:00Z")],
                    "pageInfo": {"hasNextPage": False, "endCursor": None},
                }
            return httpx.Response(200, json={"data": {"issues": page}})

        client = make_client(handler, page_size=1)
        try:
            issues = await client.fetch_items("team-alpha", "l-c1")
        finally:
            await client.close()

        assert [issue.id for issue in issues] == ["1", "2"]
        assert issues[1].is_done
        assert len(requests) == 2

        first_request, first_body = requests[0]
        assert first_request.headers["Authorization"] == "lin_api_key"
        assert first_body["variables"]["teamId"] == "team-alpha"
        assert first_body["variables"]["labelId"] == "l-c1"
        assert first_body["variables"]["first"] == 1
        assert requests[1][1]["variables"]["after"] == "cursor-1"
        assert "cycle" not in first_body["query"]

    @async_test
    async def test_list_labels(self):
        def handler(request):
            return httpx.Response(200, json={"data": {"issueLabels": {
                "nodes": [{"id": "l-del", "name": "DEL"}, {"id": "l-c1", "name": "2026Q1-C1"}],
                "pageInfo": {"hasNextPage": False, "endCursor": None},
            }}})

        client = make_client(handler)
        try:
            labels = await client.list_labels()
        finally:
            await client.close()
        assert [(label.id, label.name) for label in labels] == [
            ("l-del", "DEL"), ("l-c1", "2026Q1-C1")
        ]

    @async_test
    async def test_missing_end_cursor_raises(self):
        def handler(request):
            return httpx.Response(200, json={"data": {"issueLabels": {
                "nodes": [], "pageInfo": {"hasNextPage": True, "endCursor": None},
            }}})

        client = make_client(handler)
        try:
            with pytest.raises(TrackerException, match="endCursor"):
                await client.list_labels()
        finally:
            await client.close()


class TestRetriesAndErrors:

    @async_test
    async def test_graphql_errors_are_not_retried(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(200, json={"errors": [{"message": "Field 'x' unknown"}]})

        client = make_client(handler)
        try:
            with pytest.raises(TrackerException, match="Field 'x' unknown"):
                await client.gql("query { x }")
        finally:
            await client.close()
        assert calls == 1
        assert client.circuit_breaker.state == CircuitState.CLOSED

    @async_test
    async def test_server_error_retried_then_succeeds(self):
        responses = [httpx.Response(502), httpx.Response(503),
                     httpx.Response(200, json={"data": {"ok": True}})]

        def handler(request):
            return responses.pop(0)

        client = make_client(handler, max_retries=3)
        try:
            assert await client.gql("query { ok }") == {"ok": True}
        finally:
            await client.close()
        assert responses == []

    @async_test
    async def test_transport_error_retried(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"data": {"ok": True}})

        client = make_client(handler, max_retries=2)
        try:
            assert await client.gql("query { ok }") == {"ok": True}
        finally:
            await client.close()
        assert calls == 2

    @async_test
    async def test_client_error_fails_immediately(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(401, text="unauthorized")

        client = make_client(handler, max_retries=3)
        try:
            with pytest.raises(TrackerException, match="HTTP 401"):
                await client.gql("query { ok }")
        finally:
            await client.close()
        assert calls == 1

    @async_test
    async def test_missing_connection_raises_tracker_exception(self):
        def handler(request):
            return httpx.Response(200, json={"data": {}})

        client = make_client(handler)
        try:
            with pytest.raises(TrackerException, match="no issueLabels connection"):
                await client.list_labels()
            with pytest.raises(TrackerException, match="no issues connection"):
                await client.fetch_items("team-alpha", "l-c1")
        finally:
            await client.close()

    @async_test
    async def test_malformed_bodies_raise_tracker_exception(self):
        bodies = [
            [1, 2],
            {"data": []},
            {"data": {"issueLabels": []}},
            {"data": {"issueLabels": {"nodes": {"id": "l-del"}}}},
        ]

        def handler(request):
            return httpx.Response(200, json=bodies.pop(0))

        client = make_client(handler)
        try:
            for _ in range(4):
                with pytest.raises(TrackerException):
                    await client.list_labels()
        finally:
            await client.close()
        assert bodies == []
        assert client.circuit_breaker.state == CircuitState.CLOSED

    @async_test
    async def test_exhausted_retries_open_the_circuit(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        client = make_client(handler, max_retries=2, circuit_breaker=breaker)
        try:
            for _ in range(2):
                with pytest.raises(TrackerException, match="after 2 attempts"):
                    await client.gql("query { ok }")
            assert breaker.state == CircuitState.OPEN

            with pytest.raises(TrackerException, match="circuit breaker open"):
                await client.gql("query { ok }")
        finally:
            await client.close()
        assert calls == 4


class TestCircuitBreaker:

    def test_half_open_after_recovery_timeout(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=lambda: now[0])

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

        now[0] = 30.0
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

        now[0] = 60.0
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED


class FakeTrackerClient:
    """Counts upstream calls made through the gateway."""

    def __init__(self):
        self.label_calls = 0
        self.item_calls = []

    async def list_labels(self):
        self.label_calls += 1
        return [TrackerLabel("l-del", "DEL"), TrackerLabel("l-c1", " 2026q1-c1 ")]

    async def fetch_items(self, team_id, label_id):
        self.item_calls.append((team_id, label_id))
        return [TrackerIssue("1", "ENG-1", frozenset({label_id}), False, None)]


class TestCachedGateway:

    @async_test
    async def test_label_resolution_is_case_insensitive_and_cached(self):
        client = FakeTrackerClient()
        gateway = CachedTrackerGateway(client, TTLCache(default_ttl=60))

        resolved = await gateway.resolve_labels(["del", "2026Q1-C1", "2026Q1-C2"])
        assert resolved == {"del": "l-del", "2026Q1-C1": "l-c1", "2026Q1-C2": None}

        await gateway.resolve_labels(["DEL"])
        assert client.label_calls == 1

    @async_test
    async def test_items_cached_per_team_and_label(self):
        client = FakeTrackerClient()
        cache = TTLCache(default_ttl=60)
        gateway = CachedTrackerGateway(client, cache)

        first = await gateway.fetch_items("team-alpha", "l-c1")
        await gateway.fetch_items("team-alpha", "l-c1")
        await gateway.fetch_items("team-beta", "l-c1")

        assert first[0].id == "1"
        assert first[0].has_label("l-c1")
        assert client.item_calls == [("team-alpha", "l-c1"), ("team-beta", "l-c1")]
        assert cache.get(CachedTrackerGateway.items_key("team-alpha", "l-c1")) is not None
