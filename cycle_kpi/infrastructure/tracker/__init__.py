"""
Work Tracker Client Infrastructure
==================================

GraphQL client for the upstream work tracker (Linear).

This module abstracts the tracker API behind ITrackerClient so the KPI
context depends on an interface, not on httpx or the GraphQL schema.
Only labels and issues are read; the tracker's own cycle field is never
requested, cycle membership comes from labels alone.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional

import httpx

from cycle_kpi.config import Settings
from cycle_kpi.core import TrackerException
from cycle_kpi.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Queries ==========

Q_ALL_LABELS = """
query($first: Int!, $after: String) {
  issueLabels(first: $first, after: $after) {
    nodes { id name }
    pageInfo { hasNextPage endCursor }
  }
}
"""

Q_ISSUES_BY_TEAM_AND_LABEL = """
query($first: Int!, $after: String, $teamId: ID!, $labelId: ID!) {
  issues(first: $first, after: $after, filter: {
    team: { id: { eq: $teamId } },
    labels: { id: { eq: $labelId } }
  }) {
    nodes {
      id
      identifier
      completedAt
      state { type }
      labels { nodes { id name } }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""


# ========== Results ==========

class TrackerLabel:
    """A label as returned by the tracker."""

    def __init__(self, id: str, name: str):
        self.id = id
        self.name = name


class TrackerIssue:
    """An issue as returned by the tracker."""

    def __init__(
        self,
        id: str,
        identifier: Optional[str],
        label_ids: FrozenSet[str],
        is_done: bool,
        completed_at: Optional[datetime]
    ):
        self.id = id
        self.identifier = identifier
        self.label_ids = label_ids
        self.is_done = is_done
        self.completed_at = completed_at


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as sent by the tracker ("...Z")."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_issue(node: Dict[str, Any]) -> TrackerIssue:
    labels = (node.get("labels") or {}).get("nodes") or []
    state = node.get("state") or {}
    return TrackerIssue(
        id=node["id"],
        identifier=node.get("identifier"),
        label_ids=frozenset(label["id"] for label in labels),
        is_done=state.get("type") == "completed",
        completed_at=parse_timestamp(node.get("completedAt"))
    )


# ========== Circuit Breaker ==========

class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            elapsed = self._clock() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


# ========== Client ==========

class ITrackerClient(ABC):
    """
    Interface for work tracker operations.

    Following Interface Segregation Principle - only methods
    actually needed by the KPI run are defined.
    """

    @abstractmethod
    async def list_labels(self) -> List[TrackerLabel]:
        """All issue labels of the workspace."""

    @abstractmethod
    async def fetch_items(self, team_id: str, label_id: str) -> List[TrackerIssue]:
        """All issues of a team carrying a label, fully paginated."""

    async def close(self) -> None:
        """Release network resources."""


class LinearTrackerClient(ITrackerClient):
    """
    Linear GraphQL client with retry, backoff and circuit breaker.

    Transport errors and 5xx responses are retried with exponential backoff;
    4xx responses and GraphQL errors fail immediately.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 30.0,
        page_size: int = 100,
        max_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self._api_url = api_url
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._page_size = page_size
        self._max_retries = max(1, max_retries)
        self._retry_backoff_seconds = retry_backoff_seconds
        self._http_client = http_client
        self._owns_client = http_client is None
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60.0
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None
    ) -> "LinearTrackerClient":
        return cls(
            api_url=settings.tracker_api_url,
            api_key=settings.tracker_api_key,
            timeout_seconds=settings.tracker_timeout_seconds,
            page_size=settings.tracker_page_size,
            max_retries=settings.tracker_max_retries,
            retry_backoff_seconds=settings.tracker_retry_backoff_seconds,
            http_client=http_client
        )

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout_seconds)
        return self._http_client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = self._api_key
        return headers

    async def gql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Execute one GraphQL request and return its `data` object.

        Raises:
            TrackerException: On GraphQL errors, 4xx responses, exhausted
                retries or an open circuit
        """
        if not self._circuit_breaker.allow_request():
            raise TrackerException("circuit breaker open, request rejected")

        payload = {"query": query, "variables": variables or {}}
        last_error: Optional[str] = None

        for attempt in range(self._max_retries):
            try:
                response = await self._get_client().post(
                    self._api_url,
                    json=payload,
                    headers=self._headers()
                )
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "Tracker request failed",
                    extra={"error": last_error, "attempt": attempt + 1}
                )
            else:
                if response.status_code >= 500:
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(
                        "Tracker returned server error",
                        extra={"status_code": response.status_code, "attempt": attempt + 1}
                    )
                else:
                    return self._parse_response(response)

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_backoff_seconds * (2 ** attempt))

        self._circuit_breaker.record_failure()
        logger.error(
            "Tracker request exhausted retries",
            extra={"error": last_error, "attempts": self._max_retries}
        )
        raise TrackerException(
            f"request failed after {self._max_retries} attempts: {last_error}",
            {"attempts": self._max_retries}
        )

    def _parse_response(self, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code >= 400:
            raise TrackerException(
                f"HTTP {response.status_code}",
                {"status_code": response.status_code, "body": response.text[:500]}
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TrackerException(f"invalid JSON response: {e}") from e

        # The endpoint answered, so the circuit is healthy even if the query failed
        self._circuit_breaker.record_success()

        if not isinstance(body, dict):
            raise TrackerException(f"unexpected response body: {type(body).__name__}")

        errors = body.get("errors") or []
        if errors:
            message = "; ".join(str(error.get("message", error)) for error in errors)
            raise TrackerException(f"GraphQL error: {message}", {"errors": errors})

        data = body.get("data")
        if not isinstance(data, dict):
            raise TrackerException("response carried no data")
        return data

    async def paginate_nodes(
        self,
        query: str,
        variables: Dict[str, Any],
        connection_key: str
    ) -> List[Dict[str, Any]]:
        """Follow pageInfo cursors until the `connection_key` connection is exhausted."""
        nodes: List[Dict[str, Any]] = []
        after: Optional[str] = None

        while True:
            data = await self.gql(query, {**variables, "first": self._page_size, "after": after})
            connection = data.get(connection_key)
            if not isinstance(connection, dict):
                raise TrackerException(f"response carried no {connection_key} connection")
            page = connection.get("nodes") or []
            if not isinstance(page, list):
                raise TrackerException(f"{connection_key}.nodes is not a list")
            nodes.extend(page)

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            after = page_info.get("endCursor")
            if after is None:
                raise TrackerException("hasNextPage without endCursor")

        return nodes

    async def list_labels(self) -> List[TrackerLabel]:
        nodes = await self.paginate_nodes(Q_ALL_LABELS, {}, "issueLabels")
        return [TrackerLabel(id=node["id"], name=node.get("name") or "") for node in nodes]

    async def fetch_items(self, team_id: str, label_id: str) -> List[TrackerIssue]:
        nodes = await self.paginate_nodes(
            Q_ISSUES_BY_TEAM_AND_LABEL,
            {"teamId": team_id, "labelId": label_id},
            "issues"
        )
        logger.debug(
            "Fetched tracker issues",
            extra={"team_id": team_id, "label_id": label_id, "count": len(nodes)}
        )
        return [parse_issue(node) for node in nodes]

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None


__all__ = [
    "ITrackerClient",
    "LinearTrackerClient",
    "TrackerLabel",
    "TrackerIssue",
    "CircuitBreaker",
    "CircuitState",
    "parse_issue",
    "parse_timestamp",
]
