"""Shared test fixtures for the Nexo price service."""

from collections.abc import Callable

import httpx
import pytest

from nexo.config import AppSettings, CronSettings, HttpSettings, RateLimitSettings, StoreSettings
from nexo.http.fetcher import HttpFetcher


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """MockTransport handler routing by (host, path); unknown routes answer 404.

    A route is either a canned httpx.Response (served as a fresh copy on
    every call) or a callable taking the request.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], object] = {}
        self.requests: list[httpx.Request] = []

    def calls(self, route: tuple[str, str]) -> list[httpx.Request]:
        return [r for r in self.requests if (r.url.host, r.url.path) == route]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.url.host, request.url.path))
        if route is None:
            return httpx.Response(404)
        if isinstance(route, httpx.Response):
            return httpx.Response(route.status_code, content=route.content, headers=route.headers)
        return route(request)  # type: ignore[operator]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def http_settings() -> HttpSettings:
    """HTTP policy with no delay between retries."""
    return HttpSettings(retry_delay=0.0)


@pytest.fixture
def make_fetcher(http_settings: HttpSettings) -> Callable[[Callable], HttpFetcher]:
    """Factory: HttpFetcher whose upstream is the given MockTransport handler."""

    def _make(handler: Callable) -> HttpFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpFetcher(http_settings, client=client)

    return _make


@pytest.fixture
def mock_settings(tmp_path, http_settings: HttpSettings) -> AppSettings:
    """Return AppSettings with test defaults (temp store, known cron secret)."""
    return AppSettings(
        log_level="DEBUG",
        serverless=True,
        http=http_settings,
        rate_limit=RateLimitSettings(window_seconds=60.0, max_requests=60),
        store=StoreSettings(db_path=str(tmp_path / "nexo-test.db")),
        cron=CronSettings(secret="test-cron-secret"),  # type: ignore[arg-type]
    )
