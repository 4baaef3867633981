"""
Shared fixtures for the leadsmith test suite.

- Every test gets its own data directory (LEADSMITH_DATA_DIR -> fresh temp dir)
- FakeClock: deterministic clock + sleep for limiter/backoff tests
- ScriptedApi: EnrichmentApiClient whose transport is a plain function
"""

import pytest

from leadsmith import config
from leadsmith.config import Settings
from leadsmith.enrichment.clients import EnrichmentApiClient
from leadsmith.utils.rate_limiter import RateLimiter
from leadsmith.utils.storage import FileStore


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(seconds, 0)


class ScriptedApi(EnrichmentApiClient):
    """
    Enrichment client whose HTTP layer is ``handler(path, params) -> (status, body)``.

    The handler may raise (e.g. asyncio.TimeoutError) to simulate transport
    failures. Every request is recorded in ``calls`` as (path, params).
    """

    def __init__(self, handler, clock=None, settings=None, **kwargs):
        self.clock = clock or FakeClock()
        super().__init__(
            base_url="http://api.test",
            limiter=RateLimiter(clock=self.clock, sleep=self.clock.sleep),
            settings=settings or Settings(),
            sleep=self.clock.sleep,
            **kwargs,
        )
        self.handler = handler
        self.calls = []

    async def _request(self, path, params, timeout):
        self.calls.append((path, dict(params)))
        return self.handler(path, params)

    def calls_to(self, path, key=None):
        return [p for pth, p in self.calls if pth == path and (key is None or key in p)]


@pytest.fixture(autouse=True)
def data_dir(tmp_path_factory, monkeypatch):
    """Isolated data directory and settings cache for every test."""
    root = tmp_path_factory.mktemp("data")
    monkeypatch.setenv("LEADSMITH_DATA_DIR", str(root))
    monkeypatch.setattr(config, "SETTINGS_FILE", None)
    config.invalidate_settings_cache()
    yield root
    config.invalidate_settings_cache()


@pytest.fixture
def store(data_dir):
    return FileStore(data_dir)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scripted_api(clock):
    """Factory: ``scripted_api(handler, settings=None)`` -> ScriptedApi."""

    def make(handler, settings=None, **kwargs):
        return ScriptedApi(handler, clock=clock, settings=settings, **kwargs)

    return make
