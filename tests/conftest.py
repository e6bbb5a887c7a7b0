# tests/conftest.py
"""
Pytest configuration and fixtures.
Adds the project root to sys.path so `import mangalink_app` and `import sources` work.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from mangalink_app.database import create_db_engine, make_session_factory, init_database  # noqa: E402
from mangalink_app.storage import MappingStore  # noqa: E402
from sources.base import BasePlatformAdapter  # noqa: E402
from sources.http_client import TransportError  # noqa: E402


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """URL -> payload map. Unknown URLs fail like a 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    async def __call__(self, url, options):
        self.calls.append((url, options))
        if url not in self.routes:
            raise TransportError(f"HTTP 404 for {url}", 404)
        payload = self.routes[url]
        if isinstance(payload, Exception):
            raise payload
        return payload


class FakeAdapter(BasePlatformAdapter):
    """
    Scripted platform.

    results: title -> list of SearchCandidate, or None for a failed request
    metrics: slug -> UnitMetrics
    gate:    optional asyncio.Event every search waits on
    metrics_gate: same for fetch_metrics
    """

    def __init__(self, platform_id, results=None, metrics=None, titles=None):
        super().__init__(transport=FakeTransport())
        self.id = platform_id
        self.name = platform_id.title()
        self.url_patterns = [rf'{platform_id}\.test/manga/([^/?#]+)']
        self.results = dict(results or {})
        self.metrics = dict(metrics or {})
        self.titles_by_slug = dict(titles or {})
        self.search_calls = []
        self.metrics_calls = []
        self.gate = None
        self.metrics_gate = None

    def link(self, slug):
        return f"https://{self.id}.test/manga/{slug}"

    async def _find_candidates(self, title):
        self.search_calls.append(title)
        if self.gate is not None:
            await self.gate.wait()
        return self.results.get(title, [])

    async def fetch_metrics(self, slug):
        self.metrics_calls.append(slug)
        if self.metrics_gate is not None:
            await self.metrics_gate.wait()
        return self.metrics.get(slug)

    async def fetch_titles(self, slug):
        return list(self.titles_by_slug.get(slug, []))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    init_database(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory, clock):
    return MappingStore(session_factory, clock=clock, auto_ttl=3600, negative_ttl=600, metrics_ttl=300)
