import asyncio

import pytest

from mangalink_app.mapping import CancellationToken
from sources.base import MatchStatus, SearchCandidate
from sources.http_client import TransportError

from conftest import FakeAdapter, FakeTransport


class FlakyTransport:
    """Fails `failures` times, then answers."""

    def __init__(self, failures, payload=None, hang=False):
        self.failures = failures
        self.payload = payload if payload is not None else {"ok": True}
        self.hang = hang
        self.calls = 0

    async def __call__(self, url, options):
        self.calls += 1
        if self.calls <= self.failures:
            if self.hang:
                await asyncio.sleep(10)
            raise TransportError("HTTP 503", 503)
        return self.payload


def _adapter(transport, **config):
    adapter = FakeAdapter("senkuro")
    adapter.transport = transport
    adapter.configure(**config)
    delays = []

    async def record_sleep(seconds):
        delays.append(seconds)

    adapter._sleep = record_sleep
    return adapter, delays


# =============================================================================
# fetch_retried
# =============================================================================

@pytest.mark.asyncio
async def test_fetch_retried_recovers_after_failures():
    transport = FlakyTransport(failures=2)
    adapter, delays = _adapter(transport, max_attempts=3, backoff_base=1.0, backoff_max=10.0)

    assert await adapter.fetch_retried("https://senkuro.test/api") == {"ok": True}
    assert transport.calls == 3
    assert delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_fetch_retried_gives_up_without_raising():
    transport = FlakyTransport(failures=10)
    adapter, delays = _adapter(transport, max_attempts=4, backoff_base=1.0, backoff_max=3.0)

    assert await adapter.fetch_retried("https://senkuro.test/api") is None
    assert transport.calls == 4
    # No sleep after the last attempt, delay capped at backoff_max
    assert delays == [1.0, 2.0, 3.0]
    assert adapter.get_health_info()["failure_count"] == 4


@pytest.mark.asyncio
async def test_fetch_retried_times_out_each_attempt():
    transport = FlakyTransport(failures=10, hang=True)
    adapter, delays = _adapter(transport, max_attempts=2, request_timeout=0.01)

    assert await adapter.fetch_retried("https://senkuro.test/api") is None
    assert transport.calls == 2
    assert len(delays) == 1
    assert "timeout" in adapter.get_health_info()["last_error"]


@pytest.mark.asyncio
async def test_empty_payload_counts_as_failure():
    transport = FakeTransport({"https://senkuro.test/api": None})
    adapter, delays = _adapter(transport, max_attempts=2)

    assert await adapter.fetch_retried("https://senkuro.test/api") is None
    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_five_failures_mark_platform_offline():
    adapter, _ = _adapter(FlakyTransport(failures=10), max_attempts=5)
    await adapter.fetch_retried("https://senkuro.test/api")
    assert adapter.get_health_info()["status"] == "offline"

    adapter.reset()
    assert adapter.get_health_info()["status"] == "unknown"


# =============================================================================
# search
# =============================================================================

@pytest.mark.asyncio
async def test_second_title_matches_alternative_name():
    adapter = FakeAdapter("senkuro", results={
        "Foo": [SearchCandidate("bar", ["Bar"])],
        "フー": [SearchCandidate("foo-jp", ["Foo JP", "フー"])],
    })

    outcome = await adapter.search(["Foo", "フー"])

    assert outcome.status == MatchStatus.MATCHED
    assert outcome.slug == "foo-jp"
    assert outcome.matched_title == "フー"
    assert adapter.search_calls == ["Foo", "フー"]


@pytest.mark.asyncio
async def test_search_stops_at_first_match():
    adapter = FakeAdapter("senkuro", results={
        "Foo": [SearchCandidate("other", ["Other"]), SearchCandidate("foo", ["Foo Remastered", "フー"])],
    })

    outcome = await adapter.search(["Foo", "フー", "Fuu"])

    assert outcome.slug == "foo"
    assert adapter.search_calls == ["Foo"]


@pytest.mark.asyncio
async def test_near_miss_is_not_a_match():
    adapter = FakeAdapter("senkuro", results={"Foo": [SearchCandidate("foo", ["foo", "Foo!"])]})

    outcome = await adapter.search(["Foo"])

    assert outcome.status == MatchStatus.NO_MATCH
    assert outcome.is_decision


@pytest.mark.asyncio
async def test_all_requests_failing_is_unreachable():
    adapter = FakeAdapter("senkuro", results={"Foo": None, "フー": None})

    outcome = await adapter.search(["Foo", "フー"])

    assert outcome.status == MatchStatus.UNREACHABLE
    assert not outcome.is_decision


@pytest.mark.asyncio
async def test_partial_failure_is_still_a_decision():
    adapter = FakeAdapter("senkuro", results={"Foo": None, "フー": []})
    outcome = await adapter.search(["Foo", "フー"])
    assert outcome.status == MatchStatus.NO_MATCH


@pytest.mark.asyncio
async def test_cancelled_before_search_makes_no_request():
    adapter = FakeAdapter("senkuro", results={"Foo": [SearchCandidate("foo", ["Foo"])]})
    token = CancellationToken()
    token.cancel()

    outcome = await adapter.search(["Foo"], token)

    assert outcome.status == MatchStatus.CANCELLED
    assert adapter.search_calls == []


@pytest.mark.asyncio
async def test_cancelled_during_search_discards_result():
    adapter = FakeAdapter("senkuro", results={"Foo": [SearchCandidate("foo", ["Foo"])]})
    adapter.gate = asyncio.Event()
    token = CancellationToken()

    task = asyncio.create_task(adapter.search(["Foo"], token))
    await asyncio.sleep(0)
    token.cancel()
    adapter.gate.set()

    outcome = await task
    assert outcome.status == MatchStatus.CANCELLED
    assert outcome.slug is None


@pytest.mark.asyncio
async def test_search_by_query_limits_results():
    adapter = FakeAdapter("senkuro", results={
        "chainsaw": [SearchCandidate(f"slug-{i}", [f"Title {i}"]) for i in range(8)],
    })

    candidates = await adapter.search_by_query("chainsaw")

    assert [c.slug for c in candidates] == [f"slug-{i}" for i in range(5)]
    assert candidates[0].to_dict()["title"] == "Title 0"


def test_slug_from_url():
    adapter = FakeAdapter("senkuro")
    assert adapter.slug_from_url("https://senkuro.test/manga/chainsaw-man/chapters") == "chainsaw-man"
    assert adapter.slug_from_url("https://example.org/manga/chainsaw-man") is None
    assert adapter.matches_url("https://senkuro.test/manga/x")
