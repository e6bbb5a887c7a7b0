import asyncio

import pytest

from mangalink_app.mapping import MappingManager, NEGATIVE, NoContextError, InvalidLinkError, Tier
from sources import PlatformRegistry, UnknownPlatformError
from sources.base import SearchCandidate, UnitMetrics

from conftest import FakeAdapter


def _setup(store, **targets):
    source = FakeAdapter("mangalib", titles={"7965--chainsaw-man": ["Человек-бензопила", "Chainsaw Man"]})
    adapters = [source] + [FakeAdapter(name, **config) for name, config in targets.items()]
    registry = PlatformRegistry(adapters=adapters)
    return MappingManager(store, registry), registry


@pytest.mark.asyncio
async def test_discovery_persists_match_and_loads_metrics(store):
    manager, registry = _setup(store, senkuro={
        "results": {"Chainsaw Man": [SearchCandidate("chainsaw-man", ["Chainsaw Man"])]},
        "metrics": {"chainsaw-man": UnitMetrics(180, 200)},
    })

    await manager.set_context("mangalib", "7965--chainsaw-man", source_units=170)
    await manager.wait_idle(5)

    assert store.auto.get("mangalib", "7965--chainsaw-man", "senkuro") == "chainsaw-man"
    cached = store.metrics.get("senkuro", "chainsaw-man")
    assert (cached.available_units, cached.consumed_units) == (180, 180)

    snapshot = await manager.snapshot()
    entry = snapshot["platforms"]["senkuro"]
    assert entry["slug"] == "chainsaw-man"
    assert entry["tier"] == "auto"
    assert entry["url"] == "https://senkuro.test/manga/chainsaw-man"
    assert entry["metrics"]["available_units"] == 180
    assert snapshot["has_new_units"] is True
    assert snapshot["titles"] == ["Человек-бензопила", "Chainsaw Man"]


@pytest.mark.asyncio
async def test_titles_fall_back_to_slug(store):
    manager, registry = _setup(store, senkuro={})

    state = await manager.set_context("mangalib", "1--solo-leveling")
    await manager.wait_idle(5)

    assert state.titles == ["solo leveling"]
    assert registry.get("senkuro").search_calls == ["solo leveling"]


@pytest.mark.asyncio
async def test_negative_result_suppresses_repeat_searches(store):
    manager, registry = _setup(store, senkuro={})
    senkuro = registry.get("senkuro")

    await manager.set_context("mangalib", "x", titles=["Foo"])
    await manager.wait_idle(5)
    assert store.auto.get("mangalib", "x", "senkuro") is NEGATIVE
    assert senkuro.search_calls == ["Foo"]

    manager.navigate_away()
    await manager.set_context("mangalib", "x", titles=["Foo"])
    await manager.wait_idle(5)

    assert senkuro.search_calls == ["Foo"]
    assert (await manager.snapshot())["platforms"]["senkuro"]["not_found"] is True


@pytest.mark.asyncio
async def test_negative_result_expires(store, clock):
    manager, registry = _setup(store, senkuro={})

    await manager.set_context("mangalib", "x", titles=["Foo"])
    await manager.wait_idle(5)

    clock.advance(601)
    await manager.set_context("mangalib", "x", titles=["Foo"])
    await manager.wait_idle(5)

    assert registry.get("senkuro").search_calls == ["Foo", "Foo"]


@pytest.mark.asyncio
async def test_refresh_on_negative_searches_again(store):
    manager, registry = _setup(store, senkuro={})
    senkuro = registry.get("senkuro")

    await manager.set_context("mangalib", "x", titles=["Foo"])
    await manager.wait_idle(5)

    senkuro.results["Foo"] = [SearchCandidate("foo", ["Foo"])]
    refreshed = await manager.refresh("senkuro")
    await manager.wait_idle(5)

    assert refreshed == ["senkuro"]
    assert senkuro.search_calls == ["Foo", "Foo"]
    assert store.auto.get("mangalib", "x", "senkuro") == "foo"


@pytest.mark.asyncio
async def test_refresh_on_concrete_refetches_metrics(store):
    manager, registry = _setup(store, senkuro={
        "results": {"Foo": [SearchCandidate("foo", ["Foo"])]},
        "metrics": {"foo": UnitMetrics(10, 1)},
    })
    senkuro = registry.get("senkuro")

    await manager.set_context("mangalib", "x", titles=["Foo"])
    await manager.wait_idle(5)
    assert senkuro.metrics_calls == ["foo"]

    # Cached metrics are reused on the next visit
    await manager.set_context("mangalib", "x", titles=["Foo"])
    await manager.wait_idle(5)
    assert senkuro.metrics_calls == ["foo"]

    senkuro.metrics["foo"] = UnitMetrics(11, 2)
    await manager.refresh("senkuro")
    await manager.wait_idle(5)

    assert senkuro.metrics_calls == ["foo", "foo"]
    assert senkuro.search_calls == ["Foo"]
    assert store.metrics.get("senkuro", "foo").available_units == 11


@pytest.mark.asyncio
async def test_navigate_away_discards_in_flight_search(store):
    manager, registry = _setup(store, senkuro={"results": {"Foo": [SearchCandidate("foo", ["Foo"])]}})
    senkuro = registry.get("senkuro")
    senkuro.gate = asyncio.Event()

    await manager.set_context("mangalib", "x", titles=["Foo"])
    await asyncio.sleep(0)
    assert (await manager.snapshot())["platforms"]["senkuro"]["loading"] is True

    manager.navigate_away()
    senkuro.gate.set()
    await manager.wait_idle(5)

    assert store.auto.get("mangalib", "x", "senkuro") is None
    assert await manager.snapshot() is None


@pytest.mark.asyncio
async def test_superseded_navigation_writes_nothing(store):
    manager, registry = _setup(store, senkuro={"results": {
        "Foo": [SearchCandidate("foo", ["Foo"])],
        "Bar": [SearchCandidate("bar", ["Bar"])],
    }})
    senkuro = registry.get("senkuro")
    senkuro.gate = asyncio.Event()

    await manager.set_context("mangalib", "x", titles=["Foo"])
    await asyncio.sleep(0)
    await manager.set_context("mangalib", "y", titles=["Bar"])
    senkuro.gate.set()
    await manager.wait_idle(5)

    assert store.auto.get("mangalib", "x", "senkuro") is None
    assert store.auto.get("mangalib", "y", "senkuro") == "bar"
    snapshot = await manager.snapshot()
    assert snapshot["slug"] == "y"
    assert snapshot["platforms"]["senkuro"]["slug"] == "bar"


@pytest.mark.asyncio
async def test_unreachable_platform_is_not_remembered(store):
    manager, registry = _setup(store, senkuro={"results": {"Foo": None}})

    await manager.set_context("mangalib", "x", titles=["Foo"])
    await manager.wait_idle(5)

    assert store.auto.get("mangalib", "x", "senkuro") is None
    entry = (await manager.snapshot())["platforms"]["senkuro"]
    assert entry["tier"] == "none"
    assert entry["loading"] is False


@pytest.mark.asyncio
async def test_manual_link_overrides_negative(store):
    manager, registry = _setup(store, senkuro={"metrics": {"chainsaw-man": UnitMetrics(5, 0)}})

    await manager.set_context("mangalib", "x", titles=["Foo"])
    await manager.wait_idle(5)
    assert store.auto.get("mangalib", "x", "senkuro") is NEGATIVE

    resolution = await manager.save_manual_link("senkuro", "chainsaw-man")
    await manager.wait_idle(5)

    assert resolution.tier == Tier.MANUAL
    entry = (await manager.snapshot())["platforms"]["senkuro"]
    assert entry["slug"] == "chainsaw-man"
    assert entry["not_found"] is False
    assert entry["metrics"]["available_units"] == 5


@pytest.mark.asyncio
async def test_saving_same_manual_link_twice_is_idempotent(store):
    manager, registry = _setup(store, senkuro={"metrics": {"foo": UnitMetrics(3, 1)}})
    await manager.set_context("mangalib", "x", titles=["Foo"])

    first = await manager.save_manual_link("senkuro", "foo")
    second = await manager.save_manual_link("senkuro", "foo")
    await manager.wait_idle(5)

    assert first == second
    assert store.manual.get_all_for_scope("mangalib", "x") == {"senkuro": "foo"}


@pytest.mark.asyncio
async def test_manual_link_from_url(store):
    manager, registry = _setup(store, senkuro={})
    await manager.set_context("mangalib", "x", titles=["Foo"])

    resolution = await manager.save_manual_link_from_url("senkuro", "https://senkuro.test/manga/foo/chapters")
    assert resolution.slug == "foo"

    with pytest.raises(InvalidLinkError):
        await manager.save_manual_link_from_url("senkuro", "https://example.org/whatever")
    await manager.wait_idle(5)


@pytest.mark.asyncio
async def test_delete_manual_link_rediscovers(store):
    manager, registry = _setup(store, senkuro={
        "results": {"Foo": [SearchCandidate("foo", ["Foo"])]},
        "metrics": {"foo": UnitMetrics(7, 0), "pinned": UnitMetrics(9, 0)},
    })
    await manager.set_context("mangalib", "x", titles=["Foo"])
    await manager.save_manual_link("senkuro", "pinned")
    await manager.wait_idle(5)

    resolution = await manager.delete_manual_link("senkuro")
    assert resolution.tier == Tier.NONE
    assert store.manual.get("mangalib", "x", "senkuro") is None
    assert store.metrics.get("senkuro", "pinned") is None

    await manager.wait_idle(5)
    assert store.auto.get("mangalib", "x", "senkuro") == "foo"


@pytest.mark.asyncio
async def test_user_actions_need_a_context(store):
    manager, registry = _setup(store, senkuro={})

    with pytest.raises(NoContextError):
        await manager.save_manual_link("senkuro", "foo")
    with pytest.raises(NoContextError):
        await manager.refresh()


@pytest.mark.asyncio
async def test_cannot_link_to_own_platform_or_unknown_platform(store):
    manager, registry = _setup(store, senkuro={})
    await manager.set_context("mangalib", "x", titles=["Foo"])

    with pytest.raises(ValueError):
        await manager.save_manual_link("mangalib", "y")
    with pytest.raises(UnknownPlatformError):
        await manager.save_manual_link("nowhere", "y")
    await manager.wait_idle(5)


@pytest.mark.asyncio
async def test_record_progress_reloads_metrics(store):
    manager, registry = _setup(store, senkuro={
        "results": {"Foo": [SearchCandidate("foo", ["Foo"])]},
        "metrics": {"foo": UnitMetrics(10, 0)},
    })
    senkuro = registry.get("senkuro")
    await manager.set_context("mangalib", "x", titles=["Foo"])
    await manager.wait_idle(5)

    await manager.record_progress("senkuro", "foo", 4)
    await manager.wait_idle(5)

    assert store.progress.get("senkuro", "foo") == 4
    assert senkuro.metrics_calls == ["foo", "foo"]


@pytest.mark.asyncio
async def test_set_token(store):
    manager, registry = _setup(store, senkuro={})

    await manager.set_token("senkuro", "secret")
    assert store.tokens.get("senkuro") == "secret"

    await manager.set_token("senkuro", None)
    assert store.tokens.get("senkuro") is None

    with pytest.raises(UnknownPlatformError):
        await manager.set_token("nowhere", "secret")


@pytest.mark.asyncio
async def test_manual_link_saved_during_search_keeps_its_metrics(store):
    manager, registry = _setup(store, senkuro={
        "results": {"Foo": [SearchCandidate("auto-slug", ["Foo"])]},
        "metrics": {"auto-slug": UnitMetrics(99, 0), "manual-slug": UnitMetrics(10, 0)},
    })
    senkuro = registry.get("senkuro")
    senkuro.gate = asyncio.Event()

    await manager.set_context("mangalib", "x", titles=["Foo"])
    await asyncio.sleep(0)
    await manager.save_manual_link("senkuro", "manual-slug")
    senkuro.gate.set()
    await manager.wait_idle(5)

    entry = (await manager.snapshot())["platforms"]["senkuro"]
    assert entry["slug"] == "manual-slug"
    assert entry["tier"] == "manual"
    assert entry["metrics"]["available_units"] == 10
    assert senkuro.metrics_calls == ["manual-slug"]


@pytest.mark.asyncio
async def test_deleted_link_metrics_do_not_land_in_state(store):
    store.manual.set("mangalib", "x", "senkuro", "old")
    manager, registry = _setup(store, senkuro={"metrics": {"old": UnitMetrics(10, 2)}})
    senkuro = registry.get("senkuro")
    senkuro.metrics_gate = asyncio.Event()

    await manager.set_context("mangalib", "x", titles=["Foo"])
    await asyncio.sleep(0)
    assert senkuro.metrics_calls == ["old"]

    await manager.delete_manual_link("senkuro")
    for _ in range(3):
        await asyncio.sleep(0)
    senkuro.metrics_gate.set()
    await manager.wait_idle(5)

    entry = (await manager.snapshot())["platforms"]["senkuro"]
    assert entry["not_found"] is True
    assert entry["slug"] is None
    assert entry["metrics"] is None


@pytest.mark.asyncio
async def test_fetched_titles_are_cleaned_like_supplied_ones(store):
    manager, registry = _setup(store, senkuro={})
    registry.get("mangalib").titles_by_slug["2--berserk"] = [" Berserk ", None, "", "Berserk", "ベルセルク"]
    registry.get("mangalib").titles_by_slug["3--blank"] = ["  ", None]

    state = await manager.set_context("mangalib", "2--berserk")
    assert state.titles == ["Berserk", "ベルセルク"]

    state = await manager.set_context("mangalib", "3--blank")
    await manager.wait_idle(5)
    assert state.titles == ["blank"]
