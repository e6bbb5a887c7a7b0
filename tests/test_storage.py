import pytest

from mangalink_app.database import create_db_engine, make_session_factory, get_database_stats
from mangalink_app.mapping import NEGATIVE
from mangalink_app.storage import MappingStore, PersistenceError


def test_manual_link_round_trip(store):
    store.manual.set("mangalib", "7965--chainsaw-man", "senkuro", "chainsaw-man")

    assert store.manual.get("mangalib", "7965--chainsaw-man", "senkuro") == "chainsaw-man"
    assert store.manual.get("mangalib", "7965--chainsaw-man", "inkstory") is None
    assert store.manual.get_all_for_scope("mangalib", "7965--chainsaw-man") == {"senkuro": "chainsaw-man"}


def test_manual_link_rejects_negative_and_empty(store):
    with pytest.raises(ValueError):
        store.manual.set("mangalib", "x", "senkuro", NEGATIVE)
    with pytest.raises(ValueError):
        store.manual.set("mangalib", "x", "senkuro", "")


def test_manual_links_never_expire(store, clock):
    store.manual.set("mangalib", "x", "senkuro", "y")
    clock.advance(10 * 365 * 24 * 3600)
    assert store.manual.get("mangalib", "x", "senkuro") == "y"


def test_writes_to_different_targets_do_not_clobber(store):
    store.manual.set("mangalib", "x", "senkuro", "s")
    store.manual.set("mangalib", "x", "inkstory", "i")
    store.auto.set("mangalib", "x", "readmanga", "r")
    store.auto.set("mangalib", "x", "mangabuff", NEGATIVE)

    assert store.manual.get_all_for_scope("mangalib", "x") == {"senkuro": "s", "inkstory": "i"}
    assert store.auto.get_all_for_scope("mangalib", "x") == {"readmanga": "r", "mangabuff": NEGATIVE}


def test_auto_link_expires_lazily(store, clock):
    store.auto.set("mangalib", "x", "senkuro", "y")

    clock.advance(3599)
    assert store.auto.get("mangalib", "x", "senkuro") == "y"

    # expires <= now reads as absent, but the row is still there
    clock.advance(1)
    assert store.auto.get("mangalib", "x", "senkuro") is None
    assert store.auto.get_all_for_scope("mangalib", "x") == {}
    assert store.auto.flush_expired() == 0

    clock.advance(1)
    assert store.auto.flush_expired() == 1
    assert store.auto.flush_expired() == 0


def test_negative_marker_is_distinct_from_absent(store):
    assert store.auto.get("mangalib", "x", "senkuro") is None

    store.auto.set("mangalib", "x", "senkuro", NEGATIVE)

    value = store.auto.get("mangalib", "x", "senkuro")
    assert value is NEGATIVE
    assert value is not None


def test_negative_links_use_their_own_ttl(store, clock):
    positive_expiry = store.auto.set("mangalib", "x", "senkuro", "y")
    negative_expiry = store.auto.set("mangalib", "x", "inkstory", NEGATIVE)

    assert positive_expiry == clock.now + 3600
    assert negative_expiry == clock.now + 600

    clock.advance(601)
    assert store.auto.get("mangalib", "x", "inkstory") is None
    assert store.auto.get("mangalib", "x", "senkuro") == "y"


def test_explicit_ttl_overrides_default(store, clock):
    expires = store.auto.set("mangalib", "x", "senkuro", "y", ttl=5)
    assert expires == clock.now + 5


def test_auto_set_refreshes_expiry(store, clock):
    store.auto.set("mangalib", "x", "senkuro", "y")
    clock.advance(3000)
    store.auto.set("mangalib", "x", "senkuro", "z")
    clock.advance(3000)
    assert store.auto.get("mangalib", "x", "senkuro") == "z"


def test_auto_delete(store):
    store.auto.set("mangalib", "x", "senkuro", NEGATIVE)
    assert store.auto.delete("mangalib", "x", "senkuro") is True
    assert store.auto.delete("mangalib", "x", "senkuro") is False
    assert store.auto.get("mangalib", "x", "senkuro") is None


def test_metrics_consumed_is_clamped_to_available(store):
    entry = store.metrics.set("senkuro", "chainsaw-man", 10, 15)

    assert entry.available_units == 10
    assert entry.consumed_units == 10

    cached = store.metrics.get("senkuro", "chainsaw-man")
    assert cached.available_units == 10
    assert cached.consumed_units == 10


def test_metrics_expire_and_flush(store, clock):
    store.metrics.set("senkuro", "a", 100, 50)
    store.metrics.set("senkuro", "b", 20, 0, ttl=10_000)

    clock.advance(301)
    assert store.metrics.get("senkuro", "a") is None
    assert set(store.metrics.get_all_for_scope("senkuro")) == {"b"}

    assert store.flush_expired() == {"auto": 0, "metrics": 1}


def test_metrics_ttl_is_independent_of_mapping_ttl(store, clock):
    store.auto.set("mangalib", "x", "senkuro", "y")
    store.metrics.set("senkuro", "y", 5, 1)

    clock.advance(400)
    assert store.auto.get("mangalib", "x", "senkuro") == "y"
    assert store.metrics.get("senkuro", "y") is None


def test_progress_and_tokens(store):
    assert store.progress.get("mangabuff", "x") == 0.0
    store.progress.set("mangabuff", "x", 42)
    assert store.progress.get("mangabuff", "x") == 42

    with pytest.raises(ValueError):
        store.progress.set("mangabuff", "x", -1)

    store.tokens.set("mangalib", "secret")
    assert store.tokens.get("mangalib") == "secret"
    assert store.tokens.delete("mangalib") is True
    assert store.tokens.get("mangalib") is None


def test_database_stats(store, session_factory):
    store.manual.set("mangalib", "x", "senkuro", "y")
    store.auto.set("mangalib", "x", "inkstory", NEGATIVE)

    stats = get_database_stats(session_factory)

    assert stats["manual_links"] == 1
    assert stats["auto_links"] == 1
    assert stats["negative_links"] == 1
    assert stats["database_type"] == "SQLite"


def test_read_failures_degrade_to_absent_and_writes_raise(clock):
    # Tables were never created, every statement fails
    engine = create_db_engine("sqlite://")
    broken = MappingStore(make_session_factory(engine), clock=clock)

    assert broken.manual.get("mangalib", "x", "senkuro") is None
    assert broken.auto.get("mangalib", "x", "senkuro") is None
    assert broken.auto.get_all_for_scope("mangalib", "x") == {}
    assert broken.metrics.get("senkuro", "y") is None
    assert broken.progress.get("mangabuff", "x") == 0.0

    with pytest.raises(PersistenceError):
        broken.auto.set("mangalib", "x", "senkuro", "y")
    with pytest.raises(PersistenceError):
        broken.metrics.set("senkuro", "y", 1, 0)
    with pytest.raises(PersistenceError):
        broken.flush_expired()

    engine.dispose()
