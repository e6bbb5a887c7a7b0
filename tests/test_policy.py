from mangalink_app.mapping import NEGATIVE, ResolutionPolicy, Tier, WorkIdentity, resolve_links


def test_manual_wins_over_auto():
    resolution = resolve_links({"senkuro": "manual-slug"}, {"senkuro": "auto-slug"}, "senkuro")
    assert resolution.tier == Tier.MANUAL
    assert resolution.slug == "manual-slug"


def test_manual_wins_over_negative():
    resolution = resolve_links({"senkuro": "manual-slug"}, {"senkuro": NEGATIVE}, "senkuro")
    assert resolution.tier == Tier.MANUAL
    assert not resolution.is_negative


def test_negative_auto_is_a_decision():
    resolution = resolve_links({}, {"senkuro": NEGATIVE}, "senkuro")
    assert resolution.tier == Tier.AUTO
    assert resolution.is_negative
    assert resolution.slug is None
    assert not resolution.needs_discovery


def test_nothing_known_needs_discovery():
    resolution = resolve_links({}, {}, "senkuro")
    assert resolution.tier == Tier.NONE
    assert resolution.value is None
    assert resolution.needs_discovery


def test_store_policy_follows_expiry(store, clock):
    policy = ResolutionPolicy(store)
    source = WorkIdentity("mangalib", "7965--chainsaw-man")

    store.auto.set(source.platform, source.slug, "senkuro", "chainsaw-man")
    assert policy.resolve(source, "senkuro").tier == Tier.AUTO

    clock.advance(3600)
    assert policy.resolve(source, "senkuro").tier == Tier.NONE

    store.manual.set(source.platform, source.slug, "senkuro", "chainsaw-man-2")
    resolution = policy.resolve(source, "senkuro")
    assert resolution.tier == Tier.MANUAL
    assert resolution.to_dict() == {"value": "chainsaw-man-2", "tier": "manual"}


def test_store_policy_negative_and_manual_override(store):
    policy = ResolutionPolicy(store)
    source = WorkIdentity("mangalib", "7965--chainsaw-man")

    store.auto.set(source.platform, source.slug, "senkuro", NEGATIVE)
    resolution = policy.resolve(source, "senkuro")
    assert resolution.tier == Tier.AUTO
    assert resolution.is_negative
    assert resolution == resolve_links({}, {"senkuro": NEGATIVE}, "senkuro")

    store.manual.set(source.platform, source.slug, "senkuro", "chainsaw-man")
    resolution = policy.resolve(source, "senkuro")
    assert resolution.tier == Tier.MANUAL
    assert resolution.slug == "chainsaw-man"
    assert resolution == resolve_links({"senkuro": "chainsaw-man"}, {"senkuro": NEGATIVE}, "senkuro")
