"""Manual -> Auto -> none resolution."""

from typing import Mapping, Optional

from .models import MappingValue, Resolution, Tier, WorkIdentity, NEGATIVE, is_concrete


def resolve_links(
    manual_links: Mapping[str, str],
    auto_links: Mapping[str, MappingValue],
    target: str,
) -> Resolution:
    """
    Resolve a target from in-memory link snapshots.

    A manual link wins whenever it holds a string, even over a fresh or
    negative auto link. A negative auto link is a decision, not a miss.
    """
    manual = manual_links.get(target)
    if isinstance(manual, str) and manual:
        return Resolution(manual, Tier.MANUAL)

    auto: Optional[MappingValue] = auto_links.get(target)
    if auto is NEGATIVE or (isinstance(auto, str) and auto):
        return Resolution(auto, Tier.AUTO)

    return Resolution(None, Tier.NONE)


class ResolutionPolicy:
    """Resolves against the persistent store."""

    def __init__(self, store):
        self.store = store

    def resolve(self, source: WorkIdentity, target: str) -> Resolution:
        manual = self.store.manual.get(source.platform, source.slug, target)
        # Auto is only read when no manual link exists
        auto = None if is_concrete(manual) else self.store.auto.get(source.platform, source.slug, target)
        return resolve_links(
            {target: manual} if manual else {},
            {target: auto} if auto is not None else {},
            target,
        )
