"""
================================================================================
MangaLink v1.0 - Session State & Navigation
================================================================================
Per-navigation view model plus the primitives that keep a superseded
navigation from writing into the current one.

  CancellationToken    - one per displayed work; cancelled on navigate away
  NavigationSequencer  - monotonic counter; begin() cancels the previous token
  SessionState         - what the presentation layer renders
================================================================================
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Any

from sources.base import clean_titles

from .models import MappingValue, MetricsEntry, WorkIdentity, Resolution
from .policy import resolve_links


class CancellationToken:
    """Cooperative cancellation flag shared by every task of one navigation."""

    def __init__(self):
        self._cancelled = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "navigated away") -> None:
        if not self._cancelled.is_set():
            self.reason = reason
            self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def __repr__(self) -> str:
        return f"<CancellationToken cancelled={self.cancelled}>"


@dataclass(frozen=True)
class NavigationTicket:
    seq: int
    token: CancellationToken


class NavigationSequencer:
    """Hands out increasing tickets; only the latest one is current."""

    def __init__(self):
        self._seq = 0
        self._current: Optional[NavigationTicket] = None
        self._lock = threading.Lock()

    def begin(self) -> NavigationTicket:
        with self._lock:
            if self._current is not None:
                self._current.token.cancel("superseded")
            self._seq += 1
            self._current = NavigationTicket(self._seq, CancellationToken())
            return self._current

    def end(self) -> None:
        """Cancel the current navigation without starting a new one."""
        with self._lock:
            if self._current is not None:
                self._current.token.cancel()
            self._current = None

    def is_current(self, ticket: NavigationTicket) -> bool:
        return (
            self._current is not None
            and ticket.seq == self._current.seq
            and not ticket.token.cancelled
        )

    @property
    def current(self) -> Optional[NavigationTicket]:
        return self._current


@dataclass
class SessionState:
    """Everything known about the displayed work. Replaced on every navigation."""
    identity: WorkIdentity
    titles: List[str] = field(default_factory=list)
    manual_links: Dict[str, str] = field(default_factory=dict)
    auto_links: Dict[str, MappingValue] = field(default_factory=dict)
    metrics_by_platform: Dict[str, MetricsEntry] = field(default_factory=dict)
    loading_platforms: Set[str] = field(default_factory=set)
    source_units: Optional[float] = None
    seq: int = 0

    def __post_init__(self):
        self.titles = clean_titles(self.titles or [])

    def resolve(self, target: str) -> Resolution:
        return resolve_links(self.manual_links, self.auto_links, target)

    @property
    def has_new_units(self) -> bool:
        """Some target exposes more units than the source platform does."""
        if self.source_units is None:
            return False
        return any(
            entry.available_units > self.source_units
            for entry in self.metrics_by_platform.values()
        )

    def to_dict(self, targets: Optional[List[str]] = None) -> Dict[str, Any]:
        targets = targets if targets is not None else sorted(
            set(self.manual_links) | set(self.auto_links)
            | set(self.metrics_by_platform) | self.loading_platforms
        )
        platforms = {}
        for target in targets:
            resolution = self.resolve(target)
            metrics = self.metrics_by_platform.get(target)
            platforms[target] = {
                "slug": resolution.slug,
                "tier": resolution.tier.value,
                "not_found": resolution.is_negative,
                "loading": target in self.loading_platforms,
                "metrics": metrics.to_dict() if metrics else None,
            }
        return {
            "platform": self.identity.platform,
            "slug": self.identity.slug,
            "seq": self.seq,
            "titles": list(self.titles),
            "source_units": self.source_units,
            "has_new_units": self.has_new_units,
            "platforms": platforms,
        }
