"""
================================================================================
MangaLink v1.0 - Mapping Manager
================================================================================
Drives identity discovery for the displayed work.

For each target platform other than the source (concurrently across
platforms, sequentially across titles within one platform):

  1. concrete slug (manual or auto) -> metrics from cache, else fetch and
     write through
  2. negative auto mapping          -> nothing, no network
  3. nothing known                  -> mark loading, search, persist the
                                       decision, then step 1 on a match

Every task of a navigation shares one CancellationToken. A cancelled or
unreachable search persists nothing. set_context() cancels the previous
navigation before starting a new one.

USAGE:
    manager = MappingManager(store, registry)
    await manager.set_context("mangalib", "7965--chainsaw-man", titles=[...])
    await manager.wait_idle()
    snapshot = await manager.snapshot()
================================================================================
"""

import re
import asyncio
import logging
from typing import Any, Coroutine, Dict, List, Optional, Set

from sources.base import BasePlatformAdapter, MatchStatus, SearchCandidate, clean_titles

from ..log import log, debug_log_event
from .models import NEGATIVE, Tier, WorkIdentity, Resolution
from .policy import ResolutionPolicy
from .session import NavigationSequencer, NavigationTicket, SessionState

logger = logging.getLogger(__name__)


class NoContextError(RuntimeError):
    """An entry point needs a displayed work but none is set."""


class InvalidLinkError(ValueError):
    """A pasted link does not point at a work on the given platform."""


def fallback_title(slug: str) -> str:
    """Readable title guessed from a slug ("7965--chainsaw-man" -> "chainsaw man")."""
    return re.sub(r'^\d+--', '', slug).replace('-', ' ').strip()


class MappingManager:
    """Orchestrates resolution, discovery and metrics for one browsing context."""

    def __init__(self, store, registry):
        self.store = store
        self.registry = registry
        self.policy = ResolutionPolicy(store)
        self.sequencer = NavigationSequencer()
        self.state: Optional[SessionState] = None
        self._tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # NAVIGATION
    # =========================================================================

    async def set_context(
        self,
        platform: str,
        slug: str,
        titles: Optional[List[str]] = None,
        source_units: Optional[float] = None,
    ) -> Optional[SessionState]:
        """
        Start a navigation to (platform, slug).

        Replaces SessionState, hydrates it from the store and launches one
        resolution task per other platform. Returns None if a newer
        navigation superseded this one while titles were being fetched.
        """
        source = self.registry.get(platform)
        if not slug:
            raise ValueError("slug is required")

        ticket = self.sequencer.begin()
        identity = WorkIdentity(platform, slug)
        state = SessionState(identity, titles=titles or [], source_units=source_units, seq=ticket.seq)
        state.manual_links = self.store.manual.get_all_for_scope(platform, slug)
        state.auto_links = self.store.auto.get_all_for_scope(platform, slug)
        self.state = state
        log(f"📖 Context #{ticket.seq}: {identity}")

        if not state.titles:
            fetched = await source.fetch_titles(slug)
            if not self.sequencer.is_current(ticket):
                logger.debug(f"Context #{ticket.seq} superseded while fetching titles")
                return None
            state.titles = clean_titles(fetched or []) or [fallback_title(slug)]

        for adapter in self.registry.others(platform):
            self._spawn(self._load_platform(state, ticket, adapter), f"load:{adapter.id}")
        return state

    def navigate_away(self) -> None:
        """Cancel in-flight work for the displayed work and drop its state."""
        self.sequencer.end()
        self.state = None

    # =========================================================================
    # USER ACTIONS
    # =========================================================================

    async def refresh(self, target: Optional[str] = None) -> List[str]:
        """
        Drop cached data for one target (or all) and load again.

        A negative mapping is deleted so the target is searched again.
        Returns the targets that were refreshed.
        """
        state, ticket = self._require_context()
        adapters = [self.registry.get(target)] if target else self.registry.others(state.identity.platform)

        refreshed = []
        for adapter in adapters:
            if adapter.id == state.identity.platform:
                continue
            resolution = self.policy.resolve(state.identity, adapter.id)
            if resolution.slug:
                self.store.metrics.delete(adapter.id, resolution.slug)
                state.metrics_by_platform.pop(adapter.id, None)
                self._spawn(
                    self._load_metrics(state, ticket, adapter, resolution.slug),
                    f"refresh:{adapter.id}",
                )
            else:
                if resolution.is_negative:
                    self.store.auto.delete(state.identity.platform, state.identity.slug, adapter.id)
                state.auto_links.pop(adapter.id, None)
                self._spawn(self._discover(state, ticket, adapter), f"rediscover:{adapter.id}")
            refreshed.append(adapter.id)
        return refreshed

    async def save_manual_link(self, target: str, target_slug: str) -> Resolution:
        """Pin target_slug as the manual mapping and reload its metrics."""
        state, ticket = self._require_context()
        adapter = self._target_adapter(state, target)
        target_slug = (target_slug or "").strip()
        if not target_slug:
            raise InvalidLinkError("Empty slug")

        self.store.manual.set(state.identity.platform, state.identity.slug, target, target_slug)
        self.store.metrics.delete(target, target_slug)
        state.manual_links[target] = target_slug
        state.metrics_by_platform.pop(target, None)
        log(f"🔗 Manual link {state.identity} -> {target}/{target_slug}")

        self._spawn(self._load_metrics(state, ticket, adapter, target_slug), f"manual:{target}")
        return state.resolve(target)

    async def save_manual_link_from_url(self, target: str, url: str) -> Resolution:
        adapter = self.registry.get(target)
        slug = adapter.slug_from_url(url or "")
        if not slug:
            raise InvalidLinkError(f"Not a {adapter.name} link: {url}")
        return await self.save_manual_link(target, slug)

    async def delete_manual_link(self, target: str) -> Resolution:
        """
        Forget every mapping for target and search again.

        Both the manual and the auto entry go, together with the metrics
        cached for the previously resolved slug.
        """
        state, ticket = self._require_context()
        adapter = self._target_adapter(state, target)
        previous = self.policy.resolve(state.identity, target)

        self.store.manual.delete(state.identity.platform, state.identity.slug, target)
        self.store.auto.delete(state.identity.platform, state.identity.slug, target)
        if previous.slug:
            self.store.metrics.delete(target, previous.slug)
        state.manual_links.pop(target, None)
        state.auto_links.pop(target, None)
        state.metrics_by_platform.pop(target, None)
        log(f"✂️ Removed links {state.identity} -> {target}")

        self._spawn(self._discover(state, ticket, adapter), f"relink:{target}")
        return state.resolve(target)

    async def record_progress(self, platform: str, slug: str, units: float) -> None:
        """Store locally tracked consumption and drop the stale metrics entry."""
        adapter = self.registry.get(platform)
        self.store.progress.set(platform, slug, units)
        self.store.metrics.delete(platform, slug)

        state = self.state
        ticket = self.sequencer.current
        if state is None or ticket is None or platform == state.identity.platform:
            return
        if state.resolve(platform).slug == slug:
            state.metrics_by_platform.pop(platform, None)
            self._spawn(self._load_metrics(state, ticket, adapter, slug), f"progress:{platform}")

    async def set_token(self, platform: str, token: Optional[str]) -> None:
        self.registry.get(platform)
        if token:
            self.store.tokens.set(platform, token)
        else:
            self.store.tokens.delete(platform)

    async def search_platform(self, platform: str, query: str) -> List[SearchCandidate]:
        """Free-text lookup used to pick a manual link."""
        adapter = self.registry.get(platform)
        query = (query or "").strip()
        if not query:
            return []
        return await adapter.search_by_query(query)

    def flush_expired(self) -> Dict[str, int]:
        return self.store.flush_expired()

    # =========================================================================
    # READ SIDE
    # =========================================================================

    async def snapshot(self) -> Optional[Dict[str, Any]]:
        """SessionState as JSON, with every other platform listed."""
        state = self.state
        if state is None:
            return None
        data = state.to_dict(targets=[a.id for a in self.registry.others(state.identity.platform)])
        for target, entry in data["platforms"].items():
            entry["url"] = self.registry.get(target).link(entry["slug"]) if entry["slug"] else None
        return data

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until every spawned task has finished (tasks may spawn more)."""
        async def _drain():
            while self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if timeout is None:
            await _drain()
        else:
            await asyncio.wait_for(_drain(), timeout)

    async def close(self) -> None:
        self.navigate_away()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.registry.close()

    # =========================================================================
    # RESOLUTION TASKS
    # =========================================================================

    async def _load_platform(self, state: SessionState, ticket: NavigationTicket, adapter: BasePlatformAdapter) -> None:
        resolution = self.policy.resolve(state.identity, adapter.id)
        if resolution.slug:
            await self._load_metrics(state, ticket, adapter, resolution.slug)
        elif resolution.is_negative:
            logger.debug(f"{state.identity} -> {adapter.id}: known missing, skipping")
        else:
            await self._discover(state, ticket, adapter)

    async def _discover(self, state: SessionState, ticket: NavigationTicket, adapter: BasePlatformAdapter) -> None:
        target = adapter.id
        if target in state.loading_platforms:
            return
        state.loading_platforms.add(target)
        try:
            outcome = await adapter.search(state.titles, ticket.token)

            if outcome.status == MatchStatus.CANCELLED or ticket.token.cancelled:
                logger.debug(f"Search {state.identity} -> {target} cancelled")
                return
            if outcome.status == MatchStatus.UNREACHABLE:
                log(f"⚠️ {adapter.name} unreachable, not remembering a result for {state.identity}")
                return

            identity = state.identity
            if outcome.status == MatchStatus.MATCHED:
                self.store.auto.set(identity.platform, identity.slug, target, outcome.slug)
                state.auto_links[target] = outcome.slug
                debug_log_event({
                    'event': 'auto_link', 'source': str(identity),
                    'target': target, 'slug': outcome.slug, 'title': outcome.matched_title,
                })
                if state.resolve(target).tier == Tier.MANUAL:
                    logger.debug(f"{identity} -> {target}: manual link set during search, keeping it")
                    return
                await self._load_metrics(state, ticket, adapter, outcome.slug)
            else:
                self.store.auto.set(identity.platform, identity.slug, target, NEGATIVE)
                state.auto_links[target] = NEGATIVE
                log(f"🚫 {identity} not found on {adapter.name}")
        finally:
            state.loading_platforms.discard(target)

    async def _load_metrics(self, state: SessionState, ticket: NavigationTicket, adapter: BasePlatformAdapter, slug: str) -> None:
        target = adapter.id
        entry = self.store.metrics.get(target, slug)
        if entry is None:
            metrics = await adapter.fetch_metrics(slug)
            if metrics is None:
                log(f"⚠️ No metrics from {adapter.name} for {slug}")
                return
            entry = self.store.metrics.set(target, slug, metrics.available, metrics.consumed)

        # The target may have been relinked while the fetch was in flight
        if self.sequencer.is_current(ticket) and state.resolve(target).slug == slug:
            state.metrics_by_platform[target] = entry

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _require_context(self):
        state = self.state
        ticket = self.sequencer.current
        if state is None or ticket is None or ticket.seq != state.seq:
            raise NoContextError("No work is being displayed")
        return state, ticket

    def _target_adapter(self, state: SessionState, target: str) -> BasePlatformAdapter:
        adapter = self.registry.get(target)
        if target == state.identity.platform:
            raise ValueError("A work cannot be linked to its own platform")
        return adapter

    def _spawn(self, coro: Coroutine, label: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=label)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"❌ Task {task.get_name()} failed: {exc}", exc_info=exc)
