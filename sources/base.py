"""
================================================================================
MangaLink v1.0 - Base Platform Adapter
================================================================================
Abstract base class for every platform a work can be mapped to.

Each adapter provides:
  1. search(titles, token)  -> MatchOutcome (exact title-set intersection)
  2. fetch_metrics(slug)    -> UnitMetrics (available / consumed units)
  3. slug_from_url(url)     -> slug parsed from a pasted link
  4. link(slug)             -> canonical URL of the work

NETWORK DISCIPLINE:
  Every remote call goes through fetch_retried(): bounded attempts, a
  per-attempt timeout, exponential backoff capped at backoff_max, and None
  instead of an exception once attempts run out.

CANCELLATION:
  search() checks the token before each remote call and after each result.
  A cancelled search returns MatchOutcome.cancelled(), which callers must
  never persist.
================================================================================
"""

import re
import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# LOGGING CALLBACK (avoids circular imports)
# =============================================================================

# Global logger callback - set by create_app on startup
_log_callback: Optional[Callable[[str], None]] = None


def set_log_callback(callback: Optional[Callable[[str], None]]) -> None:
    """Set the logging callback function. Called by create_app on startup."""
    global _log_callback
    _log_callback = callback


def source_log(msg: str) -> None:
    """Log a message using the registered callback or fallback to the module logger."""
    if _log_callback:
        _log_callback(msg)
    else:
        logger.info(msg)


# =============================================================================
# ENUMS & DATA CLASSES
# =============================================================================

class SourceStatus(Enum):
    """Current operational status of a platform."""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class MatchStatus(str, Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    CANCELLED = "cancelled"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class MatchOutcome:
    """
    Result of search().

    MATCHED and NO_MATCH are decisions and get persisted. CANCELLED and
    UNREACHABLE are neutral: nothing may be written for them.
    """
    status: MatchStatus
    slug: Optional[str] = None
    matched_title: Optional[str] = None

    @classmethod
    def matched(cls, slug: str, matched_title: Optional[str] = None) -> "MatchOutcome":
        return cls(MatchStatus.MATCHED, slug, matched_title)

    @classmethod
    def no_match(cls) -> "MatchOutcome":
        return cls(MatchStatus.NO_MATCH)

    @classmethod
    def cancelled(cls) -> "MatchOutcome":
        return cls(MatchStatus.CANCELLED)

    @classmethod
    def unreachable(cls) -> "MatchOutcome":
        return cls(MatchStatus.UNREACHABLE)

    @property
    def is_decision(self) -> bool:
        return self.status in (MatchStatus.MATCHED, MatchStatus.NO_MATCH)

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "slug": self.slug, "matched_title": self.matched_title}


@dataclass
class SearchCandidate:
    """One remote search hit together with every title the platform knows it by."""
    slug: str
    titles: List[str] = field(default_factory=list)
    image: Optional[str] = None

    @property
    def title(self) -> str:
        return self.titles[0] if self.titles else self.slug

    def to_dict(self) -> Dict[str, Any]:
        return {"slug": self.slug, "title": self.title, "titles": self.titles, "image": self.image}


@dataclass
class UnitMetrics:
    """Units available on a platform and units the user consumed there."""
    available: float
    consumed: float = 0.0

    def __post_init__(self):
        self.available = max(0.0, float(self.available or 0))
        self.consumed = min(max(0.0, float(self.consumed or 0)), self.available)

    def to_dict(self) -> Dict[str, Any]:
        return {"available": self.available, "consumed": self.consumed}


def is_cancelled(token) -> bool:
    return token is not None and bool(getattr(token, "cancelled", False))


def clean_titles(titles: Iterable[Optional[str]]) -> List[str]:
    """Drop blanks and duplicates, keep order."""
    seen = set()
    result = []
    for title in titles:
        if isinstance(title, str):
            title = title.strip()
            if title and title not in seen:
                seen.add(title)
                result.append(title)
    return result


# =============================================================================
# BASE ADAPTER CLASS
# =============================================================================

class BasePlatformAdapter(ABC):
    """
    Abstract base class for platform adapters.

    INHERITANCE:
        Adapters implement _find_candidates() and fetch_metrics(). search()
        is shared: it walks the titles in order and stops at the first
        candidate whose own titles intersect the caller's titles.

    COLLABORATORS:
        transport  - async callable(url, options) -> payload (raises on failure)
        tokens     - object with get(platform) -> Optional[str]
        progress   - object with get(platform, slug) -> float

    Example:
        class ExampleAdapter(BasePlatformAdapter):
            id = "example"
            name = "Example"
            url_patterns = [r'example\\.org/manga/([^/?#]+)']

            async def _find_candidates(self, title):
                payload = await self.fetch_retried(f"{API}?q={title}")
                ...
    """

    # =========================================================================
    # PLATFORM CONFIGURATION (Override in subclass)
    # =========================================================================

    id: str = "base"
    name: str = "Base Platform"
    base_url: str = ""
    icon: str = "📚"

    # First captured group is the slug
    url_patterns: List[str] = []

    # Network discipline
    request_timeout: float = 10.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 10.0

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def __init__(self, transport=None, tokens=None, progress=None):
        if transport is None:
            from .http_client import HttpxTransport
            transport = HttpxTransport()
        self.transport = transport
        self.tokens = tokens
        self.progress = progress

        self._status = SourceStatus.UNKNOWN
        self._last_error: Optional[str] = None
        self._failure_count = 0
        self._last_success: Optional[float] = None
        self._lock = threading.Lock()

    def configure(
        self,
        request_timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
    ) -> None:
        """Override network discipline defaults for this instance."""
        if request_timeout is not None:
            self.request_timeout = request_timeout
        if max_attempts is not None:
            self.max_attempts = max_attempts
        if backoff_base is not None:
            self.backoff_base = backoff_base
        if backoff_max is not None:
            self.backoff_max = backoff_max

    # =========================================================================
    # NETWORK (retry + backoff)
    # =========================================================================

    def _backoff_delay(self, attempt: int) -> float:
        """Delay after a failed attempt (0-indexed)."""
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def fetch_retried(
        self,
        url: str,
        options: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> Any:
        """
        Call the transport with bounded retries.

        Each attempt is cancelled once it exceeds the timeout. Timeouts,
        transport errors and empty payloads all count as a failed attempt.

        Returns:
            The payload, or None when every attempt failed.
        """
        timeout = self.request_timeout if timeout is None else timeout
        attempts = self.max_attempts if max_attempts is None else max_attempts

        for attempt in range(attempts):
            try:
                result = await asyncio.wait_for(self.transport(url, options or {}), timeout)
                if result is not None:
                    self._handle_success()
                    return result
                source_log(f"⚠️ [{self.id}] Empty response ({attempt + 1}/{attempts}): {url}")
                self._handle_error("empty response")
            except asyncio.TimeoutError:
                source_log(f"⚠️ [{self.id}] Timeout after {timeout}s ({attempt + 1}/{attempts}): {url}")
                self._handle_error(f"timeout after {timeout}s")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                source_log(f"⚠️ [{self.id}] Request failed ({attempt + 1}/{attempts}): {e}")
                self._handle_error(str(e))

            if attempt < attempts - 1:
                await self._sleep(self._backoff_delay(attempt))

        source_log(f"❌ [{self.id}] All {attempts} attempts failed: {url}")
        return None

    # =========================================================================
    # STATUS MANAGEMENT
    # =========================================================================

    def _handle_success(self) -> None:
        with self._lock:
            self._status = SourceStatus.ONLINE
            self._failure_count = 0
            self._last_success = time.time()

    def _handle_error(self, error: str) -> None:
        with self._lock:
            self._last_error = error
            self._failure_count += 1
            if self._failure_count >= 5:
                self._status = SourceStatus.OFFLINE

    @property
    def status(self) -> SourceStatus:
        return self._status

    def get_health_info(self) -> Dict[str, Any]:
        """Get health info for status display."""
        return {
            "id": self.id,
            "name": self.name,
            "icon": self.icon,
            "status": self.status.value,
            "failure_count": self._failure_count,
            "last_error": self._last_error,
            "last_success": self._last_success,
        }

    def reset(self) -> None:
        with self._lock:
            self._status = SourceStatus.UNKNOWN
            self._failure_count = 0
            self._last_error = None

    # =========================================================================
    # SEARCH PROTOCOL
    # =========================================================================

    async def search(self, titles: Iterable[str], token=None) -> MatchOutcome:
        """
        Find this platform's slug for a work known by `titles`.

        Titles are tried in order. A candidate matches when any of its own
        titles equals any of the caller's titles (exact string equality).
        """
        titles = clean_titles(titles)
        wanted = set(titles)
        leftovers: List[SearchCandidate] = []
        failures = 0

        for title in titles:
            if is_cancelled(token):
                return MatchOutcome.cancelled()

            candidates = await self._find_candidates(title)

            if is_cancelled(token):
                return MatchOutcome.cancelled()

            if candidates is None:
                failures += 1
                continue

            for candidate in candidates:
                hit = next((t for t in candidate.titles if t in wanted), None)
                if hit is not None:
                    source_log(f"✅ [{self.id}] '{title}' -> {candidate.slug} (matched '{hit}')")
                    return MatchOutcome.matched(candidate.slug, hit)

            if candidates and not leftovers:
                leftovers = list(candidates)

        if leftovers:
            outcome = await self._confirm_candidates(leftovers, wanted, token)
            if outcome is not None:
                return outcome

        if titles and failures == len(titles):
            source_log(f"⚠️ [{self.id}] Search unreachable for {titles[0]!r}")
            return MatchOutcome.unreachable()

        source_log(f"[{self.id}] No match for {titles[:1]!r}")
        return MatchOutcome.no_match()

    async def _confirm_candidates(
        self,
        candidates: List[SearchCandidate],
        wanted: set,
        token=None,
    ) -> Optional[MatchOutcome]:
        """
        Second chance for platforms whose search response omits some names.

        Return a MatchOutcome to short-circuit, or None to fall through to
        NO_MATCH. Default: no second chance.
        """
        return None

    # =========================================================================
    # ABSTRACT METHODS (Must implement in subclass)
    # =========================================================================

    @abstractmethod
    async def _find_candidates(self, title: str) -> Optional[List[SearchCandidate]]:
        """
        Query the platform's search for one title.

        Returns:
            Candidates (possibly empty), or None when the request failed.
        """
        pass

    @abstractmethod
    async def fetch_metrics(self, slug: str) -> Optional[UnitMetrics]:
        """Fetch unit counts for a work. None when unavailable."""
        pass

    @abstractmethod
    def link(self, slug: str) -> str:
        """Canonical URL of a work on this platform."""
        pass

    # =========================================================================
    # OPTIONAL METHODS (Override if platform supports)
    # =========================================================================

    async def fetch_titles(self, slug: str) -> List[str]:
        """All titles this platform knows the work by."""
        return []

    async def search_by_query(self, query: str, limit: int = 5) -> List[SearchCandidate]:
        """Free-text lookup for picking a manual link."""
        candidates = await self._find_candidates(query)
        return (candidates or [])[:limit]

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================

    def _token(self) -> Optional[str]:
        if self.tokens is None:
            return None
        return self.tokens.get(self.id)

    def _local_progress(self, slug: str) -> float:
        if self.progress is None:
            return 0.0
        return float(self.progress.get(self.id, slug) or 0)

    def _absolute_url(self, url: str) -> str:
        """Convert relative URL to absolute."""
        if not url:
            return ""
        if url.startswith(("http://", "https://")):
            return url
        if url.startswith("//"):
            return "https:" + url
        if url.startswith("/"):
            return self.base_url.rstrip("/") + url
        return self.base_url.rstrip("/") + "/" + url

    # =========================================================================
    # URL DETECTION METHODS
    # =========================================================================

    def matches_url(self, url: str) -> bool:
        """Check if this platform recognizes the URL."""
        return self.slug_from_url(url) is not None

    def slug_from_url(self, url: str) -> Optional[str]:
        """
        Extract the work slug from a URL.

        Tries all url_patterns and returns the first captured group.

        Example:
            pattern: r'mangalib\\.me/(?:ru/)?manga/(\\d+--[^/?#]+)'
            URL: 'https://mangalib.me/ru/manga/7965--chainsaw-man'
            Returns: '7965--chainsaw-man'
        """
        if not url:
            return None
        for pattern in self.url_patterns:
            match = re.search(pattern, url, re.IGNORECASE)
            if match and match.groups():
                return match.group(1)
        return None

    async def close(self) -> None:
        aclose = getattr(self.transport, "aclose", None)
        if aclose is not None:
            await aclose()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id='{self.id}' status={self.status.value}>"
