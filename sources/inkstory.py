"""
================================================================================
MangaLink v1.0 - Inkstory Adapter
================================================================================
REST search plus the page state embedded in <script id="it-astro-state">.

The state script is a flat "devalue" array: objects hold integer indices
pointing at other slots of the same array instead of inline values.

  chapters:  objects with a chaptersCount key. Counts are sorted high to
             low; a single count is used as is, otherwise the second one
             (the first is the sum over all translation teams).
  bookmarks: objects with chapter + userId keys; chapter points at an
             object whose number points at the chapter number.
================================================================================
"""

import json
from typing import Any, List, Optional

from bs4 import BeautifulSoup

from .base import BasePlatformAdapter, SearchCandidate, UnitMetrics, clean_titles, source_log

API_URL = "https://api.inkstory.net/v2/books"


def _deref(state: List[Any], index: Any) -> Any:
    if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(state):
        return state[index]
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_astro_state(state: List[Any]) -> UnitMetrics:
    """Extract available and bookmarked chapter numbers from a devalue array."""
    counts = []
    bookmarks = []
    for item in state:
        if not isinstance(item, dict):
            continue
        if "chaptersCount" in item:
            count = _deref(state, item["chaptersCount"])
            if _is_number(count):
                counts.append(count)
        if "chapter" in item and "userId" in item:
            chapter = _deref(state, item["chapter"])
            if isinstance(chapter, dict) and "number" in chapter:
                number = _deref(state, chapter["number"])
                if _is_number(number):
                    bookmarks.append(number)

    counts.sort(reverse=True)
    if len(counts) == 1:
        available = counts[0]
    elif len(counts) > 1:
        available = counts[1]
    else:
        available = 0
    return UnitMetrics(available, max(bookmarks) if bookmarks else 0)


class InkstoryAdapter(BasePlatformAdapter):
    id = "inkstory"
    name = "Inkstory"
    base_url = "https://inkstory.net"
    icon = "🖋️"

    url_patterns = [r'inkstory\.net/content/([^/?#]+)']

    def link(self, slug: str) -> str:
        return f"{self.base_url}/content/{slug}?tab=chapters"

    async def _find_candidates(self, title: str) -> Optional[List[SearchCandidate]]:
        payload = await self.fetch_retried(API_URL, {
            "params": {
                "search": title,
                "ignoreUserScopedContentStatus": "true",
                "serviceName": "inkstory",
            },
        })
        if payload is None:
            return None
        if not isinstance(payload, list):
            source_log(f"⚠️ [{self.id}] Unexpected search payload for {title!r}")
            return []

        candidates = []
        for book in payload:
            if not isinstance(book, dict) or not book.get("slug"):
                continue
            names = book.get("name") or {}
            localized = [names.get("ru"), names.get("en"), names.get("original")] if isinstance(names, dict) else []
            alt = [(a or {}).get("name") for a in book.get("altNames") or []]
            candidates.append(SearchCandidate(
                slug=book["slug"],
                titles=clean_titles(localized + alt),
                image=book.get("poster"),
            ))
        return candidates

    async def fetch_metrics(self, slug: str) -> Optional[UnitMetrics]:
        html = await self.fetch_retried(self.link(slug))
        if not isinstance(html, str):
            return None

        script = BeautifulSoup(html, "html.parser").select_one("script#it-astro-state")
        if script is None or not script.get_text().strip():
            source_log(f"⚠️ [{self.id}] No page state for {slug}")
            return None
        try:
            state = json.loads(script.get_text())
        except ValueError as e:
            source_log(f"⚠️ [{self.id}] Unreadable page state for {slug}: {e}")
            return None
        if not isinstance(state, list):
            return None

        metrics = parse_astro_state(state)
        if not metrics.consumed:
            metrics = UnitMetrics(metrics.available, self._local_progress(slug))
        return metrics

    async def fetch_titles(self, slug: str) -> List[str]:
        html = await self.fetch_retried(f"{self.base_url}/content/{slug}")
        if not isinstance(html, str):
            return []
        heading = BeautifulSoup(html, "html.parser").select_one("h1")
        return clean_titles([heading.get_text() if heading else None])
