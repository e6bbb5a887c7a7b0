"""
================================================================================
MangaLink v1.0 - MangaBuff Adapter
================================================================================
JSON search suggestions plus HTML scraping of the manga page.

MangaBuff exposes no bookmark API; consumed units come from locally
recorded reading progress.
================================================================================
"""

import re
from typing import List, Optional

from bs4 import BeautifulSoup

from .base import BasePlatformAdapter, SearchCandidate, UnitMetrics, clean_titles, source_log


class MangaBuffAdapter(BasePlatformAdapter):
    id = "mangabuff"
    name = "MangaBuff"
    base_url = "https://mangabuff.ru"
    icon = "💪"

    url_patterns = [r'mangabuff\.ru/manga/([^/?#]+)']

    def link(self, slug: str) -> str:
        return f"{self.base_url}/manga/{slug}"

    async def _find_candidates(self, title: str) -> Optional[List[SearchCandidate]]:
        payload = await self.fetch_retried(f"{self.base_url}/search/suggestions", {"params": {"q": title}})
        if payload is None:
            return None
        if not isinstance(payload, list):
            source_log(f"⚠️ [{self.id}] Unexpected suggestions payload for {title!r}")
            return []

        candidates = []
        for item in payload:
            if not isinstance(item, dict) or not item.get("slug"):
                continue
            image = item.get("image")
            candidates.append(SearchCandidate(
                slug=item["slug"],
                titles=clean_titles([item.get("name")]),
                image=self._absolute_url(image) if image else None,
            ))
        return candidates

    async def _fetch_page(self, slug: str) -> Optional[BeautifulSoup]:
        html = await self.fetch_retried(self.link(slug))
        if not isinstance(html, str):
            return None
        return BeautifulSoup(html, "html.parser")

    async def fetch_metrics(self, slug: str) -> Optional[UnitMetrics]:
        soup = await self._fetch_page(slug)
        if soup is None:
            return None

        available = 0.0
        counter = soup.select_one(".hot-chapters__number")
        if counter:
            match = re.search(r"\d+(?:\.\d+)?", counter.get_text())
            if match:
                available = float(match.group(0))

        return UnitMetrics(available, self._local_progress(slug))

    async def fetch_titles(self, slug: str) -> List[str]:
        soup = await self._fetch_page(slug)
        if soup is None:
            return []
        heading = soup.select_one("h1")
        return clean_titles([heading.get_text() if heading else None])
