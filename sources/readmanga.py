"""
================================================================================
MangaLink v1.0 - ReadManga Adapter
================================================================================
Search suggestions are JSON; everything else is scraped from the manga page.

Chapter numbers live in data-num attributes multiplied by 10
(data-num="1235" is chapter 123.5). The newest chapter is the first row of
#chapters-list.

Consumed units, in order of preference:
  1. bookmark progress from the X API (needs a token)
  2. highest chapter row marked item-visited
================================================================================
"""

import re
from typing import Dict, List, Optional

from bs4 import BeautifulSoup

from .base import BasePlatformAdapter, SearchCandidate, UnitMetrics, clean_titles, source_log

SERVER_VAR_PATTERN = re.compile(r"var\s+(\w+)\s*=\s*['\"]?([^'\";\n]*)['\"]?\s*;?")


def _data_num(value) -> float:
    try:
        return int(value) / 10
    except (TypeError, ValueError):
        return 0.0


class ReadMangaAdapter(BasePlatformAdapter):
    id = "readmanga"
    name = "ReadManga"
    base_url = "https://a.zazaza.me"
    icon = "📕"

    url_patterns = [r'zazaza\.me/([^/?#]+)']

    def link(self, slug: str) -> str:
        return f"{self.base_url}/{slug}#chapters-list"

    async def _find_candidates(self, title: str) -> Optional[List[SearchCandidate]]:
        payload = await self.fetch_retried(f"{self.base_url}/search/suggestion", {
            "params": [("query", title), ("types[]", "CREATION"), ("types[]", "FEDERATION_MANGA")],
        })
        if payload is None:
            return None
        if not isinstance(payload, dict):
            source_log(f"⚠️ [{self.id}] Unexpected suggestion payload for {title!r}")
            return []

        candidates = []
        for item in payload.get("suggestions") or []:
            if not isinstance(item, dict) or not item.get("link"):
                continue
            slug = item["link"].strip("/").split("/")[0]
            if not slug:
                continue
            candidates.append(SearchCandidate(
                slug=slug,
                titles=clean_titles([item.get("value"), *(item.get("names") or [])]),
                image=item.get("thumbnail"),
            ))
        return candidates

    async def _fetch_page(self, slug: str) -> Optional[str]:
        html = await self.fetch_retried(f"{self.base_url}/{slug}")
        return html if isinstance(html, str) else None

    async def fetch_metrics(self, slug: str) -> Optional[UnitMetrics]:
        html = await self._fetch_page(slug)
        if html is None:
            return None
        soup = BeautifulSoup(html, "html.parser")

        available = 0.0
        chapters_list = soup.select_one("#chapters-list")
        if chapters_list is not None:
            first = chapters_list.select_one("td.item-title[data-num]")
            if first is not None:
                available = _data_num(first.get("data-num"))

        consumed = 0.0
        if self._token():
            consumed = await self._fetch_bookmark(soup)
        if not consumed:
            consumed = self._visited(soup)

        return UnitMetrics(available, consumed)

    @staticmethod
    def _visited(soup: BeautifulSoup) -> float:
        visited = [_data_num(td.get("data-num")) for td in soup.select("tr.item-visited td[data-num]")]
        return max(visited) if visited else 0.0

    @staticmethod
    def _server_variables(soup: BeautifulSoup) -> Dict[str, str]:
        for script in soup.find_all("script"):
            text = script.get_text()
            if "SERVER_URL" in text or "X_API_URL" in text:
                return {name: value.strip() for name, value in SERVER_VAR_PATTERN.findall(text)}
        return {}

    async def _fetch_bookmark(self, soup: BeautifulSoup) -> float:
        variables = self._server_variables(soup)
        chapters_list = soup.select_one("#chapters-list")
        x_api_url = variables.get("X_API_URL")
        site_id = variables.get("RM_site_id")
        if not x_api_url or not site_id or chapters_list is None:
            return 0.0
        external_id = chapters_list.get("data-id")
        kind = chapters_list.get("data-type")
        if not external_id or not kind:
            return 0.0

        payload = await self.fetch_retried(f"{x_api_url.rstrip('/')}/api/bookmark/progress", {
            "method": "POST",
            "headers": {"authorization": f"Bearer {self._token()}"},
            "files": {
                "siteId": (None, site_id),
                "type": (None, kind),
                "externalId": (None, external_id),
            },
        })
        if not isinstance(payload, dict):
            return 0.0
        return _data_num((payload.get("progress") or {}).get("num"))

    async def fetch_titles(self, slug: str) -> List[str]:
        html = await self._fetch_page(slug)
        if html is None:
            return []
        soup = BeautifulSoup(html, "html.parser")
        main = soup.select_one("h1.names > .name")
        if main is None:
            return []

        names = [main.get_text()]
        for selector in ("h1.names .eng-name", "h1.names .original-name"):
            node = soup.select_one(selector)
            if node is not None:
                names.append(node.get_text())
        names.extend(node.get_text() for node in soup.select(".all-names-popover .name"))
        alt = soup.select_one(".another-names .expandable-text__text")
        if alt is not None:
            names.extend(alt.get_text().split("/"))
        return clean_titles(names)
