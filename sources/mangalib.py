"""
================================================================================
MangaLink v1.0 - MangaLib Adapter
================================================================================
REST JSON API at api.cdnlibs.org.

  search:    GET /api/manga?q=<title>&site_id[]=1
  chapters:  GET /api/manga/<slug>/chapters   (paid chapters are skipped)
  bookmark:  GET /api/manga/<slug>/bookmark   (requires bearer token)
  titles:    GET /api/manga/<slug>?fields[]=eng_name&fields[]=otherNames

Slugs look like "7965--chainsaw-man" (numeric id, two dashes, name).
================================================================================
"""

from typing import Any, Dict, List, Optional

from .base import BasePlatformAdapter, SearchCandidate, UnitMetrics, clean_titles, source_log

API_BASE = "https://api.cdnlibs.org/api/manga"
SITE_ID = "1"


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class MangaLibAdapter(BasePlatformAdapter):
    id = "mangalib"
    name = "MangaLib"
    base_url = "https://mangalib.me"
    icon = "📗"

    url_patterns = [r'mangalib\.me/(?:[a-z]{2}/)?manga/(\d+--[^/?#]+)']

    def link(self, slug: str) -> str:
        return f"{self.base_url}/ru/manga/{slug}"

    def _headers(self) -> Dict[str, str]:
        headers = {
            "site-id": SITE_ID,
            "Referer": f"{self.base_url}/",
        }
        token = self._token()
        if token:
            headers["authorization"] = f"Bearer {token}"
        return headers

    async def _find_candidates(self, title: str) -> Optional[List[SearchCandidate]]:
        payload = await self.fetch_retried(API_BASE, {
            "params": [("q", title), ("site_id[]", SITE_ID)],
            "headers": self._headers(),
        })
        if payload is None:
            return None
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            source_log(f"⚠️ [{self.id}] Unexpected search payload for {title!r}")
            return []

        candidates = []
        for item in payload["data"]:
            if not isinstance(item, dict) or not item.get("slug_url"):
                continue
            cover = item.get("cover") or {}
            candidates.append(SearchCandidate(
                slug=item["slug_url"],
                titles=clean_titles([item.get("rus_name"), item.get("name"), item.get("eng_name")]),
                image=cover.get("thumbnail") if isinstance(cover, dict) else None,
            ))
        return candidates

    async def fetch_metrics(self, slug: str) -> Optional[UnitMetrics]:
        payload = await self.fetch_retried(f"{API_BASE}/{slug}/chapters", {"headers": self._headers()})
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            return None
        chapters = payload["data"]
        if not chapters:
            return None

        free = [ch for ch in chapters if isinstance(ch, dict) and self._is_free(ch)]
        available = _number(free[-1].get("number")) if free else 0.0
        consumed = await self._fetch_bookmark(slug)
        return UnitMetrics(available, consumed)

    @staticmethod
    def _is_free(chapter: Dict[str, Any]) -> bool:
        branches = chapter.get("branches") or []
        if not branches or not isinstance(branches[0], dict):
            return True
        restricted = branches[0].get("restricted_view")
        if not isinstance(restricted, dict):
            return not restricted
        return restricted.get("is_open") is True

    async def _fetch_bookmark(self, slug: str) -> float:
        if not self._token():
            return 0.0
        payload = await self.fetch_retried(f"{API_BASE}/{slug}/bookmark", {"headers": self._headers()})
        if not isinstance(payload, dict):
            return 0.0
        data = payload.get("data")
        item = data.get("item") if isinstance(data, dict) else None
        if not isinstance(item, dict):
            return 0.0
        return _number(item.get("number"))

    async def fetch_titles(self, slug: str) -> List[str]:
        payload = await self.fetch_retried(
            f"{API_BASE}/{slug}",
            {"params": [("fields[]", "eng_name"), ("fields[]", "otherNames")], "headers": self._headers()},
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            return []
        other = data.get("otherNames") or []
        return clean_titles([data.get("rus_name"), data.get("name"), data.get("eng_name"), *other])
