"""
================================================================================
MangaLink v1.0 - Senkuro Adapter
================================================================================
GraphQL API with persisted queries (only the sha256 hash is sent).

The search response carries originalName and localized titles but no
alternative names, so unmatched candidates get a second look through
fetchManga before a search is declared empty.
================================================================================
"""

from typing import Any, Dict, List, Optional

from .base import (
    BasePlatformAdapter, MatchOutcome, SearchCandidate, UnitMetrics,
    is_cancelled, clean_titles, source_log,
)

GRAPHQL_URL = "https://api.senkuro.me/graphql"

QUERY_HASHES = {
    "search": "e64937b4fc9c921c2141f2995473161bed921c75855c5de934752392175936bc",
    "manga": "6d8b28abb9a9ee3199f6553d8f0a61c005da8f5c56a88ebcf3778eff28d45bd5",
}


def _persisted(operation: str, query_hash: str, variables: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "operationName": operation,
        "variables": variables,
        "extensions": {"persistedQuery": {"version": 1, "sha256Hash": query_hash}},
    }


class SenkuroAdapter(BasePlatformAdapter):
    id = "senkuro"
    name = "Senkuro"
    base_url = "https://senkuro.me"
    icon = "🌸"

    url_patterns = [r'senkuro\.[a-z]+/manga/([^/?#]+)']

    def link(self, slug: str) -> str:
        return f"{self.base_url}/manga/{slug}/chapters"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._token()
        if token:
            headers["authorization"] = f"Bearer {token}"
        return headers

    async def _find_candidates(self, title: str) -> Optional[List[SearchCandidate]]:
        payload = await self.fetch_retried(GRAPHQL_URL, {
            "method": "POST",
            "headers": {"Content-Type": "application/json"},
            "json": _persisted("search", QUERY_HASHES["search"], {"query": title, "type": "MANGA"}),
        })
        if payload is None:
            return None
        try:
            edges = payload["data"]["search"]["edges"] or []
        except (KeyError, TypeError):
            source_log(f"⚠️ [{self.id}] Unexpected search payload for {title!r}")
            return []

        candidates = []
        for edge in edges:
            node = (edge or {}).get("node") or {}
            if not node.get("slug"):
                continue
            localized = node.get("titles") or []
            # Prefer RU, then EN, for the display title
            ordered = sorted(localized, key=lambda t: {"RU": 0, "EN": 1}.get((t or {}).get("lang"), 2))
            cover = ((node.get("cover") or {}).get("preview") or {}).get("url")
            candidates.append(SearchCandidate(
                slug=node["slug"],
                titles=clean_titles([(t or {}).get("content") for t in ordered] + [node.get("originalName")]),
                image=cover,
            ))
        return candidates

    async def _fetch_manga(self, slug: str) -> Optional[Dict[str, Any]]:
        payload = await self.fetch_retried(GRAPHQL_URL, {
            "method": "POST",
            "headers": self._headers(),
            "json": _persisted("fetchManga", QUERY_HASHES["manga"], {"slug": slug}),
        })
        manga = ((payload or {}).get("data") or {}).get("manga") if isinstance(payload, dict) else None
        return manga if isinstance(manga, dict) else None

    async def _confirm_candidates(self, candidates, wanted, token=None) -> Optional[MatchOutcome]:
        for candidate in candidates:
            if is_cancelled(token):
                return MatchOutcome.cancelled()
            manga = await self._fetch_manga(candidate.slug)
            if is_cancelled(token):
                return MatchOutcome.cancelled()
            if manga is None:
                continue
            names = [(n or {}).get("content") for n in manga.get("alternativeNames") or []]
            hit = next((n for n in names if n in wanted), None)
            if hit is not None:
                source_log(f"✅ [{self.id}] {candidate.slug} matched alternative name '{hit}'")
                return MatchOutcome.matched(candidate.slug, hit)
        return None

    @staticmethod
    def _metrics_from_manga(manga: Dict[str, Any]) -> UnitMetrics:
        ends = []
        for branch in manga.get("branches") or []:
            activities = (branch or {}).get("primaryTeamActivities") or []
            if not activities:
                continue
            for rng in (activities[0] or {}).get("ranges") or []:
                end = (rng or {}).get("end")
                if isinstance(end, (int, float)):
                    ends.append(end)
        available = max(ends) if ends else (manga.get("chapters") or 0)

        consumed = 0.0
        bookmark = manga.get("viewerBookmark") or {}
        if bookmark.get("number") not in (None, ""):
            try:
                consumed = float(bookmark["number"])
            except (TypeError, ValueError):
                consumed = 0.0
        return UnitMetrics(available, consumed)

    async def fetch_metrics(self, slug: str) -> Optional[UnitMetrics]:
        manga = await self._fetch_manga(slug)
        if manga is None:
            return None
        return self._metrics_from_manga(manga)

    async def fetch_titles(self, slug: str) -> List[str]:
        manga = await self._fetch_manga(slug)
        if manga is None:
            return []
        names = [(n or {}).get("content") for n in manga.get("alternativeNames") or []]
        return clean_titles([manga.get("name"), *names])
