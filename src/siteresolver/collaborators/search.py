"""Web search providers.

Every provider exposes ``search(query, limit) -> list[SearchResult]``,
returning ``[]`` for zero results and raising
:class:`~siteresolver.errors.ProviderRateLimitError` when throttled.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Protocol

import httpx
import structlog

from siteresolver.config import ResolverConfig, Settings
from siteresolver.errors import ProviderRateLimitError
from siteresolver.fallback import Strategy, first_success

logger = structlog.get_logger(__name__)

GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"
SERPER_URL = "https://google.serper.dev/search"


@dataclass(frozen=True)
class SearchResult:
    url: str
    title: str = ""
    snippet: str = ""


class SearchProvider(Protocol):
    name: str

    async def search(self, query: str, limit: int = 5) -> list[SearchResult]: ...


def _to_result(item: dict) -> SearchResult:
    return SearchResult(
        url=item["link"], title=item.get("title", ""), snippet=item.get("snippet", "")
    )


def _raise_for_rate_limit(resp: httpx.Response, provider: str) -> None:
    if resp.status_code == 429:
        logger.warning("search_rate_limited", provider=provider)
        msg = f"{provider} rate limit (HTTP 429)"
        raise ProviderRateLimitError(msg)


# ---------------------------------------------------------------------------
# Concrete providers
# ---------------------------------------------------------------------------


class GoogleSearchProvider:
    """Google Programmable Search (Custom Search JSON API)."""

    name = "google"

    def __init__(
        self, client: httpx.AsyncClient, api_key: str, cx: str, timeout_s: float = 10
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.cx = cx
        self.timeout_s = timeout_s

    async def search(self, query: str, limit: int = 5) -> list[SearchResult]:
        resp = await self.client.get(
            GOOGLE_CSE_URL,
            params={"key": self.api_key, "cx": self.cx, "q": query, "num": min(limit, 10)},
            timeout=self.timeout_s,
        )
        _raise_for_rate_limit(resp, self.name)
        resp.raise_for_status()
        items = resp.json().get("items") or []
        return [_to_result(item) for item in items[:limit] if item.get("link")]


class SerperSearchProvider:
    """Serper.dev Google results API."""

    name = "serper"

    def __init__(self, client: httpx.AsyncClient, api_key: str, timeout_s: float = 10) -> None:
        self.client = client
        self.api_key = api_key
        self.timeout_s = timeout_s

    async def search(self, query: str, limit: int = 5) -> list[SearchResult]:
        resp = await self.client.post(
            SERPER_URL,
            json={"q": query, "num": limit, "gl": "it", "hl": "it"},
            headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
            timeout=self.timeout_s,
        )
        _raise_for_rate_limit(resp, self.name)
        resp.raise_for_status()
        organic = resp.json().get("organic") or []
        return [_to_result(item) for item in organic[:limit] if item.get("link")]


class NullSearchProvider:
    """Never finds anything.  Useful when only input URLs and seed pages matter."""

    name = "null"

    async def search(self, query: str, limit: int = 5) -> list[SearchResult]:
        return []


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class SearchCache:
    """Query -> results map with a TTL and a size cap, optionally persisted as JSON.

    When over capacity the oldest entries are evicted first.
    """

    def __init__(
        self,
        ttl_s: float = 86400,
        max_entries: int = 5000,
        path: str | Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self.path = Path(path) if path else None
        self._clock = clock
        self._entries: dict[str, tuple[float, list[SearchResult]]] = {}

    @staticmethod
    def key(query: str, limit: int) -> str:
        return f"{query.lower().strip()}|{limit}"

    def get(self, query: str, limit: int) -> list[SearchResult] | None:
        key = self.key(query, limit)
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, results = entry
        if self._clock() - stored_at >= self.ttl_s:
            del self._entries[key]
            return None
        return results

    def set(self, query: str, limit: int, results: list[SearchResult]) -> None:
        self._entries[self.key(query, limit)] = (self._clock(), list(results))
        self._enforce_limit()

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (ts, _) in self._entries.items() if now - ts >= self.ttl_s]:
            del self._entries[key]

    def _enforce_limit(self) -> None:
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries, key=lambda k: self._entries[k][0])[:overflow]
        for key in oldest:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    def load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("search_cache_unreadable", path=str(self.path))
            return
        for key, entry in raw.items():
            try:
                results = [SearchResult(**r) for r in entry["results"]]
                self._entries[key] = (float(entry["timestamp"]), results)
            except (KeyError, TypeError, ValueError):
                continue
        self._purge_expired()
        self._enforce_limit()
        logger.info("search_cache_loaded", entries=len(self._entries))

    def save(self) -> None:
        if self.path is None:
            return
        self._purge_expired()
        self._enforce_limit()
        payload = {
            key: {"timestamp": ts, "results": [asdict(r) for r in results]}
            for key, (ts, results) in self._entries.items()
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")


class CachedSearchProvider:
    def __init__(self, inner: SearchProvider, cache: SearchCache) -> None:
        self.inner = inner
        self.cache = cache
        self.name = inner.name

    async def search(self, query: str, limit: int = 5) -> list[SearchResult]:
        cached = self.cache.get(query, limit)
        if cached is not None:
            return cached
        results = await self.inner.search(query, limit)
        self.cache.set(query, limit, results)
        return results


class FallbackSearchProvider:
    """Try providers in order until one returns results.

    A rate limit is raised only when every provider failed and at least one
    of them was throttled; otherwise the last (empty) answer is returned.
    """

    def __init__(self, providers: Sequence[SearchProvider]) -> None:
        if not providers:
            msg = "FallbackSearchProvider needs at least one provider"
            raise ValueError(msg)
        self.providers = list(providers)
        self.name = "+".join(p.name for p in self.providers)

    async def search(self, query: str, limit: int = 5) -> list[SearchResult]:
        strategies = [
            Strategy(p.name, lambda q, p=p: p.search(q, limit)) for p in self.providers
        ]
        attempt = await first_success(strategies, query, accept=bool)
        if attempt.accepted or attempt.value is not None:
            return attempt.value or []
        for error in attempt.errors:
            if isinstance(error, ProviderRateLimitError):
                raise error
        if attempt.errors:
            raise attempt.errors[-1]
        return []


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_search_provider(
    settings: Settings,
    config: ResolverConfig,
    client: httpx.AsyncClient,
) -> tuple[SearchProvider, SearchCache]:
    """Build the configured provider chain, wrapped in a cache.

    Provider names come from ``settings.search_providers``; credentials are
    required for the providers that are named, never probed for.

    Raises:
        ValueError: On an unknown provider name or missing credentials.
    """
    timeout = config.search.timeout_s
    providers: list[SearchProvider] = []
    for name in settings.provider_names():
        if name == "google":
            if not (settings.google_api_key and settings.google_cx):
                msg = "google search requires SR_GOOGLE_API_KEY and SR_GOOGLE_CX"
                raise ValueError(msg)
            providers.append(
                GoogleSearchProvider(client, settings.google_api_key, settings.google_cx, timeout)
            )
        elif name == "serper":
            if not settings.serper_api_key:
                msg = "serper search requires SR_SERPER_API_KEY"
                raise ValueError(msg)
            providers.append(SerperSearchProvider(client, settings.serper_api_key, timeout))
        else:
            providers.append(NullSearchProvider())

    chain: SearchProvider = (
        providers[0] if len(providers) == 1 else FallbackSearchProvider(providers)
    )
    cache = SearchCache(
        ttl_s=config.search.cache_ttl_s,
        max_entries=config.search.cache_max_entries,
        path=settings.search_cache_path or None,
    )
    cache.load()
    return CachedSearchProvider(chain, cache), cache
