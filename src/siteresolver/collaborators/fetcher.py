"""HTTP page fetcher with retries, request-profile fallback and a TTL cache.

``fetch`` never raises: when every attempt fails the result carries status 0
(network failure) or the last HTTP status, plus an error description.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

import httpx
import structlog

from siteresolver.config import FetcherConfig
from siteresolver.fallback import Strategy, first_success

logger = structlog.get_logger(__name__)

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
# Statuses that make the fetcher move on to the next request profile.
BLOCKING_STATUSES = frozenset({403, 429, 503})

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
)


@dataclass(frozen=True)
class FetchResult:
    url: str
    status: int
    content: str = ""
    final_url: str = ""
    error: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return 0 < self.status < 400

    @property
    def blocked(self) -> bool:
        return self.status in BLOCKING_STATUSES


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> FetchResult: ...


@dataclass(frozen=True)
class RequestProfile:
    """One way of asking for a page.  Profiles are tried in order on blocking statuses."""

    name: str
    headers: dict[str, str] = field(default_factory=dict)


def default_profiles(user_agent: str) -> list[RequestProfile]:
    accept = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
    return [
        RequestProfile(
            "desktop",
            {
                "User-Agent": user_agent,
                "Accept": accept,
                "Accept-Language": "it-IT,it;q=0.9,en-US;q=0.8,en;q=0.7",
            },
        ),
        RequestProfile(
            "mobile",
            {
                "User-Agent": MOBILE_USER_AGENT,
                "Accept": accept,
                "Accept-Language": "it-IT,it;q=0.9",
            },
        ),
    ]


class HttpFetcher:
    """Fetch pages over httpx.

    Args:
        config: Timeout, retry and cache settings; the cache keeps at most
            ``cache_max_entries`` pages.
        client: Shared ``httpx.AsyncClient``; one is created (and owned) if omitted.
        profiles: Request profiles tried in order when a response is blocked.
        sleep: Injected for tests; defaults to :func:`asyncio.sleep`.
    """

    def __init__(
        self,
        config: FetcherConfig,
        client: httpx.AsyncClient | None = None,
        profiles: Sequence[RequestProfile] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(follow_redirects=True)
        self.profiles = list(profiles) if profiles else default_profiles(config.user_agent)
        self._sleep = sleep
        self._clock = clock
        self._cache: dict[str, tuple[float, FetchResult]] = {}

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> HttpFetcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- cache --------------------------------------------------------------

    def _cached(self, url: str) -> FetchResult | None:
        entry = self._cache.get(url)
        if entry is None:
            return None
        expires_at, result = entry
        if self._clock() >= expires_at:
            del self._cache[url]
            return None
        return result

    def _store(self, url: str, result: FetchResult) -> None:
        """Cache *result* under the requested URL and its post-redirect URL."""
        self._purge_expired()
        expires_at = self._clock() + self.config.cache_ttl_s
        for key in dict.fromkeys([url, result.final_url or url]):
            self._cache.pop(key, None)
            self._cache[key] = (expires_at, result)
        self._enforce_limit()

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._cache.items() if now >= expires_at]
        for key in expired:
            del self._cache[key]

    def _enforce_limit(self) -> None:
        # Dicts keep insertion order, so the first keys are the oldest entries.
        overflow = len(self._cache) - self.config.cache_max_entries
        for key in list(self._cache)[: max(overflow, 0)]:
            del self._cache[key]

    # -- fetching -----------------------------------------------------------

    async def _get_once(self, url: str, profile: RequestProfile) -> FetchResult:
        try:
            resp = await self.client.get(
                url, headers=profile.headers, timeout=self.config.timeout_s
            )
        except httpx.TimeoutException as exc:
            return FetchResult(
                url=url, status=0, final_url=url, error=f"timeout: {exc}", timed_out=True
            )
        except httpx.HTTPError as exc:
            error = f"{type(exc).__name__}: {exc}"
            return FetchResult(url=url, status=0, final_url=url, error=error)
        return FetchResult(
            url=url,
            status=resp.status_code,
            content=resp.text if resp.status_code < 400 else "",
            final_url=str(resp.url),
            error="" if resp.status_code < 400 else f"HTTP {resp.status_code}",
        )

    async def _get_with_retries(self, url: str, profile: RequestProfile) -> FetchResult:
        result = await self._get_once(url, profile)
        for attempt in range(self.config.retries):
            if not (result.timed_out or result.status in RETRY_STATUSES):
                break
            delay = self.config.backoff_s * (2**attempt)
            logger.debug(
                "fetch_retry", url=url, status=result.status, attempt=attempt + 1, delay=delay
            )
            await self._sleep(delay)
            result = await self._get_once(url, profile)
        return result

    async def fetch(self, url: str) -> FetchResult:
        cached = self._cached(url)
        if cached is not None:
            return cached

        strategies = [
            Strategy(p.name, lambda u, p=p: self._get_with_retries(u, p)) for p in self.profiles
        ]
        attempt = await first_success(strategies, url, accept=lambda r: not r.blocked)
        result = attempt.value or FetchResult(url=url, status=0, final_url=url, error="no attempt")

        if attempt.accepted and attempt.reason != self.profiles[0].name:
            logger.info("fetch_fallback_profile", url=url, profile=attempt.reason)
        if result.ok:
            self._store(url, result)
        else:
            logger.debug("fetch_failed", url=url, status=result.status, error=result.error)
        return result
