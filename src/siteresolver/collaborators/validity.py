"""Does a candidate domain resolve, and does it answer over HTTP(S)?"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import dns.asyncresolver
import dns.exception
import structlog

from siteresolver.collaborators.fetcher import FetchResult, PageFetcher

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SiteHealth:
    dns_ok: bool
    http_ok: bool = False
    is_https: bool = False
    final_url: str = ""
    probe: FetchResult | None = None


class SiteHealthChecker(Protocol):
    async def check(self, domain: str) -> SiteHealth: ...


class DnsHttpHealthChecker:
    """DNS A lookup (with a ``www.`` retry), then an HTTPS and an HTTP probe.

    Probes go through the shared page fetcher, so a successful probe also
    warms its cache for the page fetch that follows.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        dns_timeout_s: float = 5,
        resolver: dns.asyncresolver.Resolver | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.resolver = resolver or dns.asyncresolver.Resolver()
        self.resolver.lifetime = dns_timeout_s

    async def resolves(self, domain: str) -> bool:
        names = [domain] if domain.startswith("www.") else [domain, f"www.{domain}"]
        for name in names:
            try:
                await self.resolver.resolve(name, "A")
                return True
            except dns.exception.DNSException as exc:
                logger.debug("dns_lookup_failed", name=name, error=type(exc).__name__)
        return False

    async def check(self, domain: str) -> SiteHealth:
        if not await self.resolves(domain):
            return SiteHealth(dns_ok=False)

        probe: FetchResult | None = None
        for scheme in ("https", "http"):
            probe = await self.fetcher.fetch(f"{scheme}://{domain}")
            if probe.ok:
                return SiteHealth(
                    dns_ok=True,
                    http_ok=True,
                    is_https=probe.final_url.startswith("https://"),
                    final_url=probe.final_url,
                    probe=probe,
                )
        return SiteHealth(dns_ok=True, http_ok=False, probe=probe)
