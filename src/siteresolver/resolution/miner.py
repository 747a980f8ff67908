"""Candidate generation: which domains could be the official site?

Candidates come from four sources, each with its own trust rank (lower is
more trusted):

* the website already present in the input row (rank 0),
* external links on the row's source page, e.g. a directory listing (rank 1),
* web search results (rank 2 and up, in result order),
* guessed domains built from the company name (rank 1000 and up).
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urlparse

import structlog

from siteresolver.collaborators.search import SearchProvider, SearchResult
from siteresolver.errors import ProviderRateLimitError
from siteresolver.models import Candidate, InputRow, NormalizedEntity

logger = structlog.get_logger(__name__)

INPUT_URL_RANK = 0
SEED_PAGE_RANK = 1
SEARCH_RANK_START = 2
GUESSED_RANK_START = 1000


@dataclass(frozen=True)
class MiningStrategy:
    """How hard to look for candidates.  Chosen per wave."""

    name: str = "fast"
    results_per_query: int = 5
    use_address: bool = False
    use_province: bool = False
    use_phone: bool = False
    use_vat: bool = False
    guess_domains: bool = False
    guess_tlds: tuple[str, ...] = (".it", ".com")


FAST = MiningStrategy()


# ---------------------------------------------------------------------------
# Domain helpers
# ---------------------------------------------------------------------------


def root_domain(url: str) -> str | None:
    """Hostname of *url* without a leading ``www.``; ``None`` if unparseable."""
    if not url:
        return None
    candidate = url.strip()
    if "://" not in candidate:
        candidate = "http://" + candidate
    try:
        host = urlparse(candidate).hostname
    except ValueError:
        return None
    if not host or "." not in host:
        return None
    host = host.lower().rstrip(".")
    return host[4:] if host.startswith("www.") else host


def ensure_scheme(url: str) -> str:
    url = url.strip()
    return url if "://" in url else f"https://{url}"


def is_blacklisted(domain: str, blacklist: Iterable[str]) -> bool:
    """True if *domain* equals or is a subdomain of any blacklisted domain."""
    domain = domain.lower()
    return any(domain == bad or domain.endswith("." + bad) for bad in blacklist)


def slugify_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


# ---------------------------------------------------------------------------
# Miner
# ---------------------------------------------------------------------------


class CandidateMiner:
    """Gather candidate domains for one entity from every available source."""

    def __init__(self, provider: SearchProvider, blacklist: Iterable[str] = ()) -> None:
        self.provider = provider
        self.blacklist = frozenset(d.lower() for d in blacklist)

    # -- queries ------------------------------------------------------------

    @staticmethod
    def primary_queries(
        entity: NormalizedEntity, row: InputRow, strategy: MiningStrategy
    ) -> list[str]:
        name, city = entity.company_name, entity.city
        if not name:
            return []

        queries = [f'"{name}" {city}' if city else f'"{name}"']
        if strategy.use_address and entity.address_tokens:
            queries.append(f'"{name}" {" ".join(entity.address_tokens)} {city}'.strip())
        if strategy.use_province and entity.province:
            queries.append(f'"{name}" {entity.province}')
        if strategy.use_phone and entity.raw_phones:
            queries.append(f'"{entity.raw_phones[0]}"')
        if strategy.use_vat and entity.vat_id:
            queries.append(f'"{entity.vat_id}"')
            queries.append(f"partita iva {entity.vat_id}")
        return list(dict.fromkeys(queries))

    @staticmethod
    def fallback_queries(entity: NormalizedEntity) -> list[str]:
        name, city = entity.company_name, entity.city
        if not name:
            return []
        return [
            " ".join(filter(None, [f'"{name}"', city, "sito ufficiale"])),
            " ".join(filter(None, [name, city, "website"])),
        ]

    # -- sources ------------------------------------------------------------

    async def _search_phase(
        self,
        queries: list[str],
        limit: int,
        seen_urls: set[str],
        out: list[Candidate],
    ) -> None:
        for query in queries:
            try:
                results = await self.provider.search(query, limit)
            except ProviderRateLimitError:
                raise
            except Exception as exc:
                logger.warning("search_failed", query=query, error=str(exc))
                continue
            for result in results:
                self._add_search_result(result, seen_urls, out)

    def _add_search_result(
        self, result: SearchResult, seen_urls: set[str], out: list[Candidate]
    ) -> None:
        if result.url in seen_urls:
            return
        seen_urls.add(result.url)
        domain = root_domain(result.url)
        if domain is None or is_blacklisted(domain, self.blacklist):
            return
        out.append(
            Candidate(
                root_domain=domain,
                source_url=result.url,
                rank=SEARCH_RANK_START + len(out),
                provider=getattr(self.provider, "name", "search"),
                title=result.title,
                snippet=result.snippet,
            )
        )

    def input_url_candidate(self, row: InputRow) -> Candidate | None:
        domain = root_domain(row.initial_website)
        if domain is None:
            if row.initial_website:
                logger.warning("input_website_invalid", url=row.initial_website)
            return None
        if is_blacklisted(domain, self.blacklist):
            return None
        return Candidate(
            root_domain=domain,
            source_url=ensure_scheme(row.initial_website),
            rank=INPUT_URL_RANK,
            provider="input_url",
            title="Input website",
        )

    def seed_candidates(self, external_links: Iterable[str]) -> list[Candidate]:
        out = []
        for url in external_links:
            domain = root_domain(url)
            if domain is None or is_blacklisted(domain, self.blacklist):
                continue
            out.append(
                Candidate(
                    root_domain=domain,
                    source_url=url,
                    rank=SEED_PAGE_RANK,
                    provider="seed_page",
                    title="Seed link",
                )
            )
        return out

    @staticmethod
    def guessed_candidates(entity: NormalizedEntity, strategy: MiningStrategy) -> list[Candidate]:
        slug = slugify_name(entity.company_name)
        if len(slug) < 3:
            return []
        return [
            Candidate(
                root_domain=f"{slug}{tld}",
                source_url=f"https://{slug}{tld}",
                rank=GUESSED_RANK_START + i,
                provider="domain_guess",
                title="Guessed domain",
            )
            for i, tld in enumerate(strategy.guess_tlds)
        ]

    # -- entry point --------------------------------------------------------

    async def mine(
        self,
        entity: NormalizedEntity,
        row: InputRow,
        strategy: MiningStrategy = FAST,
        seed_links: Iterable[str] = (),
    ) -> list[Candidate]:
        """Collect candidates from every source, unmerged and undeduplicated.

        Raises:
            ProviderRateLimitError: If the search provider is throttling.
        """
        candidates: list[Candidate] = []

        input_candidate = self.input_url_candidate(row)
        if input_candidate is not None:
            candidates.append(input_candidate)
        candidates.extend(self.seed_candidates(seed_links))

        searched: list[Candidate] = []
        seen_urls: set[str] = set()
        limit = strategy.results_per_query
        primary = self.primary_queries(entity, row, strategy)
        await self._search_phase(primary, limit, seen_urls, searched)
        if not searched:
            fallbacks = self.fallback_queries(entity)
            if fallbacks:
                logger.info("search_fallback_queries", company=entity.company_name)
            await self._search_phase(fallbacks, limit, seen_urls, searched)
        candidates.extend(searched)

        if strategy.guess_domains:
            candidates.extend(self.guessed_candidates(entity, strategy))

        logger.debug(
            "candidates_mined",
            company=entity.company_name,
            strategy=strategy.name,
            count=len(candidates),
        )
        return candidates
