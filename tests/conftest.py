"""Shared fixtures and in-memory collaborators for resolver tests."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from siteresolver.collaborators.extractor import SoupContentExtractor
from siteresolver.collaborators.fetcher import FetchResult
from siteresolver.collaborators.search import SearchResult
from siteresolver.collaborators.validity import SiteHealth
from siteresolver.config import ResolverConfig
from siteresolver.models import Decision, DecisionStatus, InputRow, ReasonCode
from siteresolver.phone_frequency import PhoneFrequencyModel
from siteresolver.resolution.decider import Decider
from siteresolver.resolution.miner import CandidateMiner
from siteresolver.resolution.pipeline import ResolutionContext

ROSSI_HTML = """
<html>
  <head><title>Rossi Costruzioni - Verona</title></head>
  <body>
    <h1>Rossi Costruzioni</h1>
    <p>Impresa edile a Verona dal 1980. Chiamaci al 045 123456.</p>
    <a href="/contatti">Contatti</a>
    <a href="/privacy-policy">Privacy</a>
  </body>
</html>
"""


# =========================================================================
# Fakes
# =========================================================================


class FakeSearchProvider:
    """Answers from a query -> results map; records every query."""

    name = "fake"

    def __init__(
        self,
        results: dict[str, list[SearchResult]] | None = None,
        default: list[SearchResult] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.results = results or {}
        self.default = default or []
        self.error = error
        self.queries: list[str] = []

    async def search(self, query: str, limit: int = 5) -> list[SearchResult]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.results.get(query, self.default))[:limit]


class FakeFetcher:
    """Serves canned pages; unknown URLs fail with status 0."""

    def __init__(self, pages: dict[str, str | FetchResult] | None = None) -> None:
        self.pages = pages or {}
        self.requested: list[str] = []

    async def fetch(self, url: str) -> FetchResult:
        self.requested.append(url)
        page = self.pages.get(url)
        if page is None:
            return FetchResult(url=url, status=0, final_url=url, error="unreachable")
        if isinstance(page, FetchResult):
            return page
        return FetchResult(url=url, status=200, content=page, final_url=url)


class FakeHealthChecker:
    """Known domains are healthy over HTTPS; anything else has no DNS record."""

    def __init__(self, health: dict[str, SiteHealth] | None = None) -> None:
        self.health = health or {}
        self.checked: list[str] = []

    async def check(self, domain: str) -> SiteHealth:
        self.checked.append(domain)
        return self.health.get(domain, SiteHealth(dns_ok=False))


def healthy(url: str) -> SiteHealth:
    return SiteHealth(dns_ok=True, http_ok=True, is_https=url.startswith("https"), final_url=url)


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture()
def rossi_row() -> InputRow:
    return InputRow(
        company_name="Rossi Costruzioni Srl",
        phone="045 123456",
        address="Via Roma 10",
        city="Verona",
        province="VR",
        line_number=1,
    )


@pytest.fixture()
def make_context() -> Callable[..., ResolutionContext]:
    """Factory building a ResolutionContext around in-memory collaborators."""

    def _make(
        search: FakeSearchProvider | None = None,
        fetcher: FakeFetcher | None = None,
        health: FakeHealthChecker | None = None,
        config: ResolverConfig | None = None,
        verifier=None,
    ) -> ResolutionContext:
        config = config or ResolverConfig()
        return ResolutionContext(
            config=config,
            miner=CandidateMiner(search or FakeSearchProvider(), config.lists.blacklist()),
            fetcher=fetcher or FakeFetcher(),
            extractor=SoupContentExtractor(),
            health=health or FakeHealthChecker(),
            decider=Decider(config.thresholds, config.ai, verifier),
            phone_frequency=PhoneFrequencyModel(),
            run_id="run-test",
        )

    return _make


@pytest.fixture()
def make_decision() -> Callable[..., Decision]:
    """Factory for decisions keyed on a row."""

    def _make(
        row: InputRow,
        status: DecisionStatus = DecisionStatus.OK,
        reason_code: ReasonCode = ReasonCode.OK_STANDARD_THRESHOLD,
        wave: str = "",
        domain: str | None = None,
    ) -> Decision:
        return Decision(
            company_key=row.company_key,
            status=status,
            reason_code=reason_code,
            run_id="run-test",
            timestamp_utc="2026-01-01T00:00:00+00:00",
            domain_official=domain,
            site_url_official=f"https://{domain}" if domain else None,
            score=75.0 if status is DecisionStatus.OK else 20.0,
            wave=wave,
            row=row.identity(),
        )

    return _make
