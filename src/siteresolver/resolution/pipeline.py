"""One full resolution pass for one input row.

normalize -> seed links -> mine -> dedupe -> (health, fetch, classify,
evidence, score) per candidate -> decide.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

import httpx
import structlog

from siteresolver.collaborators.extractor import ContentExtractor, SoupContentExtractor
from siteresolver.collaborators.fetcher import FetchResult, HttpFetcher, PageFetcher
from siteresolver.collaborators.search import SearchCache, build_search_provider
from siteresolver.collaborators.validity import DnsHttpHealthChecker, SiteHealthChecker
from siteresolver.collaborators.verifier import Verifier, build_verifier
from siteresolver.config import ResolverConfig, Settings
from siteresolver.errors import (
    BlockedError,
    DnsFailureError,
    FetchFailedError,
    FetchTimeoutError,
    InvalidInputRowError,
    ResolverError,
    classify_exception,
    dominant_failure,
)
from siteresolver.fallback import Strategy, first_success
from siteresolver.models import (
    Candidate,
    Decision,
    DecisionStatus,
    InputRow,
    NormalizedEntity,
    ScoredCandidate,
)
from siteresolver.phone_frequency import PhoneFrequencyModel
from siteresolver.resolution.classifier import classify_site
from siteresolver.resolution.decider import Decider, Resolution
from siteresolver.resolution.deduper import dedupe_candidates
from siteresolver.resolution.evidence import extract_evidence
from siteresolver.resolution.miner import CandidateMiner, MiningStrategy, ensure_scheme
from siteresolver.resolution.normalizer import normalize
from siteresolver.resolution.scorer import score_evidence

logger = structlog.get_logger(__name__)

FORBIDDEN_STATUS = 403

# Statuses after which escalating to a harder wave is pointless.
TERMINAL_STATUSES = frozenset(
    {DecisionStatus.OK, DecisionStatus.ERROR_INVALID_INPUT_ROW, DecisionStatus.ERROR_RATE_LIMIT}
)


# ---------------------------------------------------------------------------
# Waves
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WaveSpec:
    """One escalation step: how to mine, how many candidates, how strict.

    ``entry`` is ``"all"`` (every input row) or ``"unresolved"`` (rows not
    yet VALID in an earlier wave).  A positive ``threshold_delta`` makes the
    score thresholds stricter.
    """

    name: str
    strategy: MiningStrategy
    max_candidates: int
    threshold_delta: float = 0.0
    use_ai: bool = False
    entry: str = "unresolved"


def wave_specs(config: ResolverConfig) -> tuple[WaveSpec, ...]:
    """Build the wave sequence from ``config.waves``.

    A wave without its own ``max_candidates`` or ``results_per_query``
    uses ``crawl_budget.max_candidates_per_row`` and
    ``search.results_per_query``.
    """
    specs = []
    for wave in config.waves:
        strategy = MiningStrategy(
            wave.name,
            results_per_query=wave.results_per_query or config.search.results_per_query,
            use_address=wave.use_address,
            use_province=wave.use_province,
            use_phone=wave.use_phone,
            use_vat=wave.use_vat,
            guess_domains=wave.guess_domains,
        )
        specs.append(
            WaveSpec(
                wave.name,
                strategy,
                max_candidates=wave.max_candidates or config.crawl_budget.max_candidates_per_row,
                threshold_delta=wave.threshold_delta,
                use_ai=wave.use_ai,
                entry=wave.entry,
            )
        )
    return tuple(specs)


DEFAULT_WAVES: tuple[WaveSpec, ...] = wave_specs(ResolverConfig())


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


def new_run_id() -> str:
    return datetime.now(UTC).strftime("run-%Y%m%dT%H%M%SZ")


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


@dataclass
class ResolutionContext:
    """Everything one batch run shares: config, collaborators, phone model, run id."""

    config: ResolverConfig
    miner: CandidateMiner
    fetcher: PageFetcher
    extractor: ContentExtractor
    health: SiteHealthChecker
    decider: Decider
    phone_frequency: PhoneFrequencyModel = field(default_factory=PhoneFrequencyModel)
    run_id: str = field(default_factory=new_run_id)
    search_cache: SearchCache | None = None


def build_context(
    settings: Settings,
    config: ResolverConfig,
    client: httpx.AsyncClient,
    verifier: Verifier | None = None,
) -> ResolutionContext:
    """Wire the default collaborators around a shared httpx client."""
    provider, cache = build_search_provider(settings, config, client)
    fetcher = HttpFetcher(config.fetcher, client=client)
    return ResolutionContext(
        config=config,
        miner=CandidateMiner(provider, config.lists.blacklist()),
        fetcher=fetcher,
        extractor=SoupContentExtractor(),
        health=DnsHttpHealthChecker(fetcher, config.validity.dns_timeout_s),
        decider=Decider(
            config.thresholds, config.ai, verifier or build_verifier(settings, config.ai)
        ),
        search_cache=cache,
    )


# ---------------------------------------------------------------------------
# Row resolver
# ---------------------------------------------------------------------------


def failure_from_fetch(domain: str, page: FetchResult) -> ResolverError:
    """Map a failed fetch to its error.  Only a 403 counts as blocked."""
    if page.status == FORBIDDEN_STATUS:
        return BlockedError(f"{domain}: HTTP {page.status}")
    if page.timed_out:
        return FetchTimeoutError(f"{domain}: {page.error}")
    return FetchFailedError(f"{domain}: {page.error or f'HTTP {page.status}'}")


def error_decision(row: InputRow, exc: BaseException, run_id: str, wave: str = "") -> Decision:
    """Convert an exception escaping a row into an ERROR_* decision."""
    status, code = classify_exception(exc)
    invalid = status is DecisionStatus.ERROR_INVALID_INPUT_ROW
    return Decision(
        company_key=row.company_key,
        status=status,
        reason_code=code,
        run_id=run_id,
        timestamp_utc=utc_now(),
        decision_reason="Invalid input row" if invalid else "Row failed",
        error_message=str(exc) or type(exc).__name__,
        wave=wave,
        row=row.identity(),
    )


class RowResolver:
    """Resolve rows against a shared :class:`ResolutionContext`."""

    def __init__(self, ctx: ResolutionContext) -> None:
        self.ctx = ctx

    async def seed_links(self, source_url: str) -> list[str]:
        """External links on the row's source page (e.g. a directory listing)."""
        if not source_url:
            return []
        page = await self.ctx.fetcher.fetch(ensure_scheme(source_url))
        if not page.ok:
            logger.debug("seed_page_unavailable", url=source_url, status=page.status)
            return []
        content = self.ctx.extractor.extract(page.content, page.final_url or source_url)
        return content.links.external

    async def evaluate(
        self, candidate: Candidate, entity: NormalizedEntity, phone_frequency: int
    ) -> ScoredCandidate:
        """Fetch, classify and score one candidate.

        Raises:
            DnsFailureError, BlockedError, FetchTimeoutError, FetchFailedError:
                When the candidate could not be fetched at all.
        """
        config = self.ctx.config
        domain = candidate.root_domain

        health = await self.ctx.health.check(domain)
        if not health.dns_ok:
            raise DnsFailureError(f"{domain}: no DNS record")

        target = health.final_url or candidate.source_url
        if health.probe is not None and health.probe.ok:
            page = health.probe
        else:
            page = await self.ctx.fetcher.fetch(target)
        if not page.ok:
            raise failure_from_fetch(domain, page)

        base_url = page.final_url or target
        content = self.ctx.extractor.extract(page.content, base_url)
        extra_pages = list(dict.fromkeys([*content.links.contact, *content.links.privacy]))
        for url in extra_pages[: config.crawl_budget.max_pages_per_domain - 1]:
            sub = await self.ctx.fetcher.fetch(url)
            if sub.ok:
                extra = self.ctx.extractor.extract(sub.content, sub.final_url or url)
                content = content.merged(extra)

        classification = classify_site(domain, content, config.lists)
        evidence = extract_evidence(
            content,
            entity,
            health,
            classification,
            social_domains=config.lists.social_domains,
            final_url=base_url,
        )
        score = score_evidence(evidence, entity, phone_frequency, config)
        return ScoredCandidate(candidate=candidate, score=score, evidence=evidence)

    async def _resolve(
        self,
        row: InputRow,
        strategy: MiningStrategy,
        max_candidates: int,
        threshold_delta: float,
        use_ai: bool,
    ) -> Resolution:
        if not row.is_valid:
            raise InvalidInputRowError(row.validation_error or "invalid row")

        entity = normalize(row)
        frequency = self.ctx.phone_frequency.observe(entity.fingerprint, entity.phones)

        seeds = await self.seed_links(row.source_url)
        mined = await self.ctx.miner.mine(entity, row, strategy, seeds)
        candidates = dedupe_candidates(mined, max_candidates)

        scored: list[ScoredCandidate] = []
        failures: list[ResolverError] = []
        for candidate in candidates:
            try:
                scored.append(await self.evaluate(candidate, entity, frequency))
            except (DnsFailureError, BlockedError, FetchTimeoutError, FetchFailedError) as exc:
                logger.debug("candidate_failed", domain=candidate.root_domain, error=str(exc))
                failures.append(exc)

        if candidates and not scored:
            dominant = dominant_failure(failures)
            if dominant is not None:
                raise dominant

        return await self.ctx.decider.decide(scored, entity, frequency, threshold_delta, use_ai)

    async def resolve(
        self,
        row: InputRow,
        strategy: MiningStrategy | None = None,
        max_candidates: int | None = None,
        threshold_delta: float = 0.0,
        use_ai: bool = True,
        wave: str = "",
    ) -> Decision:
        """Resolve *row* to a :class:`Decision`.  Never raises for row-level failures."""
        start = time.perf_counter()
        config = self.ctx.config
        cap = max_candidates or config.crawl_budget.max_candidates_per_row
        if strategy is None:
            strategy = MiningStrategy("fast", results_per_query=config.search.results_per_query)
        try:
            resolution = await self._resolve(row, strategy, cap, threshold_delta, use_ai)
        except Exception as exc:
            decision = error_decision(row, exc, self.ctx.run_id, wave)
            log = logger.error if decision.status is DecisionStatus.ERROR_INTERNAL else logger.info
            log(
                "row_failed",
                line=row.line_number,
                company=row.company_name,
                status=decision.status.value,
                error=decision.error_message,
            )
            return decision

        decision = Decision(
            company_key=row.company_key,
            status=resolution.status,
            reason_code=resolution.reason_code,
            run_id=self.ctx.run_id,
            timestamp_utc=utc_now(),
            domain_official=resolution.domain_official,
            site_url_official=resolution.site_url_official,
            score=resolution.score,
            confidence=resolution.confidence,
            decision_reason=resolution.decision_reason,
            evidence_json=resolution.evidence_json,
            candidates_json=resolution.candidates_json,
            wave=wave,
            row=row.identity(),
        )
        logger.info(
            "row_resolved",
            line=row.line_number,
            company=row.company_name,
            status=decision.status.value,
            domain=decision.domain_official,
            score=round(decision.score, 1),
            ms=round((time.perf_counter() - start) * 1000),
        )
        return decision

    async def resolve_wave(self, row: InputRow, wave: WaveSpec) -> Decision:
        return await self.resolve(
            row,
            strategy=wave.strategy,
            max_candidates=wave.max_candidates,
            threshold_delta=wave.threshold_delta,
            use_ai=wave.use_ai,
            wave=wave.name,
        )

    async def resolve_escalating(
        self, row: InputRow, waves: Sequence[WaveSpec] | None = None
    ) -> Decision:
        """Run *waves* (default: the configured waves) in order for one row.

        Stops at the first OK or terminal error.
        """
        if waves is None:
            waves = wave_specs(self.ctx.config)
        strategies = [Strategy(w.name, lambda r, w=w: self.resolve_wave(r, w)) for w in waves]
        attempt = await first_success(
            strategies, row, accept=lambda d: d.status in TERMINAL_STATUSES
        )
        if attempt.value is None:
            msg = "resolve_escalating needs at least one wave"
            raise ValueError(msg)
        return attempt.value
