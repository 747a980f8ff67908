"""Application settings and resolver tuning.

Two layers:

* :class:`Settings` holds secrets and paths, loaded from environment
  variables prefixed with ``SR_`` (or a ``.env`` file).
* :class:`ResolverConfig` holds every scoring weight, threshold, budget and
  domain list.  It is read from a YAML file so that tuning never requires a
  code change.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

SEARCH_PROVIDER_NAMES = frozenset({"google", "serper", "null"})


class Settings(BaseSettings):
    """All configuration is loaded from environment variables prefixed with SR_."""

    # Search providers
    search_providers: str = "google"
    google_api_key: str = ""
    google_cx: str = ""
    serper_api_key: str = ""

    # AI verifier
    openai_api_key: str = ""

    # Files
    resolver_config_path: str = ""
    output_dir: str = "output"
    search_cache_path: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = {"env_file": ".env", "env_prefix": "SR_"}

    def provider_names(self) -> list[str]:
        """Return the configured search provider chain, in order."""
        names = [n.strip().lower() for n in self.search_providers.split(",") if n.strip()]
        unknown = [n for n in names if n not in SEARCH_PROVIDER_NAMES]
        if unknown:
            msg = f"Unknown search provider(s): {unknown}"
            raise ValueError(msg)
        return names or ["null"]


def get_settings() -> Settings:
    """Return a Settings instance."""
    return Settings()


# ---------------------------------------------------------------------------
# Resolver tuning
# ---------------------------------------------------------------------------


class ScoringWeights(BaseModel):
    s1_phone_exact_match: float = 45
    s1_phone_shared: float = 25
    s2_address_high_match: float = 25
    s3_name_high_match: float = 20
    s4_vat_exact_match: float = 100
    s4_vat_found: float = 15
    c1_email_found: float = 5
    c2_structured_data: float = 5
    c3_corporate_signals: float = 5
    c4_has_contact_page: float = 5
    c5_https_ok: float = 2


class ScoringPenalties(BaseModel):
    p1_bad_site_type: float = 100
    p2_dns_fail: float = 50
    p3_http_fail: float = 30


class ScoringConfig(BaseModel):
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    penalties: ScoringPenalties = Field(default_factory=ScoringPenalties)
    allow_social_fallback: bool = False
    # Ceiling applied to final_score whenever the bad-site-type penalty fires.
    bad_site_type_floor: float = 0
    address_high_threshold: float = 0.5
    address_low_threshold: float = 0.3
    address_partial_fraction: float = 0.3


class Thresholds(BaseModel):
    ok_score: float = 60
    ok_margin: float = 10
    high_risk_score: float = 80
    high_risk_margin: float = 20
    phone_frequency_limit: int = 3
    short_name_max_length: int = 4


class FetcherConfig(BaseModel):
    timeout_s: float = 15
    retries: int = 2
    backoff_s: float = 1.0
    cache_ttl_s: float = 3600
    cache_max_entries: int = Field(default=500, ge=1)
    user_agent: str = (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )


class ValidityConfig(BaseModel):
    dns_timeout_s: float = 5


class SearchConfig(BaseModel):
    results_per_query: int = 5
    timeout_s: float = 10
    cache_ttl_s: float = 86400
    cache_max_entries: int = 5000


class CrawlBudget(BaseModel):
    max_candidates_per_row: int = 5
    max_pages_per_domain: int = 3


DIRECTORY_DOMAINS = (
    "paginegialle.it",
    "paginebianche.it",
    "virgilio.it",
    "tuttocitta.it",
    "prontopro.it",
    "infobel.com",
    "cylex.it",
    "misterimprese.it",
    "reportaziende.it",
    "ufficiocamerale.it",
    "registroimprese.it",
    "atoka.io",
    "fatturatoitalia.it",
    "kompass.com",
    "europages.it",
    "yelp.it",
    "yelp.com",
    "tripadvisor.it",
    "tripadvisor.com",
    "wikipedia.org",
)
SOCIAL_DOMAINS = (
    "facebook.com",
    "instagram.com",
    "linkedin.com",
    "twitter.com",
    "x.com",
    "youtube.com",
    "tiktok.com",
    "pinterest.com",
)
MARKETPLACE_DOMAINS = (
    "amazon.it",
    "amazon.com",
    "ebay.it",
    "subito.it",
    "booking.com",
    "thefork.it",
    "justeat.it",
    "glovoapp.com",
    "deliveroo.it",
)
PARKED_INDICATORS = (
    "domain is for sale",
    "dominio in vendita",
    "this domain may be for sale",
    "buy this domain",
    "parked free",
    "parkingcrew",
    "sedo",
    "godaddy",
    "under construction",
    "sito in costruzione",
    "coming soon",
)


class DomainLists(BaseModel):
    directory_domains: list[str] = Field(default_factory=lambda: list(DIRECTORY_DOMAINS))
    social_domains: list[str] = Field(default_factory=lambda: list(SOCIAL_DOMAINS))
    marketplace_domains: list[str] = Field(default_factory=lambda: list(MARKETPLACE_DOMAINS))
    parked_indicators: list[str] = Field(default_factory=lambda: list(PARKED_INDICATORS))

    def blacklist(self) -> list[str]:
        """Directory, social and marketplace domains as one list."""
        return [*self.directory_domains, *self.social_domains, *self.marketplace_domains]


class AIConfig(BaseModel):
    enabled: bool = False
    model: str = "gpt-4o-mini"
    uncertain_band_low: float = 50
    uncertain_band_high: float = 100
    min_ai_confidence: float = 70
    timeout_s: float = 20


class SystemConfig(BaseModel):
    concurrency: int = Field(default=10, ge=1)
    writer_batch_size: int = Field(default=25, ge=1)
    writer_queue_size: int = Field(default=200, ge=1)
    flush_interval_s: float = 5
    watchdog_interval_s: float = 10
    memory_warn_mb: float = 2048
    rate_limit_cooldown_s: float = 30
    progress_log_every: int = 50


class WaveConfig(BaseModel):
    """One discovery wave.  Unset caps fall back to the crawl and search budgets."""

    name: str
    entry: Literal["all", "unresolved"] = "unresolved"
    max_candidates: int | None = Field(default=None, ge=1)
    results_per_query: int | None = Field(default=None, ge=1)
    threshold_delta: float = 0
    use_ai: bool = False
    use_address: bool = False
    use_province: bool = False
    use_phone: bool = False
    use_vat: bool = False
    guess_domains: bool = False


def default_waves() -> list[WaveConfig]:
    return [
        WaveConfig(name="fast", entry="all", max_candidates=8, threshold_delta=5),
        WaveConfig(
            name="deep",
            max_candidates=15,
            results_per_query=8,
            use_ai=True,
            use_address=True,
            use_province=True,
        ),
        WaveConfig(
            name="aggressive",
            max_candidates=20,
            results_per_query=10,
            threshold_delta=-5,
            use_ai=True,
            use_address=True,
            use_province=True,
            use_phone=True,
            use_vat=True,
        ),
        WaveConfig(
            name="exhaustive",
            max_candidates=30,
            results_per_query=10,
            threshold_delta=-8,
            use_ai=True,
            use_address=True,
            use_province=True,
            use_phone=True,
            use_vat=True,
            guess_domains=True,
        ),
    ]


class ResolverConfig(BaseModel):
    """Every tunable of the resolution pipeline and the batch runner."""

    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    thresholds: Thresholds = Field(default_factory=Thresholds)
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    validity: ValidityConfig = Field(default_factory=ValidityConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    crawl_budget: CrawlBudget = Field(default_factory=CrawlBudget)
    lists: DomainLists = Field(default_factory=DomainLists)
    ai: AIConfig = Field(default_factory=AIConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)
    waves: list[WaveConfig] = Field(default_factory=default_waves, min_length=1)

    @field_validator("waves")
    @classmethod
    def _unique_wave_names(cls, waves: list[WaveConfig]) -> list[WaveConfig]:
        names = [w.name for w in waves]
        if len(set(names)) != len(names):
            msg = f"Wave names must be unique, got {names}"
            raise ValueError(msg)
        return waves


def load_resolver_config(path: str | Path | None = None) -> ResolverConfig:
    """Load a :class:`ResolverConfig` from a YAML file.

    Missing sections and keys keep their defaults.  With no *path* the
    built-in defaults are returned, including the standard directory,
    social, marketplace and parked lists.

    Raises:
        FileNotFoundError: If *path* is given but does not exist.
        ValueError: If the YAML top level is not a mapping.
    """
    if not path:
        return ResolverConfig()

    config_path = Path(path)
    with open(config_path, encoding="utf-8") as f:
        raw: Any = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        msg = f"Resolver config must be a mapping, got {type(raw).__name__}"
        raise ValueError(msg)

    return ResolverConfig.model_validate(raw)
