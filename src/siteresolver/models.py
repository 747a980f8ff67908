"""Core data shapes shared by the resolution pipeline and the batch runner."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class SiteType(str, Enum):
    CORPORATE = "CORPORATE"
    DIRECTORY = "DIRECTORY"
    SOCIAL = "SOCIAL"
    MARKETPLACE = "MARKETPLACE"
    PARKED = "PARKED"
    UNKNOWN = "UNKNOWN"


class DecisionStatus(str, Enum):
    OK = "OK"
    NO_DOMAIN_FOUND = "NO_DOMAIN_FOUND"
    ERROR_TIMEOUT = "ERROR_TIMEOUT"
    ERROR_BLOCKED = "ERROR_BLOCKED"
    ERROR_DNS = "ERROR_DNS"
    ERROR_FETCH = "ERROR_FETCH"
    ERROR_RATE_LIMIT = "ERROR_RATE_LIMIT"
    ERROR_INVALID_INPUT_ROW = "ERROR_INVALID_INPUT_ROW"
    ERROR_INTERNAL = "ERROR_INTERNAL"

    @property
    def is_error(self) -> bool:
        return self.value.startswith("ERROR_")


class ReasonCode(str, Enum):
    OK_STANDARD_THRESHOLD = "OK_STANDARD_THRESHOLD"
    OK_HIGH_RISK_THRESHOLD = "OK_HIGH_RISK_THRESHOLD"
    OK_AI_VERIFIED = "OK_AI_VERIFIED"
    NOT_FOUND_NO_CANDIDATES = "NOT_FOUND_NO_CANDIDATES"
    REJECTED_BELOW_THRESHOLD = "REJECTED_BELOW_THRESHOLD"
    REJECTED_AMBIGUOUS_MARGIN = "REJECTED_AMBIGUOUS_MARGIN"
    REJECTED_DIRECTORY_OR_SOCIAL = "REJECTED_DIRECTORY_OR_SOCIAL"
    ERROR_TIMEOUT_FETCH = "ERROR_TIMEOUT_FETCH"
    ERROR_BLOCKED_403 = "ERROR_BLOCKED_403"
    ERROR_DNS_FAILURE = "ERROR_DNS_FAILURE"
    ERROR_FETCH_FAILED = "ERROR_FETCH_FAILED"
    ERROR_PROVIDER_RATE_LIMIT = "ERROR_PROVIDER_RATE_LIMIT"
    ERROR_INVALID_INPUT_ROW = "ERROR_INVALID_INPUT_ROW"
    ERROR_INTERNAL = "ERROR_INTERNAL"


class Outcome(str, Enum):
    """Which checkpoint set a decision lands in."""

    VALID = "valid"
    INVALID = "invalid"
    NOT_FOUND = "not_found"


# ---------------------------------------------------------------------------
# Input side
# ---------------------------------------------------------------------------

INPUT_FIELDS = (
    "company_name",
    "vat_id",
    "phone",
    "address",
    "city",
    "province",
    "postal_code",
    "industry",
    "source_url",
    "initial_website",
    "country",
)


@dataclass
class InputRow:
    company_name: str = ""
    vat_id: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    province: str = ""
    postal_code: str = ""
    industry: str = ""
    source_url: str = ""
    initial_website: str = ""
    country: str = ""
    line_number: int = 0
    extra: dict[str, str] = field(default_factory=dict)
    validation_error: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.validation_error is None

    @property
    def company_key(self) -> str:
        return company_key(self.company_name, self.city, self.address)

    @classmethod
    def from_mapping(cls, data: dict[str, Any], line_number: int = 0) -> InputRow:
        """Build a row from a column mapping, keeping unknown columns in ``extra``."""
        known = {k: _clean(data.get(k)) for k in INPUT_FIELDS}
        extra = {
            str(k): _clean(v)
            for k, v in data.items()
            if k not in INPUT_FIELDS and k not in _DECISION_COLUMNS
        }
        return cls(**known, line_number=line_number, extra=extra)

    def identity(self) -> dict[str, str]:
        """Input fields echoed into every output record."""
        return {k: getattr(self, k) for k in INPUT_FIELDS}


def _clean(value: Any) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    return "" if text.lower() == "nan" else text


def company_key(name: str | None, city: str | None, address: str | None) -> str:
    """Identity of a company across waves: lowercase ``name|city|address``."""
    return "|".join((part or "").strip().lower() for part in (name, city, address))


@dataclass(frozen=True)
class NormalizedEntity:
    company_name: str
    city: str
    province: str
    address_tokens: tuple[str, ...]
    phones: tuple[str, ...]
    raw_phones: tuple[str, ...]
    vat_id: str | None
    fingerprint: str
    industry: str = ""


# ---------------------------------------------------------------------------
# Pipeline intermediates
# ---------------------------------------------------------------------------


@dataclass
class Candidate:
    root_domain: str
    source_url: str
    rank: int
    provider: str
    title: str = ""
    snippet: str = ""


@dataclass(frozen=True)
class Evidence:
    phones_found: tuple[str, ...] = ()
    emails_found: tuple[str, ...] = ()
    vat_ids_found: tuple[str, ...] = ()
    social_links_found: tuple[str, ...] = ()
    meta_title: str = ""
    meta_description: str = ""
    address_match_score: float = 0.0
    name_match_score: float = 0.0
    phone_match: bool = False
    dns_ok: bool = True
    http_ok: bool = True
    is_https: bool = False
    site_type: SiteType = SiteType.UNKNOWN
    has_privacy_policy: bool = False
    has_contact_page: bool = False
    has_structured_data: bool = False
    parked_indicators_count: int = 0
    corporate_signals_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["site_type"] = self.site_type.value
        return data


@dataclass(frozen=True)
class ScoreBreakdown:
    strong_signals_score: float
    corroborating_signals_score: float
    penalties_score: float
    final_score: float
    details: tuple[str, ...] = ()

    @property
    def base_score(self) -> float:
        return self.strong_signals_score + self.corroborating_signals_score


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    score: ScoreBreakdown
    evidence: Evidence

    def audit(self) -> dict[str, Any]:
        return {
            "domain": self.candidate.root_domain,
            "url": self.candidate.source_url,
            "provider": self.candidate.provider,
            "rank": self.candidate.rank,
            "score": round(self.score.final_score, 2),
            "site_type": self.evidence.site_type.value,
        }


# ---------------------------------------------------------------------------
# Output side
# ---------------------------------------------------------------------------

_DECISION_COLUMNS = (
    "company_key",
    "domain_official",
    "site_url_official",
    "status",
    "reason_code",
    "score",
    "confidence",
    "decision_reason",
    "evidence_json",
    "candidates_json",
    "run_id",
    "timestamp_utc",
    "error_message",
    "wave",
)

OUTPUT_COLUMNS = (*INPUT_FIELDS, *_DECISION_COLUMNS)


@dataclass
class Decision:
    company_key: str
    status: DecisionStatus
    reason_code: ReasonCode
    run_id: str
    timestamp_utc: str
    domain_official: str | None = None
    site_url_official: str | None = None
    score: float = 0.0
    confidence: int = 0
    decision_reason: str = ""
    evidence_json: str = "{}"
    candidates_json: str = "[]"
    error_message: str = ""
    wave: str = ""
    row: dict[str, str] = field(default_factory=dict)

    @property
    def outcome(self) -> Outcome:
        if self.status is DecisionStatus.OK:
            return Outcome.VALID
        if self.status is DecisionStatus.NO_DOMAIN_FOUND and self.reason_code in (
            ReasonCode.REJECTED_BELOW_THRESHOLD,
            ReasonCode.REJECTED_AMBIGUOUS_MARGIN,
            ReasonCode.REJECTED_DIRECTORY_OR_SOCIAL,
        ):
            return Outcome.INVALID
        return Outcome.NOT_FOUND

    def to_record(self) -> dict[str, Any]:
        """Flatten into one output/checkpoint row."""
        record: dict[str, Any] = {k: self.row.get(k, "") for k in INPUT_FIELDS}
        record.update(
            {
                "company_key": self.company_key,
                "domain_official": self.domain_official or "",
                "site_url_official": self.site_url_official or "",
                "status": self.status.value,
                "reason_code": self.reason_code.value,
                "score": round(self.score, 2),
                "confidence": self.confidence,
                "decision_reason": self.decision_reason,
                "evidence_json": self.evidence_json,
                "candidates_json": self.candidates_json,
                "run_id": self.run_id,
                "timestamp_utc": self.timestamp_utc,
                "error_message": self.error_message,
                "wave": self.wave,
            }
        )
        return record


def dumps_audit(value: Any) -> str:
    """Compact JSON used for the evidence/candidate audit columns."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
