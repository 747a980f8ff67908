"""Risk-adjusted acceptance of the best-scoring candidate."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from siteresolver.collaborators.verifier import CandidateFacts, CompanyFacts, Verifier
from siteresolver.config import AIConfig, Thresholds
from siteresolver.models import (
    DecisionStatus,
    NormalizedEntity,
    ReasonCode,
    ScoredCandidate,
    SiteType,
    dumps_audit,
)

logger = structlog.get_logger(__name__)

_LISTING_TYPES = frozenset({SiteType.DIRECTORY, SiteType.SOCIAL, SiteType.MARKETPLACE})


@dataclass
class Resolution:
    """What the decider concluded about one entity."""

    status: DecisionStatus
    reason_code: ReasonCode
    score: float = 0.0
    confidence: int = 0
    domain_official: str | None = None
    site_url_official: str | None = None
    decision_reason: str = ""
    evidence_json: str = "{}"
    candidates_json: str = "[]"
    high_risk: bool = False
    ranked: list[ScoredCandidate] = field(default_factory=list)

    @property
    def is_ok(self) -> bool:
        return self.status is DecisionStatus.OK


def ok_confidence(score: float, margin: float) -> int:
    return round(min(100.0, score + min(10.0, margin / 5)))


def rejected_confidence(score: float) -> int:
    return round(min(80.0, score))


class Decider:
    """Apply the standard or high-risk threshold pair, with optional AI fallback.

    Args:
        thresholds: Score/margin pairs and the ambiguity limits.
        ai: AI fallback settings (band and minimum confidence).
        verifier: Optional verifier; without one the AI fallback never runs.
    """

    def __init__(
        self,
        thresholds: Thresholds,
        ai: AIConfig | None = None,
        verifier: Verifier | None = None,
    ) -> None:
        self.thresholds = thresholds
        self.ai = ai or AIConfig()
        self.verifier = verifier

    def is_high_risk(self, entity: NormalizedEntity, phone_frequency: int) -> bool:
        return (
            phone_frequency >= self.thresholds.phone_frequency_limit
            or len(entity.company_name) <= self.thresholds.short_name_max_length
        )

    def _in_uncertain_band(self, score: float) -> bool:
        return self.ai.uncertain_band_low <= score <= self.ai.uncertain_band_high

    async def decide(
        self,
        scored: list[ScoredCandidate],
        entity: NormalizedEntity,
        phone_frequency: int,
        threshold_delta: float = 0.0,
        use_ai: bool = True,
    ) -> Resolution:
        """Decide whether the top candidate is the official site.

        *threshold_delta* shifts both tiers' score thresholds (positive is
        stricter).  Margins are never shifted.
        """
        if not scored:
            return Resolution(
                status=DecisionStatus.NO_DOMAIN_FOUND,
                reason_code=ReasonCode.NOT_FOUND_NO_CANDIDATES,
                decision_reason="No candidates found",
            )

        ranked = sorted(scored, key=lambda s: s.score.final_score, reverse=True)
        top = ranked[0]
        top_score = top.score.final_score
        margin = top_score - ranked[1].score.final_score if len(ranked) > 1 else top_score

        high_risk = self.is_high_risk(entity, phone_frequency)
        if high_risk:
            tier = "High risk"
            min_score = self.thresholds.high_risk_score + threshold_delta
            min_margin = self.thresholds.high_risk_margin
            passed_code = ReasonCode.OK_HIGH_RISK_THRESHOLD
        else:
            tier = "Standard"
            min_score = self.thresholds.ok_score + threshold_delta
            min_margin = self.thresholds.ok_margin
            passed_code = ReasonCode.OK_STANDARD_THRESHOLD

        audit = {
            "evidence_json": dumps_audit(
                {**top.evidence.to_dict(), "score_details": list(top.score.details)}
            ),
            "candidates_json": dumps_audit([s.audit() for s in ranked]),
        }

        if top_score >= min_score and margin >= min_margin:
            return Resolution(
                status=DecisionStatus.OK,
                reason_code=passed_code,
                score=top_score,
                confidence=ok_confidence(top_score, margin),
                domain_official=top.candidate.root_domain,
                site_url_official=top.candidate.source_url,
                decision_reason=f"Passed {tier.lower()} threshold",
                high_risk=high_risk,
                ranked=ranked,
                **audit,
            )

        if top_score < min_score:
            code = ReasonCode.REJECTED_BELOW_THRESHOLD
        else:
            code = ReasonCode.REJECTED_AMBIGUOUS_MARGIN
        reason = (
            f"{tier}: score {top_score:g} vs {min_score:g}, margin {margin:g} vs {min_margin:g}"
        )

        ai_allowed = self.verifier is not None and use_ai and self.ai.enabled
        if ai_allowed and self._in_uncertain_band(top_score):
            logger.info("ai_fallback", domain=top.candidate.root_domain, score=top_score)
            verdict = await self.verifier.verify(
                CompanyFacts(
                    company_name=entity.company_name,
                    city=entity.city,
                    address=" ".join(entity.address_tokens),
                    industry=entity.industry,
                    phone=entity.phones[0] if entity.phones else "",
                ),
                CandidateFacts(
                    url=top.candidate.source_url,
                    page_title=top.evidence.meta_title,
                    content_snippet=top.evidence.meta_description,
                ),
            )
            if verdict.is_match and verdict.confidence >= self.ai.min_ai_confidence:
                return Resolution(
                    status=DecisionStatus.OK,
                    reason_code=ReasonCode.OK_AI_VERIFIED,
                    score=top_score,
                    confidence=ok_confidence(top_score, margin),
                    domain_official=top.candidate.root_domain,
                    site_url_official=top.candidate.source_url,
                    decision_reason=(
                        f"AI verified: {verdict.reason} (AI confidence {verdict.confidence:g}%)"
                    ),
                    high_risk=high_risk,
                    ranked=ranked,
                    **audit,
                )
            reason += f"; AI rejected: {verdict.reason} (AI confidence {verdict.confidence:g}%)"

        if top.evidence.site_type in _LISTING_TYPES:
            code = ReasonCode.REJECTED_DIRECTORY_OR_SOCIAL

        return Resolution(
            status=DecisionStatus.NO_DOMAIN_FOUND,
            reason_code=code,
            score=top_score,
            confidence=rejected_confidence(top_score),
            decision_reason=reason,
            high_risk=high_risk,
            ranked=ranked,
            **audit,
        )
