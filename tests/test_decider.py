"""Tests for risk-adjusted acceptance and the AI fallback."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

from siteresolver.collaborators.verifier import VerificationResult
from siteresolver.config import AIConfig, Thresholds
from siteresolver.models import (
    Candidate,
    DecisionStatus,
    Evidence,
    NormalizedEntity,
    ReasonCode,
    ScoreBreakdown,
    ScoredCandidate,
    SiteType,
)
from siteresolver.resolution.decider import Decider, ok_confidence, rejected_confidence


def _entity(name: str = "rossi costruzioni") -> NormalizedEntity:
    return NormalizedEntity(
        company_name=name,
        city="verona",
        province="VR",
        address_tokens=("roma",),
        phones=("+39045123456",),
        raw_phones=("045123456",),
        vat_id=None,
        fingerprint="f" * 32,
    )


def _scored(
    domain: str, score: float, site_type: SiteType = SiteType.CORPORATE
) -> ScoredCandidate:
    return ScoredCandidate(
        candidate=Candidate(domain, f"https://{domain}/", rank=2, provider="fake"),
        score=ScoreBreakdown(score, 0, 0, score, details=(f"S1: +{score:g}",)),
        evidence=Evidence(site_type=site_type, meta_title=domain),
    )


def _decide(decider: Decider, scored, entity=None, frequency=1, **kwargs):
    return asyncio.run(decider.decide(scored, entity or _entity(), frequency, **kwargs))


# =========================================================================
# Thresholds
# =========================================================================


class TestThresholds:
    """Tests for the standard and high-risk threshold pairs."""

    def test_no_candidates(self):
        result = _decide(Decider(Thresholds()), [])
        assert result.status is DecisionStatus.NO_DOMAIN_FOUND
        assert result.reason_code is ReasonCode.NOT_FOUND_NO_CANDIDATES

    def test_standard_pass(self):
        result = _decide(Decider(Thresholds()), [_scored("rossi.it", 70)])
        assert result.status is DecisionStatus.OK
        assert result.reason_code is ReasonCode.OK_STANDARD_THRESHOLD
        assert result.domain_official == "rossi.it"
        assert result.site_url_official == "https://rossi.it/"
        assert not result.high_risk

    def test_high_risk_at_frequency_limit(self):
        result = _decide(Decider(Thresholds()), [_scored("rossi.it", 70)], frequency=3)
        assert result.high_risk
        assert result.status is DecisionStatus.NO_DOMAIN_FOUND
        assert result.reason_code is ReasonCode.REJECTED_BELOW_THRESHOLD

    def test_standard_just_below_frequency_limit(self):
        result = _decide(Decider(Thresholds()), [_scored("rossi.it", 70)], frequency=2)
        assert not result.high_risk
        assert result.status is DecisionStatus.OK

    def test_short_name_is_high_risk(self):
        decider = Decider(Thresholds())
        assert decider.is_high_risk(_entity("abc"), 1)
        assert not decider.is_high_risk(_entity("abcde"), 1)

    def test_high_risk_pass(self):
        result = _decide(Decider(Thresholds()), [_scored("rossi.it", 85)], frequency=5)
        assert result.reason_code is ReasonCode.OK_HIGH_RISK_THRESHOLD

    def test_ambiguous_margin(self):
        result = _decide(Decider(Thresholds()), [_scored("a.it", 75), _scored("b.it", 70)])
        assert result.status is DecisionStatus.NO_DOMAIN_FOUND
        assert result.reason_code is ReasonCode.REJECTED_AMBIGUOUS_MARGIN

    def test_ranks_by_score(self):
        result = _decide(Decider(Thresholds()), [_scored("low.it", 20), _scored("top.it", 90)])
        assert result.domain_official == "top.it"
        assert [c["domain"] for c in json.loads(result.candidates_json)] == ["top.it", "low.it"]

    def test_threshold_delta_shifts_score_only(self):
        stricter = _decide(Decider(Thresholds()), [_scored("rossi.it", 62)], threshold_delta=5)
        looser = _decide(Decider(Thresholds()), [_scored("rossi.it", 56)], threshold_delta=-5)
        assert stricter.reason_code is ReasonCode.REJECTED_BELOW_THRESHOLD
        assert looser.status is DecisionStatus.OK

    def test_directory_top_rejected_as_listing(self):
        result = _decide(Decider(Thresholds()), [_scored("paginegialle.it", 0, SiteType.DIRECTORY)])
        assert result.reason_code is ReasonCode.REJECTED_DIRECTORY_OR_SOCIAL

    def test_audit_trail(self):
        result = _decide(Decider(Thresholds()), [_scored("rossi.it", 70)])
        evidence = json.loads(result.evidence_json)
        assert evidence["site_type"] == "CORPORATE"
        assert evidence["score_details"] == ["S1: +70"]


class TestConfidence:
    """Tests for the confidence formulas."""

    def test_ok_confidence(self):
        assert ok_confidence(77, 77) == 87
        assert ok_confidence(95, 50) == 100
        assert ok_confidence(60, 10) == 62

    def test_rejected_confidence(self):
        assert rejected_confidence(95) == 80
        assert rejected_confidence(40) == 40


# =========================================================================
# AI fallback
# =========================================================================


class TestAIFallback:
    """Tests for verifier promotion of uncertain candidates."""

    def _decider(self, verdict: VerificationResult) -> tuple[Decider, MagicMock]:
        verifier = MagicMock()
        verifier.verify = AsyncMock(return_value=verdict)
        return Decider(Thresholds(), AIConfig(enabled=True), verifier), verifier

    def test_promotes_confident_match(self):
        decider, verifier = self._decider(VerificationResult(True, 90, "same company"))
        result = _decide(decider, [_scored("rossi.it", 55)])
        assert result.status is DecisionStatus.OK
        assert result.reason_code is ReasonCode.OK_AI_VERIFIED
        assert "same company" in result.decision_reason
        company, candidate = verifier.verify.call_args.args
        assert company.company_name == "rossi costruzioni"
        assert candidate.url == "https://rossi.it/"

    def test_low_confidence_match_rejected(self):
        decider, _ = self._decider(VerificationResult(True, 50, "maybe"))
        result = _decide(decider, [_scored("rossi.it", 55)])
        assert result.reason_code is ReasonCode.REJECTED_BELOW_THRESHOLD
        assert "AI rejected" in result.decision_reason

    def test_outside_band_not_asked(self):
        decider, verifier = self._decider(VerificationResult(True, 90, "x"))
        _decide(decider, [_scored("rossi.it", 30)])
        verifier.verify.assert_not_called()

    def test_disabled_per_wave(self):
        decider, verifier = self._decider(VerificationResult(True, 90, "x"))
        result = _decide(decider, [_scored("rossi.it", 55)], use_ai=False)
        verifier.verify.assert_not_called()
        assert result.status is DecisionStatus.NO_DOMAIN_FOUND

    def test_disabled_in_config(self):
        verifier = MagicMock()
        verifier.verify = AsyncMock()
        decider = Decider(Thresholds(), AIConfig(enabled=False), verifier)
        _decide(decider, [_scored("rossi.it", 55)])
        verifier.verify.assert_not_called()
