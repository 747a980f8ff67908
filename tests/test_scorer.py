"""Tests for weighted evidence scoring."""

from __future__ import annotations

import pytest

from siteresolver.config import ResolverConfig, ScoringConfig, ScoringPenalties, ScoringWeights
from siteresolver.models import Evidence, NormalizedEntity, SiteType
from siteresolver.resolution.scorer import is_bad_site_type, score_evidence

ENTITY = NormalizedEntity(
    company_name="rossi costruzioni",
    city="verona",
    province="VR",
    address_tokens=("roma",),
    phones=("+39045123456",),
    raw_phones=("045123456",),
    vat_id="00743110157",
    fingerprint="f" * 32,
)

STRONG = Evidence(
    phones_found=("+39045123456",),
    emails_found=("info@rossi.it",),
    vat_ids_found=("00743110157",),
    address_match_score=1.0,
    name_match_score=1.0,
    phone_match=True,
    is_https=True,
    site_type=SiteType.CORPORATE,
    has_privacy_policy=True,
    has_contact_page=True,
    has_structured_data=True,
)


def _config(**scoring) -> ResolverConfig:
    return ResolverConfig(scoring=ScoringConfig(**scoring))


# =========================================================================
# Strong signals
# =========================================================================


class TestStrongSignals:
    """Tests for S1-S4."""

    def test_phone_exact(self):
        score = score_evidence(Evidence(phone_match=True), ENTITY, 1, ResolverConfig())
        assert score.strong_signals_score == 45

    def test_phone_shared_at_limit(self):
        score = score_evidence(Evidence(phone_match=True), ENTITY, 3, ResolverConfig())
        assert score.strong_signals_score == 25
        assert "shared by 3" in score.details[0]

    def test_address_high_is_proportional(self):
        score = score_evidence(Evidence(address_match_score=0.8), ENTITY, 1, ResolverConfig())
        assert score.strong_signals_score == pytest.approx(20.0)

    def test_address_partial(self):
        score = score_evidence(Evidence(address_match_score=0.4), ENTITY, 1, ResolverConfig())
        assert score.strong_signals_score == pytest.approx(7.5)

    @pytest.mark.parametrize(
        ("name_score", "expected"),
        [(0.9, 20.0), (0.6, 14.0), (0.4, 8.0), (0.2, 0.0)],
    )
    def test_name_tiers(self, name_score, expected):
        score = score_evidence(
            Evidence(name_match_score=name_score), ENTITY, 1, ResolverConfig()
        )
        assert score.strong_signals_score == pytest.approx(expected)

    def test_vat_exact_vs_found(self):
        exact = score_evidence(
            Evidence(vat_ids_found=("00743110157",)), ENTITY, 1, ResolverConfig()
        )
        other = score_evidence(
            Evidence(vat_ids_found=("12345678903",)), ENTITY, 1, ResolverConfig()
        )
        assert exact.strong_signals_score == 100
        assert other.strong_signals_score == 15


# =========================================================================
# Corroborating signals and penalties
# =========================================================================


class TestCorroboratingAndPenalties:
    """Tests for C1-C5 and P1-P3."""

    def test_all_corroborating(self):
        score = score_evidence(
            Evidence(
                emails_found=("a@b.it",),
                has_structured_data=True,
                has_contact_page=True,
                has_privacy_policy=True,
                is_https=True,
            ),
            ENTITY,
            1,
            ResolverConfig(),
        )
        assert score.corroborating_signals_score == 22

    def test_dns_and_http_penalties(self):
        score = score_evidence(
            Evidence(phone_match=True, dns_ok=False, http_ok=False), ENTITY, 1, ResolverConfig()
        )
        assert score.penalties_score == 80
        assert score.final_score == 0

    def test_social_penalised_unless_allowed(self):
        social = Evidence(phone_match=True, site_type=SiteType.SOCIAL)
        assert score_evidence(social, ENTITY, 1, ResolverConfig()).final_score == 0
        allowed = score_evidence(social, ENTITY, 1, _config(allow_social_fallback=True))
        assert allowed.final_score == 45

    def test_is_bad_site_type(self):
        assert is_bad_site_type(SiteType.PARKED, True)
        assert not is_bad_site_type(SiteType.UNKNOWN, False)
        assert not is_bad_site_type(SiteType.CORPORATE, False)


# =========================================================================
# Invariants
# =========================================================================


class TestScoreBounds:
    """Final score stays in [0, 100]; bad site types never pass."""

    def test_clamped_high_under_extreme_weights(self):
        weights = ScoringWeights(**{k: 1000 for k in ScoringWeights.model_fields})
        score = score_evidence(STRONG, ENTITY, 1, _config(weights=weights))
        assert score.final_score == 100

    def test_clamped_low_under_extreme_penalties(self):
        penalties = ScoringPenalties(p1_bad_site_type=0, p2_dns_fail=1e6, p3_http_fail=1e6)
        evidence = Evidence(dns_ok=False, http_ok=False)
        score = score_evidence(evidence, ENTITY, 1, _config(penalties=penalties))
        assert score.final_score == 0

    @pytest.mark.parametrize("site_type", [SiteType.DIRECTORY, SiteType.MARKETPLACE])
    def test_bad_site_type_capped_even_with_all_signals(self, site_type):
        evidence = Evidence(**{**STRONG.__dict__, "site_type": site_type})
        weights = ScoringWeights(**{k: 1000 for k in ScoringWeights.model_fields})
        score = score_evidence(evidence, ENTITY, 1, _config(weights=weights))
        assert score.final_score == 0
        assert any(d.startswith("P1:") for d in score.details)

    def test_every_rule_traced(self):
        score = score_evidence(STRONG, ENTITY, 1, ResolverConfig())
        prefixes = {d.split(":")[0] for d in score.details}
        assert prefixes == {"S1", "S2", "S3", "S4", "C1", "C2", "C3", "C4", "C5"}
