"""Weighted multi-signal scoring of one candidate's evidence.

Signals fall in three groups:

* **Strong** (S1-S4): phone, address, name and VAT matches.
* **Corroborating** (C1-C5): cheap hints that the site is a real business site.
* **Penalties** (P1-P3): wrong kind of site, DNS failure, HTTP failure.

``final_score = clamp(strong + corroborating - penalties, 0, 100)``.  A bad
site type also caps the final score at ``bad_site_type_floor`` so that no
amount of positive evidence can make a directory page pass.
"""

from __future__ import annotations

from siteresolver.config import ResolverConfig
from siteresolver.models import Evidence, NormalizedEntity, ScoreBreakdown, SiteType

MAX_SCORE = 100.0

_ALWAYS_BAD = frozenset({SiteType.DIRECTORY, SiteType.MARKETPLACE, SiteType.PARKED})


def is_bad_site_type(site_type: SiteType, allow_social_fallback: bool) -> bool:
    if site_type in _ALWAYS_BAD:
        return True
    return site_type is SiteType.SOCIAL and not allow_social_fallback


def _name_tier(score: float) -> float:
    if score > 0.8:
        return 1.0
    if score > 0.5:
        return 0.7
    if score > 0.3:
        return 0.4
    return 0.0


def score_evidence(
    evidence: Evidence,
    entity: NormalizedEntity,
    phone_frequency: int,
    config: ResolverConfig,
) -> ScoreBreakdown:
    """Compute the :class:`ScoreBreakdown` for *evidence*.

    Parameters
    ----------
    evidence:
        Signals extracted from the candidate site.
    entity:
        The normalised input row.
    phone_frequency:
        How many distinct entities share the entity's phone.  At or above
        ``thresholds.phone_frequency_limit`` a phone match earns the reduced
        shared-phone weight.
    config:
        Weights, penalties and limits.
    """
    scoring = config.scoring
    thresholds = config.thresholds
    w = scoring.weights
    p = scoring.penalties
    details: list[str] = []

    # -- strong signals -----------------------------------------------------
    strong = 0.0

    if evidence.phone_match:
        if phone_frequency >= thresholds.phone_frequency_limit:
            strong += w.s1_phone_shared
            details.append(
                f"S1: phone match, shared by {phone_frequency} entities (+{w.s1_phone_shared:g})"
            )
        else:
            strong += w.s1_phone_exact_match
            details.append(f"S1: phone exact match (+{w.s1_phone_exact_match:g})")

    addr = evidence.address_match_score
    if addr > scoring.address_high_threshold:
        gained = w.s2_address_high_match * addr
        strong += gained
        details.append(f"S2: address match {addr:.2f} (+{gained:.1f})")
    elif addr > scoring.address_low_threshold:
        gained = w.s2_address_high_match * scoring.address_partial_fraction
        strong += gained
        details.append(f"S2: address partial match {addr:.2f} (+{gained:.1f})")

    tier = _name_tier(evidence.name_match_score)
    if tier:
        gained = w.s3_name_high_match * tier
        strong += gained
        details.append(f"S3: name match {evidence.name_match_score:.2f} (+{gained:.1f})")

    if entity.vat_id and entity.vat_id in evidence.vat_ids_found:
        strong += w.s4_vat_exact_match
        details.append(f"S4: VAT exact match {entity.vat_id} (+{w.s4_vat_exact_match:g})")
    elif evidence.vat_ids_found:
        strong += w.s4_vat_found
        details.append(f"S4: VAT found, no input match (+{w.s4_vat_found:g})")

    # -- corroborating signals ----------------------------------------------
    corroborating = 0.0

    if evidence.emails_found:
        corroborating += w.c1_email_found
        details.append(f"C1: email found (+{w.c1_email_found:g})")
    if evidence.has_structured_data:
        corroborating += w.c2_structured_data
        details.append(f"C2: structured data (+{w.c2_structured_data:g})")
    corporate = sum(
        (evidence.has_contact_page, evidence.has_privacy_policy, bool(evidence.vat_ids_found))
    )
    if corporate >= 2:
        corroborating += w.c3_corporate_signals
        details.append(f"C3: {corporate} corporate signals (+{w.c3_corporate_signals:g})")
    if evidence.has_contact_page:
        corroborating += w.c4_has_contact_page
        details.append(f"C4: contact page (+{w.c4_has_contact_page:g})")
    if evidence.is_https:
        corroborating += w.c5_https_ok
        details.append(f"C5: https (+{w.c5_https_ok:g})")

    # -- penalties ----------------------------------------------------------
    penalties = 0.0

    bad_type = is_bad_site_type(evidence.site_type, scoring.allow_social_fallback)
    if bad_type:
        penalties += p.p1_bad_site_type
        details.append(f"P1: bad site type {evidence.site_type.value} (-{p.p1_bad_site_type:g})")
    if not evidence.dns_ok:
        penalties += p.p2_dns_fail
        details.append(f"P2: DNS failure (-{p.p2_dns_fail:g})")
    if not evidence.http_ok:
        penalties += p.p3_http_fail
        details.append(f"P3: HTTP failure (-{p.p3_http_fail:g})")

    final = min(MAX_SCORE, max(0.0, strong + corroborating - penalties))
    if bad_type and final > scoring.bad_site_type_floor:
        final = max(0.0, scoring.bad_site_type_floor)
        details.append(f"P1: capped at {final:g}")

    return ScoreBreakdown(
        strong_signals_score=strong,
        corroborating_signals_score=corroborating,
        penalties_score=penalties,
        final_score=final,
        details=tuple(details),
    )
