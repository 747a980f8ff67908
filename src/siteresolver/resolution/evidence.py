"""Evidence extraction: compare a fetched site against the normalised entity."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

from siteresolver.models import Evidence, NormalizedEntity
from siteresolver.resolution.miner import is_blacklisted, root_domain
from siteresolver.resolution.normalizer import normalize_phones
from siteresolver.resolution.similarity import jaccard, substring_fraction, tokenize

if TYPE_CHECKING:
    from siteresolver.collaborators.extractor import ExtractedContent
    from siteresolver.collaborators.validity import SiteHealth
    from siteresolver.resolution.classifier import Classification

NAME_BODY_WINDOW = 1000

# An 11-digit run that is not part of a longer digit run.
_VAT_CANDIDATE = re.compile(r"(?<!\d)\d{11}(?!\d)")
_EMAIL = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,6}")
# Italian landlines (0x...) and mobiles (3xx...), optional +39 / 0039.
_PHONE = re.compile(
    r"(?<![\d+])(?:(?:\+|00)39[\s.\-]?)?(?:0\d{1,3}|3\d{2})(?:[\s.\-/]?\d{2,4}){1,3}(?!\d)"
)
_IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")


def is_valid_partita_iva(vat: str) -> bool:
    """Italian VAT (partita IVA) check digit.

    Digits at even 0-based positions are summed as-is; digits at odd
    positions are doubled and reduced by 9 when the result reaches 10.
    The 11th digit must equal ``(10 - sum % 10) % 10``.

    >>> is_valid_partita_iva("00743110157")
    True
    """
    if len(vat) != 11 or not vat.isdigit():
        return False
    total = 0
    for i, ch in enumerate(vat[:10]):
        digit = int(ch)
        if i % 2 == 1:
            digit *= 2
            if digit >= 10:
                digit -= 9
        total += digit
    return (10 - total % 10) % 10 == int(vat[10])


def find_vat_ids(html: str) -> list[str]:
    """Every valid partita IVA in *html*, de-duplicated in page order."""
    found = _VAT_CANDIDATE.findall(html or "")
    return list(dict.fromkeys(v for v in found if is_valid_partita_iva(v)))


def find_emails(html: str) -> list[str]:
    found = (e.lower() for e in _EMAIL.findall(html or ""))
    return list(dict.fromkeys(e for e in found if not e.endswith(_IMAGE_SUFFIXES)))


def find_phones(text: str, tel_links: Iterable[str] = ()) -> list[str]:
    """Canonical phones mentioned in page text or ``tel:`` links."""
    found: list[str] = []
    for raw in [*tel_links, *_PHONE.findall(text or "")]:
        formatted, _ = normalize_phones(raw)
        found.extend(formatted)
    return list(dict.fromkeys(found))


def email_on_domain(emails: Iterable[str], domain: str) -> bool:
    domain = domain.lower()
    return any(e.rsplit("@", 1)[-1] == domain or e.endswith("." + domain) for e in emails)


def name_match_score(company_name: str, title: str, text: str) -> float:
    """Best of title Jaccard and name-token coverage of the page head."""
    if not company_name.strip():
        return 0.0
    # Names with no tokens would otherwise match an empty title perfectly.
    title_score = jaccard(company_name, title) if tokenize(company_name) else 0.0
    return max(
        title_score,
        substring_fraction(company_name.split(), text[:NAME_BODY_WINDOW].lower()),
    )


def extract_evidence(
    content: ExtractedContent,
    entity: NormalizedEntity,
    health: SiteHealth,
    classification: Classification,
    social_domains: Iterable[str] = (),
    final_url: str = "",
) -> Evidence:
    """Build the :class:`Evidence` record for one candidate page."""
    text_lower = content.text.lower()
    phones = find_phones(content.text, content.tel_phones)
    social = frozenset(d.lower() for d in social_domains)
    social_links = [
        url
        for url in content.links.external
        if (domain := root_domain(url)) is not None and is_blacklisted(domain, social)
    ]

    return Evidence(
        phones_found=tuple(phones),
        emails_found=tuple(find_emails(content.html)),
        vat_ids_found=tuple(classification.vat_ids),
        social_links_found=tuple(social_links),
        meta_title=content.title,
        meta_description=content.description,
        address_match_score=substring_fraction(entity.address_tokens, text_lower),
        name_match_score=name_match_score(entity.company_name, content.title, content.text),
        phone_match=any(p in phones for p in entity.phones),
        dns_ok=health.dns_ok,
        http_ok=health.http_ok,
        is_https=health.is_https or final_url.startswith("https://"),
        site_type=classification.site_type,
        has_privacy_policy=bool(content.links.privacy),
        has_contact_page=bool(content.links.contact),
        has_structured_data=bool(content.structured_data),
        parked_indicators_count=classification.parked_count,
        corporate_signals_count=classification.corporate_signals,
    )
