"""Site-type classification: is this a business's own site, or something else?"""

from __future__ import annotations

from dataclasses import dataclass

from siteresolver.collaborators.extractor import ExtractedContent
from siteresolver.config import DomainLists
from siteresolver.models import SiteType
from siteresolver.resolution.evidence import email_on_domain, find_emails, find_vat_ids
from siteresolver.resolution.miner import is_blacklisted

MIN_PARKED_INDICATORS = 2
MIN_CORPORATE_SIGNALS = 2
MIN_BODY_CHARS = 200

_ORGANIZATION_TYPES = frozenset({"Organization", "LocalBusiness"})


@dataclass(frozen=True)
class Classification:
    site_type: SiteType
    parked_count: int = 0
    corporate_signals: int = 0
    vat_ids: tuple[str, ...] = ()


def _declares_organization(structured_data: list[dict]) -> bool:
    for block in structured_data:
        kind = block.get("@type")
        kinds = kind if isinstance(kind, list) else [kind]
        if any(k in _ORGANIZATION_TYPES for k in kinds):
            return True
    return False


def classify_site(domain: str, content: ExtractedContent, lists: DomainLists) -> Classification:
    """Classify a candidate site.

    Rules are applied in strict order and the first that fires wins:

    1. Hard blacklist (exact domain or subdomain) -> DIRECTORY / SOCIAL / MARKETPLACE.
    2. At least two parked-domain indicators in title or body -> PARKED.
    3. At least two corporate signals -> CORPORATE.
    4. Body text shorter than 200 characters -> UNKNOWN.
    5. Otherwise CORPORATE.
    """
    domain = domain.lower()
    vat_ids = tuple(find_vat_ids(content.html))

    if is_blacklisted(domain, lists.directory_domains):
        return Classification(SiteType.DIRECTORY, vat_ids=vat_ids)
    if is_blacklisted(domain, lists.social_domains):
        return Classification(SiteType.SOCIAL, vat_ids=vat_ids)
    if is_blacklisted(domain, lists.marketplace_domains):
        return Classification(SiteType.MARKETPLACE, vat_ids=vat_ids)

    text = content.text.lower()
    title = content.title.lower()
    indicators = [ind.lower() for ind in lists.parked_indicators]
    parked = sum(1 for ind in indicators if ind in text or ind in title)
    if parked >= MIN_PARKED_INDICATORS:
        return Classification(SiteType.PARKED, parked_count=parked, vat_ids=vat_ids)

    signals = sum(
        (
            bool(content.links.privacy),
            bool(content.links.contact),
            bool(vat_ids),
            _declares_organization(content.structured_data),
            email_on_domain(find_emails(content.html), domain),
        )
    )
    if signals >= MIN_CORPORATE_SIGNALS:
        return Classification(SiteType.CORPORATE, parked, signals, vat_ids)

    if len(content.text) < MIN_BODY_CHARS:
        return Classification(SiteType.UNKNOWN, parked, signals, vat_ids)

    return Classification(SiteType.CORPORATE, parked, signals, vat_ids)
