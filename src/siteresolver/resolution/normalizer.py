"""Turn a raw input row into a canonical :class:`NormalizedEntity`.

Every helper is pure and total: missing or malformed fields degrade to
empty values, nothing raises.
"""

from __future__ import annotations

import hashlib
import re

from unidecode import unidecode

from siteresolver.models import InputRow, NormalizedEntity

# ---------------------------------------------------------------------------
# Company name
# ---------------------------------------------------------------------------

# Italian legal forms, dotted or not.  srls before srl so the longer form wins.
_LEGAL_FORM_PATTERN = re.compile(
    r"(^|\s)("
    r"s\.?r\.?l\.?s\.?|s\.?r\.?l\.?|s\.?p\.?a\.?|s\.?n\.?c\.?|s\.?a\.?s\.?|"
    r"s\.?c\.?r\.?l\.?|s\.?s\.?|s\.?c\.?|soc\.?|coop\.?|societa'?\s+cooperativa"
    r")(?=[\s,;]|$)"
)

_BUSINESS_STOPWORDS = re.compile(
    r"\b(ristorante|pizzeria|hotel|albergo|caffe|osteria|trattoria|impresa|ditta|studio)\b"
)

_ARTICLES = re.compile(r"\b(il|lo|la|l|i|gli|le|un|uno|una)\b")


def normalize_company_name(name: str | None) -> str:
    """Normalise an Italian business name for matching.

    Steps:
      1. Transliterate to ASCII (``società`` -> ``societa``).
      2. Lowercase.
      3. Strip legal forms (S.r.l., SpA, snc, coop ...).
      4. Replace punctuation with spaces.
      5. Drop business-type stopwords and articles.
      6. Collapse whitespace.
    """
    if not name:
        return ""
    text = unidecode(name).lower().strip()
    # Applied twice so adjacent forms ("soc. coop.") both go.
    text = _LEGAL_FORM_PATTERN.sub(" ", text)
    text = _LEGAL_FORM_PATTERN.sub(" ", text)
    text = re.sub(r"[^a-z0-9\s]", " ", text)
    text = _BUSINESS_STOPWORDS.sub(" ", text)
    text = _ARTICLES.sub(" ", text)
    return re.sub(r"\s+", " ", text).strip()


# ---------------------------------------------------------------------------
# Phones
# ---------------------------------------------------------------------------

_PHONE_SEPARATOR = re.compile(r";|\s/\s")
MIN_PHONE_DIGITS = 5


def normalize_phones(phone: str | None) -> tuple[list[str], list[str]]:
    """Split and canonicalise a phone field.

    Returns ``(formatted, raw)``: ``formatted`` holds ``+39``-prefixed forms,
    ``raw`` the digits only.  Both are de-duplicated preserving order.

    Only ``;`` and `` / `` separate numbers; ``02/1234567`` is one number.
    """
    if not phone:
        return [], []

    formatted: list[str] = []
    raw: list[str] = []
    for part in _PHONE_SEPARATOR.split(phone):
        clean = re.sub(r"[^0-9+]", "", part)
        if clean.startswith("0039"):
            clean = "+" + clean[2:]
        digits = clean.replace("+", "")
        if len(digits) < MIN_PHONE_DIGITS:
            continue
        if not clean.startswith("+") and clean[:1] in ("0", "3"):
            clean = "+39" + clean
        if clean not in formatted:
            formatted.append(clean)
        if digits not in raw:
            raw.append(digits)
    return formatted, raw


# ---------------------------------------------------------------------------
# Address / city
# ---------------------------------------------------------------------------

_STREET_PREFIX = re.compile(r"^(via|viale|piazza|corso|vicolo|strada|piazzale|largo)\s+")
_CIVIC_CLAUSE = re.compile(r",\s*\d+.*$")
_TRAILING_NUMBER = re.compile(r"\s+\d+[a-z]?(/[a-z0-9]+)?\s*$")


def normalize_address(address: str | None) -> list[str]:
    """Tokenise a street address, dropping street type, civic number and short tokens."""
    if not address:
        return []
    text = unidecode(address).lower().strip()
    text = _STREET_PREFIX.sub("", text)
    text = _CIVIC_CLAUSE.sub("", text)
    text = _TRAILING_NUMBER.sub("", text)
    return [t for t in re.findall(r"[a-z0-9']+", text) if len(t) > 2]


def normalize_city(city: str | None) -> str:
    if not city:
        return ""
    return re.sub(r"[.,]", "", city.lower().strip())


def fingerprint(name: str, phone: str, city: str) -> str:
    """Stable entity id: md5 of ``name|phone|city``."""
    return hashlib.md5(f"{name}|{phone}|{city}".encode()).hexdigest()


def normalize(row: InputRow) -> NormalizedEntity:
    """Normalise every identity field of *row*."""
    name = normalize_company_name(row.company_name)
    phones, raw_phones = normalize_phones(row.phone)
    city = normalize_city(row.city)
    vat = re.sub(r"\D", "", row.vat_id or "") or None

    return NormalizedEntity(
        company_name=name,
        city=city,
        province=(row.province or "").strip().upper(),
        address_tokens=tuple(normalize_address(row.address)),
        phones=tuple(phones),
        raw_phones=tuple(raw_phones),
        vat_id=vat,
        fingerprint=fingerprint(name, phones[0] if phones else "", city),
        industry=(row.industry or "").strip(),
    )
