"""CSV ingestion with delimiter detection and fuzzy header mapping."""

from __future__ import annotations

import re
from pathlib import Path

import pandas as pd
import structlog
from unidecode import unidecode

from siteresolver.models import INPUT_FIELDS, InputRow

logger = structlog.get_logger(__name__)

SIGNAL_FIELDS = ("phone", "address", "city", "source_url", "initial_website")

# (substring, field) pairs, checked in order; first hit wins.
_HEADER_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("ragione", "azienda", "company", "denominazione"), "company_name"),
    (("p_iva", "partita_iva", "piva", "vat"), "vat_id"),
    (("telef", "phone", "tel"), "phone"),
    (("indirizzo", "address", "via"), "address"),
    (("citta", "city", "localita", "comune"), "city"),
    (("prov",), "province"),
    (("cap", "zip", "postal"), "postal_code"),
    (("sito", "url", "web"), "source_url"),
    (("settore", "categ", "industry"), "industry"),
)

_EXACT_HEADERS = {"profile_url": "source_url", "website": "initial_website"}


def detect_delimiter(header_line: str) -> str:
    """Pick ``;``, ``,`` or tab by counting occurrences in the header line."""
    counts = {d: header_line.count(d) for d in (",", ";", "\t")}
    best = max(counts, key=lambda d: counts[d])
    return best if counts[best] > counts[","] else ","


def map_header(header: str) -> str:
    """Map a raw column header onto an :class:`InputRow` field where possible.

    Unknown headers come back slugified.
    """
    slug = re.sub(r"[^a-z0-9]", "_", unidecode(str(header)).lower().strip())
    if slug in INPUT_FIELDS:
        return slug
    if slug in _EXACT_HEADERS:
        return _EXACT_HEADERS[slug]
    for needles, field_name in _HEADER_RULES:
        if any(n in slug for n in needles):
            return field_name
    return slug


def _map_columns(columns: list[str]) -> dict[str, str]:
    mapping: dict[str, str] = {}
    used: set[str] = set()
    for col in columns:
        target = map_header(col)
        if target in used:
            target = re.sub(r"[^a-z0-9]", "_", unidecode(str(col)).lower().strip()) or col
            while target in used:
                target += "_"
        used.add(target)
        mapping[col] = target
    return mapping


def validate_row(row: InputRow) -> str | None:
    """Return why *row* cannot be resolved, or ``None`` if it is usable."""
    if not row.company_name:
        return "missing company_name"
    if not any(getattr(row, f) for f in SIGNAL_FIELDS):
        return "missing identifying field (phone, address, city, source_url or website)"
    return None


def read_input_rows(path: str | Path) -> list[InputRow]:
    """Read an input CSV into :class:`InputRow` objects.

    Every data line yields one row.  Rows failing validation are kept with
    ``validation_error`` set so they can be reported, not silently dropped.
    """
    csv_path = Path(path)
    with open(csv_path, encoding="utf-8-sig") as f:
        header_line = f.readline()
    delimiter = detect_delimiter(header_line)

    df = pd.read_csv(
        csv_path,
        sep=delimiter,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        encoding="utf-8-sig",
        on_bad_lines="warn",
    )
    df = df.rename(columns=_map_columns(list(df.columns)))

    rows: list[InputRow] = []
    for line_number, record in enumerate(df.to_dict(orient="records"), start=1):
        row = InputRow.from_mapping(record, line_number=line_number)
        row.validation_error = validate_row(row)
        rows.append(row)

    invalid = sum(1 for r in rows if not r.is_valid)
    logger.info(
        "input_loaded",
        path=str(csv_path),
        delimiter=repr(delimiter),
        rows=len(rows),
        invalid=invalid,
    )
    return rows
