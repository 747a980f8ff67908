"""Per-row resolution: normalize, mine candidates, gather evidence, score and decide."""

from __future__ import annotations

from siteresolver.resolution.classifier import Classification, classify_site
from siteresolver.resolution.decider import Decider, Resolution
from siteresolver.resolution.deduper import dedupe_candidates
from siteresolver.resolution.evidence import extract_evidence, is_valid_partita_iva
from siteresolver.resolution.miner import FAST, CandidateMiner, MiningStrategy
from siteresolver.resolution.normalizer import normalize, normalize_company_name, normalize_phones
from siteresolver.resolution.pipeline import (
    DEFAULT_WAVES,
    ResolutionContext,
    RowResolver,
    WaveSpec,
    build_context,
    wave_specs,
)
from siteresolver.resolution.scorer import score_evidence

__all__ = [
    "DEFAULT_WAVES",
    "FAST",
    "CandidateMiner",
    "Classification",
    "Decider",
    "MiningStrategy",
    "Resolution",
    "ResolutionContext",
    "RowResolver",
    "WaveSpec",
    "build_context",
    "classify_site",
    "dedupe_candidates",
    "extract_evidence",
    "is_valid_partita_iva",
    "normalize",
    "normalize_company_name",
    "normalize_phones",
    "score_evidence",
    "wave_specs",
]
