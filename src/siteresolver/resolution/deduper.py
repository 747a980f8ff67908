"""Candidate de-duplication."""

from __future__ import annotations

from collections.abc import Iterable

from siteresolver.models import Candidate


def dedupe_candidates(candidates: Iterable[Candidate], max_candidates: int) -> list[Candidate]:
    """Keep the most trusted candidate per root domain, capped at *max_candidates*.

    The sort is stable, so among equal ranks the earlier candidate wins.
    """
    unique: dict[str, Candidate] = {}
    for candidate in sorted(candidates, key=lambda c: c.rank):
        unique.setdefault(candidate.root_domain, candidate)
    return list(unique.values())[: max(0, max_candidates)]
