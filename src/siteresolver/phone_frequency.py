"""How many distinct businesses share a phone number.

Call centres, accountants and shared switchboards show up as the same number
across many rows; a phone match against such a number proves little.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable


class PhoneFrequencyModel:
    """Multiset of canonical phones, counted once per entity fingerprint.

    One instance per batch run.  Counts only grow.  Tracking the same
    fingerprint again is a no-op, so resumed or re-run rows do not inflate
    the counts.
    """

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()
        self._seen: set[str] = set()

    def track(self, fingerprint: str, phones: Iterable[str]) -> None:
        if fingerprint in self._seen:
            return
        self._seen.add(fingerprint)
        for phone in set(phones):
            if phone:
                self._counts[phone] += 1

    def frequency(self, phones: Iterable[str]) -> int:
        """Highest count among *phones* (0 when none was seen)."""
        return max((self._counts.get(p, 0) for p in phones), default=0)

    def observe(self, fingerprint: str, phones: Iterable[str]) -> int:
        """Track *phones* for *fingerprint* and return their frequency."""
        phones = tuple(phones)
        self.track(fingerprint, phones)
        return self.frequency(phones)

    def __len__(self) -> int:
        return len(self._seen)
