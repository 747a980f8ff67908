"""Tests for the shared-phone frequency model."""

from __future__ import annotations

from siteresolver.phone_frequency import PhoneFrequencyModel


class TestPhoneFrequencyModel:
    """Counts distinct entities per phone."""

    def test_counts_distinct_entities(self):
        model = PhoneFrequencyModel()
        assert model.observe("a", ["+39045123456"]) == 1
        assert model.observe("b", ["+39045123456"]) == 2
        assert model.observe("c", ["+39045123456", "+393331234567"]) == 3
        assert model.frequency(["+393331234567"]) == 1
        assert len(model) == 3

    def test_same_entity_counted_once(self):
        model = PhoneFrequencyModel()
        model.track("a", ["+39045123456"])
        model.track("a", ["+39045123456"])
        assert model.frequency(["+39045123456"]) == 1

    def test_duplicate_phones_within_entity(self):
        model = PhoneFrequencyModel()
        model.track("a", ["+39045123456", "+39045123456"])
        assert model.frequency(["+39045123456"]) == 1

    def test_unknown_and_empty(self):
        model = PhoneFrequencyModel()
        assert model.frequency(["+390000000"]) == 0
        assert model.frequency([]) == 0
        assert model.observe("x", []) == 0
