"""Tests for the fallback combinator and the error taxonomy."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from siteresolver.errors import (
    BlockedError,
    DnsFailureError,
    FetchFailedError,
    FetchTimeoutError,
    InvalidInputRowError,
    ProviderRateLimitError,
    classify_exception,
    dominant_failure,
)
from siteresolver.fallback import Strategy, first_success
from siteresolver.models import DecisionStatus as S
from siteresolver.models import ReasonCode as R


def _returning(value):
    async def run(arg):
        return value

    return run


def _raising(exc: Exception):
    async def run(arg):
        raise exc

    return run


# =========================================================================
# first_success
# =========================================================================


class TestFirstSuccess:
    """Tests for ordered strategy fallback."""

    def test_first_accepted_wins(self):
        strategies = [Strategy("a", _returning("A")), Strategy("b", _returning("B"))]
        attempt = asyncio.run(first_success(strategies, None))
        assert attempt.value == "A"
        assert attempt.reason == "a"
        assert attempt.accepted

    def test_skips_failures(self):
        strategies = [Strategy("a", _raising(RuntimeError("x"))), Strategy("b", _returning("B"))]
        attempt = asyncio.run(first_success(strategies, None))
        assert attempt.value == "B"
        assert [str(e) for e in attempt.errors] == ["x"]

    def test_rejected_values_fall_through(self):
        strategies = [Strategy("a", _returning(0)), Strategy("b", _returning(5))]
        attempt = asyncio.run(first_success(strategies, None, accept=lambda v: v > 1))
        assert attempt.value == 5

    def test_nothing_accepted_returns_last_value(self):
        strategies = [
            Strategy("a", _returning(1)),
            Strategy("b", _returning(2)),
            Strategy("c", _raising(RuntimeError("x"))),
        ]
        attempt = asyncio.run(first_success(strategies, None, accept=lambda v: v > 10))
        assert attempt.value == 2
        assert attempt.reason == "b"
        assert not attempt.accepted

    def test_propagate(self):
        strategies = [
            Strategy("a", _raising(ProviderRateLimitError())),
            Strategy("b", _returning(1)),
        ]
        with pytest.raises(ProviderRateLimitError):
            asyncio.run(first_success(strategies, None, propagate=(ProviderRateLimitError,)))

    def test_passes_argument(self):
        async def double(x):
            return x * 2

        attempt = asyncio.run(first_success([Strategy("d", double)], 21))
        assert attempt.value == 42

    def test_empty(self):
        attempt = asyncio.run(first_success([], None))
        assert attempt.value is None
        assert not attempt.accepted


# =========================================================================
# Errors
# =========================================================================


class TestClassifyException:
    """Tests for exception -> (status, reason code) mapping."""

    @pytest.mark.parametrize(
        ("exc", "status", "code"),
        [
            (InvalidInputRowError("x"), S.ERROR_INVALID_INPUT_ROW, R.ERROR_INVALID_INPUT_ROW),
            (BlockedError("x"), S.ERROR_BLOCKED, R.ERROR_BLOCKED_403),
            (DnsFailureError("x"), S.ERROR_DNS, R.ERROR_DNS_FAILURE),
            (FetchFailedError("x"), S.ERROR_FETCH, R.ERROR_FETCH_FAILED),
            (FetchTimeoutError("x"), S.ERROR_TIMEOUT, R.ERROR_TIMEOUT_FETCH),
            (ProviderRateLimitError("x"), S.ERROR_RATE_LIMIT, R.ERROR_PROVIDER_RATE_LIMIT),
            (httpx.ReadTimeout("slow"), S.ERROR_TIMEOUT, R.ERROR_TIMEOUT_FETCH),
            (asyncio.TimeoutError(), S.ERROR_TIMEOUT, R.ERROR_TIMEOUT_FETCH),
            (KeyError("x"), S.ERROR_INTERNAL, R.ERROR_INTERNAL),
        ],
    )
    def test_mapping(self, exc, status, code):
        assert classify_exception(exc) == (status, code)

    def test_default_message_and_code(self):
        err = BlockedError()
        assert str(err) == "BlockedError"
        assert err.code == "ERROR_BLOCKED_403"
        assert BlockedError("x", code="CUSTOM").code == "CUSTOM"


class TestDominantFailure:
    """Blocked > timeout > fetch > DNS."""

    def test_precedence(self):
        dns, fetch = DnsFailureError("d"), FetchFailedError("f")
        timeout, blocked = FetchTimeoutError("t"), BlockedError("b")
        assert dominant_failure([dns, fetch, timeout, blocked]) is blocked
        assert dominant_failure([dns, fetch, timeout]) is timeout
        assert dominant_failure([dns, fetch]) is fetch
        assert dominant_failure([dns]) is dns

    def test_empty(self):
        assert dominant_failure([]) is None
