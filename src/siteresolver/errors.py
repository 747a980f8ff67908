"""Exception hierarchy and the mapping from exceptions to decision codes."""

from __future__ import annotations

import asyncio

import httpx

from siteresolver.models import DecisionStatus, ReasonCode


class ResolverError(Exception):
    """Base class for failures that map onto a typed decision."""

    status: DecisionStatus = DecisionStatus.ERROR_INTERNAL
    reason_code: ReasonCode = ReasonCode.ERROR_INTERNAL

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.code = code or self.reason_code.value


class InvalidInputRowError(ResolverError):
    status = DecisionStatus.ERROR_INVALID_INPUT_ROW
    reason_code = ReasonCode.ERROR_INVALID_INPUT_ROW


class FetchTimeoutError(ResolverError):
    status = DecisionStatus.ERROR_TIMEOUT
    reason_code = ReasonCode.ERROR_TIMEOUT_FETCH


class BlockedError(ResolverError):
    status = DecisionStatus.ERROR_BLOCKED
    reason_code = ReasonCode.ERROR_BLOCKED_403


class DnsFailureError(ResolverError):
    status = DecisionStatus.ERROR_DNS
    reason_code = ReasonCode.ERROR_DNS_FAILURE


class FetchFailedError(ResolverError):
    status = DecisionStatus.ERROR_FETCH
    reason_code = ReasonCode.ERROR_FETCH_FAILED


class ProviderRateLimitError(ResolverError):
    status = DecisionStatus.ERROR_RATE_LIMIT
    reason_code = ReasonCode.ERROR_PROVIDER_RATE_LIMIT


# Most informative first: a blocked site must never be reported as "not found".
FAILURE_PRECEDENCE: tuple[type[ResolverError], ...] = (
    BlockedError,
    FetchTimeoutError,
    FetchFailedError,
    DnsFailureError,
)


def dominant_failure(failures: list[ResolverError]) -> ResolverError | None:
    """Pick the failure that best explains why no candidate could be scored."""
    for kind in FAILURE_PRECEDENCE:
        for failure in failures:
            if isinstance(failure, kind):
                return failure
    return failures[0] if failures else None


def classify_exception(exc: BaseException) -> tuple[DecisionStatus, ReasonCode]:
    """Map any exception escaping a row to ``(status, reason_code)``."""
    if isinstance(exc, ResolverError):
        return exc.status, exc.reason_code
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return DecisionStatus.ERROR_TIMEOUT, ReasonCode.ERROR_TIMEOUT_FETCH
    return DecisionStatus.ERROR_INTERNAL, ReasonCode.ERROR_INTERNAL
