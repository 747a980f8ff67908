"""Ordered fallback over a list of async strategies.

Used wherever the pipeline has "try A, then B, then C": fetch request
strategies, search provider chains and per-row wave escalation.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")
A = TypeVar("A")


@dataclass
class Attempt(Generic[T]):
    """Outcome of a fallback run.

    ``value`` is the accepted result, or the last result produced when no
    strategy was accepted.  ``reason`` names the strategy that produced it.
    ``errors`` keeps exceptions raised by skipped strategies, in order.
    """

    value: T | None
    reason: str
    accepted: bool
    errors: list[Exception] = field(default_factory=list)


@dataclass(frozen=True)
class Strategy(Generic[A, T]):
    name: str
    run: Callable[[A], Awaitable[T]]


async def first_success(
    strategies: Sequence[Strategy[A, T]],
    arg: A,
    accept: Callable[[T], bool] = lambda value: value is not None,
    propagate: tuple[type[BaseException], ...] = (),
) -> Attempt[T]:
    """Run *strategies* in order until one returns an accepted value.

    Exceptions of a type listed in *propagate* are re-raised immediately;
    any other exception is recorded and the next strategy is tried.

    Returns:
        An :class:`Attempt`.  When nothing was accepted, ``value`` is the
        last non-raising result (or ``None``) and ``accepted`` is False.
    """
    last: T | None = None
    last_name = ""
    errors: list[Exception] = []

    for strategy in strategies:
        try:
            value = await strategy.run(arg)
        except propagate:
            raise
        except Exception as exc:
            logger.debug("fallback_strategy_failed", strategy=strategy.name, error=str(exc))
            errors.append(exc)
            continue

        if accept(value):
            return Attempt(value=value, reason=strategy.name, accepted=True, errors=errors)
        last, last_name = value, strategy.name

    return Attempt(value=last, reason=last_name, accepted=False, errors=errors)
