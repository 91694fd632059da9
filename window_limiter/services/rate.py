"""Rate description and its textual form.

A rate reads like ``"10 requests in 5 minutes"``. Parsing is deliberately
permissive: numbers go through ``float`` (negative and scientific values are
accepted) and an unparsable number becomes ``nan`` instead of raising.
Validation happens when a :class:`~window_limiter.services.sliding_window.SlidingWindow`
is built from the rate.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

Unit = Literal["seconds", "minutes", "hours"]

_UNIT_SCALE: dict[str, int] = {"hours": 3600, "minutes": 60, "seconds": 1}

_SEPARATORS = (" requests in ", " request in ")


@dataclass(frozen=True)
class Rate:
    """Maximum number of requests allowed in a period.

    Attributes:
        requests: Max allowed requests in the period.
        period: Period length, expressed in ``unit``.
        unit: Period unit.
    """

    requests: float
    period: float
    unit: Unit = "seconds"

    @property
    def period_in_seconds(self) -> float:
        return self.period * _UNIT_SCALE.get(self.unit, 1)

    def __str__(self) -> str:
        noun = "request" if self.requests == 1 else "requests"
        return f"{self.requests} {noun} in {self.period} {self.unit}"


def _parse_number(text: str) -> float:
    try:
        number = float(text.strip())
    except ValueError:
        return math.nan
    if math.isfinite(number) and number.is_integer():
        return int(number)
    return number


def _normalize_unit(token: str) -> Unit:
    token = token.strip().lower()
    if token in ("second", "seconds"):
        return "seconds"
    if token in ("minute", "minutes"):
        return "minutes"
    return "hours"


def parse_rate(literal: str) -> Rate:
    """Parse a ``"<n> requests in <period> <unit>"`` literal.

    Examples:
        >>> parse_rate("10 requests in 20 minutes")
        Rate(requests=10, period=20, unit='minutes')
        >>> parse_rate("1 request in 1 hour")
        Rate(requests=1, period=1, unit='hours')
        >>> parse_rate("1E2 requests in 0.05 hours")
        Rate(requests=100, period=0.05, unit='hours')
    """

    for separator in _SEPARATORS:
        if separator in literal:
            requests_text, remainder = literal.split(separator, 1)
            break
    else:
        return Rate(requests=math.nan, period=math.nan, unit="hours")

    period_text, _, unit_text = remainder.strip().partition(" ")
    return Rate(
        requests=_parse_number(requests_text),
        period=_parse_number(period_text),
        unit=_normalize_unit(unit_text),
    )


def coerce_rate(rate: Rate | str) -> Rate:
    """Accept either a :class:`Rate` or its literal form."""

    if isinstance(rate, Rate):
        return rate
    return parse_rate(rate)
