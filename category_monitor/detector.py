"""Product-count comparison."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ComparisonResult:
    previous: int
    current: int
    delta: int
    percent_change: float
    changed: bool
    increased: bool
    decreased: bool


def compare(previous: int, current: int) -> ComparisonResult:
    """Classify the transition from ``previous`` to ``current``.

    ``percent_change`` is relative to ``previous`` and rounded to two
    decimals; it is 0 when there is no previous count to divide by.
    """
    delta = current - previous
    percent = round(delta / previous * 100, 2) if previous > 0 else 0.0
    return ComparisonResult(
        previous=previous,
        current=current,
        delta=delta,
        percent_change=percent,
        changed=delta != 0,
        increased=delta > 0,
        decreased=delta < 0,
    )


__all__ = ["ComparisonResult", "compare"]
