"""Binomial rate estimation for drop statistics.

This module turns raw tallies into drop-rate estimates with honest
uncertainty. Naive proportions at small sample sizes are misleading
(1 drop in 2 runs reads as 50%), so every rate shown to users is paired
with a Wilson score interval.

Wilson score interval:
    For x successes in n trials and normal quantile z::

        phat   = x / n
        center = (phat + z²/2n) / (1 + z²/n)
        radius = z / (1 + z²/n) * sqrt(phat(1 - phat)/n + z²/4n²)

    The bounds are center ± radius clamped to [0, 1]. The headline figure
    stays the raw proportion phat; the margin of error is the distance from
    phat up to the upper bound.
"""

import math
from dataclasses import dataclass

from vaultdrops.analyst.errors import InvalidProportionError

DEFAULT_Z = 1.96


@dataclass(frozen=True)
class ConfidenceEstimate:
    """Point estimate and Wilson bounds for one binomial proportion.

    Attributes:
        point: Raw sample proportion x / n
        lower: Lower Wilson bound, clamped to [0, 1]
        upper: Upper Wilson bound, clamped to [0, 1]
        margin: upper - point
    """

    point: float
    lower: float
    upper: float
    margin: float

    def as_percent(self) -> tuple[float, float]:
        """Return (point, margin) in percentage points."""
        return self.point * 100, self.margin * 100


ZERO_ESTIMATE = ConfidenceEstimate(point=0.0, lower=0.0, upper=0.0, margin=0.0)


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def wilson_interval(successes: int, trials: int, z: float = DEFAULT_Z) -> ConfidenceEstimate:
    """Compute the Wilson score interval for successes out of trials.

    Args:
        successes: Observed count, 0 <= successes <= trials
        trials: Number of trials, >= 0
        z: Normal quantile (1.96 for 95% two-sided)

    Returns:
        ConfidenceEstimate with point = successes / trials and
        margin = upper - point. With no trials every field is 0.

    Raises:
        InvalidProportionError: If the inputs do not describe a proportion

    Example:
        >>> est = wilson_interval(3, 15)
        >>> est.point
        0.2
        >>> round(est.upper, 4)
        0.4519

    Negative case:
        >>> wilson_interval(0, 0)
        ConfidenceEstimate(point=0.0, lower=0.0, upper=0.0, margin=0.0)
    """
    if trials < 0 or successes < 0:
        raise InvalidProportionError(
            f"Counts must be non-negative, got successes={successes}, trials={trials}",
            successes=successes,
            trials=trials,
        )
    if successes > trials:
        raise InvalidProportionError(
            f"successes ({successes}) cannot exceed trials ({trials})",
            successes=successes,
            trials=trials,
        )
    if z <= 0:
        raise InvalidProportionError(f"z must be positive, got {z}")

    if trials == 0:
        return ZERO_ESTIMATE

    n = trials
    phat = successes / n
    z2 = z * z
    denom = 1 + z2 / n

    center = (phat + z2 / (2 * n)) / denom
    radius = (z / denom) * math.sqrt(phat * (1 - phat) / n + z2 / (4 * n * n))

    lower = _clamp(center - radius)
    upper = _clamp(center + radius)

    # Rounding can leave upper a hair below phat at x == n
    margin = max(0.0, upper - phat)
    return ConfidenceEstimate(point=phat, lower=lower, upper=upper, margin=margin)


def percent(count: int, total: int) -> float:
    """Share of total as a percentage rounded half-up to one decimal.

    Example:
        >>> percent(3, 10)
        30.0
        >>> percent(1, 8)
        12.5
        >>> percent(5, 0)
        0.0
    """
    if not total:
        return 0.0
    return math.floor(count / total * 1000 + 0.5) / 10
