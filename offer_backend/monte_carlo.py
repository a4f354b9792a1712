import logging
import math
from dataclasses import dataclass
from statistics import pvariance
from typing import Any, Callable, Dict, List, Tuple

import numpy as np

from .valuation_engine import (
    InvalidInputError,
    ValuationInput,
    compute_revenue_share_npv,
    estimate_revenue,
    parse_horizon,
    parse_number,
    parse_years,
    validate_revenue_share_percent,
)

logger = logging.getLogger(__name__)

# Standard deviations equivalent to uniform jitter of +/-2.5 rate points
# and +/-20% of revenue.
DEFAULT_DISCOUNT_STD_DEV_PERCENT = 5.0 / math.sqrt(12)
DEFAULT_REVENUE_STD_DEV_PERCENT = 40.0 / math.sqrt(12)
HISTOGRAM_BINS = 10

Rng = Callable[[], float]


@dataclass(frozen=True)
class Perturbation:
    # absolute percentage points around the base discount rate
    discount_rate_std_dev_percent: float = DEFAULT_DISCOUNT_STD_DEV_PERCENT
    # percent of the base revenue
    revenue_std_dev_percent: float = DEFAULT_REVENUE_STD_DEV_PERCENT


@dataclass
class MonteCarloResult:
    samples: List[float]
    mean: float
    median: float
    variance: float

    def to_dict(self, include_samples: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "iterations": len(self.samples),
            "mean": self.mean,
            "median": self.median,
            "variance": self.variance,
            "histogram": histogram(self.samples, self.mean),
        }
        if include_samples:
            payload["samples"] = list(self.samples)
        return payload


def seeded_rng(seed: int) -> Rng:
    """Uniform [0, 1) generator with a fixed seed."""
    return np.random.default_rng(seed).random


def _draw_uniform(rng: Rng) -> float:
    value = rng()
    if not isinstance(value, (int, float, np.floating)) or not 0.0 <= value < 1.0:
        raise InvalidInputError(f"rng must return values in [0, 1), got {value!r}")
    return float(value)


def box_muller(rng: Rng) -> Tuple[float, float]:
    """Two independent standard normals from two uniform draws."""
    u1 = _draw_uniform(rng)
    u2 = _draw_uniform(rng)
    # 1 - u1 lies in (0, 1], keeping log() finite
    radius = math.sqrt(-2.0 * math.log(1.0 - u1))
    angle = 2.0 * math.pi * u2
    return radius * math.cos(angle), radius * math.sin(angle)


def summarize(samples: List[float]) -> Tuple[float, float, float]:
    """Mean, median (upper middle after a full sort) and population variance."""
    count = len(samples)
    mean = math.fsum(samples) / count
    ordered = sorted(samples)
    median = ordered[count // 2]
    variance = pvariance(samples, mu=mean)
    return mean, median, variance


def histogram(samples: List[float], mean: float, bins: int = HISTOGRAM_BINS) -> List[int]:
    """
    Bucket samples by their ratio to the mean: bucket width is 2/bins of the
    mean, so the mean lands in the middle bucket. Values past the last bucket
    are counted in it; values below zero in the first.
    """
    counts = [0] * bins
    if not samples:
        return counts
    if mean <= 0 or not math.isfinite(mean):
        counts[0] = len(samples)
        return counts
    for value in samples:
        index = math.floor(value / mean * bins / 2)
        counts[min(max(index, 0), bins - 1)] += 1
    return counts


def run_monte_carlo(
    base_input: ValuationInput,
    iterations: int,
    perturbation: Perturbation,
    rng: Rng,
) -> MonteCarloResult:
    """
    Sample the NPV distribution by jittering the discount rate and revenue with
    normal noise. ``rng`` supplies every random draw, so a seeded generator
    gives reproducible output.
    """
    count = parse_years(iterations, "iterations")
    if not callable(rng):
        raise InvalidInputError("rng must be a callable returning uniforms in [0, 1)")
    rate_sd = parse_number(perturbation.discount_rate_std_dev_percent, "discount_rate_std_dev_percent")
    revenue_sd = parse_number(perturbation.revenue_std_dev_percent, "revenue_std_dev_percent")
    if rate_sd < 0 or revenue_sd < 0:
        raise InvalidInputError("perturbation standard deviations must not be negative")
    validate_revenue_share_percent(base_input.revenue_share_percent)
    parse_horizon(base_input.time_horizon_years, "time_horizon_years")

    base_revenue = estimate_revenue(
        base_input.manual_revenue,
        base_input.use_public_data,
        base_input.audience_metrics,
        base_input.conversion_factor,
    )
    base_rate = parse_number(base_input.discount_rate_percent, "discount_rate_percent")

    samples: List[float] = []
    for _ in range(count):
        z_rate, z_revenue = box_muller(rng)
        # negative draws are floored: no negative discount rates or revenue
        rate = max(0.0, base_rate + z_rate * rate_sd)
        revenue = max(0.0, base_revenue * (1.0 + z_revenue * revenue_sd / 100.0))
        samples.append(
            compute_revenue_share_npv(
                revenue,
                base_input.revenue_share_percent,
                rate,
                base_input.time_horizon_years,
                base_input.revenue_share_strategy,
            )
        )

    mean, median, variance = summarize(samples)
    logger.debug("Monte Carlo: iterations=%d mean=%.2f median=%.2f", count, mean, median)
    return MonteCarloResult(samples=samples, mean=mean, median=median, variance=variance)
