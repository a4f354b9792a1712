import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

import pandas as pd

logger = logging.getLogger(__name__)

# Width of the high/low scenario band around the base NPV.
SCENARIO_BAND_PERCENT = 10.0

# Longest projection horizon (years) accepted by NPV, schedule and break-even.
MAX_HORIZON_YEARS = 100


class InvalidInputError(ValueError):
    """Raised when a valuation input is malformed or outside its domain."""
    pass


class RevenueShareStrategy(str, Enum):
    # NPV(revenue * share): discount the holder pool's cash flow directly.
    NPV_OF_SHARE = "npv_of_share"
    # share * NPV(revenue): discount total revenue, then take the pool's share.
    SHARE_OF_NPV = "share_of_npv"


@dataclass(frozen=True)
class AudienceMetric:
    followers: float
    engagement_rate_percent: float
    weight: Optional[float] = None


@dataclass(frozen=True)
class ValuationInput:
    manual_revenue: Optional[Any] = None
    use_public_data: bool = False
    audience_metrics: Optional[Sequence[AudienceMetric]] = None
    conversion_factor: float = 0.005
    revenue_share_percent: float = 10.0
    discount_rate_percent: float = 10.0
    time_horizon_years: int = 5
    offer_factor_percent: float = 50.0
    total_supply: Optional[float] = None
    revenue_share_strategy: RevenueShareStrategy = RevenueShareStrategy.NPV_OF_SHARE
    scenario_band_percent: float = SCENARIO_BAND_PERCENT


@dataclass
class ValuationResult:
    estimated_annual_revenue: float
    annual_cash_flow: float
    npv: float
    recommended_offer: float
    scenarios: Dict[str, Dict[str, float]]
    recommended_token_price: Optional[float] = None
    recommended_supply: Optional[float] = None
    percent_revenue_share_per_token: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "estimated_revenue": self.estimated_annual_revenue,
            "annual_cash_flow": self.annual_cash_flow,
            "npv": self.npv,
            "recommended_offer": self.recommended_offer,
            "scenarios": self.scenarios,
        }
        if self.recommended_supply is not None:
            payload["recommended_token_price"] = self.recommended_token_price
            payload["recommended_supply"] = self.recommended_supply
            payload["percent_revenue_share_per_token"] = self.percent_revenue_share_per_token
        return payload


def parse_number(value: Any, name: str) -> float:
    """Parse a numeric input, rejecting anything that is not a finite number."""
    if isinstance(value, bool):
        raise InvalidInputError(f"{name} must be a number, got a boolean")
    if isinstance(value, str):
        value = value.strip()
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} is not a valid number: {value!r}")
    if not math.isfinite(numeric):
        raise InvalidInputError(f"{name} must be finite, got {value!r}")
    return numeric


def parse_years(value: Any, name: str = "years") -> int:
    if isinstance(value, bool):
        raise InvalidInputError(f"{name} must be a positive integer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise InvalidInputError(f"{name} must be a positive integer, got {value!r}")
    if value < 1:
        raise InvalidInputError(f"{name} must be a positive integer, got {value}")
    return value


def parse_horizon(value: Any, name: str = "years") -> int:
    """Parse a projection horizon: a positive integer no larger than MAX_HORIZON_YEARS."""
    horizon = parse_years(value, name)
    if horizon > MAX_HORIZON_YEARS:
        raise InvalidInputError(f"{name} must not exceed {MAX_HORIZON_YEARS}, got {horizon}")
    return horizon


def validate_revenue_share_percent(value: Any) -> float:
    share_percent = parse_number(value, "revenue_share_percent")
    if share_percent < 0 or share_percent > 100:
        raise InvalidInputError("revenue_share_percent must be between 0 and 100")
    return share_percent


def has_manual_revenue(manual_revenue: Any) -> bool:
    if manual_revenue is None:
        return False
    # Empty form fields arrive as blank strings and mean "not supplied".
    if isinstance(manual_revenue, str) and not manual_revenue.strip():
        return False
    return True


def compute_effective_followers(metrics: Sequence[AudienceMetric]) -> float:
    """Sum of followers weighted by engagement (a percentage) and platform weight."""
    total = 0.0
    for idx, metric in enumerate(metrics):
        followers = parse_number(metric.followers, f"audience_metrics[{idx}].followers")
        engagement = parse_number(metric.engagement_rate_percent, f"audience_metrics[{idx}].engagement_rate_percent")
        weight = 1.0 if metric.weight is None else parse_number(metric.weight, f"audience_metrics[{idx}].weight")
        # A zero weight falls back to 1, same as a missing one.
        weight = weight or 1.0
        if followers < 0 or engagement < 0 or weight < 0:
            raise InvalidInputError(f"audience_metrics[{idx}] values must not be negative")
        total += followers * (engagement / 100.0) * weight
    return total


def estimate_revenue(
    manual_revenue: Any = None,
    use_public_data: bool = False,
    audience_metrics: Optional[Sequence[AudienceMetric]] = None,
    conversion_factor: float = 0.0,
) -> float:
    """
    Estimate annual revenue.

    A supplied manual revenue always wins. Otherwise revenue is derived from
    audience metrics when public data is enabled, and is 0 when neither applies.
    """
    if has_manual_revenue(manual_revenue):
        return parse_number(manual_revenue, "manual_revenue")
    if use_public_data and audience_metrics:
        factor = parse_number(conversion_factor, "conversion_factor")
        return compute_effective_followers(audience_metrics) * factor
    return 0.0


def coerce_strategy(strategy: Any) -> RevenueShareStrategy:
    if isinstance(strategy, RevenueShareStrategy):
        return strategy
    try:
        return RevenueShareStrategy(str(strategy).lower())
    except ValueError:
        raise InvalidInputError(f"Unknown revenue share strategy: {strategy!r}")


def discount_factor(rate_percent: float, period: int) -> float:
    """1 / (1 + r)^t, rejecting rate/period pairs that leave the float range."""
    try:
        factor = 1.0 / math.pow(1.0 + rate_percent / 100.0, period)
    except (OverflowError, ZeroDivisionError):
        raise InvalidInputError(
            f"discount_rate_percent {rate_percent} is out of range over {period} years"
        )
    if not math.isfinite(factor) or factor == 0.0:
        raise InvalidInputError(
            f"discount_rate_percent {rate_percent} is out of range over {period} years"
        )
    return factor


def _validate_rate(discount_rate_percent: Any) -> float:
    rate = parse_number(discount_rate_percent, "discount_rate_percent")
    if rate <= -100.0:
        raise InvalidInputError("discount_rate_percent must be greater than -100")
    return rate


def compute_npv(annual_cash_flow: float, discount_rate_percent: float, years: int) -> float:
    """Present value of a level annual cash flow received at the end of each year."""
    cash_flow = parse_number(annual_cash_flow, "annual_cash_flow")
    rate = _validate_rate(discount_rate_percent)
    horizon = parse_horizon(years, "years")
    if rate == 0:
        return cash_flow * horizon
    npv = 0.0
    for t in range(1, horizon + 1):
        npv += cash_flow * discount_factor(rate, t)
    if not math.isfinite(npv):
        raise InvalidInputError("npv is not finite for these inputs")
    return npv


def compute_revenue_share_npv(
    annual_revenue: float,
    revenue_share_percent: float,
    discount_rate_percent: float,
    years: int,
    strategy: RevenueShareStrategy = RevenueShareStrategy.NPV_OF_SHARE,
) -> float:
    """NPV attributable to the token holder pool under the chosen ordering."""
    share = parse_number(revenue_share_percent, "revenue_share_percent") / 100.0
    strategy = coerce_strategy(strategy)
    if strategy == RevenueShareStrategy.SHARE_OF_NPV:
        return share * compute_npv(annual_revenue, discount_rate_percent, years)
    return compute_npv(annual_revenue * share, discount_rate_percent, years)


def recommend_offer(npv: float, offer_factor_percent: float) -> float:
    return parse_number(npv, "npv") * (parse_number(offer_factor_percent, "offer_factor_percent") / 100.0)


def build_scenarios(
    npv: float,
    offer_factor_percent: float,
    band_percent: float = SCENARIO_BAND_PERCENT,
) -> Dict[str, Dict[str, float]]:
    """High/medium/low NPV fan-out around the base NPV with matching offers."""
    band = parse_number(band_percent, "scenario_band_percent") / 100.0
    if band < 0 or band >= 1:
        raise InvalidInputError("scenario_band_percent must be in [0, 100)")
    scenarios: Dict[str, Dict[str, float]] = {}
    for name, multiplier in (("high", 1.0 + band), ("medium", 1.0), ("low", 1.0 - band)):
        scenario_npv = npv * multiplier
        scenarios[name] = {
            "npv": scenario_npv,
            "offer": recommend_offer(scenario_npv, offer_factor_percent),
        }
    return scenarios


def build_cash_flow_schedule(annual_cash_flow: float, discount_rate_percent: float, years: int):
    """Year-by-year discounted cash flows with a running cumulative present value."""
    cash_flow = parse_number(annual_cash_flow, "annual_cash_flow")
    rate = _validate_rate(discount_rate_percent)
    horizon = parse_horizon(years, "years")
    schedule = pd.DataFrame({"year": list(range(1, horizon + 1))})
    schedule["cash_flow"] = cash_flow
    schedule["discount_factor"] = [discount_factor(rate, t) for t in range(1, horizon + 1)]
    schedule["pv_cash_flow"] = schedule["cash_flow"] * schedule["discount_factor"]
    schedule["cumulative_pv"] = schedule["pv_cash_flow"].cumsum()
    return schedule


def run_offer_model(inputs: ValuationInput) -> ValuationResult:
    """Estimate revenue, discount the holder pool cash flow and size the offer."""
    revenue = estimate_revenue(
        inputs.manual_revenue,
        inputs.use_public_data,
        inputs.audience_metrics,
        inputs.conversion_factor,
    )
    share_percent = validate_revenue_share_percent(inputs.revenue_share_percent)
    annual_cash_flow = revenue * (share_percent / 100.0)
    npv = compute_revenue_share_npv(
        revenue,
        share_percent,
        inputs.discount_rate_percent,
        inputs.time_horizon_years,
        inputs.revenue_share_strategy,
    )
    offer = recommend_offer(npv, inputs.offer_factor_percent)
    result = ValuationResult(
        estimated_annual_revenue=revenue,
        annual_cash_flow=annual_cash_flow,
        npv=npv,
        recommended_offer=offer,
        scenarios=build_scenarios(npv, inputs.offer_factor_percent, inputs.scenario_band_percent),
    )
    if inputs.total_supply is not None:
        supply = parse_number(inputs.total_supply, "total_supply")
        if supply <= 0:
            raise InvalidInputError("total_supply must be greater than 0")
        result.recommended_supply = supply
        result.recommended_token_price = npv / supply
        result.percent_revenue_share_per_token = share_percent / supply
    logger.debug(
        "Offer model: revenue=%.2f cash_flow=%.2f npv=%.2f offer=%.2f",
        revenue,
        annual_cash_flow,
        npv,
        offer,
    )
    return result

