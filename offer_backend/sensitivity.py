import logging
from dataclasses import replace
from typing import Any, Dict, List, Tuple

from .valuation_engine import (
    MAX_HORIZON_YEARS,
    InvalidInputError,
    ValuationInput,
    estimate_revenue,
    has_manual_revenue,
    parse_number,
    parse_horizon,
    run_offer_model,
    validate_revenue_share_percent,
)

logger = logging.getLogger(__name__)

DEFAULT_SHIFT_PERCENT = 10.0


def _revenue_of(inputs: ValuationInput) -> float:
    return estimate_revenue(inputs.manual_revenue, inputs.use_public_data, inputs.audience_metrics, inputs.conversion_factor)


def _revenue_variants(base: ValuationInput, factor_low: float, factor_high: float) -> Tuple[ValuationInput, ValuationInput]:
    # Scale whichever input actually drives revenue.
    if has_manual_revenue(base.manual_revenue):
        manual = parse_number(base.manual_revenue, "manual_revenue")
        return (
            replace(base, manual_revenue=manual * factor_low),
            replace(base, manual_revenue=manual * factor_high),
        )
    factor = parse_number(base.conversion_factor, "conversion_factor")
    return (
        replace(base, conversion_factor=factor * factor_low),
        replace(base, conversion_factor=factor * factor_high),
    )


def _build_variants(base: ValuationInput, shift: float) -> List[Tuple[str, ValuationInput, ValuationInput, Any, Any]]:
    factor_low = 1.0 - shift
    factor_high = 1.0 + shift
    variants = []

    rate = parse_number(base.discount_rate_percent, "discount_rate_percent")
    variants.append(
        (
            "discount_rate_percent",
            replace(base, discount_rate_percent=rate * factor_low),
            replace(base, discount_rate_percent=rate * factor_high),
            rate * factor_low,
            rate * factor_high,
        )
    )

    share = parse_number(base.revenue_share_percent, "revenue_share_percent")
    share_low = share * factor_low
    share_high = min(100.0, share * factor_high)
    variants.append(
        (
            "revenue_share_percent",
            replace(base, revenue_share_percent=share_low),
            replace(base, revenue_share_percent=share_high),
            share_low,
            share_high,
        )
    )

    revenue_low, revenue_high = _revenue_variants(base, factor_low, factor_high)
    variants.append(("estimated_revenue", revenue_low, revenue_high, _revenue_of(revenue_low), _revenue_of(revenue_high)))

    years = parse_horizon(base.time_horizon_years, "time_horizon_years")
    step = max(1, int(round(years * shift)))
    years_low = max(1, years - step)
    years_high = min(MAX_HORIZON_YEARS, years + step)
    variants.append(
        (
            "time_horizon_years",
            replace(base, time_horizon_years=years_low),
            replace(base, time_horizon_years=years_high),
            years_low,
            years_high,
        )
    )
    return variants


def run_sensitivity(base_input: ValuationInput, shift_percent: float = DEFAULT_SHIFT_PERCENT) -> Dict[str, Any]:
    """
    One-at-a-time NPV sensitivity: move each driver down and up by
    ``shift_percent`` while holding the rest at base, ranked by NPV swing.
    """
    shift_value = parse_number(shift_percent, "shift_percent")
    if shift_value <= 0 or shift_value >= 100:
        raise InvalidInputError("shift_percent must be between 0 and 100 (exclusive)")
    shift = shift_value / 100.0
    validate_revenue_share_percent(base_input.revenue_share_percent)

    base_npv = run_offer_model(base_input).npv
    rows: List[Dict[str, Any]] = []
    for name, low_input, high_input, low_value, high_value in _build_variants(base_input, shift):
        logger.debug("Sensitivity: %s low=%s high=%s", name, low_value, high_value)
        low_npv = run_offer_model(low_input).npv
        high_npv = run_offer_model(high_input).npv
        rows.append(
            {
                "parameter": name,
                "low_value": low_value,
                "high_value": high_value,
                "low_npv": low_npv,
                "high_npv": high_npv,
                "delta": high_npv - low_npv,
            }
        )
    rows.sort(key=lambda row: abs(row["delta"]), reverse=True)
    return {"base_npv": base_npv, "shift_percent": shift_value, "rows": rows}
