import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .valuation_engine import InvalidInputError, parse_number

DEFAULT_RISK_FREE_RATE = 3.0
DEFAULT_EQUITY_RISK_PREMIUM = 5.0
DEFAULT_INDUSTRY_RISK_PREMIUM = 2.5
DEFAULT_DEBT_COST = 4.0
DEFAULT_DEBT_RATIO = 30.0


class DiscountMode(str, Enum):
    FLAT = "flat"
    CAPM = "capm"
    CAPM_DEBT_WEIGHTED = "capm_debt_weighted"


@dataclass(frozen=True)
class DiscountInput:
    """Components for resolving an annual discount rate. All rates are percents."""

    mode: DiscountMode = DiscountMode.FLAT
    flat_rate: Optional[float] = None
    risk_free_rate: Optional[float] = None
    equity_risk_premium: Optional[float] = None
    industry_risk_premium: Optional[float] = None
    debt_cost: Optional[float] = None
    debt_ratio: Optional[float] = None


def _require(value: Optional[float], name: str) -> float:
    if value is None:
        raise InvalidInputError(f"{name} is required for this discount mode")
    return parse_number(value, name)


def _coerce_mode(mode) -> DiscountMode:
    if isinstance(mode, DiscountMode):
        return mode
    try:
        return DiscountMode(str(mode).lower())
    except ValueError:
        raise InvalidInputError(f"Unknown discount mode: {mode!r}")


def compute_capm_rate(risk_free_rate: float, equity_risk_premium: float, industry_risk_premium: float) -> float:
    """Build-up CAPM rate: risk-free plus equity and industry premiums."""
    return risk_free_rate + equity_risk_premium + industry_risk_premium


def compute_debt_weighted_rate(
    base_rate: float,
    debt_cost: float,
    debt_ratio: float,
    industry_risk_premium: float,
) -> float:
    """
    Blend the equity-side base rate with the cost of debt by capital structure,
    then add the industry premium on top (WACC-style).
    """
    if not math.isfinite(debt_ratio) or debt_ratio < 0 or debt_ratio > 100:
        raise InvalidInputError("debt_ratio must be between 0 and 100")
    equity_weight = (100.0 - debt_ratio) / 100.0
    debt_weight = debt_ratio / 100.0
    return equity_weight * base_rate + debt_weight * debt_cost + industry_risk_premium


def resolve_discount_rate(discount: DiscountInput) -> float:
    """Resolve the annual discount rate (percent) for the requested mode."""
    mode = _coerce_mode(discount.mode)
    if mode == DiscountMode.FLAT:
        return _require(discount.flat_rate, "flat_rate")
    if mode == DiscountMode.CAPM:
        return compute_capm_rate(
            _require(discount.risk_free_rate, "risk_free_rate"),
            _require(discount.equity_risk_premium, "equity_risk_premium"),
            _require(discount.industry_risk_premium, "industry_risk_premium"),
        )
    return compute_debt_weighted_rate(
        _require(discount.flat_rate, "flat_rate"),
        _require(discount.debt_cost, "debt_cost"),
        _require(discount.debt_ratio, "debt_ratio"),
        _require(discount.industry_risk_premium, "industry_risk_premium"),
    )
