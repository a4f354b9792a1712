from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .cost_of_capital import (
    DEFAULT_DEBT_COST,
    DEFAULT_DEBT_RATIO,
    DEFAULT_EQUITY_RISK_PREMIUM,
    DEFAULT_INDUSTRY_RISK_PREMIUM,
    DEFAULT_RISK_FREE_RATE,
    DiscountInput,
    DiscountMode,
)
from .monte_carlo import DEFAULT_DISCOUNT_STD_DEV_PERCENT, DEFAULT_REVENUE_STD_DEV_PERCENT
from .sensitivity import DEFAULT_SHIFT_PERCENT
from .valuation_engine import SCENARIO_BAND_PERCENT, AudienceMetric, RevenueShareStrategy, ValuationInput


class PlatformMetric(BaseModel):
    """Audience numbers for one social platform."""

    followers: float = Field(..., description="Follower count")
    engagement_rate: float = Field(..., description="Engagement rate as a percentage, e.g. 5 for 5%")
    weight: Optional[float] = Field(None, description="Relative platform weight (defaults to 1)")

    model_config = ConfigDict(extra="allow")


class DiscountRequest(BaseModel):
    """Discount rate components. All rates are percents."""

    mode: DiscountMode = Field(DiscountMode.FLAT, description="flat, capm or capm_debt_weighted")
    flat_rate: Optional[float] = Field(None, description="Flat rate, also the base rate of the debt-weighted blend")
    risk_free_rate: float = Field(DEFAULT_RISK_FREE_RATE, description="Risk-free rate")
    equity_risk_premium: float = Field(DEFAULT_EQUITY_RISK_PREMIUM, description="Equity risk premium")
    industry_risk_premium: float = Field(DEFAULT_INDUSTRY_RISK_PREMIUM, description="Industry risk premium")
    debt_cost: float = Field(DEFAULT_DEBT_COST, description="Pre-tax cost of debt")
    debt_ratio: float = Field(DEFAULT_DEBT_RATIO, description="Debt share of capital (0-100)")

    def to_discount_input(self, fallback_rate: Optional[float] = None) -> DiscountInput:
        return DiscountInput(
            mode=self.mode,
            flat_rate=self.flat_rate if self.flat_rate is not None else fallback_rate,
            risk_free_rate=self.risk_free_rate,
            equity_risk_premium=self.equity_risk_premium,
            industry_risk_premium=self.industry_risk_premium,
            debt_cost=self.debt_cost,
            debt_ratio=self.debt_ratio,
        )


class SimulateRequest(BaseModel):
    """Request body for the offer modeling simulation."""

    # Strings are accepted so malformed form input is rejected by the engine
    # with a 400 rather than silently coerced.
    manual_revenue: Optional[Union[float, str]] = Field(None, description="Annual revenue; overrides public data")
    use_public_data: bool = Field(False, description="Derive revenue from platform metrics")
    platforms: Optional[List[PlatformMetric]] = Field(None, description="Per-platform audience metrics")
    conversion_factor: float = Field(0.005, description="Revenue per effective follower per year")
    discount_rate: float = Field(10.0, description="Annual discount rate (percent)")
    time_horizon: int = Field(5, description="Projection horizon in years")
    offer_factor: float = Field(50.0, description="Share of NPV offered upfront (percent)")
    revenue_share_percent: float = Field(10.0, description="Revenue share assigned to token holders (percent)")
    total_supply: Optional[float] = Field(None, description="Token supply, enables per-token outputs")
    revenue_share_strategy: RevenueShareStrategy = Field(
        RevenueShareStrategy.NPV_OF_SHARE, description="npv_of_share or share_of_npv"
    )
    scenario_band_percent: float = Field(SCENARIO_BAND_PERCENT, description="High/low scenario band (percent)")
    discount: Optional[DiscountRequest] = Field(None, description="Resolve the discount rate from components")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "manual_revenue": 100000,
                "use_public_data": False,
                "platforms": [],
                "conversion_factor": 0.005,
                "discount_rate": 10,
                "time_horizon": 5,
                "offer_factor": 50,
                "revenue_share_percent": 10,
            }
        }
    )

    def to_valuation_input(self, discount_rate_percent: Optional[float] = None) -> ValuationInput:
        metrics = None
        if self.platforms:
            metrics = tuple(
                AudienceMetric(
                    followers=platform.followers,
                    engagement_rate_percent=platform.engagement_rate,
                    weight=platform.weight,
                )
                for platform in self.platforms
            )
        return ValuationInput(
            manual_revenue=self.manual_revenue,
            use_public_data=self.use_public_data,
            audience_metrics=metrics,
            conversion_factor=self.conversion_factor,
            revenue_share_percent=self.revenue_share_percent,
            discount_rate_percent=self.discount_rate if discount_rate_percent is None else discount_rate_percent,
            time_horizon_years=self.time_horizon,
            offer_factor_percent=self.offer_factor,
            total_supply=self.total_supply,
            revenue_share_strategy=self.revenue_share_strategy,
            scenario_band_percent=self.scenario_band_percent,
        )


class IssuanceRequest(BaseModel):
    npv_rev_share: float = Field(..., description="NPV of the revenue share pool")
    target_unit_value: float = Field(..., description="NPV each token should represent")
    offering_premium_percent: float = Field(0.0, description="Premium over unit value (percent)")


class BreakEvenRequest(BaseModel):
    upfront_offer: float = Field(..., description="Upfront payment to recover")
    annual_cash_flow: float = Field(..., description="Annual cash flow to the holder pool")
    discount_rate: float = Field(10.0, description="Annual discount rate (percent)")
    max_years: int = Field(20, description="Longest horizon to search")
    supply: Optional[float] = Field(None, description="Token supply, enables break-even token count")


class MonteCarloRequest(BaseModel):
    inputs: SimulateRequest = Field(..., description="Base offer model inputs")
    iterations: Optional[int] = Field(None, description="Number of samples")
    seed: int = Field(42, description="Random seed")
    discount_rate_std_dev_percent: float = Field(DEFAULT_DISCOUNT_STD_DEV_PERCENT, description="Rate noise (points)")
    revenue_std_dev_percent: float = Field(DEFAULT_REVENUE_STD_DEV_PERCENT, description="Revenue noise (percent)")
    include_samples: bool = Field(False, description="Return raw samples")


class SensitivityRequest(BaseModel):
    inputs: SimulateRequest = Field(..., description="Base offer model inputs")
    shift_percent: float = Field(DEFAULT_SHIFT_PERCENT, description="Up/down move applied to each driver")


class SessionRequest(BaseModel):
    session: Dict[str, Any] = Field(..., description="Serialized valuation session")
    next_stage: Optional[str] = Field(None, description="Stage to advance to after evaluation")


class PricingRequest(BaseModel):
    supply: float = Field(..., description="Total token supply")
    base_price: float = Field(..., description="Base token price")
    market_factor: float = Field(1.0, description="Market adjustment multiplier on the base price")
