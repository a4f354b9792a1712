import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from .valuation_engine import InvalidInputError, discount_factor, parse_horizon, parse_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenIssuance:
    recommended_supply: float
    recommended_token_price: float
    token_sale_revenue: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def size_token_issuance(
    npv_rev_share: float,
    target_unit_value: float,
    offering_premium_percent: float = 0.0,
) -> TokenIssuance:
    """
    Size a token issuance so each unit carries ``target_unit_value`` of the
    revenue-share NPV, priced at a premium over that unit value.
    """
    npv_value = parse_number(npv_rev_share, "npv_rev_share")
    unit_value = parse_number(target_unit_value, "target_unit_value")
    premium = parse_number(offering_premium_percent, "offering_premium_percent")
    if unit_value <= 0:
        raise InvalidInputError("target_unit_value must be greater than 0")
    supply = npv_value / unit_value
    price = unit_value * (1.0 + premium / 100.0)
    logger.debug("Token issuance: supply=%.4f price=%.4f", supply, price)
    return TokenIssuance(
        recommended_supply=supply,
        recommended_token_price=price,
        token_sale_revenue=supply * price,
    )


def compute_break_even_year(
    upfront_offer: float,
    annual_cash_flow: float,
    discount_rate_percent: float,
    max_years: int,
) -> Optional[int]:
    """First year whose cumulative discounted cash flow covers the upfront offer, else None."""
    offer = parse_number(upfront_offer, "upfront_offer")
    cash_flow = parse_number(annual_cash_flow, "annual_cash_flow")
    rate = parse_number(discount_rate_percent, "discount_rate_percent")
    horizon = parse_horizon(max_years, "max_years")
    if rate <= -100.0:
        raise InvalidInputError("discount_rate_percent must be greater than -100")
    cumulative = 0.0
    for year in range(1, horizon + 1):
        if rate == 0:
            cumulative += cash_flow
        else:
            cumulative += cash_flow * discount_factor(rate, year)
        if cumulative >= offer:
            return year
    return None


def optimize_token_price(base_price: float, market_factor: float = 1.0) -> float:
    return parse_number(base_price, "base_price") * parse_number(market_factor, "market_factor")


def total_funds_raised(supply: float, token_price: float) -> float:
    return parse_number(supply, "supply") * parse_number(token_price, "token_price")


def compute_break_even_tokens(upfront_offer: float, annual_cash_flow: float, supply: float) -> Optional[float]:
    """Number of tokens whose yearly cash flow adds up to the upfront offer."""
    offer = parse_number(upfront_offer, "upfront_offer")
    cash_flow = parse_number(annual_cash_flow, "annual_cash_flow")
    total_supply = parse_number(supply, "supply")
    if total_supply <= 0:
        raise InvalidInputError("supply must be greater than 0")
    per_token = cash_flow / total_supply
    if per_token == 0:
        return None
    return offer / per_token


def estimate_yield_percent(annual_cash_flow: float, npv: float) -> Optional[float]:
    """Annual cash flow as a percent of NPV, a rough return proxy for fans."""
    npv_value = parse_number(npv, "npv")
    if npv_value == 0:
        return None
    return parse_number(annual_cash_flow, "annual_cash_flow") / npv_value * 100.0
