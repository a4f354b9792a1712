import logging
import math
import os
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .cost_of_capital import resolve_discount_rate
from .monte_carlo import Perturbation, run_monte_carlo, seeded_rng
from .schemas import (
    BreakEvenRequest,
    DiscountRequest,
    IssuanceRequest,
    MonteCarloRequest,
    PricingRequest,
    SensitivityRequest,
    SessionRequest,
    SimulateRequest,
)
from .sensitivity import run_sensitivity
from .session import SessionStage, ValuationSession
from .tokenomics import (
    compute_break_even_tokens,
    compute_break_even_year,
    estimate_yield_percent,
    optimize_token_price,
    size_token_issuance,
    total_funds_raised,
)
from .valuation_engine import InvalidInputError, ValuationInput, build_cash_flow_schedule, run_offer_model

logger = logging.getLogger(__name__)

ALLOWED_ORIGINS = os.environ.get(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000",
)
MONTE_CARLO_MAX_ITERATIONS = int(os.environ.get("MONTE_CARLO_MAX_ITERATIONS", "20000"))
MONTE_CARLO_DEFAULT_ITERATIONS = int(os.environ.get("MONTE_CARLO_DEFAULT_ITERATIONS", "1000"))


def _parse_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


app = FastAPI()

# Allow the React frontend to call this API
origins = _parse_origins(ALLOWED_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _clean_number(value: Any) -> Optional[float]:
    # NaN/inf are not valid JSON, so every float in a payload goes through this gate.
    if value is None:
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(numeric):
        return None
    return numeric


def sanitize_payload(payload: Any) -> Any:
    if isinstance(payload, dict):
        return {key: sanitize_payload(value) for key, value in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [sanitize_payload(value) for value in payload]
    if isinstance(payload, bool) or payload is None or isinstance(payload, (int, str)):
        return payload
    if isinstance(payload, float):
        return _clean_number(payload)
    return payload


def schedule_to_json_list(schedule: Optional[pd.DataFrame]) -> List[Dict[str, Any]]:
    """Convert a cash-flow schedule DataFrame into a list of per-year dicts."""
    out: List[Dict[str, Any]] = []
    if schedule is None or schedule.empty:
        return out
    for row in schedule.to_dict(orient="records"):
        out.append(
            {
                "year": int(row["year"]),
                "cash_flow": _clean_number(row["cash_flow"]),
                "discount_factor": _clean_number(row["discount_factor"]),
                "pv_cash_flow": _clean_number(row["pv_cash_flow"]),
                "cumulative_pv": _clean_number(row["cumulative_pv"]),
            }
        )
    return out


def _bad_request(exc: InvalidInputError, context: str) -> HTTPException:
    logger.warning("Rejected %s request: %s", context, exc)
    return HTTPException(status_code=400, detail=str(exc))


def _resolve_inputs(request: SimulateRequest) -> Tuple[ValuationInput, float]:
    discount_rate = request.discount_rate
    if request.discount is not None:
        discount_rate = resolve_discount_rate(request.discount.to_discount_input(request.discount_rate))
    return request.to_valuation_input(discount_rate), discount_rate


@app.get("/")
async def root():
    return {"message": "Offer modeling backend is running. POST to /api/offer-modeling/simulate."}


@app.post("/api/offer-modeling/simulate")
async def simulate_offer(request: SimulateRequest):
    try:
        inputs, discount_rate = _resolve_inputs(request)
        result = run_offer_model(inputs)
    except InvalidInputError as exc:
        raise _bad_request(exc, "simulate")
    payload = result.to_dict()
    payload["discount_rate_used"] = discount_rate
    return sanitize_payload(payload)


@app.post("/api/offer-modeling/discount-rate")
async def resolve_discount(request: DiscountRequest):
    try:
        rate = resolve_discount_rate(request.to_discount_input())
    except InvalidInputError as exc:
        raise _bad_request(exc, "discount-rate")
    return sanitize_payload({"mode": request.mode.value, "discount_rate": rate})


@app.post("/api/tokenomics/issuance")
async def token_issuance(request: IssuanceRequest):
    try:
        issuance = size_token_issuance(
            request.npv_rev_share,
            request.target_unit_value,
            request.offering_premium_percent,
        )
    except InvalidInputError as exc:
        raise _bad_request(exc, "issuance")
    return sanitize_payload(issuance.to_dict())


@app.post("/api/tokenomics/pricing")
async def token_pricing(request: PricingRequest):
    try:
        price = optimize_token_price(request.base_price, request.market_factor)
        funds = total_funds_raised(request.supply, price)
    except InvalidInputError as exc:
        raise _bad_request(exc, "pricing")
    return sanitize_payload({"optimized_price": price, "total_funds_raised": funds})


@app.post("/api/tokenomics/break-even")
async def break_even(request: BreakEvenRequest):
    try:
        year = compute_break_even_year(
            request.upfront_offer,
            request.annual_cash_flow,
            request.discount_rate,
            request.max_years,
        )
        schedule = build_cash_flow_schedule(request.annual_cash_flow, request.discount_rate, request.max_years)
        tokens = None
        if request.supply is not None:
            tokens = compute_break_even_tokens(request.upfront_offer, request.annual_cash_flow, request.supply)
        npv = float(schedule["cumulative_pv"].iloc[-1])
        yield_percent = estimate_yield_percent(request.annual_cash_flow, npv)
    except InvalidInputError as exc:
        raise _bad_request(exc, "break-even")
    return sanitize_payload(
        {
            "break_even_year": year,
            "break_even_tokens": tokens,
            "npv": npv,
            "yield_percent": yield_percent,
            "schedule": schedule_to_json_list(schedule),
        }
    )


@app.post("/api/tokenomics/monte-carlo")
async def monte_carlo(request: MonteCarloRequest):
    iterations = request.iterations if request.iterations is not None else MONTE_CARLO_DEFAULT_ITERATIONS
    if iterations > MONTE_CARLO_MAX_ITERATIONS:
        logger.warning("Monte Carlo request over the cap: %d > %d", iterations, MONTE_CARLO_MAX_ITERATIONS)
        raise HTTPException(
            status_code=400,
            detail=f"iterations must not exceed {MONTE_CARLO_MAX_ITERATIONS}",
        )
    try:
        inputs, _ = _resolve_inputs(request.inputs)
        result = run_monte_carlo(
            inputs,
            iterations,
            Perturbation(
                discount_rate_std_dev_percent=request.discount_rate_std_dev_percent,
                revenue_std_dev_percent=request.revenue_std_dev_percent,
            ),
            seeded_rng(request.seed),
        )
    except InvalidInputError as exc:
        raise _bad_request(exc, "monte-carlo")
    payload = result.to_dict(include_samples=request.include_samples)
    payload["seed"] = request.seed
    return sanitize_payload(payload)


@app.post("/api/tokenomics/sensitivity")
async def sensitivity(request: SensitivityRequest):
    try:
        inputs, _ = _resolve_inputs(request.inputs)
        report = run_sensitivity(inputs, request.shift_percent)
    except InvalidInputError as exc:
        raise _bad_request(exc, "sensitivity")
    return sanitize_payload(report)


@app.post("/api/sessions/evaluate")
async def evaluate_session(request: SessionRequest):
    next_stage = None
    if request.next_stage:
        try:
            next_stage = SessionStage(request.next_stage)
        except ValueError as exc:
            logger.warning("Rejected session stage %r: %s", request.next_stage, exc)
            raise HTTPException(status_code=400, detail=f"Unknown session stage: {request.next_stage}")
    try:
        session = ValuationSession.from_dict(request.session).evaluate()
    except InvalidInputError as exc:
        raise _bad_request(exc, "session")
    if next_stage is not None:
        session = session.advance(next_stage)
    return sanitize_payload(session.to_dict())
