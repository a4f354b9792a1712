import asyncio
import unittest
from unittest.mock import patch

from fastapi import HTTPException
from fastapi.testclient import TestClient

from offer_backend import main as backend_main
from offer_backend.schemas import (
    BreakEvenRequest,
    DiscountRequest,
    IssuanceRequest,
    MonteCarloRequest,
    SensitivityRequest,
    SimulateRequest,
)
from offer_backend.session import ValuationSession
from offer_backend.valuation_engine import ValuationInput


def _simulate_body(**overrides):
    body = {
        "manual_revenue": 100000,
        "use_public_data": False,
        "platforms": [],
        "conversion_factor": 0.005,
        "discount_rate": 10,
        "time_horizon": 5,
        "offer_factor": 50,
        "revenue_share_percent": 10,
    }
    body.update(overrides)
    return body


class SimulateEndpointTests(unittest.TestCase):
    def test_simulate_preserves_response_shape(self):
        payload = asyncio.run(backend_main.simulate_offer(SimulateRequest(**_simulate_body())))
        for key in ["estimated_revenue", "annual_cash_flow", "npv", "recommended_offer", "scenarios"]:
            self.assertIn(key, payload)
        self.assertAlmostEqual(payload["annual_cash_flow"], 10000, places=6)
        self.assertAlmostEqual(payload["npv"], 37907.87, places=2)
        self.assertAlmostEqual(payload["recommended_offer"], payload["npv"] * 0.5, places=9)
        self.assertAlmostEqual(payload["recommended_offer"], 18953.93, delta=0.01)
        self.assertAlmostEqual(payload["scenarios"]["high"]["npv"], payload["npv"] * 1.1, places=6)
        self.assertAlmostEqual(payload["scenarios"]["low"]["offer"], payload["recommended_offer"] * 0.9, places=6)
        self.assertEqual(payload["discount_rate_used"], 10)
        self.assertNotIn("recommended_token_price", payload)

    def test_simulate_with_public_data(self):
        body = _simulate_body(
            manual_revenue=None,
            use_public_data=True,
            platforms=[{"name": "youtube", "followers": 1000000, "engagement_rate": 5, "weight": 1}],
        )
        payload = asyncio.run(backend_main.simulate_offer(SimulateRequest(**body)))
        self.assertAlmostEqual(payload["estimated_revenue"], 250.0, places=9)

    def test_simulate_with_capm_discount(self):
        body = _simulate_body(
            discount={"mode": "capm", "risk_free_rate": 3, "equity_risk_premium": 5, "industry_risk_premium": 2.5}
        )
        payload = asyncio.run(backend_main.simulate_offer(SimulateRequest(**body)))
        self.assertAlmostEqual(payload["discount_rate_used"], 10.5, places=9)

    def test_simulate_rejects_non_numeric_revenue(self):
        with self.assertRaises(HTTPException) as ctx:
            asyncio.run(backend_main.simulate_offer(SimulateRequest(**_simulate_body(manual_revenue="lots"))))
        self.assertEqual(ctx.exception.status_code, 400)

    def test_simulate_with_supply_adds_token_fields(self):
        payload = asyncio.run(backend_main.simulate_offer(SimulateRequest(**_simulate_body(total_supply=1000000))))
        self.assertIn("recommended_token_price", payload)
        self.assertEqual(payload["recommended_supply"], 1000000)


class TokenomicsEndpointTests(unittest.TestCase):
    def test_discount_rate_endpoint(self):
        payload = asyncio.run(
            backend_main.resolve_discount(DiscountRequest(mode="capm_debt_weighted", flat_rate=10))
        )
        self.assertEqual(payload["mode"], "capm_debt_weighted")
        self.assertAlmostEqual(payload["discount_rate"], 0.7 * 10 + 0.3 * 4 + 2.5, places=9)

    def test_issuance_endpoint(self):
        payload = asyncio.run(
            backend_main.token_issuance(IssuanceRequest(npv_rev_share=50000, target_unit_value=10, offering_premium_percent=20))
        )
        self.assertAlmostEqual(payload["recommended_supply"], 5000)
        self.assertAlmostEqual(payload["token_sale_revenue"], 60000)

    def test_issuance_rejects_zero_unit_value(self):
        with self.assertRaises(HTTPException) as ctx:
            asyncio.run(backend_main.token_issuance(IssuanceRequest(npv_rev_share=50000, target_unit_value=0)))
        self.assertEqual(ctx.exception.status_code, 400)

    def test_pricing_endpoint(self):
        payload = asyncio.run(
            backend_main.token_pricing(backend_main.PricingRequest(supply=1000000, base_price=100, market_factor=1.2))
        )
        self.assertAlmostEqual(payload["optimized_price"], 120)
        self.assertAlmostEqual(payload["total_funds_raised"], 120000000)

    def test_break_even_endpoint(self):
        payload = asyncio.run(
            backend_main.break_even(
                BreakEvenRequest(upfront_offer=50000, annual_cash_flow=10000, discount_rate=0, max_years=10, supply=100)
            )
        )
        self.assertEqual(payload["break_even_year"], 5)
        self.assertAlmostEqual(payload["break_even_tokens"], 500)
        self.assertEqual(len(payload["schedule"]), 10)
        self.assertEqual(payload["schedule"][4]["cumulative_pv"], 50000)
        self.assertEqual(payload["npv"], 100000)

    def test_break_even_not_reached(self):
        payload = asyncio.run(
            backend_main.break_even(
                BreakEvenRequest(upfront_offer=1e9, annual_cash_flow=10000, discount_rate=10, max_years=5)
            )
        )
        self.assertIsNone(payload["break_even_year"])
        self.assertIsNone(payload["break_even_tokens"])

    def test_monte_carlo_endpoint_is_seeded(self):
        request = MonteCarloRequest(inputs=SimulateRequest(**_simulate_body()), iterations=200, seed=5, include_samples=True)
        first = asyncio.run(backend_main.monte_carlo(request))
        second = asyncio.run(backend_main.monte_carlo(request))
        self.assertEqual(first["samples"], second["samples"])
        self.assertEqual(first["iterations"], 200)
        self.assertEqual(sum(first["histogram"]), 200)
        for key in ["mean", "median", "variance", "seed"]:
            self.assertIn(key, first)

    def test_monte_carlo_iteration_cap(self):
        request = MonteCarloRequest(inputs=SimulateRequest(**_simulate_body()), iterations=50)
        with patch.object(backend_main, "MONTE_CARLO_MAX_ITERATIONS", 10):
            with self.assertRaises(HTTPException) as ctx:
                asyncio.run(backend_main.monte_carlo(request))
        self.assertEqual(ctx.exception.status_code, 400)

    def test_monte_carlo_rejects_zero_iterations(self):
        request = MonteCarloRequest(inputs=SimulateRequest(**_simulate_body()), iterations=0)
        with self.assertRaises(HTTPException) as ctx:
            asyncio.run(backend_main.monte_carlo(request))
        self.assertEqual(ctx.exception.status_code, 400)

    def test_sensitivity_endpoint(self):
        payload = asyncio.run(backend_main.sensitivity(SensitivityRequest(inputs=SimulateRequest(**_simulate_body()))))
        self.assertEqual(len(payload["rows"]), 4)
        self.assertIn("base_npv", payload)


class CleanNumberTests(unittest.TestCase):
    def test_unconvertible_values_become_none(self):
        for value in ("abc", object(), 10 ** 400, float("nan"), float("inf"), None):
            self.assertIsNone(backend_main._clean_number(value))
        self.assertEqual(backend_main._clean_number("2.5"), 2.5)


class HttpClientTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(backend_main.app)

    def test_root(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("message", response.json())

    def test_simulate_over_http(self):
        response = self.client.post("/api/offer-modeling/simulate", json=_simulate_body(manual_revenue="100000"))
        self.assertEqual(response.status_code, 200)
        self.assertAlmostEqual(response.json()["npv"], 37907.87, places=2)

    def test_invalid_horizon_is_400(self):
        response = self.client.post("/api/offer-modeling/simulate", json=_simulate_body(time_horizon=0))
        self.assertEqual(response.status_code, 400)
        self.assertIn("years", response.json()["detail"])

    def test_horizon_above_cap_is_400(self):
        response = self.client.post("/api/offer-modeling/simulate", json=_simulate_body(time_horizon=8000))
        self.assertEqual(response.status_code, 400)
        response = self.client.post(
            "/api/tokenomics/break-even",
            json={"upfront_offer": 1e300, "annual_cash_flow": 1, "discount_rate": 10, "max_years": 8000},
        )
        self.assertEqual(response.status_code, 400)

    def test_extreme_discount_rate_is_400(self):
        response = self.client.post(
            "/api/offer-modeling/simulate", json=_simulate_body(discount_rate=-99.99, time_horizon=100)
        )
        self.assertEqual(response.status_code, 400)

    def test_monte_carlo_share_out_of_range_is_400(self):
        body = {"inputs": _simulate_body(revenue_share_percent=150), "iterations": 5}
        response = self.client.post("/api/tokenomics/monte-carlo", json=body)
        self.assertEqual(response.status_code, 400)
        self.assertIn("revenue_share_percent", response.json()["detail"])

    def test_wrong_type_is_422(self):
        response = self.client.post("/api/offer-modeling/simulate", json=_simulate_body(time_horizon="soon"))
        self.assertEqual(response.status_code, 422)

    def test_session_evaluate_and_advance(self):
        session = ValuationSession(inputs=ValuationInput(manual_revenue=100000)).to_dict()
        response = self.client.post("/api/sessions/evaluate", json={"session": session, "next_stage": "tokenomics"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["stage"], "tokenomics")
        self.assertAlmostEqual(body["result"]["npv"], 37907.87, places=2)

    def test_session_unknown_stage_is_400(self):
        session = ValuationSession(inputs=ValuationInput(manual_revenue=100000)).to_dict()
        response = self.client.post("/api/sessions/evaluate", json={"session": session, "next_stage": "launch"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Unknown session stage: launch")

    def test_session_with_non_object_notes_is_400(self):
        session = ValuationSession(inputs=ValuationInput(manual_revenue=100000)).to_dict()
        session["notes"] = 5
        response = self.client.post("/api/sessions/evaluate", json={"session": session})
        self.assertEqual(response.status_code, 400)
        self.assertIn("notes", response.json()["detail"])

    def test_session_with_non_object_inputs_is_400(self):
        response = self.client.post(
            "/api/sessions/evaluate", json={"session": {"schema_version": "1.0", "inputs": "abc"}}
        )
        self.assertEqual(response.status_code, 400)
        detail = response.json()["detail"]
        self.assertIn("inputs", detail)
        self.assertNotIn("Unknown session stage", detail)


if __name__ == "__main__":
    unittest.main()
