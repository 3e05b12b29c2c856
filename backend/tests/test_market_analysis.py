"""Tests for the market analysis estimator with and without an LLM client."""
from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from types import SimpleNamespace

os.environ["OPENAI_API_KEY"] = ""
os.environ["OPENAI_BASE_URL"] = ""

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from truckflow.core.config import Settings  # noqa: E402
from truckflow.models.fleet import Load  # noqa: E402
from truckflow.models.negotiation import DemandLevel  # noqa: E402
from truckflow.services.market_analysis import (  # noqa: E402
    DEFAULT_ANALYSIS,
    DEFAULT_RISK_FACTORS,
    DEFAULT_SELLING_POINTS,
    MarketAnalysisEstimator,
    build_llm_client,
)


def _load(rate: float = 1000.0) -> Load:
    return Load(
        id=1,
        external_id="TS-5621",
        origin="Atlanta, GA",
        destination="Miami, FL",
        miles=500,
        rate=rate,
        equipment_type="Reefer",
    )


def _fake_client(content=None, error: Exception | None = None):
    calls = []

    async def create(**kwargs):
        calls.append(kwargs)
        if error is not None:
            raise error
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return client, calls


def test_heuristic_analysis_without_client():
    estimator = MarketAnalysisEstimator(client=None)
    analysis = asyncio.run(estimator.analyze(_load()))

    assert estimator.provider == "heuristic"
    assert analysis.current_market_rate == 1000
    assert analysis.rate_per_mile == 2.0
    assert analysis.confidence == 75
    assert analysis.market_conditions.fuel_price == 3.50
    assert analysis.market_conditions.demand_level == DemandLevel.MEDIUM
    assert analysis.market_conditions.seasonal_factor == 1.0
    assert analysis.market_conditions.route_difficulty == 2
    assert analysis.competitor_rates.min == 900
    assert analysis.competitor_rates.max == 1200
    assert analysis.competitor_rates.average == 1000
    assert analysis.negotiation_strategy.initial_offer == 1100
    assert analysis.negotiation_strategy.fallback_rates == [1050.0, 1030.0, 1010.0]
    assert analysis.negotiation_strategy.key_selling_points == DEFAULT_SELLING_POINTS
    assert analysis.negotiation_strategy.risk_factors == DEFAULT_RISK_FACTORS
    assert analysis.analysis == DEFAULT_ANALYSIS


def test_llm_payload_is_parsed_and_merged_with_defaults():
    payload = {
        "currentMarketRate": 1180,
        "ratePerMile": 2.36,
        "confidence": 88,
        "marketConditions": {"fuelPrice": 3.9, "demandLevel": "HIGH", "seasonalFactor": 1.1},
        "competitorRates": {"min": 950, "max": 1300, "average": 1120, "samples": 14},
        "negotiationStrategy": {
            "initialOffer": 1250,
            "fallbackRates": [1150, 1210, "n/a", 1100],
            "keySellingPoints": ["Team drivers available"],
        },
        "analysis": "Produce season is tightening reefer capacity",
    }
    client, calls = _fake_client(json.dumps(payload))
    estimator = MarketAnalysisEstimator(client=client, model="gpt-4o-mini")

    analysis = asyncio.run(estimator.analyze(_load()))

    assert estimator.provider == "openai"
    assert calls[0]["model"] == "gpt-4o-mini"
    assert calls[0]["response_format"] == {"type": "json_object"}
    assert "Atlanta, GA to Miami, FL" in calls[0]["messages"][1]["content"]

    assert analysis.current_market_rate == 1180
    assert analysis.confidence == 88
    assert analysis.market_conditions.demand_level == DemandLevel.HIGH
    assert analysis.market_conditions.route_difficulty == 2
    assert analysis.competitor_rates.samples == 14
    assert analysis.negotiation_strategy.initial_offer == 1250
    assert analysis.negotiation_strategy.fallback_rates == [1210.0, 1150.0, 1100.0]
    assert analysis.negotiation_strategy.key_selling_points == ["Team drivers available"]
    assert analysis.negotiation_strategy.risk_factors == DEFAULT_RISK_FACTORS
    assert analysis.analysis == "Produce season is tightening reefer capacity"


def test_confidence_is_clamped_and_bad_demand_falls_back():
    load = _load()
    analysis = MarketAnalysisEstimator.from_payload(
        load, {"confidence": 250, "marketConditions": {"demandLevel": "extreme"}}
    )
    assert analysis.confidence == 100
    assert analysis.market_conditions.demand_level == DemandLevel.MEDIUM


def test_confidence_below_zero_clamps_and_blank_values_default():
    load = _load()
    assert MarketAnalysisEstimator.from_payload(load, {"confidence": -5}).confidence == 0
    assert MarketAnalysisEstimator.from_payload(load, {"confidence": "62.5"}).confidence == 62.5
    for value in (0, None, "high", True):
        assert MarketAnalysisEstimator.from_payload(load, {"confidence": value}).confidence == 75


def test_fallback_rates_are_non_increasing():
    load = _load(rate=1733.0)
    analysis = MarketAnalysisEstimator.from_payload(
        load, {"negotiationStrategy": {"fallbackRates": [1800, 1900.5, 1750, -5]}}
    )
    rates = analysis.negotiation_strategy.fallback_rates
    assert rates == sorted(rates, reverse=True)
    assert rates == [1900.5, 1800.0, 1750.0]
    assert all(rate > 0 for rate in rates)


def test_llm_error_falls_back_to_heuristics():
    client, calls = _fake_client(error=RuntimeError("upstream timeout"))
    estimator = MarketAnalysisEstimator(client=client)

    analysis = asyncio.run(estimator.analyze(_load()))

    assert len(calls) == 1
    assert analysis.current_market_rate == 1000
    assert analysis.analysis == DEFAULT_ANALYSIS


def test_non_object_json_falls_back_to_heuristics():
    client, _ = _fake_client("[1, 2, 3]")
    analysis = asyncio.run(MarketAnalysisEstimator(client=client).analyze(_load()))
    assert analysis.confidence == 75


def test_rate_trend_defaults_without_client():
    trend = asyncio.run(MarketAnalysisEstimator().analyze_rate_trends("Dallas, TX", "Phoenix, AZ", 14))

    assert trend.days == 14
    assert trend.average_rate == 2.50
    assert trend.trend == "stable"
    assert trend.volatility == 0.1
    assert trend.prediction == 2.50
    assert trend.factors == []


def test_rate_trend_from_llm():
    client, _ = _fake_client(
        json.dumps(
            {
                "averageRate": 2.71,
                "trend": "increasing",
                "volatility": 3,
                "prediction": 2.9,
                "factors": ["Holiday retail surge"],
            }
        )
    )
    trend = asyncio.run(MarketAnalysisEstimator(client=client).analyze_rate_trends("Chicago, IL", "Detroit, MI"))

    assert trend.average_rate == 2.71
    assert trend.trend == "increasing"
    assert trend.volatility == 1.0
    assert trend.factors == ["Holiday retail surge"]


def test_build_llm_client_requires_key_or_local_endpoint():
    assert build_llm_client(Settings(openai_api_key="", openai_base_url=None)) is None
    assert build_llm_client(Settings(openai_api_key="sk-your-key-here", openai_base_url=None)) is None

    client = build_llm_client(Settings(openai_api_key="", openai_base_url="http://localhost:11434/v1"))
    assert client is not None
