"""
Market Analysis Estimator

Builds a market-rate estimate for a load. When an OpenAI-compatible chat
endpoint is configured the load is described to a "freight market analyst"
prompt and the JSON answer is parsed; every field the model omits or gets
wrong falls back to a static heuristic on the posted rate. Without a client,
or on any network/parse error, the heuristic estimate is returned whole.

Nothing in here raises to the caller.
"""
from __future__ import annotations

import json
import math
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from truckflow.core.config import Settings
from truckflow.core.logging import logger
from truckflow.models.fleet import Load
from truckflow.models.negotiation import (
    CompetitorRates,
    DemandLevel,
    MarketAnalysis,
    MarketConditions,
    NegotiationStrategy,
    RateTrend,
)


DEFAULT_SELLING_POINTS = [
    "Reliable carrier with excellent safety record",
    "Guaranteed on-time delivery",
]
DEFAULT_RISK_FACTORS = [
    "High fuel costs on this route",
    "Limited equipment availability",
]
DEFAULT_ANALYSIS = "Market analysis completed using current freight data"

TREND_VALUES = {"increasing", "decreasing", "stable"}
DEMAND_VALUES = {level.value for level in DemandLevel}


def build_llm_client(settings: Settings) -> Optional[AsyncOpenAI]:
    """Create the chat client, or None when no key/base URL is configured."""
    api_key = settings.resolved_openai_api_key()
    if api_key is None:
        logger.warning("OPENAI_API_KEY not found - market analysis will use heuristics only")
        return None
    client = AsyncOpenAI(
        api_key=api_key,
        base_url=settings.openai_base_url or None,
        timeout=settings.llm_timeout_seconds,
    )
    logger.info("Using OpenAI-compatible provider for market analysis", model=settings.llm_model)
    return client


def _number(value: Any, default: float) -> float:
    """Positive finite number from LLM output, else `default`."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number) or number <= 0:
        return default
    return number


def _confidence(value: Any, default: float = 75.0) -> float:
    """Confidence clamped to [0, 100]; missing, zero or non-numeric gives `default`."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or number == 0:
        return default
    return min(100.0, max(0.0, number))


def _strings(value: Any, default: List[str]) -> List[str]:
    if not isinstance(value, list):
        return list(default)
    items = [str(item).strip() for item in value if str(item).strip()]
    return items or list(default)


def _section(payload: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


class MarketAnalysisEstimator:
    """LLM-backed market analyst with a heuristic fallback."""

    SYSTEM_PROMPT = (
        "You are a senior freight market analyst with access to real-time trucking market "
        "data, fuel prices, and economic indicators. Provide accurate, data-driven rate analysis."
    )
    TREND_SYSTEM_PROMPT = "You are a freight market analyst specializing in rate trend analysis."

    def __init__(
        self,
        client: Optional[Any] = None,
        model: str = "gpt-4o",
        temperature: float = 0.2,
    ) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature

    @property
    def provider(self) -> str:
        return "openai" if self.client is not None else "heuristic"

    @staticmethod
    def build_prompt(load: Load) -> str:
        pickup = load.pickup_time.isoformat() if load.pickup_time else "Flexible"
        return f"""Perform comprehensive market rate analysis for this trucking load:

LOAD DETAILS:
- Route: {load.origin} to {load.destination}
- Distance: {load.miles} miles
- Current rate: ${load.rate:,.2f} (${load.rate_per_mile or 0:.2f}/mile)
- Equipment: {load.equipment_type or 'Van'}
- Weight: {load.weight or 'Standard'} lbs
- Commodity: {load.commodity or 'General freight'}
- Pickup: {pickup}
- Source: {load.source}

ANALYSIS REQUIREMENTS:
1. Current fuel prices and impact on operating costs
2. Seasonal demand patterns for this route
3. Market saturation and competition levels
4. Route difficulty (urban vs rural, traffic, terrain)
5. Equipment availability for this type
6. Regional economic factors
7. Broker market dynamics

Return detailed JSON analysis with:
{{
  "currentMarketRate": number,
  "ratePerMile": number,
  "confidence": 0-100,
  "marketConditions": {{
    "fuelPrice": number,
    "demandLevel": "low|medium|high|critical",
    "seasonalFactor": 0.8-1.2,
    "routeDifficulty": 1-5
  }},
  "competitorRates": {{"min": number, "max": number, "average": number, "samples": number}},
  "negotiationStrategy": {{
    "initialOffer": number,
    "fallbackRates": [number, number, number],
    "keySellingPoints": ["point1", "point2"],
    "riskFactors": ["risk1", "risk2"]
  }},
  "analysis": "detailed_explanation"
}}"""

    async def _complete_json(self, system_prompt: str, prompt: str) -> Dict[str, Any]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
            temperature=self.temperature,
        )
        payload = json.loads(response.choices[0].message.content or "{}")
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
        return payload

    async def analyze(self, load: Load) -> MarketAnalysis:
        """Return a complete MarketAnalysis for `load`; never raises."""
        payload: Dict[str, Any] = {}
        if self.client is not None:
            try:
                payload = await self._complete_json(self.SYSTEM_PROMPT, self.build_prompt(load))
            except Exception as exc:
                logger.error("Market analysis LLM call failed; using heuristics", load_id=load.id, error=str(exc))
                payload = {}
        return self.from_payload(load, payload)

    @staticmethod
    def from_payload(load: Load, payload: Dict[str, Any]) -> MarketAnalysis:
        """Merge a (possibly empty) LLM payload over the heuristic defaults."""
        rate = float(load.rate)
        conditions = _section(payload, "marketConditions")
        competitors = _section(payload, "competitorRates")
        strategy = _section(payload, "negotiationStrategy")

        demand_raw = str(conditions.get("demandLevel") or "").strip().lower()
        demand = DemandLevel(demand_raw) if demand_raw in DEMAND_VALUES else DemandLevel.MEDIUM

        confidence = _confidence(payload.get("confidence"))

        fallback_raw = strategy.get("fallbackRates")
        fallback_rates = []
        if isinstance(fallback_raw, list):
            fallback_rates = [_number(value, 0.0) for value in fallback_raw]
            fallback_rates = [value for value in fallback_rates if value > 0]
        if not fallback_rates:
            fallback_rates = [rate * 1.05, rate * 1.03, rate * 1.01]
        fallback_rates = sorted((round(value, 2) for value in fallback_rates), reverse=True)

        return MarketAnalysis(
            current_market_rate=_number(payload.get("currentMarketRate"), rate),
            rate_per_mile=_number(payload.get("ratePerMile"), float(load.rate_per_mile or 0.0)),
            confidence=confidence,
            market_conditions=MarketConditions(
                fuel_price=_number(conditions.get("fuelPrice"), 3.50),
                demand_level=demand,
                seasonal_factor=_number(conditions.get("seasonalFactor"), 1.0),
                route_difficulty=_number(conditions.get("routeDifficulty"), 2),
            ),
            competitor_rates=CompetitorRates(
                min=_number(competitors.get("min"), rate * 0.9),
                max=_number(competitors.get("max"), rate * 1.2),
                average=_number(competitors.get("average"), rate),
                samples=int(_number(competitors.get("samples"), 10)),
            ),
            negotiation_strategy=NegotiationStrategy(
                initial_offer=round(_number(strategy.get("initialOffer"), rate * 1.1), 2),
                fallback_rates=fallback_rates,
                key_selling_points=_strings(strategy.get("keySellingPoints"), DEFAULT_SELLING_POINTS),
                risk_factors=_strings(strategy.get("riskFactors"), DEFAULT_RISK_FACTORS),
            ),
            analysis=str(payload.get("analysis") or DEFAULT_ANALYSIS),
        )

    async def analyze_rate_trends(self, origin: str, destination: str, days: int = 30) -> RateTrend:
        """Per-mile rate trend for a lane; defaults when the LLM is unavailable."""
        payload: Dict[str, Any] = {}
        if self.client is not None:
            prompt = (
                f"Analyze rate trends for trucking route {origin} to {destination} over the last {days} days.\n\n"
                "Consider seasonal patterns, economic factors, and market dynamics.\n\n"
                'Return JSON: {"averageRate": number, "trend": "increasing|decreasing|stable", '
                '"volatility": 0-1, "prediction": number, "factors": ["factor1", "factor2"]}'
            )
            try:
                payload = await self._complete_json(self.TREND_SYSTEM_PROMPT, prompt)
            except Exception as exc:
                logger.error("Rate trend LLM call failed; using defaults", origin=origin, destination=destination, error=str(exc))
                payload = {}

        trend = str(payload.get("trend") or "").strip().lower()
        return RateTrend(
            origin=origin,
            destination=destination,
            days=days,
            average_rate=_number(payload.get("averageRate"), 2.50),
            trend=trend if trend in TREND_VALUES else "stable",
            volatility=min(1.0, _number(payload.get("volatility"), 0.1)),
            prediction=_number(payload.get("prediction"), 2.50),
            factors=_strings(payload.get("factors"), []),
        )
