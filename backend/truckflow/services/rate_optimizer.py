"""
Rate Optimization & Negotiation Workflow

Pipeline for one load:
1. Market analysis (LLM or heuristic estimate)
2. Rate adjustment: fuel, season, route difficulty, demand, confidence,
   clamped to a 5-25% increase over the posted rate
3. Negotiation probability from the size of the increase
4. Persisted negotiation record; optional simulated auto-negotiation that
   walks the fallback offers against a random broker response
"""
from __future__ import annotations

import asyncio
import math
import random
from typing import List, Optional

from truckflow.core.errors import NegotiationClosedError
from truckflow.core.logging import logger
from truckflow.models.fleet import AlertType, Load
from truckflow.models.negotiation import (
    AutoNegotiationResult,
    DemandLevel,
    MarketAnalysis,
    NegotiationResult,
    NegotiationStatus,
    NegotiationStep,
    RateTrend,
    TERMINAL_NEGOTIATION_STATUSES,
)
from truckflow.services.market_analysis import MarketAnalysisEstimator
from truckflow.services.storage import MemoryStorage


MIN_INCREASE = 1.05
MAX_INCREASE = 1.25
BASE_FUEL_PRICE = 3.0

DEMAND_RATE_MULTIPLIERS = {
    DemandLevel.LOW: 0.95,
    DemandLevel.MEDIUM: 1.0,
    DemandLevel.HIGH: 1.08,
    DemandLevel.CRITICAL: 1.15,
}

DEMAND_PROBABILITY_ADJUSTMENTS = {
    DemandLevel.LOW: -0.2,
    DemandLevel.MEDIUM: 0.0,
    DemandLevel.HIGH: 0.15,
    DemandLevel.CRITICAL: 0.25,
}

BROKER_DEMAND_BONUS = {
    DemandLevel.LOW: -0.2,
    DemandLevel.MEDIUM: 0.0,
    DemandLevel.HIGH: 0.2,
    DemandLevel.CRITICAL: 0.3,
}

# (increase above, base probability), checked top-down
INCREASE_PROBABILITY_STEPS = [
    (0.20, 0.2),
    (0.15, 0.4),
    (0.10, 0.6),
    (0.05, 0.8),
]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_optimal_rate(load: Load, market_analysis: MarketAnalysis) -> float:
    """Suggested rate for `load`, always within [1.05, 1.25] x the posted rate."""
    base_rate = float(load.rate)
    conditions = market_analysis.market_conditions
    confidence = market_analysis.confidence / 100

    adjusted = market_analysis.current_market_rate
    adjusted += base_rate * (conditions.fuel_price - BASE_FUEL_PRICE) * 0.05
    adjusted *= conditions.seasonal_factor
    adjusted *= 1 + (conditions.route_difficulty - 1) * 0.02
    adjusted *= DEMAND_RATE_MULTIPLIERS[conditions.demand_level]
    # Lower confidence pulls the suggestion down
    adjusted *= 1 + (confidence - 0.5) * 0.1

    floor_rate = base_rate * MIN_INCREASE
    ceiling_rate = base_rate * MAX_INCREASE
    # Oversized analysis values overflow to inf
    if not math.isfinite(adjusted):
        return ceiling_rate
    return min(ceiling_rate, max(floor_rate, float(_round_half_up(adjusted))))


def calculate_negotiation_probability(
    original_rate: float,
    suggested_rate: float,
    market_analysis: MarketAnalysis,
) -> float:
    """Chance the broker takes `suggested_rate`, in [0.1, 1.0]."""
    increase = (suggested_rate - original_rate) / original_rate

    probability = 0.9
    for threshold, base in INCREASE_PROBABILITY_STEPS:
        if increase > threshold:
            probability = base
            break

    probability += DEMAND_PROBABILITY_ADJUSTMENTS[market_analysis.market_conditions.demand_level]
    probability += (market_analysis.confidence - 50) / 500
    return round(min(1.0, max(0.1, probability)), 4)


def calculate_broker_acceptance_probability(
    original_rate: float,
    offered_rate: float,
    market_analysis: MarketAnalysis,
) -> float:
    """Simulated broker acceptance for one offer, in [0.05, 0.95]."""
    increase = (offered_rate - original_rate) / original_rate

    # Brokers resist increases
    probability = max(0.0, 1 - increase * 3)
    probability += BROKER_DEMAND_BONUS[market_analysis.market_conditions.demand_level]

    if offered_rate <= market_analysis.competitor_rates.average * 1.05:
        probability += 0.15

    return round(min(0.95, max(0.05, probability)), 4)


class RateOptimizer:
    """Market analysis, rate suggestion, and simulated broker negotiation."""

    def __init__(
        self,
        storage: MemoryStorage,
        estimator: MarketAnalysisEstimator,
        rng: Optional[random.Random] = None,
        auto_negotiate_threshold: float = 0.7,
    ) -> None:
        self.storage = storage
        self.estimator = estimator
        self.rng = rng or random.Random()
        self.auto_negotiate_threshold = auto_negotiate_threshold

    async def optimize_load_rate(self, load_id: int, dispatcher_id: Optional[int] = None) -> NegotiationResult:
        load = self.storage.get_load(load_id)

        market_analysis = await self.estimator.analyze(load)
        suggested_rate = calculate_optimal_rate(load, market_analysis)
        probability = calculate_negotiation_probability(load.rate, suggested_rate, market_analysis)

        negotiation = self.storage.create_negotiation(
            load_id=load.id,
            original_rate=load.rate,
            suggested_rate=suggested_rate,
            market_analysis=market_analysis,
            dispatcher_id=dispatcher_id,
        )
        self.storage.update_load_market_rate(load.id, suggested_rate)

        logger.info(
            "Load rate optimized",
            load_id=load.id,
            negotiation_id=negotiation.id,
            original_rate=load.rate,
            suggested_rate=suggested_rate,
            probability=probability,
            provider=self.estimator.provider,
        )

        return NegotiationResult(
            negotiation_id=negotiation.id,
            original_rate=load.rate,
            suggested_rate=suggested_rate,
            market_analysis=market_analysis,
            confidence=market_analysis.confidence,
            auto_negotiate=probability > self.auto_negotiate_threshold,
            estimated_probability=probability,
        )

    async def optimize_multiple_loads(
        self,
        load_ids: List[int],
        dispatcher_id: Optional[int] = None,
    ) -> List[NegotiationResult]:
        """Optimize every load concurrently; failures are logged and dropped."""
        outcomes = await asyncio.gather(
            *(self.optimize_load_rate(load_id, dispatcher_id) for load_id in load_ids),
            return_exceptions=True,
        )
        results: List[NegotiationResult] = []
        for load_id, outcome in zip(load_ids, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Failed to optimize load", load_id=load_id, error=str(outcome))
                continue
            results.append(outcome)
        return results

    async def perform_auto_negotiation(self, negotiation_id: int) -> AutoNegotiationResult:
        """
        Walk the initial offer and each fallback offer until the simulated
        broker accepts or the list runs out.

        At most len(fallback_rates) + 1 attempts. Each step is stored before
        the broker draw, so an interrupted run leaves the negotiation
        in_progress with a partial step history.
        """
        negotiation = self.storage.get_negotiation(negotiation_id)
        if negotiation.status in TERMINAL_NEGOTIATION_STATUSES:
            raise NegotiationClosedError(
                f"Negotiation {negotiation_id} is already {negotiation.status.value}"
            )
        # Existence check only; the offer math uses the stored original rate.
        self.storage.get_load(negotiation.load_id)

        market_analysis = negotiation.market_analysis
        strategy = market_analysis.negotiation_strategy
        offers = [strategy.initial_offer, *strategy.fallback_rates]
        max_attempts = len(strategy.fallback_rates) + 1

        self.storage.mark_auto_negotiated(negotiation_id)
        steps: List[str] = []

        for attempt, offer in enumerate(offers, start=1):
            acceptance = calculate_broker_acceptance_probability(
                negotiation.original_rate, offer, market_analysis
            )
            steps.append(f"Attempt {attempt}: Offered ${offer:,.2f} ({acceptance:.0%} chance)")
            self.storage.add_negotiation_step(
                negotiation_id,
                NegotiationStep(step=attempt, offer=offer, acceptance_probability=acceptance),
            )

            if self.rng.random() < acceptance:
                steps.append(f"Broker accepted ${offer:,.2f}")
                self.storage.update_negotiation_status(
                    negotiation_id, NegotiationStatus.ACCEPTED, final_rate=offer
                )
                self.storage.create_alert(
                    AlertType.SUCCESS,
                    "Rate negotiation successful",
                    f"Load {negotiation.load_id} booked at ${offer:,.2f}",
                )
                logger.info(
                    "Auto-negotiation accepted",
                    negotiation_id=negotiation_id,
                    attempt=attempt,
                    final_rate=offer,
                )
                return AutoNegotiationResult(
                    negotiation_id=negotiation_id,
                    success=True,
                    final_rate=offer,
                    attempts=attempt,
                    steps=steps,
                )

            if attempt < max_attempts:
                steps.append(f"Broker rejected, trying ${offers[attempt]:,.2f}")

        steps.append(f"Negotiation failed after {max_attempts} attempts")
        self.storage.update_negotiation_status(negotiation_id, NegotiationStatus.REJECTED)
        logger.info("Auto-negotiation exhausted", negotiation_id=negotiation_id, attempts=max_attempts)

        return AutoNegotiationResult(
            negotiation_id=negotiation_id,
            success=False,
            attempts=max_attempts,
            steps=steps,
        )

    async def analyze_rate_trends(self, origin: str, destination: str, days: int = 30) -> RateTrend:
        return await self.estimator.analyze_rate_trends(origin, destination, days)
