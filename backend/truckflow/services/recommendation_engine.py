"""
Load/Driver Match Scoring Workflow

Scores every (unprocessed load, active driver) pair on eight 0-100 factors:
1. Location (driver position vs origin)
2. Equipment (capability list vs load equipment)
3. Rate (load rate/mile vs driver minimum)
4. Distance (preferred run length)
5. Lane (driver's preferred lanes)
6. Profitability (posted profit margin)
7. Urgency (days until pickup)
8. Reliability (load board quality score)

Pairs scoring 60+ are stored as recommendations, best five per load.
Distances and trip costs are simulated from an injectable RNG until real
routing data is wired in.
"""
from __future__ import annotations

import asyncio
import math
import random
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from truckflow.core.logging import logger
from truckflow.models.fleet import Driver, Load
from truckflow.models.recommendation import (
    LoadMatchFactors,
    ProcessingReport,
    Recommendation,
    RecommendationCandidate,
    RecommendationStatus,
    UrgencyLevel,
)
from truckflow.services.market_analysis import MarketAnalysisEstimator
from truckflow.services.rate_optimizer import calculate_optimal_rate
from truckflow.services.storage import MemoryStorage


MATCH_WEIGHTS: Dict[str, float] = {
    "location_match": 0.20,
    "equipment_match": 0.15,
    "rate_match": 0.20,
    "distance_preference": 0.10,
    "lane_preference": 0.10,
    "profitability": 0.15,
    "urgency": 0.05,
    "reliability": 0.05,
}

# Fuel + maintenance + company driver pay
COST_PER_MILE = 0.65 + 0.15 + 0.55

MAX_REASONS = 4


def _city(location: str) -> str:
    return location.split(",")[0].strip()


def calculate_overall_ai_score(factors: LoadMatchFactors) -> int:
    """Weighted sum of the eight sub-scores, rounded into [0, 100]."""
    total = sum(getattr(factors, name) * weight for name, weight in MATCH_WEIGHTS.items())
    return min(100, max(0, int(math.floor(total + 0.5))))


class RecommendationEngine:
    """Batch load matching with a single-flight processing cycle."""

    def __init__(
        self,
        storage: MemoryStorage,
        rng: Optional[random.Random] = None,
        min_load_score: int = 50,
        min_ai_score: int = 60,
        top_n: int = 5,
        batch_size: int = 100,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.storage = storage
        self.rng = rng or random.Random()
        self.min_load_score = min_load_score
        self.min_ai_score = min_ai_score
        self.top_n = top_n
        self.batch_size = batch_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._processing_lock = asyncio.Lock()
        self.metrics = {
            "cycles_completed": 0,
            "cycles_failed": 0,
            "cycles_skipped": 0,
            "recommendations_generated": 0,
        }

    @property
    def is_processing(self) -> bool:
        return self._processing_lock.locked()

    # ==================== SUB-SCORES ====================

    def calculate_location_match(self, load: Load, driver: Driver) -> float:
        if not driver.current_location or not driver.max_radius:
            return 50
        if _city(driver.current_location).lower() == _city(load.origin).lower():
            return 100
        # TODO: replace the simulated distance with a geocoded Haversine distance
        simulated_distance = self.rng.random() * driver.max_radius
        return max(0.0, 100 - (simulated_distance / driver.max_radius) * 100)

    @staticmethod
    def calculate_equipment_match(load: Load, driver: Driver) -> float:
        if not load.equipment_type or not driver.equipment_types:
            return 50
        return 100 if load.equipment_type in driver.equipment_types else 0

    @staticmethod
    def calculate_rate_match(load: Load, driver: Driver) -> float:
        if not load.rate_per_mile or not driver.min_rate_per_mile:
            return 50
        load_rate = float(load.rate_per_mile)
        min_rate = float(driver.min_rate_per_mile)
        if load_rate >= min_rate * 1.2:
            return 100
        if load_rate >= min_rate:
            return 80
        if load_rate >= min_rate * 0.9:
            return 60
        return 30

    @staticmethod
    def calculate_distance_preference(load: Load, driver: Driver) -> float:
        if not load.miles:
            return 50
        if 500 <= load.miles <= 1500:
            return 100
        if 300 <= load.miles <= 2000:
            return 80
        if load.miles < 300:
            return 60
        return 40

    @staticmethod
    def calculate_lane_preference(load: Load, driver: Driver) -> float:
        if not driver.preferred_lanes:
            return 50
        origin_city = _city(load.origin)
        destination_city = _city(load.destination)
        for lane in driver.preferred_lanes:
            if origin_city in lane or destination_city in lane:
                return 90
        return 40

    @staticmethod
    def calculate_profitability_match(load: Load, driver: Driver) -> float:
        if load.profit_margin is None:
            return 50
        profit = float(load.profit_margin)
        if profit >= 1000:
            return 100
        if profit >= 500:
            return 80
        if profit >= 200:
            return 60
        if profit >= 0:
            return 40
        return 10

    def calculate_urgency_match(self, load: Load, driver: Driver) -> float:
        if not load.pickup_time:
            return 50
        pickup = load.pickup_time
        if pickup.tzinfo is None:
            pickup = pickup.replace(tzinfo=timezone.utc)
        days_until_pickup = math.ceil((pickup - self._clock()).total_seconds() / 86400)
        if days_until_pickup <= 1:
            return 100
        if days_until_pickup <= 2:
            return 80
        if days_until_pickup <= 5:
            return 60
        return 40

    @staticmethod
    def calculate_reliability_match(load: Load, driver: Driver) -> float:
        if load.ai_score >= 80:
            return 90
        if load.ai_score >= 60:
            return 70
        if load.ai_score >= 40:
            return 50
        return 30

    def calculate_match_factors(self, load: Load, driver: Driver) -> LoadMatchFactors:
        return LoadMatchFactors(
            location_match=self.calculate_location_match(load, driver),
            equipment_match=self.calculate_equipment_match(load, driver),
            rate_match=self.calculate_rate_match(load, driver),
            distance_preference=self.calculate_distance_preference(load, driver),
            lane_preference=self.calculate_lane_preference(load, driver),
            profitability=self.calculate_profitability_match(load, driver),
            urgency=self.calculate_urgency_match(load, driver),
            reliability=self.calculate_reliability_match(load, driver),
        )

    # ==================== PROFIT & PRESENTATION ====================

    @staticmethod
    def calculate_estimated_profit(load: Load) -> int:
        """Revenue at the optimized rate (if higher) minus per-mile operating cost."""
        if not load.rate or not load.miles:
            return 0
        revenue = float(load.rate)
        heuristic = MarketAnalysisEstimator.from_payload(load, {})
        optimized = calculate_optimal_rate(load, heuristic)
        if optimized > revenue:
            revenue = optimized
        return int(round(revenue - load.miles * COST_PER_MILE))

    @staticmethod
    def calculate_profitability_score(estimated_profit: float) -> int:
        if estimated_profit >= 1500:
            return 100
        if estimated_profit >= 1000:
            return 90
        if estimated_profit >= 500:
            return 70
        if estimated_profit >= 200:
            return 50
        if estimated_profit >= 0:
            return 30
        return 10

    @staticmethod
    def generate_recommendation_reasons(factors: LoadMatchFactors, load: Load) -> List[str]:
        reasons = []
        if factors.location_match >= 80:
            reasons.append("Close to your current location - minimal deadhead")
        if factors.equipment_match == 100:
            reasons.append("Perfect equipment match for your truck")
        if factors.rate_match >= 90:
            reasons.append("Excellent rate - above your minimum requirements")
        if factors.profitability >= 80:
            reasons.append("High profit potential - great earning opportunity")
        if factors.distance_preference >= 80:
            reasons.append("Ideal distance for good revenue and quick turnaround")
        if factors.lane_preference >= 80:
            reasons.append("Matches your preferred lanes and routes")
        if factors.urgency >= 80:
            reasons.append("Urgent load - premium rates for quick pickup")
        if load.rate_per_mile and load.rate_per_mile >= 3.0:
            reasons.append("Premium rate - $3.00+ per mile")
        return reasons[:MAX_REASONS]

    @staticmethod
    def determine_urgency_level(factors: LoadMatchFactors) -> UrgencyLevel:
        if factors.urgency >= 90 and factors.rate_match >= 80:
            return UrgencyLevel.URGENT
        if factors.urgency >= 70 or factors.profitability >= 90:
            return UrgencyLevel.HIGH
        if factors.rate_match >= 70:
            return UrgencyLevel.NORMAL
        return UrgencyLevel.LOW

    def generate_load_recommendations(self, load: Load, drivers: List[Driver]) -> List[RecommendationCandidate]:
        """Top-N drivers for `load` with a combined score at or above the minimum."""
        candidates: List[RecommendationCandidate] = []
        for driver in drivers:
            factors = self.calculate_match_factors(load, driver)
            ai_score = calculate_overall_ai_score(factors)
            if ai_score < self.min_ai_score:
                continue
            estimated_profit = self.calculate_estimated_profit(load)
            candidates.append(
                RecommendationCandidate(
                    load_id=load.id,
                    driver_id=driver.id,
                    ai_score=ai_score,
                    profitability_score=self.calculate_profitability_score(estimated_profit),
                    estimated_profit=estimated_profit,
                    reasons=self.generate_recommendation_reasons(factors, load),
                    match_factors=factors,
                    urgency_level=self.determine_urgency_level(factors),
                )
            )
        candidates.sort(key=lambda candidate: candidate.ai_score, reverse=True)
        return candidates[: self.top_n]

    def save_recommendation(self, candidate: RecommendationCandidate, load: Load) -> Recommendation:
        deadhead_miles = round(self.rng.random() * 200 + 10)
        return self.storage.save_recommendation(
            candidate,
            fuel_costs=round(self.rng.random() * 500 + 200),
            toll_costs=round(self.rng.random() * 100 + 20),
            deadhead_miles=deadhead_miles,
            total_miles=(load.miles or 0) + deadhead_miles,
            hours_to_complete=round(self.rng.random() * 24 + 8, 1),
        )

    # ==================== PROCESSING CYCLE ====================

    async def process_new_recommendations(self) -> ProcessingReport:
        """
        Score all unprocessed loads against all active drivers.

        Single-flight: a call made while a cycle is running returns a
        skipped report without touching storage. A failure aborts the cycle;
        loads already marked processed stay processed, the rest are retried
        on the next call.
        """
        if self._processing_lock.locked():
            self.metrics["cycles_skipped"] += 1
            logger.info("Recommendation processing already running; skipping tick")
            return ProcessingReport(skipped=True)

        async with self._processing_lock:
            start = time.perf_counter()
            drivers: List[Driver] = []
            loads_processed = 0
            generated = 0
            try:
                logger.info("Starting load recommendation processing")
                drivers = self.storage.list_active_drivers()
                loads = self.storage.list_unprocessed_loads(
                    min_ai_score=self.min_load_score, limit=self.batch_size
                )

                for load in loads:
                    for candidate in self.generate_load_recommendations(load, drivers):
                        self.save_recommendation(candidate, load)
                        generated += 1
                    self.storage.mark_load_processed(load.id)
                    loads_processed += 1
                    # Yield to the event loop between loads.
                    await asyncio.sleep(0)

                elapsed_ms = (time.perf_counter() - start) * 1000
                self.storage.record_ai_performance(
                    "load_matching",
                    {
                        "drivers_count": len(drivers),
                        "loads_processed": loads_processed,
                        "recommendations_generated": generated,
                    },
                    {"recommendations_generated": generated},
                    elapsed_ms,
                )
            except Exception as exc:
                self.metrics["cycles_failed"] += 1
                logger.error(
                    "Error in recommendation processing",
                    loads_processed=loads_processed,
                    error=str(exc),
                )
                return ProcessingReport(
                    failed=True,
                    drivers_count=len(drivers),
                    loads_processed=loads_processed,
                    recommendations_generated=generated,
                    processing_time_ms=(time.perf_counter() - start) * 1000,
                    error=str(exc),
                )

        self.metrics["cycles_completed"] += 1
        self.metrics["recommendations_generated"] += generated
        logger.info(
            "Recommendation processing complete",
            recommendations=generated,
            loads=loads_processed,
            drivers=len(drivers),
            processing_time_ms=round(elapsed_ms, 2),
        )
        return ProcessingReport(
            drivers_count=len(drivers),
            loads_processed=loads_processed,
            recommendations_generated=generated,
            processing_time_ms=elapsed_ms,
        )

    # ==================== QUERIES ====================

    def get_driver_recommendations(self, driver_id: int, limit: int = 10) -> List[Recommendation]:
        self.storage.get_driver(driver_id)
        return self.storage.list_driver_recommendations(driver_id, limit=limit)

    def get_high_value_recommendations(self, min_ai_score: int = 80, min_profitability: int = 70) -> List[Recommendation]:
        return self.storage.list_high_value_recommendations(min_ai_score, min_profitability)

    def mark_recommendation(self, recommendation_id: int, status: RecommendationStatus) -> Recommendation:
        recommendation = self.storage.mark_recommendation(recommendation_id, status)
        logger.info(
            "Recommendation status updated",
            recommendation_id=recommendation_id,
            status=recommendation.status.value,
        )
        return recommendation
