"""Unit tests for load/driver match scoring and the recommendation cycle."""
from __future__ import annotations

import asyncio
import os
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

os.environ["OPENAI_API_KEY"] = ""
os.environ["OPENAI_BASE_URL"] = ""

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from truckflow.models.fleet import Driver, DriverCreateRequest, Load, LoadCreateRequest  # noqa: E402
from truckflow.models.recommendation import LoadMatchFactors, RecommendationStatus  # noqa: E402
from truckflow.services.recommendation_engine import (  # noqa: E402
    RecommendationEngine,
    calculate_overall_ai_score,
)
from truckflow.services.scheduler import RecommendationScheduler  # noqa: E402
from truckflow.services.storage import MemoryStorage  # noqa: E402


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _load(**overrides) -> Load:
    data = {
        "id": 1,
        "external_id": "DAT-4789",
        "origin": "Dallas, TX",
        "destination": "Phoenix, AZ",
        "miles": 887,
        "rate": 2034.0,
        "equipment_type": "Van",
        "pickup_time": NOW + timedelta(hours=12),
        "ai_score": 78,
        "profit_margin": 610.0,
    }
    data.update(overrides)
    return Load(**data)


def _driver(driver_id: int = 1, **overrides) -> Driver:
    data = {
        "id": driver_id,
        "name": f"Driver {driver_id}",
        "initials": "DR",
        "current_location": "Dallas, TX",
        "equipment_types": ["Van"],
        "min_rate_per_mile": 1.5,
        "preferred_lanes": ["Dallas - Phoenix"],
        "max_radius": 250,
    }
    data.update(overrides)
    return Driver(**data)


def _engine(storage=None, **kwargs) -> RecommendationEngine:
    return RecommendationEngine(
        storage if storage is not None else MemoryStorage(),
        rng=random.Random(5),
        clock=lambda: NOW,
        **kwargs,
    )


def _seed(storage: MemoryStorage, drivers: int = 1) -> None:
    for index in range(drivers):
        storage.create_driver(
            DriverCreateRequest(
                name=f"Driver {index}",
                current_location="Dallas, TX",
                equipment_types=["Van"],
                min_rate_per_mile=1.5,
                preferred_lanes=["Dallas - Phoenix"],
                max_radius=250,
            )
        )
    storage.create_load(
        LoadCreateRequest(
            external_id="DAT-4789",
            origin="Dallas, TX",
            destination="Phoenix, AZ",
            miles=887,
            rate=2034.0,
            equipment_type="Van",
            pickup_time=NOW + timedelta(hours=12),
            ai_score=78,
            profit_margin=610.0,
        )
    )


def test_equipment_mismatch_scores_zero():
    assert RecommendationEngine.calculate_equipment_match(_load(equipment_type="Reefer"), _driver()) == 0
    assert RecommendationEngine.calculate_equipment_match(_load(), _driver()) == 100
    assert RecommendationEngine.calculate_equipment_match(_load(), _driver(equipment_types=[])) == 50


def test_sub_scores_follow_thresholds():
    engine = _engine()
    assert engine.calculate_location_match(_load(), _driver()) == 100
    assert engine.calculate_location_match(_load(), _driver(max_radius=None)) == 50
    assert 0 <= engine.calculate_location_match(_load(), _driver(current_location="Tulsa, OK")) <= 100

    assert engine.calculate_rate_match(_load(rate_per_mile=1.8), _driver()) == 100
    assert engine.calculate_rate_match(_load(rate_per_mile=1.5), _driver()) == 80
    assert engine.calculate_rate_match(_load(rate_per_mile=1.4), _driver()) == 60
    assert engine.calculate_rate_match(_load(rate_per_mile=1.0), _driver()) == 30

    assert engine.calculate_distance_preference(_load(miles=900), _driver()) == 100
    assert engine.calculate_distance_preference(_load(miles=1800), _driver()) == 80
    assert engine.calculate_distance_preference(_load(miles=120), _driver()) == 60
    assert engine.calculate_distance_preference(_load(miles=2600), _driver()) == 40

    assert engine.calculate_lane_preference(_load(), _driver()) == 90
    assert engine.calculate_lane_preference(_load(), _driver(preferred_lanes=["Atlanta - Miami"])) == 40

    assert engine.calculate_profitability_match(_load(profit_margin=-20), _driver()) == 10
    assert engine.calculate_profitability_match(_load(profit_margin=None), _driver()) == 50

    assert engine.calculate_urgency_match(_load(), _driver()) == 100
    assert engine.calculate_urgency_match(_load(pickup_time=NOW + timedelta(days=4)), _driver()) == 60
    assert engine.calculate_urgency_match(_load(pickup_time=NOW + timedelta(days=10)), _driver()) == 40

    assert engine.calculate_reliability_match(_load(ai_score=95), _driver()) == 90
    assert engine.calculate_reliability_match(_load(ai_score=10), _driver()) == 30


def test_overall_score_is_bounded_integer():
    assert calculate_overall_ai_score(LoadMatchFactors()) == 50
    perfect = LoadMatchFactors(**{name: 100 for name in LoadMatchFactors.model_fields})
    assert calculate_overall_ai_score(perfect) == 100
    empty = LoadMatchFactors(**{name: 0 for name in LoadMatchFactors.model_fields})
    assert calculate_overall_ai_score(empty) == 0

    mixed = LoadMatchFactors(
        location_match=100,
        equipment_match=0,
        rate_match=80,
        distance_preference=60,
        lane_preference=90,
        profitability=40,
        urgency=100,
        reliability=60,
    )
    # 20 + 0 + 16 + 6 + 9 + 6 + 5 + 3
    assert calculate_overall_ai_score(mixed) == 65
    # 63.5 rounds half up
    assert calculate_overall_ai_score(mixed.model_copy(update={"reliability": 30})) == 64

    engine = _engine()
    for location in ("Dallas, TX", "Tulsa, OK", "Reno, NV"):
        score = calculate_overall_ai_score(engine.calculate_match_factors(_load(), _driver(current_location=location)))
        assert isinstance(score, int)
        assert 0 <= score <= 100


def test_estimated_profit_uses_optimized_rate():
    load = _load(rate=1000.0, miles=500)
    # Heuristic suggestion for a $1000 load is $1072; cost is 500 x 1.35
    assert RecommendationEngine.calculate_estimated_profit(load) == 397
    assert RecommendationEngine.calculate_profitability_score(397) == 50
    assert RecommendationEngine.calculate_profitability_score(-1) == 10


def test_reasons_are_capped_and_urgency_level_derived():
    factors = LoadMatchFactors(
        location_match=100,
        equipment_match=100,
        rate_match=100,
        distance_preference=100,
        lane_preference=90,
        profitability=80,
        urgency=100,
        reliability=70,
    )
    reasons = RecommendationEngine.generate_recommendation_reasons(factors, _load(rate_per_mile=3.2))
    assert len(reasons) == 4
    assert reasons[0] == "Close to your current location - minimal deadhead"
    assert RecommendationEngine.determine_urgency_level(factors).value == "urgent"
    assert RecommendationEngine.determine_urgency_level(LoadMatchFactors(rate_match=30)).value == "low"


def test_top_five_drivers_per_load():
    engine = _engine()
    drivers = [_driver(driver_id) for driver_id in range(1, 8)]

    candidates = engine.generate_load_recommendations(_load(), drivers)

    assert len(candidates) == 5
    scores = [candidate.ai_score for candidate in candidates]
    assert scores == sorted(scores, reverse=True)
    assert all(score >= 60 for score in scores)


def test_low_scoring_pairs_are_dropped():
    engine = _engine()
    driver = _driver(
        current_location="Seattle, WA",
        equipment_types=["Flatbed"],
        min_rate_per_mile=4.0,
        preferred_lanes=["Seattle - Portland"],
    )
    load = _load(pickup_time=NOW + timedelta(days=10), profit_margin=-50, ai_score=10, miles=2600)
    assert engine.generate_load_recommendations(load, [driver]) == []


def test_processing_cycle_saves_recommendations_and_marks_loads():
    storage = MemoryStorage()
    _seed(storage, drivers=7)
    engine = _engine(storage)

    report = asyncio.run(engine.process_new_recommendations())

    assert report.skipped is False and report.failed is False
    assert report.drivers_count == 7
    assert report.loads_processed == 1
    assert report.recommendations_generated == 5
    assert storage.count_recommendations() == 5
    assert storage.list_unprocessed_loads() == []
    assert storage.list_ai_performance()[0].model_type == "load_matching"

    recommendation = storage.get_recommendation(1)
    load = storage.get_load(recommendation.load_id)
    assert recommendation.status == RecommendationStatus.PENDING
    assert recommendation.total_miles == load.miles + recommendation.deadhead_miles
    assert 10 <= recommendation.deadhead_miles <= 210

    second = asyncio.run(engine.process_new_recommendations())
    assert second.loads_processed == 0
    assert storage.count_recommendations() == 5
    assert engine.metrics["cycles_completed"] == 2


def test_low_quality_loads_are_not_processed():
    storage = MemoryStorage()
    _seed(storage)
    storage.create_load(
        LoadCreateRequest(
            external_id="TS-0001", origin="Dallas, TX", destination="Austin, TX", miles=195, rate=500, ai_score=20
        )
    )
    report = asyncio.run(_engine(storage).process_new_recommendations())
    assert report.loads_processed == 1
    assert len(storage.list_unprocessed_loads(min_ai_score=0)) == 1


def test_concurrent_cycle_is_skipped_without_touching_storage():
    storage = MagicMock()
    storage.list_active_drivers.return_value = [_driver()]
    storage.list_unprocessed_loads.return_value = [_load(), _load(id=2, external_id="DAT-2")]
    engine = _engine(storage)

    async def run_both():
        return await asyncio.gather(
            engine.process_new_recommendations(),
            engine.process_new_recommendations(),
        )

    first, second = asyncio.run(run_both())

    assert first.skipped is False
    assert first.loads_processed == 2
    assert second.skipped is True
    assert storage.list_active_drivers.call_count == 1
    assert storage.list_unprocessed_loads.call_count == 1
    assert storage.mark_load_processed.call_count == 2
    assert engine.metrics["cycles_skipped"] == 1
    assert engine.is_processing is False


def test_storage_failure_returns_failed_report_and_releases_guard():
    storage = MagicMock()
    storage.list_active_drivers.side_effect = RuntimeError("store unavailable")
    engine = _engine(storage)

    report = asyncio.run(engine.process_new_recommendations())

    assert report.failed is True
    assert report.error == "store unavailable"
    assert engine.metrics["cycles_failed"] == 1
    assert engine.is_processing is False


def test_recommendation_status_marks_and_high_value_filter():
    storage = MemoryStorage()
    _seed(storage, drivers=2)
    engine = _engine(storage)
    asyncio.run(engine.process_new_recommendations())

    pending = engine.get_driver_recommendations(1)
    assert len(pending) == 1

    high_value = engine.get_high_value_recommendations(min_ai_score=0, min_profitability=0)
    assert len(high_value) == 2
    assert engine.get_high_value_recommendations(min_ai_score=101) == []

    booked = engine.mark_recommendation(pending[0].id, RecommendationStatus.BOOKED)
    assert booked.booked_at is not None
    assert engine.get_driver_recommendations(1) == []


def test_scheduler_ticks_and_stops():
    storage = MemoryStorage()
    _seed(storage)
    engine = _engine(storage)
    scheduler = RecommendationScheduler(engine, interval_seconds=0.01, warmup_seconds=0)

    async def run():
        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.05)
        await scheduler.stop()

    asyncio.run(run())

    assert scheduler.ticks >= 1
    assert scheduler.running is False
    assert storage.count_recommendations() == 1
    assert engine.metrics["cycles_completed"] >= 1


def test_scheduler_stop_during_warmup_runs_nothing():
    engine = _engine()
    scheduler = RecommendationScheduler(engine, interval_seconds=60, warmup_seconds=30)

    async def run():
        scheduler.start()
        await asyncio.sleep(0)
        await scheduler.stop()

    asyncio.run(run())
    assert scheduler.ticks == 0
