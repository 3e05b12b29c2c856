"""Wires the store and services together once per application."""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Optional

from truckflow.core.config import Settings
from truckflow.services.load_board import LoadBoardIngest
from truckflow.services.market_analysis import MarketAnalysisEstimator, build_llm_client
from truckflow.services.rate_optimizer import RateOptimizer
from truckflow.services.recommendation_engine import RecommendationEngine
from truckflow.services.scheduler import RecommendationScheduler
from truckflow.services.storage import MemoryStorage


@dataclass
class ServiceContainer:
    storage: MemoryStorage
    estimator: MarketAnalysisEstimator
    rate_optimizer: RateOptimizer
    recommendation_engine: RecommendationEngine
    scheduler: RecommendationScheduler
    load_board: LoadBoardIngest


def build_services(
    settings: Settings,
    storage: Optional[MemoryStorage] = None,
    llm_client: Optional[Any] = None,
) -> ServiceContainer:
    """Construct every service around one store and one seeded RNG."""
    storage = storage or MemoryStorage()
    rng = random.Random(settings.simulation_seed)
    client = llm_client if llm_client is not None else build_llm_client(settings)

    estimator = MarketAnalysisEstimator(
        client=client,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
    )
    rate_optimizer = RateOptimizer(
        storage,
        estimator,
        rng=rng,
        auto_negotiate_threshold=settings.auto_negotiate_threshold,
    )
    engine = RecommendationEngine(
        storage,
        rng=rng,
        min_load_score=settings.recommendation_min_load_score,
        min_ai_score=settings.recommendation_min_ai_score,
        top_n=settings.recommendation_top_n,
        batch_size=settings.recommendation_batch_size,
    )
    scheduler = RecommendationScheduler(
        engine,
        interval_seconds=settings.recommendation_interval_seconds,
        warmup_seconds=settings.recommendation_warmup_seconds,
    )
    return ServiceContainer(
        storage=storage,
        estimator=estimator,
        rate_optimizer=rate_optimizer,
        recommendation_engine=engine,
        scheduler=scheduler,
        load_board=LoadBoardIngest(storage),
    )
