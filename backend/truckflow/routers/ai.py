"""API routes for rate optimization, auto-negotiation, and load matching."""
from fastapi import APIRouter, Depends, HTTPException, Query

from truckflow.core.auth import DispatcherContext, get_dispatcher_context
from truckflow.core.deps import get_rate_optimizer, get_recommendation_engine, get_storage
from truckflow.core.errors import NegotiationClosedError, NotFoundError
from truckflow.core.logging import logger
from truckflow.models.negotiation import (
    AutoNegotiationResult,
    BatchOptimizeRequest,
    NegotiationResult,
    RateTrend,
)
from truckflow.models.recommendation import ProcessingReport
from truckflow.services.rate_optimizer import RateOptimizer
from truckflow.services.recommendation_engine import RecommendationEngine
from truckflow.services.storage import MemoryStorage

router = APIRouter(prefix="/api/ai", tags=["ai"])


@router.post("/optimize-rate/{load_id}", response_model=NegotiationResult)
async def optimize_rate(
    load_id: int,
    context: DispatcherContext = Depends(get_dispatcher_context),
    optimizer: RateOptimizer = Depends(get_rate_optimizer),
) -> NegotiationResult:
    """
    Analyze the market for a load and open a negotiation at the suggested rate.

    The suggestion is always 5-25% above the posted rate.
    """
    try:
        return await optimizer.optimize_load_rate(load_id, dispatcher_id=context.dispatcher_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except Exception as e:
        logger.error("Rate optimization failed", load_id=load_id, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/auto-negotiate/{negotiation_id}", response_model=AutoNegotiationResult)
async def auto_negotiate(
    negotiation_id: int,
    context: DispatcherContext = Depends(get_dispatcher_context),
    optimizer: RateOptimizer = Depends(get_rate_optimizer),
) -> AutoNegotiationResult:
    """Simulate a broker back-and-forth over the negotiation's fallback offers."""
    try:
        return await optimizer.perform_auto_negotiation(negotiation_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except NegotiationClosedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except Exception as e:
        logger.error("Auto-negotiation failed", negotiation_id=negotiation_id, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/batch-optimize")
async def batch_optimize(
    request: BatchOptimizeRequest,
    context: DispatcherContext = Depends(get_dispatcher_context),
    optimizer: RateOptimizer = Depends(get_rate_optimizer),
):
    """Optimize several loads at once. Loads that fail are left out of the result."""
    results = await optimizer.optimize_multiple_loads(request.load_ids, dispatcher_id=context.dispatcher_id)
    return {
        "requested": len(request.load_ids),
        "optimized": len(results),
        "results": results,
    }


@router.get("/rate-trends", response_model=RateTrend)
async def rate_trends(
    origin: str = Query(..., min_length=1),
    destination: str = Query(..., min_length=1),
    days: int = Query(default=30, ge=1, le=365),
    optimizer: RateOptimizer = Depends(get_rate_optimizer),
) -> RateTrend:
    return await optimizer.analyze_rate_trends(origin, destination, days)


@router.post("/recommendations/process", response_model=ProcessingReport)
async def process_recommendations(
    engine: RecommendationEngine = Depends(get_recommendation_engine),
) -> ProcessingReport:
    """Run a matching cycle now. Returns a skipped report if one is already running."""
    return await engine.process_new_recommendations()


@router.get("/performance")
def ai_performance(
    limit: int = Query(default=20, ge=1, le=200),
    storage: MemoryStorage = Depends(get_storage),
    engine: RecommendationEngine = Depends(get_recommendation_engine),
):
    return {
        "processing": engine.is_processing,
        "metrics": engine.metrics,
        "records": storage.list_ai_performance(limit=limit),
    }
