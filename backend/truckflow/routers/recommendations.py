"""API routes for load recommendations."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from truckflow.core.deps import get_recommendation_engine
from truckflow.core.errors import NotFoundError
from truckflow.models.recommendation import Recommendation, RecommendationStatus
from truckflow.services.recommendation_engine import RecommendationEngine

router = APIRouter(prefix="/api/recommendations", tags=["recommendations"])


@router.get("/high-value", response_model=List[Recommendation])
def high_value_recommendations(
    min_ai_score: int = Query(default=80, ge=0, le=100),
    min_profitability: int = Query(default=70, ge=0, le=100),
    engine: RecommendationEngine = Depends(get_recommendation_engine),
) -> List[Recommendation]:
    return engine.get_high_value_recommendations(min_ai_score, min_profitability)


def _mark(engine: RecommendationEngine, recommendation_id: int, status: RecommendationStatus) -> dict:
    try:
        recommendation = engine.mark_recommendation(recommendation_id, status)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"success": True, "recommendation": recommendation}


@router.post("/{recommendation_id}/viewed")
def mark_viewed(recommendation_id: int, engine: RecommendationEngine = Depends(get_recommendation_engine)):
    return _mark(engine, recommendation_id, RecommendationStatus.VIEWED)


@router.post("/{recommendation_id}/clicked")
def mark_clicked(recommendation_id: int, engine: RecommendationEngine = Depends(get_recommendation_engine)):
    return _mark(engine, recommendation_id, RecommendationStatus.CLICKED)


@router.post("/{recommendation_id}/booked")
def mark_booked(recommendation_id: int, engine: RecommendationEngine = Depends(get_recommendation_engine)):
    return _mark(engine, recommendation_id, RecommendationStatus.BOOKED)
