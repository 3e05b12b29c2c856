"""Load/driver match scoring models."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecommendationStatus(str, Enum):
    PENDING = "pending"
    VIEWED = "viewed"
    CLICKED = "clicked"
    BOOKED = "booked"


class UrgencyLevel(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class LoadMatchFactors(BaseModel):
    """Eight 0-100 sub-scores for a (load, driver) pair."""

    location_match: float = 50
    equipment_match: float = 50
    rate_match: float = 50
    distance_preference: float = 50
    lane_preference: float = 50
    profitability: float = 50
    urgency: float = 50
    reliability: float = 50


class RecommendationCandidate(BaseModel):
    """Scored pair before persistence."""

    load_id: int
    driver_id: int
    ai_score: int = Field(..., ge=0, le=100)
    profitability_score: int = Field(..., ge=0, le=100)
    estimated_profit: float
    reasons: List[str] = Field(default_factory=list)
    match_factors: LoadMatchFactors
    urgency_level: UrgencyLevel


class Recommendation(RecommendationCandidate):
    """Persisted recommendation."""

    id: int
    fuel_costs: float
    toll_costs: float
    deadhead_miles: int
    total_miles: int
    hours_to_complete: float
    status: RecommendationStatus = RecommendationStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    viewed_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None
    booked_at: Optional[datetime] = None


class ProcessingReport(BaseModel):
    """Outcome of one recommendation cycle."""

    skipped: bool = False
    failed: bool = False
    drivers_count: int = 0
    loads_processed: int = 0
    recommendations_generated: int = 0
    processing_time_ms: float = 0.0
    error: Optional[str] = None


class AIPerformanceRecord(BaseModel):
    id: int
    model_type: str
    input_data: Dict[str, Any] = Field(default_factory=dict)
    output_data: Dict[str, Any] = Field(default_factory=dict)
    processing_time_ms: float
    created_at: datetime = Field(default_factory=_utcnow)
