"""Rate optimization and negotiation models."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DemandLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NegotiationStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


TERMINAL_NEGOTIATION_STATUSES = {NegotiationStatus.ACCEPTED, NegotiationStatus.REJECTED}


class MarketConditions(BaseModel):
    model_config = ConfigDict(frozen=True)

    fuel_price: float = 3.50
    demand_level: DemandLevel = DemandLevel.MEDIUM
    seasonal_factor: float = 1.0
    route_difficulty: float = 2


class CompetitorRates(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float
    max: float
    average: float
    samples: int = 10


class NegotiationStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    initial_offer: float
    # Ordered highest first; walked by the auto-negotiation loop.
    fallback_rates: List[float] = Field(default_factory=list)
    key_selling_points: List[str] = Field(default_factory=list)
    risk_factors: List[str] = Field(default_factory=list)


class MarketAnalysis(BaseModel):
    """Market-rate estimate attached to a negotiation. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    current_market_rate: float
    rate_per_mile: float
    confidence: float = Field(..., ge=0, le=100)
    market_conditions: MarketConditions
    competitor_rates: CompetitorRates
    negotiation_strategy: NegotiationStrategy
    analysis: str


class NegotiationStep(BaseModel):
    step: int
    offer: float
    acceptance_probability: float
    timestamp: datetime = Field(default_factory=_utcnow)


class Negotiation(BaseModel):
    """Persisted rate negotiation."""

    id: int
    load_id: int
    dispatcher_id: Optional[int] = None
    original_rate: float
    suggested_rate: float
    final_rate: Optional[float] = None
    status: NegotiationStatus = NegotiationStatus.IN_PROGRESS
    market_analysis: MarketAnalysis
    confidence_score: int
    auto_negotiated: bool = False
    steps: List[NegotiationStep] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class NegotiationResult(BaseModel):
    """Outcome of a single rate optimization call."""

    negotiation_id: int
    original_rate: float
    suggested_rate: float
    market_analysis: MarketAnalysis
    confidence: float
    auto_negotiate: bool
    estimated_probability: float


class AutoNegotiationResult(BaseModel):
    negotiation_id: int
    success: bool
    final_rate: Optional[float] = None
    attempts: int
    steps: List[str] = Field(default_factory=list)


class NegotiationUpdateRequest(BaseModel):
    status: NegotiationStatus
    final_rate: Optional[float] = Field(default=None, gt=0)


class BatchOptimizeRequest(BaseModel):
    load_ids: List[int] = Field(..., min_length=1, max_length=100)


class RateTrend(BaseModel):
    origin: str
    destination: str
    days: int
    average_rate: float = 2.50
    trend: str = "stable"  # increasing | decreasing | stable
    volatility: float = Field(default=0.1, ge=0, le=1)
    prediction: float = 2.50
    factors: List[str] = Field(default_factory=list)
