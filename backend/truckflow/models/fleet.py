"""Fleet models: loads, drivers, alerts, and dashboard metrics."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoadStatus(str, Enum):
    """Lifecycle status for a load. Moves forward only."""

    AVAILABLE = "available"
    ASSIGNED = "assigned"
    DELIVERED = "delivered"


class DriverStatus(str, Enum):
    AVAILABLE = "available"
    EN_ROUTE = "en_route"
    OFF_DUTY = "off_duty"


class AlertType(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"


class LoadCreateRequest(BaseModel):
    """Request payload to post a new load."""

    external_id: str
    origin: str
    destination: str
    miles: int = Field(..., ge=0)
    rate: float = Field(..., gt=0)
    rate_per_mile: Optional[float] = Field(default=None, ge=0)
    equipment_type: Optional[str] = "Van"
    weight: Optional[int] = Field(default=None, ge=0)
    commodity: Optional[str] = None
    pickup_time: Optional[datetime] = None
    delivery_time: Optional[datetime] = None
    source: str = "manual"
    match_score: Optional[int] = Field(default=None, ge=0, le=100)
    ai_score: int = Field(default=50, ge=0, le=100)
    profit_margin: Optional[float] = None


class Load(BaseModel):
    """Persisted load record."""

    id: int
    external_id: str
    origin: str
    destination: str
    miles: int
    rate: float
    rate_per_mile: Optional[float] = None
    equipment_type: Optional[str] = None
    weight: Optional[int] = None
    commodity: Optional[str] = None
    pickup_time: Optional[datetime] = None
    delivery_time: Optional[datetime] = None
    status: LoadStatus = LoadStatus.AVAILABLE
    source: str = "manual"
    match_score: Optional[int] = None
    # Base quality score assigned at ingest; gates recommendation processing.
    ai_score: int = 50
    profit_margin: Optional[float] = None
    market_rate: Optional[float] = None
    is_processed: bool = False
    assigned_driver_id: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _derive_rate_per_mile(self) -> "Load":
        if self.rate_per_mile is None and self.miles > 0:
            self.rate_per_mile = round(self.rate / self.miles, 2)
        return self


class LoadAssignmentRequest(BaseModel):
    driver_id: int


class LoadStatusUpdate(BaseModel):
    status: LoadStatus


class DriverCreateRequest(BaseModel):
    """Request payload to register a driver."""

    name: str = Field(..., min_length=1)
    initials: Optional[str] = None
    current_location: str
    status: DriverStatus = DriverStatus.AVAILABLE
    phone_number: Optional[str] = None
    equipment_types: List[str] = Field(default_factory=list)
    min_rate_per_mile: Optional[float] = Field(default=None, ge=0)
    preferred_lanes: List[str] = Field(default_factory=list)
    max_radius: Optional[int] = Field(default=None, gt=0)
    is_active: bool = True


class Driver(BaseModel):
    """Persisted driver record."""

    id: int
    name: str
    initials: str
    current_location: str
    status: DriverStatus = DriverStatus.AVAILABLE
    phone_number: Optional[str] = None
    equipment_types: List[str] = Field(default_factory=list)
    min_rate_per_mile: Optional[float] = None
    preferred_lanes: List[str] = Field(default_factory=list)
    max_radius: Optional[int] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    last_active: datetime = Field(default_factory=_utcnow)


class DriverStatusUpdate(BaseModel):
    status: DriverStatus
    location: Optional[str] = None


class Alert(BaseModel):
    id: int
    type: AlertType
    title: str
    message: str
    is_read: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


class DashboardMetrics(BaseModel):
    active_loads: int
    available_drivers: int
    avg_rate: float
    ai_matches: int
    total_revenue: float
    completed_loads: int
    avg_negotiation_success: float


class ScrapeResult(BaseModel):
    success: bool
    loads_found: int
    load_ids: List[int] = Field(default_factory=list)
