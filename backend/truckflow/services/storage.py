"""In-process store for drivers, loads, negotiations, recommendations, and alerts."""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Dict, List, Optional

from truckflow.core.errors import (
    AlertNotFoundError,
    DriverNotFoundError,
    DuplicateLoadError,
    InvalidStatusTransition,
    LoadNotFoundError,
    NegotiationNotFoundError,
    RecommendationNotFoundError,
)
from truckflow.core.logging import logger
from truckflow.models.fleet import (
    Alert,
    AlertType,
    DashboardMetrics,
    Driver,
    DriverCreateRequest,
    DriverStatus,
    Load,
    LoadCreateRequest,
    LoadStatus,
)
from truckflow.models.negotiation import (
    MarketAnalysis,
    Negotiation,
    NegotiationStatus,
    NegotiationStep,
)
from truckflow.models.recommendation import (
    AIPerformanceRecord,
    Recommendation,
    RecommendationCandidate,
    RecommendationStatus,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _initials(name: str) -> str:
    parts = [part for part in name.split() if part]
    return "".join(part[0].upper() for part in parts[:2]) or "?"


class MemoryStorage:
    """
    Auto-incrementing in-memory tables.

    Callers always receive copies; every mutation goes through a method so
    the lock covers it. Multi-step flows (append a negotiation step, then
    update its status) are separate writes with no transaction around them.
    """

    ALLOWED_STATUS_TRANSITIONS = {
        LoadStatus.AVAILABLE.value: {LoadStatus.ASSIGNED.value},
        LoadStatus.ASSIGNED.value: {LoadStatus.DELIVERED.value},
        LoadStatus.DELIVERED.value: set(),
    }

    RECOMMENDATION_TIMESTAMPS = {
        RecommendationStatus.VIEWED: "viewed_at",
        RecommendationStatus.CLICKED: "clicked_at",
        RecommendationStatus.BOOKED: "booked_at",
    }

    def __init__(self) -> None:
        self._lock = RLock()
        self._sequences: Dict[str, int] = defaultdict(int)
        self._drivers: Dict[int, Driver] = {}
        self._loads: Dict[int, Load] = {}
        self._negotiations: Dict[int, Negotiation] = {}
        self._recommendations: Dict[int, Recommendation] = {}
        self._alerts: Dict[int, Alert] = {}
        self._ai_performance: Dict[int, AIPerformanceRecord] = {}

    def _next_id(self, table: str) -> int:
        with self._lock:
            self._sequences[table] += 1
            return self._sequences[table]

    @classmethod
    def _validate_status_transition(cls, current_status: str, next_status: str) -> None:
        if current_status == next_status:
            return
        allowed = cls.ALLOWED_STATUS_TRANSITIONS.get(current_status)
        if allowed is None:
            raise InvalidStatusTransition(f"Unknown current status '{current_status}'")
        if next_status not in allowed:
            raise InvalidStatusTransition(
                f"Invalid status transition {current_status} -> {next_status}. "
                f"Allowed: {sorted(allowed)}"
            )

    # ==================== DRIVERS ====================

    def list_drivers(self) -> List[Driver]:
        with self._lock:
            drivers = sorted(self._drivers.values(), key=lambda d: d.name.lower())
            return [driver.model_copy(deep=True) for driver in drivers]

    def list_active_drivers(self) -> List[Driver]:
        return [driver for driver in self.list_drivers() if driver.is_active]

    def get_driver(self, driver_id: int) -> Driver:
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                raise DriverNotFoundError(driver_id)
            return driver.model_copy(deep=True)

    def create_driver(self, request: DriverCreateRequest) -> Driver:
        with self._lock:
            driver = Driver(
                id=self._next_id("drivers"),
                initials=request.initials or _initials(request.name),
                **request.model_dump(exclude={"initials"}),
            )
            self._drivers[driver.id] = driver
            return driver.model_copy(deep=True)

    def update_driver_status(
        self,
        driver_id: int,
        status: DriverStatus,
        location: Optional[str] = None,
    ) -> Driver:
        with self._lock:
            driver = self._drivers.get(driver_id)
            if driver is None:
                raise DriverNotFoundError(driver_id)
            patch: Dict[str, Any] = {"status": status, "last_active": _utcnow()}
            if location:
                patch["current_location"] = location
            updated = driver.model_copy(update=patch)
            self._drivers[driver_id] = updated
            return updated.model_copy(deep=True)

    # ==================== LOADS ====================

    def list_loads(
        self,
        status: Optional[LoadStatus] = None,
        source: Optional[str] = None,
        assigned_driver_id: Optional[int] = None,
    ) -> List[Load]:
        with self._lock:
            loads = list(self._loads.values())
        if status is not None:
            loads = [load for load in loads if load.status == status]
        if source:
            loads = [load for load in loads if load.source.lower() == source.lower()]
        if assigned_driver_id is not None:
            loads = [load for load in loads if load.assigned_driver_id == assigned_driver_id]
        loads.sort(key=lambda load: (load.created_at, load.id), reverse=True)
        return [load.model_copy(deep=True) for load in loads]

    def get_load(self, load_id: int) -> Load:
        with self._lock:
            load = self._loads.get(load_id)
            if load is None:
                raise LoadNotFoundError(load_id)
            return load.model_copy(deep=True)

    def get_load_by_external_id(self, external_id: str) -> Optional[Load]:
        key = external_id.strip().upper()
        with self._lock:
            for load in self._loads.values():
                if load.external_id.upper() == key:
                    return load.model_copy(deep=True)
        return None

    def create_load(self, request: LoadCreateRequest) -> Load:
        with self._lock:
            if self.get_load_by_external_id(request.external_id) is not None:
                raise DuplicateLoadError(f"Load {request.external_id} already exists")
            load = Load(id=self._next_id("loads"), **request.model_dump())
            self._loads[load.id] = load
            return load.model_copy(deep=True)

    def _patch_load(self, load_id: int, **patch: Any) -> Load:
        load = self._loads.get(load_id)
        if load is None:
            raise LoadNotFoundError(load_id)
        patch["updated_at"] = _utcnow()
        updated = load.model_copy(update=patch)
        self._loads[load_id] = updated
        return updated.model_copy(deep=True)

    def update_load_status(self, load_id: int, status: LoadStatus) -> Load:
        with self._lock:
            current = self.get_load(load_id)
            self._validate_status_transition(current.status.value, LoadStatus(status).value)
            if LoadStatus(status) == LoadStatus.ASSIGNED and current.assigned_driver_id is None:
                raise InvalidStatusTransition(
                    f"Load {load_id} has no driver; assign one through the assign endpoint"
                )
            return self._patch_load(load_id, status=LoadStatus(status))

    def assign_load_to_driver(self, load_id: int, driver_id: int) -> Load:
        with self._lock:
            current = self.get_load(load_id)
            self.get_driver(driver_id)
            self._validate_status_transition(current.status.value, LoadStatus.ASSIGNED.value)
            return self._patch_load(
                load_id,
                status=LoadStatus.ASSIGNED,
                assigned_driver_id=driver_id,
            )

    def update_load_market_rate(self, load_id: int, market_rate: float) -> Load:
        with self._lock:
            return self._patch_load(load_id, market_rate=market_rate)

    def list_unprocessed_loads(self, min_ai_score: int = 50, limit: int = 100) -> List[Load]:
        with self._lock:
            loads = [
                load
                for load in sorted(self._loads.values(), key=lambda load: load.id)
                if not load.is_processed
                and load.status == LoadStatus.AVAILABLE
                and load.ai_score >= min_ai_score
            ]
            return [load.model_copy(deep=True) for load in loads[:limit]]

    def mark_load_processed(self, load_id: int) -> Load:
        with self._lock:
            return self._patch_load(load_id, is_processed=True)

    # ==================== NEGOTIATIONS ====================

    def list_negotiations(self, load_id: Optional[int] = None) -> List[Negotiation]:
        with self._lock:
            rows = list(self._negotiations.values())
        if load_id is not None:
            rows = [row for row in rows if row.load_id == load_id]
        rows.sort(key=lambda row: (row.created_at, row.id), reverse=True)
        return [row.model_copy(deep=True) for row in rows]

    def get_negotiation(self, negotiation_id: int) -> Negotiation:
        with self._lock:
            negotiation = self._negotiations.get(negotiation_id)
            if negotiation is None:
                raise NegotiationNotFoundError(negotiation_id)
            return negotiation.model_copy(deep=True)

    def create_negotiation(
        self,
        load_id: int,
        original_rate: float,
        suggested_rate: float,
        market_analysis: MarketAnalysis,
        dispatcher_id: Optional[int] = None,
    ) -> Negotiation:
        with self._lock:
            negotiation = Negotiation(
                id=self._next_id("negotiations"),
                load_id=load_id,
                dispatcher_id=dispatcher_id,
                original_rate=original_rate,
                suggested_rate=suggested_rate,
                status=NegotiationStatus.IN_PROGRESS,
                market_analysis=market_analysis,
                confidence_score=round(market_analysis.confidence),
            )
            self._negotiations[negotiation.id] = negotiation
            return negotiation.model_copy(deep=True)

    def _patch_negotiation(self, negotiation_id: int, **patch: Any) -> Negotiation:
        negotiation = self._negotiations.get(negotiation_id)
        if negotiation is None:
            raise NegotiationNotFoundError(negotiation_id)
        patch["updated_at"] = _utcnow()
        updated = negotiation.model_copy(update=patch)
        self._negotiations[negotiation_id] = updated
        return updated.model_copy(deep=True)

    def update_negotiation_status(
        self,
        negotiation_id: int,
        status: NegotiationStatus,
        final_rate: Optional[float] = None,
    ) -> Negotiation:
        with self._lock:
            patch: Dict[str, Any] = {"status": NegotiationStatus(status)}
            if final_rate is not None:
                patch["final_rate"] = final_rate
            return self._patch_negotiation(negotiation_id, **patch)

    def mark_auto_negotiated(self, negotiation_id: int) -> Negotiation:
        with self._lock:
            return self._patch_negotiation(negotiation_id, auto_negotiated=True)

    def add_negotiation_step(self, negotiation_id: int, step: NegotiationStep) -> Negotiation:
        with self._lock:
            current = self._negotiations.get(negotiation_id)
            if current is None:
                raise NegotiationNotFoundError(negotiation_id)
            steps = [*current.steps, step.model_copy()]
            return self._patch_negotiation(negotiation_id, steps=steps)

    # ==================== RECOMMENDATIONS ====================

    def save_recommendation(
        self,
        candidate: RecommendationCandidate,
        fuel_costs: float,
        toll_costs: float,
        deadhead_miles: int,
        total_miles: int,
        hours_to_complete: float,
    ) -> Recommendation:
        with self._lock:
            recommendation = Recommendation(
                id=self._next_id("recommendations"),
                fuel_costs=fuel_costs,
                toll_costs=toll_costs,
                deadhead_miles=deadhead_miles,
                total_miles=total_miles,
                hours_to_complete=hours_to_complete,
                **candidate.model_dump(),
            )
            self._recommendations[recommendation.id] = recommendation
            return recommendation.model_copy(deep=True)

    def get_recommendation(self, recommendation_id: int) -> Recommendation:
        with self._lock:
            recommendation = self._recommendations.get(recommendation_id)
            if recommendation is None:
                raise RecommendationNotFoundError(recommendation_id)
            return recommendation.model_copy(deep=True)

    def _pending_recommendations(self) -> List[Recommendation]:
        with self._lock:
            rows = [
                row for row in self._recommendations.values()
                if row.status == RecommendationStatus.PENDING
            ]
        rows.sort(key=lambda row: (row.ai_score, -row.id), reverse=True)
        return [row.model_copy(deep=True) for row in rows]

    def list_driver_recommendations(self, driver_id: int, limit: int = 10) -> List[Recommendation]:
        rows = [row for row in self._pending_recommendations() if row.driver_id == driver_id]
        return rows[:limit]

    def list_high_value_recommendations(
        self,
        min_ai_score: int = 80,
        min_profitability: int = 70,
    ) -> List[Recommendation]:
        return [
            row for row in self._pending_recommendations()
            if row.ai_score >= min_ai_score and row.profitability_score >= min_profitability
        ]

    def mark_recommendation(
        self,
        recommendation_id: int,
        status: RecommendationStatus,
    ) -> Recommendation:
        with self._lock:
            recommendation = self._recommendations.get(recommendation_id)
            if recommendation is None:
                raise RecommendationNotFoundError(recommendation_id)
            patch: Dict[str, Any] = {"status": RecommendationStatus(status)}
            timestamp_field = self.RECOMMENDATION_TIMESTAMPS.get(RecommendationStatus(status))
            if timestamp_field:
                patch[timestamp_field] = _utcnow()
            updated = recommendation.model_copy(update=patch)
            self._recommendations[recommendation_id] = updated
            return updated.model_copy(deep=True)

    def count_recommendations(self) -> int:
        with self._lock:
            return len(self._recommendations)

    def record_ai_performance(
        self,
        model_type: str,
        input_data: Dict[str, Any],
        output_data: Dict[str, Any],
        processing_time_ms: float,
    ) -> AIPerformanceRecord:
        with self._lock:
            record = AIPerformanceRecord(
                id=self._next_id("ai_performance"),
                model_type=model_type,
                input_data=input_data,
                output_data=output_data,
                processing_time_ms=processing_time_ms,
            )
            self._ai_performance[record.id] = record
            return record.model_copy(deep=True)

    def list_ai_performance(self, limit: int = 20) -> List[AIPerformanceRecord]:
        with self._lock:
            rows = sorted(self._ai_performance.values(), key=lambda row: row.id, reverse=True)
            return [row.model_copy(deep=True) for row in rows[:limit]]

    # ==================== ALERTS ====================

    def list_alerts(self, limit: Optional[int] = None) -> List[Alert]:
        with self._lock:
            rows = sorted(self._alerts.values(), key=lambda row: row.id, reverse=True)
            if limit is not None:
                rows = rows[:limit]
            return [row.model_copy(deep=True) for row in rows]

    def create_alert(self, alert_type: AlertType, title: str, message: str) -> Alert:
        with self._lock:
            alert = Alert(
                id=self._next_id("alerts"),
                type=alert_type,
                title=title,
                message=message,
            )
            self._alerts[alert.id] = alert
        logger.info("Alert created", alert_type=alert.type.value, title=title)
        return alert.model_copy(deep=True)

    def mark_alert_read(self, alert_id: int) -> Alert:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            updated = alert.model_copy(update={"is_read": True})
            self._alerts[alert_id] = updated
            return updated.model_copy(deep=True)

    # ==================== METRICS ====================

    def dashboard_metrics(self) -> DashboardMetrics:
        with self._lock:
            loads = list(self._loads.values())
            drivers = list(self._drivers.values())
            negotiations = list(self._negotiations.values())
            recommendation_count = len(self._recommendations)

        delivered = [load for load in loads if load.status == LoadStatus.DELIVERED]
        active = [load for load in loads if load.status != LoadStatus.DELIVERED]
        closed = [row for row in negotiations if row.status != NegotiationStatus.IN_PROGRESS]
        accepted = [row for row in closed if row.status == NegotiationStatus.ACCEPTED]
        total_revenue = sum(load.rate for load in delivered)

        return DashboardMetrics(
            active_loads=len(active),
            available_drivers=sum(1 for d in drivers if d.status == DriverStatus.AVAILABLE),
            avg_rate=round(total_revenue / len(delivered), 2) if delivered else 0.0,
            ai_matches=recommendation_count,
            total_revenue=round(total_revenue, 2),
            completed_loads=len(delivered),
            avg_negotiation_success=round(len(accepted) / len(closed), 4) if closed else 0.0,
        )
