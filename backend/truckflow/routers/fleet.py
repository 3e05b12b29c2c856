"""API routes for drivers, loads, alerts, and dashboard metrics."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from truckflow.core.deps import get_recommendation_engine, get_services, get_storage
from truckflow.core.errors import DuplicateLoadError, InvalidStatusTransition, NotFoundError
from truckflow.core.logging import logger
from truckflow.models.fleet import (
    Alert,
    AlertType,
    DashboardMetrics,
    Driver,
    DriverCreateRequest,
    DriverStatusUpdate,
    Load,
    LoadAssignmentRequest,
    LoadCreateRequest,
    LoadStatus,
    LoadStatusUpdate,
    ScrapeResult,
)
from truckflow.services.container import ServiceContainer
from truckflow.services.recommendation_engine import RecommendationEngine
from truckflow.services.storage import MemoryStorage

router = APIRouter(prefix="/api", tags=["fleet"])


@router.get("/metrics", response_model=DashboardMetrics)
def get_metrics(storage: MemoryStorage = Depends(get_storage)) -> DashboardMetrics:
    return storage.dashboard_metrics()


# ==================== DRIVERS ====================

@router.get("/drivers", response_model=List[Driver])
def list_drivers(storage: MemoryStorage = Depends(get_storage)) -> List[Driver]:
    return storage.list_drivers()


@router.post("/drivers", response_model=Driver)
def create_driver(
    request: DriverCreateRequest,
    storage: MemoryStorage = Depends(get_storage),
) -> Driver:
    driver = storage.create_driver(request)
    logger.info("Driver registered", driver_id=driver.id, name=driver.name)
    return driver


@router.patch("/drivers/{driver_id}/status", response_model=Driver)
def update_driver_status(
    driver_id: int,
    request: DriverStatusUpdate,
    storage: MemoryStorage = Depends(get_storage),
) -> Driver:
    try:
        return storage.update_driver_status(driver_id, request.status, request.location)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("/drivers/{driver_id}/recommendations")
def driver_recommendations(
    driver_id: int,
    limit: int = Query(default=10, ge=1, le=100),
    storage: MemoryStorage = Depends(get_storage),
    engine: RecommendationEngine = Depends(get_recommendation_engine),
):
    """Pending recommendations for a driver, best score first, with the load attached."""
    try:
        recommendations = engine.get_driver_recommendations(driver_id, limit=limit)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    items = []
    for recommendation in recommendations:
        try:
            load = storage.get_load(recommendation.load_id)
        except NotFoundError:
            load = None
        items.append({"recommendation": recommendation, "load": load})
    return items


# ==================== LOADS ====================

@router.get("/loads", response_model=List[Load])
def list_loads(
    status: Optional[LoadStatus] = Query(default=None),
    source: Optional[str] = Query(default=None),
    driver_id: Optional[int] = Query(default=None),
    storage: MemoryStorage = Depends(get_storage),
) -> List[Load]:
    return storage.list_loads(status=status, source=source, assigned_driver_id=driver_id)


@router.post("/loads", response_model=Load)
def create_load(
    request: LoadCreateRequest,
    storage: MemoryStorage = Depends(get_storage),
) -> Load:
    try:
        return storage.create_load(request)
    except DuplicateLoadError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.get("/loads/{load_id}", response_model=Load)
def get_load(load_id: int, storage: MemoryStorage = Depends(get_storage)) -> Load:
    try:
        return storage.get_load(load_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.post("/loads/{load_id}/assign", response_model=Load)
def assign_load(
    load_id: int,
    request: LoadAssignmentRequest,
    storage: MemoryStorage = Depends(get_storage),
) -> Load:
    try:
        load = storage.assign_load_to_driver(load_id, request.driver_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidStatusTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    storage.create_alert(
        AlertType.SUCCESS,
        "Load assigned successfully",
        f"Load {load.external_id} assigned to driver {request.driver_id}",
    )
    return load


@router.patch("/loads/{load_id}/status", response_model=Load)
def update_load_status(
    load_id: int,
    request: LoadStatusUpdate,
    storage: MemoryStorage = Depends(get_storage),
) -> Load:
    """Advance a load's status. Assigning goes through `/loads/{id}/assign`."""
    try:
        return storage.update_load_status(load_id, request.status)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidStatusTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.post("/loads/scrape", response_model=ScrapeResult)
def scrape_load_boards(services: ServiceContainer = Depends(get_services)) -> ScrapeResult:
    try:
        return services.load_board.scrape()
    except Exception as e:
        logger.error("Load board scraping failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to scrape load boards")


# ==================== ALERTS ====================

@router.get("/alerts", response_model=List[Alert])
def list_alerts(storage: MemoryStorage = Depends(get_storage)) -> List[Alert]:
    return storage.list_alerts(limit=10)


@router.patch("/alerts/{alert_id}/read", response_model=Alert)
def mark_alert_read(alert_id: int, storage: MemoryStorage = Depends(get_storage)) -> Alert:
    try:
        return storage.mark_alert_read(alert_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
