"""Shared route dependencies. Services live on `app.state.services`."""
from fastapi import Request

from truckflow.services.container import ServiceContainer
from truckflow.services.rate_optimizer import RateOptimizer
from truckflow.services.recommendation_engine import RecommendationEngine
from truckflow.services.storage import MemoryStorage


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_storage(request: Request) -> MemoryStorage:
    return get_services(request).storage


def get_rate_optimizer(request: Request) -> RateOptimizer:
    return get_services(request).rate_optimizer


def get_recommendation_engine(request: Request) -> RecommendationEngine:
    return get_services(request).recommendation_engine
