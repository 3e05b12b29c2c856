"""TruckFlow - Rate Optimization and Load Matching API"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from truckflow.core.config import Settings, get_settings
from truckflow.core.logging import configure_logging, logger
from truckflow.routers import ai, fleet, negotiations, recommendations
from truckflow.services.container import ServiceContainer, build_services

VERSION = "0.1.0"


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    settings = settings or get_settings()
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        configure_logging(settings.log_level, json_output=settings.log_json)
        logger.info(
            "TruckFlow API starting",
            version=VERSION,
            llm_model=settings.llm_model,
            llm_provider=services.estimator.provider,
            scheduler_enabled=settings.recommendation_scheduler_enabled,
        )
        if settings.recommendation_scheduler_enabled:
            services.scheduler.start()
        yield
        # Shutdown
        await services.scheduler.stop()
        logger.info("TruckFlow API shutting down")

    app = FastAPI(
        title="TruckFlow API",
        description="Freight dispatch - AI rate optimization, broker negotiation, and load/driver matching",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(ai.router)
    app.include_router(fleet.router)
    app.include_router(negotiations.router)
    app.include_router(recommendations.router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "TruckFlow API",
            "version": VERSION,
            "description": "Rate optimization and load matching for freight dispatch",
            "endpoints": {
                "ai": "/api/ai",
                "drivers": "/api/drivers",
                "loads": "/api/loads",
                "negotiations": "/api/negotiations",
                "recommendations": "/api/recommendations",
                "alerts": "/api/alerts",
                "metrics": "/api/metrics",
            },
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "scheduler_running": services.scheduler.running,
            "processing": services.recommendation_engine.is_processing,
        }

    return app


app = create_app()
