"""
Fulfillment Service
Orders and their shipments over one relational store, with a health router
and structured request logging.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fulfillment.api.routes import register_routes
from fulfillment.core import RequestLoggingMiddleware, ServiceHealth, get_logger, setup_logging
from fulfillment.core_settings import get_settings
from fulfillment.infrastructure.db import Database, get_database

SERVICE_DESCRIPTION = "Order and shipment management service"

logger = get_logger(__name__)


def create_app(database: Optional[Database] = None) -> FastAPI:
    """Build the application; ``database`` replaces the configured store"""
    settings = get_settings()

    def database_provider() -> Database:
        return database if database is not None else get_database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.SERVICE_NAME} version {settings.SERVICE_VERSION}")
        try:
            database_provider().init_models()
        except Exception as e:
            logger.error(f"Failed to initialize database schema: {e}")
            raise
        logger.info(f"{settings.SERVICE_NAME} started successfully")

        yield

        logger.info(f"Shutting down {settings.SERVICE_NAME}")
        database_provider().dispose()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        description=SERVICE_DESCRIPTION,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    if database is not None:
        app.dependency_overrides[get_database] = database_provider

    health_service = ServiceHealth(settings.SERVICE_NAME, settings.SERVICE_VERSION, database_provider)
    app.include_router(health_service.create_health_router())

    register_routes(app)

    @app.get("/")
    def root():
        return {
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "status": "running",
            "docs": "/api/docs"
        }

    @app.get("/info")
    def info():
        return {
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "description": SERVICE_DESCRIPTION,
            "environment": settings.ENVIRONMENT,
            "endpoints": {
                "health": "/health",
                "ready": "/health/ready",
                "live": "/health/live",
                "metrics": "/metrics",
                "shipments": "/shipments",
                "orders": "/orders",
                "docs": "/api/docs"
            }
        }

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    setup_logging(
        service_name=settings.SERVICE_NAME,
        level=settings.LOG_LEVEL,
        environment=settings.ENVIRONMENT,
        version=settings.SERVICE_VERSION,
        log_file=settings.LOG_FILE,
        sql_echo=settings.DATABASE_ECHO,
    )
    uvicorn.run(create_app(), host="0.0.0.0", port=8000, log_config=None)


if __name__ == "__main__":
    run()
