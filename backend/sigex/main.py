import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.database import connect_to_mongo, close_mongo_connection
from .core.logging_config import setup_logging
from .api.api import api_router
from .api.exception_handlers import register_exception_handlers
from .services.container import ServiceContainer, build_services
from .store import InMemoryStore, MongoStore

logger = logging.getLogger(__name__)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application.

    When ``services`` is given (tests) startup does not touch MongoDB and
    shutdown leaves the container to the caller.
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_STR}/openapi.json"
    )

    # Set up CORS - development configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost:8080",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:8080"
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.state.services = services

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to SIGEX API",
            "version": settings.VERSION,
            "docs": f"{settings.API_V1_STR}/docs"
        }

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "store": settings.STORE_BACKEND
        }

    @app.on_event("startup")
    async def startup_event():
        setup_logging(
            gelf_enabled=settings.GRAYLOG_ENABLED,
            graylog_host=settings.GRAYLOG_HOST,
            graylog_port=settings.GRAYLOG_PORT,
            container_name=settings.CONTAINER_NAME
        )
        if app.state.services is not None:
            return

        if settings.STORE_BACKEND == "mongo":
            client = await connect_to_mongo()
            store = MongoStore(client)
        else:
            store = InMemoryStore()
        app.state.services = build_services(settings, store=store)
        app.state.owns_services = True
        logger.info(f"{settings.PROJECT_NAME} {settings.VERSION} ready ({settings.STORE_BACKEND} store)")

    @app.on_event("shutdown")
    async def shutdown_event():
        if getattr(app.state, "owns_services", False):
            await app.state.services.close()
            app.state.services = None
            app.state.owns_services = False
            await close_mongo_connection()

    # Include API routes
    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app


app = create_app()
