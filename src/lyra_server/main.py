"""
Lyra Server

Access-control and resource-governance front for a real-time collaborative
editing transport.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import VERSION, admin_router, health_router, register_exception_handlers, room_router
from .config import Settings, settings as default_settings
from .services import create_services
from .websocket import websocket_endpoint

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle"""
    services = app.state.services
    settings = services.settings

    logger.info("Lyra Server starting...")
    logger.info(f"Configuration: {settings.summary()}")

    await services.start()

    logger.info(f"Server running on {settings.host}:{settings.port}")
    logger.info(f"Health check: http://{settings.host}:{settings.port}/health")
    logger.info(f"WebSocket: ws://{settings.host}:{settings.port}/ws/{{documentName}}")

    yield

    logger.info("Shutting down gracefully...")
    await services.close()
    logger.info("Server shut down")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application. Services are wired here and connected in the lifespan."""
    settings = settings or default_settings

    app = FastAPI(
        title="Lyra Server",
        description="Room-scoped admission control for collaborative editing",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = create_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(health_router)
    app.include_router(room_router)
    app.include_router(admin_router)

    @app.get("/")
    async def root():
        """Server info endpoint"""
        return {
            "name": "Lyra Server",
            "version": VERSION,
            "endpoints": {
                "health": "/health",
                "room": "/api/room",
                "admin": "/admin/api",
                "ws": "/ws/{documentName}",
            },
        }

    app.add_api_websocket_route("/ws/{document_name}", websocket_endpoint)
    return app


setup_logging(default_settings.log_level)
app = create_app()
