"""FastAPI application factory for the rendezvous planner control API."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.auth import verify_api_key
from api.routes import trips
from api.websocket import ConnectionManager
from api.websocket import router as websocket_router
from settings import get_settings
from trips.controller import TripController

logger = logging.getLogger(__name__)


def create_app(controller: TripController) -> FastAPI:
    """Create FastAPI application with the trip controller attached.

    Args:
        controller: TripController owning the active trip
    """
    connection_manager = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Forward trip snapshots to WebSocket clients while the app runs."""
        controller.register_callback(connection_manager.broadcast_trip)
        yield
        controller.unregister_callback(connection_manager.broadcast_trip)
        controller.end()

    app = FastAPI(
        title="Group Rendezvous Planner API",
        version="1.0.0",
        description="REST API for planning group trips and streaming simulation updates",
        lifespan=lifespan,
    )

    # Set dependencies immediately (not in lifespan) so they're available for testing
    app.state.controller = controller
    app.state.connection_manager = connection_manager

    settings = get_settings()
    origins = settings.cors.origins.split(",")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(trips.router, prefix="/trip", tags=["trip"])
    app.include_router(websocket_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint for monitoring (unauthenticated for infrastructure)."""
        return {"status": "healthy"}

    @app.get("/auth/validate")
    async def validate_api_key_endpoint(
        _: str = Depends(verify_api_key),
    ) -> dict[str, str]:
        """Returns 200 for a valid API key, 401 otherwise."""
        return {"status": "authenticated"}

    return app
