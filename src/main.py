"""
Group Rendezvous Planner - Entry Point

Wires the routing client, path provider, meeting point optimizer and trip
controller into the FastAPI control API and serves it with uvicorn. The
tick loop runs on the same asyncio event loop as the API.
"""

import logging

import uvicorn

from api.app import create_app
from core.retry import RetryConfig
from geo.osrm_client import OSRMClient
from geo.route_provider import RoutePathProvider
from rendezvous.optimizer import MeetingPointOptimizer
from settings import Settings, get_settings
from sim_logging import setup_logging
from trips.controller import TripController

logger = logging.getLogger(__name__)


def build_controller(settings: Settings) -> TripController:
    osrm_client = OSRMClient(
        settings.osrm.base_url,
        timeout=settings.osrm.timeout,
        profile=settings.osrm.profile,
        geometry_format=settings.osrm.geometry_format,
    )
    logger.info(f"OSRM client configured: {settings.osrm.base_url}")

    provider = RoutePathProvider(
        osrm_client,
        retry_config=RetryConfig(
            max_attempts=settings.osrm.max_retries + 1,
            base_delay=settings.osrm.retry_base_delay,
            multiplier=settings.osrm.retry_multiplier,
        ),
        cache_size=settings.osrm.cache_size,
    )
    return TripController(
        MeetingPointOptimizer(provider),
        speed_multiplier=settings.simulation.speed_multiplier,
        auto_depart=settings.simulation.auto_depart,
    )


def main() -> None:
    """Main entry point - initializes and runs the planner service."""
    settings = get_settings()

    setup_logging(
        level=settings.simulation.log_level,
        json_output=settings.simulation.log_format == "json",
        environment=settings.simulation.environment,
    )

    logger.info("Starting rendezvous planner service...")
    app = create_app(build_controller(settings))

    logger.info(f"Starting rendezvous planner service on port {settings.api.port}")
    uvicorn.run(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.simulation.log_level.lower(),
    )


if __name__ == "__main__":
    main()
