"""Road-network paths with a straight-line fallback.

The provider is the only component that talks to the routing service on
behalf of the planner. ``fetch_path`` never raises: any routing failure is
logged and replaced by a synthetic straight line, so the optimizer and the
simulation always receive usable geometry.
"""

import logging
from collections import OrderedDict
from collections.abc import Sequence

from core.exceptions import ServiceUnavailableError, SimulationError
from core.retry import RetryConfig, with_retry
from geo.distance import interpolate
from geo.osrm_client import OSRMClient
from trip import Location

logger = logging.getLogger(__name__)

# 10 equal segments, 11 points including both endpoints
FALLBACK_SEGMENTS = 10


class RoutingUnavailable(ServiceUnavailableError):
    """A single path fetch failed. Recovered locally by the straight-line fallback."""

    pass


def straight_line_path(
    origin: Location, destination: Location, segments: int = FALLBACK_SEGMENTS
) -> list[Location]:
    """Interpolate origin -> destination into segments + 1 evenly spaced points."""
    return [interpolate(origin, destination, i / segments) for i in range(segments + 1)]


def normalize_geometry(
    geometry: Sequence[tuple[float, float]], origin: Location, destination: Location
) -> list[Location]:
    """Convert (lat, lon) samples to Locations in travel order.

    Consecutive duplicates are dropped and the path is anchored so that it
    starts exactly at origin and ends exactly at destination (routing engines
    snap endpoints to the nearest road).
    """
    path: list[Location] = []
    for lat, lon in geometry:
        sample = Location(lat=lat, lng=lon)
        if not path or path[-1] != sample:
            path.append(sample)

    if not path or path[0] != origin:
        path.insert(0, origin)
    if path[-1] != destination:
        path.append(destination)
    return path


class RoutePathProvider:
    def __init__(
        self,
        osrm_client: OSRMClient,
        retry_config: RetryConfig | None = None,
        cache_size: int = 1024,
    ):
        self.osrm_client = osrm_client
        self.retry_config = retry_config or RetryConfig(max_attempts=1)
        self.cache_size = cache_size
        self.cache: OrderedDict[str, list[Location]] = OrderedDict()
        self.requests = 0
        self.hits = 0
        self.fallbacks = 0
        self.retries = 0

    def _generate_cache_key(self, origin: Location, destination: Location) -> str:
        """Generate cache key for a path request."""
        return f"{origin.lat:.6f},{origin.lng:.6f}-{destination.lat:.6f},{destination.lng:.6f}"

    async def fetch_path(self, origin: Location, destination: Location) -> list[Location]:
        """Road path from origin to destination, or the straight-line fallback."""
        self.requests += 1
        cache_key = self._generate_cache_key(origin, destination)

        if cache_key in self.cache:
            self.hits += 1
            self.cache.move_to_end(cache_key)
            return list(self.cache[cache_key])

        try:
            path = await self.fetch_road_path(origin, destination)
        except RoutingUnavailable as e:
            self.fallbacks += 1
            logger.warning(
                "Routing unavailable for %s -> %s, using straight-line fallback: %s",
                origin.as_tuple(),
                destination.as_tuple(),
                e,
            )
            return straight_line_path(origin, destination)

        if self.cache_size > 0:
            self.cache[cache_key] = path
            if len(self.cache) > self.cache_size:
                self.cache.popitem(last=False)

        return list(path)

    async def fetch_road_path(self, origin: Location, destination: Location) -> list[Location]:
        """Road path from the routing service. Raises RoutingUnavailable on any failure."""
        try:
            response = await with_retry(
                lambda: self.osrm_client.get_route(origin.as_tuple(), destination.as_tuple()),
                config=self.retry_config,
                operation_name="OSRM route",
                on_retry=self._on_retry,
            )
        except SimulationError as e:
            raise RoutingUnavailable(str(e), details=e.details) from e

        try:
            return normalize_geometry(response.geometry, origin, destination)
        except ValueError as e:
            raise RoutingUnavailable(f"Invalid route geometry: {e}") from e

    def _on_retry(self, error: Exception, attempt: int) -> None:
        self.retries += 1
        logger.info("Routing service attempt %d failed, retrying: %s", attempt + 1, error)

    def get_cache_stats(self) -> dict[str, float | int]:
        hit_rate = self.hits / self.requests if self.requests > 0 else 0.0
        return {
            "requests": self.requests,
            "hits": self.hits,
            "fallbacks": self.fallbacks,
            "retries": self.retries,
            "hit_rate": hit_rate,
            "cache_size": len(self.cache),
        }

    def clear_cache(self) -> None:
        self.cache.clear()
        self.requests = 0
        self.hits = 0
        self.fallbacks = 0
        self.retries = 0
