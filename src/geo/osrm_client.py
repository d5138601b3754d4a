from typing import Any, Literal

import httpx
import polyline
from pydantic import BaseModel

from core.exceptions import (
    NetworkError,
    ServiceUnavailableError,
    ValidationError,
)


class RouteResponse(BaseModel):
    distance_meters: float
    duration_seconds: float
    geometry: list[tuple[float, float]]
    osrm_code: str


class NoRouteFoundError(ValidationError):
    """No route found between coordinates. Inherits from ValidationError (non-retryable)."""

    pass


class OSRMResponseError(ValidationError):
    """OSRM answered with a non-Ok code other than NoRoute (non-retryable)."""

    pass


class OSRMServiceError(ServiceUnavailableError):
    """OSRM service error (5xx or transport failure). Retryable."""

    pass


class OSRMTimeoutError(NetworkError):
    """OSRM request timeout. Inherits from NetworkError (retryable)."""

    pass


def decode_polyline(encoded: str, precision: int = 5) -> list[tuple[float, float]]:
    """Decode polyline string to list of (lat, lon) tuples."""
    coords = polyline.decode(encoded, precision)
    return [(lat, lon) for lat, lon in coords]


def decode_geojson(geometry: dict[str, Any]) -> list[tuple[float, float]]:
    """Convert a GeoJSON LineString ([lon, lat] pairs) to (lat, lon) tuples."""
    return [(float(lat), float(lon)) for lon, lat in geometry["coordinates"]]


class OSRMClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        profile: str = "driving",
        geometry_format: Literal["geojson", "polyline"] = "geojson",
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.profile = profile
        self.geometry_format = geometry_format

    def _route_url(self, origin: tuple[float, float], destination: tuple[float, float]) -> str:
        origin_lat, origin_lon = origin
        dest_lat, dest_lon = destination
        return (
            f"{self.base_url}/route/v1/{self.profile}/"
            f"{origin_lon},{origin_lat};{dest_lon},{dest_lat}"
        )

    def _decode_geometry(self, geometry: Any) -> list[tuple[float, float]]:
        if self.geometry_format == "polyline":
            return decode_polyline(geometry)
        return decode_geojson(geometry)

    async def get_route(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> RouteResponse:
        """Get route between two (lat, lon) coordinates using OSRM."""
        url = self._route_url(origin, destination)
        params = {"overview": "full", "geometries": self.geometry_format}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=params)

                if response.status_code >= 500:
                    raise OSRMServiceError(f"OSRM server error: {response.status_code}")

                try:
                    data = response.json()
                except ValueError as e:
                    raise OSRMServiceError(
                        f"OSRM returned a non-JSON body (status {response.status_code})"
                    ) from e

                if not isinstance(data, dict):
                    raise OSRMResponseError(
                        f"OSRM returned a {type(data).__name__} body, expected an object",
                        details={"status": response.status_code},
                    )

                code = data.get("code")
                if code == "NoRoute":
                    raise NoRouteFoundError("No route found between coordinates")
                routes = data.get("routes")
                if code != "Ok" or not isinstance(routes, list) or not routes:
                    raise OSRMResponseError(
                        f"OSRM error: {data.get('message', code or 'Unknown error')}",
                        details={"code": code, "status": response.status_code},
                    )

                try:
                    route = routes[0]
                    return RouteResponse(
                        distance_meters=float(route["distance"]),
                        duration_seconds=float(route["duration"]),
                        geometry=self._decode_geometry(route["geometry"]),
                        osrm_code=code,
                    )
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    raise OSRMResponseError(f"Malformed OSRM route: {e}") from e

        except httpx.TimeoutException as e:
            raise OSRMTimeoutError(f"Request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise OSRMServiceError(f"Network error: {e}") from e
