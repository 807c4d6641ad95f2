"""
Routing service client.

Asks a Directions-style HTTP API for the road distance and travel time
between two points. Every failure mode (network, timeout, HTTP error, no
route, open circuit) surfaces as RoutingServiceUnavailable so the fallback
chain can move on to the next tier.
"""

import logging
from typing import Any, Optional

import httpx

from trip_telemetry.app.core.exceptions import RoutingServiceUnavailable
from trip_telemetry.app.core.reliability import CircuitBreaker, CircuitOpenError
from trip_telemetry.app.schemas.telemetry import Coordinate, RouteEstimate
from trip_telemetry.app.services.geo import whole_minutes

logger = logging.getLogger(__name__)


def parse_directions(data: Any) -> RouteEstimate:
    """
    Read the first leg of the first (recommended) route.

    Distance comes in meters and duration in seconds.
    """
    if not isinstance(data, dict):
        raise RoutingServiceUnavailable(f"Unexpected routing response body ({type(data).__name__})")
    status = data.get("status")
    routes = data.get("routes") or []
    if status != "OK" or not routes:
        raise RoutingServiceUnavailable(f"Routing service returned no route (status={status})")

    try:
        leg = routes[0]["legs"][0]
        meters = float(leg["distance"]["value"])
        seconds = float(leg["duration"]["value"])
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise RoutingServiceUnavailable(f"Malformed routing response: {exc!r}") from exc

    if meters <= 0:
        raise RoutingServiceUnavailable("Routing service returned zero distance")

    return RouteEstimate(distance_km=meters / 1000.0, duration_minutes=whole_minutes(seconds))


class HttpRoutingClient:

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        breaker: Optional[CircuitBreaker] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self._api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._breaker = breaker or CircuitBreaker(failure_threshold=3, reset_timeout=30)
        self._client = client or httpx.AsyncClient()

    async def route(self, start: Coordinate, end: Coordinate) -> RouteEstimate:
        try:
            return await self._breaker.call(self._fetch, start, end)
        except CircuitOpenError as exc:
            raise RoutingServiceUnavailable(str(exc)) from exc

    async def _fetch(self, start: Coordinate, end: Coordinate) -> RouteEstimate:
        params = {
            "origin": f"{start.latitude},{start.longitude}",
            "destination": f"{end.latitude},{end.longitude}",
        }
        if self._api_key:
            params["key"] = self._api_key

        try:
            response = await self._client.get(self.base_url, params=params, timeout=self.timeout_seconds)
        except httpx.HTTPError as exc:
            raise RoutingServiceUnavailable(f"Routing request failed: {exc!r}") from exc

        if not response.is_success:
            raise RoutingServiceUnavailable(f"Routing service returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise RoutingServiceUnavailable("Routing service returned invalid JSON") from exc

        estimate = parse_directions(data)
        logger.info(
            "Route %s -> %s: %.2f km, %s min",
            params["origin"], params["destination"], estimate.distance_km, estimate.duration_minutes
        )
        return estimate

    async def aclose(self) -> None:
        await self._client.aclose()
