"""HTTP client for the Google Routes API (computeRoutes)."""

from __future__ import annotations

import logging
from typing import Any, Literal, Sequence

import httpx

from ...config import settings
from ...models.domain import Location, OptimizedRoute, RouteLeg, Waypoint
from .errors import NotConfiguredError, OptimizerError, OptimizerRateLimited, OptimizerResponseError, ValidationError
from .retry import with_retry
from .timeline import parse_duration_minutes

VehicleType = Literal["driving", "bicycling", "walking"]

TRAVEL_MODES: dict[str, str] = {
    "driving": "DRIVE",
    "bicycling": "BICYCLE",
    "walking": "WALK",
}

FIELD_MASK = "routes.duration,routes.distanceMeters,routes.legs,routes.optimizedIntermediateWaypointIndex"

RETRYABLE_STATUSES = frozenset({408, 500, 502, 503, 504})

logger = logging.getLogger(__name__)


class _TransientOptimizerError(OptimizerError):
    """Failure worth another attempt (5xx, timeout, connection reset)."""


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, _TransientOptimizerError)


def _lat_lng(lat: float, lng: float) -> dict[str, Any]:
    return {"location": {"latLng": {"latitude": lat, "longitude": lng}}}


class GoogleRoutesClient:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        max_backoff_seconds: float | None = None,
        backoff_multiplier: float | None = None,
        max_waypoints: int | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep=None,
    ) -> None:
        self.api_key = api_key or settings.google_maps_api_key
        if not self.api_key:
            raise NotConfiguredError("Google Routes API key is not configured.")
        self.base_url = base_url or settings.routes_api_url
        self.timeout = timeout if timeout is not None else settings.optimizer_timeout_seconds
        self.max_attempts = max_attempts if max_attempts is not None else settings.optimizer_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.optimizer_backoff_seconds
        self.max_backoff_seconds = (
            max_backoff_seconds if max_backoff_seconds is not None else settings.optimizer_max_backoff_seconds
        )
        self.backoff_multiplier = (
            backoff_multiplier if backoff_multiplier is not None else settings.optimizer_backoff_multiplier
        )
        self.max_waypoints = max_waypoints if max_waypoints is not None else settings.max_waypoints
        self._transport = transport
        self._sleep = sleep

    def _get_client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=5.0),
            transport=self._transport,
        )

    def compute_route(
        self,
        origin: Location,
        destination: Location,
        waypoints: Sequence[Waypoint],
        travel_mode: VehicleType = "driving",
        *,
        optimize: bool = True,
    ) -> OptimizedRoute:
        """Route origin -> waypoints -> destination.

        With ``optimize=False`` the waypoints are visited in the given order
        (cheaper billing tier, no reordering).
        """
        if len(waypoints) > self.max_waypoints:
            raise ValidationError(
                f"Too many waypoints ({len(waypoints)}); the optimizer accepts at most {self.max_waypoints}",
                details={"waypoint_count": len(waypoints), "max_waypoints": self.max_waypoints},
            )
        if travel_mode not in TRAVEL_MODES:
            raise ValidationError(f"Unsupported travel mode '{travel_mode}'")

        body = {
            "origin": _lat_lng(origin.lat, origin.lng),
            "destination": _lat_lng(destination.lat, destination.lng),
            "intermediates": [_lat_lng(w.lat, w.lng) for w in waypoints],
            "travelMode": TRAVEL_MODES[travel_mode],
            "optimizeWaypointOrder": bool(optimize and len(waypoints) > 1),
            "routingPreference": "TRAFFIC_UNAWARE",
        }

        retry_kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        data = with_retry(
            lambda: self._post(body),
            max_attempts=self.max_attempts,
            base_delay=self.backoff_seconds,
            multiplier=self.backoff_multiplier,
            max_delay=self.max_backoff_seconds,
            is_retryable=_is_transient,
            **retry_kwargs,
        )
        return normalize_route_response(data, waypoint_count=len(waypoints), optimized=optimize)

    def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": FIELD_MASK,
        }
        client = self._get_client()
        try:
            try:
                response = client.post(self.base_url, json=body, headers=headers)
            except httpx.TimeoutException as e:
                logger.warning(f"Routes API request timed out: {e}")
                raise _TransientOptimizerError(f"Routes API request timed out: {e}") from e
            except httpx.TransportError as e:
                logger.warning(f"Routes API network error: {e}")
                raise _TransientOptimizerError(f"Failed to reach Routes API: {e}") from e

            if response.status_code == 429:
                status_label = _error_status(response)
                logger.warning(f"Routes API backpressure: HTTP 429 ({status_label or 'no status'})")
                raise OptimizerRateLimited(
                    "Route optimization quota exceeded. Try the simple_order method or try again later.",
                    code="QUOTA_EXCEEDED" if status_label == "RESOURCE_EXHAUSTED" else "RATE_LIMITED",
                )
            if response.status_code in RETRYABLE_STATUSES:
                raise _TransientOptimizerError(
                    f"Routes API error: HTTP {response.status_code}",
                    details={"status": response.status_code},
                )
            if response.is_error:
                logger.error(f"Routes API error {response.status_code}: {response.text[:500]}")
                raise OptimizerError(
                    f"Routes API error: HTTP {response.status_code}",
                    details={"status": response.status_code},
                )

            try:
                return response.json()
            except ValueError as e:
                raise OptimizerResponseError("Routes API returned a non-JSON body") from e
        finally:
            client.close()

    def check_health(self) -> bool:
        """Cheapest possible request: two points, no waypoints."""
        probe = Location(address="", lat=48.8566, lng=2.3522)
        other = Location(address="", lat=48.8606, lng=2.3376)
        try:
            self.compute_route(probe, other, [], optimize=False)
            return True
        except OptimizerError as e:
            logger.info(f"Routes API health probe failed: {e}")
            return False


def _error_status(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"].get("status")
    return None


def normalize_route_response(data: dict[str, Any], *, waypoint_count: int, optimized: bool = True) -> OptimizedRoute:
    """Validate a computeRoutes payload and convert it to an ``OptimizedRoute``."""

    routes = data.get("routes") or []
    if not routes:
        raise OptimizerResponseError("No route found from Routes API")
    route = routes[0]

    raw_legs = route.get("legs") or []
    if len(raw_legs) != waypoint_count + 1:
        raise OptimizerResponseError(
            f"Routes API returned {len(raw_legs)} legs for {waypoint_count} waypoints",
            details={"legs": len(raw_legs), "waypoints": waypoint_count},
        )

    try:
        legs = [
            RouteLeg(
                distance_meters=float(leg.get("distanceMeters") or 0),
                duration_minutes=parse_duration_minutes(leg.get("duration")),
            )
            for leg in raw_legs
        ]
        duration_minutes = parse_duration_minutes(route.get("duration"))
    except ValueError as e:
        raise OptimizerResponseError(f"Malformed Routes API response: {e}") from e

    order = list(route.get("optimizedIntermediateWaypointIndex") or []) if optimized else []
    # The API omits the permutation (or sends [-1]) when nothing was reordered.
    if not order or order == [-1]:
        order = list(range(waypoint_count))
    if sorted(order) != list(range(waypoint_count)):
        raise OptimizerResponseError(
            "Routes API returned an invalid waypoint order",
            details={"order": order, "waypoints": waypoint_count},
        )

    distance_meters = route.get("distanceMeters")
    if distance_meters is None:
        distance_meters = sum(leg.distance_meters for leg in legs)

    return OptimizedRoute(
        legs=legs,
        waypoint_order=order,
        distance_meters=float(distance_meters),
        duration_minutes=duration_minutes or sum(leg.duration_minutes for leg in legs),
        raw=route,
    )
