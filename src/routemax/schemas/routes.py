"""Route construction request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from ..config import settings

VehicleType = Literal["driving", "bicycling", "walking"]
OptimizationMethod = Literal["simple_order", "optimized"]

CLOCK_PATTERN = r"^([01]\d|2[0-3]):([0-5]\d)$"


def _check_same_awareness(first: datetime, second: datetime, names: str) -> None:
    if (first.tzinfo is None) != (second.tzinfo is None):
        raise ValueError(f"{names} must both carry a UTC offset or both omit it")


Latitude = Annotated[float, Field(ge=-90, le=90, allow_inf_nan=False)]
Longitude = Annotated[float, Field(ge=-180, le=180, allow_inf_nan=False)]


class ClientTarget(BaseModel):
    """Visit existing clients, in the given order unless optimized."""

    kind: Literal["clients"] = "clients"
    client_ids: List[str] = Field(..., min_length=1, max_length=25)


class CustomAddressTarget(BaseModel):
    """Visit a single address that is not (yet) a client."""

    kind: Literal["address"] = "address"
    address: str = Field(..., min_length=1)
    lat: Latitude
    lng: Longitude


Target = Annotated[Union[ClientTarget, CustomAddressTarget], Field(discriminator="kind")]


class LunchBreakSettings(BaseModel):
    lunch_break_start_time: Optional[str] = Field(default=None, pattern=CLOCK_PATTERN)
    lunch_break_duration_minutes: Optional[int] = Field(default=None, ge=15, le=180)


class RouteEndpoints(LunchBreakSettings):
    name: str = Field(..., min_length=1, max_length=255)
    start_address: str = Field(..., min_length=1)
    start_lat: Latitude
    start_lng: Longitude
    start_datetime: datetime
    end_address: str = Field(..., min_length=1)
    end_lat: Latitude
    end_lng: Longitude
    visit_duration_minutes: int = Field(default=settings.default_visit_duration_minutes, ge=5, le=120)
    vehicle_type: VehicleType = "driving"


class OptimizeRouteRequest(RouteEndpoints):
    end_datetime: datetime
    target: Target
    optimization_method: OptimizationMethod = "simple_order"

    @model_validator(mode="after")
    def _check_window(self) -> "OptimizeRouteRequest":
        _check_same_awareness(self.start_datetime, self.end_datetime, "start_datetime and end_datetime")
        if self.end_datetime < self.start_datetime:
            raise ValueError("end_datetime must not be before start_datetime")
        return self


class MandatoryDestination(BaseModel):
    address: str = Field(..., min_length=1)
    lat: Latitude
    lng: Longitude
    client_id: Optional[str] = None


class AutoOptimizeRequest(RouteEndpoints):
    mandatory_destination: MandatoryDestination
    max_return_time: datetime
    prospect_search_radius_km: float = Field(default=settings.default_corridor_radius_km, ge=1, le=20)
    max_clients_per_day: int = Field(default=25, ge=1, le=50)

    @model_validator(mode="after")
    def _check_deadline(self) -> "AutoOptimizeRequest":
        _check_same_awareness(self.start_datetime, self.max_return_time, "start_datetime and max_return_time")
        if self.max_return_time <= self.start_datetime:
            raise ValueError("max_return_time must be after start_datetime")
        return self


class SuggestRequest(BaseModel):
    start_lat: Latitude
    start_lng: Longitude
    end_lat: Latitude
    end_lng: Longitude
    corridor_radius_km: float = Field(default=settings.default_corridor_radius_km, ge=0.1, le=50)
    max_suggestions: int = Field(default=settings.default_max_suggestions, ge=1, le=50)
    existing_client_ids: Optional[List[str]] = None


class SuggestedClientModel(BaseModel):
    id: str
    name: str
    address: str
    lat: float
    lng: float
    distance_from_route_line: int
    score: int


class SuggestResponse(BaseModel):
    suggestions: List[SuggestedClientModel]
    source: Literal["spatial_index", "in_process"]


class SkippedClients(BaseModel):
    ids: List[str] = Field(default_factory=list)
    count: int = 0
    message: str = ""


class RemovedWaypoint(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    lat: float
    lng: float


class PruningTrace(BaseModel):
    attempts: int
    removed: List[RemovedWaypoint] = Field(default_factory=list)
    max_return_time: datetime
    final_arrival: Optional[datetime] = None


class OptimizationMetadata(BaseModel):
    """Audit trail stored with each route (``routes.optimization_metadata``)."""

    method: Literal["simple_order", "optimized", "auto_optimized"]
    api: str = "google_routes_v2"
    vehicle_type: VehicleType = "driving"
    waypoint_count: int = 0
    original_order: List[Optional[str]] = Field(default_factory=list)
    optimized_order: List[int] = Field(default_factory=list)
    optimizer_distance_km: Optional[float] = None
    optimizer_duration_minutes: Optional[float] = None
    requested_end_datetime: Optional[datetime] = None
    search_radius_km: Optional[float] = None
    mandatory_destination: Optional[MandatoryDestination] = None
    prospects_found: Optional[int] = None
    prospects_included: Optional[int] = None
    prospects_excluded: Optional[int] = None
    clients_outside_opening_hours: List[str] = Field(default_factory=list)
    skipped_clients: Optional[SkippedClients] = None
    pruning: Optional[PruningTrace] = None
    raw_response: dict[str, Any] = Field(default_factory=dict)


class RouteModel(BaseModel):
    id: str
    name: str
    start_address: str
    start_lat: float
    start_lng: float
    start_datetime: datetime
    end_address: str
    end_lat: float
    end_lng: float
    end_datetime: datetime
    total_distance_km: Optional[float] = None
    total_duration_minutes: Optional[int] = None
    total_visits: int = 0
    skipped_clients_count: Optional[int] = None
    lunch_break_start_time: Optional[str] = None
    lunch_break_duration_minutes: Optional[int] = None
    vehicle_type: Optional[VehicleType] = None
    optimization_method: Optional[OptimizationMethod] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RouteModel":
        metadata = row.get("optimization_metadata") or {}
        skipped = metadata.get("skipped_clients") if isinstance(metadata, dict) else None
        return cls(
            id=str(row["id"]),
            name=row["name"],
            start_address=row["start_address"],
            start_lat=row["start_lat"],
            start_lng=row["start_lng"],
            start_datetime=row["start_datetime"],
            end_address=row["end_address"],
            end_lat=row["end_lat"],
            end_lng=row["end_lng"],
            end_datetime=row["end_datetime"],
            total_distance_km=row.get("total_distance_km"),
            total_duration_minutes=row.get("total_duration_minutes"),
            total_visits=row.get("total_visits") or 0,
            skipped_clients_count=skipped.get("count") if isinstance(skipped, dict) else None,
            lunch_break_start_time=row.get("lunch_break_start_time"),
            lunch_break_duration_minutes=row.get("lunch_break_duration_minutes"),
            vehicle_type=row.get("vehicle_type"),
            optimization_method=row.get("optimization_method"),
            created_at=row.get("created_at"),
        )


class RouteStopModel(BaseModel):
    id: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    address: str
    lat: float
    lng: float
    stop_order: int
    estimated_arrival: Optional[datetime] = None
    estimated_departure: Optional[datetime] = None
    duration_from_previous_minutes: int = 0
    distance_from_previous_km: float = 0.0
    visit_duration_minutes: int = 0
    is_included: bool = True
    stop_type: str = "client"

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RouteStopModel":
        joined = row.get("clients")
        if isinstance(joined, list):
            joined = joined[0] if joined else None
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            client_id=row.get("client_id"),
            client_name=joined.get("name") if isinstance(joined, dict) else row.get("client_name"),
            address=row.get("address") or "",
            lat=row["lat"],
            lng=row["lng"],
            stop_order=row["stop_order"],
            estimated_arrival=row.get("estimated_arrival"),
            estimated_departure=row.get("estimated_departure"),
            duration_from_previous_minutes=row.get("duration_from_previous_minutes") or 0,
            distance_from_previous_km=row.get("distance_from_previous_km") or 0.0,
            visit_duration_minutes=row.get("visit_duration_minutes") or 0,
            is_included=row.get("is_included", True),
            stop_type=row.get("stop_type") or "client",
        )


class RouteWarning(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class RouteResponse(BaseModel):
    route: RouteModel
    stops: List[RouteStopModel]
    metadata: Optional[OptimizationMetadata] = None
    warnings: List[RouteWarning] = Field(default_factory=list)


class AutoRouteResponse(RouteResponse):
    prospects_found: int
    prospects_included: int
    prospects_excluded: int
    clients_outside_opening_hours: List[str] = Field(default_factory=list)
    removed_prospects: List[RemovedWaypoint] = Field(default_factory=list)
    time_constraint_met: bool = True
    message: Optional[str] = None


class StoredRouteResponse(BaseModel):
    route: RouteModel
    stops: List[RouteStopModel]
    metadata: Optional[dict[str, Any]] = None


class RouteSummaryModel(RouteModel):
    stop_count: int = 0


class PaginationModel(BaseModel):
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class RouteListResponse(BaseModel):
    routes: List[RouteSummaryModel]
    pagination: PaginationModel


class ErrorPayload(BaseModel):
    error: str
    code: Optional[str] = None
    details: Optional[dict[str, Any]] = None
