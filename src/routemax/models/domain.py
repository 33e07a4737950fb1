"""Domain models for clients, waypoints and computed route timelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional


class StopType(str, Enum):
    START = "start"
    CLIENT = "client"
    TARGET = "target"
    LUNCH_BREAK = "lunch_break"
    END = "end"


@dataclass(slots=True)
class Client:
    """A client (or prospect) location owned by a user account."""

    id: str
    name: str
    address: str
    lat: float
    lng: float
    opening_time: Optional[str] = None
    closing_time: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Client":
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            address=row.get("address") or "",
            lat=float(row["lat"]),
            lng=float(row["lng"]),
            opening_time=row.get("opening_time"),
            closing_time=row.get("closing_time"),
            is_active=bool(row.get("is_active", True)),
        )


@dataclass(slots=True)
class Location:
    """A named coordinate used as the start or end anchor of a route."""

    address: str
    lat: float
    lng: float


@dataclass(slots=True)
class Waypoint:
    """A point the route passes through, built fresh for each construction request."""

    address: str
    lat: float
    lng: float
    id: Optional[str] = None
    name: Optional[str] = None
    client_id: Optional[str] = None
    is_mandatory: bool = False
    opening_time: Optional[str] = None
    closing_time: Optional[str] = None

    @classmethod
    def from_client(cls, client: Client, *, mandatory: bool = False) -> "Waypoint":
        return cls(
            address=client.address or client.name,
            lat=client.lat,
            lng=client.lng,
            id=client.id,
            name=client.name,
            client_id=client.id,
            is_mandatory=mandatory,
            opening_time=client.opening_time,
            closing_time=client.closing_time,
        )

    @property
    def stop_type(self) -> StopType:
        # Custom addresses have no client row and no opening hours to honour.
        return StopType.CLIENT if self.client_id else StopType.TARGET


@dataclass(slots=True)
class CorridorCandidate:
    client: Client
    distance_m: float
    score: int


@dataclass(slots=True)
class RouteLeg:
    distance_meters: float
    duration_minutes: float


@dataclass(slots=True)
class OptimizedRoute:
    """Normalized optimizer answer: visit order over the input waypoints plus per-leg metrics."""

    legs: List[RouteLeg]
    waypoint_order: List[int]
    distance_meters: float
    duration_minutes: float
    raw: dict = field(default_factory=dict)


@dataclass(slots=True)
class TimelineStop:
    address: str
    lat: float
    lng: float
    stop_order: int
    estimated_arrival: datetime
    estimated_departure: datetime
    duration_from_previous_minutes: float
    distance_from_previous_km: float
    visit_duration_minutes: float
    is_included: bool
    stop_type: StopType
    client_id: Optional[str] = None
    client_name: Optional[str] = None


@dataclass(slots=True)
class Timeline:
    stops: List[TimelineStop]

    @property
    def final_arrival(self) -> datetime:
        return self.stops[-1].estimated_arrival

    @property
    def total_distance_km(self) -> float:
        return sum(stop.distance_from_previous_km for stop in self.stops)

    @property
    def total_duration_minutes(self) -> float:
        """Travel time only, summed over legs."""
        return sum(stop.duration_from_previous_minutes for stop in self.stops)

    @property
    def lunch_break(self) -> Optional[TimelineStop]:
        return next((stop for stop in self.stops if stop.stop_type is StopType.LUNCH_BREAK), None)

    @property
    def visit_stops(self) -> List[TimelineStop]:
        return [stop for stop in self.stops if stop.stop_type in (StopType.CLIENT, StopType.TARGET)]

    @property
    def excluded_stops(self) -> List[TimelineStop]:
        return [stop for stop in self.visit_stops if not stop.is_included]
