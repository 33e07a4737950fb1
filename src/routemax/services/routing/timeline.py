"""Timeline construction for an ordered sequence of stops.

Walks the optimizer's visit order, accumulating travel and visit time into
arrival/departure timestamps. Client stops reached outside their opening
hours are kept in the record but flagged ``is_included=False`` and add no
dwell time. An optional lunch break is inserted after the stop whose arrival
is closest to the configured time of day.

Minutes are kept fractional here; rounding happens only when persisting.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from ...config import settings
from ...models.domain import Location, OptimizedRoute, StopType, Timeline, TimelineStop, Waypoint

logger = logging.getLogger(__name__)

LUNCH_BREAK_LABEL = "Lunch break"

# Seconds per unit, keyed by the suffix the optimizer appends to durations.
_DURATION_UNITS = {"s": 1.0, "m": 60.0, "h": 3600.0}


@dataclass(slots=True)
class LunchBreak:
    start_time: str
    duration_minutes: float


def parse_duration_minutes(duration: str | int | float | None) -> float:
    """Convert an optimizer duration to minutes.

    Accepts ``"2340s"``, ``"390m"``, ``"6.5h"`` and bare seconds (``"2340"``
    or a number). The unit comes from the suffix alone, never from the size of
    the value.
    """
    if duration is None:
        return 0.0
    if isinstance(duration, (int, float)):
        return float(duration) / 60.0

    cleaned = duration.strip()
    if not cleaned:
        return 0.0

    suffix = cleaned[-1].lower()
    if suffix in _DURATION_UNITS:
        number, factor = cleaned[:-1].strip(), _DURATION_UNITS[suffix]
    else:
        number, factor = cleaned, _DURATION_UNITS["s"]

    try:
        value = float(number)
    except ValueError as exc:
        raise ValueError(f"Unrecognised duration value '{duration}'") from exc
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"Unrecognised duration value '{duration}'")
    return value * factor / 60.0


def parse_clock_minutes(value: str) -> int:
    """Minutes after midnight for ``HH:MM`` or ``HH:MM:SS``."""
    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Expected HH:MM or HH:MM:SS, got '{value}'")
    hours, minutes = int(parts[0]), int(parts[1])
    return hours * 60 + minutes


def minutes_of_day(moment: datetime) -> int:
    """Whole wall-clock minutes after midnight; seconds are ignored."""
    return moment.hour * 60 + moment.minute


def is_within_opening_hours(
    visit_time: datetime,
    opening_time: Optional[str] = None,
    closing_time: Optional[str] = None,
) -> bool:
    """True when the visit's wall-clock minute falls inside the inclusive window."""
    opening = parse_clock_minutes(opening_time or settings.default_opening_time)
    closing = parse_clock_minutes(closing_time or settings.default_closing_time)
    return opening <= minutes_of_day(visit_time) <= closing


def build_timeline(
    route: OptimizedRoute,
    waypoints: Sequence[Waypoint],
    *,
    start: Location,
    end: Location,
    start_datetime: datetime,
    visit_duration_minutes: float,
    lunch_break: Optional[LunchBreak] = None,
    lunch_break_max_offset_minutes: Optional[float] = None,
) -> Timeline:
    if len(route.legs) != len(waypoints) + 1:
        raise ValueError(
            f"Expected {len(waypoints) + 1} legs for {len(waypoints)} waypoints, got {len(route.legs)}"
        )

    current = start_datetime
    stops: list[TimelineStop] = [
        TimelineStop(
            address=start.address,
            lat=start.lat,
            lng=start.lng,
            stop_order=0,
            estimated_arrival=current,
            estimated_departure=current,
            duration_from_previous_minutes=0.0,
            distance_from_previous_km=0.0,
            visit_duration_minutes=0.0,
            is_included=True,
            stop_type=StopType.START,
        )
    ]

    for position, leg in enumerate(route.legs[:-1]):
        current = current + timedelta(minutes=leg.duration_minutes)
        waypoint = waypoints[route.waypoint_order[position]]
        stop_type = waypoint.stop_type

        included = True
        if stop_type is StopType.CLIENT:
            included = is_within_opening_hours(current, waypoint.opening_time, waypoint.closing_time)
            if not included:
                logger.debug(
                    f"Arrival {current.isoformat()} at '{waypoint.name or waypoint.address}' is outside "
                    f"opening hours; stop kept but excluded"
                )

        dwell = float(visit_duration_minutes) if included else 0.0
        departure = current + timedelta(minutes=dwell)
        stops.append(
            TimelineStop(
                address=waypoint.address,
                lat=waypoint.lat,
                lng=waypoint.lng,
                stop_order=len(stops),
                estimated_arrival=current,
                estimated_departure=departure,
                duration_from_previous_minutes=leg.duration_minutes,
                distance_from_previous_km=leg.distance_meters / 1000.0,
                visit_duration_minutes=dwell,
                is_included=included,
                stop_type=stop_type,
                client_id=waypoint.client_id,
                client_name=waypoint.name,
            )
        )
        current = departure

    last_leg = route.legs[-1]
    current = current + timedelta(minutes=last_leg.duration_minutes)
    stops.append(
        TimelineStop(
            address=end.address,
            lat=end.lat,
            lng=end.lng,
            stop_order=len(stops),
            estimated_arrival=current,
            estimated_departure=current,
            duration_from_previous_minutes=last_leg.duration_minutes,
            distance_from_previous_km=last_leg.distance_meters / 1000.0,
            visit_duration_minutes=0.0,
            is_included=True,
            stop_type=StopType.END,
        )
    )

    if lunch_break and lunch_break.duration_minutes:
        insert_lunch_break(
            stops,
            lunch_break.start_time,
            lunch_break.duration_minutes,
            max_offset_minutes=lunch_break_max_offset_minutes,
        )

    return Timeline(stops=stops)


def insert_lunch_break(
    stops: list[TimelineStop],
    start_time: str,
    duration_minutes: float,
    *,
    max_offset_minutes: Optional[float] = None,
) -> Optional[TimelineStop]:
    """Insert a break after the intermediate stop arriving closest to ``start_time``.

    Every later stop is shifted by the break duration and stop orders are
    renumbered. Returns the inserted stop, or None when there is no
    intermediate stop, a break already exists, or the closest stop is further
    than ``max_offset_minutes`` from the target.
    """
    if any(stop.stop_type is StopType.LUNCH_BREAK for stop in stops):
        return None

    target = parse_clock_minutes(start_time)
    insert_index: Optional[int] = None
    min_time_diff = float("inf")

    for index in range(1, len(stops) - 1):
        time_diff = abs(minutes_of_day(stops[index].estimated_arrival) - target)
        if time_diff < min_time_diff:
            min_time_diff = time_diff
            insert_index = index

    if insert_index is None:
        return None
    if max_offset_minutes is not None and min_time_diff > max_offset_minutes:
        logger.info(
            f"No stop arrives within {max_offset_minutes} minutes of {start_time}; lunch break omitted"
        )
        return None

    anchor = stops[insert_index]
    shift = timedelta(minutes=duration_minutes)
    lunch_stop = TimelineStop(
        address=LUNCH_BREAK_LABEL,
        lat=anchor.lat,
        lng=anchor.lng,
        stop_order=insert_index + 1,
        estimated_arrival=anchor.estimated_departure,
        estimated_departure=anchor.estimated_departure + shift,
        duration_from_previous_minutes=0.0,
        distance_from_previous_km=0.0,
        visit_duration_minutes=float(duration_minutes),
        is_included=True,
        stop_type=StopType.LUNCH_BREAK,
    )

    for stop in stops[insert_index + 1:]:
        stop.estimated_arrival = stop.estimated_arrival + shift
        stop.estimated_departure = stop.estimated_departure + shift

    stops.insert(insert_index + 1, lunch_stop)
    for order, stop in enumerate(stops):
        stop.stop_order = order
    return lunch_stop
