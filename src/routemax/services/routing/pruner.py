"""Deadline-driven pruning of prospect waypoints.

The optimizer knows nothing about a hard return time, so this loop asks it for
a route, builds the timeline, and while the final arrival is past the
deadline drops the prospect furthest from the route's centre and tries again.
The mandatory waypoint is never dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Sequence

from ...models.domain import OptimizedRoute, Timeline, Waypoint
from ..geospatial import euclidean_degrees, round_half_up
from .errors import OptimizationFailed, TimeConstraintImpossible

logger = logging.getLogger(__name__)

RouteRunner = Callable[[Sequence[Waypoint]], tuple[OptimizedRoute, Timeline]]


class PruneState(str, Enum):
    OPTIMIZE = "optimize"
    CHECK_DEADLINE = "check_deadline"
    PRUNE = "prune"
    DONE = "done"
    INFEASIBLE = "infeasible"


@dataclass(slots=True)
class PruneOutcome:
    route: OptimizedRoute
    timeline: Timeline
    waypoints: List[Waypoint]
    removed: List[Waypoint] = field(default_factory=list)
    attempts: int = 1


def select_furthest_prospect(waypoints: Sequence[Waypoint], center: tuple[float, float]) -> int | None:
    """Index of the prunable waypoint furthest from ``center``; the first one wins ties."""
    furthest_index: int | None = None
    furthest_distance = -1.0
    for index, waypoint in enumerate(waypoints):
        if waypoint.is_mandatory:
            continue
        distance = euclidean_degrees(waypoint.lat, waypoint.lng, center[0], center[1])
        if distance > furthest_distance:
            furthest_distance = distance
            furthest_index = index
    return furthest_index


def overtime_minutes(arrival: datetime, deadline: datetime) -> int:
    return int(round_half_up((arrival - deadline).total_seconds() / 60.0))


def prune_to_deadline(
    waypoints: Sequence[Waypoint],
    deadline: datetime,
    center: tuple[float, float],
    run: RouteRunner,
    max_attempts: int = 10,
) -> PruneOutcome:
    """Re-optimize with fewer prospects until the final arrival meets ``deadline``.

    Each attempt is one call to ``run`` (optimizer plus timeline). Raises
    ``TimeConstraintImpossible`` when only mandatory waypoints remain and the
    deadline is still missed, and ``OptimizationFailed`` when the attempt
    budget runs out first.
    """
    current = list(waypoints)
    removed: list[Waypoint] = []
    attempts = 0

    while attempts < max_attempts:
        attempts += 1
        logger.debug(f"{PruneState.OPTIMIZE.value}: attempt {attempts}/{max_attempts} with {len(current)} waypoints")
        route, timeline = run(current)

        final_arrival = timeline.final_arrival
        logger.debug(
            f"{PruneState.CHECK_DEADLINE.value}: arrival {final_arrival.isoformat()} vs deadline {deadline.isoformat()}"
        )
        if final_arrival <= deadline:
            logger.info(
                f"{PruneState.DONE.value}: arrival {final_arrival.isoformat()} meets deadline after "
                f"{attempts} attempt(s), {len(removed)} prospect(s) removed"
            )
            return PruneOutcome(route=route, timeline=timeline, waypoints=current, removed=removed, attempts=attempts)

        furthest = select_furthest_prospect(current, center)
        if furthest is None:
            overtime = overtime_minutes(final_arrival, deadline)
            logger.info(f"{PruneState.INFEASIBLE.value}: {overtime} minutes over with only mandatory stops left")
            raise TimeConstraintImpossible(
                estimated_return_time=final_arrival,
                max_return_time=deadline,
                overtime_minutes=overtime,
            )

        dropped = current.pop(furthest)
        removed.append(dropped)
        logger.info(
            f"{PruneState.PRUNE.value}: arrival {final_arrival.isoformat()} past deadline; "
            f"removed '{dropped.name or dropped.address}'"
        )

    logger.warning(f"Pruning gave up after {max_attempts} attempts")
    raise OptimizationFailed(attempts)
