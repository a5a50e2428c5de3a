"""
Route geometry helpers.

Great-circle distances and cheapest-insertion planning for pickup stops.
"""

import math
from dataclasses import dataclass, field
from typing import List, Sequence, Protocol


class StopLike(Protocol):
    lat: float
    lng: float
    order: int


@dataclass
class StopInsertionPlan:
    """Where a new stop goes and which existing stops move one slot down."""
    new_order: int
    shifted: List[StopLike] = field(default_factory=list)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    R = 6371.0

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def plan_stop_insertion(stops: Sequence[StopLike], lat: float, lng: float) -> StopInsertionPlan:
    """
    Pick the position for a new stop that adds the least detour.

    `stops` must be sorted by order. With zero or one stop the new point is
    appended; otherwise it is placed between the consecutive pair (a, b)
    minimizing d(a, p) + d(p, b) - d(a, b).
    """
    insert_index = len(stops)

    if len(stops) > 1:
        best_extra = math.inf
        for i in range(len(stops) - 1):
            current, nxt = stops[i], stops[i + 1]
            extra = (
                haversine_distance(current.lat, current.lng, lat, lng)
                + haversine_distance(lat, lng, nxt.lat, nxt.lng)
                - haversine_distance(current.lat, current.lng, nxt.lat, nxt.lng)
            )
            if extra < best_extra:
                best_extra = extra
                insert_index = i + 1

    new_order = insert_index + 1
    shifted = [stop for stop in stops if stop.order >= new_order]
    return StopInsertionPlan(new_order=new_order, shifted=shifted)
