"""
Driver Discovery & Auto-Match rules
===================================

1. **Spatial prefilter** -- drivers are indexed by the H3 cell of their
   last position.  A discovery query expands a ``grid_disk`` around the
   pickup cell large enough to cover the search radius.
2. **Exact filter** -- Haversine distance from the pickup to every driver
   in those cells; anything beyond the radius is dropped.
3. **Ranking** -- ascending distance, then rating descending, then driver
   id ascending, so equal inputs always produce the same order.
4. **Radius growth** -- when nobody is in range the radius grows by a fixed
   step up to a cap; it never shrinks.

Complexity
----------
Let D = drivers in the candidate cells.

* Cell expansion: O(k^2) with k = ceil(radius / edge) + 1
* Filtering:      O(D)
* Ranking:        O(D log D)
"""

from __future__ import annotations

import math
from typing import Iterable

import h3

from .entities import DriverCandidate, Location


def driver_h3_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def search_cells(
    center: Location, radius_m: float, resolution: int = 7
) -> set[str]:
    """All H3 cells that may contain a point within *radius_m* of *center*."""
    origin = driver_h3_cell(center.latitude, center.longitude, resolution)
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    k = math.ceil((radius_m / 1000.0) / edge_km) + 1
    return set(h3.grid_disk(origin, k))


def candidate_sort_key(candidate: DriverCandidate) -> tuple[float, float, int]:
    return (candidate.distance_m, -candidate.rating, candidate.driver_id)


def rank_candidates(
    candidates: Iterable[DriverCandidate], radius_m: float
) -> list[DriverCandidate]:
    """Keep candidates inside *radius_m* and order them deterministically."""
    in_range = [c for c in candidates if c.distance_m <= radius_m]
    return sorted(in_range, key=candidate_sort_key)


def next_search_radius(current_m: int, step_m: int = 2_000, cap_m: int = 20_000) -> int:
    """Stepped radius growth; monotonically non-decreasing and capped."""
    return max(current_m, min(current_m + step_m, cap_m))
