"""Geodesy helpers and a uniform-grid spatial index."""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Sequence

EARTH_RADIUS_KM = 6371.0088
# Slightly under one degree of arc so bins are never narrower than the radius.
_KM_PER_DEGREE = 110.0
# Longitude bins are never narrower than at 89 degrees latitude.
_MIN_COS_LAT = math.cos(math.radians(89.0))

Point = tuple[float, float]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def centroid(points: Sequence[Point]) -> Point:
    """Arithmetic centroid; adequate for clusters a few kilometres across."""
    return (
        sum(lat for lat, _ in points) / len(points),
        sum(lon for _, lon in points) / len(points),
    )


class GridIndex:
    """Bucket points into bins at least ``radius_km`` wide.

    Any two points within ``radius_km`` of each other fall in the same or
    adjacent bins, so a 3x3 neighbourhood lookup finds every candidate.
    Longitude bins are sized for the highest latitude indexed, which keeps
    that guarantee for every point.
    """

    def __init__(self, radius_km: float, max_abs_latitude: float = 0.0) -> None:
        cos_lat = max(math.cos(math.radians(min(abs(max_abs_latitude), 90.0))), _MIN_COS_LAT)
        self._lat_step = radius_km / _KM_PER_DEGREE
        self._lon_step = radius_km / (_KM_PER_DEGREE * cos_lat)
        self._bins: dict[tuple[int, int], list[int]] = defaultdict(list)

    def _bin(self, latitude: float, longitude: float) -> tuple[int, int]:
        return (math.floor(latitude / self._lat_step), math.floor(longitude / self._lon_step))

    def insert(self, item: int, latitude: float, longitude: float) -> None:
        self._bins[self._bin(latitude, longitude)].append(item)

    def candidates(self, latitude: float, longitude: float) -> list[int]:
        lat_bin, lon_bin = self._bin(latitude, longitude)
        found: list[int] = []
        for d_lat in (-1, 0, 1):
            for d_lon in (-1, 0, 1):
                found.extend(self._bins.get((lat_bin + d_lat, lon_bin + d_lon), ()))
        return sorted(found)


class _DisjointSet:
    def __init__(self, size: int) -> None:
        self._parent = list(range(size))

    def find(self, item: int) -> int:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            # Lower index becomes the root so results are order-stable.
            self._parent[max(root_a, root_b)] = min(root_a, root_b)


def cluster_points(points: Sequence[Point], radius_km: float) -> list[list[int]]:
    """Single-linkage clustering of *points* within *radius_km*.

    Returns clusters as sorted index lists, ordered by their first index.
    """
    if not points:
        return []
    index = GridIndex(radius_km, max(abs(lat) for lat, _ in points))
    for item, (lat, lon) in enumerate(points):
        index.insert(item, lat, lon)

    disjoint = _DisjointSet(len(points))
    for item, (lat, lon) in enumerate(points):
        for other in index.candidates(lat, lon):
            if other <= item:
                continue
            if haversine_km(lat, lon, *points[other]) <= radius_km:
                disjoint.union(item, other)

    clusters: dict[int, list[int]] = defaultdict(list)
    for item in range(len(points)):
        clusters[disjoint.find(item)].append(item)
    return sorted(clusters.values(), key=lambda members: members[0])
