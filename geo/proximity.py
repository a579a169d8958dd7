from __future__ import annotations

import math
from dataclasses import dataclass


EARTH_RADIUS_KM = 6371.0
COORDINATE_SCALE = 1000


def encode_coordinate(degrees: float) -> int:
    # rounding first keeps 46.056 from flooring to 46055 through float error
    return math.floor(round(float(degrees) * COORDINATE_SCALE, 6))


def decode_coordinate(value: int) -> float:
    return int(value) / COORDINATE_SCALE


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def cell_distance_km(lat: float, lon: float, cell_lat: int, cell_lon: int) -> float:
    """Distance from a point to the nearest point of an encoded coordinate cell.

    A stored value v covers [v/1000, (v+1)/1000) on its axis, so a point that
    was floored into the cell is at distance zero from it.
    """
    lat_lo = decode_coordinate(cell_lat)
    lon_lo = decode_coordinate(cell_lon)
    step = 1 / COORDINATE_SCALE
    nearest_lat = min(max(lat, lat_lo), lat_lo + step)
    nearest_lon = min(max(lon, lon_lo), lon_lo + step)
    return haversine_km(lat, lon, nearest_lat, nearest_lon)


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @property
    def crosses_antimeridian(self) -> bool:
        return self.min_lon > self.max_lon

    def contains(self, lat: float, lon: float) -> bool:
        if lat < self.min_lat or lat > self.max_lat:
            return False
        if self.crosses_antimeridian:
            return lon >= self.min_lon or lon <= self.max_lon
        return self.min_lon <= lon <= self.max_lon

    def encoded_lat_range(self) -> tuple[int, int]:
        return (encode_coordinate(self.min_lat), encode_coordinate(self.max_lat))

    def encoded_lon_ranges(self) -> list[tuple[int, int]]:
        lo = encode_coordinate(self.min_lon)
        hi = encode_coordinate(self.max_lon)
        if self.crosses_antimeridian:
            return [
                (lo, 180 * COORDINATE_SCALE),
                (-180 * COORDINATE_SCALE, hi),
            ]
        return [(lo, hi)]


def bounding_box(lat: float, lon: float, radius_km: float) -> BoundingBox:
    """Great-circle bounding box around a point.

    When the circle reaches a pole the latitude is clamped and the box spans
    every longitude. Otherwise a box crossing the antimeridian keeps
    min_lon > max_lon and callers must treat the longitude span as wrapped.
    """
    angular = radius_km / EARTH_RADIUS_KM
    lat_r = math.radians(lat)
    lon_r = math.radians(lon)

    min_lat = lat_r - angular
    max_lat = lat_r + angular

    if min_lat > -math.pi / 2 and max_lat < math.pi / 2:
        delta_lon = math.asin(min(1.0, math.sin(angular) / math.cos(lat_r)))
        min_lon = lon_r - delta_lon
        max_lon = lon_r + delta_lon
        if min_lon < -math.pi:
            min_lon += 2 * math.pi
        if max_lon > math.pi:
            max_lon -= 2 * math.pi
    else:
        min_lat = max(min_lat, -math.pi / 2)
        max_lat = min(max_lat, math.pi / 2)
        min_lon = -math.pi
        max_lon = math.pi

    return BoundingBox(
        min_lat=math.degrees(min_lat),
        max_lat=math.degrees(max_lat),
        min_lon=math.degrees(min_lon),
        max_lon=math.degrees(max_lon),
    )
