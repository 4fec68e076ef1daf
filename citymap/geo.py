"""
Web Mercator helpers for the map surface.

Marker clustering and the heat surface both work in screen pixels at the
current zoom level, so geographic positions are projected to EPSG:3857 metres
with pyproj and then scaled to the slippy-map pixel space
(``TILE_SIZE * 2**zoom`` pixels across the world).

Usage
-----
    x, y = to_pixels(53.9, 27.5667, zoom=12)
    bounds = bounds_for_view(LatLng(lat=53.9, lng=27.5667), 12, 1024, 768)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np
import pyproj

from .constants import TILE_SIZE
from .models import LatLng

# Coordinate reference systems
WGS84 = pyproj.CRS("EPSG:4326")
WEB_MERCATOR = pyproj.CRS("EPSG:3857")

_to_metric = pyproj.Transformer.from_crs(WGS84, WEB_MERCATOR, always_xy=True).transform
_to_lonlat = pyproj.Transformer.from_crs(WEB_MERCATOR, WGS84, always_xy=True).transform

# Half the projected world width in metres
_ORIGIN_SHIFT = 20037508.342789244
_MAX_LAT = 85.05112878


@dataclass(frozen=True)
class Bounds:
    """Geographic bounding box in degrees."""

    south: float
    west: float
    north: float
    east: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.south, self.west, self.north, self.east)

    @property
    def center(self) -> LatLng:
        return LatLng(lat=(self.south + self.north) / 2.0, lng=(self.west + self.east) / 2.0)


def _world_size(zoom: float) -> float:
    return TILE_SIZE * (2.0 ** zoom)


def to_pixels(lat, lng, zoom: float):
    """Project degrees to global pixel coordinates (y grows southwards).

    Accepts scalars or numpy arrays.
    """
    lat = np.clip(lat, -_MAX_LAT, _MAX_LAT)
    mx, my = _to_metric(lng, lat)
    size = _world_size(zoom)
    x = (np.asarray(mx) + _ORIGIN_SHIFT) / (2 * _ORIGIN_SHIFT) * size
    y = (_ORIGIN_SHIFT - np.asarray(my)) / (2 * _ORIGIN_SHIFT) * size
    return x, y


def from_pixels(x: float, y: float, zoom: float) -> LatLng:
    size = _world_size(zoom)
    mx = x / size * (2 * _ORIGIN_SHIFT) - _ORIGIN_SHIFT
    my = _ORIGIN_SHIFT - y / size * (2 * _ORIGIN_SHIFT)
    lng, lat = _to_lonlat(mx, my)
    return LatLng(lat=float(lat), lng=float(lng))


def bounds_for_view(center: LatLng, zoom: float, width: int, height: int) -> Bounds:
    """Visible bounds for a viewport of ``width`` x ``height`` pixels."""
    cx, cy = to_pixels(center.lat, center.lng, zoom)
    north_west = from_pixels(float(cx) - width / 2.0, float(cy) - height / 2.0, zoom)
    south_east = from_pixels(float(cx) + width / 2.0, float(cy) + height / 2.0, zoom)
    return Bounds(
        south=south_east.lat,
        west=north_west.lng,
        north=north_west.lat,
        east=south_east.lng,
    )


def enclosing_bounds(points: Iterable[Tuple[float, float]]) -> Optional[Bounds]:
    pts = list(points)
    if not pts:
        return None
    lats = [p[0] for p in pts]
    lngs = [p[1] for p in pts]
    return Bounds(south=min(lats), west=min(lngs), north=max(lats), east=max(lngs))


def fit_zoom(bounds: Bounds, width: int, height: int, padding: int = 50, max_zoom: int = 20) -> int:
    """Largest integer zoom at which ``bounds`` fits inside the padded viewport."""
    avail_w = max(width - 2 * padding, 1)
    avail_h = max(height - 2 * padding, 1)
    for zoom in range(max_zoom, -1, -1):
        x0, y0 = to_pixels(bounds.north, bounds.west, zoom)
        x1, y1 = to_pixels(bounds.south, bounds.east, zoom)
        if abs(float(x1) - float(x0)) <= avail_w and abs(float(y1) - float(y0)) <= avail_h:
            return zoom
    return 0
