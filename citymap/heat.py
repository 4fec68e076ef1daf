"""
Severity heat overlay.

Each building with open reports contributes one weighted point
(high x3 + medium x2 + low x1); buildings without reports are left out. The
layer has no data source of its own: `update()` is called with every new
cache snapshot. `surface()` rasterises the points for a viewport and blurs
them into a continuous density grid normalised to [0, 1]; `colorize()` maps
that grid onto the four-stop gradient.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np
from scipy.ndimage import gaussian_filter

from .constants import HEAT_GRADIENT, SEVERITY_WEIGHTS
from .geo import to_pixels
from .models import Building, LatLng

_STOPS = np.array([stop for stop, _ in HEAT_GRADIENT])
BAND_COLORS: Tuple[Optional[str], ...] = (None,) + tuple(color for _, color in HEAT_GRADIENT)


@dataclass(frozen=True)
class HeatPoint:
    lat: float
    lng: float
    weight: int


def severity_weight(building: Building) -> int:
    return (
        building.high_count * SEVERITY_WEIGHTS["high"]
        + building.medium_count * SEVERITY_WEIGHTS["medium"]
        + building.low_count * SEVERITY_WEIGHTS["low"]
    )


def heat_points(buildings: Iterable[Building]) -> Tuple[HeatPoint, ...]:
    points = []
    for b in buildings:
        weight = severity_weight(b)
        if weight > 0:
            points.append(HeatPoint(lat=float(b.lat), lng=float(b.lng), weight=weight))
    return tuple(points)


def band(value: float) -> Optional[str]:
    """Gradient colour for a normalised intensity, None when nothing to draw."""
    if value <= 0:
        return None
    for stop, color in HEAT_GRADIENT:
        if value <= stop:
            return color
    return HEAT_GRADIENT[-1][1]


class HeatLayer:
    def __init__(self, radius: int = 35, blur: int = 30, max_intensity: float = 10.0) -> None:
        self.radius = radius
        self.blur = blur
        self.max_intensity = max_intensity
        self.points: Tuple[HeatPoint, ...] = ()

    def update(self, buildings: Iterable[Building]) -> Tuple[HeatPoint, ...]:
        self.points = heat_points(buildings)
        return self.points

    def band_for(self, weight: float) -> Optional[str]:
        return band(min(weight / self.max_intensity, 1.0))

    @property
    def sigma(self) -> float:
        return max((self.radius + self.blur) / 4.0, 1.0)

    def surface(self, center: LatLng, zoom: float, width: int, height: int) -> np.ndarray:
        grid = np.zeros((height, width), dtype=float)
        if not self.points:
            return grid

        cx, cy = to_pixels(center.lat, center.lng, zoom)
        left = float(cx) - width / 2.0
        top = float(cy) - height / 2.0

        lats = np.array([p.lat for p in self.points])
        lngs = np.array([p.lng for p in self.points])
        weights = np.array([p.weight for p in self.points], dtype=float)
        xs, ys = to_pixels(lats, lngs, zoom)
        cols = np.floor(np.atleast_1d(xs) - left).astype(int)
        rows = np.floor(np.atleast_1d(ys) - top).astype(int)

        inside = (cols >= 0) & (cols < width) & (rows >= 0) & (rows < height)
        np.add.at(grid, (rows[inside], cols[inside]), weights[inside])

        # A lone point of weight `max_intensity` peaks at 1.0 after the blur
        sigma = self.sigma
        density = gaussian_filter(grid, sigma=sigma) * (2.0 * math.pi * sigma ** 2)
        return np.clip(density / self.max_intensity, 0.0, 1.0)

    @staticmethod
    def colorize(surface: np.ndarray) -> np.ndarray:
        """Band index per cell: 0 transparent, 1..4 green/yellow/orange/red."""
        idx = np.searchsorted(_STOPS, surface, side="left") + 1
        idx = np.minimum(idx, len(_STOPS))
        idx[surface <= 0] = 0
        return idx
