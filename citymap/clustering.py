"""
Marker clustering at the current zoom level.

Buildings are projected to screen pixels and grouped greedily: walking the
input in order, each unassigned marker claims every other unassigned marker
within ``radius_px`` (a KD-tree ball query). Groups of one render as plain
markers with a glyph from `icons.resolve`; larger groups render as a cluster
glyph carrying the member count. Zooming in spreads the pixel distances, so
clusters break apart without any extra bookkeeping.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.spatial import cKDTree

from .constants import (
    CLUSTER_MEDIUM_LIMIT,
    CLUSTER_SMALL_LIMIT,
    DIMMED_MARKER_OPACITY,
    HIGH_SEVERITY_Z_OFFSET,
)
from .geo import to_pixels
from .icons import Glyph, resolve
from .models import Building


@dataclass(frozen=True)
class MarkerItem:
    building: Building
    glyph: Glyph
    opacity: float = 1.0
    z_offset: int = 0

    @property
    def lat(self) -> float:
        return self.building.lat

    @property
    def lng(self) -> float:
        return self.building.lng


@dataclass(frozen=True)
class ClusterItem:
    lat: float
    lng: float
    building_ids: Tuple[int, ...]

    @property
    def count(self) -> int:
        return len(self.building_ids)

    @property
    def size_class(self) -> str:
        if self.count < CLUSTER_SMALL_LIMIT:
            return "small"
        if self.count < CLUSTER_MEDIUM_LIMIT:
            return "medium"
        return "large"


RenderItem = Union[MarkerItem, ClusterItem]


class ClusterRenderer:
    """Thin adapter between the building cache and a clustered marker layer."""

    def __init__(self, radius_px: float = 30, resolver: Callable[..., Glyph] = resolve) -> None:
        self.radius_px = radius_px
        self._resolve = resolver

    def marker_for(self, building: Building, selected_id: Optional[int] = None) -> MarkerItem:
        is_selected = selected_id is not None and building.id == selected_id
        glyph = self._resolve(building.status, building.help_count, is_selected, building.id)
        dimmed = selected_id is not None and not is_selected
        return MarkerItem(
            building=building,
            glyph=glyph,
            opacity=DIMMED_MARKER_OPACITY if dimmed else 1.0,
            z_offset=HIGH_SEVERITY_Z_OFFSET if building.high_count > 0 else 0,
        )

    def render(
        self,
        buildings: Sequence[Building],
        zoom: float,
        selected_id: Optional[int] = None,
    ) -> List[RenderItem]:
        if not buildings:
            return []

        lats = np.array([b.lat for b in buildings], dtype=float)
        lngs = np.array([b.lng for b in buildings], dtype=float)
        xs, ys = to_pixels(lats, lngs, zoom)
        points = np.column_stack([np.atleast_1d(xs), np.atleast_1d(ys)])

        tree = cKDTree(points)
        assigned = np.zeros(len(buildings), dtype=bool)
        items: List[RenderItem] = []

        for i, building in enumerate(buildings):
            if assigned[i]:
                continue
            group = [j for j in tree.query_ball_point(points[i], r=self.radius_px) if not assigned[j]]
            if i not in group:
                group.append(i)
            assigned[group] = True

            if len(group) == 1:
                items.append(self.marker_for(building, selected_id))
                continue

            group.sort()
            items.append(
                ClusterItem(
                    lat=float(lats[group].mean()),
                    lng=float(lngs[group].mean()),
                    building_ids=tuple(buildings[j].id for j in group),
                )
            )
        return items
