"""
Headless map surface.

`MapView` wires the building cache, viewport tracker, cluster renderer, heat
layer, interaction state machine and side panel together. A UI shell forwards
pointer and viewport events to it and reads back a `MapFrame` from
`render()`; nothing here draws pixels.

Sequencing:
- mount: paint from the session snapshot, then one immediate load.
- viewport and filter changes go through the debounced tracker.
- every cache replacement updates the heat layer, reconciles the selected
  building, resolves a pending deep link and, once, fits the view to the
  buildings with high-severity reports.
- create -> refresh -> select runs in order; background refreshes do not.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, List, Optional, Set, Tuple

from . import analytics
from .cache import BuildingCache
from .clustering import ClusterItem, ClusterRenderer, MarkerItem, RenderItem
from .config import Settings, get_settings
from .constants import (
    BUILDING_STATUS_KEYS,
    FOCUS_ZOOM,
    GEOLOCATED_ZOOM,
    MAX_ZOOM,
    SEVERITY_KEYS,
    STATUS_FILTER_ALL,
)
from .geo import Bounds, bounds_for_view, enclosing_bounds, fit_zoom
from .heat import HeatLayer, HeatPoint
from .icons import PREVIEW_GLYPH, Glyph
from .interaction import InteractionMode, InteractionStateMachine, Relocating
from .models import Building, LatLng
from .side_panel import SidePanel
from .viewport import BuildingFilter, ViewportTracker

logger = logging.getLogger(__name__)

Locator = Callable[[], Awaitable[Optional[LatLng]]]

FIT_PADDING_PX = 50


@dataclass(frozen=True)
class PreviewMarker:
    lat: float
    lng: float
    glyph: Glyph = PREVIEW_GLYPH


@dataclass(frozen=True)
class MapFrame:
    """Everything a UI shell needs to draw one frame of the map."""

    center: LatLng
    zoom: float
    items: Tuple[RenderItem, ...]
    heat_points: Tuple[HeatPoint, ...]
    preview: Optional[PreviewMarker]
    selected_id: Optional[int]
    mode: InteractionMode

    @property
    def markers(self) -> List[MarkerItem]:
        return [item for item in self.items if isinstance(item, MarkerItem)]

    @property
    def clusters(self) -> List[ClusterItem]:
        return [item for item in self.items if isinstance(item, ClusterItem)]


class MapView:
    def __init__(
        self,
        cache: Optional[BuildingCache] = None,
        settings: Optional[Settings] = None,
        width: int = 1024,
        height: int = 768,
    ) -> None:
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else BuildingCache()
        lat, lng = self.settings.default_center
        self.center = LatLng(lat=lat, lng=lng)
        self.zoom: float = self.settings.default_zoom
        self.width = width
        self.height = height
        self.filters = BuildingFilter()

        self.tracker = ViewportTracker(
            self.cache.refresh,
            delay=self.settings.debounce_seconds,
            precision=self.settings.bbox_precision,
        )
        self.renderer = ClusterRenderer(radius_px=self.settings.cluster_radius_px)
        self.heat = HeatLayer(
            radius=self.settings.heat_radius,
            blur=self.settings.heat_blur,
            max_intensity=self.settings.heat_max,
        )
        self.interaction = InteractionStateMachine(self.cache, on_created=self.select)
        self.panel = SidePanel(self.cache, on_severity_filter=self.toggle_severity_filter)

        self._focus_id: Optional[int] = None
        self._focused = False
        self._fitted = False
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe = self.cache.subscribe(self._on_cache_replaced)

    # -- viewport ------------------------------------------------------------

    @property
    def bounds(self) -> Bounds:
        return bounds_for_view(self.center, self.zoom, self.width, self.height)

    @property
    def selected(self) -> Optional[Building]:
        return self.panel.building

    def _schedule(self) -> bool:
        return self.tracker.notify(self.bounds, self.filters)

    def on_viewport_change(
        self,
        center: LatLng,
        zoom: float,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> bool:
        self.center = center
        self.zoom = zoom
        if width is not None:
            self.width = width
        if height is not None:
            self.height = height
        return self._schedule()

    def set_status_filter(self, status: str) -> bool:
        if status != STATUS_FILTER_ALL and status not in BUILDING_STATUS_KEYS:
            raise ValueError(f"unknown status filter {status!r}")
        analytics.track_event("filter_status", status=status)
        self.filters = replace(self.filters, status=status)
        return self._schedule()

    def set_problem_mode(self, enabled: bool) -> bool:
        self.filters = replace(self.filters, problem_mode=bool(enabled))
        return self._schedule()

    def toggle_severity_filter(self, severity: Optional[str]) -> bool:
        if severity is not None and severity not in SEVERITY_KEYS:
            raise ValueError(f"unknown severity {severity!r}")
        if severity == self.filters.severity:
            severity = None
        self.filters = replace(self.filters, severity=severity)
        return self._schedule()

    # -- lifecycle -----------------------------------------------------------

    async def mount(self, focus_building_id: Optional[int] = None) -> bool:
        """Hydrate from the session snapshot and run the initial load.

        Returns True when the initial load reached the store.
        """
        self._focus_id = focus_building_id
        self.cache.hydrate()
        await self.tracker.refresh_now(self.bounds, self.filters)
        return self.cache.loaded

    async def apply_geolocation(self, locate: Locator) -> bool:
        """Recenter on the user's position; any failure leaves the view as is."""
        try:
            position = await locate()
        except Exception:
            logger.info("Geolocation unavailable", exc_info=True)
            return False
        if position is None:
            return False
        self.center = position
        self.zoom = GEOLOCATED_ZOOM
        await self.tracker.refresh_now(self.bounds, self.filters)
        return True

    async def wait_idle(self) -> None:
        await self.tracker.wait_idle()
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await self.tracker.wait_idle()

    def close(self) -> None:
        self._unsubscribe()
        self.tracker.close()
        for task in list(self._tasks):
            task.cancel()

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- cache listener ------------------------------------------------------

    def _on_cache_replaced(self, buildings: Tuple[Building, ...]) -> None:
        self.heat.update(buildings)
        self.panel.reconcile(buildings)

        if self._focus_id is not None and not self._focused:
            for building in buildings:
                if building.id == self._focus_id:
                    self._focused = True
                    self._spawn(self.select(building))
                    break
            return

        if self.cache.loaded and not self._fitted and self._focus_id is None:
            self._fitted = True
            self.fit_high_severity(buildings)

    def fit_high_severity(self, buildings) -> Optional[Bounds]:
        box = enclosing_bounds((b.lat, b.lng) for b in buildings if b.high_count > 0)
        if box is None:
            return None
        self.center = box.center
        self.zoom = fit_zoom(box, self.width, self.height, padding=FIT_PADDING_PX, max_zoom=MAX_ZOOM)
        logger.debug("Fitted view to high-severity bounds %s at zoom %s", box.as_tuple(), self.zoom)
        self._schedule()
        return box

    # -- selection -----------------------------------------------------------

    async def select(self, building: Building) -> None:
        self.interaction.on_selection_changed(building.id)
        self.center = building.position
        self.zoom = FOCUS_ZOOM
        await self.panel.open(building)
        self._schedule()

    async def on_marker_click(self, building_id: int) -> Optional[Building]:
        building = self.cache.get(building_id)
        if building is None:
            logger.info("Marker click for unknown building %s", building_id)
            return None
        await self.select(building)
        return building

    def close_panel(self) -> None:
        self.interaction.cancel_relocating()
        self.panel.close()

    # -- pointer events ------------------------------------------------------

    def on_map_click(self, point: LatLng) -> InteractionMode:
        return self.interaction.on_primary_click(point)

    def on_map_context_menu(self, point: LatLng) -> InteractionMode:
        return self.interaction.on_secondary_click(point)

    # -- building placement and relocation ---------------------------------------

    def start_placing(self) -> InteractionMode:
        return self.interaction.start_placing()

    async def confirm_placing(self) -> Optional[Building]:
        return await self.interaction.confirm_placing()

    def start_relocating(self) -> InteractionMode:
        return self.interaction.start_relocating(self.panel.building, len(self.panel.reports))

    async def confirm_relocating(self) -> Optional[Building]:
        overlay = await self.interaction.confirm_relocating(lambda: self.panel.building)
        current = self.panel.building
        if overlay is not None and current is not None and current.id == overlay.id:
            self.panel.building = overlay
        return overlay

    # -- rendering -----------------------------------------------------------

    @property
    def visible_buildings(self) -> List[Building]:
        return [b for b in self.cache.buildings if self.filters.matches(b)]

    def render(self) -> MapFrame:
        selected_id = self.selected.id if self.selected is not None else None
        mode = self.interaction.mode
        preview = None
        if isinstance(mode, Relocating) and mode.pending is not None:
            preview = PreviewMarker(lat=mode.pending.lat, lng=mode.pending.lng)
        return MapFrame(
            center=self.center,
            zoom=self.zoom,
            items=tuple(self.renderer.render(self.visible_buildings, self.zoom, selected_id)),
            heat_points=self.heat.points,
            preview=preview,
            selected_id=selected_id,
            mode=mode,
        )
