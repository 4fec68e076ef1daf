"""
Viewport tracking for the map surface.

`ViewportTracker` turns bursts of pan/zoom/filter events into at most one
refresh per quiescence window. Each event is reduced to a `ViewportKey`
(bounding box rounded to a fixed number of decimals plus the active render
filters); a key equal to the last processed one never triggers a fetch.

Timing is a trailing-edge debounce on the running asyncio loop: every new
event cancels the pending timer and starts a fresh one. The refresh itself is
not cancelled by later events once it has started.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set

from .constants import STATUS_FILTER_ALL
from .errors import StoreError
from .geo import Bounds
from .models import Building

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildingFilter:
    """Render-time filters applied to the cached building set."""

    status: str = STATUS_FILTER_ALL
    problem_mode: bool = False
    severity: Optional[str] = None

    def matches(self, building: Building) -> bool:
        if self.status != STATUS_FILTER_ALL and building.status.value != self.status:
            return False
        if self.severity is not None:
            if getattr(building, f"{self.severity}_count", 0) <= 0:
                return False
        if self.problem_mode and not building.has_problems:
            return False
        return True


@dataclass(frozen=True)
class ViewportKey:
    south: float
    west: float
    north: float
    east: float
    status_filter: str
    problem_mode: bool
    severity_filter: Optional[str]

    @classmethod
    def build(cls, bounds: Bounds, filters: BuildingFilter, precision: int = 4) -> "ViewportKey":
        return cls(
            south=round(bounds.south, precision),
            west=round(bounds.west, precision),
            north=round(bounds.north, precision),
            east=round(bounds.east, precision),
            status_filter=filters.status,
            problem_mode=filters.problem_mode,
            severity_filter=filters.severity,
        )


class ViewportTracker:
    """Debounced, deduplicated trigger for building refreshes."""

    def __init__(
        self,
        on_refresh: Callable[[], Awaitable[object]],
        delay: float = 0.3,
        precision: int = 4,
    ) -> None:
        self._on_refresh = on_refresh
        self._delay = delay
        self._precision = precision
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending_key: Optional[ViewportKey] = None
        self._last_key: Optional[ViewportKey] = None
        self._tasks: Set[asyncio.Task] = set()
        self.refresh_count = 0

    @property
    def last_key(self) -> Optional[ViewportKey]:
        return self._last_key

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def notify(self, bounds: Bounds, filters: BuildingFilter) -> bool:
        """Record a viewport or filter change. Returns True when a refresh was scheduled."""
        key = ViewportKey.build(bounds, filters, self._precision)
        if key == self._last_key and self._timer is None:
            return False
        self._pending_key = key
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._fire)
        return True

    async def refresh_now(self, bounds: Bounds, filters: BuildingFilter) -> None:
        """Refresh immediately (mount, geolocation), bypassing the quiescence window."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending_key = None
        self._last_key = ViewportKey.build(bounds, filters, self._precision)
        await self._run()

    def _fire(self) -> None:
        self._timer = None
        key = self._pending_key
        self._pending_key = None
        if key is None or key == self._last_key:
            log.debug("Viewport unchanged; skipping refresh")
            return
        self._last_key = key
        task = asyncio.ensure_future(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        self.refresh_count += 1
        try:
            await self._on_refresh()
        except StoreError as exc:
            # Stale buildings are an acceptable degraded state; the same view may retry later
            log.warning("Background refresh failed: %s", exc)
            self._last_key = None

    async def wait_idle(self) -> None:
        """Wait for the pending timer (if any) and in-flight refreshes."""
        while self._timer is not None or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(self._delay / 4 or 0.01)

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in list(self._tasks):
            task.cancel()
