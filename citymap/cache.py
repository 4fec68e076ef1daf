"""
Process-wide client cache of building entities.

The canonical building set is an immutable tuple that is swapped wholesale on
every successful refresh, so readers (map render, side panel, help board)
never observe a partially updated list. Status and counters are only ever
taken from the store. The one local mutation is the optimistic position
overlay returned by `patch_position`, which is handed to the caller for the
selected building's view model and never written back into the cache.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from . import client
from .errors import StoreError
from .models import Building, BuildingCreate, Report, ReportDraft
from .observability import cache_refreshes_total
from .session import SessionStore

log = logging.getLogger(__name__)

Listener = Callable[[Tuple[Building, ...]], None]


class BuildingCache:
    """Read-through cache over the remote building store."""

    def __init__(self, api=None, session: Optional[SessionStore] = None) -> None:
        self._api = api if api is not None else client
        self._session = session
        self._buildings: Tuple[Building, ...] = ()
        self._listeners: List[Listener] = []
        self.version = 0
        self.loaded = False

    # -- readers -----------------------------------------------------------

    @property
    def buildings(self) -> Tuple[Building, ...]:
        return self._buildings

    def get(self, building_id: int) -> Optional[Building]:
        for building in self._buildings:
            if building.id == building_id:
                return building
        return None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback invoked after every cache replacement."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _replace(self, buildings: List[Building]) -> None:
        self._buildings = tuple(buildings)
        self.version += 1
        for listener in list(self._listeners):
            try:
                listener(self._buildings)
            except Exception:
                log.exception("Cache listener %r failed", listener)

    def hydrate(self) -> bool:
        """Paint from the persisted snapshot before the first network refresh."""
        if self._session is None or self._buildings:
            return False
        snapshot = self._session.load_buildings()
        if not snapshot:
            return False
        log.info("Hydrated %d buildings from session snapshot", len(snapshot))
        self._replace(snapshot)
        return True

    # -- store operations --------------------------------------------------

    async def refresh(self) -> Tuple[Building, ...]:
        """Fetch the full building set and replace the cache.

        On failure the previous cache is left untouched and the error is raised.
        """
        try:
            buildings = await self._api.get_buildings()
        except StoreError:
            cache_refreshes_total.labels(outcome="failure").inc()
            raise
        cache_refreshes_total.labels(outcome="success").inc()
        self.loaded = True
        self._replace(buildings)
        if self._session is not None:
            self._session.save_buildings(list(self._buildings))
        log.debug("Building cache refreshed (%d entries, version %d)", len(self._buildings), self.version)
        return self._buildings

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh()
        except StoreError as exc:
            log.warning("Refresh after write failed; keeping previous cache: %s", exc)

    async def create(self, payload: BuildingCreate) -> Building:
        """Create a building, refresh, and return the created entity."""
        created = await self._api.create_building(payload)
        log.info("Created building %s", created.id)
        await self._refresh_quietly()
        return created

    async def patch_position(
        self,
        building_id: int,
        lat: float,
        lng: float,
        current: Optional[Callable[[], Optional[Building]]] = None,
    ) -> Optional[Building]:
        """Relocate a building and overlay the new position on the selection.

        `current` is read after the follow-up refresh, so the overlay lands on
        the freshly reconciled copy. None when the selection is elsewhere.
        """
        await self._api.update_building_position(building_id, lat, lng)
        log.info("Relocated building %s to (%.6f, %.6f)", building_id, lat, lng)
        await self._refresh_quietly()
        selected = current() if current is not None else None
        if selected is None or selected.id != building_id:
            return None
        return selected.model_copy(update={"lat": float(lat), "lng": float(lng)})

    async def get_reports(self, building_id: int) -> List[Report]:
        return await self._api.get_reports_by_building(building_id)

    async def submit_report(self, draft: ReportDraft) -> Report:
        return await self._api.create_report(draft)

    async def confirm_problem(self, report_id: int) -> None:
        await self._api.confirm_problem(report_id)

    async def confirm_resolved(self, report_id: int) -> None:
        await self._api.confirm_resolved(report_id)

    async def confirm_positive(self, building_id: int) -> None:
        await self._api.confirm_positive(building_id)
