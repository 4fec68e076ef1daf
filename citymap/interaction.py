"""
Pointer-mode state machine for the map surface.

Exactly one mode is active at a time:

    Idle        normal browsing; marker clicks select buildings
    Placing     a new building is being added (right-click picks coordinates,
                or an address is typed)
    Relocating  the selected building is being moved (left-click picks the
                new position)

Transitions:

    Idle       --secondary-click(p)--> Placing(pending=p)
    Placing    --secondary-click(p)--> Placing(pending=p)
    Placing    --confirm-->            Idle (after the store accepts the building)
    Placing    --cancel-->             Idle
    Idle       --start_relocating-->   Relocating (only for buildings with no reports)
    Relocating --primary-click(p)-->   Relocating(pending=p)
    Relocating --confirm-->            Idle (after the store accepts the move)
    Relocating --cancel / selection of another building--> Idle

While Relocating, secondary clicks are ignored. Validation problems never
reach the network; they leave the mode unchanged and set an inline error.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from . import analytics
from .cache import BuildingCache
from .errors import StoreError, ValidationFailure
from .models import Building, BuildingCreate, LatLng

logger = logging.getLogger(__name__)

# Inline messages shown next to the affordance that triggered them
MSG_NEED_COORDINATES = "Coordinates required: right-click on the map"
MSG_NEED_ADDRESS = "Enter an address"
MSG_NEED_MOVE_POINT = "Click the new location on the map, then press Confirm"
MSG_RELOCATION_DISABLED = "Relocation disabled: this building already has reports"
MSG_NOTHING_SELECTED = "Select a building first"


class PlacingSource(str, Enum):
    right_click = "rightclick"
    address = "address"


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Placing:
    pending: Optional[LatLng] = None
    address_draft: str = ""
    source: PlacingSource = PlacingSource.right_click


@dataclass(frozen=True)
class Relocating:
    target_building_id: int
    pending: Optional[LatLng] = None


InteractionMode = Union[Idle, Placing, Relocating]

IDLE = Idle()


class InteractionStateMachine:
    """Routes map pointer events according to the active mode."""

    def __init__(
        self,
        cache: BuildingCache,
        on_created: Optional[Callable[[Building], Awaitable[object]]] = None,
    ) -> None:
        self._cache = cache
        self._on_created = on_created
        self.mode: InteractionMode = IDLE
        self.create_error = ""
        self.move_error = ""
        self.busy = False

    # -- introspection -------------------------------------------------------

    @property
    def is_idle(self) -> bool:
        return isinstance(self.mode, Idle)

    @property
    def is_placing(self) -> bool:
        return isinstance(self.mode, Placing)

    @property
    def is_relocating(self) -> bool:
        return isinstance(self.mode, Relocating)

    # -- pointer events ------------------------------------------------------

    def on_primary_click(self, point: LatLng) -> InteractionMode:
        if isinstance(self.mode, Relocating):
            self.mode = replace(self.mode, pending=point)
            self.move_error = ""
        return self.mode

    def on_secondary_click(self, point: LatLng) -> InteractionMode:
        if isinstance(self.mode, Relocating):
            return self.mode
        if isinstance(self.mode, Placing):
            self.mode = replace(self.mode, pending=point)
        else:
            self.mode = Placing(pending=point)
            self.create_error = ""
        return self.mode

    def on_selection_changed(self, building_id: Optional[int]) -> InteractionMode:
        if isinstance(self.mode, Relocating) and self.mode.target_building_id != building_id:
            logger.info("Selection changed; abandoning relocation of %s", self.mode.target_building_id)
            self.cancel_relocating()
        return self.mode

    # -- placing -------------------------------------------------------------

    def start_placing(self) -> InteractionMode:
        self.mode = Placing()
        self.create_error = ""
        self.move_error = ""
        return self.mode

    def set_placing_source(self, source: PlacingSource) -> InteractionMode:
        if isinstance(self.mode, Placing):
            self.mode = replace(self.mode, source=PlacingSource(source))
        return self.mode

    def set_address_draft(self, text: str) -> InteractionMode:
        if isinstance(self.mode, Placing):
            self.mode = replace(self.mode, address_draft=text)
        return self.mode

    def cancel_placing(self) -> InteractionMode:
        if isinstance(self.mode, Placing):
            self.mode = IDLE
        self.create_error = ""
        return self.mode

    def _placing_payload(self, mode: Placing) -> BuildingCreate:
        address = mode.address_draft.strip()
        if mode.source == PlacingSource.right_click:
            if mode.pending is None:
                raise ValidationFailure(MSG_NEED_COORDINATES)
            return BuildingCreate(
                lat=mode.pending.lat,
                lng=mode.pending.lng,
                address=address or None,
                status="green",
            )
        if not address:
            raise ValidationFailure(MSG_NEED_ADDRESS)
        return BuildingCreate(address=address, status="green")

    async def confirm_placing(self) -> Optional[Building]:
        """Submit the pending building. Returns it on success, None otherwise."""
        mode = self.mode
        if not isinstance(mode, Placing):
            return None
        self.create_error = ""
        try:
            payload = self._placing_payload(mode)
        except ValidationFailure as exc:
            self.create_error = str(exc)
            return None

        analytics.track_event("create_building", lat=payload.lat, lng=payload.lng)
        self.busy = True
        try:
            created = await self._cache.create(payload)
        except StoreError as exc:
            logger.warning("Building creation failed: %s", exc)
            self.create_error = str(exc)
            return None
        finally:
            self.busy = False

        if self.mode is not mode:
            # The user moved on while the create was in flight
            return created
        self.mode = IDLE
        if self._on_created is not None:
            await self._on_created(created)
        return created

    # -- relocating ----------------------------------------------------------

    def start_relocating(self, building: Optional[Building], report_count: int) -> InteractionMode:
        self.move_error = ""
        try:
            if building is None:
                raise ValidationFailure(MSG_NOTHING_SELECTED)
            if report_count > 0:
                raise ValidationFailure(MSG_RELOCATION_DISABLED)
        except ValidationFailure as exc:
            self.move_error = str(exc)
            return self.mode
        self.mode = Relocating(target_building_id=building.id)
        self.create_error = ""
        return self.mode

    def cancel_relocating(self) -> InteractionMode:
        if isinstance(self.mode, Relocating):
            self.mode = IDLE
        self.move_error = ""
        return self.mode

    async def confirm_relocating(
        self, current: Optional[Callable[[], Optional[Building]]] = None
    ) -> Optional[Building]:
        """Commit the pending move.

        Returns the selected building with its new position, or None when the
        move failed or the selection changed before it completed.
        """
        mode = self.mode
        if not isinstance(mode, Relocating):
            return None
        if mode.pending is None:
            self.move_error = MSG_NEED_MOVE_POINT
            return None
        self.move_error = ""
        self.busy = True
        try:
            overlay = await self._cache.patch_position(
                mode.target_building_id, mode.pending.lat, mode.pending.lng, current
            )
        except StoreError as exc:
            logger.warning("Relocation of %s failed: %s", mode.target_building_id, exc)
            self.move_error = str(exc)
            return None
        finally:
            self.busy = False
        if self.mode is mode:
            self.mode = IDLE
        return overlay
