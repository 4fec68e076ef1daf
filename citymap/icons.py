"""Marker glyph selection.

`resolve()` is pure and memoised: it runs on every render pass for every
visible building, and equal inputs always produce the same frozen `Glyph`.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

from .constants import (
    BADGE_ALERT_THRESHOLD,
    BADGE_COLOR_ALERT,
    BADGE_COLOR_DEFAULT,
    BADGE_COLOR_WARN,
    BADGE_PULSE_THRESHOLD,
    BADGE_WARN_THRESHOLD,
    DEFAULT_BUILDING_STATUS,
    MARKER_ICON_ANCHOR,
    MARKER_ICON_SIZE,
    MARKER_ICON_URLS,
    MARKER_POPUP_ANCHOR,
)

TIER_DEFAULT = "default"
TIER_WARN = "warn"
TIER_ALERT = "alert"

_BADGE_COLORS = {
    TIER_DEFAULT: BADGE_COLOR_DEFAULT,
    TIER_WARN: BADGE_COLOR_WARN,
    TIER_ALERT: BADGE_COLOR_ALERT,
}


@dataclass(frozen=True)
class Badge:
    count: int
    tier: str
    color: str
    pulse: bool
    href: Optional[str] = None


@dataclass(frozen=True)
class Glyph:
    kind: str
    icon_url: str
    size: Tuple[int, int] = MARKER_ICON_SIZE
    anchor: Tuple[int, int] = MARKER_ICON_ANCHOR
    popup_anchor: Tuple[int, int] = MARKER_POPUP_ANCHOR
    badge: Optional[Badge] = None

    @property
    def badged(self) -> bool:
        return self.badge is not None


def badge_tier(help_count: int) -> str:
    if help_count >= BADGE_ALERT_THRESHOLD:
        return TIER_ALERT
    if help_count >= BADGE_WARN_THRESHOLD:
        return TIER_WARN
    return TIER_DEFAULT


def _glyph_kind(status: Optional[str]) -> str:
    value = getattr(status, "value", status)
    if value in ("green", "yellow", "orange", "red"):
        return value
    return DEFAULT_BUILDING_STATUS


def plain_glyph(kind: str) -> Glyph:
    return Glyph(kind=kind, icon_url=MARKER_ICON_URLS[kind])


@lru_cache(maxsize=4096)
def resolve(status, help_count: int, is_selected: bool = False, building_id: Optional[int] = None) -> Glyph:
    """Map (status, pending help count, selection) to a marker glyph."""
    kind = "selected" if is_selected else _glyph_kind(status)
    count = int(help_count or 0)
    if count <= 0:
        return plain_glyph(kind)

    tier = badge_tier(count)
    badge = Badge(
        count=count,
        tier=tier,
        color=_BADGE_COLORS[tier],
        pulse=count >= BADGE_PULSE_THRESHOLD,
        href=f"/help?building={building_id}" if building_id is not None else None,
    )
    return Glyph(kind=kind, icon_url=MARKER_ICON_URLS[kind], badge=badge)


PREVIEW_GLYPH = plain_glyph("preview")
