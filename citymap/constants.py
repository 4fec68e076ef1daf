"""Shared constants for the city map client.

Single source of truth for storage keys, display labels, marker assets and the
small numeric thresholds used across the map surface, side panel and help
board. Storage keys are what the remote store accepts; labels are what a UI
shell shows.
"""

from typing import Dict, List, Tuple

# ---------------------------------------------------------------------------
# Building status
# ---------------------------------------------------------------------------
BUILDING_STATUS_KEYS: List[str] = ["green", "yellow", "orange", "red"]
BUILDING_STATUS_LABELS: List[str] = ["Normal", "Has reports", "Problematic", "Critical"]
BUILDING_STATUS_KEY_TO_LABEL: Dict[str, str] = dict(zip(BUILDING_STATUS_KEYS, BUILDING_STATUS_LABELS))
DEFAULT_BUILDING_STATUS = "green"

# Status filter value meaning "do not filter by status"
STATUS_FILTER_ALL = "all"

# ---------------------------------------------------------------------------
# Report enums and mappings
# ---------------------------------------------------------------------------
REPORT_CATEGORY_KEY_TO_LABEL: Dict[str, str] = {
    "yard": "Yard",
    "road": "Road",
    "trashinyard": "Trash in yard",
    "utiltrash": "Waste collection",
    "noise": "Noise",
    "JKH": "Housing utilities",
    "water": "Water",
    "heating": "Heating",
    "electricity": "Electricity",
    "gas": "Gas",
    "parking": "Parking",
    "other": "Other",
}
REPORT_CATEGORY_KEYS: List[str] = list(REPORT_CATEGORY_KEY_TO_LABEL.keys())

SEVERITY_KEYS: List[str] = ["low", "medium", "high"]
SEVERITY_LABELS: List[str] = ["Low", "Medium", "High"]
SEVERITY_KEY_TO_LABEL: Dict[str, str] = dict(zip(SEVERITY_KEYS, SEVERITY_LABELS))

# Heat weight contributed by one report of each severity
SEVERITY_WEIGHTS: Dict[str, int] = {"high": 3, "medium": 2, "low": 1}

PERIODICITY_KEYS: List[str] = ["rare", "often", "always"]
PERIODICITY_LABELS: List[str] = ["Rarely", "Often", "Always"]
PERIODICITY_KEY_TO_LABEL: Dict[str, str] = dict(zip(PERIODICITY_KEYS, PERIODICITY_LABELS))

REPORT_STATUS_KEYS: List[str] = ["open", "resolved", "outdated"]

# Report draft defaults
DEFAULT_REPORT_CATEGORY = "yard"
DEFAULT_REPORT_SEVERITY = "medium"
DEFAULT_REPORT_PERIODICITY = "often"

# Confirm / resolve votes saturate at this value
MAX_CONFIRMATIONS = 3

# Attachments accepted by the store
ALLOWED_IMAGE_TYPES: Tuple[str, ...] = ("image/jpeg", "image/png", "image/webp")
MAX_IMAGE_BYTES = 5 * 1024 * 1024

# ---------------------------------------------------------------------------
# Help requests
# ---------------------------------------------------------------------------
HELP_STATUS_KEYS: List[str] = ["open", "closed"]
DEFAULT_HELP_CATEGORY = "repair"
HOT_HELP_WINDOW_HOURS = 2
BUILDING_SEARCH_LIMIT = 20

# ---------------------------------------------------------------------------
# Marker glyphs
# ---------------------------------------------------------------------------
MARKER_ICON_URLS: Dict[str, str] = {
    "green": "/marker-green.png",
    "yellow": "/marker-yellow.png",
    "orange": "/marker-orange.png",
    "red": "/marker-red.png",
    "selected": "/marker-blue.png",
    "preview": "/marker-black.png",
}
MARKER_ICON_SIZE: Tuple[int, int] = (35, 56)
MARKER_ICON_ANCHOR: Tuple[int, int] = (17, 56)
MARKER_POPUP_ANCHOR: Tuple[int, int] = (0, -50)

# Help badge colour tiers
BADGE_COLOR_DEFAULT = "#2563eb"
BADGE_COLOR_WARN = "#f57c00"
BADGE_COLOR_ALERT = "#d32f2f"
BADGE_WARN_THRESHOLD = 2
BADGE_ALERT_THRESHOLD = 5
BADGE_PULSE_THRESHOLD = 3

# Marker emphasis
DIMMED_MARKER_OPACITY = 0.7
HIGH_SEVERITY_Z_OFFSET = 1000

# Cluster glyph size classes (upper bounds, exclusive)
CLUSTER_SMALL_LIMIT = 10
CLUSTER_MEDIUM_LIMIT = 100

# ---------------------------------------------------------------------------
# Heat layer gradient: normalised intensity stop -> colour
# ---------------------------------------------------------------------------
HEAT_GRADIENT: Tuple[Tuple[float, str], ...] = (
    (0.2, "green"),
    (0.4, "yellow"),
    (0.6, "orange"),
    (1.0, "red"),
)

# ---------------------------------------------------------------------------
# Map view zoom levels
# ---------------------------------------------------------------------------
GEOLOCATED_ZOOM = 13
FOCUS_ZOOM = 20
MAX_ZOOM = 20
TILE_SIZE = 256
