from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import (
    DEFAULT_HELP_CATEGORY,
    DEFAULT_REPORT_CATEGORY,
    DEFAULT_REPORT_PERIODICITY,
    DEFAULT_REPORT_SEVERITY,
    MAX_CONFIRMATIONS,
)


# =====================================================
# ENUMS
# =====================================================

class BuildingStatus(str, Enum):
    green = "green"
    yellow = "yellow"
    orange = "orange"
    red = "red"


class ReportCategory(str, Enum):
    yard = "yard"
    road = "road"
    trashinyard = "trashinyard"
    utiltrash = "utiltrash"
    noise = "noise"
    JKH = "JKH"
    water = "water"
    heating = "heating"
    electricity = "electricity"
    gas = "gas"
    parking = "parking"
    other = "other"


class ReportSeverity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class ReportPeriodicity(str, Enum):
    rare = "rare"
    often = "often"
    always = "always"


class ReportStatus(str, Enum):
    open = "open"
    resolved = "resolved"
    outdated = "outdated"


class HelpStatus(str, Enum):
    open = "open"
    closed = "closed"


def _as_utc(value: datetime) -> datetime:
    # The store emits naive UTC timestamps
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =====================================================
# GEOMETRY
# =====================================================

class LatLng(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


# =====================================================
# BUILDINGS
# =====================================================

class Building(BaseModel):
    """A mapped building. Status and counters are owned by the store."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    lat: float
    lng: float
    address: Optional[str] = None
    status: BuildingStatus = BuildingStatus.green
    high_count: int = Field(default=0, ge=0)
    medium_count: int = Field(default=0, ge=0)
    low_count: int = Field(default=0, ge=0)
    positive_count: int = Field(default=0, ge=0)
    help_count: int = Field(default=0, ge=0)

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value):
        return value or BuildingStatus.green

    @field_validator(
        "high_count", "medium_count", "low_count", "positive_count", "help_count",
        mode="before",
    )
    @classmethod
    def _default_counter(cls, value):
        return value or 0

    @property
    def position(self) -> LatLng:
        return LatLng(lat=self.lat, lng=self.lng)

    @property
    def title(self) -> str:
        return self.address or f"Building #{self.id}"

    @property
    def has_problems(self) -> bool:
        return (self.high_count + self.medium_count + self.low_count) > 0


class BuildingCreate(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None
    status: Optional[BuildingStatus] = BuildingStatus.green

    @model_validator(mode="after")
    def _coordinates_or_address(self):
        has_coords = self.lat is not None and self.lng is not None
        if not has_coords and not (self.address or "").strip():
            raise ValueError("either coordinates or an address is required")
        return self

    def payload(self) -> dict:
        data = self.model_dump(mode="json")
        if self.lat is None or self.lng is None:
            data.pop("lat")
            data.pop("lng")
        return data


# =====================================================
# REPORTS
# =====================================================

class Attachment(BaseModel):
    filename: str
    content: bytes
    content_type: Optional[str] = None


class ReportDraft(BaseModel):
    building_id: int
    category: ReportCategory = ReportCategory(DEFAULT_REPORT_CATEGORY)
    severity: ReportSeverity = ReportSeverity(DEFAULT_REPORT_SEVERITY)
    periodicity: ReportPeriodicity = ReportPeriodicity(DEFAULT_REPORT_PERIODICITY)
    text: str = ""
    image: Optional[Attachment] = None

    def form_fields(self) -> dict:
        return {
            "building_id": str(self.building_id),
            "category": self.category.value,
            "severity": self.severity.value,
            "periodicity": self.periodicity.value,
            "text": self.text,
        }


class Report(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    building_id: int
    category: str
    severity: ReportSeverity
    periodicity: ReportPeriodicity
    text: str
    status: ReportStatus = ReportStatus.open
    problem_confirmations: int = 0
    resolved_confirmations: int = 0
    image_path: Optional[str] = None
    created_at: datetime

    @field_validator("problem_confirmations", "resolved_confirmations", mode="before")
    @classmethod
    def _saturate(cls, value):
        return max(0, min(int(value or 0), MAX_CONFIRMATIONS))

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def is_open(self) -> bool:
        return self.status == ReportStatus.open


# =====================================================
# NEIGHBOR HELP
# =====================================================

class HelpDraft(BaseModel):
    building_id: Optional[int] = None
    category: str = DEFAULT_HELP_CATEGORY
    title: str = ""
    description: str = ""
    contact: str = ""


class HelpRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    building_id: int
    category: Optional[str] = "other"
    title: str
    description: str
    contact: Optional[str] = None
    status: HelpStatus = HelpStatus.open
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class HelpResponseCount(BaseModel):
    count: int = 0
