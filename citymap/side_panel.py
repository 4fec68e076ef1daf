"""
Side panel for the selected building and its report workflow.

The panel never computes building status or counters itself. After every
report-affecting action it re-fetches the building set and the report list
and swaps in the refreshed copies by identity. Vote counters are only bumped
locally after the store has acknowledged the vote, and only as a stop-gap
until the re-fetched reports arrive.
"""
from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from typing import Callable, List, Optional

from . import analytics
from .cache import BuildingCache
from .constants import (
    ALLOWED_IMAGE_TYPES,
    MAX_CONFIRMATIONS,
    MAX_IMAGE_BYTES,
)
from .errors import ServerRejection, StoreError, ValidationFailure
from .models import Attachment, Building, Report, ReportDraft

logger = logging.getLogger(__name__)

TAB_ACTIVE = "active"
TAB_HISTORY = "history"

MSG_TEXT_REQUIRED = "Describe the problem before submitting"
MSG_SUBMIT_FAILED = "Could not submit the report"
MSG_DAILY_LIMIT = (
    "You have already reported this building in the last 24 hours. "
    "You can submit a new report once 24 hours have passed."
)
MSG_POSITIVE_LIMIT = "You have already confirmed this building within the last 24 hours"
MSG_VOTE_FAILED = "Could not record your vote"
MSG_IMAGE_TYPE = "Only JPEG, PNG or WebP images can be attached"
MSG_IMAGE_SIZE = "Image is too large (max 5 MB)"


@dataclass(frozen=True)
class SeverityStats:
    high: int = 0
    medium: int = 0
    low: int = 0


def validate_attachment(attachment: Attachment) -> Attachment:
    mime = attachment.content_type or mimetypes.guess_type(attachment.filename)[0]
    if mime not in ALLOWED_IMAGE_TYPES:
        raise ValidationFailure(MSG_IMAGE_TYPE)
    if len(attachment.content) > MAX_IMAGE_BYTES:
        raise ValidationFailure(MSG_IMAGE_SIZE)
    return attachment.model_copy(update={"content_type": mime})


class SidePanel:
    """View model for the building side panel."""

    def __init__(
        self,
        cache: BuildingCache,
        on_severity_filter: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._cache = cache
        self._on_severity_filter = on_severity_filter
        self.building: Optional[Building] = None
        self.reports: List[Report] = []
        self.tab = TAB_ACTIVE
        self._reset_draft()
        self.submit_error = ""
        self.notice = ""
        self.vote_error = ""
        self.submitting = False
        self.positive_locked = False

    def _reset_draft(self) -> None:
        self.draft: Optional[ReportDraft] = (
            ReportDraft(building_id=self.building.id) if self.building is not None else None
        )

    # -- lifecycle -----------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self.building is not None

    def _showing(self, building_id: int) -> bool:
        return self.building is not None and self.building.id == building_id

    async def open(self, building: Building) -> None:
        analytics.track_event("open_building", building_id=building.id)
        changed = self.building is None or self.building.id != building.id
        self.building = building
        if changed:
            self._reset_draft()
            self.tab = TAB_ACTIVE
            self.submit_error = ""
            self.notice = ""
            self.vote_error = ""
            self.positive_locked = False
        try:
            reports = await self._cache.get_reports(building.id)
        except StoreError as exc:
            # An empty list must not block selection
            logger.warning("Could not load reports for building %s: %s", building.id, exc)
            reports = []
        if self._showing(building.id):
            self.reports = reports

    def close(self) -> None:
        self.building = None
        self.reports = []
        self.draft = None
        self.submit_error = ""
        self.notice = ""
        self.vote_error = ""

    def reconcile(self, buildings) -> None:
        """Replace the selected building with its refreshed copy (by identity)."""
        if self.building is None:
            return
        for candidate in buildings:
            if candidate.id == self.building.id:
                self.building = candidate
                return

    async def refresh_selected(self) -> None:
        if self.building is None:
            return
        building_id = self.building.id
        try:
            buildings = await self._cache.refresh()
        except StoreError as exc:
            logger.warning("Building refresh after action failed: %s", exc)
        else:
            self.reconcile(buildings)
        if not self._showing(building_id):
            return
        try:
            reports = await self._cache.get_reports(building_id)
        except StoreError as exc:
            # The report list is not required for rendering; keep what we have
            logger.warning("Report refresh for building %s failed: %s", building_id, exc)
            return
        if self._showing(building_id):
            self.reports = reports

    # -- derived view state ----------------------------------------------------

    @property
    def stats(self) -> SeverityStats:
        counts = {"high": 0, "medium": 0, "low": 0}
        for report in self.reports:
            counts[report.severity.value] += 1
        return SeverityStats(**counts)

    @property
    def visible_reports(self) -> List[Report]:
        if self.tab == TAB_ACTIVE:
            return [r for r in self.reports if r.is_open]
        return [r for r in self.reports if not r.is_open]

    @property
    def can_relocate(self) -> bool:
        return self.building is not None and len(self.reports) == 0

    @property
    def can_submit(self) -> bool:
        return (
            self.draft is not None
            and not self.submitting
            and bool(self.draft.text.strip())
        )

    @staticmethod
    def can_confirm_problem(report: Report) -> bool:
        return report.is_open and report.problem_confirmations < MAX_CONFIRMATIONS

    @staticmethod
    def can_confirm_resolved(report: Report) -> bool:
        return report.is_open and report.resolved_confirmations < MAX_CONFIRMATIONS

    def set_tab(self, tab: str) -> None:
        if tab not in (TAB_ACTIVE, TAB_HISTORY):
            raise ValueError(f"unknown tab {tab!r}")
        self.tab = tab

    def select_severity(self, severity: str) -> None:
        if self._on_severity_filter is not None:
            self._on_severity_filter(severity)

    # -- draft editing -----------------------------------------------------------

    def update_draft(self, **fields) -> None:
        if self.draft is None:
            return
        self.draft = ReportDraft.model_validate({**self.draft.model_dump(), **fields})

    def attach_image(self, attachment: Optional[Attachment]) -> bool:
        if self.draft is None:
            return False
        if attachment is None:
            self.update_draft(image=None)
            return True
        try:
            checked = validate_attachment(attachment)
        except ValidationFailure as exc:
            self.submit_error = str(exc)
            return False
        self.submit_error = ""
        self.update_draft(image=checked)
        return True

    # -- actions -------------------------------------------------------------

    async def submit(self) -> Optional[Report]:
        if self.building is None or self.draft is None:
            return None
        self.submit_error = ""
        self.notice = ""
        if not self.draft.text.strip():
            self.submit_error = MSG_TEXT_REQUIRED
            return None

        building_id = self.building.id
        draft = self.draft.model_copy(update={"building_id": building_id, "text": self.draft.text.strip()})
        self.submitting = True
        try:
            created = await self._cache.submit_report(draft)
        except ServerRejection as exc:
            logger.warning("Report rejected for building %s: %s", building_id, exc)
            if self._showing(building_id):
                self.submit_error = exc.detail or MSG_SUBMIT_FAILED
                if exc.is_daily_limit:
                    self.notice = MSG_DAILY_LIMIT
            return None
        except StoreError as exc:
            logger.warning("Report submission failed for building %s: %s", building_id, exc)
            if self._showing(building_id):
                self.submit_error = MSG_SUBMIT_FAILED
            return None
        finally:
            self.submitting = False

        analytics.track_event(
            "create_report",
            building_id=building_id,
            severity=draft.severity.value,
            category=draft.category.value,
        )
        if self._showing(building_id):
            self.update_draft(text="", image=None)
        await self.refresh_selected()
        return created

    def _find_report(self, report_id: int) -> Optional[Report]:
        for report in self.reports:
            if report.id == report_id:
                return report
        return None

    def _bump(self, report_id: int, field: str) -> None:
        bumped = []
        for report in self.reports:
            if report.id == report_id:
                value = min(getattr(report, field) + 1, MAX_CONFIRMATIONS)
                report = report.model_copy(update={field: value})
            bumped.append(report)
        self.reports = bumped

    async def _vote(self, report_id: int, field: str, call) -> bool:
        report = self._find_report(report_id)
        if report is None or not report.is_open or getattr(report, field) >= MAX_CONFIRMATIONS:
            # Saturated or unknown: the control is inert
            return False
        building_id = report.building_id
        self.vote_error = ""
        try:
            await call(report_id)
        except StoreError as exc:
            logger.warning("Vote %s on report %s failed: %s", field, report_id, exc)
            if self._showing(building_id):
                self.vote_error = getattr(exc, "detail", None) or MSG_VOTE_FAILED
            return False
        if self._showing(building_id):
            self._bump(report_id, field)
        await self.refresh_selected()
        return True

    async def confirm_problem(self, report_id: int) -> bool:
        return await self._vote(report_id, "problem_confirmations", self._cache.confirm_problem)

    async def confirm_resolved(self, report_id: int) -> bool:
        return await self._vote(report_id, "resolved_confirmations", self._cache.confirm_resolved)

    async def confirm_positive(self) -> bool:
        if self.building is None or self.positive_locked:
            return False
        building_id = self.building.id
        self.notice = ""
        try:
            await self._cache.confirm_positive(building_id)
        except ServerRejection as exc:
            logger.info("Positive confirmation rejected for %s: %s", building_id, exc)
            if self._showing(building_id):
                self.notice = MSG_POSITIVE_LIMIT
                self.positive_locked = True
            return False
        except StoreError as exc:
            logger.warning("Positive confirmation failed for %s: %s", building_id, exc)
            if self._showing(building_id):
                self.vote_error = MSG_VOTE_FAILED
            return False
        if self._showing(building_id):
            self.positive_locked = True
        await self.refresh_selected()
        return True
