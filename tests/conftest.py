import asyncio
import itertools
import os
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from citymap import analytics
from citymap.cache import BuildingCache
from citymap.config import get_settings
from citymap.errors import ServerRejection
from citymap.models import Building, BuildingCreate, HelpDraft, HelpRequest, Report, ReportDraft
from citymap.session import SessionStore, get_session_store

# Geocoder stand-in for buildings created by address only
GEOCODED_POSITION = (53.91, 27.55)


class FakeStore:
    """In-memory remote store with the same status rules as the real backend.

    Status is scored from open reports: high adds 3, medium adds 1.
    Score >= 45 is red, >= 25 orange, >= 10 yellow, otherwise green.
    Vote counters clamp at 3; three resolve votes close a report.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._buildings: Dict[int, dict] = {}
        self._reports: Dict[int, dict] = {}
        self._help: Dict[int, dict] = {}
        self._responses: Dict[int, set] = {}
        self._positive_votes: set = set()
        self._reported_today: set = set()
        self._failures: Dict[str, List[Exception]] = {}
        self._holds: Dict[str, List[asyncio.Event]] = {}
        self.daily_limit = False
        self.calls: List[str] = []

    # -- test helpers ----------------------------------------------------------

    def fail(self, operation: str, exc: Exception, times: int = 1) -> None:
        self._failures.setdefault(operation, []).extend([exc] * times)

    def called(self, operation: str) -> int:
        return self.calls.count(operation)

    def hold(self, operation: str) -> asyncio.Event:
        """Park the next call of an operation until the returned event is set."""
        gate = asyncio.Event()
        self._holds.setdefault(operation, []).append(gate)
        return gate

    async def entered(self, operation: str, times: int = 1) -> None:
        while self.called(operation) < times:
            await asyncio.sleep(0)

    async def _enter(self, operation: str) -> None:
        held = self._holds.get(operation)
        gate = held.pop(0) if held else None
        self.calls.append(operation)
        if gate is not None:
            await gate.wait()
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def add_building(self, lat: float, lng: float, address: Optional[str] = None, **reports: int) -> Building:
        """Seed a building, optionally with open reports, e.g. ``high=1, medium=2``."""
        building_id = next(self._ids)
        self._buildings[building_id] = {"id": building_id, "lat": lat, "lng": lng, "address": address, "positive_count": 0}
        for severity, count in reports.items():
            for _ in range(count):
                self.add_report(building_id, severity)
        return self._building(building_id)

    def add_report(self, building_id: int, severity: str, **fields) -> Report:
        report_id = next(self._ids)
        report = {
            "id": report_id,
            "building_id": building_id,
            "category": "yard",
            "severity": severity,
            "periodicity": "often",
            "text": f"report {report_id}",
            "status": "open",
            "problem_confirmations": 0,
            "resolved_confirmations": 0,
            "created_at": datetime.now(timezone.utc).replace(tzinfo=None),
        }
        report.update(fields)
        self._reports[report_id] = report
        return Report.model_validate(report)

    def add_help(self, building_id: int, title: str = "Need a hand", age: timedelta = timedelta(0), **fields) -> HelpRequest:
        help_id = next(self._ids)
        item = {
            "id": help_id,
            "building_id": building_id,
            "category": "repair",
            "title": title,
            "description": "Details",
            "contact": "@neighbour",
            "status": "open",
            "created_at": (datetime.now(timezone.utc) - age).replace(tzinfo=None),
        }
        item.update(fields)
        self._help[help_id] = item
        self._responses[help_id] = set()
        return HelpRequest.model_validate(item)

    # -- derived state ---------------------------------------------------------

    def _open_reports(self, building_id: int) -> List[dict]:
        return [r for r in self._reports.values() if r["building_id"] == building_id and r["status"] == "open"]

    def _building(self, building_id: int) -> Building:
        row = self._buildings[building_id]
        reports = self._open_reports(building_id)
        counts = {s: sum(1 for r in reports if r["severity"] == s) for s in ("high", "medium", "low")}
        score = counts["high"] * 3 + counts["medium"]
        if score >= 45:
            status = "red"
        elif score >= 25:
            status = "orange"
        elif score >= 10:
            status = "yellow"
        else:
            status = "green"
        help_count = sum(
            1 for h in self._help.values() if h["building_id"] == building_id and h["status"] == "open"
        )
        return Building(
            status=status,
            high_count=counts["high"],
            medium_count=counts["medium"],
            low_count=counts["low"],
            help_count=help_count,
            **row,
        )

    def _require_building(self, building_id: int) -> None:
        if building_id not in self._buildings:
            raise ServerRejection(404, "Building not found")

    # -- store API (same signatures as citymap.client) --------------------------

    async def get_buildings(self, bbox=None) -> List[Building]:
        await self._enter("get_buildings")
        return [self._building(i) for i in sorted(self._buildings)]

    async def create_building(self, payload: BuildingCreate) -> Building:
        await self._enter("create_building")
        lat, lng = payload.lat, payload.lng
        if lat is None or lng is None:
            lat, lng = GEOCODED_POSITION
        return self.add_building(lat, lng, payload.address)

    async def update_building_position(self, building_id: int, lat: float, lng: float) -> Building:
        await self._enter("update_building_position")
        self._require_building(building_id)
        self._buildings[building_id].update(lat=lat, lng=lng)
        return self._building(building_id)

    async def confirm_positive(self, building_id: int):
        await self._enter("confirm_positive")
        self._require_building(building_id)
        if building_id in self._positive_votes:
            raise ServerRejection(409, "Already confirmed within 24 hours")
        self._positive_votes.add(building_id)
        self._buildings[building_id]["positive_count"] += 1
        return {"ok": True}

    async def get_reports_by_building(self, building_id: int) -> List[Report]:
        await self._enter("get_reports_by_building")
        self._require_building(building_id)
        rows = [r for r in self._reports.values() if r["building_id"] == building_id]
        return [Report.model_validate(r) for r in rows]

    async def create_report(self, draft: ReportDraft) -> Report:
        await self._enter("create_report")
        self._require_building(draft.building_id)
        if self.daily_limit and draft.building_id in self._reported_today:
            raise ServerRejection(400, "Only one report per building every 24 hours")
        self._reported_today.add(draft.building_id)
        return self.add_report(
            draft.building_id,
            draft.severity.value,
            category=draft.category.value,
            periodicity=draft.periodicity.value,
            text=draft.text,
            image_path=f"/uploads/{draft.image.filename}" if draft.image else None,
        )

    def _vote(self, report_id: int, field: str) -> dict:
        report = self._reports.get(report_id)
        if report is None:
            raise ServerRejection(404, "Report not found")
        report[field] = min(report[field] + 1, 3)
        return report

    async def confirm_problem(self, report_id: int):
        await self._enter("confirm_problem")
        self._vote(report_id, "problem_confirmations")
        return {"ok": True}

    async def confirm_resolved(self, report_id: int):
        await self._enter("confirm_resolved")
        report = self._vote(report_id, "resolved_confirmations")
        if report["resolved_confirmations"] >= 3:
            report["status"] = "resolved"
        return {"ok": True}

    async def get_help(self, building_id: Optional[int] = None) -> List[HelpRequest]:
        await self._enter("get_help")
        rows = [h for h in self._help.values() if building_id is None or h["building_id"] == building_id]
        return [HelpRequest.model_validate(h) for h in rows]

    async def create_help(self, draft: HelpDraft) -> HelpRequest:
        await self._enter("create_help")
        self._require_building(draft.building_id)
        return self.add_help(
            draft.building_id,
            title=draft.title,
            description=draft.description,
            contact=draft.contact,
            category=draft.category,
        )

    async def close_help(self, help_id: int):
        await self._enter("close_help")
        self._help[help_id]["status"] = "closed"
        return {"ok": True}

    async def respond_to_help(self, help_id: int, user_hash: Optional[str] = None):
        await self._enter("respond_to_help")
        self._responses[help_id].add(user_hash)
        return {"ok": True}

    async def get_help_responses(self, help_id: int) -> int:
        await self._enter("get_help_responses")
        return len(self._responses.get(help_id, ()))


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests independent of the developer's environment and session file."""
    for key in list(os.environ):
        if key.startswith("CITYMAP_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CITYMAP_SESSION_PATH", str(tmp_path / "default-session.json"))
    get_settings.cache_clear()
    get_session_store.cache_clear()
    analytics.set_sink(None)
    yield
    get_settings.cache_clear()
    get_session_store.cache_clear()
    analytics.set_sink(None)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def session_store(tmp_path):
    return SessionStore(tmp_path / "session.json")


@pytest.fixture
def cache(store, session_store):
    return BuildingCache(api=store, session=session_store)


@pytest.fixture
def settings():
    return replace(get_settings(), debounce_seconds=0.05)


@pytest.fixture
def events():
    recorded = []
    analytics.set_sink(lambda name, params: recorded.append((name, params)))
    return recorded
