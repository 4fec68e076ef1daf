import json

import httpx
import pytest
import respx
from httpx import Response

from citymap import client
from citymap.errors import NetworkFailure, ServerRejection, StoreError
from citymap.models import Attachment, BuildingCreate, HelpDraft, ReportDraft

BASE = "http://test-store"


# Patch the module-level settings because the client reads them at import time
@pytest.fixture(autouse=True)
def mock_env(monkeypatch, session_store):
    monkeypatch.setattr("citymap.client.API_BASE", BASE)
    monkeypatch.setattr("citymap.client._client", None)
    monkeypatch.setattr("citymap.client._BACKOFF_FACTOR", 0)
    monkeypatch.setattr("citymap.client._MAX_RETRIES", 3)
    monkeypatch.setattr("citymap.client.WARMUP_ENABLED", False)
    monkeypatch.setattr("citymap.client.get_session_store", lambda: session_store)


def _building(**overrides):
    data = {"id": 1, "lat": 53.9, "lng": 27.5667, "address": None, "status": "green",
            "high_count": 0, "medium_count": 0, "low_count": 0, "positive_count": 0, "help_count": 0}
    data.update(overrides)
    return data


@pytest.mark.asyncio
async def test_get_buildings_defaults_missing_status_and_counters():
    async with respx.mock(base_url=BASE) as respx_mock:
        respx_mock.get("/buildings/").mock(
            return_value=Response(200, json=[_building(status=None, high_count=None, help_count=None)])
        )

        buildings = await client.get_buildings()

    assert len(buildings) == 1
    assert buildings[0].status.value == "green"
    assert buildings[0].high_count == 0
    assert buildings[0].help_count == 0
    assert buildings[0].title == "Building #1"


@pytest.mark.asyncio
async def test_get_buildings_sends_bbox_params():
    async with respx.mock(base_url=BASE) as respx_mock:
        route = respx_mock.get("/buildings/").mock(return_value=Response(200, json=[]))

        await client.get_buildings(bbox=(53.8, 27.4, 54.0, 27.7))

        params = route.calls.last.request.url.params
        assert params["south"] == "53.8"
        assert params["east"] == "27.7"


@pytest.mark.asyncio
async def test_get_buildings_retries_gateway_errors():
    async with respx.mock(base_url=BASE) as respx_mock:
        route = respx_mock.get("/buildings/").mock(
            side_effect=[Response(503), Response(502), Response(200, json=[_building()])]
        )

        buildings = await client.get_buildings()

        assert route.call_count == 3
        assert [b.id for b in buildings] == [1]


@pytest.mark.asyncio
async def test_get_buildings_gives_up_after_retry_budget():
    async with respx.mock(base_url=BASE) as respx_mock:
        route = respx_mock.get("/buildings/").mock(side_effect=httpx.ConnectError("connection refused"))

        with pytest.raises(NetworkFailure):
            await client.get_buildings()

        assert route.call_count == 3


@pytest.mark.asyncio
async def test_client_errors_are_not_retried_for_reads():
    async with respx.mock(base_url=BASE) as respx_mock:
        route = respx_mock.get("/reports/buildings/99/reports").mock(
            return_value=Response(404, json={"detail": "Building not found"})
        )

        with pytest.raises(ServerRejection) as excinfo:
            await client.get_reports_by_building(99)

        assert route.call_count == 1
        assert excinfo.value.is_not_found
        assert excinfo.value.detail == "Building not found"


@pytest.mark.asyncio
async def test_create_building_is_never_retried():
    async with respx.mock(base_url=BASE) as respx_mock:
        route = respx_mock.post("/buildings/").mock(return_value=Response(503))

        with pytest.raises(ServerRejection) as excinfo:
            await client.create_building(BuildingCreate(lat=53.9, lng=27.5667))

        assert route.call_count == 1
        assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_create_building_by_address_omits_coordinates():
    async with respx.mock(base_url=BASE) as respx_mock:
        route = respx_mock.post("/buildings/").mock(
            return_value=Response(200, json=_building(id=7, address="Lenina 1"))
        )

        created = await client.create_building(BuildingCreate(address="Lenina 1"))

        body = json.loads(route.calls.last.request.content)
        assert body == {"address": "Lenina 1", "status": "green"}
        assert created.id == 7


@pytest.mark.asyncio
async def test_update_position_patches_coordinates():
    async with respx.mock(base_url=BASE) as respx_mock:
        route = respx_mock.patch("/buildings/5/position").mock(
            return_value=Response(200, json=_building(id=5, lat=53.95, lng=27.6))
        )

        moved = await client.update_building_position(5, 53.95, 27.6)

        assert json.loads(route.calls.last.request.content) == {"lat": 53.95, "lng": 27.6}
        assert moved.lat == pytest.approx(53.95)


@pytest.mark.asyncio
async def test_create_report_sends_multipart_with_image():
    draft = ReportDraft(
        building_id=3,
        severity="high",
        text="Broken entrance light",
        image=Attachment(filename="light.png", content=b"\x89PNG fake"),
    )
    async with respx.mock(base_url=BASE) as respx_mock:
        route = respx_mock.post("/reports/").mock(
            return_value=Response(200, json={
                "id": 10, "building_id": 3, "category": "yard", "severity": "high",
                "periodicity": "often", "text": "Broken entrance light", "status": "open",
                "problem_confirmations": 0, "resolved_confirmations": 0,
                "created_at": "2026-10-19T08:00:00",
            })
        )

        report = await client.create_report(draft)

        request = route.calls.last.request
        body = request.read()
        assert request.headers["content-type"].startswith("multipart/form-data")
        assert b'name="building_id"' in body
        assert b'name="image"; filename="light.png"' in body
        assert b"image/png" in body
        assert report.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_daily_limit_rejection_is_recognised():
    draft = ReportDraft(building_id=3, text="Again")
    async with respx.mock(base_url=BASE) as respx_mock:
        respx_mock.post("/reports/").mock(
            return_value=Response(400, json={"detail": "Only one report per building every 24 hours"})
        )

        with pytest.raises(ServerRejection) as excinfo:
            await client.create_report(draft)

    assert excinfo.value.is_daily_limit
    assert "24 hours" in str(excinfo.value)


@pytest.mark.asyncio
async def test_plain_text_error_body_becomes_detail():
    async with respx.mock(base_url=BASE) as respx_mock:
        respx_mock.post("/reports/4/confirm-problem").mock(return_value=Response(500, text="Internal Server Error"))

        with pytest.raises(ServerRejection) as excinfo:
            await client.confirm_problem(4)

    assert excinfo.value.is_server_error
    assert excinfo.value.detail == "Internal Server Error"


@pytest.mark.asyncio
async def test_unexpected_payload_raises_store_error():
    async with respx.mock(base_url=BASE) as respx_mock:
        respx_mock.get("/buildings/").mock(return_value=Response(200, json={"items": []}))

        with pytest.raises(StoreError):
            await client.get_buildings()


@pytest.mark.asyncio
async def test_respond_to_help_sends_session_user_hash(session_store):
    async with respx.mock(base_url=BASE) as respx_mock:
        route = respx_mock.post("/help/8/respond").mock(return_value=Response(200, json={"ok": True}))

        await client.respond_to_help(8)

        assert route.calls.last.request.headers["X-User-Hash"] == session_store.user_hash()


@pytest.mark.asyncio
async def test_help_endpoints():
    async with respx.mock(base_url=BASE) as respx_mock:
        listing = respx_mock.get("/help/").mock(return_value=Response(200, json=[]))
        create = respx_mock.post("/help/").mock(return_value=Response(200, json={
            "id": 2, "building_id": 1, "category": "repair", "title": "Shelf",
            "description": "Need a drill", "contact": "@me", "status": "open",
            "created_at": "2026-10-19T08:00:00",
        }))
        respx_mock.get("/help/2/responses").mock(return_value=Response(200, json={"count": 4}))

        await client.get_help(building_id=1)
        created = await client.create_help(
            HelpDraft(building_id=1, title="Shelf", description="Need a drill", contact="@me")
        )
        count = await client.get_help_responses(2)

        assert listing.calls.last.request.url.params["building_id"] == "1"
        assert json.loads(create.calls.last.request.content)["title"] == "Shelf"
        assert created.id == 2
        assert count == 4


@pytest.mark.asyncio
async def test_warm_up_probe_runs_at_most_once_per_interval(monkeypatch):
    monkeypatch.setattr("citymap.client.WARMUP_ENABLED", True)
    monkeypatch.setattr("citymap.client.WARMUP_INTERVAL", 60)
    async with respx.mock(base_url=BASE) as respx_mock:
        probe = respx_mock.get("/").mock(return_value=Response(200, json={"status": "ok"}))
        respx_mock.get("/buildings/").mock(return_value=Response(200, json=[]))

        await client.get_buildings()
        await client.get_buildings()

        assert probe.call_count == 1


@pytest.mark.asyncio
async def test_failed_warm_up_does_not_block_the_read(monkeypatch):
    monkeypatch.setattr("citymap.client.WARMUP_ENABLED", True)
    async with respx.mock(base_url=BASE) as respx_mock:
        respx_mock.get("/").mock(side_effect=httpx.ConnectTimeout("cold start"))
        respx_mock.get("/buildings/").mock(return_value=Response(200, json=[_building()]))

        buildings = await client.get_buildings()

    assert len(buildings) == 1
