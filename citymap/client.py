"""Async client for the city map remote store.

Every store operation the map surface needs is exposed as a coroutine that
returns typed models from `citymap.models`. Failures are translated into the
`citymap.errors` taxonomy at this boundary so callers never see raw `httpx`
exceptions.

Retry policy:
- GET calls are pure reads and are retried on network failures and on
  502/503/504 with exponential backoff plus jitter, up to `_MAX_RETRIES`
  attempts.
- Writes (create, patch, votes, help actions) are attempted exactly once.
- When `WARMUP_ENABLED` is set, the building-list read is preceded by a
  best-effort `GET /` probe, throttled through the session store.

Public API:
- get_buildings / create_building / update_building_position / confirm_positive
- get_reports_by_building / create_report / confirm_problem / confirm_resolved
- get_help / create_help / close_help / respond_to_help / get_help_responses
"""

from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
import random
import time
from typing import Any, List, Optional, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .config import get_settings
from .errors import NetworkFailure, ServerRejection, StoreError
from .models import (
    Building,
    BuildingCreate,
    HelpDraft,
    HelpRequest,
    HelpResponseCount,
    Report,
    ReportDraft,
)
from .observability import (
    store_read_retries_total,
    store_request_duration_seconds,
    store_requests_total,
)
from .session import get_session_store

logger = logging.getLogger(__name__)

_SETTINGS = get_settings()

API_BASE = _SETTINGS.api_base  # e.g. http://127.0.0.1:8000
WARMUP_ENABLED = _SETTINGS.warmup_enabled
WARMUP_INTERVAL = _SETTINGS.warmup_interval

# HTTP client defaults
_DEFAULT_TIMEOUT = httpx.Timeout(_SETTINGS.request_timeout, connect=_SETTINGS.connect_timeout)
_MAX_RETRIES = _SETTINGS.read_retries
_BACKOFF_FACTOR = _SETTINGS.backoff_factor
_RETRYABLE_STATUS = frozenset({502, 503, 504})

# Reuse a global client for connection pooling
_client: Optional[httpx.AsyncClient] = None

M = TypeVar("M", bound=BaseModel)


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=_DEFAULT_TIMEOUT)
    return _client


async def aclose() -> None:
    """Close the pooled client (safe to call when it was never opened)."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def _decode(resp: httpx.Response) -> Any:
    text = resp.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def _detail(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        detail = data.get("detail")
        if detail is None:
            return None
        return detail if isinstance(detail, str) else json.dumps(detail, ensure_ascii=False)
    if isinstance(data, str) and data.strip():
        return data.strip()
    return None


def _is_retryable(exc: StoreError) -> bool:
    # network errors are retryable; only gateway-class 5xx responses are
    if isinstance(exc, NetworkFailure):
        return True
    return isinstance(exc, ServerRejection) and exc.status_code in _RETRYABLE_STATUS


async def _send(method: str, path: str, endpoint: str, **kwargs) -> Any:
    """Perform a single attempt and translate the outcome."""
    url = API_BASE.rstrip("/") + path
    started = time.perf_counter()
    try:
        resp = await _get_client().request(method, url, **kwargs)
    except httpx.RequestError as exc:
        store_requests_total.labels(method=method, endpoint=endpoint, outcome="network").inc()
        raise NetworkFailure(f"{method} {path} failed: {exc!r}") from exc
    finally:
        store_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
            time.perf_counter() - started
        )

    data = _decode(resp)
    if not resp.is_success:
        store_requests_total.labels(
            method=method, endpoint=endpoint, outcome=str(resp.status_code)
        ).inc()
        raise ServerRejection(resp.status_code, _detail(data))

    store_requests_total.labels(method=method, endpoint=endpoint, outcome="ok").inc()
    return data


async def _attempt_request(method: str, path: str, *, endpoint: str, retry: bool = False, **kwargs) -> Any:
    attempts = max(1, _MAX_RETRIES) if retry else 1
    attempt = 1
    while True:
        try:
            return await _send(method, path, endpoint, **kwargs)
        except StoreError as exc:
            if attempt >= attempts or not _is_retryable(exc):
                logger.warning("Request %s %s failed (attempt %s/%s): %s", method, path, attempt, attempts, exc)
                raise
            backoff = _BACKOFF_FACTOR * (2 ** (attempt - 1))
            jitter = random.uniform(0, backoff * 0.1)
            sleep_time = backoff + jitter
            store_read_retries_total.labels(endpoint=endpoint).inc()
            logger.info("Retrying %s %s in %.2fs (attempt %s/%s)", method, path, sleep_time, attempt + 1, attempts)
            await asyncio.sleep(sleep_time)
            attempt += 1


def _parse_one(model: Type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise StoreError(f"Unexpected {model.__name__} payload: {exc}") from exc


def _parse_list(model: Type[M], data: Any) -> List[M]:
    if not isinstance(data, list):
        raise StoreError(f"Expected a list of {model.__name__}, got {type(data).__name__}")
    return [_parse_one(model, item) for item in data]


async def _warm_up() -> None:
    """Best-effort probe that wakes a cold-starting store, at most once per interval."""
    if not WARMUP_ENABLED:
        return
    store = get_session_store()
    now = time.time()
    last = store.last_warmup()
    if last is not None and now - last < WARMUP_INTERVAL:
        return
    store.mark_warmup(now)
    try:
        await _send("GET", "/", "warmup")
    except StoreError as exc:
        logger.info("Warm-up probe failed: %s", exc)


# =====================================================
# BUILDINGS
# =====================================================

async def get_buildings(bbox: Optional[Tuple[float, float, float, float]] = None) -> List[Building]:
    """List buildings, optionally limited to a (south, west, north, east) box."""
    await _warm_up()
    params = None
    if bbox is not None:
        south, west, north, east = bbox
        params = {"south": south, "west": west, "north": north, "east": east}
    data = await _attempt_request("GET", "/buildings/", endpoint="list_buildings", retry=True, params=params)
    return _parse_list(Building, data)


async def create_building(payload: BuildingCreate) -> Building:
    data = await _attempt_request("POST", "/buildings/", endpoint="create_building", json=payload.payload())
    return _parse_one(Building, data)


async def update_building_position(building_id: int, lat: float, lng: float) -> Building:
    data = await _attempt_request(
        "PATCH",
        f"/buildings/{building_id}/position",
        endpoint="relocate_building",
        json={"lat": float(lat), "lng": float(lng)},
    )
    return _parse_one(Building, data)


async def confirm_positive(building_id: int) -> Any:
    return await _attempt_request("POST", f"/buildings/{building_id}/confirm-positive", endpoint="confirm_positive")


# =====================================================
# REPORTS
# =====================================================

async def get_reports_by_building(building_id: int) -> List[Report]:
    data = await _attempt_request(
        "GET", f"/reports/buildings/{building_id}/reports", endpoint="list_reports", retry=True
    )
    return _parse_list(Report, data)


async def create_report(draft: ReportDraft) -> Report:
    files = None
    if draft.image is not None:
        mime = (
            draft.image.content_type
            or mimetypes.guess_type(draft.image.filename)[0]
            or "application/octet-stream"
        )
        files = {"image": (draft.image.filename, draft.image.content, mime)}
    data = await _attempt_request(
        "POST", "/reports/", endpoint="create_report", data=draft.form_fields(), files=files
    )
    return _parse_one(Report, data)


async def confirm_problem(report_id: int) -> Any:
    return await _attempt_request("POST", f"/reports/{report_id}/confirm-problem", endpoint="confirm_problem")


async def confirm_resolved(report_id: int) -> Any:
    return await _attempt_request("POST", f"/reports/{report_id}/confirm-resolved", endpoint="confirm_resolved")


# =====================================================
# NEIGHBOR HELP
# =====================================================

async def get_help(building_id: Optional[int] = None) -> List[HelpRequest]:
    params = {"building_id": building_id} if building_id is not None else None
    data = await _attempt_request("GET", "/help/", endpoint="list_help", retry=True, params=params)
    return _parse_list(HelpRequest, data)


async def create_help(draft: HelpDraft) -> HelpRequest:
    data = await _attempt_request("POST", "/help/", endpoint="create_help", json=draft.model_dump())
    return _parse_one(HelpRequest, data)


async def close_help(help_id: int) -> Any:
    return await _attempt_request("POST", f"/help/{help_id}/close", endpoint="close_help")


async def respond_to_help(help_id: int, user_hash: Optional[str] = None) -> Any:
    user_hash = user_hash or get_session_store().user_hash()
    return await _attempt_request(
        "POST", f"/help/{help_id}/respond", endpoint="respond_help", headers={"X-User-Hash": user_hash}
    )


async def get_help_responses(help_id: int) -> int:
    data = await _attempt_request("GET", f"/help/{help_id}/responses", endpoint="help_responses", retry=True)
    return _parse_one(HelpResponseCount, data).count
