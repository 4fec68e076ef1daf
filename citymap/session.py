"""
Session-scoped persistence for the map client.

Holds the state that should survive a reload of the map surface:

- the last successfully fetched building list (instant repaint on reload),
- the wall-clock time of the last warm-up probe,
- the anonymous user hash sent as ``X-User-Hash``.

Lifecycle: the store starts empty, is populated by the first successful
refresh and is only ever overwritten by newer successful refreshes. Nothing
invalidates it automatically.
"""

from __future__ import annotations

import json
import logging
import uuid
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config import get_settings
from .models import Building

logger = logging.getLogger(__name__)

_BUILDINGS_KEY = "buildings_snapshot"
_WARMUP_KEY = "warmup_at"
_USER_HASH_KEY = "user_hash"


class SessionStore:
    """Small JSON-file key/value store."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._data: Dict[str, Any] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _flush(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(self._data), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as exc:
            # Persistence is a convenience; the in-memory copy stays authoritative
            logger.warning("Could not persist session to %s: %s", self._path, exc)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    # -- building snapshot -------------------------------------------------

    def load_buildings(self) -> List[Building]:
        raw = self._data.get(_BUILDINGS_KEY) or []
        try:
            return [Building.model_validate(item) for item in raw]
        except ValidationError as exc:
            logger.warning("Discarding stale building snapshot: %s", exc)
            return []

    def save_buildings(self, buildings: List[Building]) -> None:
        self.set(_BUILDINGS_KEY, [b.model_dump(mode="json") for b in buildings])

    # -- warm-up throttle --------------------------------------------------

    def last_warmup(self) -> Optional[float]:
        value = self._data.get(_WARMUP_KEY)
        return float(value) if value is not None else None

    def mark_warmup(self, at: float) -> None:
        self.set(_WARMUP_KEY, at)

    # -- anonymous identity ------------------------------------------------

    def user_hash(self) -> str:
        value = self._data.get(_USER_HASH_KEY)
        if not value:
            value = str(uuid.uuid4())
            self.set(_USER_HASH_KEY, value)
        return value


@lru_cache()
def get_session_store() -> SessionStore:
    """Return the process-wide session store."""
    return SessionStore(get_settings().session_path)


__all__ = ["SessionStore", "get_session_store"]
