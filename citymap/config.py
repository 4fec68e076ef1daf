"""
Centralized settings for the city map client.

Provides a lightweight wrapper around environment variables (with `.env`
support for local development) so the rest of the package can import a single
`get_settings()` helper when configuration is needed. This keeps the network
budget, debounce window and rendering defaults in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional
import os

from dotenv import dotenv_values


@dataclass(frozen=True)
class Settings:
    """Immutable view of client configuration."""

    # General
    environment: str
    api_base: str

    # Remote store calls
    request_timeout: float
    connect_timeout: float
    read_retries: int
    backoff_factor: float
    warmup_enabled: bool
    warmup_interval: float

    # Viewport tracking
    debounce_seconds: float
    bbox_precision: int

    # Rendering
    cluster_radius_px: int
    heat_radius: int
    heat_blur: int
    heat_max: float
    default_center: tuple[float, float]
    default_zoom: int

    # Session persistence
    session_path: Path

    # Observability
    log_level: str
    json_logs: bool


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_lookup(key: str, env: dict[str, str], default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key) or env.get(key) or default


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process."""

    env_path = Path(__file__).resolve().parents[1] / ".env"
    env_file = dotenv_values(str(env_path)) if env_path.exists() else {}

    session_default = str(Path.home() / ".citymap" / "session.json")

    return Settings(
        environment=_env_lookup("CITYMAP_ENV", env_file, "development"),
        api_base=_env_lookup("CITYMAP_API_BASE", env_file, "http://127.0.0.1:8000").rstrip("/"),
        request_timeout=float(_env_lookup("CITYMAP_REQUEST_TIMEOUT", env_file, "8.0")),
        connect_timeout=float(_env_lookup("CITYMAP_CONNECT_TIMEOUT", env_file, "5.0")),
        read_retries=int(_env_lookup("CITYMAP_READ_RETRIES", env_file, "3")),
        backoff_factor=float(_env_lookup("CITYMAP_BACKOFF_FACTOR", env_file, "0.5")),
        warmup_enabled=_as_bool(_env_lookup("CITYMAP_WARMUP", env_file, "false")),
        warmup_interval=float(_env_lookup("CITYMAP_WARMUP_INTERVAL", env_file, "60")),
        debounce_seconds=float(_env_lookup("CITYMAP_DEBOUNCE_SECONDS", env_file, "0.3")),
        bbox_precision=int(_env_lookup("CITYMAP_BBOX_PRECISION", env_file, "4")),
        cluster_radius_px=int(_env_lookup("CITYMAP_CLUSTER_RADIUS", env_file, "30")),
        heat_radius=int(_env_lookup("CITYMAP_HEAT_RADIUS", env_file, "35")),
        heat_blur=int(_env_lookup("CITYMAP_HEAT_BLUR", env_file, "30")),
        heat_max=float(_env_lookup("CITYMAP_HEAT_MAX", env_file, "10")),
        default_center=(
            float(_env_lookup("CITYMAP_DEFAULT_LAT", env_file, "53.9")),
            float(_env_lookup("CITYMAP_DEFAULT_LNG", env_file, "27.5667")),
        ),
        default_zoom=int(_env_lookup("CITYMAP_DEFAULT_ZOOM", env_file, "12")),
        session_path=Path(_env_lookup("CITYMAP_SESSION_PATH", env_file, session_default)),
        log_level=_env_lookup("CITYMAP_LOG_LEVEL", env_file, "INFO").upper(),
        json_logs=_as_bool(_env_lookup("CITYMAP_JSON_LOGS", env_file, "false")),
    )


__all__ = ["Settings", "get_settings"]
