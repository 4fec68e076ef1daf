"""Observability module for logging and metrics."""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional

from prometheus_client import Counter, Histogram

# Prometheus metrics
store_requests_total = Counter(
    'citymap_store_requests_total',
    'Total number of calls to the remote store',
    ['method', 'endpoint', 'outcome']
)

store_request_duration_seconds = Histogram(
    'citymap_store_request_duration_seconds',
    'Duration of remote store calls in seconds',
    ['method', 'endpoint']
)

store_read_retries_total = Counter(
    'citymap_store_read_retries_total',
    'Number of retried read attempts',
    ['endpoint']
)

cache_refreshes_total = Counter(
    'citymap_cache_refreshes_total',
    'Building cache refreshes by outcome',
    ['outcome']
)

ui_events_total = Counter(
    'citymap_ui_events_total',
    'Analytics events emitted by the map surface',
    ['event']
)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        # Add exception info if present
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(level: str = "INFO", json_logs: bool = False, stream: Optional[object] = None) -> None:
    """Configure root logging, optionally as structured JSON."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(stream or sys.stdout)
        ],
        force=True,
    )

    if json_logs:
        for handler in logging.getLogger().handlers:
            handler.setFormatter(JSONFormatter())

    # httpx logs every request at INFO; keep it quieter than our own loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logging.getLogger("citymap").info(
        "Logging configured (level=%s, json=%s)", level.upper(), json_logs
    )
