"""Analytics hook for map-surface events.

The telemetry sink itself lives outside this package; a UI shell installs one
with `set_sink()`. Without a sink, events are only logged and counted.
"""

import logging
from typing import Any, Callable, Dict, Optional

from .observability import ui_events_total

logger = logging.getLogger(__name__)

Sink = Callable[[str, Dict[str, Any]], None]

_sink: Optional[Sink] = None


def set_sink(sink: Optional[Sink]) -> None:
    global _sink
    _sink = sink


def track_event(name: str, **params: Any) -> None:
    ui_events_total.labels(event=name).inc()
    logger.debug("event %s %s", name, params)
    if _sink is None:
        return
    try:
        _sink(name, params)
    except Exception:
        logger.warning("Analytics sink failed for event %s", name, exc_info=True)
