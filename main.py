"""
Headless runner for the city map surface.

Loads the building set once, renders a frame and prints what a UI shell would
draw. Useful as a smoke check against a running store:

    python main.py --api-base http://127.0.0.1:8000 --focus 12
"""
import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

# Ensure .env is loaded before importing `citymap` so the client reads the
# configured store URL at import time.
load_dotenv()

from citymap import client
from citymap.cache import BuildingCache
from citymap.config import get_settings
from citymap.map_view import MapFrame, MapView
from citymap.observability import setup_logging
from citymap.session import get_session_store

logger = logging.getLogger("citymap.main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Load the city map once and summarise the rendered frame.")
    parser.add_argument("--api-base", help="Base URL of the remote store (overrides CITYMAP_API_BASE)")
    parser.add_argument("--focus", type=int, help="Building id to open, as a ?building= deep link would")
    parser.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs")
    return parser


def summarize(frame: MapFrame) -> str:
    lines = [
        f"center: {frame.center.lat:.5f}, {frame.center.lng:.5f} @ zoom {frame.zoom}",
        f"markers: {len(frame.markers)}",
        f"clusters: {len(frame.clusters)} ({sum(c.count for c in frame.clusters)} buildings)",
        f"heat points: {len(frame.heat_points)}",
    ]
    badged = [m for m in frame.markers if m.glyph.badged]
    if badged:
        lines.append(f"help badges: {len(badged)}")
    if frame.selected_id is not None:
        lines.append(f"selected: #{frame.selected_id}")
    return "\n".join(lines)


async def run(view: MapView, focus: int = None) -> MapFrame:
    await view.mount(focus)
    await view.wait_idle()
    return view.render()


async def _main(args) -> int:
    view = MapView(cache=BuildingCache(session=get_session_store()))
    try:
        frame = await run(view, args.focus)
    finally:
        view.close()
        await client.aclose()
    print(summarize(frame))
    if not view.cache.loaded:
        logger.error("Could not reach the store at %s", client.API_BASE)
        return 1
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level, json_logs=args.json_logs or settings.json_logs)
    if args.api_base:
        client.API_BASE = args.api_base.rstrip("/")
    logger.info("Using store at %s", client.API_BASE)
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
