#!/usr/bin/env python3
"""
Sentinel-1 flood map + population exposure using Google Earth Engine + Xee.
Outputs GeoTIFF composites, the flood class raster and exposure.json.

Examples (PowerShell):
  python scripts/map_floods.py --project-id my-ee-project
  python scripts/map_floods.py --country India --state Bihar --exposure
  python scripts/map_floods.py --lat 25.6 --lon 85.1 --buffer-km 15 --exposure --exact
  python scripts/map_floods.py --baseline-start 2020-05-01 --baseline-span 60 \
      --event-start 2020-07-20 --event-span 8 --zvv -3 --zvh -3 --vote-percent 75
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from flood_mapper.aoi import make_aoi
from flood_mapper.composite import get_optical_composite
from flood_mapper.config import (
    DEFAULT_BASELINE_SPAN,
    DEFAULT_BASELINE_START,
    DEFAULT_COUNTRY,
    DEFAULT_EVENT_SPAN,
    DEFAULT_EVENT_START,
    DEFAULT_STATE,
    FLOOD_CLASS_LABELS,
    MAX_PIXELS,
    FloodThresholds,
    PipelineParams,
    TimeWindow,
)
from flood_mapper.earthengine import EarthEngineSubstrate, ee_init
from flood_mapper.errors import FloodMapperError
from flood_mapper.export import export_composite, export_flood_raster, export_stem
from flood_mapper.log import configure_logging
from flood_mapper.scenes import scene_availability
from flood_mapper.session import FloodMapper
from flood_mapper.substrate import ReductionMode


LOGGER = logging.getLogger("flood_mapper.cli")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sentinel-1 flood map + population exposure.")
    parser.add_argument("--project-id", required=True)

    # AOI: admin area (default) or point/rectangle
    parser.add_argument("--country", default=DEFAULT_COUNTRY)
    parser.add_argument("--state", default=DEFAULT_STATE)
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--lon", type=float, default=None)
    parser.add_argument("--buffer-km", type=float, default=20.0)
    parser.add_argument("--aoi-width-km", type=float, default=0.0)
    parser.add_argument("--aoi-height-km", type=float, default=0.0)

    # Windows
    parser.add_argument("--baseline-start", default=DEFAULT_BASELINE_START.isoformat())
    parser.add_argument("--baseline-span", type=int, default=DEFAULT_BASELINE_SPAN)
    parser.add_argument("--event-start", default=DEFAULT_EVENT_START.isoformat())
    parser.add_argument("--event-span", type=int, default=DEFAULT_EVENT_SPAN)

    # Thresholds
    parser.add_argument("--zvv", type=float, default=-3.0)
    parser.add_argument("--zvh", type=float, default=-3.0)
    parser.add_argument("--vote-percent", type=float, default=75.0)
    parser.add_argument("--elevation-max", type=float, default=None)
    parser.add_argument("--slope-max", type=float, default=None)

    # Exposure
    parser.add_argument("--exposure", action="store_true")
    parser.add_argument("--exact", action="store_true", help="Fail instead of approximating.")
    parser.add_argument("--max-pixels", type=float, default=MAX_PIXELS)

    # Output
    parser.add_argument("--out-dir", default="output/flood_map")
    parser.add_argument("--no-composites", action="store_true")
    parser.add_argument("--optical", action="store_true", help="Also export Sentinel-2 composites.")
    parser.add_argument("--log", action="store_true")
    parser.add_argument("--log-file", default="")
    parser.add_argument("--log-append", action="store_true")
    parser.add_argument("--ee-retries", type=int, default=5)
    parser.add_argument("--ee-retry-wait", type=float, default=5.0)
    return parser.parse_args()


def _parse_date(value: str, label: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise SystemExit(f"Invalid {label} date '{value}' (expected YYYY-MM-DD).") from exc


def build_params(args: argparse.Namespace, substrate: EarthEngineSubstrate) -> PipelineParams:
    if args.lat is not None and args.lon is not None:
        aoi = make_aoi(args.lat, args.lon, args.buffer_km, args.aoi_width_km, args.aoi_height_km)
    else:
        aoi = substrate.admin_area(args.country, args.state)
    windows = (
        TimeWindow(_parse_date(args.baseline_start, "baseline"), args.baseline_span),
        TimeWindow(_parse_date(args.event_start, "event"), args.event_span),
    )
    thresholds = FloodThresholds(
        zvv_threshold=args.zvv,
        zvh_threshold=args.zvh,
        confidence_vote_percent=args.vote_percent,
        elevation_threshold=args.elevation_max,
        slope_threshold=args.slope_max,
    )
    return PipelineParams(aoi=aoi, windows=windows, thresholds=thresholds)


def main() -> int:
    args = parse_args()
    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    configure_logging(out_dir, args.log_file, args.log, args.log_append)
    ee_init(args.project_id, retries=args.ee_retries, wait=args.ee_retry_wait)

    substrate = EarthEngineSubstrate()
    params = build_params(args, substrate)
    stem = export_stem(params)
    LOGGER.info(
        "Run config: aoi=%s baseline=%s+%d event=%s+%d thresholds=(%s,%s,%s) out_dir=%s",
        params.aoi.bounds_label(),
        params.baseline.start,
        params.baseline.span_days,
        params.event.start,
        params.event.span_days,
        params.thresholds.zvv_threshold,
        params.thresholds.zvh_threshold,
        params.thresholds.confidence_vote_percent,
        out_dir,
    )

    mode = ReductionMode.EXACT if args.exact else ReductionMode.BEST_EFFORT
    with FloodMapper(substrate, params=params, max_pixels=args.max_pixels, reduction_mode=mode) as mapper:
        graph = mapper.recompute().result()

        for index, collection in enumerate(graph.collections):
            table = scene_availability(collection)
            if not table.empty:
                LOGGER.info("Window %d scene availability:\n%s", index, table.to_string())

        if not args.no_composites:
            for index, composite in enumerate(graph.composites):
                if not composite.available:
                    LOGGER.warning("Window %d has no scenes; composite skipped.", index)
                    continue
                path = export_composite(composite, out_dir / f"{stem}_composite_{index}.tif")
                LOGGER.info("Saved: %s", path)

        if args.optical:
            for index, window in enumerate(params.windows):
                optical = get_optical_composite(substrate, window, params.aoi, window_index=index)
                if not optical.available:
                    LOGGER.warning("Window %d has no cloud-free Sentinel-2 scenes.", index)
                    continue
                path = export_composite(optical.compute(), out_dir / f"{stem}_s2_{index}.tif")
                LOGGER.info("Saved: %s", path)

        try:
            flood = mapper.get_flood_raster()
        except FloodMapperError as exc:
            LOGGER.error("Flood map unavailable: %s", exc)
            return 1
        path = export_flood_raster(flood, out_dir / f"{stem}.tif")
        LOGGER.info("Saved: %s", path)
        for code, count in flood.class_counts().items():
            LOGGER.info("  %-26s %d px", FLOOD_CLASS_LABELS[code], count)

        if args.exposure:
            result = mapper.compute_exposure(flood).result()
            for name, count in result.counts.items():
                flag = " (approximate)" if name in result.approximate else ""
                LOGGER.info("Exposed population, %s: %d%s", name, count, flag)
            for name in sorted(result.unavailable):
                LOGGER.warning("Exposed population, %s: unavailable", name)
            exposure_path = out_dir / f"{stem}_exposure.json"
            exposure_path.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
            LOGGER.info("Saved: %s", exposure_path)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
