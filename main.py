#!/usr/bin/env python3
"""
Rail PK Locator - Main Entry Point
==================================
Loads the configuration and the static network/facility data, then answers
one query:

- a GPS fix -> situation report (PK projection + nearest facility)
- a line and a PK -> coordinate

Usage:
  python main.py --lon 2.3522 --lat 48.8566 [--category emergency]
  python main.py --line LIGNE_PARIS_LYON --pk PK12+300
"""

import argparse
import asyncio
import json
import sys

import structlog

from src.core.config import DEFAULT_CONFIG_PATH, load_config, setup_logging
from src.core.errors import RailReferenceError
from src.core.geo import GeoPoint
from src.engine.pk import parse_pk
from src.engine.report import build_engine


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rail PK locator")
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH, help='Path to config YAML')
    parser.add_argument('--lon', type=float, help='Longitude of the GPS fix (WGS84)')
    parser.add_argument('--lat', type=float, help='Latitude of the GPS fix (WGS84)')
    parser.add_argument('--category', help='Facility category (default from config)')
    parser.add_argument('--line', help='Line id for a PK -> coordinate lookup')
    parser.add_argument('--pk', help='PK as "PK12+300" or km as a number')
    args = parser.parse_args(argv)

    has_fix = args.lon is not None and args.lat is not None
    has_pk = args.line is not None and args.pk is not None
    if has_fix == has_pk:
        parser.error("give either --lon/--lat or --line/--pk")
    return args


async def run(args: argparse.Namespace) -> dict:
    settings = load_config(args.config)
    setup_logging(settings.log_level)
    engine = build_engine(settings)

    if args.line is not None:
        pk = parse_pk(args.pk) if args.pk.upper().startswith('PK') else float(args.pk)
        point = engine.interpolator.coordinate_at_pk(args.line, pk)
        return {'lineId': args.line, 'pk': pk, 'longitude': point.longitude, 'latitude': point.latitude}

    report = await engine.reporter.build_report(
        GeoPoint(longitude=args.lon, latitude=args.lat),
        category=args.category
    )
    return report.to_records()


def main(argv=None) -> int:
    args = parse_args(argv)
    logger = structlog.get_logger(__name__)

    try:
        result = asyncio.run(run(args))
    except RailReferenceError as e:
        logger.error("query_failed", error=str(e))
        print(f"❌ {e}", file=sys.stderr)
        return 2

    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
