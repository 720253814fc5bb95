"""plotlayers CLI: layer lookups and the municipality website sweep."""

import argparse
import asyncio
import json
import sys

from plotlayers.config import settings
from plotlayers.core.errors import ValidationError
from plotlayers.core.types import Coordinate, EnrichmentRequest, response_to_dict
from plotlayers.observability.logging import correlation_scope, setup_logging
from plotlayers.observability.tracing import configure_tracking


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="plotlayers", description="Land-use layer lookups")
    sub = parser.add_subparsers(dest="command", required=True)

    lookup = sub.add_parser("lookup", help="Query every layer at a point")
    lookup.add_argument("lat", type=float)
    lookup.add_argument("lng", type=float)
    lookup.add_argument("--country", default=None, help="PT or ES; reverse geocoded when omitted")
    lookup.add_argument("--area", type=float, default=None, help="Area in square meters around the point")

    websites = sub.add_parser("websites", help="Discover official municipality websites")
    websites.add_argument("--limit", type=int, default=settings.batch_limit)
    websites.add_argument("--concurrency", type=int, default=settings.batch_concurrency)
    websites.add_argument("--force", action="store_true", help="Re-check municipalities that already have one")
    websites.add_argument("--ids", type=int, nargs="*", default=None, help="Only these municipality ids")

    return parser


async def _lookup(args: argparse.Namespace) -> int:
    from plotlayers.pipeline.enrich import enrich

    request = EnrichmentRequest(
        coordinate=Coordinate(lat=args.lat, lng=args.lng),
        country=args.country,
        area_m2=args.area,
    )
    try:
        response = await enrich(request)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(json.dumps(response_to_dict(response), indent=2, ensure_ascii=False, default=str))
    return 0


async def _websites(args: argparse.Namespace) -> int:
    from plotlayers.pipeline.websites import enrich_municipality_websites

    report = await enrich_municipality_websites(
        limit=args.limit,
        concurrency=args.concurrency,
        municipality_ids=args.ids,
        force_refresh=args.force,
    )
    print(f"Succeeded: {report.succeeded}  Failed: {report.failed}")
    return 0 if report.failed == 0 else 1


def main(argv: list[str] | None = None) -> None:
    """Entry point for the plotlayers console script."""
    args = build_parser().parse_args(argv)
    setup_logging(json_format=False, level=settings.log_level)
    configure_tracking(settings.mlflow_tracking_uri, settings.mlflow_experiment_name)

    handler = _lookup if args.command == "lookup" else _websites
    with correlation_scope(prefix=args.command):
        code = asyncio.run(handler(args))
    sys.exit(code)
