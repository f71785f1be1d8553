import argparse
import json
from pathlib import Path

from .config import PipelineConfig
from .dates import parse_run_day
from .geocode import GeocodeCache
from .logs import configure_logging
from .pipeline import PipelineContext, reproject, run_pipeline
from .store import DeltaStore


def _add_window_args(parser):
    parser.add_argument(
        "--run-day",
        default=None,
        help="Reference day as YYYY-MM-DD (UTC); defaults to today",
    )
    parser.add_argument(
        "--map-days",
        type=int,
        default=None,
        help="Number of days shown on the live map (MAP_DAYS)",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Directory for the store, snapshots, changes and map files",
    )
    parser.add_argument(
        "--geocode-cache",
        default=None,
        help="Path of the geocode cache JSON file",
    )


def build_parser():
    parser = argparse.ArgumentParser(
        prog="arborist-permits",
        description="Arborist permit ingestion pipeline",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (DEBUG, INFO, etc.)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit log records as JSON lines on stderr",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Scrape yesterday's permits and publish")
    _add_window_args(run)
    run.add_argument(
        "--source",
        default=None,
        help="Extractor to use (accela, fixture)",
    )
    run.add_argument(
        "--fixture",
        default=None,
        help="JSON file of raw records; implies --source fixture",
    )
    run.add_argument(
        "--live",
        action="store_true",
        help="Allow live requests to the permit portal (same as LIVE=1)",
    )

    proj = sub.add_parser("project", help="Rebuild the live map from the store")
    _add_window_args(proj)

    cache = sub.add_parser("cache", help="Inspect or edit the geocode cache")
    cache.add_argument(
        "--geocode-cache",
        default=None,
        help="Path of the geocode cache JSON file",
    )
    cache_sub = cache.add_subparsers(dest="cache_command", required=True)
    cache_sub.add_parser("stats", help="Count cached entries")
    forget = cache_sub.add_parser("forget", help="Drop one address so it is retried")
    forget.add_argument("address")
    cache_sub.add_parser("clear-negative", help="Drop every failed lookup")

    delta = sub.add_parser("delta", help="Print the stored delta report for a day")
    delta.add_argument("date", help="Day as YYYY-MM-DD")
    delta.add_argument(
        "--data-dir",
        default=None,
        help="Directory for the store, snapshots, changes and map files",
    )
    return parser


def _resolve_config(parser, args) -> PipelineConfig:
    config = PipelineConfig.from_env()
    if getattr(args, "data_dir", None):
        config = config.with_data_dir(args.data_dir)

    map_days = getattr(args, "map_days", None)
    if map_days is not None and map_days < 1:
        parser.error("--map-days must be at least 1")
    run_day = getattr(args, "run_day", None)
    if run_day is not None and parse_run_day(run_day) is None:
        parser.error("--run-day must be YYYY-MM-DD")

    source = getattr(args, "source", None)
    fixture = getattr(args, "fixture", None)
    if fixture and not source:
        source = "fixture"
    cache_path = getattr(args, "geocode_cache", None)

    return config.with_overrides(
        run_day=run_day,
        map_days=map_days,
        geocode_cache_path=Path(cache_path) if cache_path else None,
        source=source.lower() if source else None,
        fixture_path=fixture,
        live=True if getattr(args, "live", False) else None,
    )


def _emit(payload):
    print(json.dumps(payload, sort_keys=True))


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, json_lines=args.log_json)
    config = _resolve_config(parser, args)

    if args.command == "run":
        result = run_pipeline(PipelineContext.from_config(config))
        _emit(result.to_dict())
        return

    if args.command == "project":
        result = reproject(PipelineContext.from_config(config))
        _emit(result.to_dict())
        return

    if args.command == "cache":
        cache = GeocodeCache(config.geocode_cache_path)
        if args.cache_command == "stats":
            _emit({"path": str(cache.path), **cache.stats()})
        elif args.cache_command == "forget":
            _emit({"address": args.address, "removed": cache.forget(args.address)})
        else:
            _emit({"removed": cache.clear_negative()})
        return

    day = parse_run_day(args.date)
    if day is None:
        parser.error("date must be YYYY-MM-DD")
    report = DeltaStore(config.changes_dir).read(day)
    if report is None:
        raise RuntimeError(f"no delta report for {args.date}")
    _emit(report.to_dict())


def _safe_main():
    try:
        main()
    except SystemExit:
        raise
    except Exception as exc:
        print(json.dumps({"error": str(exc)}))
        raise SystemExit(1)


if __name__ == "__main__":
    _safe_main()
