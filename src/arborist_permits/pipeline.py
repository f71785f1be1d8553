"""Daily ingestion run: extract, reconcile, project, publish.

Everything a run touches hangs off a `PipelineContext`, so tests can build
one around a temp directory, a fixture extractor and a fake geocoder.

Nothing is written until extraction, merge and projection have all
succeeded; the writes themselves are atomic per file. The store is written
last, so a run that fails part way leaves it untouched.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional
from uuid import uuid4

from arborist_permits.config import PipelineConfig
from arborist_permits.dates import format_iso_date, parse_run_day, resolve_run_day, target_day_for
from arborist_permits.geocode import GeocodeCache, Geocoder, LookupFn
from arborist_permits.logs import get_logger
from arborist_permits.permits.base import PermitExtractor
from arborist_permits.permits.registry import get_extractor
from arborist_permits.projector import project, write_projection
from arborist_permits.run_result import RunResult
from arborist_permits.store import (
    DeltaReport,
    DeltaStore,
    ReconciliationStore,
    SnapshotStore,
    merge,
    prepare_incoming,
)


logger = get_logger("pipeline")


def build_extractor(config: PipelineConfig) -> PermitExtractor:
    if config.source == "fixture":
        kwargs = {"fixture_path": config.fixture_path} if config.fixture_path else {}
        return get_extractor("fixture", **kwargs)
    if config.source == "accela":
        return get_extractor(
            "accela", live=config.live, debug_log_records=config.debug_log_records
        )
    return get_extractor(config.source)


@dataclass
class PipelineContext:
    config: PipelineConfig
    geocoder: Geocoder
    store: ReconciliationStore
    snapshots: SnapshotStore
    deltas: DeltaStore
    run_day: datetime
    target_day: datetime
    extractor: Optional[PermitExtractor] = None
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        *,
        extractor: Optional[PermitExtractor] = None,
        lookup: Optional[LookupFn] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> "PipelineContext":
        warnings: List[str] = []
        if config.run_day and parse_run_day(config.run_day) is None:
            msg = f"ignoring invalid run day override {config.run_day!r}"
            logger.warning(msg)
            warnings.append(msg)
        run_day = resolve_run_day(config.run_day)

        geocoder = Geocoder(
            GeocodeCache(config.geocode_cache_path),
            lookup,
            city_suffix=config.city_suffix,
            timeout=config.geocode_timeout,
            delay_seconds=config.geocode_delay_ms / 1000.0,
            sleep_fn=sleep_fn,
        )
        return cls(
            config=config,
            geocoder=geocoder,
            store=ReconciliationStore(config.store_path),
            snapshots=SnapshotStore(config.snapshot_dir),
            deltas=DeltaStore(config.changes_dir),
            run_day=run_day,
            target_day=target_day_for(run_day),
            extractor=extractor,
            warnings=warnings,
        )

    def get_extractor(self) -> PermitExtractor:
        if self.extractor is None:
            self.extractor = build_extractor(self.config)
        return self.extractor


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _geocode_failure_warning(ctx: PipelineContext, before: int) -> None:
    failed = ctx.geocoder.failures - before
    if failed:
        ctx.warnings.append(f"{failed} geocode lookups failed")


def run_pipeline(ctx: PipelineContext) -> RunResult:
    run_id = uuid4().hex
    started_at = _now()
    target = ctx.target_day
    failures_before = ctx.geocoder.failures
    logger.info(
        "run %s: run day %s, target day %s",
        run_id,
        format_iso_date(ctx.run_day),
        format_iso_date(target),
        extra={"run_id": run_id},
    )

    raw = ctx.get_extractor().fetch_raw_records_for_date(target)
    incoming = prepare_incoming(raw, target)
    if raw and not incoming:
        msg = f"{len(raw)} rows extracted but none dated {format_iso_date(target)}"
        logger.warning(msg)
        ctx.warnings.append(msg)

    existing = ctx.store.load()
    for i, rec in enumerate(incoming):
        stored = existing.get(rec.key)
        if stored is not None and stored.coords is not None:
            continue
        coords = ctx.geocoder.resolve(rec.address)
        if coords is not None:
            incoming[i] = rec.model_copy(update={"coords": coords})

    prior_keys = ctx.snapshots.read_keys(target)
    merged = merge(existing, incoming, prior_keys)
    projection = project(merged.records, ctx.geocoder, ctx.run_day, ctx.config.map_days)
    report = DeltaReport(
        date=format_iso_date(target),
        new=merged.new,
        updated=merged.updated,
        missing=merged.missing,
    )
    _geocode_failure_warning(ctx, failures_before)

    delta_path = ctx.deltas.write(target, report)
    write_projection(projection, ctx.config.live_geojson_path, ctx.config.date_range_path)
    # Snapshot and store are what the next run diffs against, so they go
    # last: if an earlier write fails, a rerun recomputes the same delta.
    snapshot_path = ctx.snapshots.write(target, [merged.records[r.key] for r in incoming])
    ctx.store.save(merged.records)
    logger.info(
        "delta %s: %d new, %d updated, %d missing",
        report.date,
        len(report.new),
        len(report.updated),
        len(report.missing),
    )

    return RunResult(
        run_id=run_id,
        run_day=format_iso_date(ctx.run_day),
        target_day=format_iso_date(target),
        started_at=started_at,
        finished_at=_now(),
        raw_count=len(raw),
        incoming_count=len(incoming),
        inserted=merged.inserted,
        new=report.new,
        updated=report.updated,
        missing=report.missing,
        window_count=len(projection.records),
        features_count=len(projection.features["features"]),
        geocode_stats=ctx.geocoder.stats(),
        artifacts=[
            str(ctx.store.path),
            str(snapshot_path),
            str(delta_path),
            str(ctx.config.live_geojson_path),
            str(ctx.config.date_range_path),
        ],
        warnings=list(ctx.warnings),
    )


def reproject(ctx: PipelineContext) -> RunResult:
    """Rebuild the live map and date range from the store alone.

    Rows geocoded along the way are saved back to the store.
    """

    run_id = uuid4().hex
    started_at = _now()
    failures_before = ctx.geocoder.failures
    records = ctx.store.load()
    projection = project(records, ctx.geocoder, ctx.run_day, ctx.config.map_days)
    _geocode_failure_warning(ctx, failures_before)

    artifacts = []
    if projection.newly_geocoded:
        ctx.store.save(records)
        artifacts.append(str(ctx.store.path))
    write_projection(projection, ctx.config.live_geojson_path, ctx.config.date_range_path)
    artifacts += [str(ctx.config.live_geojson_path), str(ctx.config.date_range_path)]

    return RunResult(
        run_id=run_id,
        run_day=format_iso_date(ctx.run_day),
        target_day=None,
        started_at=started_at,
        finished_at=_now(),
        window_count=len(projection.records),
        features_count=len(projection.features["features"]),
        geocode_stats=ctx.geocoder.stats(),
        artifacts=artifacts,
        warnings=list(ctx.warnings),
    )
