"""Reconciliation store: the durable, keyed history of every permit seen.

On disk the store is NDJSON, one `PermitRecord` per line, rewritten in full
on every save. Alongside it live two per-day artifacts:

* snapshots/<YYYY-MM-DD>.geojson: exactly what was scraped for that day
  (geocoded rows as features, every key in a top-level `keys` member);
* changes/<YYYY-MM-DD>.json: the delta of that day's scrape against the
  previous snapshot of the same day.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from arborist_permits.dates import canonical_us_date, format_iso_date, same_utc_day
from arborist_permits.files import StoreError, read_json, write_json_atomic, write_text_atomic
from arborist_permits.geojson import to_featurecollection
from arborist_permits.logs import get_logger
from arborist_permits.permits.models import PermitRecord, RawRecord


logger = get_logger("store")


def permit_key(record: Optional[str], address: Optional[str], date: Optional[str]) -> str:
    if record:
        return record
    return f"{address or ''}|{date or ''}"


def to_permit_record(raw: RawRecord, key: Optional[str] = None) -> PermitRecord:
    date = canonical_us_date(raw.date)
    return PermitRecord(
        key=key or permit_key(raw.record, raw.address, date),
        date=date,
        record=raw.record,
        address=raw.address,
        status=raw.status,
        description=raw.description,
        owner=raw.owner,
        tree_dbh=raw.tree_dbh,
        tree_location=raw.tree_location,
        reason_removal=raw.reason_removal,
        tree_description=raw.tree_description,
        tree_number=raw.tree_number,
        species=raw.species,
        coords=None,
    )


def prepare_incoming(raw_records: Iterable[RawRecord], target_day: datetime) -> List[PermitRecord]:
    """Target-day rows as keyed PermitRecords, one per key.

    Rows with neither a record number nor an address are dropped. A repeated
    record number keeps its first position and its last content. Rows without
    a record number that share `address|date` but differ in content get `#2`,
    `#3`, ... suffixes so neither is lost.
    """

    by_key: Dict[str, PermitRecord] = {}
    dropped = 0
    for raw in raw_records:
        if not raw.record and not raw.address:
            dropped += 1
            continue
        if not same_utc_day(raw.day, target_day):
            continue
        rec = to_permit_record(raw)
        if raw.record:
            by_key[rec.key] = rec
            continue
        base, n, key = rec.key, 1, rec.key
        while key in by_key and by_key[key].comparable() != rec.comparable():
            n += 1
            key = f"{base}#{n}"
        if key != base:
            logger.warning("address/date collision on %r, stored as %r", base, key)
        by_key[key] = rec.model_copy(update={"key": key})
    if dropped:
        logger.info("dropped %d rows without record number or address", dropped)
    return list(by_key.values())


@dataclass
class MergeResult:
    records: Dict[str, PermitRecord]
    new: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    inserted: List[str] = field(default_factory=list)


def merge(
    existing: Dict[str, PermitRecord],
    incoming: Iterable[PermitRecord],
    prior_keys: Iterable[str] = (),
) -> MergeResult:
    """Fold one day's records into the store.

    `new` and `missing` compare against the prior snapshot of the same day
    (`prior_keys`); `updated` lists keys whose stored fields changed.
    Existing rows are never removed.
    """

    records = dict(existing)
    result = MergeResult(records=records)
    current: List[str] = []
    for rec in incoming:
        current.append(rec.key)
        prev = records.get(rec.key)
        if prev is None:
            records[rec.key] = rec
            result.inserted.append(rec.key)
            continue
        if rec.coords is None and prev.coords is not None:
            rec = rec.model_copy(update={"coords": list(prev.coords)})
        if rec.comparable() != prev.comparable():
            records[rec.key] = rec
            result.updated.append(rec.key)

    prior = list(dict.fromkeys(prior_keys))
    prior_set = set(prior)
    current_set = set(current)
    result.new = [k for k in current if k not in prior_set]
    result.missing = [k for k in prior if k not in current_set]
    return result


class ReconciliationStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Dict[str, PermitRecord]:
        if not self.path.exists():
            return {}
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"cannot read {self.path}: {exc}") from exc

        out: Dict[str, PermitRecord] = {}
        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                if not isinstance(data, dict):
                    raise ValueError("line is not a JSON object")
                if not data.get("key"):
                    data["key"] = permit_key(data.get("record"), data.get("address"), data.get("date"))
                rec = PermitRecord.model_validate(data)
            except (ValueError, ValidationError) as exc:
                raise StoreError(f"{self.path}:{lineno}: malformed store line: {exc}") from exc
            out[rec.key] = rec
        return out

    def save(self, records: Dict[str, PermitRecord]) -> None:
        lines = [json.dumps(rec.to_dict(), ensure_ascii=False) for rec in records.values()]
        write_text_atomic(self.path, "".join(line + "\n" for line in lines))
        logger.info("wrote %d records to %s", len(lines), self.path)


class SnapshotStore:
    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, day: datetime) -> Path:
        return self.directory / f"{format_iso_date(day)}.geojson"

    def read_keys(self, day: datetime) -> List[str]:
        data = read_json(self.path_for(day), default=None)
        if not isinstance(data, dict):
            return []
        keys = data.get("keys")
        if isinstance(keys, list):
            return [str(k) for k in keys if k]
        out = []
        for feature in data.get("features") or []:
            props = (feature or {}).get("properties") or {}
            out.append(
                props.get("key") or permit_key(props.get("record"), props.get("address"), props.get("date"))
            )
        return out

    def write(self, day: datetime, records: List[PermitRecord]) -> Path:
        path = self.path_for(day)
        payload = to_featurecollection(
            records, date=format_iso_date(day), keys=[r.key for r in records]
        )
        write_json_atomic(path, payload)
        return path


@dataclass
class DeltaReport:
    date: str
    new: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "new": list(self.new),
            "updated": list(self.updated),
            "missing": list(self.missing),
        }


class DeltaStore:
    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, day: datetime) -> Path:
        return self.directory / f"{format_iso_date(day)}.json"

    def write(self, day: datetime, report: DeltaReport) -> Path:
        path = self.path_for(day)
        write_json_atomic(path, report.to_dict())
        return path

    def read(self, day: datetime) -> Optional[DeltaReport]:
        data = read_json(self.path_for(day), default=None)
        if not isinstance(data, dict):
            return None
        return DeltaReport(
            date=str(data.get("date") or format_iso_date(day)),
            new=list(data.get("new") or []),
            updated=list(data.get("updated") or []),
            missing=list(data.get("missing") or []),
        )
