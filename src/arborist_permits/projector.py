from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from arborist_permits.dates import date_range, format_us_date, in_window, utc_midnight
from arborist_permits.files import write_json_atomic
from arborist_permits.geocode import Geocoder
from arborist_permits.geojson import to_featurecollection
from arborist_permits.logs import get_logger
from arborist_permits.permits.models import PermitRecord


logger = get_logger("projector")


@dataclass
class WindowProjection:
    features: dict
    records: List[PermitRecord] = field(default_factory=list)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    newly_geocoded: List[str] = field(default_factory=list)

    def date_range_payload(self) -> dict:
        return {
            "start": format_us_date(self.start) if self.start else None,
            "end": format_us_date(self.end) if self.end else None,
        }


def project(
    records: Dict[str, PermitRecord],
    geocoder: Optional[Geocoder],
    reference_day: datetime,
    window_days: int,
) -> WindowProjection:
    """Build the live map from the last `window_days` days of the store.

    Window rows without coords are geocoded once (cache first) and the
    result is written back into `records`. Rows that still have no coords
    stay out of the features but count toward the published date range.
    """

    reference = utc_midnight(reference_day)
    window: List[PermitRecord] = []
    newly_geocoded: List[str] = []
    for key, rec in list(records.items()):
        if not in_window(rec.day, window_days, reference):
            continue
        if rec.coords is None and geocoder is not None and rec.address:
            coords = geocoder.resolve(rec.address)
            if coords is not None:
                rec = rec.model_copy(update={"coords": coords})
                records[key] = rec
                newly_geocoded.append(key)
        window.append(rec)

    # Stable sort: same-day rows keep store order.
    window.sort(key=lambda r: r.day, reverse=True)
    start, end = date_range(r.day for r in window)
    features = to_featurecollection(window)
    logger.info(
        "window %d days ending %s: %d rows, %d features",
        window_days,
        format_us_date(reference),
        len(window),
        len(features["features"]),
    )
    return WindowProjection(
        features=features,
        records=window,
        start=start,
        end=end,
        newly_geocoded=newly_geocoded,
    )


def write_projection(projection: WindowProjection, geojson_path: Path, range_path: Path) -> None:
    write_json_atomic(Path(geojson_path), projection.features)
    write_json_atomic(Path(range_path), projection.date_range_payload())
