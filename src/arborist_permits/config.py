from __future__ import annotations

import os
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = str(raw).strip().lower()
    if v in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    return raw or default


@dataclass(frozen=True)
class PipelineConfig:
    """Run configuration for the ingestion pipeline.

    Every field can be set from the environment; the CLI layers its flags on
    top with `with_overrides()`. Defaults reproduce the published layout the
    map viewer expects (`docs/data/...`).
    """

    data_dir: Path
    store_path: Path
    snapshot_dir: Path
    changes_dir: Path
    live_geojson_path: Path
    date_range_path: Path
    geocode_cache_path: Path

    city_suffix: str = ", Atlanta, GA"
    geocode_timeout: float = 10.0
    geocode_delay_ms: int = 150
    map_days: int = 7
    run_day: Optional[str] = None  # YYYY-MM-DD override, UTC
    source: str = "accela"
    fixture_path: Optional[str] = None
    live: bool = False
    debug_log_records: bool = False

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        data_dir = Path(_env_str("PERMITS_DATA_DIR", "docs/data"))
        return cls(
            data_dir=data_dir,
            store_path=Path(_env_str("PERMITS_STORE_PATH", str(data_dir / "all.ndjson"))),
            snapshot_dir=Path(_env_str("PERMITS_SNAPSHOT_DIR", str(data_dir / "snapshots"))),
            changes_dir=Path(_env_str("PERMITS_CHANGES_DIR", str(data_dir / "changes"))),
            live_geojson_path=Path(
                _env_str("PERMITS_LIVE_GEOJSON", str(data_dir / "atl_arborist_ddh.geojson"))
            ),
            date_range_path=Path(
                _env_str("PERMITS_DATE_RANGE_PATH", str(data_dir / "date-range.json"))
            ),
            geocode_cache_path=Path(_env_str("GEOCODE_CACHE", "data/geocode-cache.json")),
            # The suffix may legitimately be empty, so no `or default` here.
            city_suffix=os.getenv("GEOCODE_CITY_SUFFIX", ", Atlanta, GA"),
            geocode_timeout=float(_env_int("GEOCODE_TIMEOUT_SECONDS", 10, minimum=1)),
            geocode_delay_ms=_env_int("GEOCODE_DELAY_MS", 150),
            map_days=_env_int("MAP_DAYS", 7, minimum=1),
            run_day=_env_str("SCRAPE_RUN_DAY_UTC"),
            source=(_env_str("PERMITS_SOURCE", "accela") or "accela").lower(),
            fixture_path=_env_str("PERMITS_FIXTURE_PATH"),
            live=_env_bool("LIVE", False),
            debug_log_records=_env_bool("DEBUG_LOG_RECORDS", False),
        )

    def with_data_dir(self, data_dir: str | Path) -> "PipelineConfig":
        """Re-root every published artifact under `data_dir`."""

        root = Path(data_dir)
        return replace(
            self,
            data_dir=root,
            store_path=root / "all.ndjson",
            snapshot_dir=root / "snapshots",
            changes_dir=root / "changes",
            live_geojson_path=root / "atl_arborist_ddh.geojson",
            date_range_path=root / "date-range.json",
        )

    def with_overrides(self, **overrides) -> "PipelineConfig":
        values = {k: v for k, v in overrides.items() if v is not None}
        if not values:
            return self
        return replace(self, **values)


@lru_cache(maxsize=1)
def get_config() -> PipelineConfig:
    return PipelineConfig.from_env()


def reset_config_cache() -> None:
    """Test helper to force env re-read."""

    get_config.cache_clear()
