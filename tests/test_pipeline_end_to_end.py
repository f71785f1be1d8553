import json

import pytest

from arborist_permits.config import PipelineConfig
from arborist_permits.files import StoreError
from arborist_permits.permits.base import PermitExtractor
from arborist_permits.pipeline import PipelineContext, reproject, run_pipeline

ADDRESS = "100 Main St"
COORDS = [-84.1, 33.7]


def _config(tmp_path, fixture_path=None, run_day="2024-03-02"):
    return (
        PipelineConfig.from_env()
        .with_data_dir(tmp_path / "docs" / "data")
        .with_overrides(
            geocode_cache_path=tmp_path / "data" / "geocode-cache.json",
            run_day=run_day,
            source="fixture",
            fixture_path=str(fixture_path) if fixture_path else None,
        )
    )


def _load(path):
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def lookup(fake_lookup):
    return fake_lookup({f"{ADDRESS}, Atlanta, GA": COORDS, "5 Elm St, Atlanta, GA": [-84.2, 33.8]})


def _run(config, lookup, no_sleep):
    return run_pipeline(PipelineContext.from_config(config, lookup=lookup, sleep_fn=no_sleep))


def test_single_record_run_publishes_every_artifact(tmp_path, write_json, lookup, no_sleep):
    fixture = write_json(
        tmp_path / "rows.json",
        [{"record": "BLD-1", "address": ADDRESS, "date": "03/01/2024"}],
    )
    config = _config(tmp_path, fixture)
    result = _run(config, lookup, no_sleep)

    assert result.target_day == "2024-03-01"
    assert result.new == ["BLD-1"]
    assert result.updated == []
    assert result.missing == []
    assert result.features_count == 1

    stored = [json.loads(line) for line in config.store_path.read_text(encoding="utf-8").splitlines()]
    assert [row["key"] for row in stored] == ["BLD-1"]
    assert stored[0]["coords"] == COORDS

    snapshot = _load(config.snapshot_dir / "2024-03-01.geojson")
    assert len(snapshot["features"]) == 1
    assert snapshot["features"][0]["geometry"]["coordinates"] == COORDS

    assert _load(config.changes_dir / "2024-03-01.json") == {
        "date": "2024-03-01",
        "new": ["BLD-1"],
        "updated": [],
        "missing": [],
    }
    live = _load(config.live_geojson_path)
    assert [f["properties"]["record"] for f in live["features"]] == ["BLD-1"]
    assert _load(config.date_range_path) == {"start": "03/01/2024", "end": "03/01/2024"}
    assert _load(config.geocode_cache_path) == {ADDRESS: COORDS}


def test_rerun_is_idempotent(tmp_path, write_json, lookup, no_sleep):
    fixture = write_json(
        tmp_path / "rows.json",
        [
            {"record": "BLD-1", "address": ADDRESS, "date": "03/01/2024"},
            {"record": "BLD-2", "address": "12345", "date": "03/01/2024"},
        ],
    )
    config = _config(tmp_path, fixture)
    _run(config, lookup, no_sleep)
    store_before = config.store_path.read_text(encoding="utf-8")

    second = _run(config, lookup, no_sleep)

    assert second.new == []
    assert second.updated == []
    assert second.missing == []
    assert config.store_path.read_text(encoding="utf-8") == store_before
    assert lookup.queries == [f"{ADDRESS}, Atlanta, GA"]
    # the ungeocodable row is in the snapshot keys even without a feature
    assert _load(config.snapshot_dir / "2024-03-01.geojson")["keys"] == ["BLD-1", "BLD-2"]


def test_delta_against_previous_snapshot(tmp_path, write_json, lookup, no_sleep):
    fixture = tmp_path / "rows.json"
    config = _config(tmp_path, fixture)

    write_json(
        fixture,
        [
            {"record": "A", "address": ADDRESS, "date": "03/01/2024"},
            {"record": "B", "address": "5 Elm St", "date": "03/01/2024"},
        ],
    )
    _run(config, lookup, no_sleep)

    write_json(
        fixture,
        [
            {"record": "B", "address": "5 Elm St", "date": "03/01/2024", "status": "Approved"},
            {"record": "C", "address": "5 Elm St", "date": "03/01/2024"},
        ],
    )
    result = _run(config, lookup, no_sleep)

    assert result.new == ["C"]
    assert result.updated == ["B"]
    assert result.missing == ["A"]
    assert set(json.loads(line)["key"] for line in config.store_path.read_text().splitlines()) == {
        "A",
        "B",
        "C",
    }


def test_rows_for_other_days_are_ignored(tmp_path, write_json, lookup, no_sleep):
    fixture = write_json(
        tmp_path / "rows.json",
        [{"record": "BLD-0", "address": ADDRESS, "date": "02/29/2024"}],
    )
    config = _config(tmp_path, fixture)
    result = _run(config, lookup, no_sleep)

    assert result.incoming_count == 0
    assert result.raw_count == 1
    assert any("none dated" in w for w in result.warnings)
    assert _load(config.date_range_path) == {"start": None, "end": None}


def test_geocode_failure_is_a_warning_not_an_error(tmp_path, write_json, fake_lookup, no_sleep):
    fixture = write_json(
        tmp_path / "rows.json",
        [{"record": "BLD-1", "address": ADDRESS, "date": "03/01/2024"}],
    )
    config = _config(tmp_path, fixture)
    result = _run(config, fake_lookup(fail={f"{ADDRESS}, Atlanta, GA"}), no_sleep)

    assert result.new == ["BLD-1"]
    assert result.features_count == 0
    assert result.window_count == 1
    assert "1 geocode lookups failed" in result.warnings
    assert _load(config.date_range_path) == {"start": "03/01/2024", "end": "03/01/2024"}


class _Broken(PermitExtractor):
    name = "broken"

    def fetch_raw_records_for_date(self, day):
        raise RuntimeError("portal unavailable")


def test_failed_extraction_leaves_artifacts_untouched(tmp_path, write_json, lookup, no_sleep):
    fixture = write_json(
        tmp_path / "rows.json",
        [{"record": "BLD-1", "address": ADDRESS, "date": "03/01/2024"}],
    )
    config = _config(tmp_path, fixture)
    _run(config, lookup, no_sleep)
    before = {p: p.read_bytes() for p in (config.data_dir).rglob("*") if p.is_file()}

    ctx = PipelineContext.from_config(
        config.with_overrides(run_day="2024-03-03"), extractor=_Broken(), lookup=lookup, sleep_fn=no_sleep
    )
    with pytest.raises(RuntimeError, match="portal unavailable"):
        run_pipeline(ctx)

    after = {p: p.read_bytes() for p in (config.data_dir).rglob("*") if p.is_file()}
    assert after == before


def test_malformed_store_aborts_before_writing(tmp_path, write_json, lookup, no_sleep):
    fixture = write_json(
        tmp_path / "rows.json",
        [{"record": "BLD-1", "address": ADDRESS, "date": "03/01/2024"}],
    )
    config = _config(tmp_path, fixture)
    config.store_path.parent.mkdir(parents=True)
    config.store_path.write_text("{broken\n", encoding="utf-8")

    with pytest.raises(StoreError):
        _run(config, lookup, no_sleep)

    assert config.store_path.read_text(encoding="utf-8") == "{broken\n"
    assert not config.live_geojson_path.exists()
    assert not config.snapshot_dir.exists()


def test_invalid_run_day_override_falls_back_with_warning(tmp_path, lookup, no_sleep):
    ctx = PipelineContext.from_config(_config(tmp_path, run_day="yesterday"), lookup=lookup, sleep_fn=no_sleep)

    assert ctx.warnings
    assert ctx.target_day < ctx.run_day


def test_reproject_rebuilds_live_map_only(tmp_path, write_json, lookup, no_sleep):
    fixture = write_json(
        tmp_path / "rows.json",
        [{"record": "BLD-1", "address": ADDRESS, "date": "03/01/2024"}],
    )
    config = _config(tmp_path, fixture)
    _run(config, lookup, no_sleep)

    later = config.with_overrides(run_day="2024-03-20")
    result = reproject(PipelineContext.from_config(later, lookup=lookup, sleep_fn=no_sleep))

    assert result.target_day is None
    assert result.window_count == 0
    assert _load(config.live_geojson_path)["features"] == []
    assert _load(config.date_range_path) == {"start": None, "end": None}
    assert not (config.snapshot_dir / "2024-03-19.geojson").exists()


def test_missing_fixture_file_keeps_previous_snapshot(tmp_path, write_json, lookup, no_sleep):
    fixture = write_json(
        tmp_path / "rows.json",
        [{"record": "BLD-1", "address": ADDRESS, "date": "03/01/2024"}],
    )
    config = _config(tmp_path, fixture)
    _run(config, lookup, no_sleep)
    snapshot_path = config.snapshot_dir / "2024-03-01.geojson"
    snapshot_before = snapshot_path.read_bytes()

    typo = config.with_overrides(fixture_path=str(tmp_path / "typo.json"))
    with pytest.raises(StoreError, match="fixture file not found"):
        _run(typo, lookup, no_sleep)

    assert snapshot_path.read_bytes() == snapshot_before
    assert _load(config.changes_dir / "2024-03-01.json")["new"] == ["BLD-1"]
    assert _load(config.changes_dir / "2024-03-01.json")["missing"] == []


def test_failed_snapshot_write_leaves_store_for_rerun(tmp_path, write_json, lookup, no_sleep, monkeypatch):
    fixture = tmp_path / "rows.json"
    config = _config(tmp_path, fixture)
    write_json(fixture, [{"record": "BLD-1", "address": ADDRESS, "date": "03/01/2024"}])
    _run(config, lookup, no_sleep)
    store_before = config.store_path.read_bytes()
    snapshot_before = (config.snapshot_dir / "2024-03-01.geojson").read_bytes()

    write_json(
        fixture,
        [
            {"record": "BLD-1", "address": ADDRESS, "date": "03/01/2024"},
            {"record": "BLD-2", "address": "5 Elm St", "date": "03/01/2024"},
        ],
    )
    ctx = PipelineContext.from_config(config, lookup=lookup, sleep_fn=no_sleep)

    def _disk_full(day, records):
        raise StoreError("disk full")

    monkeypatch.setattr(ctx.snapshots, "write", _disk_full)
    with pytest.raises(StoreError, match="disk full"):
        run_pipeline(ctx)

    assert config.store_path.read_bytes() == store_before
    assert (config.snapshot_dir / "2024-03-01.geojson").read_bytes() == snapshot_before

    result = _run(config, lookup, no_sleep)

    assert result.new == ["BLD-2"]
    assert result.inserted == ["BLD-2"]
    assert _load(config.changes_dir / "2024-03-01.json")["new"] == ["BLD-2"]
