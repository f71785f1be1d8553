from __future__ import annotations

from pathlib import Path


def _reset_config(monkeypatch, **env):
    from arborist_permits.config import get_config, reset_config_cache

    for k, v in env.items():
        if v is None:
            monkeypatch.delenv(k, raising=False)
        else:
            monkeypatch.setenv(k, str(v))
    reset_config_cache()
    return get_config()


def test_defaults_match_published_layout(monkeypatch):
    config = _reset_config(monkeypatch)

    assert config.store_path == Path("docs/data/all.ndjson")
    assert config.live_geojson_path == Path("docs/data/atl_arborist_ddh.geojson")
    assert config.date_range_path == Path("docs/data/date-range.json")
    assert config.snapshot_dir == Path("docs/data/snapshots")
    assert config.changes_dir == Path("docs/data/changes")
    assert config.geocode_cache_path == Path("data/geocode-cache.json")
    assert config.map_days == 7
    assert config.source == "accela"
    assert config.live is False


def test_env_overrides(monkeypatch, tmp_path):
    config = _reset_config(
        monkeypatch,
        PERMITS_DATA_DIR=str(tmp_path),
        MAP_DAYS="14",
        SCRAPE_RUN_DAY_UTC="2024-03-02",
        PERMITS_SOURCE="Fixture",
        LIVE="1",
        GEOCODE_CITY_SUFFIX="",
    )

    assert config.store_path == tmp_path / "all.ndjson"
    assert config.map_days == 14
    assert config.run_day == "2024-03-02"
    assert config.source == "fixture"
    assert config.live is True
    assert config.city_suffix == ""


def test_bad_numbers_fall_back(monkeypatch):
    config = _reset_config(monkeypatch, MAP_DAYS="seven", GEOCODE_DELAY_MS="-5")

    assert config.map_days == 7
    assert config.geocode_delay_ms == 0


def test_config_is_cached_until_reset(monkeypatch):
    first = _reset_config(monkeypatch, MAP_DAYS="3")
    monkeypatch.setenv("MAP_DAYS", "5")

    from arborist_permits.config import get_config

    assert get_config() is first
    assert _reset_config(monkeypatch).map_days == 5


def test_with_overrides_ignores_none(monkeypatch, tmp_path):
    config = _reset_config(monkeypatch).with_data_dir(tmp_path)

    assert config.with_overrides(map_days=None) is config
    assert config.with_overrides(map_days=3).map_days == 3
    assert config.live_geojson_path == tmp_path / "atl_arborist_ddh.geojson"
