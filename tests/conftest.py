import json
import os
import socket
import sys
import urllib.request
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC = REPO_ROOT / "src"

# Prefer repo sources over any installed package.
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0]
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)
    monkeypatch.setattr(
        urllib.request,
        "urlopen",
        lambda *args, **kwargs: (_ for _ in ()).throw(
            RuntimeError("Network access blocked in tests")
        ),
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "LIVE",
        "MAP_DAYS",
        "SCRAPE_RUN_DAY_UTC",
        "PERMITS_DATA_DIR",
        "PERMITS_SOURCE",
        "PERMITS_FIXTURE_PATH",
        "GEOCODE_CACHE",
        "GEOCODE_CITY_SUFFIX",
        "DEBUG_LOG_RECORDS",
    ):
        if name == "LIVE" and os.getenv("LIVE") == "1":
            continue
        monkeypatch.delenv(name, raising=False)
    from arborist_permits.config import reset_config_cache

    reset_config_cache()


class FakeLookup:
    """Stands in for the Census geocoder; records every query it sees."""

    def __init__(self, answers=None, fail=()):
        self.answers = dict(answers or {})
        self.fail = set(fail)
        self.queries = []

    def __call__(self, query):
        self.queries.append(query)
        if query in self.fail:
            raise RuntimeError("geocoder unavailable")
        return self.answers.get(query)


@pytest.fixture
def fake_lookup():
    return FakeLookup


@pytest.fixture
def no_sleep():
    return lambda _seconds: None


@pytest.fixture
def write_json():
    def _write(path, payload):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _write
