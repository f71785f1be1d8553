"""Address geocoding with a persistent positive/negative cache.

Cache file format (kept stable for hand edits):

    {"100 Main St": [-84.1, 33.7], "??": null}

A `null` entry means "tried and failed, do not retry". Removing the entry
(`arborist-permits cache forget ADDRESS`) is the only way to retry it.
"""
from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx

from arborist_permits.files import StoreError, read_json, write_json_atomic
from arborist_permits.logs import get_logger
from arborist_permits.normalize import is_geocodable_address


CENSUS_URL = "https://geocoding.geo.census.gov/geocoder/locations/onelineaddress"
CENSUS_BENCHMARK = "Public_AR_Census2020"
USER_AGENT = "arborist-permits/0.0.1 (+batch geocoder)"

Coords = List[float]
LookupFn = Callable[[str], Optional[Coords]]

logger = get_logger("geocode")


class GeocodeCache:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        data = read_json(self.path, default={})
        if not isinstance(data, dict):
            raise StoreError(f"geocode cache {self.path} is not a JSON object")
        self._entries: Dict[str, Optional[Coords]] = {}
        for address, value in data.items():
            self._entries[str(address)] = _coerce_coords(value)

    def __contains__(self, address: str) -> bool:
        return address in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, address: str) -> Optional[Coords]:
        value = self._entries.get(address)
        return list(value) if value else None

    def set(self, address: str, coords: Optional[Coords]) -> None:
        self._entries[address] = _coerce_coords(coords)
        self.save()

    def forget(self, address: str) -> bool:
        if address not in self._entries:
            return False
        del self._entries[address]
        self.save()
        return True

    def clear_negative(self) -> int:
        negatives = [a for a, v in self._entries.items() if v is None]
        for address in negatives:
            del self._entries[address]
        if negatives:
            self.save()
        return len(negatives)

    def stats(self) -> Dict[str, int]:
        positive = sum(1 for v in self._entries.values() if v is not None)
        return {
            "entries": len(self._entries),
            "positive": positive,
            "negative": len(self._entries) - positive,
        }

    def save(self) -> None:
        write_json_atomic(self.path, self._entries)


def _coerce_coords(value) -> Optional[Coords]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return None
    try:
        return [float(value[0]), float(value[1])]
    except (TypeError, ValueError):
        return None


def census_lookup(
    query: str,
    *,
    client: Optional[httpx.Client] = None,
    timeout: float = 10.0,
) -> Optional[Coords]:
    """One-line address lookup against the US Census geocoder.

    Returns `[lon, lat]` of the first match, None when nothing matched.
    Transport and HTTP errors propagate.
    """

    params = {"address": query, "benchmark": CENSUS_BENCHMARK, "format": "json"}
    headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
    if client is None:
        resp = httpx.get(CENSUS_URL, params=params, headers=headers, timeout=timeout)
    else:
        resp = client.get(CENSUS_URL, params=params, headers=headers, timeout=timeout)
    resp.raise_for_status()
    payload = resp.json()
    matches = ((payload or {}).get("result") or {}).get("addressMatches") or []
    if not matches:
        return None
    coordinates = matches[0].get("coordinates") or {}
    return _coerce_coords([coordinates.get("x"), coordinates.get("y")])


class Geocoder:
    """Resolves raw addresses through the cache, calling out only on a miss.

    Calls are sequential; `delay_seconds` is slept after every external
    attempt, successful or not.
    """

    def __init__(
        self,
        cache: GeocodeCache,
        lookup: Optional[LookupFn] = None,
        *,
        city_suffix: str = "",
        timeout: float = 10.0,
        delay_seconds: float = 0.15,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.cache = cache
        self.city_suffix = city_suffix or ""
        self.timeout = timeout
        self.delay_seconds = delay_seconds
        self.sleep_fn = sleep_fn
        self._lookup = lookup or (lambda q: census_lookup(q, timeout=self.timeout))
        self.calls = 0
        self.hits = 0
        self.misses = 0
        self.failures = 0

    def resolve(self, address: Optional[str]) -> Optional[Coords]:
        if not address:
            return None
        if address in self.cache:
            self.hits += 1
            return self.cache.get(address)
        self.misses += 1
        if not is_geocodable_address(address):
            logger.debug("not geocodable, caching negative: %r", address)
            self.cache.set(address, None)
            return None

        self.calls += 1
        try:
            coords = _coerce_coords(self._lookup(address + self.city_suffix))
            if coords is None:
                logger.info("no geocode match for %r", address)
        except Exception as exc:
            self.failures += 1
            logger.warning("geocode failed for %r: %s", address, exc)
            coords = None
        self.cache.set(address, coords)
        if self.delay_seconds:
            self.sleep_fn(self.delay_seconds)
        return coords

    def stats(self) -> Dict[str, int]:
        return {
            "calls": self.calls,
            "hits": self.hits,
            "misses": self.misses,
            "failures": self.failures,
            **{f"cache_{k}": v for k, v in self.cache.stats().items()},
        }
