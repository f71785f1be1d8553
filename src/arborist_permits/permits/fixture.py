from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from arborist_permits.files import StoreError, read_json
from arborist_permits.logs import get_logger
from arborist_permits.permits.base import PermitExtractor
from arborist_permits.permits.models import RawRecord


logger = get_logger("extract")


class FixtureExtractor(PermitExtractor):
    """Serves raw rows from a JSON list on disk (offline runs, replays).

    A missing or unreadable file raises `StoreError` rather than looking
    like an empty day.
    """

    name = "fixture"

    def __init__(self, *, fixture_path: str | Path):
        self._path = Path(fixture_path)

    def fetch_raw_records_for_date(self, day: datetime) -> list[RawRecord]:
        if not self._path.exists():
            raise StoreError(f"fixture file not found: {self._path}")

        data = read_json(self._path)
        if not isinstance(data, list):
            raise StoreError(f"fixture file {self._path} must hold a JSON list")

        out: list[RawRecord] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                out.append(RawRecord.model_validate(item))
            except ValidationError as exc:
                logger.warning("skipping malformed fixture row: %s", exc)
        return out
