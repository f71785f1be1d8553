"""Permit data models."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from arborist_permits.dates import parse_us_date


ENRICHMENT_FIELDS = (
    "owner",
    "tree_dbh",
    "tree_location",
    "reason_removal",
    "tree_description",
    "tree_number",
    "species",
)


class RawRecord(BaseModel):
    """One row as emitted by an extractor, before any reconciliation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    record: Optional[str] = None
    address: Optional[str] = None
    date: Optional[str] = None  # portal locale string, e.g. 03/01/2024
    status: Optional[str] = None
    description: Optional[str] = None
    permit_type: Optional[str] = Field(default=None, alias="permitType")
    detail_url: Optional[str] = Field(default=None, alias="detailUrl")

    owner: Optional[str] = None
    tree_dbh: Optional[str] = None
    tree_location: Optional[str] = None
    reason_removal: Optional[str] = None
    tree_description: Optional[str] = None
    tree_number: Optional[str] = None
    species: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        # Trim only: addresses key the geocode cache exactly as scraped.
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @property
    def day(self) -> Optional[datetime]:
        return parse_us_date(self.date)


class PermitRecord(BaseModel):
    """A reconciled permit row, one per line in the NDJSON store."""

    model_config = ConfigDict(extra="ignore")

    key: str
    date: Optional[str] = None  # canonical MM/DD/YYYY
    record: Optional[str] = None
    address: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None
    owner: Optional[str] = None
    tree_dbh: Optional[str] = None
    tree_location: Optional[str] = None
    reason_removal: Optional[str] = None
    tree_description: Optional[str] = None
    tree_number: Optional[str] = None
    species: Optional[str] = None
    coords: Optional[List[float]] = None  # [lon, lat]

    @field_validator("coords", mode="before")
    @classmethod
    def _coords_pair(cls, value):
        if value is None:
            return None
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise ValueError("coords must be a [lon, lat] pair")
        return [float(value[0]), float(value[1])]

    @property
    def day(self) -> Optional[datetime]:
        return parse_us_date(self.date)

    def comparable(self) -> dict:
        payload = self.to_dict()
        payload.pop("key", None)
        return payload

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    def feature_properties(self) -> dict:
        payload = self.to_dict()
        payload.pop("coords", None)
        return payload
