"""Base classes for permit extractors."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from arborist_permits.permits.models import RawRecord


class PermitExtractor(ABC):
    """Source of raw permit rows for one calendar day."""

    name: str = ""

    @abstractmethod
    def fetch_raw_records_for_date(self, day: datetime) -> List[RawRecord]:
        """Return the rows the source lists for `day`.

        Implementations may return rows from neighbouring days; the pipeline
        filters to the target day itself. Rows enriched from detail pages
        carry the optional tree/owner fields, the rest leave them None.

        Args:
            day: UTC-midnight datetime of the target calendar day

        Returns:
            List of RawRecord objects
        """
        pass
