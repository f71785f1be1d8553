"""Permit extraction.

CI safety: parsers must be testable offline with HTML/JSON fixtures.
Network access must be explicitly LIVE-gated.
"""

from .base import PermitExtractor
from .models import PermitRecord, RawRecord
from .registry import get_extractor, list_extractors, register_extractor

__all__ = [
    "PermitExtractor",
    "PermitRecord",
    "RawRecord",
    "get_extractor",
    "list_extractors",
    "register_extractor",
]
