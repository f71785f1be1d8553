"""Registry of permit extractors keyed by source name."""
from __future__ import annotations

import os
from typing import Callable, Dict

from arborist_permits.permits.base import PermitExtractor


ExtractorFactory = Callable[..., PermitExtractor]

_REGISTRY: Dict[str, ExtractorFactory] = {}


def register_extractor(name: str, factory: ExtractorFactory) -> None:
    key = (name or "").strip().lower()
    if not key:
        raise ValueError("extractor name is required")
    _REGISTRY[key] = factory


def get_extractor(name: str, **kwargs) -> PermitExtractor:
    """Build an extractor instance; kwargs go to its factory."""
    factory = _REGISTRY.get((name or "").strip().lower())
    if not factory:
        raise ValueError(f"No permit extractor registered for source: {name}")
    return factory(**kwargs)


def list_extractors() -> list[str]:
    return sorted(_REGISTRY.keys())


def _register_builtin() -> None:
    from arborist_permits.permits.accela import AccelaPermitsExtractor
    from arborist_permits.permits.fixture import FixtureExtractor

    register_extractor("accela", AccelaPermitsExtractor)

    def _fixture(fixture_path: str = "", **_kwargs) -> PermitExtractor:
        fixture_path = fixture_path or (os.getenv("PERMITS_FIXTURE_PATH") or "").strip()
        if not fixture_path:
            raise ValueError("fixture source requires PERMITS_FIXTURE_PATH or --fixture")
        return FixtureExtractor(fixture_path=fixture_path)

    register_extractor("fixture", _fixture)


_register_builtin()
