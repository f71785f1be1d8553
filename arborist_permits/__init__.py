"""Compatibility shim for src-layout imports.

The real package lives in src/arborist_permits. Tests run the CLI via
`python -m arborist_permits` from the repo root, where Python would find this
top-level directory first and treat it as an incomplete package, breaking
`-m` execution.

This shim extends the package search path to include the real implementation
and exposes the public symbols lazily.
"""

from __future__ import annotations

from pathlib import Path
import sys

_SRC_DIR = Path(__file__).resolve().parent.parent / "src"
_IMPL_PKG_DIR = _SRC_DIR / "arborist_permits"

if _IMPL_PKG_DIR.is_dir():
    src_str = str(_SRC_DIR)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)

    impl_str = str(_IMPL_PKG_DIR)
    if impl_str not in list(__path__):  # type: ignore[name-defined]
        __path__.append(impl_str)  # type: ignore[name-defined]

    __all__ = ["PipelineContext", "RunResult", "reproject", "run_pipeline"]
else:
    __all__ = []


def __getattr__(name: str):
    if name in ("PipelineContext", "reproject", "run_pipeline"):
        from . import pipeline

        return getattr(pipeline, name)
    if name == "RunResult":
        from .run_result import RunResult

        return RunResult
    raise AttributeError(name)
