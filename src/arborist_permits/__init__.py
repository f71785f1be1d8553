"""Package initializer for `arborist_permits`."""

from .pipeline import PipelineContext, reproject, run_pipeline
from .run_result import RunResult

__all__ = ["PipelineContext", "RunResult", "reproject", "run_pipeline"]
