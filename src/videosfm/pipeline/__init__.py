"""Pipeline orchestration package for batch video reconstruction.

Provides the pipeline context, builder, stage runner, and the per-video and
batch entry points.
"""

from .builder import build_pipeline_context
from .context import PipelineContext
from .outcomes import (
    BatchSummary,
    Job,
    PipelineOutcome,
    Stage,
    StageResult,
    Status,
    summarize,
)
from .process import run_stage
from .runner import Pipeline, make_jobs, process_video, run_batch

__all__ = [
    "BatchSummary",
    "Job",
    "Pipeline",
    "PipelineContext",
    "PipelineOutcome",
    "Stage",
    "StageResult",
    "Status",
    "build_pipeline_context",
    "make_jobs",
    "process_video",
    "run_batch",
    "run_stage",
    "summarize",
]
