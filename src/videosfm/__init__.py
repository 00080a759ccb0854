"""Batch photogrammetry: turn videos into sparse COLMAP/GLOMAP reconstructions."""

from .config import (
    BatchConfig,
    ExportConfig,
    ExtractionConfig,
    FeatureConfig,
    MapperConfig,
    MapperEngine,
    MatchingConfig,
    RuntimeConfig,
    ToolsConfig,
)
from .errors import (
    DirectoryCreationError,
    NoOutputProduced,
    StageFailure,
    ToolNotFound,
    VideoSfmError,
)
from .io import collect_videos
from .layout import SceneDirectories, job_status, layout_for, materialize
from .pipeline import (
    BatchSummary,
    Job,
    Pipeline,
    PipelineContext,
    PipelineOutcome,
    Stage,
    Status,
    process_video,
    run_batch,
)
from .tools import ToolPaths, build_environment, locate_tool, resolve_tools

__version__ = "0.1.0"

__all__ = [
    "BatchConfig",
    "ToolsConfig",
    "ExtractionConfig",
    "FeatureConfig",
    "MatchingConfig",
    "MapperConfig",
    "MapperEngine",
    "ExportConfig",
    "RuntimeConfig",
    "VideoSfmError",
    "ToolNotFound",
    "DirectoryCreationError",
    "StageFailure",
    "NoOutputProduced",
    "collect_videos",
    "SceneDirectories",
    "layout_for",
    "job_status",
    "materialize",
    "ToolPaths",
    "locate_tool",
    "resolve_tools",
    "build_environment",
    "Job",
    "Stage",
    "Status",
    "PipelineOutcome",
    "BatchSummary",
    "PipelineContext",
    "Pipeline",
    "process_video",
    "run_batch",
]
