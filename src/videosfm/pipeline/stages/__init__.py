"""Per-stage argument construction and invocation."""

from .export import build_export_args, run_export_stage
from .extraction import build_extract_args, run_extract_stage
from .features import build_feature_args, run_feature_stage
from .mapping import build_mapper_args, run_mapper_stage
from .matching import build_matching_args, run_matching_stage

__all__ = [
    "build_export_args",
    "build_extract_args",
    "build_feature_args",
    "build_mapper_args",
    "build_matching_args",
    "run_export_stage",
    "run_extract_stage",
    "run_feature_stage",
    "run_mapper_stage",
    "run_matching_stage",
]
