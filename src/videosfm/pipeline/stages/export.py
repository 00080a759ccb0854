"""Best-effort text export of the reconstructed model."""

import logging
from pathlib import Path

from ...config import BatchConfig
from ...layout import SceneDirectories
from ..context import PipelineContext
from ..outcomes import Job, Stage
from ..process import SUPPRESS, run_stage

logger = logging.getLogger(__name__)


def build_export_args(input_path: Path, output_path: Path, config: BatchConfig) -> list[str]:
    return [
        "model_converter",
        "--input_path",
        str(input_path),
        "--output_path",
        str(output_path),
        "--output_type",
        config.export.output_type,
    ]


def run_export_stage(
    job: Job, layout: SceneDirectories, ctx: PipelineContext
) -> bool:
    """Convert the primary model to text, in place and flattened into ``sparse/``.

    The flattened copy lets consumers find the text model at a fixed location.
    Never raises for tool failures; they are logged as warnings.

    Args:
        job: Job being processed.
        layout: Scene layout.
        ctx: Pipeline context.

    Returns:
        True if both conversions ran and succeeded, False if export was
        skipped or any conversion failed.
    """
    if not ctx.config.export.enabled:
        logger.debug("%s: export disabled", job.name)
        return False

    model_dir = layout.model_dir
    if not model_dir.is_dir():
        logger.debug("%s: no primary model at %s, skipping export", job.name, model_dir)
        return False

    logger.info("%s: exporting model to %s", job.tag, ctx.config.export.output_type)
    ok = True
    for output_path in (model_dir, layout.sparse_dir):
        result = run_stage(
            Stage.EXPORT,
            ctx.tools.feature_tool,
            build_export_args(model_dir, output_path, ctx.config),
            env=ctx.env,
            output=SUPPRESS,
            tag=job.name,
        )
        if not result.success:
            logger.warning(
                "%s: model export to %s failed (exit code %s)",
                job.name,
                output_path,
                result.exit_code,
            )
            ok = False
    return ok
