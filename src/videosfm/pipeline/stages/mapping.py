"""Sparse reconstruction stage."""

import os

from ...config import BatchConfig, MapperEngine
from ...errors import StageFailure
from ...layout import SceneDirectories
from ..context import PipelineContext
from ..outcomes import Job, Stage
from ..process import run_stage


def build_mapper_args(layout: SceneDirectories, config: BatchConfig) -> list[str]:
    """Mapper arguments; the COLMAP engine also gets an explicit thread count."""
    args = [
        "mapper",
        "--database_path",
        str(layout.database_path),
        "--image_path",
        str(layout.images_dir),
        "--output_path",
        str(layout.sparse_dir),
    ]
    if config.mapper.engine == MapperEngine.COLMAP:
        num_threads = config.mapper.num_threads or os.cpu_count() or 1
        args += ["--Mapper.num_threads", str(num_threads)]
    return args


def run_mapper_stage(
    job: Job, layout: SceneDirectories, ctx: PipelineContext
) -> None:
    """Reconstruct a binary sparse model into ``sparse/`` (primary model in ``sparse/0``).

    Holds a GPU slot while running.

    Raises:
        StageFailure: If the mapper fails.
    """
    with ctx.gpu_slot():
        result = run_stage(
            Stage.MAPPER,
            ctx.tools.mapper,
            build_mapper_args(layout, ctx.config),
            env=ctx.env,
            output=ctx.output,
            tag=job.name,
        )
    if not result.success:
        raise StageFailure(Stage.MAPPER, result.exit_code)
