"""Sequential feature matching stage."""

from ...config import BatchConfig
from ...errors import StageFailure
from ...layout import SceneDirectories
from ..context import PipelineContext
from ..outcomes import Job, Stage
from ..process import run_stage


def build_matching_args(layout: SceneDirectories, config: BatchConfig) -> list[str]:
    return [
        "sequential_matcher",
        "--database_path",
        str(layout.database_path),
        "--SequentialMatching.overlap",
        str(config.matching.overlap),
    ]


def run_matching_stage(
    job: Job, layout: SceneDirectories, ctx: PipelineContext
) -> None:
    """Match each frame against its temporal neighbours.

    The neighbourhood is the fixed ``matching.overlap`` window, independent of
    video length.

    Raises:
        StageFailure: If the matcher fails.
    """
    result = run_stage(
        Stage.MATCH,
        ctx.tools.feature_tool,
        build_matching_args(layout, ctx.config),
        env=ctx.env,
        output=ctx.output,
        tag=job.name,
    )
    if not result.success:
        raise StageFailure(Stage.MATCH, result.exit_code)
