"""Frame extraction stage."""

import logging
from pathlib import Path

from ...config import BatchConfig
from ...errors import NoOutputProduced, StageFailure
from ...layout import SceneDirectories, list_frames
from ..context import PipelineContext
from ..outcomes import Job, Stage
from ..process import run_stage

logger = logging.getLogger(__name__)


def build_extract_args(
    video_path: Path, layout: SceneDirectories, config: BatchConfig
) -> list[str]:
    """ffmpeg arguments writing a numbered JPEG sequence into ``images/``."""
    return [
        "-i",
        str(video_path),
        "-qscale:v",
        str(config.extraction.quality),
        str(layout.images_dir / config.extraction.frame_pattern),
    ]


def run_extract_stage(
    job: Job, layout: SceneDirectories, ctx: PipelineContext
) -> int:
    """Extract frames from the job's video.

    The exit code alone is not trusted: at least one frame must exist in
    ``images/`` afterwards.

    Args:
        job: Job being processed.
        layout: Scene layout (images directory must exist).
        ctx: Pipeline context.

    Returns:
        Number of frames written.

    Raises:
        StageFailure: If ffmpeg fails.
        NoOutputProduced: If ffmpeg succeeds but writes no frames.
    """
    result = run_stage(
        Stage.EXTRACT,
        ctx.tools.extractor,
        build_extract_args(job.video_path, layout, ctx.config),
        env=ctx.env,
        output=ctx.output,
        tag=job.name,
    )
    if not result.success:
        raise StageFailure(Stage.EXTRACT, result.exit_code)

    frames = list_frames(layout)
    if not frames:
        raise NoOutputProduced(Stage.EXTRACT, layout.images_dir)

    logger.debug("%s: extracted %d frames", job.name, len(frames))
    return len(frames)
