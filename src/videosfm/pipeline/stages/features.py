"""Feature extraction stage (COLMAP feature_extractor)."""

from ...config import BatchConfig
from ...errors import StageFailure
from ...layout import SceneDirectories
from ..context import PipelineContext
from ..outcomes import Job, Stage
from ..process import run_stage


def build_feature_args(layout: SceneDirectories, config: BatchConfig) -> list[str]:
    features = config.features
    return [
        "feature_extractor",
        "--database_path",
        str(layout.database_path),
        "--image_path",
        str(layout.images_dir),
        "--ImageReader.single_camera",
        "1" if features.single_camera else "0",
        "--SiftExtraction.use_gpu",
        "1" if features.use_gpu else "0",
        "--SiftExtraction.max_image_size",
        str(features.max_image_size),
    ]


def run_feature_stage(
    job: Job, layout: SceneDirectories, ctx: PipelineContext
) -> None:
    """Detect keypoints in every frame, populating the scene database.

    Holds a GPU slot while running.

    Raises:
        StageFailure: If the feature extractor fails.
    """
    with ctx.gpu_slot():
        result = run_stage(
            Stage.FEATURES,
            ctx.tools.feature_tool,
            build_feature_args(layout, ctx.config),
            env=ctx.env,
            output=ctx.output,
            tag=job.name,
        )
    if not result.success:
        raise StageFailure(Stage.FEATURES, result.exit_code)
