"""Pipeline runner: per-video stage sequencing and batch control."""

import logging
import os
import sys
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from tqdm import tqdm

from ..config import BatchConfig
from ..errors import DirectoryCreationError, StageFailure
from ..layout import JobStatus, SceneDirectories, job_status, layout_for, materialize
from ..tools import ToolPaths
from .builder import build_pipeline_context, normalize_worker_count
from .context import PipelineContext
from .outcomes import BatchSummary, Job, PipelineOutcome, Stage, summarize
from .stages.export import run_export_stage
from .stages.extraction import run_extract_stage
from .stages.features import run_feature_stage
from .stages.mapping import run_mapper_stage
from .stages.matching import run_matching_stage

logger = logging.getLogger(__name__)

StageFn = Callable[[Job, SceneDirectories, PipelineContext], object]

# Stages whose failure fails the job, in execution order
STAGES: list[tuple[Stage, str, StageFn]] = [
    (Stage.EXTRACT, "Extracting frames", run_extract_stage),
    (Stage.FEATURES, "Feature extraction", run_feature_stage),
    (Stage.MATCH, "Feature matching", run_matching_stage),
    (Stage.MAPPER, "Sparse reconstruction", run_mapper_stage),
]


def make_jobs(videos: Iterable[str | Path]) -> list[Job]:
    """Assign stable 1-based indices and the batch total to each video."""
    paths = [Path(v) for v in videos]
    total = len(paths)
    return [
        Job(video_path=path, name=path.stem, index=i, total=total)
        for i, path in enumerate(paths, start=1)
    ]


def process_video(job: Job, ctx: PipelineContext) -> PipelineOutcome:
    """Run the full stage sequence for one video.

    Skips the video if its scene directory already exists (unless forced).
    Job-fatal errors are contained here and returned as a failed outcome;
    they never propagate to the batch.

    Args:
        job: Video to process.
        ctx: Shared pipeline context.

    Returns:
        Terminal outcome for the video.
    """
    config = ctx.config
    force = config.runtime.force
    logger.info("=== Processing %s ===", job.tag)

    try:
        layout = layout_for(config.scenes_dir, job.name)
    except ValueError as e:
        logger.error("%s: [FAILED] %s", job.tag, e)
        return PipelineOutcome.failed(job.name, Stage.EXTRACT, str(e))

    if job_status(layout, force) == JobStatus.SKIP:
        logger.info("%s: skipping, already processed (%s)", job.tag, layout.scene_root)
        return PipelineOutcome.skipped(job.name)

    try:
        materialize(layout, reset=force)
    except DirectoryCreationError as e:
        logger.error("%s: [FAILED] %s", job.tag, e)
        return PipelineOutcome.failed(job.name, Stage.EXTRACT, str(e))

    n_stages = len(STAGES)
    for number, (stage, description, run) in enumerate(STAGES, start=1):
        logger.info("%s: [%d/%d] %s...", job.tag, number, n_stages, description)
        try:
            run(job, layout, ctx)
        except StageFailure as e:
            logger.error("%s: [FAILED] %s: %s", job.tag, e.stage, e)
            return PipelineOutcome.failed(job.name, e.stage, str(e))
        except Exception as e:
            logger.exception("%s: [FAILED] %s: processing failed", job.tag, stage)
            return PipelineOutcome.failed(job.name, stage, str(e))

    run_export_stage(job, layout, ctx)

    logger.info("%s: finished", job.tag)
    return PipelineOutcome.completed(job.name)


def _dedupe_scenes(jobs: list[Job]) -> tuple[list[Job], dict[int, PipelineOutcome]]:
    """Split jobs into runnable jobs and pre-skipped duplicates.

    A later job whose stem repeats an earlier one in the same batch would
    write into the same scene directory, so it is skipped outright. Stems are
    compared case-insensitively.
    """
    claimed: set[str] = set()
    runnable: list[Job] = []
    duplicates: dict[int, PipelineOutcome] = {}
    for job in jobs:
        key = os.path.normcase(job.name).casefold()
        if key in claimed:
            logger.warning(
                "%s: scene name already used by an earlier input in this batch, skipping %s",
                job.tag,
                job.video_path,
            )
            duplicates[job.index] = PipelineOutcome.skipped(
                job.name, reason="scene name already used in this batch"
            )
            continue
        claimed.add(key)
        runnable.append(job)
    return runnable, duplicates


def run_jobs(jobs: list[Job], ctx: PipelineContext) -> list[PipelineOutcome]:
    """Run every job and return outcomes in job order.

    Sequential by default; with ``runtime.max_workers > 1`` videos run in a
    bounded thread pool (stages within a video stay sequential).
    """
    runnable, outcomes_by_index = _dedupe_scenes(jobs)
    workers = min(normalize_worker_count(ctx.config.runtime.max_workers), max(len(runnable), 1))

    progress = tqdm(
        total=len(jobs),
        desc="Processing videos",
        disable=ctx.config.runtime.quiet or not sys.stderr.isatty(),
        unit="video",
    )
    progress.update(len(outcomes_by_index))

    with progress:
        if workers <= 1:
            for job in runnable:
                outcomes_by_index[job.index] = process_video(job, ctx)
                progress.update(1)
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = {job.index: pool.submit(process_video, job, ctx) for job in runnable}
                for index, future in futures.items():
                    outcomes_by_index[index] = future.result()
                    progress.update(1)

    return [outcomes_by_index[job.index] for job in jobs]


def run_batch(
    videos: Iterable[str | Path],
    config: BatchConfig,
    tools: ToolPaths | None = None,
) -> BatchSummary:
    """Run the reconstruction pipeline over a batch of videos.

    Tools are resolved once before any video is processed; a missing tool
    aborts the batch. Each video's failure is contained to that video.

    Args:
        videos: Video paths, processed in the given order.
        config: Batch configuration (engine selection, force flag, ...).
        tools: Pre-resolved tool paths (skips resolution).

    Returns:
        Summary of per-video outcomes.

    Raises:
        ToolNotFound: If any external tool is missing.
        DirectoryCreationError: If the scenes root cannot be created.
    """
    ctx = build_pipeline_context(config, tools=tools)
    jobs = make_jobs(videos)

    logger.info("Starting on %d video(s)", len(jobs))
    summary = summarize(run_jobs(jobs, ctx))

    for outcome in summary.failures:
        logger.warning("Failed: %s (%s)", outcome, outcome.reason)
    logger.info("All jobs finished: %s", summary.format_line())
    logger.info("Results are in %s", config.scenes_dir)
    return summary


class Pipeline:
    """Batch video-to-sparse-reconstruction pipeline.

    Primary programmatic entry point for videosfm.

    Example:
        pipeline = Pipeline(config)
        summary = pipeline.run(["a.mp4", "b.mov"])
    """

    def __init__(self, config: BatchConfig, tools: ToolPaths | None = None):
        """Initialize the pipeline with configuration.

        Args:
            config: Batch configuration.
            tools: Optional pre-resolved tool paths.
        """
        self.config = config
        self.tools = tools

    def run(self, videos: Iterable[str | Path]) -> BatchSummary:
        """Run the batch. Equivalent to calling run_batch(videos, config)."""
        return run_batch(videos, self.config, tools=self.tools)
