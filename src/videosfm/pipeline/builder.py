"""Pipeline context builder for one-time batch initialization."""

import logging
import os
import threading
from pathlib import Path

from ..config import BatchConfig
from ..errors import DirectoryCreationError
from ..tools import ToolPaths, build_environment, resolve_tools
from .context import PipelineContext
from .process import CAPTURE, INHERIT

logger = logging.getLogger(__name__)


def normalize_worker_count(requested: int | None) -> int:
    """Clamp a requested worker count to [1, cpu_count]."""
    if requested is None:
        return 1
    workers = max(1, int(requested))
    cpu = os.cpu_count() or 1
    return min(workers, cpu)


def build_pipeline_context(
    config: BatchConfig, tools: ToolPaths | None = None
) -> PipelineContext:
    """Perform one-time batch initialization.

    Resolves the external tools, builds the subprocess environment, and
    creates the scenes root. Any failure here is fatal for the whole batch.

    Args:
        config: Batch configuration.
        tools: Pre-resolved tool paths (skips resolution; used by tests and
            callers that manage tools themselves).

    Returns:
        PipelineContext shared by every video.

    Raises:
        ToolNotFound: If any executable cannot be resolved.
        DirectoryCreationError: If the scenes root cannot be created.
    """
    # 1. Resolve tools
    if tools is None:
        logger.info("Resolving external tools (mapper engine: %s)", config.mapper.engine)
        tools = resolve_tools(config)

    # 2. Environment for every stage
    env = build_environment(tools)

    # 3. Scenes root
    scenes_dir = Path(config.scenes_dir)
    try:
        scenes_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DirectoryCreationError(scenes_dir, str(e)) from e

    # 4. Concurrency resources
    workers = normalize_worker_count(config.runtime.max_workers)
    if workers > 1:
        output = CAPTURE
        gpu_lock = threading.BoundedSemaphore(config.runtime.gpu_slots)
        logger.info(
            "Processing up to %d videos concurrently (%d GPU slot(s))",
            workers,
            config.runtime.gpu_slots,
        )
    else:
        output = INHERIT
        gpu_lock = None

    return PipelineContext(
        config=config,
        tools=tools,
        env=env,
        output=output,
        gpu_lock=gpu_lock,
    )
