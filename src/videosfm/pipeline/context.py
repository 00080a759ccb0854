"""Pipeline context dataclass for data shared by every video in a batch."""

import threading
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass, field

from ..config import BatchConfig
from ..tools import ToolPaths


@dataclass
class PipelineContext:
    """Data that is constant across all videos of a batch.

    Created once by build_pipeline_context() and reused for every video.

    Attributes:
        config: Batch configuration.
        tools: Resolved executable paths.
        env: Environment mapping passed to every stage subprocess.
        output: Stage output mode ("inherit" or "capture").
        gpu_lock: Limits concurrent GPU-bound stages; None when sequential.
    """

    config: BatchConfig
    tools: ToolPaths
    env: dict[str, str]
    output: str = "inherit"
    gpu_lock: threading.BoundedSemaphore | None = field(default=None, repr=False)

    def gpu_slot(self) -> AbstractContextManager:
        """Context manager held while a GPU-bound stage runs."""
        if self.gpu_lock is None:
            return nullcontext()
        return self.gpu_lock
