"""Exception types raised by the batch reconstruction pipeline.

Batch-fatal errors (``ToolNotFound``) propagate out of ``run_batch``.
Job-fatal errors (``DirectoryCreationError``, ``StageFailure`` and its
``NoOutputProduced`` variant) are caught at the per-video boundary and turned
into a failed ``PipelineOutcome``.
"""

from pathlib import Path


class VideoSfmError(Exception):
    """Base class for all videosfm errors."""


class ToolNotFound(VideoSfmError):
    """An external executable could not be resolved.

    Attributes:
        tool: Name of the executable that was searched for.
        searched: Directories (and locations) that were searched, in order.
        path_searched: Whether the process PATH was also consulted.
    """

    def __init__(
        self,
        tool: str,
        searched: list[Path] | None = None,
        detail: str = "",
        path_searched: bool = True,
    ):
        self.tool = tool
        self.searched = list(searched or [])
        self.path_searched = path_searched
        message = f"{tool} not found"
        if detail:
            message = f"{message}: {detail}"
        locations = [str(p) for p in self.searched]
        if path_searched:
            locations.append("PATH")
        if locations:
            message = f"{message} (searched: {', '.join(locations)})"
        super().__init__(message)


class DirectoryCreationError(VideoSfmError):
    """A scene directory could not be created or cleared."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to create {path}: {reason}")


class StageFailure(VideoSfmError):
    """An external stage exited non-zero or could not be launched.

    Attributes:
        stage: Stage that failed.
        exit_code: Process exit code, or None if the process never started.
    """

    def __init__(self, stage, exit_code: int | None = None, message: str | None = None):
        self.stage = stage
        self.exit_code = exit_code
        if message is None:
            if exit_code is None:
                message = f"{stage} could not be launched"
            else:
                message = f"{stage} exited with code {exit_code}"
        super().__init__(message)


class NoOutputProduced(StageFailure):
    """A stage reported success but left no output behind."""

    def __init__(self, stage, location: Path):
        self.location = location
        super().__init__(
            stage,
            exit_code=0,
            message=f"{stage} produced no output in {location}",
        )
