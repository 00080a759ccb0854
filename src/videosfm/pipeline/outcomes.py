"""Value types exchanged between the batch controller, video pipeline and stages."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Stage(str, Enum):
    """External-tool invocations within a video's pipeline, in order."""

    EXTRACT = "extract"
    FEATURES = "features"
    MATCH = "match"
    MAPPER = "mapper"
    EXPORT = "export"

    def __str__(self) -> str:
        return self.value


class Status(str, Enum):
    """Terminal status of one video's pipeline run."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Job:
    """One input video with its position in the batch."""

    video_path: Path
    name: str
    index: int
    total: int

    @property
    def tag(self) -> str:
        """Progress tag used in log messages, e.g. ``(2/5) clip``."""
        return f"({self.index}/{self.total}) {self.name}"


@dataclass(frozen=True)
class StageResult:
    """Exit status of one external stage.

    ``exit_code`` is None when the process could not be launched.
    """

    stage: Stage
    success: bool
    exit_code: int | None


@dataclass(frozen=True)
class PipelineOutcome:
    """Terminal state of one video: completed, skipped, or failed at a stage."""

    video_name: str
    status: Status
    failed_stage: Stage | None = None
    reason: str = ""

    @classmethod
    def completed(cls, name: str) -> "PipelineOutcome":
        return cls(name, Status.COMPLETED)

    @classmethod
    def skipped(cls, name: str, reason: str = "scene directory exists") -> "PipelineOutcome":
        return cls(name, Status.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, name: str, stage: Stage, reason: str = "") -> "PipelineOutcome":
        return cls(name, Status.FAILED, failed_stage=stage, reason=reason)

    def __str__(self) -> str:
        if self.status == Status.FAILED:
            return f"{self.video_name}: failed at {self.failed_stage}"
        return f"{self.video_name}: {self.status}"


@dataclass
class BatchSummary:
    """Outcomes of a batch run, in input order."""

    outcomes: list[PipelineOutcome] = field(default_factory=list)

    def _count(self, status: Status) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def completed(self) -> int:
        return self._count(Status.COMPLETED)

    @property
    def skipped(self) -> int:
        return self._count(Status.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(Status.FAILED)

    @property
    def failures(self) -> list[PipelineOutcome]:
        return [o for o in self.outcomes if o.status == Status.FAILED]

    @property
    def exit_code(self) -> int:
        """Process exit code: non-zero only when every job failed."""
        if self.total > 0 and self.failed == self.total:
            return 1
        return 0

    def format_line(self) -> str:
        """One-line summary, e.g. ``3 video(s): 1 completed, 1 skipped, 1 failed``."""
        return (
            f"{self.total} video(s): {self.completed} completed, "
            f"{self.skipped} skipped, {self.failed} failed"
        )


def summarize(outcomes: list[PipelineOutcome]) -> BatchSummary:
    """Aggregate per-video outcomes into a batch summary."""
    return BatchSummary(outcomes=list(outcomes))
