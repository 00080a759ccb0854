"""On-disk layout of a scene directory.

One scene per video, keyed by the video's file stem::

    <scenes_dir>/<stem>/
        images/frame_000001.jpg ...
        database.db
        sparse/0/{cameras,images,points3D}.{bin,txt}
        sparse/{cameras,images,points3D}.txt

The existence of the scene root is the only completion marker. A video that
failed midway leaves its scene root behind and is skipped on the next run
unless forced.
"""

import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import DirectoryCreationError

logger = logging.getLogger(__name__)

IMAGES_DIR_NAME = "images"
SPARSE_DIR_NAME = "sparse"
DATABASE_NAME = "database.db"
PRIMARY_MODEL_NAME = "0"


class JobStatus(str, Enum):
    """Decision made once at job start from the scene layout state."""

    PENDING = "pending"
    SKIP = "skip"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SceneDirectories:
    """Directories and files belonging to one video's scene."""

    scene_root: Path
    images_dir: Path
    sparse_dir: Path

    @property
    def database_path(self) -> Path:
        """Feature database shared by the features, match and mapper stages."""
        return self.scene_root / DATABASE_NAME

    @property
    def model_dir(self) -> Path:
        """Primary reconstructed model written by the mapper."""
        return self.sparse_dir / PRIMARY_MODEL_NAME


def layout_for(scenes_dir: str | Path, video_stem: str) -> SceneDirectories:
    """Compute the scene layout for a video stem.

    Args:
        scenes_dir: Root directory holding all scenes.
        video_stem: File stem of the video (name without extension).

    Returns:
        SceneDirectories rooted at ``scenes_dir/video_stem``.

    Raises:
        ValueError: If the stem is empty or would escape ``scenes_dir``.
    """
    if not video_stem or video_stem in (".", "..") or Path(video_stem).name != video_stem:
        raise ValueError(f"Invalid scene name: {video_stem!r}")

    scene_root = Path(scenes_dir) / video_stem
    return SceneDirectories(
        scene_root=scene_root,
        images_dir=scene_root / IMAGES_DIR_NAME,
        sparse_dir=scene_root / SPARSE_DIR_NAME,
    )


def exists(layout: SceneDirectories) -> bool:
    """Whether the scene has been processed before (scene root exists)."""
    return layout.scene_root.exists()


def job_status(layout: SceneDirectories, force: bool = False) -> JobStatus:
    """Decide whether a job runs or is skipped.

    Args:
        layout: Scene layout for the job.
        force: Treat the scene as non-existent.

    Returns:
        JobStatus.SKIP if the scene root exists and force is off, otherwise
        JobStatus.PENDING.
    """
    if not force and exists(layout):
        return JobStatus.SKIP
    return JobStatus.PENDING


def materialize(layout: SceneDirectories, reset: bool = False) -> None:
    """Create the images and sparse directories of a scene.

    Args:
        layout: Scene layout to create.
        reset: Remove an existing scene tree first, so a forced re-run never
            mixes stale frames or database rows with fresh output.

    Raises:
        DirectoryCreationError: If the tree cannot be removed or created.
    """
    if reset and layout.scene_root.exists():
        logger.info("Scene directory %s exists, clearing for re-processing", layout.scene_root)
        try:
            if layout.scene_root.is_dir():
                shutil.rmtree(layout.scene_root)
            else:
                layout.scene_root.unlink()
        except OSError as e:
            raise DirectoryCreationError(layout.scene_root, str(e)) from e

    for directory in (layout.images_dir, layout.sparse_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DirectoryCreationError(directory, str(e)) from e


def list_frames(layout: SceneDirectories) -> list[Path]:
    """Sorted image files in the scene's images directory."""
    if not layout.images_dir.is_dir():
        return []
    return sorted(p for p in layout.images_dir.iterdir() if p.is_file())
