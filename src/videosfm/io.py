"""Input discovery for batch runs."""

import logging
from collections.abc import Iterable
from pathlib import Path

from .config import VIDEO_EXTENSIONS

logger = logging.getLogger(__name__)


def is_video_file(path: Path) -> bool:
    """Whether a path is a file with a known video extension (case-insensitive)."""
    return path.is_file() and path.suffix.lower() in VIDEO_EXTENSIONS


def collect_videos(inputs: Iterable[str | Path]) -> list[Path]:
    """Expand input paths into an ordered list of video files.

    Files are taken as given, in argument order, whatever their extension.
    Directories expand to the video files directly inside them, sorted by name.

    Args:
        inputs: Video files and/or directories.

    Returns:
        Video paths in enumeration order.

    Raises:
        FileNotFoundError: If an input does not exist.
    """
    videos: list[Path] = []
    for item in inputs:
        path = Path(item)
        if path.is_dir():
            found = sorted(f for f in path.iterdir() if is_video_file(f))
            if not found:
                logger.warning("No video files found in %s", path)
            videos.extend(found)
        elif path.is_file():
            videos.append(path)
        else:
            raise FileNotFoundError(f"Input path does not exist: {path}")
    return videos
