"""Resolution of the external executables used by the pipeline.

Tools are looked up once per batch, before any video is processed. The
resolved locations are returned as an explicit ``ToolPaths`` value and an
environment mapping; the process-wide ``os.environ`` is never modified.
"""

import logging
import os
import shutil
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from .config import BatchConfig, MapperEngine
from .errors import ToolNotFound

logger = logging.getLogger(__name__)

APP_DIR_NAME = "videosfm"

FFMPEG = "ffmpeg"
COLMAP = "colmap"
GLOMAP = "glomap"


@dataclass(frozen=True)
class ToolPaths:
    """Absolute paths to the three executables a batch needs.

    Attributes:
        extractor: Frame extractor (ffmpeg).
        feature_tool: Feature extraction, matching and model conversion tool (colmap).
        mapper: Sparse reconstruction tool (colmap or glomap).
    """

    extractor: Path
    feature_tool: Path
    mapper: Path

    def directories(self) -> list[Path]:
        """Distinct parent directories of the resolved tools, in resolution order."""
        seen: list[Path] = []
        for path in (self.extractor, self.feature_tool, self.mapper):
            parent = path.parent
            if parent not in seen:
                seen.append(parent)
        return seen


def executable_name(name: str) -> str:
    """Platform file name for an executable."""
    if sys.platform == "win32" and not name.lower().endswith(".exe"):
        return f"{name}.exe"
    return name


def default_install_dir() -> Path:
    """Per-user data directory where tools are conventionally installed."""
    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA")
        root = Path(base) if base else Path.home() / "AppData" / "Local"
    elif sys.platform == "darwin":
        root = Path.home() / "Library" / "Application Support"
    else:
        base = os.environ.get("XDG_DATA_HOME")
        root = Path(base) if base else Path.home() / ".local" / "share"
    return root / APP_DIR_NAME


def find_executable(directory: Path, name: str) -> Path | None:
    """Find an executable in a directory or its ``bin`` subdirectory.

    Args:
        directory: Primary directory to search.
        name: Executable name without platform suffix.

    Returns:
        Path to the first matching file, or None.
    """
    exe_name = executable_name(name)
    for candidate in (directory / exe_name, directory / "bin" / exe_name):
        if candidate.is_file():
            return candidate
    return None


def locate_tool(
    name: str,
    candidate_dirs: Iterable[Path],
    explicit_path: str | Path | None = None,
    search_path: bool = True,
) -> Path:
    """Resolve an executable to an absolute path.

    Search order: explicit path (must exist), each candidate directory and its
    ``bin`` subdirectory, then the process PATH.

    Args:
        name: Executable name (e.g. "colmap").
        candidate_dirs: Directories searched in order.
        explicit_path: User-provided path; if given, no other location is tried.
        search_path: Fall back to PATH lookup.

    Returns:
        Absolute path to the executable.

    Raises:
        ToolNotFound: If no location yields the executable.
    """
    if explicit_path is not None:
        path = Path(explicit_path).expanduser()
        if path.is_file():
            logger.info("Using %s at %s", name, path)
            return path.resolve()
        raise ToolNotFound(
            name, detail=f"provided path does not exist: {path}", path_searched=False
        )

    searched: list[Path] = []
    for directory in candidate_dirs:
        directory = Path(directory).expanduser()
        searched.append(directory)
        found = find_executable(directory, name)
        if found is not None:
            logger.info("Found %s in %s: %s", name, directory, found)
            return found.resolve()

    if search_path:
        which = shutil.which(name)
        if which is not None:
            logger.info("Found %s in PATH: %s", name, which)
            return Path(which).resolve()

    raise ToolNotFound(name, searched, path_searched=search_path)


def candidate_dirs_for(name: str, config: BatchConfig) -> list[Path]:
    """Directories searched for a tool, in priority order."""
    install_dir = (
        Path(config.tools.install_dir)
        if config.tools.install_dir is not None
        else default_install_dir()
    )
    dirs = [install_dir / name]
    dirs.extend(Path(d) for d in config.tools.extra_search_dirs)
    return dirs


def resolve_tools(config: BatchConfig) -> ToolPaths:
    """Resolve all executables needed for a batch.

    The mapper engine decides which mapping executable is required. GLOMAP
    still needs COLMAP for feature extraction, matching and export.

    Args:
        config: Batch configuration.

    Returns:
        Resolved tool paths.

    Raises:
        ToolNotFound: If any required executable is missing.
    """
    tools = config.tools
    engine = config.mapper.engine
    search_path = tools.search_path

    extractor = locate_tool(
        FFMPEG,
        candidate_dirs_for(FFMPEG, config),
        explicit_path=tools.ffmpeg_path,
        search_path=search_path,
    )

    if engine == MapperEngine.COLMAP:
        colmap_explicit = tools.colmap_path or tools.tool_path
        feature_tool = locate_tool(
            COLMAP,
            candidate_dirs_for(COLMAP, config),
            explicit_path=colmap_explicit,
            search_path=search_path,
        )
        mapper = feature_tool
    else:
        mapper = locate_tool(
            GLOMAP,
            candidate_dirs_for(GLOMAP, config),
            explicit_path=tools.tool_path,
            search_path=search_path,
        )
        logger.info("glomap pipeline requires colmap for the remaining stages")
        feature_tool = locate_tool(
            COLMAP,
            candidate_dirs_for(COLMAP, config),
            explicit_path=tools.colmap_path,
            search_path=search_path,
        )

    return ToolPaths(extractor=extractor, feature_tool=feature_tool, mapper=mapper)


def _prepend(value: str | None, entries: list[Path]) -> str:
    existing = [p for p in (value or "").split(os.pathsep) if p]
    prefix = [str(p) for p in entries]
    merged = []
    for item in prefix + existing:
        if item not in merged:
            merged.append(item)
    return os.pathsep.join(merged)


def build_environment(
    tool_paths: ToolPaths, base_env: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Build the environment passed to every stage subprocess.

    Each tool's directory and its ``bin`` subdirectory are prepended to PATH
    so the tools can find their own shared libraries and helper binaries.
    A ``plugins`` directory next to colmap is prepended to QT_PLUGIN_PATH.

    Args:
        tool_paths: Resolved tool paths.
        base_env: Environment to extend (defaults to a copy of os.environ).

    Returns:
        New environment mapping.
    """
    env = dict(os.environ if base_env is None else base_env)

    path_entries: list[Path] = []
    for directory in tool_paths.directories():
        path_entries.append(directory)
        path_entries.append(directory / "bin")
    env["PATH"] = _prepend(env.get("PATH"), path_entries)

    colmap_dir = tool_paths.feature_tool.parent
    if colmap_dir.name == "bin":
        colmap_dir = colmap_dir.parent
    plugins_dir = colmap_dir / "plugins"
    if plugins_dir.is_dir():
        env["QT_PLUGIN_PATH"] = _prepend(env.get("QT_PLUGIN_PATH"), [plugins_dir])

    return env
