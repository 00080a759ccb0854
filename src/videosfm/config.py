"""Configuration management for the videosfm batch pipeline."""

import logging
import re
from enum import Enum
from pathlib import Path
from typing import Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

# Video file extensions picked up when an input is a directory
VIDEO_EXTENSIONS = {".mp4", ".avi", ".mkv", ".mov"}

# printf-style integer directive required in frame patterns, e.g. %06d
FRAME_DIRECTIVE = re.compile(r"%0?\d*d")


class MapperEngine(str, Enum):
    """Sparse reconstruction engine used for the mapping stage.

    - GLOMAP: global mapper, fast and approximate.
    - COLMAP: incremental mapper, slower but fuller.

    Both engines share the COLMAP feature extraction, matching and model
    conversion stages; only the mapping executable differs.
    """

    COLMAP = "colmap"
    GLOMAP = "glomap"

    def __str__(self) -> str:
        return self.value


class ToolsConfig(BaseModel):
    """Where to find the external executables.

    Attributes:
        ffmpeg_path: Explicit path to the ffmpeg executable.
        tool_path: Explicit path to the mapper engine executable (colmap or glomap).
        colmap_path: Explicit path to colmap (used for features, matching and
            export). Defaults to ``tool_path`` when the engine is COLMAP.
        install_dir: Root of per-tool install directories. Each tool is looked
            up in ``install_dir/<tool>`` and ``install_dir/<tool>/bin``.
            None = per-user data directory.
        extra_search_dirs: Additional directories searched before PATH.
        search_path: Fall back to the process PATH when no directory matches.
    """

    model_config = ConfigDict(extra="allow")

    ffmpeg_path: str | None = None
    tool_path: str | None = None
    colmap_path: str | None = None
    install_dir: str | None = None
    extra_search_dirs: list[str] = Field(default_factory=list)
    search_path: bool = True

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "ToolsConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in ToolsConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class ExtractionConfig(BaseModel):
    """Configuration for frame extraction with ffmpeg.

    Attributes:
        quality: JPEG quality scale passed as ``-qscale:v`` (1 = best, 31 = worst).
        frame_pattern: Numbered output filename pattern inside ``images/``.
    """

    model_config = ConfigDict(extra="allow")

    quality: int = Field(default=2, ge=1, le=31)
    frame_pattern: str = "frame_%06d.jpg"

    @field_validator("frame_pattern")
    @classmethod
    def validate_frame_pattern(cls, v: str) -> str:
        """Validate that the pattern is a numbered sequence without directories."""
        if FRAME_DIRECTIVE.search(v) is None:
            raise ValueError(
                f"frame_pattern must contain a numeric directive like %06d, got {v!r}"
            )
        if "/" in v or "\\" in v:
            raise ValueError(f"frame_pattern must be a bare filename, got {v!r}")
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "ExtractionConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in ExtractionConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class FeatureConfig(BaseModel):
    """Configuration for COLMAP feature extraction.

    Attributes:
        single_camera: Assume every frame shares one camera model.
        use_gpu: Run SIFT extraction on the GPU.
        max_image_size: Maximum image dimension for SIFT extraction.
    """

    model_config = ConfigDict(extra="allow")

    single_camera: bool = True
    use_gpu: bool = True
    max_image_size: int = Field(default=4096, gt=0)

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "FeatureConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in FeatureConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class MatchingConfig(BaseModel):
    """Configuration for COLMAP sequential matching.

    Attributes:
        overlap: Number of neighbouring frames each frame is matched against.
    """

    model_config = ConfigDict(extra="allow")

    overlap: int = Field(default=15, gt=0)

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "MatchingConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in MatchingConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class MapperConfig(BaseModel):
    """Configuration for the sparse reconstruction stage.

    Attributes:
        engine: Mapping engine (glomap or colmap).
        num_threads: Thread count for the COLMAP mapper (None = all CPUs).
            Ignored by GLOMAP.
    """

    model_config = ConfigDict(extra="allow")

    engine: MapperEngine = MapperEngine.GLOMAP
    num_threads: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "MapperConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in MapperConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class ExportConfig(BaseModel):
    """Configuration for the best-effort text export of the sparse model.

    Attributes:
        enabled: Run model_converter after mapping.
        output_type: model_converter output type.
    """

    model_config = ConfigDict(extra="allow")

    enabled: bool = True
    output_type: Literal["TXT", "BIN", "PLY"] = "TXT"

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "ExportConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in ExportConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class RuntimeConfig(BaseModel):
    """Configuration for batch execution.

    Attributes:
        force: Re-process videos whose scene directory already exists.
        quiet: Suppress the progress bar.
        max_workers: Number of videos processed concurrently (1 = sequential).
        gpu_slots: Number of GPU-bound stages allowed to run at once when
            max_workers > 1.
    """

    model_config = ConfigDict(extra="allow")

    force: bool = False
    quiet: bool = False
    max_workers: int = Field(default=1, ge=1)
    gpu_slots: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "RuntimeConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in RuntimeConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class BatchConfig(BaseModel):
    """Top-level configuration for a videosfm batch run.

    Attributes:
        scenes_dir: Root directory holding one scene directory per video.
        tools: External executable locations.
        extraction: Frame extraction configuration.
        features: Feature extraction configuration.
        matching: Sequential matching configuration.
        mapper: Mapping engine configuration.
        export: Text export configuration.
        runtime: Batch execution configuration.
    """

    model_config = ConfigDict(extra="allow")

    scenes_dir: str = "scenes"

    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    features: FeatureConfig = Field(default_factory=FeatureConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    mapper: MapperConfig = Field(default_factory=MapperConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @model_validator(mode="after")
    def check_cross_section_constraints(self) -> "BatchConfig":
        """Validate cross-section constraints and warn about extra fields."""
        if self.mapper.engine == MapperEngine.GLOMAP and self.mapper.num_threads:
            logger.warning(
                "mapper.num_threads=%d is only used by the colmap engine and "
                "will be ignored with glomap.",
                self.mapper.num_threads,
            )

        if self.runtime.gpu_slots > self.runtime.max_workers:
            logger.info(
                "runtime.gpu_slots=%d exceeds max_workers=%d; GPU stages are "
                "effectively unthrottled",
                self.runtime.gpu_slots,
                self.runtime.max_workers,
            )

        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in BatchConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )

        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "BatchConfig":
        """Load configuration from a YAML file.

        Missing fields use their default values.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ValueError: If validation fails (with all errors collected).
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}

        if not isinstance(data, dict):
            raise ValueError(
                f"Configuration file {path} must contain a mapping, "
                f"got {type(data).__name__}"
            )

        for section in ("tools", "extraction", "features", "matching", "mapper", "export", "runtime"):
            if section not in data:
                logger.debug("Using default: %s (all defaults)", section)

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ValueError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

        return config

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        loc = err["loc"]
        path_parts = []
        for part in loc:
            if isinstance(part, int) and path_parts:
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts)
        lines.append(f"  {path}: {err['msg']}")

    return "\n".join(lines)
