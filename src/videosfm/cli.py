"""Command-line interface for videosfm."""

import argparse
import logging
import sys
from pathlib import Path

from videosfm import __version__
from videosfm.config import BatchConfig, MapperEngine
from videosfm.errors import ToolNotFound, VideoSfmError
from videosfm.pipeline.outcomes import BatchSummary, Status


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging for CLI commands."""
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def load_config(
    config_path: Path | None = None,
    tool: str | None = None,
    scenes_dir: str | None = None,
    force: bool = False,
    ffmpeg_path: str | None = None,
    tool_path: str | None = None,
    colmap_path: str | None = None,
    workers: int | None = None,
    quiet: bool = False,
) -> BatchConfig:
    """Load a config file (or defaults) and apply command-line overrides.

    Exits with status 1 if the config file is missing or invalid.
    """
    if config_path is not None:
        if not config_path.exists():
            print(f"Error: Config file not found: {config_path}", file=sys.stderr)
            sys.exit(1)
        try:
            config = BatchConfig.from_yaml(config_path)
        except Exception as e:
            print(f"Error: Failed to load config: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        config = BatchConfig()

    if tool is not None:
        config.mapper.engine = MapperEngine(tool)
    if scenes_dir is not None:
        config.scenes_dir = scenes_dir
    if force:
        config.runtime.force = True
    if quiet:
        config.runtime.quiet = True
    if ffmpeg_path is not None:
        config.tools.ffmpeg_path = ffmpeg_path
    if tool_path is not None:
        config.tools.tool_path = tool_path
    if colmap_path is not None:
        config.tools.colmap_path = colmap_path
    if workers is not None:
        if workers < 1:
            print(f"Error: --workers must be at least 1, got {workers}", file=sys.stderr)
            sys.exit(1)
        config.runtime.max_workers = workers

    return config


def print_summary(summary: BatchSummary, scenes_dir: str) -> None:
    """Print the end-of-run report."""
    print(f"\n{'=' * 70}")
    print("Batch Summary")
    print(f"{'=' * 70}\n")

    for outcome in summary.outcomes:
        if outcome.status == Status.COMPLETED:
            print(f"  [OK]      {outcome.video_name}")
        elif outcome.status == Status.SKIPPED:
            print(f"  [SKIP]    {outcome.video_name}")
        else:
            print(f"  [FAILED]  {outcome.video_name} at {outcome.failed_stage}: {outcome.reason}")

    print(f"\n{summary.format_line()}")
    print(f"Results are in {scenes_dir}")
    print(f"{'=' * 70}\n")


def run_command(
    videos: list[Path],
    config: BatchConfig,
    verbose: bool = False,
) -> BatchSummary:
    """Run the batch pipeline over the given videos.

    Args:
        videos: Video files and/or directories of videos.
        config: Batch configuration (CLI overrides already applied).
        verbose: If True, set logging to DEBUG level.

    Returns:
        Batch summary. Exits with status 1 on batch-fatal errors.
    """
    configure_logging(verbose)

    from videosfm.io import collect_videos
    from videosfm.pipeline import run_batch

    try:
        video_paths = collect_videos(videos)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not video_paths:
        print("Error: No video files to process", file=sys.stderr)
        sys.exit(1)

    print(f"{'=' * 70}")
    print(f" Starting on {len(video_paths)} video(s) with {config.mapper.engine}...")
    print(f"{'=' * 70}")

    try:
        summary = run_batch(video_paths, config)
    except ToolNotFound as e:
        print(f"Error: {e}", file=sys.stderr)
        print(
            "Install the tool, add it to PATH, or pass its location explicitly.",
            file=sys.stderr,
        )
        sys.exit(1)
    except VideoSfmError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print_summary(summary, config.scenes_dir)
    return summary


def init_command(config_path: Path, config: BatchConfig) -> BatchConfig:
    """Write a complete config YAML with every default spelled out."""
    if config_path.exists():
        print(f"Error: Config file already exists: {config_path}", file=sys.stderr)
        sys.exit(1)

    config.to_yaml(config_path)
    print(f"[OK] Configuration saved to: {config_path}")
    return config


def check_tools_command(config: BatchConfig, verbose: bool = False) -> None:
    """Resolve the external tools and report where each was found."""
    configure_logging(verbose)

    from videosfm.tools import resolve_tools

    try:
        tools = resolve_tools(config)
    except ToolNotFound as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"\n{'=' * 70}")
    print(f"Tools for the {config.mapper.engine} pipeline")
    print(f"{'=' * 70}\n")
    print(f"  {'extractor':15s} -> {tools.extractor}")
    print(f"  {'feature tool':15s} -> {tools.feature_tool}")
    print(f"  {'mapper':15s} -> {tools.mapper}")
    print()


def _add_tool_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to a config YAML file (CLI flags override it)",
    )
    parser.add_argument(
        "-t",
        "--tool",
        type=str,
        choices=[e.value for e in MapperEngine],
        default=None,
        help="Mapping engine (default: glomap)",
    )
    parser.add_argument(
        "--ffmpeg-path",
        type=str,
        default=None,
        help="Path to the ffmpeg executable",
    )
    parser.add_argument(
        "--tool-path",
        type=str,
        default=None,
        help="Path to the colmap or glomap executable used for mapping",
    )
    parser.add_argument(
        "--colmap-path",
        type=str,
        default=None,
        help="Path to colmap (features, matching, export) when mapping with glomap",
    )


def main() -> None:
    """Main entry point for the videosfm CLI."""
    parser = argparse.ArgumentParser(
        prog="videosfm",
        description="Convert videos into sparse photogrammetry reconstructions.",
        epilog="Example:\n    videosfm run video.mp4 video.mov",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Process videos into scenes",
    )
    run_parser.add_argument(
        "videos",
        type=Path,
        nargs="+",
        help="Video files or directories containing videos",
    )
    _add_tool_arguments(run_parser)
    run_parser.add_argument(
        "--scenes-dir",
        type=str,
        default=None,
        help="Directory holding one scene per video (default: scenes)",
    )
    run_parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Re-process videos whose scene directory already exists",
    )
    run_parser.add_argument(
        "-j",
        "--workers",
        type=int,
        default=None,
        help="Number of videos to process concurrently (default: 1)",
    )
    run_parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Hide the progress bar",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    # init subcommand
    init_parser = subparsers.add_parser(
        "init",
        help="Write a config YAML with all defaults",
    )
    init_parser.add_argument(
        "--output",
        type=Path,
        default=Path("videosfm.yaml"),
        help="Path to output config YAML file (default: videosfm.yaml)",
    )
    init_parser.add_argument(
        "-t",
        "--tool",
        type=str,
        choices=[e.value for e in MapperEngine],
        default=None,
        help="Mapping engine (default: glomap)",
    )
    init_parser.add_argument(
        "--scenes-dir",
        type=str,
        default=None,
        help="Directory holding one scene per video (default: scenes)",
    )

    # check-tools subcommand
    check_parser = subparsers.add_parser(
        "check-tools",
        help="Show where ffmpeg, colmap and glomap are found",
    )
    _add_tool_arguments(check_parser)
    check_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Dispatch
    if args.command == "run":
        config = load_config(
            config_path=args.config,
            tool=args.tool,
            scenes_dir=args.scenes_dir,
            force=args.force,
            ffmpeg_path=args.ffmpeg_path,
            tool_path=args.tool_path,
            colmap_path=args.colmap_path,
            workers=args.workers,
            quiet=args.quiet,
        )
        summary = run_command(args.videos, config, verbose=args.verbose)
        if summary.exit_code:
            sys.exit(summary.exit_code)
    elif args.command == "init":
        config = load_config(tool=args.tool, scenes_dir=args.scenes_dir)
        init_command(args.output, config)
    elif args.command == "check-tools":
        config = load_config(
            config_path=args.config,
            tool=args.tool,
            ffmpeg_path=args.ffmpeg_path,
            tool_path=args.tool_path,
            colmap_path=args.colmap_path,
        )
        check_tools_command(config, verbose=args.verbose)
    else:
        parser.print_help()
        sys.exit(1)
