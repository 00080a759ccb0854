"""Shared pytest fixtures for videosfm tests."""

import re
import subprocess
import threading
import time
from collections import Counter
from pathlib import Path
from unittest.mock import patch

import pytest

from videosfm.config import BatchConfig, RuntimeConfig
from videosfm.tools import ToolPaths


class FakeToolchain:
    """Stand-in for ffmpeg / colmap / glomap at the subprocess boundary.

    Each call is recorded as ``(tool, subcommand, scene)``. Outputs are
    written to disk the way the real tools would, so the filesystem contract
    between stages is exercised.

    Attributes:
        fail: Set of (subcommand, scene) pairs that exit non-zero.
            The ffmpeg subcommand is "ffmpeg".
        no_frames: Scenes for which ffmpeg exits 0 but writes nothing.
        no_model: Scenes for which the mapper writes no ``sparse/0``.
        missing: Tool names whose launch raises FileNotFoundError.
        delay: Seconds each subcommand takes, keyed by subcommand.
        peak: Highest number of simultaneous calls per subcommand, plus
            "gpu" for feature_extractor and mapper together.
    """

    GPU_SUBCOMMANDS = {"feature_extractor", "mapper"}

    def __init__(self):
        self.calls: list[tuple[str, str, str]] = []
        self.commands: list[list[str]] = []
        self.envs: list[dict | None] = []
        self.fail: set[tuple[str, str]] = set()
        self.no_frames: set[str] = set()
        self.no_model: set[str] = set()
        self.missing: set[str] = set()
        self.delay: dict[str, float] = {}
        self.peak: Counter = Counter()
        self._active: Counter = Counter()
        self._lock = threading.Lock()

    def calls_for(self, scene: str) -> list[str]:
        """Subcommands run for a scene, in order."""
        return [sub for _, sub, s in self.calls if s == scene]

    def __call__(self, command, env=None, check=False, **kwargs):
        tool = Path(command[0]).name
        args = list(command[1:])
        self.commands.append(list(command))
        self.envs.append(env)

        if tool in self.missing:
            raise FileNotFoundError(2, "No such file or directory", command[0])

        if tool == "ffmpeg":
            subcommand = "ffmpeg"
            scene = Path(args[args.index("-i") + 1]).stem
        else:
            subcommand = args[0]
            scene = self._scene_from_args(args)

        self.calls.append((tool, subcommand, scene))
        returncode = 1 if (subcommand, scene) in self.fail else 0

        keys = [subcommand]
        if subcommand in self.GPU_SUBCOMMANDS:
            keys.append("gpu")
        with self._lock:
            for key in keys:
                self._active[key] += 1
                self.peak[key] = max(self.peak[key], self._active[key])
        try:
            time.sleep(self.delay.get(subcommand, 0))
        finally:
            with self._lock:
                for key in keys:
                    self._active[key] -= 1

        if returncode == 0:
            self._write_outputs(subcommand, scene, args)

        stdout = f"{tool} {subcommand} output\n" if kwargs.get("stdout") == subprocess.PIPE else None
        return subprocess.CompletedProcess(command, returncode, stdout=stdout)

    @staticmethod
    def _scene_from_args(args: list[str]) -> str:
        if "--database_path" in args:
            return Path(args[args.index("--database_path") + 1]).parent.name
        input_path = Path(args[args.index("--input_path") + 1])
        # <scene>/sparse/0
        return input_path.parent.parent.name

    def _write_outputs(self, subcommand: str, scene: str, args: list[str]) -> None:
        if subcommand == "ffmpeg":
            if scene in self.no_frames:
                return
            pattern = args[-1]
            for i in (1, 2, 3):
                Path(re.sub(r"%0?\d*d", f"{i:06d}", pattern)).write_bytes(b"jpg")
        elif subcommand == "feature_extractor":
            Path(args[args.index("--database_path") + 1]).write_bytes(b"db")
        elif subcommand == "mapper":
            if scene in self.no_model:
                return
            model_dir = Path(args[args.index("--output_path") + 1]) / "0"
            model_dir.mkdir(parents=True, exist_ok=True)
            (model_dir / "cameras.bin").write_bytes(b"bin")
        elif subcommand == "model_converter":
            output = Path(args[args.index("--output_path") + 1])
            (output / "cameras.txt").write_text("# cameras\n")


@pytest.fixture
def toolchain():
    """Patch subprocess.run in the stage runner with a FakeToolchain."""
    fake = FakeToolchain()
    with patch("videosfm.pipeline.process.subprocess.run", side_effect=fake):
        yield fake


@pytest.fixture
def fake_tools(tmp_path: Path) -> ToolPaths:
    """ToolPaths pointing at placeholder executables."""
    bin_dir = tmp_path / "tools" / "bin"
    bin_dir.mkdir(parents=True)
    paths = {}
    for name in ("ffmpeg", "colmap", "glomap"):
        exe = bin_dir / name
        exe.write_text("#!/bin/sh\n")
        paths[name] = exe
    return ToolPaths(
        extractor=paths["ffmpeg"],
        feature_tool=paths["colmap"],
        mapper=paths["glomap"],
    )


@pytest.fixture
def batch_config(tmp_path: Path) -> BatchConfig:
    """Minimal BatchConfig writing scenes under tmp_path."""
    return BatchConfig(
        scenes_dir=str(tmp_path / "scenes"),
        runtime=RuntimeConfig(quiet=True),
    )


@pytest.fixture
def make_videos(tmp_path: Path):
    """Factory creating empty video files under tmp_path/videos."""

    def _make(*names: str, subdir: str = "videos") -> list[Path]:
        video_dir = tmp_path / subdir
        video_dir.mkdir(parents=True, exist_ok=True)
        paths = []
        for name in names:
            path = video_dir / name
            path.write_bytes(b"")
            paths.append(path)
        return paths

    return _make
