"""Tests for per-video stage sequencing and batch control."""

import logging
import os
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from videosfm.config import BatchConfig, MapperEngine, RuntimeConfig
from videosfm.errors import DirectoryCreationError, ToolNotFound
from videosfm.layout import materialize
from videosfm.pipeline import (
    Pipeline,
    Stage,
    Status,
    build_pipeline_context,
    make_jobs,
    process_video,
    run_batch,
)
from videosfm.tools import ToolPaths

FULL_SEQUENCE = [
    "ffmpeg",
    "feature_extractor",
    "sequential_matcher",
    "mapper",
    "model_converter",
    "model_converter",
]


def test_make_jobs_assigns_stable_indices(tmp_path: Path):
    """Test that jobs get 1-based indices, the batch total, and the stem as name."""
    jobs = make_jobs([tmp_path / "a.mp4", tmp_path / "sub" / "b.MOV", tmp_path / "c.mkv"])

    assert [j.index for j in jobs] == [1, 2, 3]
    assert all(j.total == 3 for j in jobs)
    assert [j.name for j in jobs] == ["a", "b", "c"]
    assert jobs[1].tag == "(2/3) b"


def test_process_video_completes_full_sequence(
    toolchain, fake_tools, batch_config, make_videos
):
    """Test that a successful video runs every stage in order and exports twice."""
    (video,) = make_videos("clip.mp4")
    ctx = build_pipeline_context(batch_config, tools=fake_tools)
    (job,) = make_jobs([video])

    outcome = process_video(job, ctx)

    assert outcome.status == Status.COMPLETED
    assert toolchain.calls_for("clip") == FULL_SEQUENCE

    scene = Path(batch_config.scenes_dir) / "clip"
    assert (scene / "images" / "frame_000001.jpg").exists()
    assert (scene / "database.db").exists()
    assert (scene / "sparse" / "0" / "cameras.bin").exists()
    # Text export colocated with the model and flattened into sparse/
    assert (scene / "sparse" / "0" / "cameras.txt").exists()
    assert (scene / "sparse" / "cameras.txt").exists()


def test_process_video_uses_resolved_executables(
    toolchain, fake_tools, batch_config, make_videos
):
    """Test that each stage invokes the executable chosen for it."""
    (video,) = make_videos("clip.mp4")
    ctx = build_pipeline_context(batch_config, tools=fake_tools)
    process_video(make_jobs([video])[0], ctx)

    tools_used = [tool for tool, _, _ in toolchain.calls]
    assert tools_used == ["ffmpeg", "colmap", "colmap", "glomap", "colmap", "colmap"]
    assert toolchain.commands[0][0] == str(fake_tools.extractor)


def test_stage_environment_prepends_tool_dirs(
    toolchain, fake_tools, batch_config, make_videos
):
    """Test that subprocesses receive PATH with the tool directories first."""
    (video,) = make_videos("clip.mp4")
    ctx = build_pipeline_context(batch_config, tools=fake_tools)
    process_video(make_jobs([video])[0], ctx)

    env = toolchain.envs[0]
    assert env is not None
    first = env["PATH"].split(os.pathsep)[0]
    assert first == str(fake_tools.extractor.parent)


def test_existing_scene_is_skipped_without_touching_it(
    toolchain, fake_tools, batch_config, make_videos
):
    """Test that an existing scene root skips the video wholesale."""
    (video,) = make_videos("clip.mp4")
    scene = Path(batch_config.scenes_dir) / "clip"
    scene.mkdir(parents=True)
    (scene / "marker.txt").write_text("keep")

    ctx = build_pipeline_context(batch_config, tools=fake_tools)
    outcome = process_video(make_jobs([video])[0], ctx)

    assert outcome.status == Status.SKIPPED
    assert toolchain.calls == []
    assert (scene / "marker.txt").read_text() == "keep"
    assert not (scene / "images").exists()


def test_extract_without_frames_fails(toolchain, fake_tools, batch_config, make_videos):
    """Test that ffmpeg exiting 0 with no frames is a failed extract stage."""
    (video,) = make_videos("clip.mp4")
    toolchain.no_frames.add("clip")
    ctx = build_pipeline_context(batch_config, tools=fake_tools)

    outcome = process_video(make_jobs([video])[0], ctx)

    assert outcome.status == Status.FAILED
    assert outcome.failed_stage == Stage.EXTRACT
    assert "no output" in outcome.reason
    assert toolchain.calls_for("clip") == ["ffmpeg"]


@pytest.mark.parametrize(
    "subcommand,stage,calls",
    [
        ("ffmpeg", Stage.EXTRACT, 1),
        ("feature_extractor", Stage.FEATURES, 2),
        ("sequential_matcher", Stage.MATCH, 3),
        ("mapper", Stage.MAPPER, 4),
    ],
)
def test_stage_failure_stops_the_video(
    toolchain, fake_tools, batch_config, make_videos, subcommand, stage, calls
):
    """Test that a failing stage ends the video with that stage recorded."""
    (video,) = make_videos("clip.mp4")
    toolchain.fail.add((subcommand, "clip"))
    ctx = build_pipeline_context(batch_config, tools=fake_tools)

    outcome = process_video(make_jobs([video])[0], ctx)

    assert outcome.status == Status.FAILED
    assert outcome.failed_stage == stage
    assert len(toolchain.calls_for("clip")) == calls


def test_launch_failure_is_stage_failure(toolchain, fake_tools, batch_config, make_videos):
    """Test that a tool that cannot be launched fails its stage."""
    (video,) = make_videos("clip.mp4")
    toolchain.missing.add("glomap")
    ctx = build_pipeline_context(batch_config, tools=fake_tools)

    outcome = process_video(make_jobs([video])[0], ctx)

    assert outcome.status == Status.FAILED
    assert outcome.failed_stage == Stage.MAPPER
    assert "could not be launched" in outcome.reason


def test_missing_model_skips_export(toolchain, fake_tools, batch_config, make_videos):
    """Test that a mapper without sparse/0 still completes, with no export."""
    (video,) = make_videos("clip.mp4")
    toolchain.no_model.add("clip")
    ctx = build_pipeline_context(batch_config, tools=fake_tools)

    outcome = process_video(make_jobs([video])[0], ctx)

    assert outcome.status == Status.COMPLETED
    assert "model_converter" not in toolchain.calls_for("clip")


def test_export_failure_is_not_fatal(
    toolchain, fake_tools, batch_config, make_videos, caplog
):
    """Test that model_converter failures only warn."""
    (video,) = make_videos("clip.mp4")
    toolchain.fail.add(("model_converter", "clip"))
    ctx = build_pipeline_context(batch_config, tools=fake_tools)

    with caplog.at_level(logging.WARNING):
        outcome = process_video(make_jobs([video])[0], ctx)

    assert outcome.status == Status.COMPLETED
    assert toolchain.calls_for("clip").count("model_converter") == 2
    assert "model export" in caplog.text


def test_export_runs_with_output_suppressed(
    toolchain, fake_tools, batch_config, make_videos
):
    """Test that model_converter output is discarded."""
    (video,) = make_videos("clip.mp4")
    ctx = build_pipeline_context(batch_config, tools=fake_tools)

    with patch("videosfm.pipeline.process.subprocess.run", side_effect=toolchain) as m_run:
        process_video(make_jobs([video])[0], ctx)

    export_calls = [c for c in m_run.call_args_list if "model_converter" in c.args[0]]
    assert len(export_calls) == 2
    for call in export_calls:
        assert call.kwargs["stdout"] == subprocess.DEVNULL
        assert call.kwargs["stderr"] == subprocess.DEVNULL


def test_run_batch_is_idempotent(toolchain, fake_tools, batch_config, make_videos):
    """Test that a second run over the same inputs runs no stages."""
    videos = make_videos("a.mp4", "b.mp4")

    first = run_batch(videos, batch_config, tools=fake_tools)
    n_calls = len(toolchain.calls)
    second = run_batch(videos, batch_config, tools=fake_tools)

    assert first.completed == 2
    assert second.skipped == 2
    assert len(toolchain.calls) == n_calls


def test_force_reprocesses_completed_scene(
    toolchain, fake_tools, batch_config, make_videos
):
    """Test that force re-runs every stage and clears the old scene."""
    (video,) = make_videos("clip.mp4")
    run_batch([video], batch_config, tools=fake_tools)
    stale = Path(batch_config.scenes_dir) / "clip" / "images" / "frame_999999.jpg"
    stale.write_bytes(b"old")

    batch_config.runtime.force = True
    summary = run_batch([video], batch_config, tools=fake_tools)

    assert summary.completed == 1
    assert toolchain.calls_for("clip") == FULL_SEQUENCE * 2
    assert not stale.exists()


def test_failure_isolation(toolchain, fake_tools, batch_config, make_videos):
    """Test that one video failing at matching does not affect the others."""
    videos = make_videos("a.mp4", "b.mp4", "c.mp4")
    toolchain.fail.add(("sequential_matcher", "b"))

    summary = run_batch(videos, batch_config, tools=fake_tools)

    assert [o.status for o in summary.outcomes] == [
        Status.COMPLETED,
        Status.FAILED,
        Status.COMPLETED,
    ]
    assert summary.failures[0].failed_stage == Stage.MATCH
    assert summary.failed == 1
    assert summary.completed == 2
    assert summary.exit_code == 0
    assert toolchain.calls_for("c") == FULL_SEQUENCE


def test_all_failed_gives_nonzero_exit(toolchain, fake_tools, batch_config, make_videos):
    """Test that the exit code is non-zero only when every job failed."""
    videos = make_videos("a.mp4", "b.mp4")
    toolchain.fail.update({("ffmpeg", "a"), ("mapper", "b")})

    summary = run_batch(videos, batch_config, tools=fake_tools)

    assert summary.failed == 2
    assert summary.exit_code == 1


def test_same_stem_in_different_folders_is_skipped(
    toolchain, fake_tools, batch_config, make_videos
):
    """Test that a second video with an already-used stem does not collide."""
    (first,) = make_videos("a.mp4", subdir="one")
    (second,) = make_videos("a.mp4", subdir="two")

    summary = run_batch([first, second], batch_config, tools=fake_tools)

    assert summary.outcomes[1].reason == "scene name already used in this batch"
    ffmpeg_inputs = [c[c.index("-i") + 1] for c in toolchain.commands if "-i" in c]
    assert ffmpeg_inputs == [str(first)]


def test_same_stem_is_skipped_even_when_forced(
    toolchain, fake_tools, batch_config, make_videos
):
    """Test that force does not let a duplicate stem overwrite its sibling."""
    (first,) = make_videos("a.mp4", subdir="one")
    (second,) = make_videos("a.mov", subdir="two")
    batch_config.runtime.force = True

    summary = run_batch([first, second], batch_config, tools=fake_tools)

    assert [o.status for o in summary.outcomes] == [Status.COMPLETED, Status.SKIPPED]
    assert toolchain.calls_for("a") == FULL_SEQUENCE


def test_scenes_are_disjoint(toolchain, fake_tools, batch_config, make_videos):
    """Test that each video's stages only touch its own scene directory."""
    videos = make_videos("a.mp4", "b.mp4", "c.mp4")
    run_batch(videos, batch_config, tools=fake_tools)

    scenes_dir = Path(batch_config.scenes_dir)
    for command in toolchain.commands:
        paths = [a for a in command[1:] if a.startswith(str(scenes_dir))]
        scene_names = {Path(p).relative_to(scenes_dir).parts[0] for p in paths}
        assert len(scene_names) == 1


def test_colmap_engine_uses_colmap_mapper(toolchain, tmp_path, batch_config, make_videos):
    """Test that the COLMAP engine maps with colmap and a thread count."""
    exe = tmp_path / "colmap"
    exe.write_text("")
    ffmpeg = tmp_path / "ffmpeg"
    ffmpeg.write_text("")
    tools = ToolPaths(extractor=ffmpeg, feature_tool=exe, mapper=exe)
    batch_config.mapper.engine = MapperEngine.COLMAP
    batch_config.mapper.num_threads = 3
    (video,) = make_videos("clip.mp4")

    summary = run_batch([video], batch_config, tools=tools)

    assert summary.completed == 1
    mapper_cmd = next(c for c in toolchain.commands if c[1] == "mapper")
    assert mapper_cmd[0] == str(exe)
    assert mapper_cmd[-2:] == ["--Mapper.num_threads", "3"]


def test_missing_tool_aborts_batch(batch_config, make_videos, tmp_path):
    """Test that an unresolvable tool fails before any video is touched."""
    batch_config.tools.install_dir = str(tmp_path / "nothing")
    batch_config.tools.search_path = False
    videos = make_videos("a.mp4")

    with pytest.raises(ToolNotFound):
        run_batch(videos, batch_config)

    assert not (Path(batch_config.scenes_dir) / "a").exists()


def test_unexpected_error_is_contained(
    toolchain, fake_tools, batch_config, make_videos, caplog
):
    """Test that an unexpected exception fails only the current video."""
    videos = make_videos("a.mp4", "b.mp4")

    def flaky_list_frames(layout):
        if layout.scene_root.name == "a":
            raise RuntimeError("Simulated failure")
        return [layout.images_dir / "frame_000001.jpg"]

    with patch(
        "videosfm.pipeline.stages.extraction.list_frames", side_effect=flaky_list_frames
    ):
        with caplog.at_level(logging.ERROR):
            summary = run_batch(videos, batch_config, tools=fake_tools)

    assert summary.outcomes[0].status == Status.FAILED
    assert summary.outcomes[0].failed_stage == Stage.EXTRACT
    assert summary.outcomes[1].status == Status.COMPLETED
    assert "processing failed" in caplog.text


def test_progress_markers_logged(
    toolchain, fake_tools, batch_config, make_videos, caplog
):
    """Test that every stage transition logs a numbered marker."""
    (video,) = make_videos("clip.mp4")

    with caplog.at_level(logging.INFO):
        run_batch([video], batch_config, tools=fake_tools)

    for marker in ("[1/4]", "[2/4]", "[3/4]", "[4/4]"):
        assert marker in caplog.text
    assert "1 completed, 0 skipped, 0 failed" in caplog.text


def test_parallel_batch_preserves_order_and_isolation(
    toolchain, fake_tools, tmp_path, make_videos, caplog
):
    """Test that concurrent processing returns outcomes in input order."""
    config = BatchConfig(
        scenes_dir=str(tmp_path / "scenes"),
        runtime=RuntimeConfig(quiet=True, max_workers=3, gpu_slots=1),
    )
    videos = make_videos("a.mp4", "b.mp4", "c.mp4", "d.mp4")
    toolchain.fail.add(("feature_extractor", "c"))

    with patch("videosfm.pipeline.builder.os.cpu_count", return_value=8):
        with caplog.at_level(logging.INFO):
            summary = run_batch(videos, config, tools=fake_tools)

    assert [o.video_name for o in summary.outcomes] == ["a", "b", "c", "d"]
    assert [o.status for o in summary.outcomes] == [
        Status.COMPLETED,
        Status.COMPLETED,
        Status.FAILED,
        Status.COMPLETED,
    ]
    # Captured tool output is tagged with the job
    assert "[a] ffmpeg ffmpeg output" in caplog.text
    for scene in ("a", "b", "d"):
        assert toolchain.calls_for(scene) == FULL_SEQUENCE


def test_pipeline_class_delegates(toolchain, fake_tools, batch_config, make_videos):
    """Test that Pipeline.run is equivalent to run_batch."""
    videos = make_videos("a.mp4")

    summary = Pipeline(batch_config, tools=fake_tools).run(videos)

    assert summary.completed == 1


def test_stems_differing_only_in_case_share_a_scene(
    toolchain, fake_tools, batch_config, make_videos
):
    """Test that stems equal up to case are treated as the same scene."""
    (first,) = make_videos("Clip.mp4", subdir="one")
    (second,) = make_videos("clip.MP4", subdir="two")
    batch_config.runtime.force = True

    summary = run_batch([first, second], batch_config, tools=fake_tools)

    assert [o.status for o in summary.outcomes] == [Status.COMPLETED, Status.SKIPPED]
    assert summary.outcomes[1].reason == "scene name already used in this batch"
    assert toolchain.calls_for("Clip") == FULL_SEQUENCE
    assert toolchain.calls_for("clip") == []


def test_directory_creation_failure_fails_only_that_video(
    toolchain, fake_tools, batch_config, make_videos
):
    """Test that an unwritable scene fails its video and the batch carries on."""
    videos = make_videos("a.mp4", "b.mp4")

    def flaky_materialize(layout, reset=False):
        if layout.scene_root.name == "a":
            raise DirectoryCreationError(layout.images_dir, "Permission denied")
        materialize(layout, reset=reset)

    with patch("videosfm.pipeline.runner.materialize", side_effect=flaky_materialize):
        summary = run_batch(videos, batch_config, tools=fake_tools)

    failed, completed = summary.outcomes
    assert failed.status == Status.FAILED
    assert failed.failed_stage == Stage.EXTRACT
    assert str(Path(batch_config.scenes_dir) / "a" / "images") in failed.reason
    assert completed.status == Status.COMPLETED
    assert toolchain.calls_for("a") == []
    assert toolchain.calls_for("b") == FULL_SEQUENCE
    assert summary.exit_code == 0


def test_parallel_gpu_stages_respect_slot_limit(
    toolchain, fake_tools, tmp_path, make_videos
):
    """Test that features and mapper never exceed the GPU slots while ffmpeg overlaps."""
    config = BatchConfig(
        scenes_dir=str(tmp_path / "scenes"),
        runtime=RuntimeConfig(quiet=True, max_workers=3, gpu_slots=1),
    )
    videos = make_videos("a.mp4", "b.mp4", "c.mp4")
    toolchain.delay.update({"ffmpeg": 0.2, "feature_extractor": 0.05, "mapper": 0.05})

    with patch("videosfm.pipeline.builder.os.cpu_count", return_value=8):
        summary = run_batch(videos, config, tools=fake_tools)

    assert summary.completed == 3
    assert toolchain.peak["gpu"] == 1
    assert toolchain.peak["ffmpeg"] > 1
