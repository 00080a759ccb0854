"""Synchronous invocation of a single external stage."""

import logging
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from .outcomes import Stage, StageResult

logger = logging.getLogger(__name__)

# Output modes
INHERIT = "inherit"  # stream straight to the terminal
SUPPRESS = "suppress"  # discard
CAPTURE = "capture"  # buffer, then log tagged with the job
OUTPUT_MODES = (INHERIT, SUPPRESS, CAPTURE)


def run_stage(
    stage: Stage,
    executable: Path,
    arguments: Sequence[str | Path],
    env: Mapping[str, str] | None = None,
    output: str = INHERIT,
    tag: str = "",
) -> StageResult:
    """Run one external tool to completion.

    Only the exit status is examined; the tool's diagnostics are passed
    through (or captured and logged) untouched.

    Args:
        stage: Stage being run (for the result and log messages).
        executable: Resolved executable path.
        arguments: Arguments after the executable.
        env: Environment for the subprocess.
        output: One of "inherit", "suppress" or "capture".
        tag: Job tag prefixed to captured output lines.

    Returns:
        StageResult with success=False on non-zero exit or launch failure.
    """
    if output not in OUTPUT_MODES:
        raise ValueError(f"Invalid output mode {output!r}. Valid modes: {OUTPUT_MODES}")

    command = [str(executable), *(str(a) for a in arguments)]
    logger.debug("Running %s: %s", stage, " ".join(command))

    kwargs = {}
    if output == SUPPRESS:
        kwargs = {"stdout": subprocess.DEVNULL, "stderr": subprocess.DEVNULL}
    elif output == CAPTURE:
        kwargs = {
            "stdout": subprocess.PIPE,
            "stderr": subprocess.STDOUT,
            "text": True,
            "errors": "replace",
        }

    try:
        proc = subprocess.run(
            command,
            env=dict(env) if env is not None else None,
            check=False,
            **kwargs,
        )
    except OSError as e:
        logger.error("%s: failed to launch %s: %s", stage, executable, e)
        return StageResult(stage=stage, success=False, exit_code=None)

    if output == CAPTURE and proc.stdout:
        prefix = f"[{tag}] " if tag else ""
        for line in proc.stdout.splitlines():
            logger.info("%s%s", prefix, line)

    if proc.returncode != 0:
        logger.debug("%s exited with code %d", stage, proc.returncode)
    return StageResult(stage=stage, success=proc.returncode == 0, exit_code=proc.returncode)
