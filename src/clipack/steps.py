"""Install step execution for clipack.

Runs a manifest's shell steps in order inside the build directory.
"""

import os
import subprocess
from collections.abc import Callable, Mapping
from pathlib import Path

from clipack.git import strip_pinning


class StepExecutionError(Exception):
    """Raised when an install step exits non-zero or cannot be started."""

    def __init__(self, step: str, exit_code: int | None, detail: str = "") -> None:
        self.step = step
        self.exit_code = exit_code
        message = f"Step failed (exit code {exit_code}): {step}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


# Called with each step line just before it runs
StepObserver = Callable[[str], None]


def build_environment(overlay: Mapping[str, str]) -> dict[str, str]:
    """Return the current environment with overlay applied.

    The calling process environment is not modified.
    """
    return {**os.environ, **{str(k): str(v) for k, v in overlay.items()}}


def prepare_steps(steps: list[str], follow_latest: bool) -> list[str]:
    """Return the step lines to run, unpinning clones when tracking latest."""
    if not follow_latest:
        return list(steps)
    return [strip_pinning(step) for step in steps]


def run_steps(
    steps: list[str],
    build_dir: Path,
    environment: Mapping[str, str] | None = None,
    on_step: StepObserver | None = None,
) -> None:
    """Execute step lines sequentially through the shell.

    Each step must succeed before the next runs. There is no timeout;
    a step blocks until its process exits.

    Args:
        steps: Shell command lines.
        build_dir: Working directory for every step.
        environment: Variables added to the inherited environment.
        on_step: Optional callback invoked with each line before it runs.

    Raises:
        StepExecutionError: On the first step that fails.
    """
    env = build_environment(environment or {})
    for step in steps:
        if on_step is not None:
            on_step(step)
        try:
            result = subprocess.run(
                step,
                shell=True,
                cwd=build_dir,
                env=env,
            )
        except OSError as e:
            raise StepExecutionError(step, None, str(e)) from e
        if result.returncode != 0:
            raise StepExecutionError(step, result.returncode)
