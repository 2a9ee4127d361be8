"""Git operations for clipack.

Used by "latest" installs: resolving the checked-out revision of a build
and asking a remote for its current HEAD without cloning.
"""

import re
import shlex
import subprocess
from pathlib import Path

# Options of "git clone" that consume the following token
_CLONE_OPTIONS_WITH_VALUE = {
    "-b",
    "--branch",
    "--depth",
    "-o",
    "--origin",
    "-c",
    "--config",
    "--reference",
    "--separate-git-dir",
    "-u",
    "--upload-pack",
    "-j",
    "--jobs",
    "--filter",
    "--shallow-since",
    "--shallow-exclude",
    "--template",
}


# One "git clone" command, up to the next shell operator
_CLONE_COMMAND = re.compile(r"\bgit\s+clone\b[^;&|\n]*")
_PINNING_OPTION = re.compile(r"\s+(?:--branch(?:=|\s+)\S+|-b\s+\S+|--single-branch)(?=\s|$)")


class RevisionError(Exception):
    """Raised when a git revision cannot be resolved."""


def get_commit_hash(repo_dir: Path) -> str:
    """Get the HEAD commit hash of a git checkout.

    Raises:
        subprocess.CalledProcessError: If git rev-parse fails.
    """
    result = subprocess.run(
        ["git", "rev-parse", "HEAD"],
        cwd=repo_dir,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def git_ls_remote(url: str) -> str:
    """Get the HEAD commit hash from a remote repository without cloning.

    Args:
        url: Git URL of the remote repository.

    Returns:
        The full commit hash of the remote HEAD.

    Raises:
        RevisionError: If the remote is unreachable or has no HEAD ref.
    """
    try:
        result = subprocess.run(
            ["git", "ls-remote", url, "HEAD"],
            check=True,
            capture_output=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        stderr = getattr(e, "stderr", "") or ""
        msg = f"Could not query '{url}': {stderr.strip() or e}"
        raise RevisionError(msg) from e

    # Output format: "<hash>\tHEAD\n"
    output = result.stdout.strip()
    if not output:
        msg = f"Remote '{url}' returned no HEAD ref"
        raise RevisionError(msg)
    return output.split()[0]


def resolve_build_revision(build_dir: Path) -> str:
    """Find the commit a build directory was produced from.

    The build directory itself is checked first, then its immediate
    subdirectories in name order (a step like ``git clone <url>`` checks
    out into a subdirectory).

    Raises:
        RevisionError: If no git checkout is found.
    """
    candidates = [build_dir]
    if build_dir.is_dir():
        candidates += sorted(p for p in build_dir.iterdir() if p.is_dir())

    for candidate in candidates:
        if not (candidate / ".git").exists():
            continue
        try:
            return get_commit_hash(candidate)
        except subprocess.CalledProcessError as e:
            msg = f"Could not read revision of {candidate}: {e.stderr.strip()}"
            raise RevisionError(msg) from e

    msg = f"No git checkout found in build directory {build_dir}"
    raise RevisionError(msg)


def _split_step(step: str) -> list[str]:
    try:
        return shlex.split(step)
    except ValueError:
        return step.split()


def find_clone_url(steps: list[str]) -> str | None:
    """Return the repository URL of the first ``git clone`` step, if any."""
    for step in steps:
        tokens = _split_step(step)
        for i in range(len(tokens) - 1):
            if tokens[i] != "git" or tokens[i + 1] != "clone":
                continue
            args = iter(tokens[i + 2 :])
            for arg in args:
                if arg in ("&&", ";", "|", "||"):
                    break
                if arg in _CLONE_OPTIONS_WITH_VALUE:
                    next(args, None)
                    continue
                if arg.startswith("-"):
                    continue
                return arg
    return None


def strip_pinning(step: str) -> str:
    """Remove branch/tag pinning from a ``git clone`` step.

    Drops ``--branch <ref>``, ``-b <ref>``, ``--branch=<ref>`` and
    ``--single-branch`` so the clone follows the remote HEAD. Other
    steps are returned unchanged.
    """
    return _CLONE_COMMAND.sub(lambda m: _PINNING_OPTION.sub("", m.group(0)), step)
