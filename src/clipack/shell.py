"""Shell integration for clipack.

Adds the clipack bin and man directories to the user's shell startup file.
clipack owns a delimited block in that file so it can be found again
without touching anything the user has written outside of it.
"""

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

BLOCK_BEGIN = "# >>> clipack paths >>>"
BLOCK_END = "# <<< clipack paths <<<"


class UnsupportedShellError(Exception):
    """Raised when the login shell has no known startup file syntax."""


class ShellKind(Enum):
    """Supported shells. Bash and zsh share POSIX export syntax."""

    BASH = "bash"
    ZSH = "zsh"
    FISH = "fish"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> "ShellKind":
        """Resolve the shell from ``$SHELL`` (basename only)."""
        env = os.environ if environ is None else environ
        name = Path(env.get("SHELL", "")).name
        try:
            return cls(name)
        except ValueError:
            return cls.UNSUPPORTED


def shell_config_path(kind: ShellKind, home: Path | None = None) -> Path:
    """Return the startup file for a shell.

    Raises:
        UnsupportedShellError: For ShellKind.UNSUPPORTED.
    """
    home = home or Path.home()
    if kind == ShellKind.BASH:
        return home / ".bashrc"
    if kind == ShellKind.ZSH:
        return home / ".zshrc"
    if kind == ShellKind.FISH:
        return home / ".config" / "fish" / "config.fish"
    msg = "Unsupported shell; set PATH manually"
    raise UnsupportedShellError(msg)


def path_export_block(kind: ShellKind, bin_dir: Path, man_dir: Path) -> str:
    """Return the delimited block that prepends bin_dir and man_dir.

    Raises:
        UnsupportedShellError: For ShellKind.UNSUPPORTED.
    """
    if kind == ShellKind.FISH:
        lines = [
            f'set -x PATH "{bin_dir}" $PATH',
            f'set -x MANPATH "{man_dir}" $MANPATH',
        ]
    elif kind in (ShellKind.BASH, ShellKind.ZSH):
        lines = [
            f'export PATH="{bin_dir}:$PATH"',
            f'export MANPATH="{man_dir}:$MANPATH"',
        ]
    else:
        msg = "Unsupported shell; set PATH manually"
        raise UnsupportedShellError(msg)
    return "\n".join([BLOCK_BEGIN, *lines, BLOCK_END]) + "\n"


def has_path_block(config_path: Path) -> bool:
    """Return True if config_path already contains the clipack block."""
    if not config_path.exists():
        return False
    return BLOCK_BEGIN in config_path.read_text()


def add_paths_to_shell_config(
    kind: ShellKind, bin_dir: Path, man_dir: Path, home: Path | None = None,
) -> tuple[Path, bool]:
    """Append the PATH/MANPATH block to the shell startup file.

    Creates the file and its parent directory if needed.

    Returns:
        (path, changed): the startup file, and False if the block was
        already present (no-op, idempotent).

    Raises:
        UnsupportedShellError: For ShellKind.UNSUPPORTED.
    """
    config_path = shell_config_path(kind, home)
    block = path_export_block(kind, bin_dir, man_dir)
    if has_path_block(config_path):
        return config_path, False

    content = config_path.read_text() if config_path.exists() else ""
    prefix = content.rstrip("\n") + "\n\n" if content.strip() else ""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(prefix + block)
    return config_path, True
