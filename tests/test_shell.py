"""Tests for shell startup file integration."""

from pathlib import Path

import pytest

from clipack.shell import (
    BLOCK_BEGIN,
    BLOCK_END,
    ShellKind,
    UnsupportedShellError,
    add_paths_to_shell_config,
    has_path_block,
    path_export_block,
    shell_config_path,
)

BIN = Path("/opt/clipack/bin")
MAN = Path("/opt/clipack/man")


class TestShellKind:
    """Tests for ShellKind.from_environment."""

    @pytest.mark.parametrize(
        ("shell", "expected"),
        [
            ("/bin/bash", ShellKind.BASH),
            ("/usr/local/bin/zsh", ShellKind.ZSH),
            ("/usr/bin/fish", ShellKind.FISH),
            ("/bin/tcsh", ShellKind.UNSUPPORTED),
            ("", ShellKind.UNSUPPORTED),
        ],
    )
    def test_from_shell_variable(self, shell: str, expected: ShellKind) -> None:
        assert ShellKind.from_environment({"SHELL": shell}) == expected

    def test_unset_shell(self) -> None:
        assert ShellKind.from_environment({}) == ShellKind.UNSUPPORTED


class TestShellConfigPath:
    """Tests for shell_config_path."""

    @pytest.mark.parametrize(
        ("kind", "relative"),
        [
            (ShellKind.BASH, ".bashrc"),
            (ShellKind.ZSH, ".zshrc"),
            (ShellKind.FISH, ".config/fish/config.fish"),
        ],
    )
    def test_paths(self, tmp_path: Path, kind: ShellKind, relative: str) -> None:
        assert shell_config_path(kind, tmp_path) == tmp_path / relative

    def test_unsupported_raises(self, tmp_path: Path) -> None:
        with pytest.raises(UnsupportedShellError):
            shell_config_path(ShellKind.UNSUPPORTED, tmp_path)


class TestPathExportBlock:
    """Tests for path_export_block."""

    def test_posix_syntax(self) -> None:
        block = path_export_block(ShellKind.BASH, BIN, MAN)

        assert block.splitlines() == [
            BLOCK_BEGIN,
            'export PATH="/opt/clipack/bin:$PATH"',
            'export MANPATH="/opt/clipack/man:$MANPATH"',
            BLOCK_END,
        ]

    def test_zsh_matches_bash(self) -> None:
        assert path_export_block(ShellKind.ZSH, BIN, MAN) == path_export_block(ShellKind.BASH, BIN, MAN)

    def test_fish_syntax(self) -> None:
        block = path_export_block(ShellKind.FISH, BIN, MAN)

        assert 'set -x PATH "/opt/clipack/bin" $PATH' in block
        assert 'set -x MANPATH "/opt/clipack/man" $MANPATH' in block
        assert "export" not in block


class TestAddPathsToShellConfig:
    """Tests for add_paths_to_shell_config."""

    def test_creates_missing_file(self, tmp_path: Path) -> None:
        path, changed = add_paths_to_shell_config(ShellKind.BASH, BIN, MAN, home=tmp_path)

        assert changed is True
        assert path.read_text() == path_export_block(ShellKind.BASH, BIN, MAN)

    def test_preserves_existing_content(self, tmp_path: Path) -> None:
        """Verify user content outside the block is left intact."""
        # Given
        rc = tmp_path / ".zshrc"
        rc.write_text("alias ll='ls -l'\n")

        # When
        add_paths_to_shell_config(ShellKind.ZSH, BIN, MAN, home=tmp_path)

        # Then
        content = rc.read_text()
        assert content.startswith("alias ll='ls -l'\n\n")
        assert content.endswith(BLOCK_END + "\n")

    def test_is_idempotent(self, tmp_path: Path) -> None:
        """Verify a second call leaves the file unchanged."""
        path, _ = add_paths_to_shell_config(ShellKind.BASH, BIN, MAN, home=tmp_path)
        before = path.read_text()

        _, changed = add_paths_to_shell_config(ShellKind.BASH, BIN, MAN, home=tmp_path)

        assert changed is False
        assert path.read_text() == before
        assert has_path_block(path)

    def test_fish_creates_config_directory(self, tmp_path: Path) -> None:
        path, changed = add_paths_to_shell_config(ShellKind.FISH, BIN, MAN, home=tmp_path)

        assert changed is True
        assert path == tmp_path / ".config" / "fish" / "config.fish"
        assert path.is_file()

    def test_unsupported_writes_nothing(self, tmp_path: Path) -> None:
        with pytest.raises(UnsupportedShellError):
            add_paths_to_shell_config(ShellKind.UNSUPPORTED, BIN, MAN, home=tmp_path)
        assert list(tmp_path.iterdir()) == []


def test_has_path_block_missing_file(tmp_path: Path) -> None:
    assert has_path_block(tmp_path / ".bashrc") is False
