"""Test clipack version and basic imports."""

from importlib.metadata import version

from typer.testing import CliRunner

from clipack import __version__
from clipack.cli import app


class TestVersion:
    """Tests for clipack version and package structure."""

    def setup_method(self) -> None:
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_version_is_defined(self) -> None:
        """Verify that __version__ matches the installed package metadata."""
        # Given - version from pyproject.toml via package metadata
        expected = version("clipack")

        # When
        actual = __version__

        # Then
        assert actual == expected

    def test_cli_app_is_importable(self) -> None:
        assert app is not None
        assert app.info.name == "clipack"

    def test_version_flag(self) -> None:
        """Verify that --version prints the name and version."""
        # When
        result = self.runner.invoke(app, ["--version"])

        # Then
        assert result.exit_code == 0
        assert f"clipack {__version__}" in result.output

    def test_no_args_shows_help(self) -> None:
        result = self.runner.invoke(app, [])

        assert "install" in result.output
        assert "add-executables-path" in result.output
