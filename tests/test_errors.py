"""Tests for error formatting utilities."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest
import typer
import yaml
from pydantic import ValidationError

from clipack import cli_logger, exit_codes
from clipack.cli import require_config
from clipack.config import ClipackConfig
from clipack.errors import format_validation_errors, handle_cli_error
from clipack.package_schema import PackageManifest


def _validation_error(data: dict) -> ValidationError:
    try:
        PackageManifest.model_validate(data)
    except ValidationError as e:
        return e
    pytest.fail("Expected ValidationError")


class TestFormatValidationErrors:
    """Tests for format_validation_errors function."""

    def test_missing_field(self) -> None:
        """Verify a missing field produces a clean message."""
        # Given
        error = _validation_error({"name": "foo", "post-install": {"scripts": [{"content": "echo"}]}})

        # When
        result = format_validation_errors(error)

        # Then - clean message without Pydantic URL
        assert "filename" in result
        assert "field is required" in result
        assert "pydantic.dev" not in result
        assert "For further information" not in result

    def test_list_type(self) -> None:
        error = _validation_error({"name": "foo", "install": {"steps": "make"}})

        result = format_validation_errors(error)

        assert "'install.steps': expected list" in result

    def test_mapping_type(self) -> None:
        error = _validation_error({"name": "foo", "install": ["make"]})

        assert "'install': expected mapping" in format_validation_errors(error)

    def test_multiple_errors_joined(self) -> None:
        error = _validation_error({"name": "foo", "tags": "cli", "install": {"binaries": "foo"}})

        result = format_validation_errors(error)

        assert "tags" in result
        assert "install.binaries" in result
        assert "; " in result


class TestRequireConfig:
    """Tests for require_config helper."""

    def test_returns_config(self, config: ClipackConfig) -> None:
        assert require_config().model_dump() == config.model_dump()

    def test_exits_when_missing(self, config_path: Path) -> None:
        """Verify exits with CONFIG_ERROR when no config exists."""
        # When/Then
        with pytest.raises(typer.Exit) as exc_info:
            require_config()

        assert exc_info.value.exit_code == exit_codes.CONFIG_ERROR

    def test_exits_when_invalid(self, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True)
        config_path.write_text("registry: [not, a, mapping]\n")

        with pytest.raises(typer.Exit) as exc_info:
            require_config()

        assert exc_info.value.exit_code == exit_codes.CONFIG_ERROR


class TestHandleCliError:
    """Tests for handle_cli_error function."""

    def test_handles_permission_error(self) -> None:
        """Verify PermissionError produces clean message and GENERAL_ERROR exit code."""
        # Given
        filename = "/opt/clipack/bin/foo"
        error = PermissionError(13, "Permission denied", filename)

        # When
        with patch.object(cli_logger, "error") as mock_error:
            exit_code = handle_cli_error(error)

        # Then
        assert exit_code == exit_codes.GENERAL_ERROR
        mock_error.assert_called_once()
        call_message = mock_error.call_args[0][0]
        assert "Permission denied" in call_message
        assert filename in call_message

    def test_handles_os_error_without_filename(self) -> None:
        with patch.object(cli_logger, "error") as mock_error:
            exit_code = handle_cli_error(OSError("Disk full"))

        assert exit_code == exit_codes.GENERAL_ERROR
        assert "Disk full" in mock_error.call_args[0][0]

    def test_handles_called_process_error(self) -> None:
        """Verify CalledProcessError shows the command and its exit code."""
        error = subprocess.CalledProcessError(128, ["git", "ls-remote", "https://example.com"])

        with patch.object(cli_logger, "error") as mock_error:
            exit_code = handle_cli_error(error)

        assert exit_code == exit_codes.GENERAL_ERROR
        call_message = mock_error.call_args[0][0]
        assert "128" in call_message
        assert "git ls-remote" in call_message

    def test_handles_validation_error(self) -> None:
        """Verify ValidationError maps to PACKAGE_INVALID."""
        error = _validation_error({"name": "foo", "install": {"steps": "make"}})

        with patch.object(cli_logger, "error") as mock_error:
            exit_code = handle_cli_error(error)

        assert exit_code == exit_codes.PACKAGE_INVALID
        call_message = mock_error.call_args[0][0]
        assert "install.steps" in call_message
        assert "pydantic.dev" not in call_message

    def test_handles_yaml_error(self) -> None:
        captured: yaml.YAMLError | None = None
        try:
            yaml.safe_load(":\n  :\n    - ][")
        except yaml.YAMLError as e:
            captured = e
        assert captured is not None

        with patch.object(cli_logger, "error") as mock_error:
            exit_code = handle_cli_error(captured)

        assert exit_code == exit_codes.GENERAL_ERROR
        mock_error.assert_called_once()

    def test_handles_generic_exception(self) -> None:
        with patch.object(cli_logger, "error") as mock_error:
            exit_code = handle_cli_error(RuntimeError("Something went wrong"))

        assert exit_code == exit_codes.GENERAL_ERROR
        assert "Something went wrong" in mock_error.call_args[0][0]
