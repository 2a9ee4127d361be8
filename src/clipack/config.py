"""Configuration loading and validation for clipack.

The configuration is a YAML document in a fixed per-user location. It is
parsed once per command and passed explicitly into every operation.
"""

import os
import re
from datetime import timedelta
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from clipack.errors import format_validation_errors
from clipack.package_schema import InstallMethod
from clipack.validation import ValidationResult

# Default config location
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "clipack" / "config.yaml"

# Environment variable for a custom config location
CONFIG_ENV_VAR = "CLIPACK_CONFIG"

DEFAULT_REGISTRY_URL = "https://github.com/lvim-tech/clipack-registry.git"
DEFAULT_CONTENT_API_URL = "https://api.github.com/repos/lvim-tech/clipack-registry/contents"
DEFAULT_UPDATE_INTERVAL = timedelta(hours=24)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


class ConfigError(Exception):
    """Raised when the configuration is missing, unreadable or invalid."""


def parse_duration(value: str | int | float | timedelta) -> timedelta:
    """Parse a duration such as ``24h``, ``1h30m``, ``90s`` or plain seconds.

    Raises:
        ValueError: If the value is not a positive duration.
    """
    if isinstance(value, timedelta):
        result = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        result = timedelta(seconds=value)
    elif isinstance(value, str):
        text = value.strip().lower()
        if text.isdigit():
            result = timedelta(seconds=int(text))
        else:
            parts = _DURATION_PART.findall(text)
            if not parts or "".join(n + u for n, u in parts) != text:
                msg = f"invalid duration '{value}'"
                raise ValueError(msg)
            result = timedelta(seconds=sum(float(n) * _DURATION_UNITS[u] for n, u in parts))
    else:
        msg = f"invalid duration '{value}'"
        raise ValueError(msg)

    if result <= timedelta(0):
        msg = f"duration must be positive, got '{value}'"
        raise ValueError(msg)
    return result


class RegistryConfig(BaseModel):
    """Where the registry lives and how often to refresh the local cache."""

    url: str = Field(description="Registry repository URL")
    repo_content_api_url: str = Field(
        default=DEFAULT_CONTENT_API_URL,
        description="GitHub contents API base for the registry repository",
    )
    branch: str = Field(default="main")
    update_interval: timedelta = Field(default=DEFAULT_UPDATE_INTERVAL)
    token: str | None = Field(default=None, description="Optional GitHub token")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.strip():
            msg = "registry URL is required"
            raise ValueError(msg)
        return v.strip()

    @field_validator("branch", mode="before")
    @classmethod
    def default_branch(cls, v: str | None) -> str:
        return v or "main"

    @field_validator("update_interval", mode="before")
    @classmethod
    def validate_update_interval(cls, v: object) -> timedelta:
        if v is None or v == 0 or v == "":
            return DEFAULT_UPDATE_INTERVAL
        return parse_duration(v)  # type: ignore[arg-type]


class PathsConfig(BaseModel):
    """Filesystem roots used by clipack. All must be absolute."""

    base: Path
    registry: Path
    bin: Path
    configs: Path
    build: Path
    man: Path

    @field_validator("*", mode="before")
    @classmethod
    def expand_user(cls, v: object) -> object:
        if isinstance(v, str):
            return os.path.expanduser(v)
        return v

    def validate_absolute(self) -> ValidationResult:
        """Check that every configured path is absolute."""
        errors = [
            f"paths.{name} must be absolute (got '{value}')"
            for name, value in self.model_dump().items()
            if not Path(value).is_absolute()
        ]
        return ValidationResult(is_valid=not errors, errors=errors)


class OptionsConfig(BaseModel):
    """Behavioural switches."""

    auto_symlink: bool = True
    backup_configs: bool = True
    cleanup_build: bool = True
    install_method: str = Field(default="version", description="version or commit")

    @field_validator("install_method")
    @classmethod
    def validate_install_method(cls, v: str) -> str:
        InstallMethod.from_option(v)
        return v

    @property
    def default_install_method(self) -> InstallMethod:
        return InstallMethod.from_option(self.install_method)


class ClipackConfig(BaseModel):
    """Root schema for config.yaml."""

    registry: RegistryConfig
    paths: PathsConfig
    options: OptionsConfig = Field(default_factory=OptionsConfig)


def get_config_path() -> Path:
    """Get the config file path.

    Resolution order:
    1. CLIPACK_CONFIG environment variable (if set)
    2. Default: ~/.config/clipack/config.yaml
    """
    env_value = os.environ.get(CONFIG_ENV_VAR)
    if env_value:
        return Path(env_value).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(path: Path | None = None) -> ClipackConfig:
    """Load and validate the configuration file.

    Args:
        path: Config file to read. Defaults to get_config_path().

    Returns:
        Validated ClipackConfig instance.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    config_path = path or get_config_path()
    try:
        content = config_path.read_text()
    except OSError as e:
        msg = f"Could not read config file '{config_path}': {e.strerror or e}"
        raise ConfigError(msg) from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in config file '{config_path}': {e}"
        raise ConfigError(msg) from e

    if not isinstance(data, dict):
        msg = f"Config file '{config_path}' must be a YAML mapping"
        raise ConfigError(msg)

    try:
        config = ClipackConfig.model_validate(data)
    except ValidationError as e:
        msg = f"Invalid config '{config_path}': {format_validation_errors(e)}"
        raise ConfigError(msg) from e

    result = config.paths.validate_absolute()
    if not result.is_valid:
        msg = f"Invalid config '{config_path}': {'; '.join(result.errors)}"
        raise ConfigError(msg)

    return config


def default_config(install_dir: Path) -> ClipackConfig:
    """Build the default configuration rooted at install_dir."""
    install_dir = install_dir.expanduser().absolute()
    return ClipackConfig(
        registry=RegistryConfig(url=DEFAULT_REGISTRY_URL),
        paths=PathsConfig(
            base=install_dir,
            registry=install_dir / "registry",
            bin=install_dir / "bin",
            configs=install_dir / "configs",
            build=install_dir / "build",
            man=install_dir / "man",
        ),
    )


def _format_duration(value: timedelta) -> str:
    seconds = int(value.total_seconds())
    if seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


def save_config(config: ClipackConfig, path: Path) -> None:
    """Write a configuration to path as YAML."""
    data = config.model_dump(mode="json")
    data["registry"]["update_interval"] = _format_duration(config.registry.update_interval)
    if data["registry"]["token"] is None:
        del data["registry"]["token"]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))


def write_default_config(path: Path, install_dir: Path, overwrite: bool = False) -> ClipackConfig:
    """Create the default config file and its directory layout.

    If the file exists and overwrite is False, the existing config is
    loaded and returned unchanged.

    Returns:
        The config now in effect.
    """
    if path.exists() and not overwrite:
        return load_config(path)

    config = default_config(install_dir)
    save_config(config, path)
    for directory in (
        config.paths.registry,
        config.paths.bin,
        config.paths.configs,
        config.paths.build,
        config.paths.man,
    ):
        directory.mkdir(parents=True, exist_ok=True)
    return config
