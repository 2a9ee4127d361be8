"""Package manifest schema definitions using Pydantic.

This module defines the schema for package manifests published in the
registry and for the installed records written to each package's config
directory. Both share one YAML shape; an installed record only adds the
installation metadata.
"""

from datetime import datetime
from enum import Enum
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from clipack.errors import format_validation_errors


class ManifestParseError(ValueError):
    """Raised when manifest content is not a valid package manifest."""


class InstallMethod(str, Enum):
    """How an installed package tracks its upstream."""

    SPECIFIC = "specific"
    LATEST = "latest"

    @classmethod
    def from_option(cls, value: str) -> "InstallMethod":
        """Resolve a config/CLI install method name.

        Accepts the record values (``specific``, ``latest``) and the
        option aliases (``version``, ``commit``).
        """
        aliases = {
            "version": cls.SPECIFIC,
            "specific": cls.SPECIFIC,
            "commit": cls.LATEST,
            "latest": cls.LATEST,
        }
        try:
            return aliases[value.strip().lower()]
        except KeyError:
            msg = f"Unknown install method '{value}' (expected version or commit)"
            raise ValueError(msg) from None


def _scalar_to_str(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class _ManifestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_null_keys(cls, data: Any) -> Any:
        # Hand-written registry YAML often leaves keys empty ("tags:");
        # treat those as absent so field defaults apply.
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class AdditionalConfig(_ManifestModel):
    """Extra file written into the package config directory."""

    filename: str = Field(description="Path relative to the package config directory")
    content: str = Field(default="", description="Literal content or an http(s) URL to download")

    @property
    def is_remote(self) -> bool:
        """Return True if content should be downloaded rather than written."""
        return self.content.strip().startswith(("http://", "https://"))


class InstallSpec(_ManifestModel):
    """The declarative install recipe of a package."""

    environment: dict[str, str] = Field(
        default_factory=dict,
        description="Variables added to the environment of every step",
    )
    steps: list[str] = Field(
        default_factory=list,
        description="Shell command lines run in order inside the build directory",
    )
    binaries: list[str] = Field(
        default_factory=list,
        description="Build-relative paths copied into the shared bin directory",
    )
    configs: list[str] = Field(
        default_factory=list,
        description="Build-relative paths copied into the package config directory",
    )
    man: list[str] = Field(
        default_factory=list,
        description="Build-relative man pages, sectioned by extension",
    )
    additional_config: list[AdditionalConfig] = Field(
        default_factory=list,
        alias="additional-config",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def stringify_environment(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): _scalar_to_str(val) for k, val in v.items()}
        return v


class Script(_ManifestModel):
    """A post-install script body."""

    filename: str
    content: str = ""


class PostInstallSpec(_ManifestModel):
    """Scripts materialized after the install steps."""

    scripts: list[Script] = Field(default_factory=list)


class InstallationInfo(_ManifestModel):
    """What was actually installed, stamped at install time."""

    method: InstallMethod
    actual_version: str = Field(description="Resolved version tag or commit hash")
    installed_at: datetime
    installed_by: str


class PackageManifest(_ManifestModel):
    """Root schema for package manifests.

    ``name`` defaults to empty so the parser accepts nameless documents;
    rejecting them is the job of the registry ingestion layer.
    """

    name: str = ""
    version: str = ""
    commit: str = ""
    description: str = ""
    maintainer: str = ""
    updated_at: datetime | None = None
    tags: list[str] = Field(default_factory=list)
    license: str = ""
    homepage: str = ""
    category: str | None = Field(
        default=None,
        description="Derived from the registry path, never written to manifest files",
    )
    install: InstallSpec = Field(default_factory=InstallSpec)
    post_install: PostInstallSpec = Field(
        default_factory=PostInstallSpec,
        alias="post-install",
    )
    install_method: InstallMethod | None = None
    installation: InstallationInfo | None = None

    @field_validator("version", "commit", mode="before")
    @classmethod
    def stringify_version(cls, v: Any) -> Any:
        # YAML reads "version: 1.0" as a float
        return _scalar_to_str(v)

    @property
    def nominal_version(self) -> str:
        """The version a pinned install resolves to (tag, else commit)."""
        return self.version or self.commit


class InstalledRecord(PackageManifest):
    """A manifest snapshot with installation metadata that must be present."""

    installation: InstallationInfo

    @property
    def method(self) -> InstallMethod:
        return self.installation.method

    @property
    def actual_version(self) -> str:
        return self.installation.actual_version


def same_package(a: PackageManifest, b: PackageManifest) -> bool:
    """Return True if both manifests describe the same package name."""
    return a.name == b.name


def is_valid_package_name(name: str) -> bool:
    """Return True if name can be used as a single directory component.

    Rejects empty names, surrounding whitespace, path separators and
    names starting with a dot (which covers ``.`` and ``..``).
    """
    if not name or name != name.strip() or name.startswith("."):
        return False
    return not any(c in name for c in "/\\\0")


def _load_mapping(data: bytes | str) -> dict:
    try:
        loaded = yaml.safe_load(data)
    except yaml.YAMLError as e:
        msg = f"Invalid YAML: {e}"
        raise ManifestParseError(msg) from e

    if not isinstance(loaded, dict):
        msg = "Manifest must be a YAML mapping"
        raise ManifestParseError(msg)
    return loaded


def parse_manifest(data: bytes | str) -> PackageManifest:
    """Parse manifest YAML into a PackageManifest.

    Args:
        data: Raw YAML content.

    Returns:
        Validated PackageManifest instance.

    Raises:
        ManifestParseError: If the YAML is malformed, not a mapping,
            or does not match the schema.
    """
    loaded = _load_mapping(data)
    try:
        return PackageManifest.model_validate(loaded)
    except ValidationError as e:
        msg = f"Invalid manifest: {format_validation_errors(e)}"
        raise ManifestParseError(msg) from e


def parse_installed_record(data: bytes | str) -> InstalledRecord:
    """Parse an installed package.yaml into an InstalledRecord.

    Raises:
        ManifestParseError: If the content is invalid or lacks installation metadata.
    """
    loaded = _load_mapping(data)
    try:
        return InstalledRecord.model_validate(loaded)
    except ValidationError as e:
        msg = f"Invalid installed record: {format_validation_errors(e)}"
        raise ManifestParseError(msg) from e


def manifest_to_dict(manifest: PackageManifest) -> dict:
    """Dump a manifest to plain YAML-friendly data (category omitted)."""
    return manifest.model_dump(
        mode="json",
        by_alias=True,
        exclude={"category"},
        exclude_none=True,
    )


def serialize_manifest(manifest: PackageManifest) -> str:
    """Serialize a manifest (or installed record) to YAML."""
    return yaml.dump(
        manifest_to_dict(manifest),
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


def stamp_installed(
    manifest: PackageManifest,
    method: InstallMethod,
    actual_version: str,
    installed_by: str,
    installed_at: datetime,
) -> InstalledRecord:
    """Create an InstalledRecord from a copy of the manifest.

    The source manifest is left untouched.
    """
    data = manifest.model_dump(exclude={"installation", "install_method"})
    return InstalledRecord.model_validate(
        {
            **data,
            "install_method": method,
            "installation": InstallationInfo(
                method=method,
                actual_version=actual_version,
                installed_at=installed_at,
                installed_by=installed_by,
            ),
        }
    )
