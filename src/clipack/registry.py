"""Registry fetch operations for clipack.

Resolves the package list from the remote registry: the index file names
every manifest, each manifest is fetched and parsed on its own. The local
cache is consulted first and refilled after every successful fetch.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import quote

import yaml
from pydantic import ValidationError

from clipack.cache import CacheMiss, invalidate_cache, load_cache, save_cache
from clipack.config import ClipackConfig
from clipack.download import DEFAULT_TIMEOUT, DownloadError, http_get
from clipack.errors import format_validation_errors
from clipack.package_schema import (
    ManifestParseError,
    PackageManifest,
    is_valid_package_name,
    parse_manifest,
)
from clipack.registry_schema import RegistryIndexSchema

INDEX_PATH = "index.yaml"


class RegistryFetchError(Exception):
    """Raised when the registry index or a manifest cannot be fetched."""


class PackageNotFoundError(Exception):
    """Raised when a package name is not in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Package '{name}' not found in registry")


class RegistrySource(Protocol):
    """Protocol for reading files from the registry repository."""

    def fetch_text(self, path: str) -> str:
        """Return the content of a file at a registry-relative path."""
        ...


class GitHubContentsSource:
    """Reads registry files through the GitHub contents API.

    Each file costs two requests: the contents API entry, then its
    ``download_url`` for the raw bytes.
    """

    def __init__(
        self,
        api_url: str,
        branch: str = "main",
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._branch = branch
        self._token = token
        self._timeout = timeout

    @classmethod
    def from_config(cls, config: ClipackConfig) -> GitHubContentsSource:
        return cls(
            api_url=config.registry.repo_content_api_url,
            branch=config.registry.branch,
            token=config.registry.token,
        )

    def _auth_headers(self) -> dict[str, str]:
        if self._token:
            return {"Authorization": f"Bearer {self._token}"}
        return {}

    def fetch_text(self, path: str) -> str:
        url = f"{self._api_url}/{quote(path.lstrip('/'))}?ref={quote(self._branch)}"
        try:
            body = http_get(
                url,
                headers={"Accept": "application/vnd.github.v3+json", **self._auth_headers()},
                timeout=self._timeout,
            )
            entry = json.loads(body)
        except DownloadError as e:
            raise RegistryFetchError(str(e)) from e
        except ValueError as e:
            msg = f"Invalid contents API response for '{path}': {e}"
            raise RegistryFetchError(msg) from e

        download_url = entry.get("download_url") if isinstance(entry, dict) else None
        if not download_url:
            msg = f"No download URL available for '{path}'"
            raise RegistryFetchError(msg)

        try:
            raw = http_get(download_url, headers=self._auth_headers(), timeout=self._timeout)
        except DownloadError as e:
            raise RegistryFetchError(str(e)) from e
        return raw.decode("utf-8", errors="replace")


@dataclass
class FetchAllResult:
    """Result of fetching every manifest listed in the index."""

    packages: list[PackageManifest]
    warnings: list[str] = field(default_factory=list)


@dataclass
class RegistryLoadResult:
    """Packages available to a command, and where they came from."""

    packages: list[PackageManifest]
    from_cache: bool
    warnings: list[str] = field(default_factory=list)


def category_from_path(path: str) -> str | None:
    """Derive a package category from its index path.

    ``packages/editors/neovim.yaml`` is in category ``editors``; paths
    with fewer than three segments have no category.
    """
    parts = path.strip("/").split("/")
    if len(parts) >= 3:
        return parts[1]
    return None


def fetch_index(source: RegistrySource) -> list[str]:
    """Fetch the registry index.

    Returns:
        Manifest paths listed in index.yaml, in index order.

    Raises:
        RegistryFetchError: On network failure or malformed/empty index.
    """
    content = source.fetch_text(INDEX_PATH)
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        msg = f"Error parsing {INDEX_PATH}: {e}"
        raise RegistryFetchError(msg) from e

    try:
        index = RegistryIndexSchema.model_validate(data)
    except ValidationError as e:
        msg = f"Invalid registry index: {format_validation_errors(e)}"
        raise RegistryFetchError(msg) from e

    if not index.packages:
        msg = f"No packages found in {INDEX_PATH}"
        raise RegistryFetchError(msg)
    return index.packages


def fetch_manifest(source: RegistrySource, path: str) -> PackageManifest:
    """Fetch and parse one manifest, setting its category from path.

    Raises:
        RegistryFetchError: If the file cannot be fetched or parsed.
    """
    content = source.fetch_text(path)
    try:
        manifest = parse_manifest(content)
    except ManifestParseError as e:
        msg = f"Error parsing '{path}': {e}"
        raise RegistryFetchError(msg) from e
    return manifest.model_copy(update={"category": category_from_path(path)})


def fetch_all(source: RegistrySource) -> FetchAllResult:
    """Fetch every manifest in the index.

    A manifest that fails to fetch or parse, or whose name is missing or
    not a single path component, is skipped with a warning.

    Raises:
        RegistryFetchError: If the index fails or no manifest survives.
    """
    paths = fetch_index(source)
    packages: list[PackageManifest] = []
    warnings: list[str] = []

    for path in paths:
        try:
            manifest = fetch_manifest(source, path)
        except RegistryFetchError as e:
            warnings.append(f"Skipping '{path}': {e}")
            continue
        if not manifest.name.strip():
            warnings.append(f"Skipping '{path}': manifest has no name")
            continue
        if not is_valid_package_name(manifest.name):
            warnings.append(f"Skipping '{path}': invalid package name '{manifest.name}'")
            continue
        packages.append(manifest)

    if not packages:
        msg = "No valid packages found in registry"
        raise RegistryFetchError(msg)
    return FetchAllResult(packages=packages, warnings=warnings)


def load_packages(
    config: ClipackConfig,
    source: RegistrySource | None = None,
    force_refresh: bool = False,
    now: float | None = None,
) -> RegistryLoadResult:
    """Get the full package list, from cache when fresh.

    On a cache miss (or force_refresh) the registry is fetched and the
    cache refilled. A failure to save the cache is only a warning.

    Raises:
        RegistryFetchError: If the registry has to be fetched and fails.
    """
    registry_dir = config.paths.registry

    if force_refresh:
        invalidate_cache(registry_dir)
    else:
        try:
            packages = load_cache(registry_dir, config.registry.update_interval, now=now)
            return RegistryLoadResult(packages=packages, from_cache=True)
        except CacheMiss:
            pass

    result = fetch_all(source or GitHubContentsSource.from_config(config))
    warnings = list(result.warnings)
    try:
        save_cache(registry_dir, result.packages, now=now)
    except OSError as e:
        warnings.append(f"Could not cache packages: {e}")

    return RegistryLoadResult(packages=result.packages, from_cache=False, warnings=warnings)


def find_package(packages: list[PackageManifest], name: str) -> PackageManifest:
    """Look a package up by name.

    Raises:
        PackageNotFoundError: If no manifest has that name.
    """
    for package in packages:
        if package.name == name:
            return package
    raise PackageNotFoundError(name)

