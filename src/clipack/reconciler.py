"""Install, update and remove reconciliation for clipack.

Turns a package manifest into filesystem side effects and undoes the side
effects recorded by a previous installation. Step failures are fatal and
leave already-placed artifacts where they are; every other per-file
operation is best-effort and reported as a warning.
"""

import getpass
import re
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from clipack.config import ClipackConfig
from clipack.download import DownloadError, download_content
from clipack.git import RevisionError, find_clone_url, git_ls_remote, resolve_build_revision
from clipack.installed import (
    RECORD_FILENAME,
    InvalidPackageNameError,
    package_dir,
    remove_installed_record,
    write_installed_record,
)
from clipack.package_schema import (
    InstalledRecord,
    InstallMethod,
    PackageManifest,
    same_package,
    stamp_installed,
)
from clipack.steps import prepare_steps, run_steps

# Mode for installed binaries and post-install scripts
EXECUTABLE_MODE = 0o755

_COMPRESSION_SUFFIXES = {".gz", ".bz2", ".xz", ".lzma", ".zst", ".z"}
_MAN_EXTENSION = re.compile(r"\.([0-9])[a-z]*", re.IGNORECASE)

StepRunner = Callable[[list[str], Path, Mapping[str, str]], None]
ConfirmRemoveBuild = Callable[[Path], bool]
RemoteRevision = Callable[[str], str]
Downloader = Callable[[str], bytes]


class ReconcileError(Exception):
    """Raised when an install, update or remove cannot proceed."""


class BuildDirectoryExistsError(ReconcileError):
    """Raised when the build directory exists and removal was not approved."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Build directory already exists: {path}")


class MissingBinaryError(ReconcileError):
    """Raised when declared binaries are absent after the install steps."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Binary not found after build: {', '.join(missing)}")


@dataclass
class InstallResult:
    """Result of installing a package."""

    record: InstalledRecord
    installed_files: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class UpdateCheck:
    """Whether an installed package differs from its registry candidate."""

    needs_update: bool
    current: str
    available: str
    reason: str = ""


@dataclass
class UpdateResult:
    """Result of updating a package."""

    package_name: str
    updated: bool
    check: UpdateCheck
    install: InstallResult | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class RemoveResult:
    """Result of removing a package."""

    removed: bool
    removed_files: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def man_section(path: str) -> str | None:
    """Classify a man page into its section directory by extension.

    ``foo.3`` and ``foo.3pm`` map to ``man3``; compression suffixes are
    ignored, so ``foo.1.gz`` maps to ``man1``. Returns None when there is
    no extension or it does not start with a section digit.
    """
    name = PurePosixPath(path).name
    stem = PurePosixPath(name)
    while stem.suffix.lower() in _COMPRESSION_SUFFIXES:
        stem = PurePosixPath(stem.stem)

    match = _MAN_EXTENSION.fullmatch(stem.suffix)
    if match is None:
        return None
    return f"man{match.group(1)}"


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def _package_dirs(config: ClipackConfig, name: str) -> tuple[Path, Path]:
    try:
        return config.paths.build / name, package_dir(config.paths.configs, name)
    except InvalidPackageNameError as e:
        raise ReconcileError(str(e)) from e


def _contained_path(root: Path, relative: str) -> Path | None:
    """Join relative onto root, or None if it would escape root."""
    relative_path = PurePosixPath(relative)
    if relative_path.is_absolute() or ".." in relative_path.parts or not relative_path.parts:
        return None
    return root.joinpath(*relative_path.parts)


def _prepare_build_dir(build_dir: Path, confirm_remove_build: ConfirmRemoveBuild | None) -> None:
    if build_dir.exists():
        if confirm_remove_build is None or not confirm_remove_build(build_dir):
            raise BuildDirectoryExistsError(build_dir)
        shutil.rmtree(build_dir)
    build_dir.mkdir(parents=True)


def _resolve_actual_version(manifest: PackageManifest, method: InstallMethod, build_dir: Path) -> str:
    if method == InstallMethod.SPECIFIC:
        return manifest.nominal_version
    try:
        return resolve_build_revision(build_dir)
    except RevisionError as e:
        msg = f"Cannot resolve latest revision for '{manifest.name}': {e}"
        raise ReconcileError(msg) from e


def _make_executable(path: Path) -> None:
    path.chmod(EXECUTABLE_MODE)


def _install_binaries(
    manifest: PackageManifest, build_dir: Path, bin_dir: Path, result: InstallResult,
) -> None:
    sources = [(entry, build_dir / entry) for entry in manifest.install.binaries]
    missing = [entry for entry, source in sources if not source.is_file()]
    if missing:
        raise MissingBinaryError(missing)

    for entry, source in sources:
        target = bin_dir / source.name
        try:
            shutil.copy2(source, target)
            _make_executable(target)
        except OSError as e:
            result.warnings.append(f"Failed to install binary '{entry}': {e}")
            continue
        result.installed_files.append(target)


def _install_configs(
    manifest: PackageManifest, build_dir: Path, config_dir: Path, result: InstallResult,
) -> None:
    for entry in manifest.install.configs:
        source = build_dir / entry
        target = config_dir / source.name
        if source.name == RECORD_FILENAME:
            result.warnings.append(f"Config file '{entry}' would replace the installed record, skipping")
            continue
        if not source.exists():
            result.warnings.append(f"Config file not found: {entry}")
            continue
        try:
            if source.is_dir():
                shutil.copytree(source, target, dirs_exist_ok=True)
            else:
                shutil.copy2(source, target)
        except OSError as e:
            result.warnings.append(f"Failed to copy config '{entry}': {e}")
            continue
        result.installed_files.append(target)


def _install_man_pages(
    manifest: PackageManifest, build_dir: Path, man_dir: Path, result: InstallResult,
) -> None:
    for entry in manifest.install.man:
        section = man_section(entry)
        if section is None:
            result.warnings.append(f"Cannot determine man section for '{entry}', skipping")
            continue
        source = build_dir / entry
        if not source.is_file():
            result.warnings.append(f"Man page not found: {entry}")
            continue
        target = man_dir / section / source.name
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as e:
            result.warnings.append(f"Failed to install man page '{entry}': {e}")
            continue
        result.installed_files.append(target)


def _install_additional_configs(
    manifest: PackageManifest,
    config_dir: Path,
    downloader: Downloader,
    result: InstallResult,
) -> None:
    for extra in manifest.install.additional_config:
        target = _contained_path(config_dir, extra.filename)
        if target is None:
            result.warnings.append(f"Invalid additional config filename '{extra.filename}', skipping")
            continue
        try:
            if extra.is_remote:
                content = downloader(extra.content.strip())
            else:
                content = extra.content.encode()
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except DownloadError as e:
            result.warnings.append(f"Failed to download additional config '{extra.filename}': {e}")
            continue
        except OSError as e:
            result.warnings.append(f"Failed to write additional config '{extra.filename}': {e}")
            continue
        result.installed_files.append(target)


def _install_post_install_scripts(
    manifest: PackageManifest, build_dir: Path, bin_dir: Path, result: InstallResult,
) -> None:
    for script in manifest.post_install.scripts:
        name = PurePosixPath(script.filename).name
        if not name:
            result.warnings.append(f"Invalid post-install script filename '{script.filename}', skipping")
            continue
        staged = build_dir / name
        target = bin_dir / name
        try:
            staged.write_text(script.content)
            shutil.move(staged, target)
            _make_executable(target)
        except OSError as e:
            result.warnings.append(f"Failed to install post-install script '{name}': {e}")
            continue
        result.installed_files.append(target)


def install_package(
    manifest: PackageManifest,
    config: ClipackConfig,
    method: InstallMethod,
    confirm_remove_build: ConfirmRemoveBuild | None = None,
    installed_by: str | None = None,
    step_runner: StepRunner = run_steps,
    downloader: Downloader = download_content,
    now: datetime | None = None,
    replacing: InstalledRecord | None = None,
) -> InstallResult:
    """Install a package from its manifest.

    Runs the install steps in ``<paths.build>/<name>``, places binaries,
    configs, man pages, additional configs and post-install scripts, then
    writes the installed record.

    Args:
        manifest: The package to install.
        config: Active configuration.
        method: SPECIFIC records the manifest version; LATEST unpins clone
            steps and records the checked-out commit.
        confirm_remove_build: Called with the build directory when it
            already exists. Returning True removes it and continues.
        installed_by: User recorded as the installer. Defaults to the
            current login name.
        step_runner: Executes the step lines.
        downloader: Fetches remote additional-config content.
        now: Install timestamp. Defaults to the current UTC time.
        replacing: Record of a previous installation of the same package.
            Its artifacts are torn down once the build directory is
            ready and before any step runs.

    Returns:
        InstallResult with the written record, placed files and warnings.

    Raises:
        BuildDirectoryExistsError: If the build directory exists and its
            removal was not approved.
        StepExecutionError: If an install step fails.
        MissingBinaryError: If a declared binary was not produced.
        ReconcileError: If the name is not a valid directory name, or the
            installed version cannot be resolved.
    """
    if not manifest.name.strip():
        msg = "Cannot install a package without a name"
        raise ReconcileError(msg)
    if method == InstallMethod.SPECIFIC and not manifest.nominal_version:
        msg = f"Package '{manifest.name}' declares neither version nor commit"
        raise ReconcileError(msg)
    if replacing is not None and not same_package(replacing, manifest):
        msg = f"Cannot replace '{replacing.name}' with '{manifest.name}'"
        raise ReconcileError(msg)

    paths = config.paths
    build_dir, config_dir = _package_dirs(config, manifest.name)

    for root in (paths.bin, paths.configs, paths.build, paths.man):
        root.mkdir(parents=True, exist_ok=True)
    _prepare_build_dir(build_dir, confirm_remove_build)

    teardown_warnings: list[str] = []
    if replacing is not None:
        teardown_warnings = teardown_artifacts(replacing, config).warnings
    config_dir.mkdir(parents=True, exist_ok=True)

    steps = prepare_steps(manifest.install.steps, follow_latest=method == InstallMethod.LATEST)
    step_runner(steps, build_dir, manifest.install.environment)

    actual_version = _resolve_actual_version(manifest, method, build_dir)

    record = stamp_installed(
        manifest,
        method=method,
        actual_version=actual_version,
        installed_by=installed_by or _current_user(),
        installed_at=now or datetime.now(timezone.utc),
    )
    result = InstallResult(record=record, warnings=teardown_warnings)

    _install_binaries(manifest, build_dir, paths.bin, result)
    _install_configs(manifest, build_dir, config_dir, result)
    _install_man_pages(manifest, build_dir, paths.man, result)
    _install_additional_configs(manifest, config_dir, downloader, result)
    _install_post_install_scripts(manifest, build_dir, paths.bin, result)

    write_installed_record(paths.configs, record)

    if config.options.cleanup_build:
        try:
            shutil.rmtree(build_dir)
        except OSError as e:
            result.warnings.append(f"Failed to clean up build directory {build_dir}: {e}")

    return result


def check_update(
    record: InstalledRecord,
    candidate: PackageManifest,
    remote_revision: RemoteRevision = git_ls_remote,
) -> UpdateCheck:
    """Compare an installed record with the registry's current manifest.

    A SPECIFIC install compares the candidate's version (or commit) with
    the recorded version. A LATEST install compares the remote HEAD of the
    candidate's clone URL (falling back to its homepage) with the recorded
    commit.

    Raises:
        ReconcileError: If a LATEST install has no remote to query, or the
            query fails.
    """
    current = record.actual_version

    if record.method == InstallMethod.LATEST:
        url = find_clone_url(candidate.install.steps) or candidate.homepage
        if not url:
            msg = f"Package '{candidate.name}' has no repository URL to check for updates"
            raise ReconcileError(msg)
        try:
            available = remote_revision(url)
        except RevisionError as e:
            raise ReconcileError(str(e)) from e
        if available == current:
            return UpdateCheck(False, current, available, "already at the latest commit")
        return UpdateCheck(True, current, available, "new commit available")

    available = candidate.nominal_version
    if not available:
        return UpdateCheck(False, current, available, "registry declares no version")
    if available == current:
        return UpdateCheck(False, current, available, "up to date")
    return UpdateCheck(True, current, available, "new version available")


def _unlink_artifact(path: Path, label: str, removed: list[Path], warnings: list[str]) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as e:
        warnings.append(f"Failed to remove {label} {path}: {e}")
        return
    removed.append(path)


def teardown_artifacts(record: InstalledRecord, config: ClipackConfig) -> RemoveResult:
    """Remove the files a previous installation placed.

    Uses the record's own declared paths. Missing files are ignored and
    each failure becomes a warning without stopping the others. The
    installed record itself is left in place.

    Raises:
        ReconcileError: If the record name is not a valid directory name.
    """
    paths = config.paths
    _, config_dir = _package_dirs(config, record.name)
    result = RemoveResult(removed=True)

    for entry in record.install.binaries:
        target = paths.bin / PurePosixPath(entry).name
        _unlink_artifact(target, "binary", result.removed_files, result.warnings)

    for entry in record.install.configs:
        target = config_dir / PurePosixPath(entry).name
        if target.name == RECORD_FILENAME:
            continue
        if target.is_dir():
            try:
                shutil.rmtree(target)
            except OSError as e:
                result.warnings.append(f"Failed to remove config {target}: {e}")
            else:
                result.removed_files.append(target)
            continue
        _unlink_artifact(target, "config", result.removed_files, result.warnings)

    for entry in record.install.man:
        section = man_section(entry)
        if section is None:
            continue
        target = paths.man / section / PurePosixPath(entry).name
        _unlink_artifact(target, "man page", result.removed_files, result.warnings)

    for script in record.post_install.scripts:
        name = PurePosixPath(script.filename).name
        if name:
            _unlink_artifact(paths.bin / name, "script", result.removed_files, result.warnings)

    return result


def update_package(
    record: InstalledRecord,
    candidate: PackageManifest,
    config: ClipackConfig,
    confirm_remove_build: ConfirmRemoveBuild | None = None,
    installed_by: str | None = None,
    step_runner: StepRunner = run_steps,
    remote_revision: RemoteRevision = git_ls_remote,
    downloader: Downloader = download_content,
    now: datetime | None = None,
    check: UpdateCheck | None = None,
) -> UpdateResult:
    """Update an installed package to the registry candidate.

    Does nothing when check_update finds no difference. Otherwise installs
    the candidate with the method the record was installed with, replacing
    the artifacts of the previous record. A check computed earlier can be
    passed in to avoid querying the remote twice.

    Raises:
        BuildDirectoryExistsError: If the build directory exists and its
            removal was not approved. The previous installation is intact.
        ReconcileError: If the update check or the install fails.
        StepExecutionError: If an install step fails.
    """
    if check is None:
        check = check_update(record, candidate, remote_revision=remote_revision)
    if not check.needs_update:
        return UpdateResult(package_name=record.name, updated=False, check=check)

    install = install_package(
        candidate,
        config,
        record.method,
        confirm_remove_build=confirm_remove_build,
        installed_by=installed_by,
        step_runner=step_runner,
        downloader=downloader,
        now=now,
        replacing=record,
    )
    return UpdateResult(
        package_name=record.name,
        updated=True,
        check=check,
        install=install,
        warnings=list(install.warnings),
    )


def remove_package(record: InstalledRecord, config: ClipackConfig) -> RemoveResult:
    """Remove an installed package and everything it placed.

    Deletes the package config directory (including its installed
    record), then its binaries, man pages and post-install scripts. Each
    removal is independent; failures are warnings and the package still
    counts as removed.

    Raises:
        ReconcileError: If the record name is not a valid directory name.
    """
    warnings: list[str] = []
    removed_files: list[Path] = []

    _, config_dir = _package_dirs(config, record.name)
    try:
        if remove_installed_record(config.paths.configs, record.name):
            removed_files.append(config_dir)
    except OSError as e:
        warnings.append(f"Failed to remove config directory {config_dir}: {e}")

    teardown = teardown_artifacts(record, config)
    return RemoveResult(
        removed=True,
        removed_files=[*removed_files, *teardown.removed_files],
        warnings=[*warnings, *teardown.warnings],
    )
