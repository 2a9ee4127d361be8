"""Installed-state store for clipack.

Each installed package owns ``<configs>/<name>/``; its ``package.yaml``
records what was installed and how. The store is the only source of truth
for install state. The registry has no opinion on it.
"""

import shutil
from dataclasses import dataclass, field
from pathlib import Path

from clipack.package_schema import (
    InstalledRecord,
    ManifestParseError,
    is_valid_package_name,
    parse_installed_record,
    serialize_manifest,
)

RECORD_FILENAME = "package.yaml"


class InvalidPackageNameError(ValueError):
    """Raised when a package name cannot be used as a directory name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Invalid package name '{name}'")


class PackageNotInstalledError(Exception):
    """Raised when a package name has no installed record."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Package '{name}' is not installed")


@dataclass
class InstalledScan:
    """Result of scanning the configs root."""

    records: list[InstalledRecord]
    warnings: list[str] = field(default_factory=list)


def package_dir(configs_root: Path, name: str) -> Path:
    """Return <configs_root>/<name>.

    Raises:
        InvalidPackageNameError: If name is not a single safe path component.
    """
    if not is_valid_package_name(name):
        raise InvalidPackageNameError(name)
    return configs_root / name


def record_path(configs_root: Path, name: str) -> Path:
    return package_dir(configs_root, name) / RECORD_FILENAME


def load_installed_record(path: Path) -> InstalledRecord:
    """Read and validate one package.yaml.

    Raises:
        OSError: If the file cannot be read.
        ManifestParseError: If the content is not a valid installed record.
    """
    return parse_installed_record(path.read_text())


def list_installed(configs_root: Path) -> InstalledScan:
    """Read every installed record under configs_root.

    Directories whose record is missing or invalid are skipped with a
    warning. A missing configs_root means nothing is installed.
    """
    if not configs_root.is_dir():
        return InstalledScan(records=[])

    records: list[InstalledRecord] = []
    warnings: list[str] = []
    for entry in sorted(configs_root.iterdir()):
        if not entry.is_dir():
            continue
        package_file = entry / RECORD_FILENAME
        try:
            record = load_installed_record(package_file)
        except FileNotFoundError:
            warnings.append(f"No {RECORD_FILENAME} in {entry}")
            continue
        except (OSError, ManifestParseError) as e:
            warnings.append(f"Error reading {package_file}: {e}")
            continue
        if record.name != entry.name:
            warnings.append(f"Record in {entry} names '{record.name}', skipping")
            continue
        records.append(record)
    return InstalledScan(records=records, warnings=warnings)


def find_installed(configs_root: Path, name: str) -> InstalledRecord:
    """Load the installed record for a package name.

    Raises:
        PackageNotInstalledError: If there is no readable record for name.
    """
    try:
        path = record_path(configs_root, name)
    except InvalidPackageNameError:
        raise PackageNotInstalledError(name) from None
    try:
        record = load_installed_record(path)
    except FileNotFoundError:
        raise PackageNotInstalledError(name) from None
    except (OSError, ManifestParseError) as e:
        raise PackageNotInstalledError(name) from e

    if record.name != name:
        raise PackageNotInstalledError(name)
    return record


def write_installed_record(configs_root: Path, record: InstalledRecord) -> Path:
    """Write record to ``<configs_root>/<name>/package.yaml``, replacing any previous one.

    Returns:
        Path of the written file.
    """
    path = record_path(configs_root, record.name)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(RECORD_FILENAME + ".tmp")
    tmp_path.write_text(serialize_manifest(record))
    tmp_path.replace(path)
    return path


def remove_installed_record(configs_root: Path, name: str) -> bool:
    """Delete the package's whole config directory.

    Returns:
        True if a directory was removed, False if there was none.

    Raises:
        InvalidPackageNameError: If name is not a single safe path component.
    """
    directory = package_dir(configs_root, name)
    if not directory.exists():
        return False
    shutil.rmtree(directory)
    return True
