"""Local registry cache for clipack.

Keeps a snapshot of every registry manifest under the registry directory
so most commands never touch the network. The snapshot is two files: the
package list and, written after it, the time the list was saved.
"""

from __future__ import annotations

import pickle
import time
from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, ValidationError

from clipack.package_schema import PackageManifest

CACHE_FILENAME = "packages_cache.bin"
TIMESTAMP_FILENAME = "cache_timestamp.bin"


class CacheMiss(Exception):
    """Raised when the cache is absent, unreadable or stale.

    Not a failure: callers fall through to the registry fetcher.
    """


class CacheSnapshot(BaseModel):
    """Schema for the decoded package list file."""

    packages: list[PackageManifest]


def cache_file_path(registry_dir: Path) -> Path:
    return registry_dir / CACHE_FILENAME


def timestamp_file_path(registry_dir: Path) -> Path:
    return registry_dir / TIMESTAMP_FILENAME


def _read_pickle(path: Path) -> object:
    try:
        with path.open("rb") as f:
            return pickle.load(f)  # noqa: S301
    except FileNotFoundError as e:
        msg = f"{path.name} not found"
        raise CacheMiss(msg) from e
    except (OSError, pickle.UnpicklingError, EOFError, AttributeError, ImportError, ValueError, TypeError) as e:
        msg = f"{path.name} is unreadable: {e}"
        raise CacheMiss(msg) from e


def load_timestamp(registry_dir: Path) -> float:
    """Read the time the cache was last saved, as epoch seconds.

    Raises:
        CacheMiss: If the timestamp file is absent or corrupt.
    """
    value = _read_pickle(timestamp_file_path(registry_dir))
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"{TIMESTAMP_FILENAME} does not hold a timestamp"
        raise CacheMiss(msg)
    return float(value)


def load_cache(
    registry_dir: Path,
    max_age: timedelta,
    now: float | None = None,
) -> list[PackageManifest]:
    """Load the cached package list if it is fresh.

    The cache is fresh while ``now - saved_at <= max_age``.

    Args:
        registry_dir: Directory holding the cache files.
        max_age: Longest age at which the snapshot is still used.
        now: Current epoch seconds (defaults to time.time()).

    Returns:
        The cached manifests, categories included.

    Raises:
        CacheMiss: If either file is missing or corrupt, or the snapshot is stale.
    """
    saved_at = load_timestamp(registry_dir)
    current = time.time() if now is None else now
    age = current - saved_at
    if age > max_age.total_seconds():
        msg = f"cache is {age:.0f}s old (max {max_age.total_seconds():.0f}s)"
        raise CacheMiss(msg)

    raw = _read_pickle(cache_file_path(registry_dir))
    try:
        snapshot = CacheSnapshot.model_validate(raw)
    except ValidationError as e:
        msg = f"{CACHE_FILENAME} does not match the manifest schema"
        raise CacheMiss(msg) from e
    return snapshot.packages


def save_cache(
    registry_dir: Path,
    packages: list[PackageManifest],
    now: float | None = None,
) -> None:
    """Save the package list, then its timestamp.

    The list is written completely before the timestamp so a reader never
    sees a timestamp newer than the list it describes.

    Raises:
        OSError: If the files cannot be written.
    """
    registry_dir.mkdir(parents=True, exist_ok=True)
    snapshot = {"packages": [p.model_dump(mode="json") for p in packages]}

    # A list without a timestamp reads as a miss.
    timestamp_file_path(registry_dir).unlink(missing_ok=True)
    _write_atomic(cache_file_path(registry_dir), pickle.dumps(snapshot))
    saved_at = time.time() if now is None else now
    _write_atomic(timestamp_file_path(registry_dir), pickle.dumps(saved_at))


def invalidate_cache(registry_dir: Path) -> None:
    """Delete both cache files. Missing files are ignored."""
    cache_file_path(registry_dir).unlink(missing_ok=True)
    timestamp_file_path(registry_dir).unlink(missing_ok=True)


def _write_atomic(path: Path, data: bytes) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_bytes(data)
    tmp_path.replace(path)
