"""Tests for the local registry cache."""

import pickle
from datetime import timedelta
from pathlib import Path

import pytest

from clipack.cache import (
    CACHE_FILENAME,
    TIMESTAMP_FILENAME,
    CacheMiss,
    invalidate_cache,
    load_cache,
    load_timestamp,
    save_cache,
)
from tests.conftest import make_manifest

SAVED_AT = 1_700_000_000.0
MAX_AGE = timedelta(hours=24)


@pytest.fixture
def registry_dir(tmp_path: Path) -> Path:
    return tmp_path / "registry"


class TestFreshness:
    """Tests for the freshness boundary of load_cache."""

    def test_fresh_at_exactly_max_age(self, registry_dir: Path) -> None:
        """Verify a snapshot exactly max_age old is still served."""
        # Given
        save_cache(registry_dir, [make_manifest("foo")], now=SAVED_AT)

        # When
        packages = load_cache(registry_dir, MAX_AGE, now=SAVED_AT + MAX_AGE.total_seconds())

        # Then
        assert [p.name for p in packages] == ["foo"]

    def test_stale_one_second_past_max_age(self, registry_dir: Path) -> None:
        """Verify a snapshot one second past max_age is a miss."""
        save_cache(registry_dir, [make_manifest("foo")], now=SAVED_AT)

        with pytest.raises(CacheMiss, match="old"):
            load_cache(registry_dir, MAX_AGE, now=SAVED_AT + MAX_AGE.total_seconds() + 1)

    def test_fresh_immediately_after_save(self, registry_dir: Path) -> None:
        save_cache(registry_dir, [make_manifest("foo"), make_manifest("bar")], now=SAVED_AT)

        packages = load_cache(registry_dir, MAX_AGE, now=SAVED_AT)

        assert [p.name for p in packages] == ["foo", "bar"]


class TestMisses:
    """Tests for absent and corrupt cache files."""

    def test_empty_directory_is_miss(self, registry_dir: Path) -> None:
        with pytest.raises(CacheMiss):
            load_cache(registry_dir, MAX_AGE)

    def test_missing_list_is_miss(self, registry_dir: Path) -> None:
        """Verify a timestamp without its list is a miss."""
        save_cache(registry_dir, [make_manifest()], now=SAVED_AT)
        (registry_dir / CACHE_FILENAME).unlink()

        with pytest.raises(CacheMiss, match="not found"):
            load_cache(registry_dir, MAX_AGE, now=SAVED_AT)

    def test_corrupt_list_is_miss(self, registry_dir: Path) -> None:
        """Verify garbage in the list file never reaches the caller."""
        save_cache(registry_dir, [make_manifest()], now=SAVED_AT)
        (registry_dir / CACHE_FILENAME).write_bytes(b"\x00not a pickle")

        with pytest.raises(CacheMiss, match="unreadable"):
            load_cache(registry_dir, MAX_AGE, now=SAVED_AT)

    def test_truncated_list_is_miss(self, registry_dir: Path) -> None:
        save_cache(registry_dir, [make_manifest()], now=SAVED_AT)
        data = (registry_dir / CACHE_FILENAME).read_bytes()
        (registry_dir / CACHE_FILENAME).write_bytes(data[: len(data) // 2])

        with pytest.raises(CacheMiss):
            load_cache(registry_dir, MAX_AGE, now=SAVED_AT)

    def test_wrong_shape_list_is_miss(self, registry_dir: Path) -> None:
        """Verify a decodable list that fails validation is a miss."""
        save_cache(registry_dir, [make_manifest()], now=SAVED_AT)
        (registry_dir / CACHE_FILENAME).write_bytes(pickle.dumps({"packages": [{"install": 5}]}))

        with pytest.raises(CacheMiss, match="schema"):
            load_cache(registry_dir, MAX_AGE, now=SAVED_AT)

    def test_corrupt_timestamp_is_miss(self, registry_dir: Path) -> None:
        save_cache(registry_dir, [make_manifest()], now=SAVED_AT)
        (registry_dir / TIMESTAMP_FILENAME).write_bytes(pickle.dumps("yesterday"))

        with pytest.raises(CacheMiss, match="timestamp"):
            load_timestamp(registry_dir)


class TestSaveCache:
    """Tests for save_cache and invalidate_cache."""

    def test_creates_directory(self, registry_dir: Path) -> None:
        save_cache(registry_dir, [make_manifest()], now=SAVED_AT)

        assert (registry_dir / CACHE_FILENAME).is_file()
        assert load_timestamp(registry_dir) == SAVED_AT

    def test_keeps_category(self, registry_dir: Path) -> None:
        """Verify the path-derived category survives the cache."""
        manifest = make_manifest().model_copy(update={"category": "editors"})
        save_cache(registry_dir, [manifest], now=SAVED_AT)

        [cached] = load_cache(registry_dir, MAX_AGE, now=SAVED_AT)

        assert cached.category == "editors"

    def test_save_replaces_previous_snapshot(self, registry_dir: Path) -> None:
        save_cache(registry_dir, [make_manifest("old")], now=SAVED_AT)
        save_cache(registry_dir, [make_manifest("new")], now=SAVED_AT + 10)

        packages = load_cache(registry_dir, MAX_AGE, now=SAVED_AT + 10)

        assert [p.name for p in packages] == ["new"]
        assert not list(registry_dir.glob("*.tmp"))

    def test_invalidate_removes_both_files(self, registry_dir: Path) -> None:
        save_cache(registry_dir, [make_manifest()], now=SAVED_AT)

        invalidate_cache(registry_dir)

        assert not (registry_dir / CACHE_FILENAME).exists()
        assert not (registry_dir / TIMESTAMP_FILENAME).exists()
        with pytest.raises(CacheMiss):
            load_cache(registry_dir, MAX_AGE, now=SAVED_AT)

    def test_invalidate_missing_files_is_noop(self, registry_dir: Path) -> None:
        invalidate_cache(registry_dir)
