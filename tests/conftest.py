"""Shared test fixtures for clipack tests."""

import os
import subprocess
from pathlib import Path
from typing import NamedTuple

import pytest
import yaml
from typer.testing import CliRunner

from clipack.config import ClipackConfig, write_default_config
from clipack.package_schema import PackageManifest
from clipack.registry import RegistryFetchError

GIT_ENV = {
    **os.environ,
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@test.com",
}


def git_commit_all(work_dir: Path, message: str) -> str:
    """Stage all changes, commit, and return the new commit hash.

    Uses GIT_ENV for deterministic author/committer identity.
    """
    subprocess.run(["git", "add", "-A"], cwd=work_dir, check=True, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", message],
        cwd=work_dir, check=True, capture_output=True, env=GIT_ENV,
    )
    return subprocess.run(
        ["git", "rev-parse", "HEAD"],
        cwd=work_dir, check=True, capture_output=True, text=True,
    ).stdout.strip()


class FakeGitRepo(NamedTuple):
    """Result of creating a local git repository for testing."""

    url: str
    commit_hash: str
    work_dir: Path


def create_fake_git_repo(tmp_path: Path, name: str = "upstream") -> FakeGitRepo:
    """Create a local git repo with one commit, reachable through file://."""
    work_dir = tmp_path / name
    work_dir.mkdir()
    (work_dir / "README.md").write_text("# Upstream\n")
    (work_dir / "tool.sh").write_text("#!/bin/sh\necho tool\n")

    subprocess.run(["git", "init"], cwd=work_dir, check=True, capture_output=True)
    commit_hash = git_commit_all(work_dir, "Initial")
    return FakeGitRepo(url=f"file://{work_dir}", commit_hash=commit_hash, work_dir=work_dir)


def make_manifest(name: str = "foo", **fields: object) -> PackageManifest:
    """Build a PackageManifest from manifest-file style keys."""
    data: dict[str, object] = {"name": name, "version": "1.0"}
    data.update(fields)
    return PackageManifest.model_validate(data)


def manifest_yaml(name: str = "foo", **fields: object) -> str:
    """Render manifest-file YAML for a package."""
    data: dict[str, object] = {"name": name, "version": "1.0"}
    data.update(fields)
    return yaml.dump(data, sort_keys=False)


class FakeSource:
    """In-memory RegistrySource keyed by registry-relative path."""

    def __init__(self, files: dict[str, str]) -> None:
        self.files = files
        self.requested: list[str] = []

    def fetch_text(self, path: str) -> str:
        self.requested.append(path)
        try:
            return self.files[path]
        except KeyError:
            msg = f"GET {path} returned status 404"
            raise RegistryFetchError(msg) from None


def registry_files(manifests: dict[str, str]) -> dict[str, str]:
    """Build registry files: an index listing the given manifest paths."""
    files = {"index.yaml": yaml.dump({"packages": list(manifests)})}
    files.update(manifests)
    return files


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Path of the config file, exported through CLIPACK_CONFIG."""
    path = tmp_path / "config" / "config.yaml"
    monkeypatch.setenv("CLIPACK_CONFIG", str(path))
    return path


@pytest.fixture
def config(config_path: Path, tmp_path: Path) -> ClipackConfig:
    """Write a default config rooted at tmp_path/clipack and return it."""
    return write_default_config(config_path, tmp_path / "clipack")
