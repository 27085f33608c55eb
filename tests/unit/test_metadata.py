# tests/unit/test_metadata.py
"""Tests for environment metadata tags."""

import platform
from pathlib import Path

from ddtrace.ext import ci
from ddtrace.ext import git

from citrace.metadata import collect_environment_metadata

GITHUB_ACTIONS_ENV = {
    "GITHUB_SHA": "b9f4e1c0d2a3",
    "GITHUB_REPOSITORY": "acme/calculator",
    "GITHUB_SERVER_URL": "https://github.com",
    "GITHUB_RUN_ID": "4242",
}


class TestCollectEnvironmentMetadata:
    def test_framework_and_runtime_tags(self, tmp_path: Path) -> None:
        metadata = collect_environment_metadata("pytest", environ={}, cwd=str(tmp_path))

        assert metadata["test.framework"] == "pytest"
        assert metadata[ci.RUNTIME_NAME] == platform.python_implementation()
        assert metadata[ci.RUNTIME_VERSION] == platform.python_version()
        assert metadata[ci.OS_ARCHITECTURE] == platform.machine()
        assert metadata[ci.OS_VERSION] == platform.release()
        assert ci.OS_PLATFORM in metadata

    def test_ci_provider_and_git_tags(self, tmp_path: Path) -> None:
        metadata = collect_environment_metadata("pytest", environ=dict(GITHUB_ACTIONS_ENV), cwd=str(tmp_path))

        assert metadata[ci.PROVIDER_NAME] == "github"
        assert metadata[ci.PIPELINE_ID] == "4242"
        assert metadata[git.COMMIT_SHA] == "b9f4e1c0d2a3"
        assert metadata[git.REPOSITORY_URL] == "https://github.com/acme/calculator.git"

    def test_no_provider_outside_ci(self, tmp_path: Path) -> None:
        metadata = collect_environment_metadata("pytest", environ={}, cwd=str(tmp_path))
        assert ci.PROVIDER_NAME not in metadata

    def test_values_are_never_none(self, tmp_path: Path) -> None:
        metadata = collect_environment_metadata("pytest", environ=dict(GITHUB_ACTIONS_ENV), cwd=str(tmp_path))
        assert None not in metadata.values()
