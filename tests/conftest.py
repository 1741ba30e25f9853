"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from files_sync.github import GitHubClient

API_URL = "https://api.github.com"


@pytest.fixture
def client() -> GitHubClient:
    """Return a GitHub client pointed at the public API."""
    return GitHubClient(token="test_token", api_url=API_URL)


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """Create a small working tree to sync files from.

    Layout::

        README.md
        scripts/run.sh          (executable)
        templates/
            config.yml
            nested/notes.md
            cache.tmp
    """
    (tmp_path / "README.md").write_text("# Shared README\n", encoding="utf-8")

    scripts = tmp_path / "scripts"
    scripts.mkdir()
    run = scripts / "run.sh"
    run.write_text("#!/bin/sh\necho run\n", encoding="utf-8")
    run.chmod(0o755)

    templates = tmp_path / "templates"
    (templates / "nested").mkdir(parents=True)
    (templates / "config.yml").write_text("name: <%= project %>\n", encoding="utf-8")
    (templates / "nested" / "notes.md").write_text("notes\n", encoding="utf-8")
    (templates / "cache.tmp").write_text("tmp\n", encoding="utf-8")

    return tmp_path
