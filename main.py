"""Main entry point for the files-sync GitHub Action.

This module maps the action inputs, which GitHub Actions exposes as INPUT_*
environment variables, onto the command-line interface.
"""

import os
import sys

from files_sync.cli import main

INPUT_OPTIONS = {
    "INPUT_CONFIG_FILE": "--config",
    "INPUT_GITHUB_TOKEN": "--github-token",
    "INPUT_GITHUB_API_URL": "--github-api-url",
}


def build_argv() -> list[str]:
    """Build CLI arguments from the action inputs that are set."""
    argv = []
    for env_name, option in INPUT_OPTIONS.items():
        value = os.getenv(env_name)
        if value:
            argv.extend([option, value])

    # Set when a workflow is re-run with debug logging
    if os.getenv("RUNNER_DEBUG") == "1":
        argv.append("--verbose")
    return argv


def main_with_env_parsing() -> None:
    """Main entry point that handles GitHub Actions environment variables."""
    main(sys.argv[1:] + build_argv())


if __name__ == "__main__":
    main_with_env_parsing()
