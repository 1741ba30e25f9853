"""Command-line interface for files-sync.

This module provides the CLI options, logging setup and GitHub Actions
outputs of the file synchronization tool.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from .config import load_config
from .errors import FilesSyncError, RemoteCallError
from .github import DEFAULT_API_URL
from .sync import FilesSync, SyncResult

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration.

    Args:
        verbose: Enable debug logging if True
    """
    level = logging.DEBUG if verbose else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level, format=format_str, handlers=[logging.StreamHandler()]
    )


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="Synchronize files into GitHub repositories through pull requests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sync using the default config
  files-sync

  # Use a custom config against GitHub Enterprise Server
  files-sync -c sync.yml --github-api-url https://ghe.example.com/api/v3
        """.strip(),
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path(".github/files-sync.yml"),
        help="Path to the configuration YAML file (default: .github/files-sync.yml)",
    )

    parser.add_argument(
        "--github-token",
        type=str,
        default=os.getenv("GITHUB_TOKEN"),
        help="GitHub token with write access to the target repositories (default: $GITHUB_TOKEN)",
    )

    parser.add_argument(
        "--github-api-url",
        type=str,
        default=os.getenv("GITHUB_API_URL", DEFAULT_API_URL),
        help=f"GitHub REST API base URL (default: $GITHUB_API_URL or {DEFAULT_API_URL})",
    )

    parser.add_argument(
        "--timeout",
        type=int,
        default=30,
        help="Request timeout in seconds (default: 30)",
    )

    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )

    return parser


def set_failed(message: str) -> None:
    """Report a run failure in the log and as a workflow error annotation."""
    logger.error(message)
    print(f"::error::{message}")


def write_outputs(result: SyncResult, output_path: Optional[str] = None) -> None:
    """Publish the run outputs.

    Outputs are always logged, and appended to the GitHub Actions output
    file when one is configured.

    Args:
        result: Result of the sync run
        output_path: Output file, defaults to $GITHUB_OUTPUT
    """
    outputs = {
        "pull_request_urls": json.dumps(result.pull_request_urls),
        "synced_files": json.dumps(result.synced_files),
    }
    for key, value in outputs.items():
        logger.info(f"Output {key}={value}")

    output_path = output_path or os.getenv("GITHUB_OUTPUT")
    if not output_path:
        return

    with open(output_path, "a", encoding="utf-8") as f:
        for key, value in outputs.items():
            f.write(f"{key}={value}\n")


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the CLI application."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if not args.github_token:
        set_failed("A GitHub token is required (--github-token or $GITHUB_TOKEN)")
        sys.exit(1)

    try:
        try:
            config = load_config(args.config)
        except FilesSyncError as e:
            set_failed(f"Load config error: {args.config}#{e}")
            sys.exit(1)

        with FilesSync(
            timeout=args.timeout,
            github_token=args.github_token,
            github_api_url=args.github_api_url,
        ) as sync:
            result = sync.sync(config)

        logger.info(f"✓ {result}")
        write_outputs(result)
        sys.exit(0)

    except KeyboardInterrupt:
        logger.info("Sync interrupted by user")
        sys.exit(130)
    except FilesSyncError as e:
        if isinstance(e, RemoteCallError) and e.operation == "Commit":
            logger.info(
                'If pushing to .github/workflows, make sure the github token has the "workflow" scope.'
            )
        set_failed(str(e))
        if e.__cause__ is not None:
            logger.debug(f"Caused by: {e.__cause__!r}")
        sys.exit(1)
    except Exception as e:
        set_failed(f"Unexpected error: {e}")
        if args.verbose:
            logger.exception("Full traceback:")
        sys.exit(1)


if __name__ == "__main__":
    main()
