"""Error types raised by files-sync.

Every failure that aborts a run derives from FilesSyncError so the CLI can
report it and exit with a non-zero status.
"""

from __future__ import annotations

from typing import Optional


class FilesSyncError(Exception):
    """Base class for all files-sync failures."""


class ConfigError(FilesSyncError, ValueError):
    """Raised when the configuration file cannot be parsed or validated."""


class FileResolutionError(FilesSyncError):
    """Raised when a file spec of a pattern cannot be resolved.

    Args:
        spec_id: Identifier of the failing spec, e.g. ``patterns.0.files.2``
        message: Description of the failure
    """

    def __init__(self, spec_id: str, message: str):
        super().__init__(f"{spec_id} - File resolve error: {message}")
        self.spec_id = spec_id


class RepositoryNameError(FilesSyncError, ValueError):
    """Raised when a repository identifier is not ``owner/repo[@branch]``."""


class RemoteCallError(FilesSyncError):
    """Raised when a call to the GitHub API fails.

    Args:
        operation: Name of the gateway operation that issued the call
        message: Description of the underlying failure
        status_code: HTTP status code, when the server answered
    """

    def __init__(self, operation: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{operation} error: {message}")
        self.operation = operation
        self.status_code = status_code
