"""Files Sync - synchronize files into GitHub repositories through pull requests.

This package commits files from the current repository into target
repositories based on a YAML configuration, opening, updating and
optionally merging one pull request per target.
"""

from .config import Config, PatternConfig, load_config
from .errors import (
    ConfigError,
    FileResolutionError,
    FilesSyncError,
    RemoteCallError,
    RepositoryNameError,
)
from .github import GitHubClient, GitHubRepository, MergeResult
from .sync import FilesSync, SyncResult, WorkflowContext

__version__ = "1.0.0"

__all__ = [
    "Config",
    "PatternConfig",
    "load_config",
    "ConfigError",
    "FileResolutionError",
    "FilesSyncError",
    "RemoteCallError",
    "RepositoryNameError",
    "GitHubClient",
    "GitHubRepository",
    "MergeResult",
    "FilesSync",
    "SyncResult",
    "WorkflowContext",
]
