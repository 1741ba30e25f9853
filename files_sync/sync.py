"""File synchronization logic for files-sync.

This module drives the reconciliation of every pattern against each of its
target repositories: commit the resolved files on a sync branch, then open,
update or close the pull request and optionally merge it.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from .config import (
    PR_FOOTER,
    Config,
    DeleteFileConfig,
    EntryConfig,
    resolve_pattern_config,
)
from .errors import ConfigError
from .files import ResolvedFile, resolve_delete_files, resolve_files
from .github import DiffEntry, GitHubClient, GitHubRepository, MergeResult, PullRequest
from .utils import convert_valid_branch_name, render_template, split_commit_message

logger = logging.getLogger(__name__)


def _info(key: str, value: Any) -> None:
    logger.info(f"{key:>21}: {value}")


def _json(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def _render(source: str, context: dict[str, Any], index: int, field: str) -> str:
    try:
        return render_template(source, context)
    except ValueError as e:
        raise ConfigError(f"patterns.{index}.{field}: {e}") from e


class WorkflowContext:
    """Details of the workflow run that performs the sync.

    Used to render branch names, commit messages and pull request bodies.
    """

    def __init__(
        self,
        server_url: str = "",
        repository: str = "",
        workflow: str = "",
        run_id: str = "0",
        run_number: str = "0",
    ):
        self.server_url = server_url
        self.repository = repository
        self.workflow = workflow
        self.run_id = run_id
        self.run_number = run_number

    @classmethod
    def from_env(cls) -> WorkflowContext:
        """Read the context from the GitHub Actions environment."""
        return cls(
            server_url=os.getenv("GITHUB_SERVER_URL", ""),
            repository=os.getenv("GITHUB_REPOSITORY", ""),
            workflow=os.getenv("GITHUB_WORKFLOW", ""),
            run_id=os.getenv("GITHUB_RUN_ID", "0"),
            run_number=os.getenv("GITHUB_RUN_NUMBER", "0"),
        )

    @property
    def run_url(self) -> str:
        return f"{self.server_url}/{self.repository}/actions/runs/{self.run_id}"


class SyncResult:
    """Result of a sync run.

    Pull request URLs and synced filenames are deduplicated and keep the
    order they were first recorded in.
    """

    def __init__(self):
        """Initialize empty sync result."""
        self._pull_request_urls: dict[str, None] = {}
        self._synced_files: dict[str, None] = {}

    def add_pull_request(self, url: str) -> None:
        self._pull_request_urls[url] = None

    def add_synced_files(self, filenames: list[str]) -> None:
        for filename in filenames:
            self._synced_files[filename] = None

    @property
    def pull_request_urls(self) -> list[str]:
        return list(self._pull_request_urls)

    @property
    def synced_files(self) -> list[str]:
        return list(self._synced_files)

    def __str__(self) -> str:
        """String representation of sync results."""
        return (
            f"Sync completed: {len(self._pull_request_urls)} pull requests, "
            f"{len(self._synced_files)} files synced"
        )


class FilesSync:
    """Main synchronization orchestrator.

    Patterns and their target repositories are processed strictly in order;
    the first failure aborts the whole run.
    """

    def __init__(
        self,
        github_client: Optional[GitHubClient] = None,
        context: Optional[WorkflowContext] = None,
        timeout: int = 30,
        github_token: Optional[str] = None,
        github_api_url: Optional[str] = None,
    ):
        """Initialize the synchronizer.

        Args:
            github_client: Optional GitHub client instance
            context: Workflow run details, read from the environment by default
            timeout: Request timeout in seconds
            github_token: GitHub token used when no client is given
            github_api_url: API base URL used when no client is given
        """
        self.github_client = github_client or GitHubClient(
            token=github_token, api_url=github_api_url, timeout=timeout
        )
        self._owns_client = github_client is None
        self.context = context or WorkflowContext.from_env()

    def sync(self, config: Config, cwd: Optional[Path] = None) -> SyncResult:
        """Synchronize every pattern of the configuration.

        Args:
            config: Validated configuration
            cwd: Directory the pattern source paths are relative to

        Returns:
            Touched pull request URLs and synced filenames

        Raises:
            FilesSyncError: On the first failure of any pattern or repository
        """
        cwd = cwd or Path.cwd()
        result = SyncResult()
        settings = config["settings"]

        for index, pattern in enumerate(config["patterns"]):
            cfg = resolve_pattern_config(settings, pattern)
            logger.debug(f"patterns.{index} - merged config: {_json(cfg)}")

            files = resolve_files(pattern, index, cwd)
            logger.debug(f"patterns.{index} - files:")
            for file in files:
                logger.debug(f'  - from "{file["from"]}" to "{file["to"]}"')

            delete_files = resolve_delete_files(pattern)
            for delete_file in delete_files:
                logger.debug(f'  - delete "{delete_file["path"]}" of type "{delete_file["type"]}"')

            logger.info(f"Synchronize {len(files)} files:")

            for name in pattern["repositories"]:
                self._sync_repository(name, index, cfg, files, delete_files, result)

        logger.info(str(result))
        return result

    def _sync_repository(
        self,
        name: str,
        index: int,
        cfg: EntryConfig,
        files: list[ResolvedFile],
        delete_files: list[DeleteFileConfig],
        result: SyncResult,
    ) -> None:
        repo = self.github_client.initialize_repository(name)
        pr_cfg = cfg["pull_request"]

        branch = _render(
            cfg["branch"]["format"],
            {
                "prefix": cfg["branch"]["prefix"],
                "repository": convert_valid_branch_name(self.context.repository),
                "index": index,
            },
            index,
            "branch.format",
        )
        _info("Repository", name)
        _info("Branch", branch)

        existing_pr = repo.find_existing_pull_request_by_branch(branch)
        logger.debug(f"existing pull request: {_json(existing_pr)}")

        if existing_pr is not None:
            # force discards commits pushed to the PR branch since it was opened
            if pr_cfg["force"]:
                parent = existing_pr["base"]["sha"]
            else:
                parent = existing_pr["head"]["sha"]
            _info("Existing Pull Request", existing_pr["html_url"])
        else:
            parent = repo.create_branch(branch)["sha"]
        _info("Branch SHA", parent)

        commit = repo.commit(
            parent=parent,
            branch=branch,
            message=self._render_commit_message(cfg["commit"], index),
            files=[{"path": f["to"], "mode": f["mode"], "content": f["content"]} for f in files],
            delete_files=delete_files,
            force=pr_cfg["force"],
        )
        _info("Commit SHA", commit["sha"])
        _info("Commit", f'"{commit["message"]}"')

        base = existing_pr["base"]["sha"] if existing_pr is not None else parent
        diff = repo.compare_commits(base, commit["sha"])
        logger.debug(f"diff: {_json(diff)}")
        _info("Changed Files", len(diff))

        if not diff:
            _info("Status", "Skipping this process because there are no changes.")
            if existing_pr is not None:
                repo.close_pull_request(existing_pr["number"])
                logger.debug(f"{name}: #{existing_pr['number']} closed")
            repo.delete_branch(branch)
            logger.debug(f'{name}: branch "{branch}" deleted')
            return

        if pr_cfg["disabled"]:
            _info("Pull Request", "Disabled")
        else:
            pr_url = self._reconcile_pull_request(
                repo, name, branch, index, cfg, files, diff, existing_pr
            )
            result.add_pull_request(pr_url)

        _info("Status", "Complete")
        result.add_synced_files([entry["filename"] for entry in diff])

    def _reconcile_pull_request(
        self,
        repo: GitHubRepository,
        name: str,
        branch: str,
        index: int,
        cfg: EntryConfig,
        files: list[ResolvedFile],
        diff: list[DiffEntry],
        existing_pr: Optional[PullRequest],
    ) -> str:
        pr_cfg = cfg["pull_request"]

        pr = repo.create_or_update_pull_request(
            title=_render(pr_cfg["title"], self._base_context(index), index, "pull_request.title"),
            body=_render(
                "\n".join([pr_cfg["body"], PR_FOOTER]),
                self._body_context(index, files, diff),
                index,
                "pull_request.body",
            ),
            branch=branch,
            number=existing_pr["number"] if existing_pr is not None else None,
        )
        _info("Pull Request", pr["html_url"])

        if pr_cfg["labels"]:
            repo.add_pull_request_labels(pr["number"], pr_cfg["labels"])
        _info("Labels", ", ".join(pr_cfg["labels"]) or "None")

        if pr_cfg["reviewers"]:
            repo.add_pull_request_reviewers(pr["number"], pr_cfg["reviewers"])
        _info("Reviewers", ", ".join(pr_cfg["reviewers"]) or "None")

        if pr_cfg["assignees"]:
            repo.add_pull_request_assignees(pr["number"], pr_cfg["assignees"])
        _info("Assignees", ", ".join(pr_cfg["assignees"]) or "None")

        merge_cfg = pr_cfg["merge"]
        if merge_cfg["mode"] != "disabled":
            headline: Optional[str] = None
            body: Optional[str] = None
            commit_cfg = merge_cfg.get("commit", {})
            if commit_cfg.get("format"):
                message = self._render_commit_message(
                    {"prefix": "", "subject": "", **commit_cfg}, index, "pull_request.merge.commit"
                )
                # the merge API takes the headline separately
                headline, body = split_commit_message(message)

            outcome = repo.merge_pull_request(
                number=pr["number"],
                mode=merge_cfg["mode"],
                strategy=merge_cfg["strategy"],
                commit_headline=headline,
                commit_body=body,
            )
            _info("Pull Request Merge", outcome.value)

            if outcome is MergeResult.MERGED and merge_cfg["delete_branch"]:
                repo.delete_branch(branch)
                _info("Branch Deleted", f"{name}@{branch}")

        return pr["html_url"]

    def _render_commit_message(
        self, commit_cfg: dict[str, Any], index: int, field: str = "commit"
    ) -> str:
        context = self._base_context(index)
        return _render(
            commit_cfg["format"],
            {
                **context,
                "prefix": commit_cfg["prefix"],
                "subject": _render(commit_cfg["subject"], context, index, f"{field}.subject"),
            },
            index,
            f"{field}.format",
        )

    def _base_context(self, index: int) -> dict[str, Any]:
        return {"repository": self.context.repository, "index": index}

    def _body_context(
        self, index: int, files: list[ResolvedFile], diff: list[DiffEntry]
    ) -> dict[str, Any]:
        sources = {f["to"]: f["from"] for f in files}
        return {
            **self._base_context(index),
            "github": self.context.server_url,
            "workflow": self.context.workflow,
            "run": {
                "id": self.context.run_id,
                "number": self.context.run_number,
                "url": self.context.run_url,
            },
            "changes": [
                {"from": sources.get(d["filename"]), "to": d["filename"]}
                for d in diff
                if d["status"] != "removed"
            ],
            "deleted": [{"path": d["filename"]} for d in diff if d["status"] == "removed"],
        }

    def close(self) -> None:
        """Clean up resources."""
        if self._owns_client:
            self.github_client.close()

    def __enter__(self) -> FilesSync:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
