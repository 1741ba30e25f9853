"""GitHub API client and repository gateway.

This module wraps the GitHub REST and GraphQL APIs behind a per-repository
gateway exposing the branch, commit, compare and pull request operations the
sync loop needs. No call is retried: any failure is raised as a
RemoteCallError naming the operation that issued it.
"""

from __future__ import annotations

import logging
import os
import re
from enum import Enum
from typing import Any, Optional

import requests
from typing_extensions import Literal, TypedDict

from .config import DeleteFileConfig, MergeMode, MergeStrategy
from .errors import RemoteCallError, RepositoryNameError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"


class Branch(TypedDict):
    name: str
    sha: str


class Commit(TypedDict):
    sha: str
    message: str


class CommitFile(TypedDict):
    path: str
    mode: str
    content: str


class DiffEntry(TypedDict):
    filename: str
    status: str


class _Sha(TypedDict):
    sha: str


class PullRequest(TypedDict):
    number: int
    base: _Sha
    head: _Sha
    html_url: str


class TreeDeleteEntry(TypedDict):
    path: str
    mode: Literal["100644", "040000"]
    type: Literal["blob", "tree"]
    sha: None


class MergeResult(str, Enum):
    """Outcome of a merge attempt."""

    ALREADY_HANDLED = "already_handled"
    UNMERGEABLE = "unmergeable"
    PREPARED = "prepared"
    MERGED = "merged"


IMMEDIATELY_MERGEABLE_STATES = ("CLEAN", "HAS_HOOKS", "UNSTABLE")
ADMIN_ONLY_STATES = ("BLOCKED", "BEHIND")

PULL_REQUEST_STATE_QUERY = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      id
      state
      merged
      isDraft
      isInMergeQueue
      isMergeQueueEnabled
      mergeStateStatus
      autoMergeRequest {
        enabledAt
      }
    }
  }
}
"""

ENABLE_AUTO_MERGE_MUTATION = """
mutation($input: EnablePullRequestAutoMergeInput!) {
  enablePullRequestAutoMerge(input: $input) {
    clientMutationId
  }
}
"""

DISABLE_AUTO_MERGE_MUTATION = """
mutation($input: DisablePullRequestAutoMergeInput!) {
  disablePullRequestAutoMerge(input: $input) {
    clientMutationId
  }
}
"""

MERGE_MUTATION = """
mutation($input: MergePullRequestInput!) {
  mergePullRequest(input: $input) {
    clientMutationId
  }
}
"""


def parse_repository_name(name: str) -> tuple[str, str, Optional[str]]:
    """Parse an ``owner/repo[@branch]`` identifier.

    Raises:
        RepositoryNameError: If owner or repo is missing

    Example:
        >>> parse_repository_name("octo/repo@develop")
        ('octo', 'repo', 'develop')
    """
    full_name, _, branch = name.partition("@")
    parts = full_name.split("/")
    owner = parts[0]
    repo = parts[1] if len(parts) > 1 else ""
    if not owner or not repo:
        raise RepositoryNameError(
            f'Repository name must be in the "owner/repo" format. ("{name}" is an invalid format)'
        )
    return owner, repo, branch or None


def graphql_url_for(api_url: str) -> str:
    """Derive the GraphQL endpoint from a REST API base URL.

    GitHub Enterprise Server serves REST under ``/api/v3`` and GraphQL under
    ``/api/graphql``.
    """
    base = api_url.rstrip("/")
    if base.endswith("/api/v3"):
        return base[: -len("/v3")] + "/graphql"
    return f"{base}/graphql"


def _remove_at_mark(handle: str) -> str:
    return re.sub(r"^@", "", handle)


class GitHubClient:
    """Client for the GitHub REST and GraphQL APIs.

    Owns a single HTTP session shared by every repository gateway it creates.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: int = 30,
    ):
        """Initialize the GitHub client.

        Args:
            token: GitHub token, defaults to $GITHUB_TOKEN
            api_url: REST API base URL, defaults to $GITHUB_API_URL or api.github.com
            timeout: Request timeout in seconds
        """
        self.timeout = timeout
        self.token = token or os.getenv("GITHUB_TOKEN")
        self.api_url = (api_url or os.getenv("GITHUB_API_URL") or DEFAULT_API_URL).rstrip("/")
        self.graphql_url = graphql_url_for(self.api_url)
        self.session = requests.Session()

        self.session.headers.update(
            {
                "User-Agent": "files-sync/1.0.0",
                "Accept": "application/vnd.github+json",
            }
        )

        if self.token:
            self.session.headers.update({"Authorization": f"token {self.token}"})
            logger.debug("GitHub token configured")

    def request(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        """Issue a REST call and return its decoded JSON body.

        Args:
            operation: Name of the calling operation, used in error messages
            method: HTTP method
            path: Path below the API base URL
            **kwargs: Passed through to ``requests.Session.request``

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            RemoteCallError: If the request fails or the server answers with an error
        """
        url = f"{self.api_url}{path}"
        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise RemoteCallError(operation, _describe_http_error(e), status) from e
        except requests.exceptions.RequestException as e:
            raise RemoteCallError(operation, str(e)) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteCallError(operation, f"Invalid JSON response: {e}", response.status_code) from e

    def graphql(self, operation: str, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Issue a GraphQL call and return its ``data`` payload.

        Raises:
            RemoteCallError: If the request fails or the payload carries errors
        """
        logger.debug(f"POST {self.graphql_url} ({operation})")
        try:
            response = self.session.post(
                self.graphql_url,
                json={"query": query, "variables": variables},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise RemoteCallError(operation, _describe_http_error(e), status) from e
        except requests.exceptions.RequestException as e:
            raise RemoteCallError(operation, str(e)) from e
        except ValueError as e:
            raise RemoteCallError(operation, f"Invalid JSON response: {e}") from e

        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in payload["errors"])
            raise RemoteCallError(operation, messages)
        return payload.get("data") or {}

    def initialize_repository(self, name: str) -> GitHubRepository:
        """Create a gateway for a target repository.

        Args:
            name: Repository identifier in ``owner/repo[@branch]`` format

        Raises:
            RepositoryNameError: If the identifier is malformed
            RemoteCallError: If the repository cannot be fetched
        """
        owner, repo, branch = parse_repository_name(name)
        data = self.request("Repository initializing", "GET", f"/repos/{owner}/{repo}")
        return GitHubRepository(self, owner, repo, branch or data["default_branch"])

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()

    def __enter__(self) -> GitHubClient:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()


class GitHubRepository:
    """Gateway for the remote operations on a single target repository.

    Args:
        client: Client used for every call
        owner: Repository owner
        name: Repository name
        base_branch: Branch sync branches are created from and PRs target
    """

    def __init__(self, client: GitHubClient, owner: str, name: str, base_branch: str):
        self.client = client
        self.owner = owner
        self.name = name
        self.base_branch = base_branch
        self._prefix = f"/repos/{owner}/{name}"

    def __repr__(self) -> str:
        return f"GitHubRepository({self.owner}/{self.name}@{self.base_branch})"

    def _call(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        return self.client.request(operation, method, f"{self._prefix}{path}", **kwargs)

    def create_branch(self, name: str) -> Branch:
        """Point ``name`` at the tip of the base branch, creating it if needed."""
        base = self._call("Create branch", "GET", f"/git/ref/heads/{self.base_branch}")
        sha = base["object"]["sha"]

        try:
            updated = self._call(
                "Create branch",
                "PATCH",
                f"/git/refs/heads/{name}",
                json={"sha": sha, "force": True},
            )
            return {"name": name, "sha": updated["object"]["sha"]}
        except RemoteCallError as e:
            logger.debug(f"Branch {name} could not be updated ({e}), creating it")

        created = self._call(
            "Create branch",
            "POST",
            "/git/refs",
            json={"ref": f"refs/heads/{name}", "sha": sha},
        )
        return {"name": name, "sha": created["object"]["sha"]}

    def delete_branch(self, name: str) -> None:
        self._call("Delete branch", "DELETE", f"/git/refs/heads/{name}")

    def commit(
        self,
        parent: str,
        branch: str,
        message: str,
        files: list[CommitFile],
        delete_files: Optional[list[DeleteFileConfig]] = None,
        force: bool = False,
    ) -> Commit:
        """Commit files on top of ``parent`` and move ``branch`` to the commit.

        Deletions are checked against the parent's actual tree: a delete is
        only sent when its path exists there with the requested type and is
        not also being added, since the API rejects deletes of missing paths.

        Args:
            parent: SHA of the single parent commit
            branch: Branch to update
            message: Commit message
            files: Files to add or replace
            delete_files: Paths to remove
            force: Force-update the branch ref

        Returns:
            The created commit
        """
        tree: list[Any] = [
            {"path": f["path"], "mode": f["mode"], "type": "blob", "content": f["content"]}
            for f in files
        ]
        if delete_files:
            tree.extend(self._prune_deletions(parent, files, delete_files))

        created_tree = self._call(
            "Commit",
            "POST",
            "/git/trees",
            json={"base_tree": parent, "tree": tree},
        )
        commit = self._call(
            "Commit",
            "POST",
            "/git/commits",
            json={"tree": created_tree["sha"], "message": message, "parents": [parent]},
        )
        self._call(
            "Commit",
            "PATCH",
            f"/git/refs/heads/{branch}",
            json={"sha": commit["sha"], "force": force},
        )
        return {"sha": commit["sha"], "message": commit["message"]}

    def _prune_deletions(
        self,
        parent: str,
        files: list[CommitFile],
        delete_files: list[DeleteFileConfig],
    ) -> list[TreeDeleteEntry]:
        parent_commit = self._call("Commit", "GET", f"/git/commits/{parent}")
        parent_tree = self._call(
            "Commit",
            "GET",
            f"/git/trees/{parent_commit['tree']['sha']}",
            params={"recursive": "1"},
        )
        if parent_tree.get("truncated"):
            logger.warning(f"Tree of {parent} is truncated, some deletions may be skipped")

        existing = {(entry["path"], entry["type"]) for entry in parent_tree.get("tree", [])}
        added = {f["path"] for f in files}

        entries: list[TreeDeleteEntry] = []
        for delete_file in delete_files:
            is_directory = delete_file["type"] == "directory"
            entry_type: Literal["blob", "tree"] = "tree" if is_directory else "blob"
            path = delete_file["path"]
            if path in added:
                logger.debug(f'Skipping delete of "{path}": the path is being synced')
                continue
            if (path, entry_type) not in existing:
                logger.debug(f'Skipping delete of "{path}": not present in {parent}')
                continue
            entries.append(
                {
                    "path": path,
                    "mode": "040000" if is_directory else "100644",
                    "type": entry_type,
                    "sha": None,
                }
            )
        return entries

    def compare_commits(self, base: str, head: str) -> list[DiffEntry]:
        data = self._call("Compare commits", "GET", f"/compare/{base}...{head}")
        return data.get("files") or []

    def find_existing_pull_request_by_branch(self, branch: str) -> Optional[PullRequest]:
        """Return the first open pull request whose head is ``branch``."""
        prs = self._call(
            "Find existing pull request",
            "GET",
            "/pulls",
            params={"state": "open", "head": f"{self.owner}:{branch}"},
        )
        return prs[0] if prs else None

    def close_pull_request(self, number: int) -> None:
        self._call("Close pull request", "PATCH", f"/pulls/{number}", json={"state": "closed"})

    def create_or_update_pull_request(
        self,
        title: str,
        body: str,
        branch: str,
        number: Optional[int] = None,
    ) -> PullRequest:
        """Update pull request ``number`` when given, otherwise open a new one."""
        if number is not None:
            return self._call(
                "Create(Update) pull request",
                "PATCH",
                f"/pulls/{number}",
                json={"base": self.base_branch, "title": title, "body": body},
            )
        return self._call(
            "Create(Update) pull request",
            "POST",
            "/pulls",
            json={"base": self.base_branch, "head": branch, "title": title, "body": body},
        )

    def add_pull_request_labels(self, number: int, labels: list[str]) -> None:
        self._call("Add labels", "POST", f"/issues/{number}/labels", json={"labels": labels})

    def add_pull_request_reviewers(self, number: int, reviewers: list[str]) -> None:
        """Request reviews; ``team:<slug>`` entries are requested from teams."""
        users: list[str] = []
        teams: list[str] = []
        for reviewer in reviewers:
            if reviewer.startswith("team:") and len(reviewer) > len("team:"):
                teams.append(_remove_at_mark(reviewer[len("team:"):]))
            else:
                users.append(_remove_at_mark(reviewer))

        self._call(
            "Add reviewers",
            "POST",
            f"/pulls/{number}/requested_reviewers",
            json={"reviewers": users, "team_reviewers": teams},
        )

    def add_pull_request_assignees(self, number: int, assignees: list[str]) -> None:
        self._call(
            "Add assignees",
            "POST",
            f"/issues/{number}/assignees",
            json={"assignees": [_remove_at_mark(a) for a in assignees]},
        )

    def merge_pull_request(
        self,
        number: int,
        mode: MergeMode,
        strategy: MergeStrategy,
        commit_headline: Optional[str] = None,
        commit_body: Optional[str] = None,
    ) -> MergeResult:
        """Merge a pull request, or prepare it for auto-merge.

        The requested mode is adjusted to the live state of the pull request:
        a merge queue forces auto-merge unless ``admin`` is requested, and an
        immediately mergeable pull request is merged right away.

        Returns:
            What happened to the pull request
        """
        operation = "PR merge"
        data = self.client.graphql(
            operation,
            PULL_REQUEST_STATE_QUERY,
            {"owner": self.owner, "repo": self.name, "number": number},
        )
        pr = data["repository"]["pullRequest"]

        if pr["isInMergeQueue"] or pr["merged"]:
            logger.info(f"#{number} is already queued or merged")
            return MergeResult.ALREADY_HANDLED

        merge_state = (pr.get("mergeStateStatus") or "UNKNOWN").upper()
        if pr.get("isMergeQueueEnabled") and mode != "admin":
            mode = "auto"
        elif merge_state in IMMEDIATELY_MERGEABLE_STATES:
            mode = "immediate"
        logger.debug(f"#{number} merge state {merge_state}, mode {mode}")

        if pr.get("autoMergeRequest") is not None:
            if mode == "auto":
                return MergeResult.ALREADY_HANDLED
            self.client.graphql(
                operation,
                DISABLE_AUTO_MERGE_MUTATION,
                {"input": {"pullRequestId": pr["id"]}},
            )

        if not _is_mergeable(pr, merge_state, mode):
            return MergeResult.UNMERGEABLE

        merge_input: dict[str, Any] = {
            "pullRequestId": pr["id"],
            "mergeMethod": strategy.upper(),
        }
        if commit_headline is not None:
            merge_input["commitHeadline"] = commit_headline
        if commit_body is not None:
            merge_input["commitBody"] = commit_body

        if mode == "auto":
            self.client.graphql(operation, ENABLE_AUTO_MERGE_MUTATION, {"input": merge_input})
            return MergeResult.PREPARED

        self.client.graphql(operation, MERGE_MUTATION, {"input": merge_input})
        return MergeResult.MERGED


def _is_mergeable(pr: dict[str, Any], merge_state: str, mode: str) -> bool:
    if pr["state"] != "OPEN":
        return False
    if mode != "auto" and pr["isDraft"]:
        return False
    if merge_state == "DIRTY":
        return False
    if mode != "admin" and merge_state in ADMIN_ONLY_STATES:
        return False
    return True


def _describe_http_error(error: requests.exceptions.HTTPError) -> str:
    response = error.response
    if response is None:
        return str(error)
    try:
        details = response.json()
    except ValueError:
        details = None
    if isinstance(details, dict) and details.get("message"):
        message = details["message"]
    else:
        message = response.text or response.reason
    return f"{response.status_code} {message}"
