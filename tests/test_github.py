"""Tests for GitHub client module."""

import json
from unittest.mock import patch

import pytest
import requests
import responses

from files_sync.errors import RemoteCallError, RepositoryNameError
from files_sync.github import (
    GitHubClient,
    GitHubRepository,
    graphql_url_for,
    parse_repository_name,
)

API_URL = "https://api.github.com"
REPO_URL = f"{API_URL}/repos/owner/repo"


def _body(call_index: int) -> dict:
    return json.loads(responses.calls[call_index].request.body)


class TestRepositoryName:
    """Test cases for repository identifier parsing."""

    def test_parse_owner_repo(self) -> None:
        assert parse_repository_name("owner/repo") == ("owner", "repo", None)

    def test_parse_pinned_branch(self) -> None:
        assert parse_repository_name("owner/repo@release/v1") == ("owner", "repo", "release/v1")

    @pytest.mark.parametrize("name", ["repo", "owner/", "/repo", "", "@main"])
    def test_parse_invalid(self, name: str) -> None:
        with pytest.raises(RepositoryNameError, match="owner/repo"):
            parse_repository_name(name)


class TestGitHubClient:
    """Test cases for GitHubClient."""

    @patch.dict("os.environ", {}, clear=True)
    def test_init_defaults(self) -> None:
        """Test GitHubClient initialization without token or API URL."""
        client = GitHubClient()
        assert client.token is None
        assert client.api_url == "https://api.github.com"
        assert "Authorization" not in client.session.headers

    @patch.dict("os.environ", {"GITHUB_TOKEN": "env_token", "GITHUB_API_URL": "https://ghe.example.com/api/v3/"})
    def test_init_from_environment(self) -> None:
        """Test token and API URL loading from the environment."""
        client = GitHubClient()
        assert client.token == "env_token"
        assert client.api_url == "https://ghe.example.com/api/v3"
        assert client.graphql_url == "https://ghe.example.com/api/graphql"

    @pytest.mark.parametrize(
        ("api_url", "expected"),
        [
            ("https://api.github.com", "https://api.github.com/graphql"),
            ("https://ghe.example.com/api/v3", "https://ghe.example.com/api/graphql"),
            ("https://ghe.example.com/api/v3/", "https://ghe.example.com/api/graphql"),
        ],
    )
    def test_graphql_url_for(self, api_url: str, expected: str) -> None:
        assert graphql_url_for(api_url) == expected

    @responses.activate
    def test_request_sends_token(self, client: GitHubClient) -> None:
        """Test the token is sent with every request."""
        responses.add(responses.GET, REPO_URL, json={"default_branch": "main"})

        client.request("Test", "GET", "/repos/owner/repo")

        assert responses.calls[0].request.headers["Authorization"] == "token test_token"

    @responses.activate
    def test_request_http_error(self, client: GitHubClient) -> None:
        """Test HTTP errors are wrapped with the operation and status."""
        responses.add(responses.GET, REPO_URL, json={"message": "Not Found"}, status=404)

        with pytest.raises(RemoteCallError) as exc_info:
            client.request("Repository initializing", "GET", "/repos/owner/repo")

        assert exc_info.value.operation == "Repository initializing"
        assert exc_info.value.status_code == 404
        assert str(exc_info.value) == "Repository initializing error: 404 Not Found"
        assert isinstance(exc_info.value.__cause__, requests.HTTPError)

    @responses.activate
    def test_request_connection_error(self, client: GitHubClient) -> None:
        """Test transport errors are wrapped."""
        responses.add(responses.GET, REPO_URL, body=requests.ConnectionError("boom"))

        with pytest.raises(RemoteCallError, match="Test error: boom") as exc_info:
            client.request("Test", "GET", "/repos/owner/repo")
        assert exc_info.value.status_code is None

    @responses.activate
    def test_graphql_errors(self, client: GitHubClient) -> None:
        """Test GraphQL error payloads are raised."""
        responses.add(
            responses.POST,
            f"{API_URL}/graphql",
            json={"data": None, "errors": [{"message": "Could not resolve"}]},
        )

        with pytest.raises(RemoteCallError, match="PR merge error: Could not resolve"):
            client.graphql("PR merge", "query { viewer { login } }", {})

    @responses.activate
    def test_initialize_repository_default_branch(self, client: GitHubClient) -> None:
        """Test the default branch is used when none is pinned."""
        responses.add(responses.GET, REPO_URL, json={"default_branch": "trunk"})

        repo = client.initialize_repository("owner/repo")

        assert (repo.owner, repo.name, repo.base_branch) == ("owner", "repo", "trunk")

    @responses.activate
    def test_initialize_repository_pinned_branch(self, client: GitHubClient) -> None:
        """Test a pinned branch overrides the default branch."""
        responses.add(responses.GET, REPO_URL, json={"default_branch": "main"})

        repo = client.initialize_repository("owner/repo@develop")

        assert repo.base_branch == "develop"

    def test_initialize_repository_invalid_name(self, client: GitHubClient) -> None:
        """Test malformed names fail before any request."""
        with pytest.raises(RepositoryNameError):
            client.initialize_repository("not-a-repo")

    def test_context_manager(self) -> None:
        """Test GitHubClient as context manager."""
        with GitHubClient(token="t") as client:
            assert client.session is not None


class TestGitHubRepository:
    """Test cases for the repository gateway."""

    @pytest.fixture
    def repo(self, client: GitHubClient) -> GitHubRepository:
        return GitHubRepository(client, "owner", "repo", "main")

    @responses.activate
    def test_create_branch_updates_existing(self, repo: GitHubRepository) -> None:
        """Test an existing branch is force-updated to the base tip."""
        responses.add(responses.GET, f"{REPO_URL}/git/ref/heads/main", json={"object": {"sha": "base"}})
        responses.add(
            responses.PATCH,
            f"{REPO_URL}/git/refs/heads/files-sync/x-0",
            json={"object": {"sha": "base"}},
        )

        branch = repo.create_branch("files-sync/x-0")

        assert branch == {"name": "files-sync/x-0", "sha": "base"}
        assert _body(1) == {"sha": "base", "force": True}
        assert len(responses.calls) == 2

    @responses.activate
    def test_create_branch_creates_missing(self, repo: GitHubRepository) -> None:
        """Test a missing branch is created when the update fails."""
        responses.add(responses.GET, f"{REPO_URL}/git/ref/heads/main", json={"object": {"sha": "base"}})
        responses.add(
            responses.PATCH,
            f"{REPO_URL}/git/refs/heads/sync",
            json={"message": "Reference does not exist"},
            status=422,
        )
        responses.add(responses.POST, f"{REPO_URL}/git/refs", json={"object": {"sha": "base"}}, status=201)

        branch = repo.create_branch("sync")

        assert branch == {"name": "sync", "sha": "base"}
        assert _body(2) == {"ref": "refs/heads/sync", "sha": "base"}

    @responses.activate
    def test_create_branch_missing_base(self, repo: GitHubRepository) -> None:
        """Test a missing base branch fails the operation."""
        responses.add(responses.GET, f"{REPO_URL}/git/ref/heads/main", status=404)

        with pytest.raises(RemoteCallError, match="Create branch error"):
            repo.create_branch("sync")

    @responses.activate
    def test_delete_branch(self, repo: GitHubRepository) -> None:
        responses.add(responses.DELETE, f"{REPO_URL}/git/refs/heads/sync", status=204)

        repo.delete_branch("sync")

        assert len(responses.calls) == 1

    @responses.activate
    def test_commit_without_deletions(self, repo: GitHubRepository) -> None:
        """Test tree, commit and ref update of a plain commit."""
        responses.add(responses.POST, f"{REPO_URL}/git/trees", json={"sha": "tree"}, status=201)
        responses.add(
            responses.POST,
            f"{REPO_URL}/git/commits",
            json={"sha": "commit", "message": "chore: sync"},
            status=201,
        )
        responses.add(responses.PATCH, f"{REPO_URL}/git/refs/heads/sync", json={"object": {"sha": "commit"}})

        commit = repo.commit(
            parent="parent",
            branch="sync",
            message="chore: sync",
            files=[{"path": "a.txt", "mode": "100644", "content": "a"}],
        )

        assert commit == {"sha": "commit", "message": "chore: sync"}
        assert _body(0) == {
            "base_tree": "parent",
            "tree": [{"path": "a.txt", "mode": "100644", "type": "blob", "content": "a"}],
        }
        assert _body(1) == {"tree": "tree", "message": "chore: sync", "parents": ["parent"]}
        assert _body(2) == {"sha": "commit", "force": False}

    @responses.activate
    def test_commit_prunes_deletions(self, repo: GitHubRepository) -> None:
        """Test deletes are only sent for paths present in the parent tree."""
        responses.add(responses.GET, f"{REPO_URL}/git/commits/parent", json={"tree": {"sha": "ptree"}})
        responses.add(
            responses.GET,
            f"{REPO_URL}/git/trees/ptree",
            json={
                "truncated": False,
                "tree": [
                    {"path": "old.txt", "type": "blob"},
                    {"path": "legacy", "type": "tree"},
                    {"path": "legacy/a.txt", "type": "blob"},
                    {"path": "a.txt", "type": "blob"},
                ],
            },
        )
        responses.add(responses.POST, f"{REPO_URL}/git/trees", json={"sha": "tree"}, status=201)
        responses.add(responses.POST, f"{REPO_URL}/git/commits", json={"sha": "c", "message": "m"}, status=201)
        responses.add(responses.PATCH, f"{REPO_URL}/git/refs/heads/sync", json={})

        repo.commit(
            parent="parent",
            branch="sync",
            message="m",
            files=[{"path": "a.txt", "mode": "100644", "content": "a"}],
            delete_files=[
                {"path": "old.txt", "type": "file"},
                {"path": "legacy", "type": "directory"},
                {"path": "never-existed.txt", "type": "file"},
                {"path": "a.txt", "type": "file"},
                {"path": "legacy/a.txt", "type": "directory"},
            ],
            force=True,
        )

        assert responses.calls[1].request.params == {"recursive": "1"}
        assert _body(2)["tree"] == [
            {"path": "a.txt", "mode": "100644", "type": "blob", "content": "a"},
            {"path": "old.txt", "mode": "100644", "type": "blob", "sha": None},
            {"path": "legacy", "mode": "040000", "type": "tree", "sha": None},
        ]
        assert _body(4) == {"sha": "c", "force": True}

    @responses.activate
    def test_compare_commits(self, repo: GitHubRepository) -> None:
        files = [{"filename": "a.txt", "status": "added"}, {"filename": "b.txt", "status": "removed"}]
        responses.add(responses.GET, f"{REPO_URL}/compare/base...head", json={"files": files})

        assert repo.compare_commits("base", "head") == files

    @responses.activate
    def test_compare_commits_without_files(self, repo: GitHubRepository) -> None:
        responses.add(responses.GET, f"{REPO_URL}/compare/base...head", json={"status": "identical"})

        assert repo.compare_commits("base", "head") == []

    @responses.activate
    def test_find_existing_pull_request(self, repo: GitHubRepository) -> None:
        """Test the first open pull request of the branch is returned."""
        responses.add(
            responses.GET,
            f"{REPO_URL}/pulls",
            json=[{"number": 3, "html_url": "u3"}, {"number": 4, "html_url": "u4"}],
        )

        pr = repo.find_existing_pull_request_by_branch("sync")

        assert pr is not None and pr["number"] == 3
        assert responses.calls[0].request.params == {"state": "open", "head": "owner:sync"}

    @responses.activate
    def test_find_existing_pull_request_none(self, repo: GitHubRepository) -> None:
        responses.add(responses.GET, f"{REPO_URL}/pulls", json=[])

        assert repo.find_existing_pull_request_by_branch("sync") is None

    @responses.activate
    def test_close_pull_request(self, repo: GitHubRepository) -> None:
        responses.add(responses.PATCH, f"{REPO_URL}/pulls/7", json={"number": 7})

        repo.close_pull_request(7)

        assert _body(0) == {"state": "closed"}

    @responses.activate
    def test_create_pull_request(self, repo: GitHubRepository) -> None:
        """Test a pull request is opened against the base branch."""
        responses.add(
            responses.POST,
            f"{REPO_URL}/pulls",
            json={"number": 1, "html_url": "https://github.com/owner/repo/pull/1"},
            status=201,
        )

        pr = repo.create_or_update_pull_request(title="t", body="b", branch="sync")

        assert pr["html_url"] == "https://github.com/owner/repo/pull/1"
        assert _body(0) == {"base": "main", "head": "sync", "title": "t", "body": "b"}

    @responses.activate
    def test_update_pull_request(self, repo: GitHubRepository) -> None:
        """Test an existing pull request is updated in place."""
        responses.add(responses.PATCH, f"{REPO_URL}/pulls/5", json={"number": 5, "html_url": "u"})

        repo.create_or_update_pull_request(title="t", body="b", branch="sync", number=5)

        assert _body(0) == {"base": "main", "title": "t", "body": "b"}

    @responses.activate
    def test_add_labels(self, repo: GitHubRepository) -> None:
        responses.add(responses.POST, f"{REPO_URL}/issues/5/labels", json=[])

        repo.add_pull_request_labels(5, ["sync", "ci"])

        assert _body(0) == {"labels": ["sync", "ci"]}

    @responses.activate
    def test_add_reviewers_routes_teams(self, repo: GitHubRepository) -> None:
        """Test team: reviewers go to team reviewers and @ is stripped."""
        responses.add(responses.POST, f"{REPO_URL}/pulls/5/requested_reviewers", json={}, status=201)

        repo.add_pull_request_reviewers(5, ["@alice", "bob", "team:@platform", "team:infra"])

        assert _body(0) == {"reviewers": ["alice", "bob"], "team_reviewers": ["platform", "infra"]}

    @responses.activate
    def test_add_assignees(self, repo: GitHubRepository) -> None:
        responses.add(responses.POST, f"{REPO_URL}/issues/5/assignees", json={}, status=201)

        repo.add_pull_request_assignees(5, ["@alice", "bob"])

        assert _body(0) == {"assignees": ["alice", "bob"]}

    @responses.activate
    def test_operation_failure_is_wrapped(self, repo: GitHubRepository) -> None:
        responses.add(responses.POST, f"{REPO_URL}/issues/5/labels", json={"message": "Forbidden"}, status=403)

        with pytest.raises(RemoteCallError, match="Add labels error: 403 Forbidden"):
            repo.add_pull_request_labels(5, ["x"])
