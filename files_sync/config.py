"""Configuration parsing and validation for files-sync.

This module reads the YAML configuration file that maps sets of files in the
current repository to the target repositories they are synchronized into,
and resolves the layered commit/branch/pull request settings of each pattern.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Union

import yaml
from typing_extensions import Literal, NotRequired, TypedDict

from .errors import ConfigError
from .utils import deep_merge

logger = logging.getLogger(__name__)

MergeMode = Literal["disabled", "immediate", "auto", "admin"]
MergeStrategy = Literal["merge", "rebase", "squash"]
DeleteType = Literal["file", "directory"]

MERGE_MODES = ("disabled", "immediate", "auto", "admin")
MERGE_STRATEGIES = ("merge", "rebase", "squash")
DELETE_TYPES = ("file", "directory")


class CommitConfig(TypedDict, total=False):
    """Commit message settings. All templates are rendered with Jinja2."""

    format: str
    prefix: str
    subject: str


class BranchConfig(TypedDict, total=False):
    """Branch name settings."""

    format: str
    prefix: str


class MergeConfig(TypedDict, total=False):
    """Pull request merge settings."""

    mode: MergeMode
    strategy: MergeStrategy
    delete_branch: bool
    commit: CommitConfig


class PullRequestConfig(TypedDict, total=False):
    """Pull request settings."""

    disabled: bool
    force: bool
    title: str
    body: str
    reviewers: list[str]
    assignees: list[str]
    labels: list[str]
    merge: MergeConfig


class SettingsConfig(TypedDict, total=False):
    """Global defaults applied to every pattern."""

    commit: CommitConfig
    branch: BranchConfig
    pull_request: PullRequestConfig


# "from" is a keyword, so these use the functional syntax.
FileConfig = TypedDict(
    "FileConfig",
    {"from": str, "to": str, "exclude": NotRequired[list[str]]},
)


class DeleteFileConfig(TypedDict):
    """A path to remove from the target repository."""

    path: str
    type: DeleteType


class PatternConfig(TypedDict, total=False):
    """One mapping of source files to target repositories."""

    files: list[Union[str, FileConfig]]
    delete_files: list[Union[str, DeleteFileConfig]]
    repositories: list[str]
    commit: CommitConfig
    branch: BranchConfig
    pull_request: PullRequestConfig
    template: dict[str, Any]


class Config(TypedDict):
    """Main configuration structure."""

    settings: SettingsConfig
    patterns: list[PatternConfig]


class EntryConfig(TypedDict):
    """Fully resolved settings of a single pattern."""

    commit: CommitConfig
    branch: BranchConfig
    pull_request: PullRequestConfig


DEFAULT_PR_BODY = """
This PR contains the following updates:

| :chart_with_upwards_trend: Change | :hammer_and_wrench: Synchronizing Repository | :link: Workflow |
| :-- | :-- | :-- |
| {{ changes | length }} files | [{{ repository }}]({{ github }}/{{ repository }}) | [`{{ workflow }}#{{ run.number }}`]({{ run.url }}) |

---

### Changed Files

{% for file in changes -%}
- {% if file['from'] == file['to'] %}`{{ file['to'] }}`{% else %}`{{ file['from'] }}` to `{{ file['to'] }}`{% endif %}
{% endfor -%}
{% if deleted %}
### Deleted Files

{% for file in deleted -%}
- `{{ file['path'] }}`
{% endfor -%}
{% endif %}
""".strip()

PR_FOOTER = """
---

<div align="right">

:package: Generated by files-sync.

</div>"""

DEFAULT_ENTRY_CONFIG: EntryConfig = {
    "commit": {
        # -> "chore: sync files with `owner/repo`"
        "format": "{{ prefix }}: {{ subject }}",
        "prefix": "chore",
        "subject": "sync files with `{{ repository }}`",
    },
    "branch": {
        # -> "files-sync/owner-repo-0"
        "format": "{{ prefix }}/{{ repository }}-{{ index }}",
        "prefix": "files-sync",
    },
    "pull_request": {
        "disabled": False,
        "force": False,
        "title": "Sync files with `{{ repository }}`",
        "body": DEFAULT_PR_BODY,
        "reviewers": [],
        "assignees": [],
        "labels": [],
        "merge": {
            "mode": "disabled",
            "strategy": "merge",
            "delete_branch": False,
            "commit": {},
        },
    },
}

DEFAULT_FILE_EXCLUDE: list[str] = []
DEFAULT_DELETE_TYPE: DeleteType = "file"


def load_config(config_path: Path) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Parsed and validated configuration dictionary

    Raises:
        ConfigError: If the file is missing, malformed or structurally invalid

    Example:
        >>> config = load_config(Path(".github/files-sync.yml"))
        >>> print(len(config["patterns"]))
        2
    """
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read configuration: {e}") from e

    config = validate_config(data)

    total_repositories = sum(len(p["repositories"]) for p in config["patterns"])
    logger.info(
        f"Successfully loaded configuration with {len(config['patterns'])} patterns "
        f"targeting {total_repositories} repositories"
    )
    return config


def validate_config(data: Any) -> Config:
    """Validate raw configuration data.

    Unknown keys are dropped. Error messages name the offending value with
    its object-notation path, e.g. ``patterns.0.files.1.from``.

    Raises:
        ConfigError: If the configuration structure is invalid
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a dictionary")

    if "patterns" not in data:
        raise ConfigError("Configuration must contain 'patterns' key")

    settings = _validate_settings(data.get("settings"), "settings")

    patterns = data["patterns"]
    if not isinstance(patterns, list):
        raise ConfigError("patterns: must be a list")

    validated_patterns = [
        _validate_pattern(pattern, f"patterns.{i}") for i, pattern in enumerate(patterns)
    ]

    return {"settings": settings, "patterns": validated_patterns}


def resolve_pattern_config(settings: SettingsConfig, pattern: PatternConfig) -> EntryConfig:
    """Resolve the effective settings of a pattern.

    Folds built-in defaults, global settings and pattern overrides, the last
    present value winning per field.
    """
    layers: list[Mapping[str, Any]] = [
        {key: settings.get(key, {}) for key in ("commit", "branch", "pull_request")},
        {key: pattern.get(key, {}) for key in ("commit", "branch", "pull_request")},
    ]
    merged: dict[str, Any] = deep_merge({}, DEFAULT_ENTRY_CONFIG)
    for layer in layers:
        merged = deep_merge(merged, layer)
    return merged  # type: ignore[return-value]


def normalize_file_config(spec: Union[str, FileConfig]) -> FileConfig:
    """Expand a file spec into its ``{from, to, exclude}`` form."""
    if isinstance(spec, str):
        return {"from": spec, "to": spec, "exclude": list(DEFAULT_FILE_EXCLUDE)}
    return {
        "from": spec["from"],
        "to": spec["to"],
        "exclude": list(spec.get("exclude", DEFAULT_FILE_EXCLUDE)),
    }


def normalize_delete_config(spec: Union[str, DeleteFileConfig]) -> DeleteFileConfig:
    """Expand a delete spec into its ``{path, type}`` form."""
    if isinstance(spec, str):
        return {"path": spec, "type": DEFAULT_DELETE_TYPE}
    return {"path": spec["path"], "type": spec.get("type", DEFAULT_DELETE_TYPE)}


def _validate_pattern(pattern: Any, path: str) -> PatternConfig:
    if not isinstance(pattern, dict):
        raise ConfigError(f"{path}: must be a dictionary")

    for field in ("files", "repositories"):
        if field not in pattern:
            raise ConfigError(f"{path}: missing required field: {field}")

    files = pattern["files"]
    if not isinstance(files, list):
        raise ConfigError(f"{path}.files: must be a list")
    validated_files = [
        _validate_file(spec, f"{path}.files.{j}") for j, spec in enumerate(files)
    ]

    validated: PatternConfig = {
        "files": validated_files,
        "repositories": _validate_str_list(pattern["repositories"], f"{path}.repositories"),
    }

    if pattern.get("delete_files") is not None:
        delete_files = pattern["delete_files"]
        if not isinstance(delete_files, list):
            raise ConfigError(f"{path}.delete_files: must be a list")
        validated["delete_files"] = [
            _validate_delete_file(spec, f"{path}.delete_files.{j}")
            for j, spec in enumerate(delete_files)
        ]

    if pattern.get("commit") is not None:
        validated["commit"] = _validate_commit(pattern["commit"], f"{path}.commit")
    if pattern.get("branch") is not None:
        validated["branch"] = _validate_branch(pattern["branch"], f"{path}.branch")
    if pattern.get("pull_request") is not None:
        validated["pull_request"] = _validate_pull_request(
            pattern["pull_request"], f"{path}.pull_request"
        )

    if pattern.get("template") is not None:
        template = pattern["template"]
        if not isinstance(template, dict):
            raise ConfigError(f"{path}.template: must be a dictionary")
        for key in template:
            if not isinstance(key, str):
                raise ConfigError(f"{path}.template: keys must be strings")
        validated["template"] = template

    return validated


def _validate_file(spec: Any, path: str) -> Union[str, FileConfig]:
    if isinstance(spec, str):
        return spec
    if not isinstance(spec, dict):
        raise ConfigError(f"{path}: must be a string or a dictionary")

    for field in ("from", "to"):
        if field not in spec:
            raise ConfigError(f"{path}: missing required field: {field}")
        _expect(spec[field], str, f"{path}.{field}", "a string")

    file_config: FileConfig = {"from": spec["from"], "to": spec["to"]}
    if spec.get("exclude") is not None:
        file_config["exclude"] = _validate_str_list(spec["exclude"], f"{path}.exclude")
    return file_config


def _validate_delete_file(spec: Any, path: str) -> Union[str, DeleteFileConfig]:
    if isinstance(spec, str):
        return spec
    if not isinstance(spec, dict):
        raise ConfigError(f"{path}: must be a string or a dictionary")
    if "path" not in spec:
        raise ConfigError(f"{path}: missing required field: path")
    _expect(spec["path"], str, f"{path}.path", "a string")

    delete_type = spec.get("type", DEFAULT_DELETE_TYPE)
    _expect_choice(delete_type, DELETE_TYPES, f"{path}.type")
    return {"path": spec["path"], "type": delete_type}


def _validate_settings(settings: Any, path: str) -> SettingsConfig:
    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ConfigError(f"{path}: must be a dictionary")

    validated: SettingsConfig = {}
    if settings.get("commit") is not None:
        validated["commit"] = _validate_commit(settings["commit"], f"{path}.commit")
    if settings.get("branch") is not None:
        validated["branch"] = _validate_branch(settings["branch"], f"{path}.branch")
    if settings.get("pull_request") is not None:
        validated["pull_request"] = _validate_pull_request(
            settings["pull_request"], f"{path}.pull_request"
        )
    return validated


def _validate_commit(commit: Any, path: str) -> CommitConfig:
    return _validate_fields(commit, path, {"format": str, "prefix": str, "subject": str})  # type: ignore[return-value]


def _validate_branch(branch: Any, path: str) -> BranchConfig:
    return _validate_fields(branch, path, {"format": str, "prefix": str})  # type: ignore[return-value]


def _validate_pull_request(pull_request: Any, path: str) -> PullRequestConfig:
    validated: dict[str, Any] = _validate_fields(
        pull_request,
        path,
        {"disabled": bool, "force": bool, "title": str, "body": str},
    )
    for field in ("reviewers", "assignees", "labels"):
        if pull_request.get(field) is not None:
            validated[field] = _validate_str_list(pull_request[field], f"{path}.{field}")
    if pull_request.get("merge") is not None:
        validated["merge"] = _validate_merge(pull_request["merge"], f"{path}.merge")
    return validated  # type: ignore[return-value]


def _validate_merge(merge: Any, path: str) -> MergeConfig:
    validated: dict[str, Any] = _validate_fields(merge, path, {"delete_branch": bool})
    if merge.get("mode") is not None:
        _expect_choice(merge["mode"], MERGE_MODES, f"{path}.mode")
        validated["mode"] = merge["mode"]
    if merge.get("strategy") is not None:
        _expect_choice(merge["strategy"], MERGE_STRATEGIES, f"{path}.strategy")
        validated["strategy"] = merge["strategy"]
    if merge.get("commit") is not None:
        validated["commit"] = _validate_commit(merge["commit"], f"{path}.commit")
    return validated  # type: ignore[return-value]


def _validate_fields(data: Any, path: str, fields: dict[str, type]) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: must be a dictionary")

    validated: dict[str, Any] = {}
    for field, expected in fields.items():
        if data.get(field) is None:
            continue
        type_name = "a boolean" if expected is bool else "a string"
        _expect(data[field], expected, f"{path}.{field}", type_name)
        validated[field] = data[field]
    return validated


def _validate_str_list(values: Any, path: str) -> list[str]:
    if not isinstance(values, list):
        raise ConfigError(f"{path}: must be a list")
    for j, value in enumerate(values):
        _expect(value, str, f"{path}.{j}", "a string")
    return list(values)


def _expect(value: Any, expected: type, path: str, type_name: str) -> None:
    if not isinstance(value, expected):
        raise ConfigError(f"{path}: must be {type_name}")


def _expect_choice(value: Any, choices: tuple[str, ...], path: str) -> None:
    if value not in choices:
        raise ConfigError(f"{path}: must be one of {', '.join(choices)} (got {value!r})")
