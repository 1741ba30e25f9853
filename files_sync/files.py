"""Resolution of pattern file specs into concrete file contents.

Each file spec of a pattern names a file or a directory in the working tree.
Directories are expanded recursively, exclude globs applied, and every file
is read (and optionally rendered as a template) into a ResolvedFile.
"""

from __future__ import annotations

import logging
import os
import stat
from concurrent.futures import Future, ThreadPoolExecutor
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import Any, Optional

from typing_extensions import Literal, TypedDict

from .config import (
    DeleteFileConfig,
    FileConfig,
    PatternConfig,
    normalize_delete_config,
    normalize_file_config,
)
from .errors import FileResolutionError
from .utils import render_file_template

logger = logging.getLogger(__name__)

FileMode = Literal["100644", "100755"]

ResolvedFile = TypedDict(
    "ResolvedFile",
    {"from": str, "to": str, "content": str, "mode": FileMode},
)


def resolve_files(pattern: PatternConfig, index: int, cwd: Path) -> list[ResolvedFile]:
    """Resolve all file specs of a pattern.

    Specs are resolved concurrently and joined in spec order, so the result
    is stable regardless of which spec finishes first.

    Args:
        pattern: Pattern whose ``files`` are resolved
        index: Position of the pattern in the config, used in error ids
        cwd: Directory the source paths are relative to

    Returns:
        Flat list of resolved files

    Raises:
        FileResolutionError: For the first failing spec, by spec index
    """
    specs = pattern["files"]
    template = pattern.get("template")
    if not specs:
        return []

    with ThreadPoolExecutor(max_workers=len(specs)) as executor:
        futures: list[Future[list[ResolvedFile]]] = [
            executor.submit(
                _resolve_spec, normalize_file_config(spec), f"patterns.{index}.files.{j}", cwd, template
            )
            for j, spec in enumerate(specs)
        ]

    resolved: list[ResolvedFile] = []
    for future in futures:
        resolved.extend(future.result())
    return resolved


def resolve_delete_files(pattern: PatternConfig) -> list[DeleteFileConfig]:
    """Normalize the delete specs of a pattern."""
    return [normalize_delete_config(spec) for spec in pattern.get("delete_files", [])]


def _resolve_spec(
    spec: FileConfig,
    spec_id: str,
    cwd: Path,
    template: Optional[dict[str, Any]],
) -> list[ResolvedFile]:
    try:
        source = cwd / spec["from"]
        excludes = spec.get("exclude", [])

        if source.is_dir():
            paths = [
                (_join(spec["from"], rel), _join(spec["to"], rel))
                for rel in _walk(source)
                if not _is_excluded(rel, excludes)
            ]
        else:
            # stat up front so a missing path fails the spec
            source.stat()
            paths = [(spec["from"], spec["to"])]
            if excludes:
                logger.warning(
                    f'{spec_id} - "exclude" specified for "{spec["from"]}" was ignored '
                    "because it is a single file."
                )

        return [_read_file(cwd, src, dest, template) for src, dest in paths]
    except (OSError, ValueError) as e:
        raise FileResolutionError(spec_id, str(e)) from e


def _read_file(
    cwd: Path, src: str, dest: str, template: Optional[dict[str, Any]]
) -> ResolvedFile:
    path = cwd / src
    raw = path.read_text(encoding="utf-8")
    mode: FileMode = "100755" if path.stat().st_mode & stat.S_IXUSR else "100644"
    content = render_file_template(raw, template) if template is not None else raw
    return {"from": src, "to": dest, "content": content, "mode": mode}


def _walk(root: Path) -> list[str]:
    """List files below root as POSIX paths relative to it, in walk order.

    Dotfiles and dot-directories are skipped.
    """
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if not d.startswith(".")]
        rel_dir = Path(dirpath).relative_to(root)
        for filename in filenames:
            if filename.startswith("."):
                continue
            found.append((rel_dir / filename).as_posix())
    return found


def _is_excluded(rel_path: str, patterns: list[str]) -> bool:
    parts = rel_path.split("/")
    return any(_glob_match(parts, pattern.strip("/").split("/")) for pattern in patterns)


def _glob_match(parts: list[str], pattern: list[str]) -> bool:
    """Match path segments against glob segments.

    ``*`` and ``?`` stay within one segment; a ``**`` segment spans any
    number of them, none included.
    """
    if not pattern:
        return not parts
    head, rest = pattern[0], pattern[1:]
    if head == "**":
        return any(_glob_match(parts[i:], rest) for i in range(len(parts) + 1))
    return bool(parts) and fnmatchcase(parts[0], head) and _glob_match(parts[1:], rest)


def _join(base: str, rel: str) -> str:
    return str(PurePosixPath(base) / rel)
