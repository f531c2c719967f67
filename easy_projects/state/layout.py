"""On-disk layout of a project's persisted session state.

Per project root::

    <root>/.easy/easy.json               ProjectConfig
    <root>/.easy/diffs/<hash12>.diff     path-keyed diff blob
    <root>/.easy/diffs/<hash12>.content  content-keyed blob
    <root>/.easy/easy.lock/              lock directory while an operation runs
    <root>/.easy.json                    legacy single-file config (migrated away)
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

EASY_DIRNAME = ".easy"
CONFIG_FILENAME = "easy.json"
DIFFS_DIRNAME = "diffs"
LOCK_DIRNAME = "easy.lock"
LEGACY_CONFIG_FILENAME = ".easy.json"

DIFF_SUFFIX = ".diff"
CONTENT_SUFFIX = ".content"


def normalize_root(project_root: Path | str) -> Path:
    return Path(project_root).expanduser().resolve()


def easy_dir(project_root: Path | str) -> Path:
    return normalize_root(project_root) / EASY_DIRNAME


def config_path(project_root: Path | str) -> Path:
    return easy_dir(project_root) / CONFIG_FILENAME


def diffs_dir(project_root: Path | str) -> Path:
    return easy_dir(project_root) / DIFFS_DIRNAME


def lock_dir(project_root: Path | str) -> Path:
    return easy_dir(project_root) / LOCK_DIRNAME


def legacy_config_path(project_root: Path | str) -> Path:
    return normalize_root(project_root) / LEGACY_CONFIG_FILENAME


def diff_blob_path(project_root: Path | str, diff_hash: str) -> Path:
    return diffs_dir(project_root) / f"{diff_hash}{DIFF_SUFFIX}"


def content_blob_path(project_root: Path | str, content_hash: str) -> Path:
    return diffs_dir(project_root) / f"{content_hash}{CONTENT_SUFFIX}"


def has_saved_state(project_root: Path | str) -> bool:
    """Return True if the directory carries a current or legacy config."""
    return config_path(project_root).is_file() or legacy_config_path(project_root).is_file()


def resolve_project_root(start: Path | str | None = None) -> Path:
    """Locate the project root via EASY_PROJECT_DIR or by walking up from ``start``."""
    if start is None:
        env_root = os.environ.get("EASY_PROJECT_DIR")
        if env_root:
            return normalize_root(env_root)
        start = Path.cwd()

    current = normalize_root(start)
    for candidate in (current, *current.parents):
        if (candidate / EASY_DIRNAME).is_dir() or (candidate / LEGACY_CONFIG_FILENAME).is_file():
            return candidate
    raise RuntimeError(f"Unable to locate project root (.easy directory missing) from {current}")


def to_relative_path(path: Path | str, project_root: Path | str) -> Optional[str]:
    """Return ``path`` relative to ``project_root`` in POSIX form, or None if outside it."""
    root = normalize_root(project_root)
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    try:
        relative = candidate.resolve().relative_to(root)
    except ValueError:
        return None
    text = relative.as_posix()
    if text in ("", "."):
        return None
    return text
