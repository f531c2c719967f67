"""Persistence helpers for project configs and stash blobs."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import suppress
from dataclasses import replace
from pathlib import Path
from typing import Any, List, Optional, Sequence

from easy_projects.state.layout import (
    CONTENT_SUFFIX,
    DIFF_SUFFIX,
    config_path,
    content_blob_path,
    diff_blob_path,
    diffs_dir,
    easy_dir,
    legacy_config_path,
)
from easy_projects.state.logger import ProjectLog
from easy_projects.state.models import ProjectConfig

LOGGER = logging.getLogger(__name__)


class ConfigStoreError(RuntimeError):
    """Raised when a project config cannot be persisted."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        super().__init__(f"Cannot write project config {path}: {reason}")


class BlobMissingError(FileNotFoundError):
    """Raised when a manifest references a blob that is not on disk."""


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Write bytes to path atomically (temp file + rename)."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=".tmp_easy_",
        suffix=target.suffix or ".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, target)
    except BaseException:
        with suppress(OSError):
            os.unlink(temp_path)
        raise


def encode_config(config: ProjectConfig) -> str:
    """Serialize a config deterministically (sorted keys, two-space indent)."""
    return json.dumps(config.to_dict(), indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def ensure_state_dirs(project_root: Path | str) -> None:
    easy_dir(project_root).mkdir(parents=True, exist_ok=True)
    diffs_dir(project_root).mkdir(parents=True, exist_ok=True)


def migrate_legacy_config(project_root: Path | str) -> bool:
    """
    Move a legacy ``<root>/.easy.json`` into ``<root>/.easy/easy.json``.

    Migration behavior:
    - Skip if the legacy file doesn't exist
    - Skip if the new config already exists (already migrated)
    - Copy bytes verbatim, then remove the legacy file

    Returns:
        True if a migration happened
    """
    legacy = legacy_config_path(project_root)
    target = config_path(project_root)

    if not legacy.is_file():
        return False
    if target.exists():
        return False

    log = ProjectLog(LOGGER, project_root)
    try:
        content = legacy.read_bytes()
        ensure_state_dirs(project_root)
        atomic_write_bytes(target, content)
    except OSError as exc:
        log.warning("Legacy config migration failed for %s: %s", legacy, exc)
        return False

    try:
        legacy.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        log.warning("Migrated %s but could not remove it: %s", legacy, exc)

    log.emit("config.migrate", source=legacy.name)
    return True


def read_project_config(project_root: Path | str) -> ProjectConfig:
    """Load a project's config; missing or corrupt state reads as an empty config."""
    migrate_legacy_config(project_root)

    target = config_path(project_root)
    log = ProjectLog(LOGGER, project_root)
    if not target.exists():
        return ProjectConfig()
    try:
        data: Any = json.loads(target.read_text(encoding="utf-8"))
    except OSError as exc:
        log.warning("Cannot read project config %s: %s", target, exc)
        return ProjectConfig()
    except (json.JSONDecodeError, UnicodeDecodeError):
        # Corrupt file: back it up once and start fresh
        log.warning("Project config %s is corrupt; treating as empty", target)
        backup = target.with_suffix(".bad.json")
        with suppress(OSError):
            target.replace(backup)
        return ProjectConfig()

    if not isinstance(data, dict):
        log.warning("Project config %s is not a JSON object; treating as empty", target)
        return ProjectConfig()
    try:
        return ProjectConfig.from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        log.warning("Project config %s has invalid entries (%s); treating as empty", target, exc)
        return ProjectConfig()


def write_project_config(
    project_root: Path | str,
    config: ProjectConfig,
    *,
    strict: bool = False,
) -> bool:
    """
    Persist a project's config atomically.

    Args:
        project_root: Project directory
        config: Record to write
        strict: Raise ConfigStoreError instead of returning False on I/O failure

    Returns:
        True if the record was written
    """
    target = config_path(project_root)
    log = ProjectLog(LOGGER, project_root)
    try:
        ensure_state_dirs(project_root)
        atomic_write_bytes(target, encode_config(config).encode("utf-8"))
    except OSError as exc:
        if strict:
            raise ConfigStoreError(target, str(exc)) from exc
        log.warning("Cannot write project config %s: %s", target, exc)
        return False
    log.emit("config.write", level=logging.DEBUG, files=len(config.files))
    return True


def update_project_config(project_root: Path | str, **changes: Any) -> Optional[ProjectConfig]:
    """Re-read the config, apply field changes and write it back.

    Returns:
        The written config, or None if it could not be written
    """
    config = replace(read_project_config(project_root), **changes)
    if not write_project_config(project_root, config):
        return None
    return config


# ===== BLOBS ===== #

def _lines_to_bytes(lines: Sequence[str]) -> bytes:
    return "".join(f"{line}\n" for line in lines).encode("utf-8", errors="surrogateescape")


def bytes_to_lines(content: bytes) -> List[str]:
    """Split file bytes into lines without terminators; a final newline adds no line."""
    text = content.decode("utf-8", errors="surrogateescape")
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def write_diff_blob(project_root: Path | str, diff_hash: str, diff_text: str) -> Path:
    target = diff_blob_path(project_root, diff_hash)
    atomic_write_bytes(target, diff_text.encode("utf-8", errors="surrogateescape"))
    return target


def read_diff_blob(project_root: Path | str, diff_hash: str) -> str:
    target = diff_blob_path(project_root, diff_hash)
    try:
        return target.read_bytes().decode("utf-8", errors="surrogateescape")
    except FileNotFoundError as exc:
        raise BlobMissingError(f"Diff blob missing: {target}") from exc


def write_content_blob(project_root: Path | str, content_hash: str, lines: Sequence[str]) -> Path:
    target = content_blob_path(project_root, content_hash)
    if target.exists():
        # Content-addressed: an existing blob already holds these bytes
        return target
    atomic_write_bytes(target, _lines_to_bytes(lines))
    return target


def read_content_blob(project_root: Path | str, content_hash: str) -> List[str]:
    target = content_blob_path(project_root, content_hash)
    try:
        return bytes_to_lines(target.read_bytes())
    except FileNotFoundError as exc:
        raise BlobMissingError(f"Content blob missing: {target}") from exc


def prune_orphan_blobs(project_root: Path | str, config: ProjectConfig | None = None) -> List[str]:
    """
    Delete blobs in the diffs directory that the config no longer references.

    Args:
        project_root: Project directory
        config: Config to keep blobs for (defaults to the persisted one)

    Returns:
        Sorted names of removed blob files
    """
    blob_dir = diffs_dir(project_root)
    if not blob_dir.is_dir():
        return []
    if config is None:
        config = read_project_config(project_root)
    keep = set(config.referenced_blobs())

    log = ProjectLog(LOGGER, project_root)
    removed: List[str] = []
    for candidate in sorted(blob_dir.iterdir()):
        if candidate.suffix not in (DIFF_SUFFIX, CONTENT_SUFFIX) or not candidate.is_file():
            continue
        if candidate.name in keep:
            continue
        try:
            candidate.unlink()
        except OSError as exc:
            log.warning("Cannot remove orphan blob %s: %s", candidate, exc)
            continue
        removed.append(candidate.name)

    log.emit("blobs.prune", removed=len(removed))
    return removed


__all__ = [
    "atomic_write_bytes",
    "BlobMissingError",
    "ConfigStoreError",
    "bytes_to_lines",
    "encode_config",
    "ensure_state_dirs",
    "migrate_legacy_config",
    "prune_orphan_blobs",
    "read_content_blob",
    "read_diff_blob",
    "read_project_config",
    "update_project_config",
    "write_content_blob",
    "write_diff_blob",
    "write_project_config",
]
