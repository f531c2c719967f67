"""Snapshot engine: turns open documents into a manifest plus stash blobs."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Set

from easy_projects.diffs import DiffError, compute_diff
from easy_projects.state.hashing import content_key, fingerprint, path_key
from easy_projects.state.layout import normalize_root, to_relative_path
from easy_projects.state.logger import ProjectLog
from easy_projects.state.models import UNNAMED_ACTIVE_PREFIX, UNNAMED_PREFIX, FileEntry
from easy_projects.state.persistence import write_content_blob, write_diff_blob
from easy_projects.surface.base import Document

LOGGER = logging.getLogger(__name__)


def _is_blank(lines: List[str]) -> bool:
    return not lines or lines == [""]


def unnamed_path(document: Document) -> str:
    return f"{UNNAMED_PREFIX}unnamed_{document.identity}"


def active_file_reference(project_root: Path | str, document: Optional[Document]) -> Optional[str]:
    """Return the ``active_file`` value for ``document``, or None if it is not trackable."""
    if document is None or document.special:
        return None
    if document.path is None:
        lines = list(document.lines)
        if _is_blank(lines):
            return None
        return f"{UNNAMED_ACTIVE_PREFIX}:{content_key(lines)}"
    return to_relative_path(document.path, project_root)


def _snapshot_unnamed(root: Path, document: Document, log: ProjectLog) -> Optional[FileEntry]:
    lines = list(document.lines)
    if _is_blank(lines):
        return None
    key = content_key(lines)
    try:
        write_content_blob(root, key, lines)
    except OSError as exc:
        log.warning("Cannot stash scratch document %s: %s", document.identity, exc)
        return None
    return FileEntry(path=unnamed_path(document), is_unnamed=True, modified=True, content_hash=key)


def _snapshot_modified(root: Path, relative: str, document: Document, log: ProjectLog) -> FileEntry:
    try:
        original: Optional[bytes] = (root / relative).read_bytes()
    except FileNotFoundError:
        original = None
    except OSError as exc:
        log.warning("Cannot read %s for stashing: %s", relative, exc)
        return FileEntry(path=relative, modified=True)

    try:
        diff_text = compute_diff(original, list(document.lines), label=relative)
        diff_hash = path_key(relative)
        write_diff_blob(root, diff_hash, diff_text)
    except (DiffError, OSError) as exc:
        # Keep the file in the manifest; only its edits are lost
        log.warning("Cannot stash edits of %s: %s", relative, exc)
        return FileEntry(path=relative, modified=True)

    return FileEntry(
        path=relative,
        modified=True,
        diff_hash=diff_hash,
        original_hash=fingerprint(original) if original is not None else None,
    )


def snapshot(project_root: Path | str, documents: Iterable[Document]) -> List[FileEntry]:
    """
    Build the manifest for ``documents`` and write their stash blobs.

    Documents are visited in the given (display) order. Special documents and
    files outside the project are skipped, as are blank scratch documents.
    Unmodified files are recorded without a blob; modified files get a
    path-keyed diff blob and the fingerprint of their on-disk content;
    scratch documents get a content-keyed blob.

    Args:
        project_root: Project directory
        documents: Open documents in display order

    Returns:
        Manifest entries in display order
    """
    root = normalize_root(project_root)
    entries: List[FileEntry] = []
    seen: Set[str] = set()
    skipped = 0

    log = ProjectLog(LOGGER, root)
    with log.timer("snapshot.complete") as finalize:
        for document in documents:
            if document.special:
                continue

            if document.path is None:
                entry = _snapshot_unnamed(root, document, log)
                if entry is None:
                    skipped += 1
                    continue
                entries.append(entry)
                continue

            relative = to_relative_path(document.path, root)
            if relative is None:
                log.debug("Not tracking %s: outside the project", document.path)
                skipped += 1
                continue
            if relative in seen:
                continue
            seen.add(relative)

            if not document.modified:
                entries.append(FileEntry(path=relative))
            else:
                entries.append(_snapshot_modified(root, relative, document, log))

        finalize(
            {
                "files": len(entries),
                "stashed": sum(1 for entry in entries if entry.has_stash),
                "skipped": skipped,
            }
        )
    return entries


__all__ = ["active_file_reference", "snapshot", "unnamed_path"]
