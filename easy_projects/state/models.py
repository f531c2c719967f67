"""Data models for persisted project session state.

This module defines the dataclasses that make up a project's ``easy.json``
record and the transient classifications computed while restoring it.

Design principles:
- Frozen instances for immutability (frozen=True)
- Collections converted to immutable types in __post_init__ (lists -> tuples)
- to_dict/from_dict helpers for JSON serialization
- Optional fields are omitted from to_dict output rather than written as null
- Manifest order is preserved exactly; it is the order documents are replayed

Critical: from_dict also accepts the legacy layout (``files`` as a list of
strings plus a ``modified_files`` map) and normalizes it into FileEntry
records, so a read followed by a write upgrades old configs in place.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

UNNAMED_PREFIX = ".__unnamed__/"
UNNAMED_ACTIVE_PREFIX = "__unnamed__"


class ConflictType(str, Enum):
    """Drift of a tracked file between snapshot and restore.

    Attributes:
        NONE: On-disk content still matches the recorded fingerprint
        MODIFIED: On-disk content changed since the snapshot
        DELETED: The file is no longer readable on disk
    """

    NONE = "none"
    MODIFIED = "modified"
    DELETED = "deleted"


class Resolution(str, Enum):
    """Decision taken for a conflicted file.

    Attributes:
        DISK: Keep the on-disk version, drop the stashed edits
        STASHED: Re-apply the stashed edits on top of the current disk content
        SKIP: Leave the file alone
    """

    DISK = "disk"
    STASHED = "stashed"
    SKIP = "skip"


@dataclass(frozen=True)
class FileEntry:
    """One tracked open document.

    Attributes:
        path: Path relative to the project root, or a synthetic
            ``.__unnamed__/...`` identifier for a scratch document
        is_unnamed: True for scratch documents with no backing file
        modified: Whether the document had unsaved changes at snapshot time
        diff_hash: Name of the path-keyed diff blob (named, modified entries)
        content_hash: Name of the content-keyed blob (unnamed entries)
        original_hash: Fingerprint of the on-disk content at snapshot time
    """

    path: str
    is_unnamed: bool = False
    modified: bool = False
    diff_hash: Optional[str] = None
    content_hash: Optional[str] = None
    original_hash: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.path, str) or not self.path:
            raise ValueError("FileEntry path must be a non-empty string")
        if self.diff_hash and self.content_hash:
            raise ValueError(f"FileEntry {self.path} cannot carry both diff_hash and content_hash")
        if not self.modified and (self.diff_hash or self.content_hash):
            raise ValueError(f"Unmodified FileEntry {self.path} cannot reference a blob")
        if self.is_unnamed and self.diff_hash:
            raise ValueError(f"Unnamed FileEntry {self.path} cannot reference a diff blob")
        if not self.is_unnamed and self.content_hash:
            raise ValueError(f"Named FileEntry {self.path} cannot reference a content blob")

    @property
    def has_stash(self) -> bool:
        """True when the entry references a blob that must be replayed."""
        return bool(self.diff_hash or self.content_hash)

    def to_dict(self) -> Dict[str, Any]:
        """Convert entry to dict for JSON serialization.

        Returns:
            Dictionary with the three required keys plus any present blob keys
        """
        payload: Dict[str, Any] = {
            "path": self.path,
            "is_unnamed": self.is_unnamed,
            "modified": self.modified,
        }
        if self.diff_hash:
            payload["diff_hash"] = self.diff_hash
        if self.content_hash:
            payload["content_hash"] = self.content_hash
        if self.original_hash:
            payload["original_hash"] = self.original_hash
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FileEntry":
        """Reconstruct entry from dict.

        Args:
            data: Dictionary containing entry fields

        Returns:
            FileEntry instance
        """
        return cls(
            path=data["path"],
            is_unnamed=bool(data.get("is_unnamed", False)),
            modified=bool(data.get("modified", False)),
            diff_hash=data.get("diff_hash") or None,
            content_hash=data.get("content_hash") or None,
            original_hash=data.get("original_hash") or None,
        )


@dataclass(frozen=True)
class UIState:
    """Sidebar layout saved alongside the manifest.

    Attributes:
        explorer_open: Whether the file explorer was visible
        explorer_width: Explorer width in columns (None if never measured)
    """

    explorer_open: bool = False
    explorer_width: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"explorer_open": self.explorer_open}
        if self.explorer_width is not None:
            payload["explorer_width"] = self.explorer_width
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "UIState":
        if not data:
            return cls()
        width = data.get("explorer_width")
        try:
            width = int(width) if width is not None else None
        except (TypeError, ValueError):
            width = None
        return cls(explorer_open=bool(data.get("explorer_open", False)), explorer_width=width)


@dataclass(frozen=True)
class ProjectConfig:
    """The persisted per-project record.

    Attributes:
        files: Ordered manifest of tracked documents (display order at save time)
        active_file: Relative path or ``__unnamed__:<hash>`` reference of the
            active document
        ui: Sidebar layout
    """

    files: Tuple[FileEntry, ...] = field(default_factory=tuple)
    active_file: Optional[str] = None
    ui: UIState = field(default_factory=UIState)

    def __post_init__(self) -> None:
        if not isinstance(self.files, tuple):
            object.__setattr__(self, "files", tuple(self.files))

    @property
    def is_empty(self) -> bool:
        return not self.files and self.active_file is None

    def referenced_blobs(self) -> List[str]:
        """Return blob file names referenced by the manifest, in manifest order."""
        names: List[str] = []
        for entry in self.files:
            if entry.diff_hash:
                names.append(f"{entry.diff_hash}.diff")
            if entry.content_hash:
                names.append(f"{entry.content_hash}.content")
        return names

    def with_files(self, files: Iterable[FileEntry]) -> "ProjectConfig":
        return replace(self, files=tuple(files))

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dict for JSON serialization.

        Returns:
            Dictionary with files list in manifest order, ui block and the
            active file when one is set
        """
        payload: Dict[str, Any] = {
            "files": [entry.to_dict() for entry in self.files],
            "ui": self.ui.to_dict(),
        }
        if self.active_file:
            payload["active_file"] = self.active_file
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProjectConfig":
        """Reconstruct config from dict, upgrading the legacy manifest shape.

        Args:
            data: Decoded easy.json payload

        Returns:
            ProjectConfig instance

        Raises:
            ValueError: If ``files`` is not a list
        """
        raw_files = data.get("files") or []
        if not isinstance(raw_files, list):
            raise ValueError("ProjectConfig files must be a list")

        entries: List[FileEntry] = []
        for item in raw_files:
            if isinstance(item, str):
                if item.startswith(".__unnamed_tab__/"):
                    # Empty scratch tabs carried no content
                    continue
                entries.append(FileEntry(path=item))
            elif isinstance(item, Mapping):
                entries.append(FileEntry.from_dict(item))

        legacy = data.get("modified_files")
        if isinstance(legacy, Mapping) and legacy:
            entries = _merge_legacy_modified(entries, legacy)

        active = data.get("active_file")
        return cls(
            files=tuple(entries),
            active_file=active if isinstance(active, str) and active else None,
            ui=UIState.from_dict(data.get("ui") if isinstance(data.get("ui"), Mapping) else None),
        )


def _merge_legacy_modified(entries: List[FileEntry], legacy: Mapping[str, Any]) -> List[FileEntry]:
    merged = list(entries)
    index = {entry.path: pos for pos, entry in enumerate(merged)}
    for path in sorted(legacy):
        record = legacy[path]
        if not isinstance(record, Mapping):
            continue
        if record.get("is_unnamed"):
            if not record.get("content_hash"):
                continue
            entry = FileEntry(
                path=path,
                is_unnamed=True,
                modified=True,
                content_hash=record["content_hash"],
            )
        else:
            if not record.get("diff_hash"):
                # Oldest format stored inline lines; nothing to replay
                continue
            entry = FileEntry(
                path=path,
                modified=True,
                diff_hash=record["diff_hash"],
                original_hash=record.get("original_hash") or None,
            )
        if path in index:
            merged[index[path]] = entry
        else:
            index[path] = len(merged)
            merged.append(entry)
    return merged
