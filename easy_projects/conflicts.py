"""Conflict detection and the resolution protocol for stashed edits.

The protocol is an explicit state machine with a single suspension point:
``ConflictResolver.prompt`` describes the question to show and
``ConflictResolver.answer`` consumes the user's choice (or None for a
cancellation). Hosts that cannot block may hold a resolver for as long as a
dialog stays open and answer it later.

Modes:
- batch (more than one conflict): disk for all, stashed for all, or review
- individual (one conflict, or after review): files in lexicographic order,
  each answered with disk, stashed, or skip-all-remaining

Cancellation at any prompt resolves every undecided file as skip.
"""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union

from easy_projects.state.hashing import fingerprint
from easy_projects.state.layout import normalize_root
from easy_projects.state.logger import ProjectLog
from easy_projects.state.models import ConflictType, FileEntry, Resolution

LOGGER = logging.getLogger(__name__)

OPTION_DISK = "disk"
OPTION_STASHED = "stashed"
OPTION_REVIEW = "review"
OPTION_SKIP = "skip"


class ConflictProtocolError(RuntimeError):
    """Raised when a resolver is answered out of turn or with an unknown option."""


def classify(project_root: Path | str, entry: FileEntry) -> ConflictType:
    """
    Compare a tracked file's recorded fingerprint with the disk.

    Args:
        project_root: Project directory
        entry: Manifest entry to check

    Returns:
        NONE when there is no recorded fingerprint or it still matches,
        DELETED when the file cannot be read, MODIFIED otherwise
    """
    if entry.is_unnamed or not entry.original_hash:
        return ConflictType.NONE

    target = normalize_root(project_root) / entry.path
    try:
        current = target.read_bytes()
    except OSError:
        return ConflictType.DELETED

    if fingerprint(current) != entry.original_hash:
        return ConflictType.MODIFIED
    return ConflictType.NONE


class ResolverMode(str, Enum):
    BATCH = "batch"
    INDIVIDUAL = "individual"
    DONE = "done"


@dataclass(frozen=True)
class Option:
    key: str
    label: str


@dataclass(frozen=True)
class Prompt:
    """A question for the interactive chooser.

    Attributes:
        text: Prompt line shown above the options
        options: Ordered choices
        path: Relative path the question is about (individual mode only)
        conflict: Conflict type of that path (individual mode only)
    """

    text: str
    options: Tuple[Option, ...]
    path: Optional[str] = None
    conflict: Optional[ConflictType] = None

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(option.key for option in self.options)

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(option.label for option in self.options)


BATCH_OPTIONS = (
    Option(OPTION_DISK, "Use Disk versions (lose stashed changes)"),
    Option(OPTION_STASHED, "Use Stashed versions (restore modified files)"),
    Option(OPTION_REVIEW, "Review each file individually"),
)

INDIVIDUAL_OPTIONS = (
    Option(OPTION_DISK, "Use Disk version"),
    Option(OPTION_STASHED, "Use Stashed version"),
    Option(OPTION_SKIP, "Skip remaining files"),
)


class ConflictResolver:
    """State machine mapping every conflicted path to a Resolution."""

    def __init__(self, conflicts: Mapping[str, ConflictType]) -> None:
        self._conflicts: Dict[str, ConflictType] = {
            path: ConflictType(kind) for path, kind in conflicts.items() if ConflictType(kind) != ConflictType.NONE
        }
        self._order = sorted(self._conflicts)
        self._resolutions: Dict[str, Resolution] = {}
        self._index = 0
        if not self._order:
            self._mode = ResolverMode.DONE
        elif len(self._order) == 1:
            self._mode = ResolverMode.INDIVIDUAL
        else:
            self._mode = ResolverMode.BATCH

    @property
    def mode(self) -> ResolverMode:
        return self._mode

    @property
    def done(self) -> bool:
        return self._mode is ResolverMode.DONE

    @property
    def conflicts(self) -> Mapping[str, ConflictType]:
        return MappingProxyType(self._conflicts)

    @property
    def resolutions(self) -> Mapping[str, Resolution]:
        """Decisions taken so far; complete once ``done`` is True."""
        return MappingProxyType(self._resolutions)

    @property
    def prompt(self) -> Optional[Prompt]:
        if self._mode is ResolverMode.BATCH:
            return Prompt(
                text=f"{len(self._order)} files have conflicts. Choose action:",
                options=BATCH_OPTIONS,
            )
        if self._mode is ResolverMode.INDIVIDUAL:
            path = self._order[self._index]
            kind = self._conflicts[path]
            status = " (was deleted)" if kind is ConflictType.DELETED else " (was modified)"
            return Prompt(
                text=f"File {self._index + 1}/{len(self._order)}: {path}{status}",
                options=INDIVIDUAL_OPTIONS,
                path=path,
                conflict=kind,
            )
        return None

    def answer(self, choice: Optional[str]) -> Optional[Prompt]:
        """
        Consume a choice for the current prompt.

        Args:
            choice: Option key from the current prompt, or None to cancel

        Returns:
            The next prompt, or None once every conflict is resolved

        Raises:
            ConflictProtocolError: If the resolver is done or the key is not offered
        """
        current = self.prompt
        if current is None:
            raise ConflictProtocolError("All conflicts are already resolved")
        if choice is not None and choice not in current.keys:
            raise ConflictProtocolError(f"Unknown choice {choice!r}; expected one of {current.keys}")

        if choice is None:
            self._skip_remaining()
        elif self._mode is ResolverMode.BATCH:
            if choice == OPTION_REVIEW:
                self._mode = ResolverMode.INDIVIDUAL
            else:
                resolution = Resolution(choice)
                for path in self._order:
                    self._resolutions[path] = resolution
                self._finish()
        elif choice == OPTION_SKIP:
            self._skip_remaining()
        else:
            self._resolutions[self._order[self._index]] = Resolution(choice)
            self._index += 1
            if self._index >= len(self._order):
                self._finish()
        return self.prompt

    def _skip_remaining(self) -> None:
        for path in self._order:
            self._resolutions.setdefault(path, Resolution.SKIP)
        self._finish()

    def _finish(self) -> None:
        self._mode = ResolverMode.DONE
        counts: Dict[str, int] = {}
        for resolution in self._resolutions.values():
            counts[resolution.value] = counts.get(resolution.value, 0) + 1
        ProjectLog(LOGGER).emit("conflict.resolved", level=logging.DEBUG, **counts)


Chooser = Callable[[Prompt], Optional[str]]
AsyncChooser = Callable[[Prompt], Union[Awaitable[Optional[str]], Optional[str]]]


def drive(resolver: ConflictResolver, chooser: Optional[Chooser]) -> Mapping[str, Resolution]:
    """Answer every prompt of ``resolver`` with ``chooser``; no chooser cancels."""
    prompt = resolver.prompt
    while prompt is not None:
        choice = chooser(prompt) if chooser is not None else None
        prompt = resolver.answer(choice)
    return resolver.resolutions


def resolve_conflicts(
    conflicts: Mapping[str, ConflictType],
    chooser: Optional[Chooser],
) -> Dict[str, Resolution]:
    """Run the protocol synchronously and return the complete mapping."""
    return dict(drive(ConflictResolver(conflicts), chooser))


async def resolve_conflicts_async(
    conflicts: Mapping[str, ConflictType],
    chooser: AsyncChooser,
) -> Dict[str, Resolution]:
    """Run the protocol with a chooser that may return an awaitable."""
    resolver = ConflictResolver(conflicts)
    prompt = resolver.prompt
    while prompt is not None:
        choice: Any = chooser(prompt)
        if inspect.isawaitable(choice):
            choice = await choice
        prompt = resolver.answer(choice)
    return dict(resolver.resolutions)


__all__ = [
    "BATCH_OPTIONS",
    "INDIVIDUAL_OPTIONS",
    "Chooser",
    "ConflictProtocolError",
    "ConflictResolver",
    "Option",
    "Prompt",
    "ResolverMode",
    "classify",
    "drive",
    "resolve_conflicts",
    "resolve_conflicts_async",
]
