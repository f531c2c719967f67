"""Restore engine: replays a project's manifest into the document surface.

A restore runs in two phases so that conflict prompts can suspend it:

1. ``prepare`` takes the project lock, loads the config and classifies every
   stashed file, returning a RestorePlan whose ``resolver`` holds the pending
   conflict questions.
2. ``finish`` (once the resolver is done) replays the manifest in order and
   releases the lock.

``restore`` chains both with a synchronous chooser.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from easy_projects.conflicts import Chooser, ConflictProtocolError, ConflictResolver, classify, drive
from easy_projects.diffs import DiffError, apply_diff
from easy_projects.state.hashing import content_key
from easy_projects.state.layout import has_saved_state, normalize_root
from easy_projects.state.lock import ProjectBusyError, ProjectLock
from easy_projects.state.logger import ProjectLog
from easy_projects.state.models import (
    UNNAMED_ACTIVE_PREFIX,
    ConflictType,
    FileEntry,
    ProjectConfig,
    Resolution,
)
from easy_projects.state.persistence import read_content_blob, read_diff_blob, read_project_config
from easy_projects.surface.base import Document, DocumentSurface, LayoutSurface

LOGGER = logging.getLogger(__name__)


@dataclass
class RestorePlan:
    """State carried from ``prepare`` to ``finish``.

    Attributes:
        project_root: Normalized project directory
        config: Loaded project config
        conflicts: Conflicted relative paths and their classification
        resolver: Pending conflict questions
        lock: Project lock held until finish/abandon; None when nothing was saved
        log: Restore logger bound to the project
    """

    project_root: Path
    config: ProjectConfig
    conflicts: Dict[str, ConflictType]
    resolver: ConflictResolver
    lock: Optional[ProjectLock] = None
    started: float = field(default_factory=time.perf_counter)
    closed: bool = False
    log: ProjectLog = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.log = ProjectLog(LOGGER, self.project_root)

    @property
    def needs_input(self) -> bool:
        return not self.resolver.done


@dataclass
class RestoreReport:
    """Outcome of a restore.

    Attributes:
        opened: Number of documents opened or materialized
        stashed: Relative paths whose stashed edits were re-applied
        skipped: (path, reason) pairs for entries that were not restored as saved
        resolutions: Decisions taken for conflicted files
        active: Document activated at the end, if any
        documents: Documents opened by this restore, in manifest order
    """

    opened: int = 0
    stashed: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    resolutions: Dict[str, Resolution] = field(default_factory=dict)
    active: Optional[Document] = None
    documents: List[Document] = field(default_factory=list)


class RestoreEngine:
    """Replays saved project state through a DocumentSurface."""

    def __init__(
        self,
        surface: DocumentSurface,
        layout: Optional[LayoutSurface] = None,
        *,
        lock_timeout: Optional[float] = None,
    ) -> None:
        self.surface = surface
        self.layout = layout
        self._lock_timeout = lock_timeout

    # ------------------------------------------------------------------
    # Phases

    def prepare(self, project_root: Path | str) -> RestorePlan:
        """
        Lock the project, load its config and classify stashed files.

        A directory without saved state yields an empty plan and is left
        untouched.

        Raises:
            ProjectBusyError: If another snapshot or restore holds the project,
                or the lock cannot be created
        """
        root = normalize_root(project_root)
        if not has_saved_state(root):
            return RestorePlan(project_root=root, config=ProjectConfig(), conflicts={}, resolver=ConflictResolver({}))

        lock = ProjectLock(root, timeout=self._lock_timeout)
        lock.acquire()
        try:
            config = read_project_config(root)
            conflicts: Dict[str, ConflictType] = {}
            for entry in config.files:
                if entry.is_unnamed or not entry.diff_hash:
                    continue
                kind = classify(root, entry)
                if kind is not ConflictType.NONE:
                    conflicts[entry.path] = kind
        except BaseException:
            lock.release()
            raise

        plan = RestorePlan(
            project_root=root,
            config=config,
            conflicts=conflicts,
            resolver=ConflictResolver(conflicts),
            lock=lock,
        )
        plan.log.emit("restore.prepare", level=logging.DEBUG, files=len(config.files), conflicts=len(conflicts))
        return plan

    def abandon(self, plan: RestorePlan) -> None:
        """Release a plan without replaying it."""
        self._close(plan)

    def finish(self, plan: RestorePlan) -> RestoreReport:
        """
        Replay the manifest of a prepared plan.

        Raises:
            ConflictProtocolError: If conflict questions are still pending
        """
        if plan.closed:
            raise ConflictProtocolError("Restore plan was already finished or abandoned")
        if plan.needs_input:
            raise ConflictProtocolError("Conflict resolution is still waiting for input")

        report = RestoreReport(resolutions=dict(plan.resolver.resolutions))
        try:
            if self.layout is not None:
                self.layout.restore_explorer(plan.config.ui)
            self._replay(plan, report)
            self._activate(plan, report)
        finally:
            self._close(plan)

        plan.log.emit(
            "restore.complete",
            opened=report.opened,
            stashed=len(report.stashed),
            skipped=len(report.skipped),
            conflicts=len(plan.conflicts),
            latency_ms=(time.perf_counter() - plan.started) * 1000,
        )
        return report

    def restore(self, project_root: Path | str, chooser: Optional[Chooser] = None) -> RestoreReport:
        """Prepare, resolve conflicts with ``chooser`` (None cancels) and finish."""
        try:
            plan = self.prepare(project_root)
        except ProjectBusyError as exc:
            ProjectLog(LOGGER, project_root).warning("Skipping restore: %s", exc)
            return RestoreReport()
        try:
            drive(plan.resolver, chooser)
        except BaseException:
            self.abandon(plan)
            raise
        return self.finish(plan)

    # ------------------------------------------------------------------
    # Replay

    def _close(self, plan: RestorePlan) -> None:
        plan.closed = True
        if plan.lock is not None:
            plan.lock.release()

    def _stash_applies(self, plan: RestorePlan, entry: FileEntry) -> bool:
        if not entry.diff_hash:
            return False
        if entry.path not in plan.conflicts:
            return True
        return plan.resolver.resolutions.get(entry.path) is Resolution.STASHED

    def _replay(self, plan: RestorePlan, report: RestoreReport) -> None:
        reused: Set[int] = set()
        for entry in plan.config.files:
            if entry.is_unnamed:
                document = self._restore_unnamed(plan, entry, report, reused)
            elif self._stash_applies(plan, entry):
                document = self._restore_stashed(plan, entry, report)
            else:
                if entry.path in plan.conflicts:
                    resolution = plan.resolver.resolutions.get(entry.path, Resolution.SKIP)
                    report.skipped.append((entry.path, f"conflict resolved as {resolution.value}"))
                document = self._open_plain(plan, entry, report)
            if document is not None:
                report.opened += 1
                report.documents.append(document)

    def _restore_unnamed(
        self,
        plan: RestorePlan,
        entry: FileEntry,
        report: RestoreReport,
        reused: Set[int],
    ) -> Optional[Document]:
        if not entry.content_hash:
            report.skipped.append((entry.path, "no content blob"))
            return None
        try:
            lines = read_content_blob(plan.project_root, entry.content_hash)
        except OSError as exc:
            plan.log.warning("Cannot restore scratch document %s: %s", entry.path, exc)
            report.skipped.append((entry.path, "content blob missing"))
            return None

        target = None
        for candidate in self.surface.documents():
            if id(candidate) in reused or candidate.special or candidate.path is not None:
                continue
            if not candidate.modified and (not candidate.lines or list(candidate.lines) == [""]):
                target = candidate
                break
        if target is None:
            target = self.surface.create_unnamed()
        reused.add(id(target))

        target.lines = lines
        target.modified = True
        return target

    def _restore_stashed(self, plan: RestorePlan, entry: FileEntry, report: RestoreReport) -> Optional[Document]:
        absolute = plan.project_root / entry.path
        try:
            diff_text = read_diff_blob(plan.project_root, entry.diff_hash or "")
            try:
                original: Optional[bytes] = absolute.read_bytes()
            except FileNotFoundError:
                original = None
            lines = apply_diff(original, diff_text)
        except (OSError, DiffError) as exc:
            plan.log.warning("Cannot re-apply stashed edits of %s: %s", entry.path, exc)
            report.skipped.append((entry.path, f"stash not applied: {exc}"))
            return self._open_plain(plan, entry, report)

        document = self.surface.open_file(absolute, create=True)
        if document is None:
            report.skipped.append((entry.path, "document could not be created"))
            return None
        document.lines = lines
        document.modified = True
        report.stashed.append(entry.path)
        return document

    def _open_plain(self, plan: RestorePlan, entry: FileEntry, report: RestoreReport) -> Optional[Document]:
        absolute = plan.project_root / entry.path
        if not absolute.is_file():
            report.skipped.append((entry.path, "not readable on disk"))
            return None
        document = self.surface.open_file(absolute)
        if document is None:
            report.skipped.append((entry.path, "not readable on disk"))
        return document

    # ------------------------------------------------------------------
    # Activation

    def _activate(self, plan: RestorePlan, report: RestoreReport) -> None:
        active = plan.config.active_file
        if not active:
            return

        target: Optional[Document] = None
        if active.startswith(UNNAMED_ACTIVE_PREFIX):
            _, _, wanted = active.partition(":")
            for document in report.documents:
                if document.path is not None:
                    continue
                if not wanted or content_key(list(document.lines)) == wanted:
                    target = document
                    break
        else:
            if report.opened == 0:
                return
            absolute = str((plan.project_root / active).resolve())
            for document in report.documents:
                if document.path is not None and str(Path(document.path).resolve()) == absolute:
                    target = document
                    break
            if target is None and (plan.project_root / active).is_file():
                target = self.surface.open_file(plan.project_root / active)
                if target is not None:
                    report.opened += 1
                    report.documents.append(target)

        if target is not None:
            self.surface.activate(target)
            report.active = target


def restore(
    project_root: Path | str,
    surface: DocumentSurface,
    chooser: Optional[Chooser] = None,
    *,
    layout: Optional[LayoutSurface] = None,
) -> int:
    """Restore a project and return how many documents were opened."""
    return RestoreEngine(surface, layout).restore(project_root, chooser).opened


__all__ = ["RestoreEngine", "RestorePlan", "RestoreReport", "restore"]
