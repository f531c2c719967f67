"""Explicit "loaded project" context for saving and switching projects.

A ProjectSession replaces ambient "current project" state: the loaded project
is set when a project is switched in and cleared when it is closed, and every
save or restore goes through the session's surface.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional

from easy_projects.conflicts import Chooser, drive
from easy_projects.projects import ProjectRegistry
from easy_projects.restore import RestoreEngine, RestorePlan, RestoreReport
from easy_projects.snapshot import active_file_reference, snapshot
from easy_projects.state.layout import normalize_root
from easy_projects.state.lock import ProjectBusyError, ProjectLock
from easy_projects.state.logger import ProjectLog
from easy_projects.state.models import ProjectConfig, UIState
from easy_projects.state.persistence import read_project_config, update_project_config, write_project_config
from easy_projects.surface.base import Document, DocumentSurface, LayoutSurface

LOGGER = logging.getLogger(__name__)


def save_project(
    project_root: Path | str,
    surface: DocumentSurface,
    layout: Optional[LayoutSurface] = None,
    *,
    lock_timeout: Optional[float] = None,
) -> Optional[ProjectConfig]:
    """
    Snapshot the surface's documents into the project's config.

    Args:
        project_root: Project directory
        surface: Source of open documents
        layout: Source of the sidebar layout; the stored layout is kept when omitted
        lock_timeout: Seconds to wait for the project lock

    Returns:
        The written config, or None if the project was busy or unwritable
    """
    root = normalize_root(project_root)
    try:
        with ProjectLock(root, timeout=lock_timeout):
            previous = read_project_config(root)
            config = ProjectConfig(
                files=tuple(snapshot(root, surface.documents())),
                active_file=active_file_reference(root, surface.active()),
                ui=layout.explorer_state() if layout is not None else previous.ui,
            )
            if not write_project_config(root, config):
                return None
    except ProjectBusyError as exc:
        ProjectLog(LOGGER, root).warning("Skipping save: %s", exc)
        return None
    return config


@dataclass
class PendingSwitch:
    """A project switch waiting for conflict answers.

    Attributes:
        target: Project being switched in
        plan: Restore plan of the target; answer ``plan.resolver`` before completing
        old_documents: Documents of the previous project, closed on completion
    """

    target: Path
    plan: RestorePlan
    old_documents: List[Document] = field(default_factory=list)


class ProjectSession:
    """Owns the loaded project and drives save/restore on a surface."""

    def __init__(
        self,
        surface: DocumentSurface,
        *,
        layout: Optional[LayoutSurface] = None,
        registry: Optional[ProjectRegistry] = None,
        lock_timeout: Optional[float] = None,
    ) -> None:
        self.surface = surface
        self.layout = layout
        self.registry = registry
        self._lock_timeout = lock_timeout
        self._loaded: Optional[Path] = None

    @property
    def loaded_project(self) -> Optional[Path]:
        return self._loaded

    def mark_loaded(self, project_root: Path | str | None) -> None:
        self._loaded = normalize_root(project_root) if project_root is not None else None

    # ------------------------------------------------------------------
    # Saving

    def save(self) -> Optional[ProjectConfig]:
        """Snapshot the loaded project; no-op when nothing is loaded."""
        if self._loaded is None:
            return None
        return save_project(self._loaded, self.surface, self.layout, lock_timeout=self._lock_timeout)

    def record_active_file(self, document: Optional[Document] = None) -> Optional[str]:
        """Persist only the active file of the loaded project.

        Returns:
            The recorded reference, or None if nothing was written
        """
        if self._loaded is None:
            return None
        reference = active_file_reference(self._loaded, document if document is not None else self.surface.active())
        if reference is None:
            return None
        try:
            with ProjectLock(self._loaded, timeout=self._lock_timeout):
                if update_project_config(self._loaded, active_file=reference) is None:
                    return None
        except ProjectBusyError as exc:
            ProjectLog(LOGGER, self._loaded).warning("Not recording active file: %s", exc)
            return None
        return reference

    def record_layout(self, ui: Optional[UIState] = None) -> bool:
        """Persist only the sidebar layout of the loaded project."""
        if self._loaded is None:
            return False
        if ui is None:
            if self.layout is None:
                return False
            ui = self.layout.explorer_state()
        try:
            with ProjectLock(self._loaded, timeout=self._lock_timeout):
                config = replace(read_project_config(self._loaded), ui=ui)
                return write_project_config(self._loaded, config)
        except ProjectBusyError as exc:
            ProjectLog(LOGGER, self._loaded).warning("Not recording layout: %s", exc)
            return False

    def close(self) -> Optional[ProjectConfig]:
        """Save and switch the loaded project out."""
        config = self.save()
        self._loaded = None
        return config

    # ------------------------------------------------------------------
    # Switching

    def begin_switch(self, project_root: Path | str) -> Optional[PendingSwitch]:
        """
        Save the loaded project and prepare the restore of ``project_root``.

        Returns:
            A PendingSwitch to answer and complete, or None when no switch is
            needed (already loaded) or possible (missing directory, busy project)
        """
        target = normalize_root(project_root)
        if not target.is_dir():
            ProjectLog(LOGGER, target).warning("Cannot switch: not a directory")
            return None
        if self._loaded == target:
            if self.registry is not None:
                self.registry.move_to_top(target)
            return None

        old_documents = [doc for doc in self.surface.documents() if not doc.special]
        self.save()

        engine = RestoreEngine(self.surface, self.layout, lock_timeout=self._lock_timeout)
        try:
            plan = engine.prepare(target)
        except ProjectBusyError as exc:
            ProjectLog(LOGGER, target).warning("Cannot switch: %s", exc)
            return None
        return PendingSwitch(target=target, plan=plan, old_documents=old_documents)

    def complete_switch(self, pending: PendingSwitch) -> RestoreReport:
        """Replay the target project, close the previous documents and mark it loaded."""
        engine = RestoreEngine(self.surface, self.layout, lock_timeout=self._lock_timeout)
        report = engine.finish(pending.plan)

        kept = {id(doc) for doc in report.documents}
        for document in pending.old_documents:
            if id(document) in kept:
                continue
            self.surface.close(document, force=True)

        previous = self._loaded
        self._loaded = pending.target
        if self.registry is not None:
            self.registry.move_to_top(pending.target)
        ProjectLog(LOGGER, pending.target).emit(
            "session.switch",
            previous=str(previous) if previous is not None else None,
            opened=report.opened,
        )
        return report

    def switch_to(self, project_root: Path | str, chooser: Optional[Chooser] = None) -> int:
        """Switch projects, answering conflicts with ``chooser``; returns documents opened."""
        pending = self.begin_switch(project_root)
        if pending is None:
            return 0
        try:
            drive(pending.plan.resolver, chooser)
        except BaseException:
            RestoreEngine(self.surface, self.layout).abandon(pending.plan)
            raise
        return self.complete_switch(pending).opened


__all__ = ["PendingSwitch", "ProjectSession", "save_project"]
