"""Per-project editor session snapshots with stashed unsaved edits."""

from __future__ import annotations

from easy_projects.conflicts import ConflictResolver, Prompt, resolve_conflicts
from easy_projects.restore import RestoreEngine, RestoreReport, restore
from easy_projects.session import ProjectSession, save_project
from easy_projects.snapshot import snapshot

__version__ = "0.1.0"

__all__ = [
    "ConflictResolver",
    "ProjectSession",
    "Prompt",
    "RestoreEngine",
    "RestoreReport",
    "__version__",
    "resolve_conflicts",
    "restore",
    "save_project",
    "snapshot",
]
