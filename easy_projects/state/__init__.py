"""Persisted project session state."""
from easy_projects.state.hashing import content_key, fingerprint, path_key
from easy_projects.state.layout import (
    config_path,
    diffs_dir,
    easy_dir,
    has_saved_state,
    resolve_project_root,
    to_relative_path,
)
from easy_projects.state.lock import ProjectBusyError, ProjectLock
from easy_projects.state.logger import ProjectLog, load_events
from easy_projects.state.models import (
    ConflictType,
    FileEntry,
    ProjectConfig,
    Resolution,
    UIState,
)
from easy_projects.state.persistence import (
    BlobMissingError,
    ConfigStoreError,
    migrate_legacy_config,
    prune_orphan_blobs,
    read_project_config,
    write_project_config,
)

__all__ = [
    "FileEntry",
    "UIState",
    "ProjectConfig",
    "ConflictType",
    "Resolution",
    "fingerprint",
    "path_key",
    "content_key",
    "read_project_config",
    "write_project_config",
    "migrate_legacy_config",
    "prune_orphan_blobs",
    "BlobMissingError",
    "ConfigStoreError",
    "ProjectLog",
    "load_events",
    "ProjectLock",
    "ProjectBusyError",
    "config_path",
    "diffs_dir",
    "easy_dir",
    "has_saved_state",
    "resolve_project_root",
    "to_relative_path",
]
