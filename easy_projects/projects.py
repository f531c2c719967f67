"""Global most-recently-used list of tracked project roots."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from easy_projects.state.persistence import atomic_write_bytes

PROJECTS_FILENAME = "projects.json"

LOGGER = logging.getLogger(__name__)


def resolve_projects_path() -> Path:
    """Return the registry path from EASY_PROJECTS_FILE or the XDG config directory."""
    env_path = os.getenv("EASY_PROJECTS_FILE")
    if env_path:
        return Path(env_path).expanduser()
    config_home = os.getenv("XDG_CONFIG_HOME")
    base = Path(config_home).expanduser() if config_home else Path.home() / ".config"
    return base / "easy-projects" / PROJECTS_FILENAME


def expand(path: Path | str) -> Path:
    return Path(path).expanduser().resolve()


def collapse_user(path: Path | str) -> str:
    """Render an absolute path with the home directory abbreviated to ``~``."""
    resolved = expand(path)
    home = Path.home().resolve()
    try:
        relative = resolved.relative_to(home)
    except ValueError:
        return str(resolved)
    return "~" if str(relative) == "." else f"~/{relative.as_posix()}"


class ProjectRegistry:
    """Ordered project list persisted as ``{"projects": [...]}``."""

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path).expanduser() if path is not None else resolve_projects_path()

    def projects(self) -> List[str]:
        """Return tracked projects, most recently used first."""
        if not self.path.exists():
            self._write([])
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            LOGGER.warning("Cannot read project list %s: %s", self.path, exc)
            return []
        projects = data.get("projects") if isinstance(data, dict) else None
        if not isinstance(projects, list):
            return []
        return [item for item in projects if isinstance(item, str) and item]

    def _write(self, projects: List[str]) -> bool:
        payload = json.dumps({"projects": projects}, indent=2, sort_keys=True) + "\n"
        try:
            atomic_write_bytes(self.path, payload.encode("utf-8"))
        except OSError as exc:
            LOGGER.warning("Cannot write project list %s: %s", self.path, exc)
            return False
        return True

    def _position(self, projects: List[str], path: Path | str) -> Optional[int]:
        wanted = expand(path)
        for index, existing in enumerate(projects):
            if expand(existing) == wanted:
                return index
        return None

    def is_tracked(self, path: Path | str) -> bool:
        return self._position(self.projects(), path) is not None

    def add(self, path: Path | str) -> bool:
        """Append a directory; returns False if it is missing or already tracked."""
        if not expand(path).is_dir():
            return False
        projects = self.projects()
        if self._position(projects, path) is not None:
            return False
        projects.append(collapse_user(path))
        return self._write(projects)

    def remove(self, path: Path | str) -> bool:
        projects = self.projects()
        index = self._position(projects, path)
        if index is None:
            return False
        del projects[index]
        return self._write(projects)

    def move_to_top(self, path: Path | str) -> None:
        """Make ``path`` the most recently used project, adding it if needed."""
        projects = self.projects()
        index = self._position(projects, path)
        entry = projects.pop(index) if index is not None else collapse_user(path)
        self._write([entry, *projects])
