"""Per-project exclusive lock for snapshot and restore operations.

A restore may suspend for an arbitrarily long time while the user answers
conflict prompts, so the lock is an explicit acquire/release object that can
be held across that pause, not only a ``with`` block.

Lock implementation uses mkdir() for atomicity (cross-platform, no flock() needed).
Stale locks cleaned up via process liveness checks (os.kill(pid, 0)).
Re-entry from the owning process is rejected immediately: nested restores of
the same project are not supported.
"""
from __future__ import annotations

import json
import logging
import os
import shutil
import socket
import time
from contextlib import AbstractContextManager
from pathlib import Path
from types import TracebackType
from typing import Optional, Type

from easy_projects.state.layout import lock_dir

LOCK_INFO_FILENAME = "lock_info.json"
DEFAULT_TIMEOUT = 1.0

LOGGER = logging.getLogger(__name__)


class ProjectBusyError(TimeoutError):
    """Raised when the project lock is held elsewhere or cannot be created."""

    def __init__(self, lock_path: Path, reason: str):
        self.lock_path = lock_path
        super().__init__(f"Project state is busy ({reason}): {lock_path}")


def _env_timeout() -> float:
    raw = os.getenv("EASY_LOCK_TIMEOUT")
    if raw:
        try:
            return max(float(raw), 0.0)
        except ValueError:
            pass
    return DEFAULT_TIMEOUT


class ProjectLock(AbstractContextManager["ProjectLock"]):
    """File-system lock guarding one project's config and blob directory."""

    def __init__(
        self,
        project_root: Path | str,
        *,
        timeout: Optional[float] = None,
        poll_interval: float = 0.05,
        stale_timeout: float = 30.0,
    ) -> None:
        self._lock_dir = lock_dir(project_root)
        self._timeout = _env_timeout() if timeout is None else timeout
        self._poll_interval = poll_interval
        self._stale_timeout = stale_timeout
        self._held = False

    @property
    def path(self) -> Path:
        return self._lock_dir

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> "ProjectLock":
        if self._held:
            raise ProjectBusyError(self._lock_dir, "lock already held by this handle")
        deadline = time.monotonic() + self._timeout
        try:
            self._lock_dir.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ProjectBusyError(self._lock_dir, f"cannot create lock: {exc}") from exc
        while True:
            self._cleanup_stale_lock()
            try:
                self._lock_dir.mkdir()
            except FileExistsError:
                if self._owner_pid() == os.getpid():
                    raise ProjectBusyError(self._lock_dir, "re-entrant operation in this process")
                if time.monotonic() > deadline:
                    raise ProjectBusyError(self._lock_dir, "timed out waiting for lock")
                time.sleep(self._poll_interval)
                continue
            except OSError as exc:
                raise ProjectBusyError(self._lock_dir, f"cannot create lock: {exc}") from exc

            try:
                self._write_lock_info()
            except OSError as exc:
                shutil.rmtree(self._lock_dir, ignore_errors=True)
                raise ProjectBusyError(self._lock_dir, f"cannot create lock: {exc}") from exc
            self._held = True
            return self

    def __enter__(self) -> "ProjectLock":
        return self.acquire()

    def __exit__(
        self,
        exc_type: Type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def release(self) -> None:
        """Release the lock if held."""
        if not self._held:
            return
        shutil.rmtree(self._lock_dir, ignore_errors=True)
        self._held = False

    def _owner_pid(self) -> Optional[int]:
        try:
            info = json.loads((self._lock_dir / LOCK_INFO_FILENAME).read_text(encoding="utf-8"))
            return int(info.get("pid"))
        except (OSError, json.JSONDecodeError, TypeError, ValueError, AttributeError):
            return None

    def _cleanup_stale_lock(self) -> None:
        if not self._lock_dir.exists():
            return
        info_path = self._lock_dir / LOCK_INFO_FILENAME
        try:
            lock_info = json.loads(info_path.read_text(encoding="utf-8"))
        except (FileNotFoundError, json.JSONDecodeError):
            if self._lock_dir_age() > self._stale_timeout:
                LOGGER.warning("Removing malformed lock %s", self._lock_dir)
                shutil.rmtree(self._lock_dir, ignore_errors=True)
            return

        try:
            pid = int(lock_info.get("pid"))
        except (TypeError, ValueError):
            if self._lock_dir_age() > self._stale_timeout:
                shutil.rmtree(self._lock_dir, ignore_errors=True)
            return

        if pid == os.getpid():
            return

        if not self._process_alive(pid):
            LOGGER.warning("Removing lock %s left by dead process %s", self._lock_dir, pid)
            shutil.rmtree(self._lock_dir, ignore_errors=True)

    @staticmethod
    def _process_alive(pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        except OSError:
            return False
        else:
            return True

    def _write_lock_info(self) -> None:
        info = {
            "pid": os.getpid(),
            "timestamp": time.time(),
            "host": socket.gethostname(),
        }
        info_path = self._lock_dir / LOCK_INFO_FILENAME
        info_path.write_text(json.dumps(info), encoding="utf-8")

    def _lock_dir_age(self) -> float:
        try:
            return time.time() - self._lock_dir.stat().st_mtime
        except FileNotFoundError:
            return 0.0
