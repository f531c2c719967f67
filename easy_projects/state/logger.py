"""Structured event log for snapshot and restore operations.

Every module logs through its stdlib ``LOGGER``. One ``EventLogHandler`` on the
``easy_projects`` package logger appends those records to a JSON-lines file,
so per-item warnings and named telemetry events end up in the same log.

``ProjectLog`` binds a project root to a module logger for the length of one
engine call and adds ``emit``/``timer`` for named events::

    log = ProjectLog(LOGGER, root)
    with log.timer("snapshot.complete") as finalize:
        ...
        finalize({"files": 3})
    log.warning("Cannot stash %s", path)

Environment (read on every record):
- EASY_LOG_PATH: log file (default ``$XDG_STATE_HOME/easy-projects/events.log``)
- EASY_LOG_LEVEL: error|warn|info|debug (default info)
- EASY_LOG_MAX_BYTES: rotate once the file reaches this size (0 disables)
- EASY_LOG_MAX_BACKUPS: rotated files kept as ``events.log.1`` .. ``.N``
"""
from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, MutableMapping, Optional, Tuple

PACKAGE_LOGGER_NAME = "easy_projects"
LOG_FILENAME = "events.log"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_MAX_BACKUPS = 3

LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def _env_int(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name)
    if raw:
        try:
            return max(int(raw), minimum)
        except ValueError:
            pass
    return default


def _min_level() -> int:
    return LEVELS.get(os.getenv("EASY_LOG_LEVEL", "info").lower(), logging.INFO)


def _level_name(levelno: int) -> str:
    for name, value in LEVELS.items():
        if levelno >= value:
            return name
    return "debug"


def resolve_log_path() -> Path:
    """Return the configured log path."""
    env_path = os.getenv("EASY_LOG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    state_home = os.getenv("XDG_STATE_HOME")
    base = Path(state_home).expanduser() if state_home else Path.home() / ".local" / "state"
    return base / "easy-projects" / LOG_FILENAME


def _rotate(log_path: Path) -> None:
    max_bytes = _env_int("EASY_LOG_MAX_BYTES", DEFAULT_MAX_BYTES, 0)
    if not max_bytes:
        return
    try:
        if log_path.stat().st_size < max_bytes:
            return
    except FileNotFoundError:
        return

    backups = _env_int("EASY_LOG_MAX_BACKUPS", DEFAULT_MAX_BACKUPS, 1)
    log_path.with_name(f"{log_path.name}.{backups}").unlink(missing_ok=True)
    for idx in range(backups - 1, 0, -1):
        older = log_path.with_name(f"{log_path.name}.{idx}")
        if older.exists():
            older.replace(log_path.with_name(f"{log_path.name}.{idx + 1}"))
    log_path.replace(log_path.with_name(f"{log_path.name}.1"))


class JsonLinesFormatter(logging.Formatter):
    """Render a record as one compact JSON object.

    Named events carry their fields; plain log calls become ``event: "log"``
    with the formatted message.
    """

    def format(self, record: logging.LogRecord) -> str:
        event = getattr(record, "event", None)
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": _level_name(record.levelno),
            "component": record.name.rpartition(".")[2],
            "event": event or "log",
        }
        project = getattr(record, "project", None)
        if project:
            payload["project"] = project
        if not event:
            payload["message"] = record.getMessage()

        fields: Mapping[str, Any] = getattr(record, "event_fields", None) or {}
        for key, value in fields.items():
            if value is None:
                continue
            payload[key] = round(float(value), 3) if key == "latency_ms" else value
        if record.exc_info and record.exc_info[1] is not None:
            payload.setdefault("error", str(record.exc_info[1]))
        return json.dumps(payload, separators=(",", ":"), default=str)


class EventLogHandler(logging.Handler):
    """Append records to the JSON-lines log, rotating by size."""

    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(JsonLinesFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        if record.levelno < _min_level():
            return
        log_path = resolve_log_path()
        try:
            line = self.format(record)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            _rotate(log_path)
            with log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError:
            # The log is best effort; an unwritable file drops the record
            return


def install_handler() -> EventLogHandler:
    """Attach the event log handler to the package logger once."""
    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    for handler in package_logger.handlers:
        if isinstance(handler, EventLogHandler):
            return handler
    handler = EventLogHandler()
    package_logger.addHandler(handler)
    return handler


class ProjectLog(logging.LoggerAdapter):
    """A module logger bound to one project root."""

    def __init__(self, logger: logging.Logger, project: Path | str | None = None) -> None:
        super().__init__(logger, {"project": str(project) if project is not None else None})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def emit(self, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
        """Record a named event.

        Events go straight to the handlers, so they are written regardless of
        the host's logger levels; EASY_LOG_LEVEL still filters them.
        """
        record = self.logger.makeRecord(
            self.logger.name,
            level,
            "(event)",
            0,
            event,
            (),
            None,
            extra={**self.extra, "event": event, "event_fields": fields},
        )
        self.logger.handle(record)

    @contextmanager
    def timer(
        self,
        event: str,
        *,
        level: int = logging.INFO,
        **fields: Any,
    ) -> Iterator[Callable[[Optional[Mapping[str, Any]]], None]]:
        """Emit ``event`` with ``latency_ms`` when the block exits; at error level if it raises."""
        start = time.perf_counter()
        captured: Dict[str, Any] = dict(fields)

        def finalize(extra: Optional[Mapping[str, Any]] = None) -> None:
            if extra:
                captured.update(extra)

        try:
            yield finalize
        except Exception as exc:
            latency = (time.perf_counter() - start) * 1000
            self.emit(event, level=logging.ERROR, latency_ms=latency, error=str(exc), **captured)
            raise
        self.emit(event, level=level, latency_ms=(time.perf_counter() - start) * 1000, **captured)


def load_events(log_path: Path | None = None, limit: int = 50) -> List[Mapping[str, Any]]:
    """Return the newest events from the JSONL log."""
    target = Path(log_path) if log_path is not None else resolve_log_path()
    if not target.exists():
        return []

    lines = target.read_text(encoding="utf-8").splitlines()
    selected = lines[-limit:] if limit else lines
    events: List[Mapping[str, Any]] = []
    for line in selected:
        line = line.strip()
        if not line:
            continue
        try:
            events.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return events


install_handler()


__all__ = [
    "EventLogHandler",
    "JsonLinesFormatter",
    "ProjectLog",
    "install_handler",
    "load_events",
    "resolve_log_path",
]
