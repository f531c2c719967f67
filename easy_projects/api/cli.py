"""CLI utilities for inspecting saved project sessions."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from easy_projects.conflicts import classify
from easy_projects.projects import ProjectRegistry
from easy_projects.state.layout import config_path, normalize_root, resolve_project_root
from easy_projects.state.logger import load_events, resolve_log_path
from easy_projects.state.models import ConflictType, FileEntry, ProjectConfig
from easy_projects.state.persistence import prune_orphan_blobs, read_project_config


def _project(value: str | None) -> Path:
    if value:
        return normalize_root(value)
    return resolve_project_root()


def _print_section(title: str, lines: Iterable[str]) -> None:
    print(title)
    for line in lines:
        print(f"  {line}")
    print()


def _describe_entry(entry: FileEntry) -> str:
    if entry.is_unnamed:
        return f"{entry.path} [scratch {entry.content_hash or '-'}]"
    if entry.diff_hash:
        return f"{entry.path} [stashed {entry.diff_hash}]"
    if entry.modified:
        return f"{entry.path} [modified, not stashed]"
    return entry.path


def file_statuses(project_root: Path, config: ProjectConfig) -> Mapping[str, ConflictType]:
    """Classify every stashed named entry against the disk."""
    return {
        entry.path: classify(project_root, entry)
        for entry in config.files
        if entry.diff_hash and not entry.is_unnamed
    }


def _format_event(event: Mapping[str, object]) -> str:
    base = f"[{event.get('ts', '?')}] {event.get('level', 'info')} {event.get('event')}"
    extras = []
    for key in ("project", "files", "opened", "stashed", "skipped", "conflicts", "removed"):
        if key in event:
            extras.append(f"{key}={event[key]}")
    return f"{base} ({', '.join(extras)})" if extras else base


def _cmd_show(args: argparse.Namespace) -> int:
    root = _project(args.project)
    config = read_project_config(root)
    if args.json:
        print(json.dumps(config.to_dict(), indent=2, sort_keys=True))
        return 0

    print(f"Project config: {config_path(root)}")
    if config.is_empty:
        print("No saved session.")
        return 0
    _print_section("Files", (_describe_entry(entry) for entry in config.files))
    print(f"Active: {config.active_file or '-'}")
    width = config.ui.explorer_width if config.ui.explorer_width is not None else "-"
    print(f"Explorer: {'open' if config.ui.explorer_open else 'closed'} (width {width})")
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    root = _project(args.project)
    statuses = file_statuses(root, read_project_config(root))
    if args.json:
        print(json.dumps({path: kind.value for path, kind in statuses.items()}, indent=2, sort_keys=True))
        return 0
    if not statuses:
        print("No stashed files.")
        return 0
    _print_section("Stashed files", (f"{kind.value:<8} {path}" for path, kind in sorted(statuses.items())))
    return 0


def _cmd_prune(args: argparse.Namespace) -> int:
    root = _project(args.project)
    removed = prune_orphan_blobs(root)
    for name in removed:
        print(f"removed {name}")
    print(f"Pruned {len(removed)} orphan blob(s)")
    return 0


def _cmd_projects(args: argparse.Namespace) -> int:
    registry = ProjectRegistry(args.file)
    action = args.action
    if action == "list":
        for project in registry.projects():
            print(project)
        return 0
    if not args.path:
        print(f"Error: 'projects {action}' requires a PATH", file=sys.stderr)
        return 1
    if action == "add":
        if not registry.add(args.path):
            print(f"Error: {args.path} is not a directory or is already tracked", file=sys.stderr)
            return 1
    elif action == "remove":
        if not registry.remove(args.path):
            print(f"Error: {args.path} is not tracked", file=sys.stderr)
            return 1
    elif action == "top":
        registry.move_to_top(args.path)
    return 0


def _cmd_events(args: argparse.Namespace) -> int:
    log_path = Path(args.log_path).expanduser() if args.log_path else resolve_log_path()
    events = load_events(log_path, limit=args.limit)
    print(f"Event log: {log_path}")
    if not events:
        print("No telemetry entries found.")
        return 0
    _print_section("Recent events", (_format_event(evt) for evt in events))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="easy-projects", description="Inspect saved project sessions.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("show", "Print the saved manifest of a project."),
        ("status", "Report drift of stashed files against the disk."),
        ("prune", "Delete blobs no longer referenced by the manifest."),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--project",
            type=str,
            default=None,
            help="Project directory (defaults to EASY_PROJECT_DIR or the nearest .easy parent).",
        )
        if name != "prune":
            sub.add_argument("--json", action="store_true", help="Print JSON instead of text.")

    projects_parser = subparsers.add_parser("projects", help="Manage the tracked project list.")
    projects_parser.add_argument("action", choices=("list", "add", "remove", "top"))
    projects_parser.add_argument("path", nargs="?", default=None)
    projects_parser.add_argument(
        "--file",
        type=str,
        default=None,
        help="Project list file (defaults to EASY_PROJECTS_FILE or the XDG config directory).",
    )

    events_parser = subparsers.add_parser("events", help="Print recent telemetry events.")
    events_parser.add_argument("--log-path", type=str, default=None, help="Path to the JSONL event log.")
    events_parser.add_argument("--limit", type=int, default=20, help="Number of recent events to display.")

    return parser


COMMANDS = {
    "show": _cmd_show,
    "status": _cmd_status,
    "prune": _cmd_prune,
    "projects": _cmd_projects,
    "events": _cmd_events,
}


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point for project session commands."""
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.error("Unknown command")
        return 1
    try:
        return handler(args)
    except (OSError, RuntimeError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
