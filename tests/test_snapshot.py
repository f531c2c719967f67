#!/usr/bin/env python3
"""
Tests for the snapshot engine.

Snapshots are built from a MemorySurface so the manifest, the blobs written
under .easy/diffs and the skipped documents can be asserted directly.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from easy_projects.diffs import apply_diff  # type: ignore
from easy_projects.snapshot import active_file_reference, snapshot  # type: ignore
from easy_projects.state.hashing import content_key, fingerprint, path_key  # type: ignore
from easy_projects.state.layout import content_blob_path, diff_blob_path  # type: ignore
from easy_projects.state.logger import load_events  # type: ignore
from easy_projects.state.persistence import read_content_blob, read_diff_blob  # type: ignore
from easy_projects.surface import MemorySurface  # type: ignore


@pytest.fixture(autouse=True)
def isolated_log(tmp_path, monkeypatch):
    log_path = tmp_path / "logs" / "events.log"
    monkeypatch.setenv("EASY_LOG_PATH", str(log_path))
    return log_path


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "a.lua").write_bytes(b"print('a')\n")
    (root / "src" / "b.lua").write_bytes(b"1\n2\n")
    return root.resolve()


def test_unmodified_and_modified_files(project):
    surface = MemorySurface()
    surface.add(project / "src" / "a.lua", ["print('a')"])
    surface.add(project / "src" / "b.lua", ["1", "2", "3"], modified=True)

    entries = snapshot(project, surface.documents())

    assert [entry.to_dict() for entry in entries] == [
        {"path": "src/a.lua", "is_unnamed": False, "modified": False},
        {
            "path": "src/b.lua",
            "is_unnamed": False,
            "modified": True,
            "diff_hash": path_key("src/b.lua"),
            "original_hash": fingerprint(b"1\n2\n"),
        },
    ]
    diff_text = read_diff_blob(project, path_key("src/b.lua"))
    assert apply_diff(b"1\n2\n", diff_text) == ["1", "2", "3"]


def test_repeated_snapshots_reuse_the_diff_blob(project):
    surface = MemorySurface()
    document = surface.add(project / "src" / "b.lua", ["1", "2", "3"], modified=True)
    snapshot(project, surface.documents())

    document.lines = ["1", "2", "three"]
    entries = snapshot(project, surface.documents())

    blobs = sorted(path.name for path in diff_blob_path(project, "x").parent.iterdir())
    assert blobs == [f"{path_key('src/b.lua')}.diff"]
    assert entries[0].diff_hash == path_key("src/b.lua")
    assert apply_diff(b"1\n2\n", read_diff_blob(project, entries[0].diff_hash)) == ["1", "2", "three"]


def test_new_unsaved_file_has_no_original_hash(project):
    surface = MemorySurface()
    surface.add(project / "src" / "new.lua", ["fresh"], modified=True)

    (entry,) = snapshot(project, surface.documents())

    assert entry.modified and entry.diff_hash == path_key("src/new.lua")
    assert entry.original_hash is None
    assert apply_diff(None, read_diff_blob(project, entry.diff_hash)) == ["fresh"]


def test_scratch_documents_use_content_blobs(project):
    surface = MemorySurface()
    scratch = surface.add(None, ["notes", "more notes"], modified=True)
    surface.add(None, [])
    surface.add(None, [""])

    entries = snapshot(project, surface.documents())

    key = content_key(["notes", "more notes"])
    assert [entry.to_dict() for entry in entries] == [
        {
            "path": f".__unnamed__/unnamed_{scratch.identity}",
            "is_unnamed": True,
            "modified": True,
            "content_hash": key,
        }
    ]
    assert content_blob_path(project, key).exists()
    assert read_content_blob(project, key) == ["notes", "more notes"]


def test_special_and_outside_documents_are_skipped(project, tmp_path):
    outside = tmp_path / "elsewhere.txt"
    outside.write_text("x\n", encoding="utf-8")
    surface = MemorySurface()
    surface.add(project / "src" / "a.lua", ["print('a')"], special=True)
    surface.add(outside, ["x"], modified=True)
    surface.add(project / "src" / "b.lua", ["1", "2"])

    entries = snapshot(project, surface.documents())

    assert [entry.path for entry in entries] == ["src/b.lua"]


def test_display_order_is_preserved(project):
    surface = MemorySurface()
    surface.add(project / "src" / "b.lua", ["1", "2"])
    surface.add(project / "src" / "a.lua", ["print('a')"])

    assert [entry.path for entry in snapshot(project, surface.documents())] == ["src/b.lua", "src/a.lua"]


def test_binary_original_keeps_entry_without_stash(project):
    (project / "src" / "blob.bin").write_bytes(b"\xff\xfe\x00\x01")
    surface = MemorySurface()
    surface.add(project / "src" / "blob.bin", ["edited"], modified=True)
    surface.add(project / "src" / "a.lua", ["print('a')"])

    entries = snapshot(project, surface.documents())

    assert [entry.to_dict() for entry in entries] == [
        {"path": "src/blob.bin", "is_unnamed": False, "modified": True},
        {"path": "src/a.lua", "is_unnamed": False, "modified": False},
    ]


def test_snapshot_emits_telemetry(project, isolated_log):
    surface = MemorySurface()
    surface.add(project / "src" / "b.lua", ["1", "2", "3"], modified=True)
    snapshot(project, surface.documents())

    events = [event for event in load_events(isolated_log) if event["event"] == "snapshot.complete"]
    assert events and events[-1]["files"] == 1 and events[-1]["stashed"] == 1
    assert "latency_ms" in events[-1]


def test_active_file_reference(project):
    surface = MemorySurface()
    named = surface.add(project / "src" / "a.lua", ["print('a')"])
    scratch = surface.add(None, ["draft"], modified=True)
    blank = surface.add(None, [])

    assert active_file_reference(project, named) == "src/a.lua"
    assert active_file_reference(project, scratch) == f"__unnamed__:{content_key(['draft'])}"
    assert active_file_reference(project, blank) is None
    assert active_file_reference(project, None) is None
