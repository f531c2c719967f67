#!/usr/bin/env python3
"""
Tests for the restore engine.

Each test saves a project from one MemorySurface and restores it into a fresh
one, optionally changing the disk in between to provoke conflicts.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from easy_projects.conflicts import ConflictProtocolError  # type: ignore
from easy_projects.restore import RestoreEngine, restore  # type: ignore
from easy_projects.session import save_project  # type: ignore
from easy_projects.state.hashing import path_key  # type: ignore
from easy_projects.state.layout import diff_blob_path  # type: ignore
from easy_projects.state.lock import ProjectLock  # type: ignore
from easy_projects.state.models import (  # type: ignore
    ConflictType,
    FileEntry,
    ProjectConfig,
    Resolution,
    UIState,
)
from easy_projects.state.persistence import read_project_config, write_project_config  # type: ignore
from easy_projects.surface import MemorySurface, ScriptedChooser  # type: ignore


@pytest.fixture(autouse=True)
def isolated_log(tmp_path, monkeypatch):
    monkeypatch.setenv("EASY_LOG_PATH", str(tmp_path / "logs" / "events.log"))


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "a.lua").write_bytes(b"print('a')\n")
    (root / "src" / "b.lua").write_bytes(b"1\n2\n")
    return root.resolve()


def save_scenario(project: Path, *, active: str = "src/a.lua") -> MemorySurface:
    surface = MemorySurface(explorer=UIState(explorer_open=True, explorer_width=32))
    a_doc = surface.add(project / "src" / "a.lua", ["print('a')"])
    b_doc = surface.add(project / "src" / "b.lua", ["1", "2", "3"], modified=True)
    surface.activate(a_doc if active == "src/a.lua" else b_doc)
    assert save_project(project, surface, surface) is not None
    return surface


class TestRestoreWithoutDrift:
    def test_documents_reopen_with_stashed_edits(self, project):
        save_scenario(project)
        surface = MemorySurface()

        opened = restore(project, surface, layout=surface)

        assert opened == 2
        a_doc = surface.find(project / "src" / "a.lua")
        b_doc = surface.find(project / "src" / "b.lua")
        assert a_doc.lines == ["print('a')"] and not a_doc.modified
        assert b_doc.lines == ["1", "2", "3"] and b_doc.modified
        assert [doc.path for doc in surface.documents()] == [a_doc.path, b_doc.path]

    def test_active_file_and_layout_are_restored(self, project):
        save_scenario(project, active="src/b.lua")
        surface = MemorySurface()

        report = RestoreEngine(surface, surface).restore(project)

        assert surface.active() is surface.find(project / "src" / "b.lua")
        assert report.active is surface.active()
        assert surface.explorer == UIState(explorer_open=True, explorer_width=32)

    def test_empty_project_opens_nothing(self, project):
        assert restore(project, MemorySurface()) == 0

    def test_scratch_document_is_restored(self, project):
        source = MemorySurface()
        scratch = source.add(None, ["scratch", "notes"], modified=True)
        source.activate(scratch)
        save_project(project, source)

        surface = MemorySurface()
        empty = surface.add(None, [])
        report = RestoreEngine(surface).restore(project)

        assert report.opened == 1
        assert empty.lines == ["scratch", "notes"] and empty.modified
        assert surface.active() is empty
        assert len(surface.documents()) == 1

    def test_missing_file_is_skipped(self, project):
        save_scenario(project)
        (project / "src" / "a.lua").unlink()

        report = RestoreEngine(MemorySurface()).restore(project)

        assert report.opened == 1
        assert ("src/a.lua", "not readable on disk") in report.skipped

    def test_missing_diff_blob_opens_disk_version(self, project):
        save_scenario(project)
        diff_blob_path(project, path_key("src/b.lua")).unlink()
        surface = MemorySurface()

        report = RestoreEngine(surface).restore(project)

        assert report.opened == 2
        b_doc = surface.find(project / "src" / "b.lua")
        assert b_doc.lines == ["1", "2"] and not b_doc.modified
        assert any(path == "src/b.lua" for path, _ in report.skipped)

    def test_unsaved_new_file_is_materialized(self, project):
        source = MemorySurface()
        source.add(project / "src" / "new.lua", ["brand", "new"], modified=True)
        save_project(project, source)

        surface = MemorySurface()
        report = RestoreEngine(surface).restore(project)

        new_doc = surface.find(project / "src" / "new.lua")
        assert report.stashed == ["src/new.lua"]
        assert new_doc.lines == ["brand", "new"] and new_doc.modified
        assert not (project / "src" / "new.lua").exists()


class TestRestoreWithConflicts:
    def test_drifted_file_with_stashed_choice(self, project):
        save_scenario(project)
        (project / "src" / "b.lua").write_bytes(b"1\n2\nX\n")
        chooser = ScriptedChooser(["stashed"])
        surface = MemorySurface()

        report = RestoreEngine(surface).restore(project, chooser)

        assert chooser.prompts[0].conflict is ConflictType.MODIFIED
        assert report.resolutions == {"src/b.lua": Resolution.STASHED}
        b_doc = surface.find(project / "src" / "b.lua")
        assert b_doc.lines == ["1", "2", "3"] and b_doc.modified

    def test_drifted_file_with_disk_choice(self, project):
        save_scenario(project)
        (project / "src" / "b.lua").write_bytes(b"1\n2\nX\n")
        surface = MemorySurface()

        report = RestoreEngine(surface).restore(project, ScriptedChooser(["disk"]))

        assert report.opened == 2
        b_doc = surface.find(project / "src" / "b.lua")
        assert b_doc.lines == ["1", "2", "X"] and not b_doc.modified

    def test_cancel_opens_disk_version(self, project):
        save_scenario(project)
        (project / "src" / "b.lua").write_bytes(b"1\n2\nX\n")
        surface = MemorySurface()

        report = RestoreEngine(surface).restore(project, None)

        assert report.resolutions == {"src/b.lua": Resolution.SKIP}
        assert surface.find(project / "src" / "b.lua").lines == ["1", "2", "X"]

    def test_deleted_file_resolved_as_stashed_is_skipped(self, project):
        save_scenario(project)
        (project / "src" / "b.lua").unlink()
        chooser = ScriptedChooser(["stashed"])
        surface = MemorySurface()

        report = RestoreEngine(surface).restore(project, chooser)

        assert chooser.prompts[0].conflict is ConflictType.DELETED
        assert report.opened == 1
        assert surface.find(project / "src" / "b.lua") is None

    def test_batch_prompt_for_several_conflicts(self, project):
        source = MemorySurface()
        source.add(project / "src" / "a.lua", ["print('a')", "print('more')"], modified=True)
        source.add(project / "src" / "b.lua", ["1", "2", "3"], modified=True)
        save_project(project, source)
        (project / "src" / "a.lua").write_bytes(b"print('a')\nextra\n")
        (project / "src" / "b.lua").write_bytes(b"1\n2\nX\n")
        chooser = ScriptedChooser(["stashed"])
        surface = MemorySurface()

        report = RestoreEngine(surface).restore(project, chooser)

        assert chooser.prompts[0].text == "2 files have conflicts. Choose action:"
        assert sorted(report.stashed) == ["src/a.lua", "src/b.lua"]


class TestSuspendedRestore:
    def test_prepare_answer_finish(self, project):
        save_scenario(project)
        (project / "src" / "b.lua").write_bytes(b"1\n2\nX\n")
        surface = MemorySurface()
        engine = RestoreEngine(surface)

        plan = engine.prepare(project)
        assert plan.needs_input
        assert plan.conflicts == {"src/b.lua": ConflictType.MODIFIED}
        assert plan.lock is not None and plan.lock.held

        with pytest.raises(ConflictProtocolError):
            engine.finish(plan)

        plan.resolver.answer("stashed")
        report = engine.finish(plan)

        assert report.opened == 2
        assert not plan.lock.held
        with pytest.raises(ConflictProtocolError):
            engine.finish(plan)

    def test_abandon_releases_lock(self, project):
        save_scenario(project)
        engine = RestoreEngine(MemorySurface())
        plan = engine.prepare(project)

        engine.abandon(plan)

        assert not plan.lock.held
        assert engine.restore(project).opened == 2

    def test_busy_project_is_not_restored(self, project):
        save_scenario(project)
        surface = MemorySurface()

        with ProjectLock(project):
            report = RestoreEngine(surface, lock_timeout=0).restore(project)

        assert report.opened == 0
        assert surface.documents() == []

    def test_config_is_not_modified_by_restore(self, project):
        save_scenario(project)
        before = read_project_config(project)
        restore(project, MemorySurface())
        assert read_project_config(project) == before

    def test_active_file_outside_manifest_is_opened(self, project):
        config = ProjectConfig(files=(FileEntry(path="src/b.lua"),), active_file="src/a.lua")
        write_project_config(project, config)
        surface = MemorySurface()
        report = RestoreEngine(surface).restore(project)

        assert report.opened == 2
        assert surface.active() is surface.find(project / "src" / "a.lua")


def deny_mkdir_under(monkeypatch, root: Path) -> None:
    real_mkdir = Path.mkdir

    def mkdir(self, *args, **kwargs):
        if self == root or root in self.parents:
            raise PermissionError(13, "Permission denied", str(self))
        return real_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", mkdir)


class TestUnwritableProject:
    def test_restore_without_saved_state_leaves_directory_untouched(self, project):
        assert restore(project, MemorySurface()) == 0
        assert not (project / ".easy").exists()

    def test_prepare_without_saved_state_takes_no_lock(self, project):
        plan = RestoreEngine(MemorySurface()).prepare(project)
        assert plan.lock is None
        assert not plan.needs_input
        assert plan.config == ProjectConfig()

    def test_restore_when_lock_cannot_be_created(self, project, monkeypatch):
        write_project_config(project, ProjectConfig(files=(FileEntry(path="src/a.lua"),), active_file="src/a.lua"))
        deny_mkdir_under(monkeypatch, project)
        surface = MemorySurface()

        assert restore(project, surface) == 0
        assert surface.documents() == []
