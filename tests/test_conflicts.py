#!/usr/bin/env python3
"""
Tests for conflict detection and the resolution protocol.

The protocol is exercised both through ScriptedChooser (synchronous) and by
answering a ConflictResolver step by step, as a host holding an open dialog would.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from easy_projects.conflicts import (  # type: ignore
    ConflictProtocolError,
    ConflictResolver,
    ResolverMode,
    classify,
    resolve_conflicts,
    resolve_conflicts_async,
)
from easy_projects.state.hashing import fingerprint  # type: ignore
from easy_projects.state.models import ConflictType, FileEntry, Resolution  # type: ignore
from easy_projects.surface import ScriptedChooser  # type: ignore


@pytest.fixture(autouse=True)
def isolated_log(tmp_path, monkeypatch):
    monkeypatch.setenv("EASY_LOG_PATH", str(tmp_path / "logs" / "events.log"))


class TestClassify:
    @pytest.fixture
    def project(self, tmp_path: Path) -> Path:
        root = tmp_path / "project"
        root.mkdir()
        (root / "b.lua").write_bytes(b"1\n2\n")
        return root

    def entry(self, original: bytes | None) -> FileEntry:
        return FileEntry(
            path="b.lua",
            modified=True,
            diff_hash="0123456789ab",
            original_hash=fingerprint(original) if original is not None else None,
        )

    def test_unchanged_file(self, project):
        assert classify(project, self.entry(b"1\n2\n")) is ConflictType.NONE

    def test_changed_file(self, project):
        (project / "b.lua").write_bytes(b"1\n2\nX\n")
        assert classify(project, self.entry(b"1\n2\n")) is ConflictType.MODIFIED

    def test_deleted_file(self, project):
        (project / "b.lua").unlink()
        assert classify(project, self.entry(b"1\n2\n")) is ConflictType.DELETED

    def test_entry_without_fingerprint_never_conflicts(self, project):
        (project / "b.lua").unlink()
        assert classify(project, self.entry(None)) is ConflictType.NONE

    def test_unnamed_entries_are_not_classified(self, project):
        scratch = FileEntry(path=".__unnamed__/unnamed_1", is_unnamed=True, modified=True, content_hash="a" * 12)
        assert classify(project, scratch) is ConflictType.NONE


CONFLICTS = {
    "src/c.lua": ConflictType.MODIFIED,
    "src/a.lua": ConflictType.DELETED,
    "src/b.lua": ConflictType.MODIFIED,
}


class TestBatchMode:
    def test_batch_prompt_lists_three_options(self):
        chooser = ScriptedChooser(["disk"])
        resolve_conflicts(CONFLICTS, chooser)

        (prompt,) = chooser.prompts
        assert prompt.text == "3 files have conflicts. Choose action:"
        assert prompt.keys == ("disk", "stashed", "review")

    def test_disk_for_all(self):
        resolutions = resolve_conflicts(CONFLICTS, ScriptedChooser(["disk"]))
        assert resolutions == {path: Resolution.DISK for path in CONFLICTS}

    def test_stashed_for_all(self):
        resolutions = resolve_conflicts(CONFLICTS, ScriptedChooser(["stashed"]))
        assert resolutions == {path: Resolution.STASHED for path in CONFLICTS}

    def test_cancel_skips_everything(self):
        resolutions = resolve_conflicts(CONFLICTS, ScriptedChooser([None]))
        assert resolutions == {path: Resolution.SKIP for path in CONFLICTS}

    def test_no_chooser_cancels(self):
        resolutions = resolve_conflicts(CONFLICTS, None)
        assert set(resolutions.values()) == {Resolution.SKIP}


class TestIndividualMode:
    def test_review_visits_files_in_sorted_order(self):
        chooser = ScriptedChooser(["review", "stashed", "disk", "stashed"])
        resolutions = resolve_conflicts(CONFLICTS, chooser)

        assert [prompt.path for prompt in chooser.prompts[1:]] == ["src/a.lua", "src/b.lua", "src/c.lua"]
        assert chooser.prompts[1].text == "File 1/3: src/a.lua (was deleted)"
        assert chooser.prompts[2].text == "File 2/3: src/b.lua (was modified)"
        assert resolutions == {
            "src/a.lua": Resolution.STASHED,
            "src/b.lua": Resolution.DISK,
            "src/c.lua": Resolution.STASHED,
        }

    def test_skip_remaining(self):
        resolutions = resolve_conflicts(CONFLICTS, ScriptedChooser(["review", "disk", "skip"]))
        assert resolutions == {
            "src/a.lua": Resolution.DISK,
            "src/b.lua": Resolution.SKIP,
            "src/c.lua": Resolution.SKIP,
        }

    def test_cancel_mid_review_keeps_earlier_answers(self):
        resolutions = resolve_conflicts(CONFLICTS, ScriptedChooser(["review", "stashed", None]))
        assert resolutions["src/a.lua"] is Resolution.STASHED
        assert resolutions["src/b.lua"] is Resolution.SKIP
        assert resolutions["src/c.lua"] is Resolution.SKIP

    def test_single_conflict_starts_individually(self):
        chooser = ScriptedChooser(["stashed"])
        resolutions = resolve_conflicts({"b.lua": ConflictType.MODIFIED}, chooser)

        assert chooser.prompts[0].text == "File 1/1: b.lua (was modified)"
        assert chooser.prompts[0].keys == ("disk", "stashed", "skip")
        assert resolutions == {"b.lua": Resolution.STASHED}


class TestResolverStateMachine:
    def test_no_conflicts_is_done_immediately(self):
        resolver = ConflictResolver({})
        assert resolver.done and resolver.prompt is None
        assert resolve_conflicts({}, ScriptedChooser()) == {}

    def test_none_classifications_are_ignored(self):
        resolver = ConflictResolver({"a": ConflictType.NONE, "b": ConflictType.MODIFIED})
        assert resolver.mode is ResolverMode.INDIVIDUAL
        assert list(resolver.conflicts) == ["b"]

    def test_stepwise_answers(self):
        resolver = ConflictResolver(CONFLICTS)
        assert resolver.mode is ResolverMode.BATCH

        next_prompt = resolver.answer("review")
        assert resolver.mode is ResolverMode.INDIVIDUAL
        assert next_prompt is not None and next_prompt.path == "src/a.lua"
        assert not resolver.done

        resolver.answer("disk")
        resolver.answer("disk")
        assert resolver.answer("stashed") is None
        assert resolver.done

    def test_unknown_option_is_rejected(self):
        resolver = ConflictResolver(CONFLICTS)
        with pytest.raises(ConflictProtocolError):
            resolver.answer("skip")

    def test_answer_after_done_is_rejected(self):
        resolver = ConflictResolver({"b.lua": ConflictType.MODIFIED})
        resolver.answer("disk")
        with pytest.raises(ConflictProtocolError):
            resolver.answer("disk")


def test_async_chooser():
    answers = iter(["review", "stashed", "disk", "skip"])

    async def chooser(prompt):
        await asyncio.sleep(0)
        return next(answers)

    resolutions = asyncio.run(resolve_conflicts_async(CONFLICTS, chooser))
    assert resolutions == {
        "src/a.lua": Resolution.STASHED,
        "src/b.lua": Resolution.DISK,
        "src/c.lua": Resolution.SKIP,
    }
