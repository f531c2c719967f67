"""Unified-diff codec for stashing unsaved edits.

Diffs are computed in-process with :mod:`difflib` and applied by a small
hunk-based patcher, so stashing never shells out to ``diff``/``patch``.

Lines are handled without terminators: a document is a list of strings and a
file's bytes are split on ``\\n`` with a final newline contributing no line.

Hunk placement follows ``patch``:
- each hunk is tried at its recorded position (shifted by the offset of the
  previous hunk), then at increasing distances on either side
- a hunk whose leading context is shorter than the context radius was taken
  at the start of the file, and one whose trailing context is shorter was
  taken at the end; such hunks stay anchored to that boundary of the new
  baseline, so lines that appeared beyond the boundary since the diff was
  taken are replaced by the stashed ones
"""
from __future__ import annotations

import difflib
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Type

DIFF_CONTEXT = 3
NULL_PATH = "/dev/null"

_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


class DiffError(RuntimeError):
    """Base exception for diff codec failures."""


class DiffComputeError(DiffError):
    """Raised when a diff cannot be computed (e.g. binary content)."""


class DiffApplyError(DiffError):
    """Raised when a diff does not apply to the given baseline."""


@dataclass(frozen=True)
class Hunk:
    """One ``@@`` section of a unified diff.

    Attributes:
        old_start: 1-based first line in the original (0 for an empty range)
        old_count: Number of original lines covered
        new_start: 1-based first line in the result
        new_count: Number of result lines produced
        lines: (tag, text) pairs where tag is one of ``" "``, ``"-"``, ``"+"``
    """

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: Tuple[Tuple[str, str], ...]

    @property
    def old_index(self) -> int:
        """0-based position of the hunk in the original."""
        return self.old_start if self.old_count == 0 else self.old_start - 1

    @property
    def old_lines(self) -> List[str]:
        return [text for tag, text in self.lines if tag != "+"]

    @property
    def new_lines(self) -> List[str]:
        return [text for tag, text in self.lines if tag != "-"]

    @property
    def leading_context(self) -> int:
        count = 0
        for tag, _ in self.lines:
            if tag != " ":
                break
            count += 1
        return count

    @property
    def trailing_context(self) -> int:
        count = 0
        for tag, _ in reversed(self.lines):
            if tag != " ":
                break
            count += 1
        return count

    @property
    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"


def _decode_lines(content: Optional[bytes], error: Type[DiffError]) -> List[str]:
    if content is None:
        return []
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise error(f"content is not valid UTF-8 text: {exc}") from exc
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def compute_diff(
    original: Optional[bytes],
    new_lines: Sequence[str],
    *,
    label: str = "file",
    context: int = DIFF_CONTEXT,
) -> str:
    """
    Compute a unified diff from ``original`` to ``new_lines``.

    Args:
        original: On-disk bytes, or None when the file does not exist yet
        new_lines: Edited document lines without terminators
        label: Path shown in the ``---``/``+++`` headers
        context: Lines of context around each change

    Returns:
        Diff text; empty when there is nothing to change

    Raises:
        DiffComputeError: If the original is not UTF-8 text or a line holds a newline
    """
    old = _decode_lines(original, DiffComputeError)
    new = list(new_lines)
    for number, line in enumerate(new, start=1):
        if not isinstance(line, str):
            raise DiffComputeError(f"line {number} is not text")
        if "\n" in line:
            raise DiffComputeError(f"line {number} contains a newline")

    fromfile = f"a/{label}" if original is not None else NULL_PATH
    tofile = f"b/{label}"
    diff_lines = list(difflib.unified_diff(old, new, fromfile, tofile, n=context, lineterm=""))
    if not diff_lines:
        return ""
    return "\n".join(diff_lines) + "\n"


def parse_diff(diff_text: str) -> List[Hunk]:
    """
    Parse the hunks of a single-file unified diff.

    Header and other non-hunk lines between hunks are ignored.

    Raises:
        DiffApplyError: If a hunk body is truncated or malformed
    """
    lines = diff_text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    hunks: List[Hunk] = []
    i = 0
    while i < len(lines):
        match = _HUNK_RE.match(lines[i])
        i += 1
        if not match:
            continue

        old_start = int(match.group(1))
        old_count = int(match.group(2)) if match.group(2) is not None else 1
        new_start = int(match.group(3))
        new_count = int(match.group(4)) if match.group(4) is not None else 1

        old_need, new_need = old_count, new_count
        body: List[Tuple[str, str]] = []
        while old_need > 0 or new_need > 0:
            if i >= len(lines):
                raise DiffApplyError(f"truncated hunk at line {i}")
            raw = lines[i]
            i += 1
            if raw.startswith("\\"):
                continue
            tag, text = (raw[:1], raw[1:]) if raw else (" ", "")
            if tag == " ":
                old_need -= 1
                new_need -= 1
            elif tag == "-":
                old_need -= 1
            elif tag == "+":
                new_need -= 1
            else:
                raise DiffApplyError(f"malformed hunk line {i}: {raw!r}")
            if old_need < 0 or new_need < 0:
                raise DiffApplyError(f"hunk line counts do not match header at line {i}")
            body.append((tag, text))

        while i < len(lines) and lines[i].startswith("\\"):
            i += 1

        hunks.append(Hunk(old_start, old_count, new_start, new_count, tuple(body)))
    return hunks


def _locate(base: Sequence[str], old: Sequence[str], expected: int, lower: int) -> Optional[int]:
    upper = len(base) - len(old)
    if upper < lower:
        return None
    if not old:
        return min(max(expected, lower), upper)

    start = min(max(expected, lower), upper)
    span = max(start - lower, upper - start)
    for distance in range(span + 1):
        for pos in (start - distance, start + distance) if distance else (start,):
            if lower <= pos <= upper and list(base[pos:pos + len(old)]) == list(old):
                return pos
    return None


def apply_diff(
    original: Optional[bytes],
    diff_text: str,
    *,
    context: int = DIFF_CONTEXT,
) -> List[str]:
    """
    Apply ``diff_text`` on top of ``original``.

    Args:
        original: Current on-disk bytes, or None to start from an empty baseline
        diff_text: Unified diff produced by compute_diff
        context: Context radius the diff was produced with

    Returns:
        Restored document lines

    Raises:
        DiffApplyError: If a hunk's context cannot be found in the baseline
    """
    base = _decode_lines(original, DiffApplyError)
    hunks = parse_diff(diff_text)
    if not hunks:
        return base

    result: List[str] = []
    cursor = 0
    offset = 0
    last = len(hunks) - 1
    for index, hunk in enumerate(hunks):
        old = hunk.old_lines
        pos = _locate(base, old, hunk.old_index + offset, cursor)
        if pos is None:
            raise DiffApplyError(f"hunk #{index + 1} {hunk.header} does not apply")

        at_start = index == 0 and hunk.old_index == 0 and hunk.leading_context < context
        at_end = index == last and hunk.trailing_context < context

        if not at_start:
            result.extend(base[cursor:pos])
        result.extend(hunk.new_lines)
        cursor = len(base) if at_end else pos + len(old)
        offset = pos - hunk.old_index

    result.extend(base[cursor:])
    return result


__all__ = [
    "DIFF_CONTEXT",
    "DiffApplyError",
    "DiffComputeError",
    "DiffError",
    "Hunk",
    "apply_diff",
    "compute_diff",
    "parse_diff",
]
