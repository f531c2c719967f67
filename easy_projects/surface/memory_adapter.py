"""In-memory document surface and scripted chooser for headless hosts and tests."""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from easy_projects.conflicts import Prompt
from easy_projects.state.models import UIState
from easy_projects.state.persistence import bytes_to_lines

LOGGER = logging.getLogger(__name__)


@dataclass(eq=False)
class MemoryDocument:
    """Document held entirely in memory."""

    identity: Any
    path: Optional[str] = None
    lines: List[str] = field(default_factory=list)
    modified: bool = False
    special: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.lines or self.lines == [""]


class MemorySurface:
    """In-memory document surface for headless use and tests."""

    def __init__(self, *, explorer: UIState | None = None) -> None:
        self._documents: List[MemoryDocument] = []
        self._active: Optional[MemoryDocument] = None
        self._ids = itertools.count(1)
        self.explorer = explorer or UIState()

    # ------------------------------------------------------------------
    # DocumentSurface

    def documents(self) -> Sequence[MemoryDocument]:
        return list(self._documents)

    def active(self) -> Optional[MemoryDocument]:
        return self._active

    def open_file(self, path: Path, *, create: bool = False) -> Optional[MemoryDocument]:
        target = Path(path).expanduser().resolve()
        existing = self.find(target)
        if existing is not None:
            return existing
        try:
            lines = bytes_to_lines(target.read_bytes())
        except FileNotFoundError:
            if not create:
                return None
            lines = []
        except OSError as exc:
            LOGGER.debug("Cannot open %s: %s", target, exc)
            if not create:
                return None
            lines = []
        document = MemoryDocument(identity=next(self._ids), path=str(target), lines=lines)
        self._documents.append(document)
        if self._active is None:
            self._active = document
        return document

    def create_unnamed(self) -> MemoryDocument:
        document = MemoryDocument(identity=next(self._ids))
        self._documents.append(document)
        return document

    def activate(self, document: MemoryDocument) -> None:
        if document not in self._documents:
            raise ValueError(f"Document {document.identity} is not open")
        self._active = document

    def close(self, document: MemoryDocument, *, force: bool = False) -> bool:
        if document not in self._documents or document.special:
            return False
        if document.modified and not force:
            return False
        self._documents.remove(document)
        if self._active is document:
            self._active = self._documents[-1] if self._documents else None
        return True

    # ------------------------------------------------------------------
    # LayoutSurface

    def explorer_state(self) -> UIState:
        return self.explorer

    def restore_explorer(self, ui: UIState) -> None:
        self.explorer = ui

    # ------------------------------------------------------------------
    # Helpers

    def find(self, path: Path | str) -> Optional[MemoryDocument]:
        target = str(Path(path).expanduser().resolve())
        for document in self._documents:
            if document.path == target:
                return document
        return None

    def add(
        self,
        path: Path | str | None = None,
        lines: Iterable[str] = (),
        *,
        modified: bool = False,
        special: bool = False,
    ) -> MemoryDocument:
        """Open a document with explicit content, as if typed by the user."""
        resolved = str(Path(path).expanduser().resolve()) if path is not None else None
        document = MemoryDocument(
            identity=next(self._ids),
            path=resolved,
            lines=list(lines),
            modified=modified,
            special=special,
        )
        self._documents.append(document)
        if self._active is None and not special:
            self._active = document
        return document

    def contents(self) -> Dict[str, List[str]]:
        """Map of backing path to lines for every named document."""
        return {doc.path: list(doc.lines) for doc in self._documents if doc.path is not None}


class ScriptedChooser:
    """Chooser that answers prompts from a fixed script; None cancels."""

    def __init__(self, answers: Iterable[Optional[str]] = ()) -> None:
        self._answers = list(answers)
        self.prompts: List[Prompt] = []

    def __call__(self, prompt: Prompt) -> Optional[str]:
        self.prompts.append(prompt)
        if not self._answers:
            return None
        return self._answers.pop(0)
