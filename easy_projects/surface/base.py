"""Capability interfaces the snapshot and restore engines call into."""
from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

from easy_projects.state.models import UIState


@runtime_checkable
class Document(Protocol):
    """An open editor document.

    ``path`` is the absolute backing path, or None for a scratch document.
    ``special`` marks terminals, help pages, pickers and explorers, which are
    never tracked or closed.
    """

    identity: Any
    path: Optional[str]
    lines: List[str]
    modified: bool
    special: bool


@runtime_checkable
class DocumentSurface(Protocol):
    """Host editor operations on open documents."""

    def documents(self) -> Sequence[Document]:
        """Return open documents in display order."""
        ...

    def active(self) -> Optional[Document]:
        ...

    def open_file(self, path: Path, *, create: bool = False) -> Optional[Document]:
        """Open ``path`` from disk; with ``create`` return a document even if it is missing."""
        ...

    def create_unnamed(self) -> Document:
        ...

    def activate(self, document: Document) -> None:
        ...

    def close(self, document: Document, *, force: bool = False) -> bool:
        ...


@runtime_checkable
class LayoutSurface(Protocol):
    """Host sidebar layout."""

    def explorer_state(self) -> UIState:
        ...

    def restore_explorer(self, ui: UIState) -> None:
        ...
