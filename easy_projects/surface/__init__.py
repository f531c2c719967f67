"""Document surface adapters."""

from __future__ import annotations

from .base import Document, DocumentSurface, LayoutSurface
from .memory_adapter import MemoryDocument, MemorySurface, ScriptedChooser

__all__ = [
    "Document",
    "DocumentSurface",
    "LayoutSurface",
    "MemoryDocument",
    "MemorySurface",
    "ScriptedChooser",
]
