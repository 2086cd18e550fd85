"""Collaborator protocols: task execution and note extraction."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from clancy.memory.extraction import ExtractionResult
    from clancy.memory.store import NoteCategory, NoteDocument


@dataclass
class TaskOutcome:
    """Raw output of one task run."""

    output: str
    success: bool


@runtime_checkable
class TaskExecutor(Protocol):
    """Runs a task with the compiled context injected; may take a long time."""

    def run(self, prompt: str, context: str, cwd: Path) -> TaskOutcome:
        """Execute ``prompt`` and return its raw output."""
        ...


@runtime_checkable
class NoteExtractor(Protocol):
    """Turns prior notes plus task output into per-category note updates."""

    def extract(
        self,
        notes: dict[NoteCategory, NoteDocument],
        task_prompt: str,
        task_output: str,
    ) -> ExtractionResult:
        """Return the updates, or raise ExtractionUnavailable."""
        ...
