"""Conversation state — per-session task history and continuity mode.

Lives only as long as the session. The mode is a small state machine:

    *      --continue-->  full
    *      --summary--->  summary
    *      --fresh----->  fresh
    *      --compact--->  summary   (history collapsed to one record)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from clancy.transcript import Transcript

logger = logging.getLogger(__name__)


class ConversationMode(str, Enum):
    FRESH = "fresh"
    SUMMARY = "summary"
    FULL = "full"

    @classmethod
    def parse(cls, value: str | ConversationMode) -> ConversationMode:
        """Unknown names fall back to summary, the default mode."""
        try:
            return cls(value)
        except ValueError:
            logger.warning("Unknown conversation mode %r, using summary", value)
            return cls.SUMMARY


class ModeEvent(str, Enum):
    CONTINUE = "continue"
    SUMMARY = "summary"
    FRESH = "fresh"
    COMPACT = "compact"


_TRANSITIONS: dict[ModeEvent, ConversationMode] = {
    ModeEvent.CONTINUE: ConversationMode.FULL,
    ModeEvent.SUMMARY: ConversationMode.SUMMARY,
    ModeEvent.FRESH: ConversationMode.FRESH,
    ModeEvent.COMPACT: ConversationMode.SUMMARY,
}


def next_mode(current: ConversationMode, event: ModeEvent) -> ConversationMode:
    """Transition function for the mode machine. Every event is valid in every mode."""
    return _TRANSITIONS[event]


@dataclass(frozen=True)
class TaskRecord:
    """One completed task. ``index`` 0 marks a compacted-history record."""

    index: int
    prompt: str
    summary: str
    transcript: str | None = None

    @property
    def compacted(self) -> bool:
        return self.index == 0


@dataclass(frozen=True)
class HistoryEntry:
    """A task record as it contributes to compilation under one mode."""

    label: str
    prompt: str
    body: str
    compacted: bool = False


@dataclass
class ConversationState:
    mode: ConversationMode = ConversationMode.SUMMARY
    records: list[TaskRecord] = field(default_factory=list)
    _next_index: int = field(default=1, init=False, repr=False)
    _display_base: int = field(default=0, init=False, repr=False)

    @property
    def task_count(self) -> int:
        return self._next_index - 1

    @property
    def next_display_index(self) -> int:
        """Display number of the upcoming task; restarts after compaction."""
        return self._next_index - self._display_base

    def display_index(self, record: TaskRecord) -> int:
        return record.index - self._display_base

    def record_task(
        self, prompt: str, summary: str, transcript_ref: str | None = None
    ) -> TaskRecord:
        """Append a completed task with the next sequential index (1-based)."""
        record = TaskRecord(
            index=self._next_index,
            prompt=prompt,
            summary=summary,
            transcript=transcript_ref,
        )
        self.records.append(record)
        self._next_index += 1
        return record

    def set_mode(self, mode: ConversationMode | str) -> ConversationMode:
        self.mode = ConversationMode.parse(mode)
        logger.info("Conversation mode: %s", self.mode.value)
        return self.mode

    def apply(self, event: ModeEvent) -> ConversationMode:
        """Drive the mode machine; compaction needs compact() for its payload."""
        if event is ModeEvent.COMPACT:
            return self.compact()
        return self.set_mode(next_mode(self.mode, event))

    def compact(self, condensation: str | None = None) -> ConversationMode:
        """Collapse the history into one synthetic record and switch to summary.

        Session indexes keep counting; only the display numbering restarts.
        """
        if not self.records:
            logger.info("No tasks to compact")
            return self.mode
        count = len(self.records)
        if condensation is None:
            condensation = "\n".join(
                f"- Task {self.display_index(r)}: {r.prompt} → {r.summary}"
                if not r.compacted
                else r.summary
                for r in self.records
            )
        self.records = [
            TaskRecord(index=0, prompt=f"(compacted {count} tasks)", summary=condensation)
        ]
        self._display_base = self._next_index - 1
        self.mode = next_mode(self.mode, ModeEvent.COMPACT)
        logger.info("Compacted %d tasks", count)
        return self.mode

    def history_for_compilation(
        self, mode: ConversationMode | None = None
    ) -> list[HistoryEntry]:
        """Records as they contribute under ``mode`` (default: active mode), oldest first."""
        mode = self.mode if mode is None else ConversationMode.parse(mode)
        if mode is ConversationMode.FRESH:
            return []
        entries = []
        for record in self.records:
            label = "Earlier" if record.compacted else str(self.display_index(record))
            if mode is ConversationMode.FULL and record.transcript:
                body = Transcript.parse(record.transcript).render_conversation()
            else:
                body = record.summary
            entries.append(
                HistoryEntry(
                    label=label, prompt=record.prompt, body=body, compacted=record.compacted
                )
            )
        return entries
