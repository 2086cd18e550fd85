"""Context compiler — notes + inherited notes + session history under a token budget.

Sections render in a fixed order:

    session_history -> architecture -> decisions -> failures -> plan

When the estimate exceeds the budget, whole entries are dropped in this
order: session history (oldest first), decisions (oldest first),
architecture (root-most inherited project first, oldest first within a
project), failures (oldest first). The plan is never dropped; as a last
resort it is cut at a character boundary and marked ``[TRUNCATED]``.

The output is a pure function of the inputs: no timestamps, no ordering
that depends on the file system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from clancy.memory.links import LinkGraph
from clancy.memory.store import NoteCategory, NoteStore
from clancy.session import ConversationMode, ConversationState, HistoryEntry
from clancy.tokens import estimate_tokens

logger = logging.getLogger(__name__)

SESSION_HISTORY = "session_history"
ARCHITECTURE = NoteCategory.ARCHITECTURE.value
DECISIONS = NoteCategory.DECISIONS.value
FAILURES = NoteCategory.FAILURES.value
PLAN = NoteCategory.PLAN.value

SECTION_ORDER = (SESSION_HISTORY, ARCHITECTURE, DECISIONS, FAILURES, PLAN)
TRUNCATION_ORDER = (SESSION_HISTORY, DECISIONS, ARCHITECTURE, FAILURES)

TRUNCATION_MARKER = "[TRUNCATED]"
PREAMBLE = "<!-- CLANCY CONTEXT — AUTO-GENERATED -->\n<!-- Project: {project} | Task: {task} -->"
FOOTER = (
    "---\n"
    "When you complete work or encounter a problem, state it clearly for continuity."
)
CONTEXT_DIR = ".claude"
CONTEXT_FILE = "context.md"

_TITLES = {
    ARCHITECTURE: "Architectural Context",
    DECISIONS: "Key Decisions",
    FAILURES: "Known Pitfalls",
    PLAN: "Current Plan",
}


@dataclass
class CompiledContext:
    """Rendered context plus what the budget did to it."""

    text: str
    tokens: int
    budget: int
    truncated: bool = False
    affected_sections: list[str] = field(default_factory=list)
    dropped_entries: dict[str, int] = field(default_factory=dict)
    section_tokens: dict[str, int] = field(default_factory=dict)

    @property
    def over_budget(self) -> bool:
        return self.tokens > self.budget


@dataclass
class _Entry:
    text: str
    rank: int  # drop order within the section, 0 goes first
    group: str | None = None


@dataclass
class _Section:
    name: str
    title: str
    entries: list[_Entry]
    intro: str | None = None
    separator: str = "\n"
    dropped: int = 0
    plan_cut: int | None = None

    def render(self) -> str:
        kept = [e for e in self.entries if e.rank >= self.dropped]
        if not kept:
            return ""
        groups: list[tuple[str | None, list[str]]] = []
        for entry in kept:
            text = entry.text
            if self.plan_cut is not None:
                text = _cut_plan(text, self.plan_cut)
            if groups and groups[-1][0] == entry.group:
                groups[-1][1].append(text)
            else:
                groups.append((entry.group, [text]))

        parts = [f"## {self.title}"]
        if self.intro:
            parts.append(self.intro)
        for label, texts in groups:
            body = self.separator.join(texts)
            parts.append(f"### {label}\n\n{body}" if label else body)
        return "\n\n".join(parts)


def _cut_plan(text: str, length: int) -> str:
    head = text[:length].rstrip()
    return f"{head}\n{TRUNCATION_MARKER}" if head else TRUNCATION_MARKER


def _newest_first(
    entries: tuple[str, ...], group: str | None = None, base: int = 0
) -> list[_Entry]:
    """Render newest first while ranking oldest first for dropping."""
    ranked = [_Entry(text=text, rank=base + i, group=group) for i, text in enumerate(entries)]
    return ranked[::-1]


def _summary_history_text(entry: HistoryEntry) -> str:
    if entry.compacted:
        return f"{entry.prompt}:\n{entry.body}"
    return f"{entry.label}. {entry.prompt} — {entry.body}"


def _full_history_text(entry: HistoryEntry) -> str:
    if entry.compacted:
        return f"### Earlier tasks {entry.prompt}\n\n{entry.body}"
    return f"### Task {entry.label}: {entry.prompt}\n\n{entry.body}".rstrip()


class ContextCompiler:
    """Compose a project's notes and session history into one bounded document."""

    def __init__(
        self,
        store: NoteStore,
        links: LinkGraph | None = None,
        *,
        include_inherited: bool = True,
        estimator: Callable[[str], int] = estimate_tokens,
    ) -> None:
        self.store = store
        self.links = links
        self.include_inherited = include_inherited
        self.estimator = estimator

    # ── Public API ────────────────────────────────────────────

    def compile(
        self,
        project: str,
        conversation: ConversationState | None = None,
        budget_tokens: int = 12_000,
    ) -> CompiledContext:
        """Render the context for the next task; never raises for a valid project."""
        conversation = conversation or ConversationState(mode=ConversationMode.FRESH)
        task_number = conversation.next_display_index
        sections = self._gather(project, conversation, task_number)
        preamble = PREAMBLE.format(project=project, task=task_number)

        def render() -> str:
            parts = [preamble]
            parts.extend(r for r in (s.render() for s in sections) if r)
            parts.append(FOOTER)
            return "\n\n".join(parts) + "\n"

        def fits() -> bool:
            return self.estimator(render()) <= budget_tokens

        by_name = {s.name: s for s in sections}
        if not fits():
            for name in TRUNCATION_ORDER:
                section = by_name.get(name)
                if section is None:
                    continue
                self._drop_until_fits(section, fits)
                if fits():
                    break
            plan = by_name.get(PLAN)
            if plan is not None and not fits():
                self._cut_plan_until_fits(plan, fits)

        text = render()
        touched = {s.name for s in sections if s.dropped or s.plan_cut is not None}
        affected = [name for name in SECTION_ORDER if name in touched]
        tokens = self.estimator(text)
        compiled = CompiledContext(
            text=text,
            tokens=tokens,
            budget=budget_tokens,
            truncated=bool(affected) or tokens > budget_tokens,
            affected_sections=affected,
            dropped_entries={s.name: s.dropped for s in sections if s.dropped},
            section_tokens={s.name: self.estimator(s.render()) for s in sections},
        )
        if compiled.truncated:
            logger.info(
                "Context for %s truncated to ~%d tokens (budget %d): %s",
                project,
                compiled.tokens,
                budget_tokens,
                ", ".join(affected),
            )
        if compiled.over_budget:
            logger.warning(
                "Context for %s still ~%d tokens over budget %d after truncation",
                project,
                compiled.tokens - budget_tokens,
                budget_tokens,
            )
        return compiled

    # ── Gathering ─────────────────────────────────────────────

    def _gather(
        self, project: str, conversation: ConversationState, task_number: int
    ) -> list[_Section]:
        sections = []

        history = self._history_section(conversation, task_number)
        if history is not None:
            sections.append(history)

        architecture = self._architecture_section(project)
        if architecture is not None:
            sections.append(architecture)

        for category in (NoteCategory.DECISIONS, NoteCategory.FAILURES):
            document = self.store.read(project, category)
            if document.entries:
                sections.append(
                    _Section(
                        name=category.value,
                        title=_TITLES[category.value],
                        entries=_newest_first(document.entries),
                    )
                )

        plan = self.store.read(project, NoteCategory.PLAN)
        if plan.content.strip():
            sections.append(
                _Section(name=PLAN, title=_TITLES[PLAN], entries=[_Entry(plan.content, rank=0)])
            )
        return sections

    def _history_section(
        self, conversation: ConversationState, task_number: int
    ) -> _Section | None:
        entries = conversation.history_for_compilation()
        if not entries:
            return None
        if conversation.mode is ConversationMode.FULL:
            return _Section(
                name=SESSION_HISTORY,
                title="Full Conversation History",
                intro=f"This is task {task_number} of an ongoing session. Full prior conversation:",
                entries=[_Entry(text=_full_history_text(e), rank=i) for i, e in enumerate(entries)],
                separator="\n\n",
            )
        return _Section(
            name=SESSION_HISTORY,
            title="Session Context",
            intro=f"This is task {task_number} of an ongoing session. Prior tasks:",
            entries=[_Entry(text=_summary_history_text(e), rank=i) for i, e in enumerate(entries)],
        )

    def _architecture_section(self, project: str) -> _Section | None:
        entries: list[_Entry] = []
        inherited = False
        if self.include_inherited and self.links is not None:
            # Root-most ancestor first, both for reading and for dropping
            for ancestor in reversed(self.links.ancestors(project)):
                document = self.store.read(ancestor, NoteCategory.ARCHITECTURE)
                if document.entries:
                    inherited = True
                    entries.extend(
                        _newest_first(
                            document.entries,
                            group=f"Inherited from {ancestor}",
                            base=len(entries),
                        )
                    )
        own = self.store.read(project, NoteCategory.ARCHITECTURE)
        entries.extend(
            _newest_first(own.entries, group=project if inherited else None, base=len(entries))
        )
        if not entries:
            return None
        return _Section(name=ARCHITECTURE, title=_TITLES[ARCHITECTURE], entries=entries)

    # ── Truncation ────────────────────────────────────────────

    @staticmethod
    def _drop_until_fits(section: _Section, fits: Callable[[], bool]) -> None:
        """Smallest number of dropped entries that fits, or all of them."""
        lo, hi = section.dropped, len(section.entries)
        while lo < hi:
            mid = (lo + hi) // 2
            section.dropped = mid
            if fits():
                hi = mid
            else:
                lo = mid + 1
        section.dropped = lo

    @staticmethod
    def _cut_plan_until_fits(section: _Section, fits: Callable[[], bool]) -> None:
        """Longest plan prefix that fits; if none does, the cheaper of intact or marker."""
        plan_text = section.entries[0].text
        section.plan_cut = 0
        if not fits():
            # Best effort: the budget cannot hold even the headers
            marker_only = section.render()
            section.plan_cut = None
            if len(section.render()) <= len(marker_only):
                return
            section.plan_cut = 0
            return
        lo, hi = 0, len(plan_text) - 1
        while lo < hi:
            mid = (lo + hi + 1) // 2
            section.plan_cut = mid
            if fits():
                lo = mid
            else:
                hi = mid - 1
        section.plan_cut = lo


def write_context_file(working_dir: Path, compiled: CompiledContext) -> Path:
    """Write the compiled context to ``<working_dir>/.claude/context.md``."""
    path = working_dir / CONTEXT_DIR / CONTEXT_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(compiled.text, encoding="utf-8")
    logger.debug("Wrote context file %s (~%d tokens)", path, compiled.tokens)
    return path
