"""Tests for context compilation and budget truncation."""

from __future__ import annotations

import pytest
from pathlib import Path

from clancy.compiler import (
    CONTEXT_DIR,
    CONTEXT_FILE,
    TRUNCATION_MARKER,
    ContextCompiler,
    write_context_file,
)
from clancy.memory.links import LinkGraph
from clancy.memory.projects import ProjectRegistry
from clancy.memory.store import NoteCategory, NoteStore
from clancy.session import ConversationMode, ConversationState
from clancy.tokens import estimate_tokens


@pytest.fixture
def registry(tmp_path: Path) -> ProjectRegistry:
    registry = ProjectRegistry(tmp_path / "home")
    registry.create("P")
    return registry


@pytest.fixture
def store(registry: ProjectRegistry) -> NoteStore:
    return NoteStore(registry)


@pytest.fixture
def links(registry: ProjectRegistry) -> LinkGraph:
    return LinkGraph(registry)


@pytest.fixture
def compiler(store: NoteStore, links: LinkGraph) -> ContextCompiler:
    return ContextCompiler(store, links)


def _fresh() -> ConversationState:
    return ConversationState(mode=ConversationMode.FRESH)


def _fill(store: NoteStore, project: str = "P") -> None:
    store.append(project, NoteCategory.ARCHITECTURE, "Uses repository pattern for storage")
    store.append(project, NoteCategory.ARCHITECTURE, "Handlers follow extract-validate-execute")
    store.append(project, NoteCategory.DECISIONS, "Chose Postgres over SQLite for writes")
    store.append(project, NoteCategory.DECISIONS, "Chose JWT over sessions for auth")
    store.append(project, NoteCategory.FAILURES, "Don't mock the clock in async tests")
    store.append(project, NoteCategory.FAILURES, "Migrations fail without a lock table")
    store.replace(project, NoteCategory.PLAN, "Implement auth.\nTODO: rate limiting.")


class TestRendering:
    def test_empty_project(self, compiler: ContextCompiler):
        compiled = compiler.compile("P", _fresh(), budget_tokens=1000)
        assert compiled.text.startswith("<!-- CLANCY CONTEXT")
        assert "<!-- Project: P | Task: 1 -->" in compiled.text
        assert "## " not in compiled.text
        assert not compiled.truncated
        assert compiled.affected_sections == []
        assert compiled.tokens == estimate_tokens(compiled.text)

    def test_section_order(self, compiler: ContextCompiler, store: NoteStore):
        _fill(store)
        state = ConversationState()
        state.record_task("set up repo", "repo ready")
        text = compiler.compile("P", state, budget_tokens=10_000).text
        headings = [
            "## Session Context",
            "## Architectural Context",
            "## Key Decisions",
            "## Known Pitfalls",
            "## Current Plan",
        ]
        positions = [text.index(h) for h in headings]
        assert positions == sorted(positions)

    def test_entries_newest_first(self, compiler: ContextCompiler, store: NoteStore):
        _fill(store)
        text = compiler.compile("P", _fresh(), budget_tokens=10_000).text
        assert text.index("Chose JWT") < text.index("Chose Postgres")
        assert text.index("Migrations fail") < text.index("Don't mock")

    def test_plan_verbatim(self, compiler: ContextCompiler, store: NoteStore):
        _fill(store)
        text = compiler.compile("P", _fresh(), budget_tokens=10_000).text
        assert "## Current Plan\n\nImplement auth.\nTODO: rate limiting." in text

    def test_summary_history(self, compiler: ContextCompiler):
        state = ConversationState()
        state.record_task("add login", "login added")
        state.record_task("add logout", "logout added")
        text = compiler.compile("P", state, budget_tokens=10_000).text
        assert "This is task 3 of an ongoing session." in text
        assert "1. add login — login added" in text
        assert text.index("1. add login") < text.index("2. add logout")

    def test_full_history(self, compiler: ContextCompiler):
        state = ConversationState(mode=ConversationMode.FULL)
        state.record_task("add login", "login added", transcript_ref="Wrote login.py")
        text = compiler.compile("P", state, budget_tokens=10_000).text
        assert "## Full Conversation History" in text
        assert "### Task 1: add login\n\nWrote login.py" in text

    def test_fresh_mode_has_no_history(self, compiler: ContextCompiler):
        state = ConversationState(mode=ConversationMode.FRESH)
        state.record_task("add login", "login added")
        text = compiler.compile("P", state, budget_tokens=10_000).text
        assert "Session Context" not in text
        assert "add login" not in text

    def test_compacted_history(self, compiler: ContextCompiler):
        state = ConversationState()
        state.record_task("add login", "login added")
        state.compact()
        text = compiler.compile("P", state, budget_tokens=10_000).text
        assert "<!-- Project: P | Task: 1 -->" in text
        assert "(compacted 1 tasks):\n- Task 1: add login → login added" in text

    def test_deterministic(self, compiler: ContextCompiler, store: NoteStore):
        _fill(store)
        state = ConversationState()
        state.record_task("a", "did a")
        for budget in (10_000, 60):
            first = compiler.compile("P", state, budget_tokens=budget)
            second = compiler.compile("P", state, budget_tokens=budget)
            assert first.text == second.text
            assert first.affected_sections == second.affected_sections


class TestInheritance:
    @pytest.fixture
    def chain(self, registry: ProjectRegistry, store: NoteStore, links: LinkGraph) -> None:
        registry.create("root")
        registry.create("mid")
        store.append("root", NoteCategory.ARCHITECTURE, "Root convention")
        store.append("mid", NoteCategory.ARCHITECTURE, "Mid convention")
        store.append("P", NoteCategory.ARCHITECTURE, "Own convention")
        store.append("root", NoteCategory.DECISIONS, "Root-only decision")
        links.link("mid", "root")
        links.link("P", "mid")

    def test_root_most_first(self, compiler: ContextCompiler, chain):
        text = compiler.compile("P", _fresh(), budget_tokens=10_000).text
        assert "### Inherited from root" in text
        assert "### Inherited from mid" in text
        assert "### P" in text
        assert text.index("Root convention") < text.index("Mid convention")
        assert text.index("Mid convention") < text.index("Own convention")

    def test_only_architecture_is_inherited(self, compiler: ContextCompiler, chain):
        text = compiler.compile("P", _fresh(), budget_tokens=10_000).text
        assert "Root-only decision" not in text

    def test_inheritance_disabled(self, store: NoteStore, links: LinkGraph, chain):
        compiler = ContextCompiler(store, links, include_inherited=False)
        text = compiler.compile("P", _fresh(), budget_tokens=10_000).text
        assert "Root convention" not in text
        assert "### P" not in text
        assert "Own convention" in text

    def test_inherited_dropped_root_first(self, compiler: ContextCompiler, chain):
        full = compiler.compile("P", _fresh(), budget_tokens=10_000)
        compiled = compiler.compile("P", _fresh(), budget_tokens=full.tokens - 1)
        assert compiled.affected_sections == ["architecture"]
        assert "Root convention" not in compiled.text
        assert "Mid convention" in compiled.text
        assert "Own convention" in compiled.text


class TestTruncation:
    def test_budget_scenario(self, compiler: ContextCompiler, store: NoteStore):
        decision = "Chose Postgres over SQLite because of concurrent writes"
        store.append("P", NoteCategory.DECISIONS, decision)
        store.replace("P", NoteCategory.PLAN, "Implement auth. TODO: rate limiting.")
        compiled = compiler.compile("P", _fresh(), budget_tokens=5)
        assert compiled.truncated
        assert "decisions" in compiled.affected_sections
        assert "Chose Postgres" not in compiled.text
        assert "Key Decisions" not in compiled.text
        assert "Session Context" not in compiled.text
        plan_complete = "Implement auth. TODO: rate limiting." in compiled.text
        assert plan_complete or TRUNCATION_MARKER in compiled.text
        assert compiled.over_budget

    def test_history_dropped_first(self, compiler: ContextCompiler, store: NoteStore):
        _fill(store)
        state = ConversationState()
        state.record_task("oldest task", "did the oldest")
        state.record_task("newest task", "did the newest")
        full = compiler.compile("P", state, budget_tokens=10_000)
        compiled = compiler.compile("P", state, budget_tokens=full.tokens - 1)
        assert compiled.affected_sections == ["session_history"]
        assert compiled.dropped_entries == {"session_history": 1}
        assert "oldest task" not in compiled.text
        assert "newest task" in compiled.text

    def test_hand_written_list_truncates_oldest_item(
        self, compiler: ContextCompiler, store: NoteStore
    ):
        path = store.notes_path("P", NoteCategory.DECISIONS)
        path.write_text("- old decision A\n- old decision B\n- newest decision C\n")
        full = compiler.compile("P", _fresh(), budget_tokens=10_000)
        compiled = compiler.compile("P", _fresh(), budget_tokens=full.tokens - 1)
        assert compiled.dropped_entries == {"decisions": 1}
        assert "old decision A" not in compiled.text
        assert "newest decision C" in compiled.text

    def test_decisions_before_architecture(self, compiler: ContextCompiler, store: NoteStore):
        _fill(store)
        full = compiler.compile("P", _fresh(), budget_tokens=10_000)
        compiled = compiler.compile("P", _fresh(), budget_tokens=full.tokens - 1)
        assert compiled.affected_sections == ["decisions"]
        assert "Chose Postgres" not in compiled.text
        assert "Chose JWT" in compiled.text
        assert "Uses repository pattern" in compiled.text

    def test_failures_and_plan_last(self, compiler: ContextCompiler, store: NoteStore):
        _fill(store)
        # Room for failures and plan once decisions and architecture are gone
        store.append("P", NoteCategory.DECISIONS, "x" * 400)
        store.append("P", NoteCategory.ARCHITECTURE, "y" * 400)
        compiled = compiler.compile("P", _fresh(), budget_tokens=150)
        assert "decisions" in compiled.affected_sections
        assert "architecture" in compiled.affected_sections
        assert "failures" not in compiled.affected_sections
        assert "Don't mock the clock" in compiled.text
        assert "Implement auth." in compiled.text
        assert TRUNCATION_MARKER not in compiled.text

    def test_plan_cut_with_marker(self, compiler: ContextCompiler, store: NoteStore):
        plan = "\n".join(f"- step {i}: do something useful" for i in range(50))
        store.replace("P", NoteCategory.PLAN, plan)
        store.append("P", NoteCategory.FAILURES, "Don't skip the linter")
        compiled = compiler.compile("P", _fresh(), budget_tokens=120)
        assert compiled.affected_sections == ["failures", "plan"]
        assert compiled.text.rstrip().count(TRUNCATION_MARKER) == 1
        assert "- step 0: do something useful" in compiled.text
        assert "- step 49" not in compiled.text
        assert compiled.tokens <= 120

    def test_never_splits_entries(self, compiler: ContextCompiler, store: NoteStore):
        entries = [f"Decision {i}: chose option {i} because of constraint {i}" for i in range(20)]
        for entry in entries:
            store.append("P", NoteCategory.DECISIONS, entry)
        compiled = compiler.compile("P", _fresh(), budget_tokens=200)
        assert compiled.truncated
        kept = [e for e in entries if e in compiled.text]
        assert 0 < len(kept) < len(entries)
        decision_lines = [
            line for line in compiled.text.splitlines() if line.startswith("Decision ")
        ]
        assert all(line in entries for line in decision_lines)
        # Newest entries survive
        assert kept == entries[-len(kept):]

    def test_budget_monotonic(self, compiler: ContextCompiler, store: NoteStore):
        _fill(store)
        state = ConversationState()
        state.record_task("a task", "a summary")
        previous = 0
        for budget in range(0, 400, 7):
            compiled = compiler.compile("P", state, budget_tokens=budget)
            assert compiled.tokens >= previous
            previous = compiled.tokens

    def test_zero_budget_best_effort(self, compiler: ContextCompiler, store: NoteStore):
        _fill(store)
        compiled = compiler.compile("P", _fresh(), budget_tokens=0)
        assert compiled.truncated
        assert compiled.text.startswith("<!-- CLANCY CONTEXT")
        assert "Don't mock" not in compiled.text

    def test_custom_estimator(self, store: NoteStore, links: LinkGraph):
        _fill(store)
        compiler = ContextCompiler(store, links, estimator=len)
        compiled = compiler.compile("P", _fresh(), budget_tokens=100_000)
        assert compiled.tokens == len(compiled.text)


class TestWriteContextFile:
    def test_writes_under_claude_dir(self, tmp_path: Path, compiler: ContextCompiler):
        compiled = compiler.compile("P", _fresh(), budget_tokens=1000)
        path = write_context_file(tmp_path / "work", compiled)
        assert path == tmp_path / "work" / CONTEXT_DIR / CONTEXT_FILE
        assert path.read_text() == compiled.text
