"""Session orchestrator — one project, one task at a time.

Per task:
1. Compile context from notes, inherited notes and session history
2. Write it to <working_dir>/.claude/context.md
3. Run the task through the executor
4. Record the task in conversation state and project stats
5. Save the task log
6. Merge extracted notes back into the store

Step 6 finishes before the next task's step 1, so each compilation sees the
notes the previous task produced.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from clancy.compiler import CompiledContext, ContextCompiler, write_context_file
from clancy.config import ClancyConfig
from clancy.errors import PlanError
from clancy.memory.extraction import MergeReport, merge_task_notes
from clancy.memory.links import LinkGraph
from clancy.memory.projects import ProjectRegistry
from clancy.memory.store import NoteStore
from clancy.session import ConversationMode, ConversationState, ModeEvent
from clancy.transcript import NO_SUMMARY, Transcript, truncate

if TYPE_CHECKING:
    from clancy.engines.base import NoteExtractor, TaskExecutor

logger = logging.getLogger(__name__)

SUMMARY_CHARS = 80
PROMPT_CHARS = 60
PLAN_FILE = "PLAN.md"

_PHASE_PREFIX_CHARS = "0123456789.: "


@dataclass
class TaskReport:
    """Everything the front end needs to report one finished task."""

    task_number: int
    context: CompiledContext
    summary: str
    success: bool
    merge: MergeReport | None = None


def create_slug(text: str) -> str:
    """Filename-safe slug from the first 30 characters of ``text``."""
    slug = re.sub(r"[^0-9a-z]", "-", text[:30].lower())
    return slug.strip("-")


@dataclass
class Phase:
    title: str
    description: str = ""

    @property
    def prompt(self) -> str:
        return f"{self.title}\n\n{self.description}".rstrip()


def parse_plan_phases(text: str) -> list[Phase]:
    """Split a markdown plan into phases.

    A phase is a ``## `` section whose heading mentions "phase" or starts with
    a digit (``## Phase 1: Setup``, ``## 2. Core``); the ``Phase N:`` prefix is
    stripped from the title. Other ``## `` sections end the current phase and
    are skipped along with their bodies.
    """
    phases: list[Phase] = []
    title: str | None = None
    lines: list[str] = []

    def close() -> None:
        if title is not None:
            phases.append(Phase(title=title, description="\n".join(lines).strip()))

    for line in text.splitlines():
        if line.startswith("## "):
            close()
            title, lines = None, []
            header = line[3:].strip()
            if "phase" in header.lower() or header[:1].isdigit():
                cleaned = header.lstrip(_PHASE_PREFIX_CHARS)
                cleaned = cleaned.removeprefix("Phase").lstrip(_PHASE_PREFIX_CHARS)
                title = cleaned or header
        elif title is not None and not line.startswith("#"):
            if line.strip() or lines:
                lines.append(line)
    close()
    return phases


class Workspace:
    """Registry, note store and link graph rooted at one clancy home."""

    def __init__(self, home: Path) -> None:
        self.registry = ProjectRegistry(home)
        self.store = NoteStore(self.registry)
        self.links = LinkGraph(self.registry)

    @classmethod
    def from_config(cls, config: ClancyConfig) -> Workspace:
        return cls(config.home)


class Session:
    """An interactive work session on a single project."""

    def __init__(
        self,
        workspace: Workspace,
        project: str,
        executor: TaskExecutor,
        extractor: NoteExtractor | None = None,
        *,
        config: ClancyConfig | None = None,
        working_dir: Path | None = None,
    ) -> None:
        self.config = config or ClancyConfig()
        self.workspace = workspace
        self.executor = executor
        self.extractor = extractor
        self.working_dir = working_dir or Path.cwd()
        self.project = workspace.registry.open_or_create(project).name
        self.conversation = ConversationState(
            mode=ConversationMode.parse(self.config.context.conversation_mode)
        )
        self.compiler = ContextCompiler(
            workspace.store,
            workspace.links,
            include_inherited=self.config.context.include_parent_notes,
        )
        workspace.registry.record_session_start(self.project)
        logger.info("Session started for %s (%s mode)", self.project, self.conversation.mode.value)

    # ── Context ───────────────────────────────────────────────

    def compile_context(self) -> CompiledContext:
        return self.compiler.compile(
            self.project,
            self.conversation,
            budget_tokens=self.config.context.max_context_tokens,
        )

    # ── Mode commands ─────────────────────────────────────────

    def set_mode(self, mode: ConversationMode | str) -> ConversationMode:
        return self.conversation.set_mode(mode)

    def continue_full(self) -> ConversationMode:
        return self.conversation.apply(ModeEvent.CONTINUE)

    def compact(self, condensation: str | None = None) -> ConversationMode:
        return self.conversation.compact(condensation)

    # ── Task loop ─────────────────────────────────────────────

    def run_task(self, prompt: str) -> TaskReport:
        """Run one task end to end; extraction problems never fail the task."""
        context = self.compile_context()
        write_context_file(self.working_dir, context)

        registry = self.workspace.registry
        task_number = registry.next_task_number(self.project)
        logger.info("[Task %d] Injecting context (~%d tokens)", task_number, context.tokens)

        outcome = self.executor.run(prompt, context.text, self.working_dir)
        transcript = Transcript.parse(outcome.output)
        success = outcome.success and (transcript.result is None or transcript.succeeded())
        summary = self._summarize(prompt, transcript, success)

        self.conversation.record_task(
            truncate(prompt, PROMPT_CHARS), summary, transcript_ref=outcome.output
        )
        registry.record_task(self.project)
        self._save_task_log(task_number, prompt, outcome.output, transcript, success)

        merge = None
        if self.extractor is not None:
            merge = merge_task_notes(
                self.workspace.store, self.extractor, self.project, prompt, outcome.output
            )
        return TaskReport(
            task_number=task_number,
            context=context,
            summary=summary,
            success=success,
            merge=merge,
        )

    # ── Phased plans ──────────────────────────────────────────

    def load_plan(self, file_name: str = PLAN_FILE) -> list[Phase]:
        """Read phases from a plan file in the working directory."""
        path = self.working_dir / file_name
        if not path.is_file():
            raise PlanError(f"Plan file not found: {path}")
        phases = parse_plan_phases(path.read_text(encoding="utf-8"))
        if not phases:
            raise PlanError(
                f"No phases found in {file_name}. Expected \"## Phase 1: Title\" sections."
            )
        return phases

    def run_phases(self, phases: list[Phase]) -> list[TaskReport]:
        """Run phases in order as tasks, stopping after the first failed one."""
        reports = []
        for i, phase in enumerate(phases, 1):
            logger.info("Phase %d/%d: %s", i, len(phases), phase.title)
            report = self.run_task(phase.prompt)
            reports.append(report)
            if not report.success:
                logger.warning("Phase %d failed, stopping after %d of %d", i, i, len(phases))
                break
        return reports

    def _summarize(self, prompt: str, transcript: Transcript, success: bool) -> str:
        if not success:
            return f"(failed) {truncate(prompt, SUMMARY_CHARS - 10)}"
        auto_summary = transcript.generate_summary()
        if len(auto_summary) > 20 and auto_summary != NO_SUMMARY:
            return truncate(auto_summary, SUMMARY_CHARS)
        return truncate(prompt, SUMMARY_CHARS)

    def _save_task_log(
        self,
        task_number: int,
        prompt: str,
        output: str,
        transcript: Transcript,
        success: bool,
    ) -> Path:
        tasks_dir = self.workspace.registry.tasks_dir(self.project)
        tasks_dir.mkdir(parents=True, exist_ok=True)
        path = tasks_dir / f"{task_number:03d}-{create_slug(prompt) or 'task'}.json"
        log = {
            "task_number": task_number,
            "prompt": prompt,
            "timestamp": datetime.now().isoformat(timespec="seconds"),
            "success": success,
            "duration_ms": transcript.duration_ms(),
            "cost_usd": transcript.total_cost(),
            "tools_used": transcript.tools_used(),
            "summary": transcript.generate_summary(),
            "raw_output": output,
        }
        path.write_text(json.dumps(log, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.debug("Saved task log %s", path.name)
        return path
