"""Entry point: python -m clancy <command> [project]

- context <project>: Print the compiled context for the next task
- status <project>:  Project status, current plan and recent decisions
- projects:          List projects
- archive <project>: Mark a project archived
"""

from __future__ import annotations

import logging
import sys

from clancy.config import load_config
from clancy.errors import ClancyError


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _usage() -> None:
    print("Usage: python -m clancy [context|status|archive] <project>")
    print("       python -m clancy projects")
    sys.exit(1)


def _run_context(project: str) -> None:
    from clancy.compiler import ContextCompiler
    from clancy.core import Workspace
    from clancy.session import ConversationMode, ConversationState

    config = load_config()
    _setup_logging(config.log_level)
    workspace = Workspace.from_config(config)
    workspace.registry.open(project)

    compiler = ContextCompiler(
        workspace.store,
        workspace.links,
        include_inherited=config.context.include_parent_notes,
    )
    compiled = compiler.compile(
        project,
        ConversationState(mode=ConversationMode.FRESH),
        budget_tokens=config.context.max_context_tokens,
    )
    print(compiled.text, end="")
    suffix = f", truncated: {', '.join(compiled.affected_sections)}" if compiled.truncated else ""
    print(f"\n(~{compiled.tokens} tokens{suffix})", file=sys.stderr)


def _run_status(project: str) -> None:
    from clancy.core import Workspace
    from clancy.memory.store import NoteCategory

    config = load_config()
    _setup_logging(config.log_level)
    workspace = Workspace.from_config(config)
    metadata = workspace.registry.open(project)

    print(f"Project: {metadata.name}")
    print(f"Status: {metadata.status}")
    print(f"Created: {metadata.created}")
    if metadata.last_task:
        print(f"Last task: {metadata.last_task}")
    if metadata.parent:
        print(f"Parent: {metadata.parent}")
    print(f"Stats: {metadata.stats.total_sessions} sessions, {metadata.stats.total_tasks} tasks")

    plan = workspace.store.read(project, NoteCategory.PLAN)
    if not plan.is_empty:
        print(f"\n## Current Plan\n\n{plan.content}")

    decisions = workspace.store.read(project, NoteCategory.DECISIONS)
    if decisions.entries:
        print("\n## Recent Decisions\n")
        for entry in decisions.entries[-5:]:
            print(entry)


def _run_projects() -> None:
    from clancy.core import Workspace

    config = load_config()
    _setup_logging(config.log_level)
    workspace = Workspace.from_config(config)

    projects = workspace.registry.list_projects()
    if not projects:
        print("No projects found.")
        return
    print("Projects:\n")
    for metadata in projects:
        marker = " (archived)" if metadata.archived else ""
        stats = f"{metadata.stats.total_sessions} sessions, {metadata.stats.total_tasks} tasks"
        print(f"  {metadata.name}{marker} - {stats}")


def _run_archive(project: str) -> None:
    from clancy.core import Workspace

    config = load_config()
    _setup_logging(config.log_level)
    workspace = Workspace.from_config(config)
    metadata = workspace.registry.archive(project)
    print(f"Archived project: {metadata.name}")


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""

    try:
        if cmd == "projects":
            _run_projects()
        elif cmd == "context" and len(sys.argv) > 2:
            _run_context(sys.argv[2])
        elif cmd == "status" and len(sys.argv) > 2:
            _run_status(sys.argv[2])
        elif cmd == "archive" and len(sys.argv) > 2:
            _run_archive(sys.argv[2])
        else:
            _usage()
    except ClancyError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
