"""Note store — per-project, per-category notes with fixed merge policies.

Each category is one markdown file under ``<project>/notes/``. YAML
frontmatter carries the category, its policy and the ``updated`` marker;
the body is either a blank-line separated list of entries (append
categories) or a single blob (replace categories). Storage order is
insertion order; presentation order is the compiler's business.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

import frontmatter

from clancy.errors import PolicyViolation
from clancy.memory.projects import METADATA_FILE, ProjectRegistry

logger = logging.getLogger(__name__)

VERSIONS_DIR = ".versions"
MAX_VERSIONS = 10

_ENTRY_SPLIT_RE = re.compile(r"\n[ \t]*\n")
# Unindented list markers only; indented sub-items continue their parent
_LIST_ITEM_RE = re.compile(r"^(?:[-*+]|\d+[.)])\s+")


class MergePolicy(str, Enum):
    APPEND = "append"
    REPLACE = "replace"


class NoteCategory(str, Enum):
    ARCHITECTURE = "architecture"
    DECISIONS = "decisions"
    FAILURES = "failures"
    PLAN = "plan"

    @property
    def policy(self) -> MergePolicy:
        return MERGE_POLICIES[self]


MERGE_POLICIES: dict[NoteCategory, MergePolicy] = {
    NoteCategory.ARCHITECTURE: MergePolicy.APPEND,
    NoteCategory.DECISIONS: MergePolicy.APPEND,
    NoteCategory.FAILURES: MergePolicy.APPEND,
    NoteCategory.PLAN: MergePolicy.REPLACE,
}


@dataclass(frozen=True)
class NoteDocument:
    """Stored content of one category: entries for append, content for replace."""

    category: NoteCategory
    entries: tuple[str, ...] = ()
    content: str = ""
    updated: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.entries and not self.content.strip()

    @property
    def text(self) -> str:
        """Flat rendering used in prompts and status output."""
        if self.category.policy is MergePolicy.REPLACE:
            return self.content
        return "\n".join(self.entries)


def normalize_entry(entry: str) -> str:
    """Strip an entry and drop blank lines so it survives blank-line splitting."""
    return "\n".join(line.rstrip() for line in entry.strip().splitlines() if line.strip())


def split_entries(text: str) -> list[str]:
    """Split list-style text into items.

    An unindented list-marker line starts a new item; other non-blank lines
    continue the current one; a blank line closes it.
    """
    items: list[list[str]] = []
    current: list[str] | None = None
    for line in text.splitlines():
        if not line.strip():
            current = None
            continue
        if _LIST_ITEM_RE.match(line) or current is None:
            current = [line.rstrip()]
            items.append(current)
        else:
            current.append(line.rstrip())
    return ["\n".join(item).strip() for item in items]


class NoteStore:
    """Read/write access to project notes."""

    def __init__(self, registry: ProjectRegistry) -> None:
        self.registry = registry

    # ── Paths ─────────────────────────────────────────────────

    def notes_path(self, project: str, category: NoteCategory | str) -> Path:
        category = NoteCategory(category)
        return self.registry.notes_dir(project) / f"{category.value}.md"

    # ── Reads ─────────────────────────────────────────────────

    def read(self, project: str, category: NoteCategory | str) -> NoteDocument:
        """Current stored content; an explicit empty document when none exists."""
        category = NoteCategory(category)
        self.registry.open(project)  # raises ProjectNotFound
        path = self.notes_path(project, category)
        if not path.exists():
            return NoteDocument(category=category)

        meta, body = self._load(path)
        updated = meta.get("updated")
        if isinstance(updated, datetime):
            updated = updated.isoformat(timespec="seconds")

        if category.policy is MergePolicy.REPLACE:
            return NoteDocument(category=category, content=body, updated=updated)
        if meta:
            chunks = _ENTRY_SPLIT_RE.split(body)
        else:
            # Hand-written file: one list item per entry
            chunks = split_entries(body)
        entries = tuple(normalize_entry(chunk) for chunk in chunks if chunk.strip())
        return NoteDocument(category=category, entries=entries, updated=updated)

    def read_all(self, project: str) -> dict[NoteCategory, NoteDocument]:
        return {category: self.read(project, category) for category in NoteCategory}

    def _load(self, path: Path) -> tuple[dict, str]:
        text = path.read_text(encoding="utf-8")
        try:
            post = frontmatter.loads(text)
            return dict(post.metadata), post.content.strip()
        except Exception:
            # Hand-edited file with broken frontmatter: treat it all as body
            logger.warning("Malformed frontmatter in %s, reading as plain text", path)
            return {}, text.strip()

    # ── Writes ────────────────────────────────────────────────

    def append(self, project: str, category: NoteCategory | str, entry: str) -> NoteDocument:
        """Add ``entry`` as the newest item. Duplicates are kept."""
        category = NoteCategory(category)
        if category.policy is not MergePolicy.APPEND:
            raise PolicyViolation(category.value, category.policy.value, "append")
        entry = normalize_entry(entry)
        if not entry:
            raise ValueError(f"Empty entry for '{category.value}'")

        current = self.read(project, category)
        document = NoteDocument(
            category=category,
            entries=current.entries + (entry,),
            updated=datetime.now().isoformat(timespec="seconds"),
        )
        self._write(project, document)
        logger.info(
            "Appended %s entry to %s (%d total)", category.value, project, len(document.entries)
        )
        return document

    def replace(self, project: str, category: NoteCategory | str, content: str) -> NoteDocument:
        """Discard prior content and store ``content``. Same content is a no-op."""
        category = NoteCategory(category)
        if category.policy is not MergePolicy.REPLACE:
            raise PolicyViolation(category.value, category.policy.value, "replace")
        content = content.strip()

        current = self.read(project, category)
        if current.content == content and self.notes_path(project, category).exists():
            logger.debug("Replace of %s/%s left content unchanged", project, category.value)
            return current

        document = NoteDocument(
            category=category,
            content=content,
            updated=datetime.now().isoformat(timespec="seconds"),
        )
        self._write(project, document)
        logger.info("Replaced %s for %s (%d chars)", category.value, project, len(content))
        return document

    def _write(self, project: str, document: NoteDocument) -> None:
        path = self.notes_path(project, document.category)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._backup(project, path)
        if document.category.policy is MergePolicy.REPLACE:
            body = document.content
        else:
            body = "\n\n".join(document.entries)
        post = frontmatter.Post(
            body,
            category=document.category.value,
            policy=document.category.policy.value,
            updated=document.updated,
        )
        path.write_text(frontmatter.dumps(post) + "\n", encoding="utf-8")
        self.registry.touch(project)

    def _backup(self, project: str, path: Path) -> None:
        """Backup to .versions/, keep at most MAX_VERSIONS per category."""
        if not path.exists():
            return
        versions_dir = self.registry.project_dir(project) / VERSIONS_DIR
        versions_dir.mkdir(exist_ok=True)
        ts = datetime.now().strftime("%Y%m%dT%H%M%S%f")
        (versions_dir / f"{path.stem}-{ts}.md").write_text(
            path.read_text(encoding="utf-8"), encoding="utf-8"
        )
        old = sorted(versions_dir.glob(f"{path.stem}-*.md"))
        for f in old[:-MAX_VERSIONS]:
            f.unlink()

    # ── Atomic category updates ───────────────────────────────

    @contextmanager
    def atomic(self, project: str, category: NoteCategory | str) -> Iterator[None]:
        """Restore the category file and project metadata if the block raises."""
        path = self.notes_path(project, category)
        metadata_path = self.registry.project_dir(project) / METADATA_FILE
        snapshot = path.read_text(encoding="utf-8") if path.exists() else None
        metadata_snapshot = (
            metadata_path.read_text(encoding="utf-8") if metadata_path.exists() else None
        )
        try:
            yield
        except Exception:
            if snapshot is None:
                path.unlink(missing_ok=True)
            else:
                path.write_text(snapshot, encoding="utf-8")
            if metadata_snapshot is not None:
                metadata_path.write_text(metadata_snapshot, encoding="utf-8")
            logger.warning(
                "Rolled back %s/%s after failed write", project, NoteCategory(category).value
            )
            raise
