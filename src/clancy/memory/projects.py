"""Project registry — one directory per project with frontmatter metadata.

``project.md`` carries the metadata as YAML frontmatter; notes and task logs
live alongside it. Projects are never deleted here, only archived.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import frontmatter

from clancy.errors import ProjectExists, ProjectNotFound

logger = logging.getLogger(__name__)

METADATA_FILE = "project.md"
NOTES_DIR = "notes"
TASKS_DIR = "tasks"
NOTE_FILES = ("architecture.md", "decisions.md", "failures.md", "plan.md")

STATUS_ACTIVE = "active"
STATUS_ARCHIVED = "archived"

_TASK_FILE_RE = re.compile(r"^(\d+)-")


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _as_str(value: object) -> str | None:
    """YAML may hand back datetimes for hand-edited files; keep ISO strings."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")
    return str(value)


@dataclass
class ProjectStats:
    total_sessions: int = 0
    total_tasks: int = 0


@dataclass
class ProjectMetadata:
    """Metadata stored in a project's ``project.md`` frontmatter."""

    name: str
    created: str = field(default_factory=_now)
    updated: str = field(default_factory=_now)
    last_task: str | None = None
    parent: str | None = None
    status: str = STATUS_ACTIVE
    stats: ProjectStats = field(default_factory=ProjectStats)

    @property
    def archived(self) -> bool:
        return self.status == STATUS_ARCHIVED

    def to_frontmatter(self) -> dict:
        return {
            "name": self.name,
            "created": self.created,
            "updated": self.updated,
            "last_task": self.last_task,
            "parent": self.parent,
            "status": self.status,
            "total_sessions": self.stats.total_sessions,
            "total_tasks": self.stats.total_tasks,
        }

    @classmethod
    def from_frontmatter(cls, name: str, meta: dict) -> ProjectMetadata:
        return cls(
            name=meta.get("name") or name,
            created=_as_str(meta.get("created")) or _now(),
            updated=_as_str(meta.get("updated")) or _as_str(meta.get("created")) or _now(),
            last_task=_as_str(meta.get("last_task")),
            parent=meta.get("parent") or None,
            status=meta.get("status") or STATUS_ACTIVE,
            stats=ProjectStats(
                total_sessions=int(meta.get("total_sessions", 0) or 0),
                total_tasks=int(meta.get("total_tasks", 0) or 0),
            ),
        )


def validate_name(name: str) -> str:
    """Project names become directory names: no separators, no dot-only names."""
    cleaned = name.strip()
    if not cleaned or cleaned in (".", "..") or re.search(r'[<>:"/\\|?*\n\r\t]', cleaned):
        raise ValueError(f"Invalid project name: {name!r}")
    return cleaned


class ProjectRegistry:
    """Create, open and update projects under ``<home>/projects``."""

    def __init__(self, home: Path) -> None:
        self.home = home
        self.projects_dir = home / "projects"
        self.projects_dir.mkdir(parents=True, exist_ok=True)

    # ── Paths ─────────────────────────────────────────────────

    def project_dir(self, name: str) -> Path:
        return self.projects_dir / validate_name(name)

    def notes_dir(self, name: str) -> Path:
        return self.project_dir(name) / NOTES_DIR

    def tasks_dir(self, name: str) -> Path:
        return self.project_dir(name) / TASKS_DIR

    def exists(self, name: str) -> bool:
        return self.project_dir(name).is_dir()

    # ── Lifecycle ─────────────────────────────────────────────

    def create(self, name: str) -> ProjectMetadata:
        """Create the project directory tree and its metadata file."""
        path = self.project_dir(name)
        if path.exists():
            raise ProjectExists(name)
        (path / NOTES_DIR).mkdir(parents=True)
        (path / TASKS_DIR).mkdir()
        for note_file in NOTE_FILES:
            (path / NOTES_DIR / note_file).write_text("", encoding="utf-8")
        metadata = ProjectMetadata(name=validate_name(name))
        self.save(metadata)
        logger.info("Created project: %s", metadata.name)
        return metadata

    def open(self, name: str) -> ProjectMetadata:
        """Load project metadata; a missing metadata file yields defaults."""
        path = self.project_dir(name)
        if not path.is_dir():
            raise ProjectNotFound(name)
        metadata_path = path / METADATA_FILE
        if not metadata_path.exists():
            return ProjectMetadata(name=validate_name(name))
        return ProjectMetadata.from_frontmatter(name, self._parse_frontmatter(metadata_path))

    def open_or_create(self, name: str) -> ProjectMetadata:
        if self.exists(name):
            return self.open(name)
        return self.create(name)

    def save(self, metadata: ProjectMetadata) -> None:
        path = self.project_dir(metadata.name) / METADATA_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        post = frontmatter.Post(f"# {metadata.name}\n", **metadata.to_frontmatter())
        path.write_text(frontmatter.dumps(post) + "\n", encoding="utf-8")

    def list_projects(self) -> list[ProjectMetadata]:
        """All projects, sorted by name."""
        projects = []
        for path in sorted(self.projects_dir.iterdir(), key=lambda p: p.name):
            if path.is_dir() and not path.name.startswith("."):
                projects.append(self.open(path.name))
        return projects

    def _parse_frontmatter(self, path: Path) -> dict:
        try:
            post = frontmatter.load(str(path))
            return dict(post.metadata)
        except Exception:
            logger.warning("Unreadable project metadata: %s", path)
            return {}

    # ── Mutations ─────────────────────────────────────────────

    def touch(self, name: str) -> ProjectMetadata:
        """Bump the project's last-modified marker."""
        metadata = self.open(name)
        metadata.updated = _now()
        self.save(metadata)
        return metadata

    def archive(self, name: str) -> ProjectMetadata:
        metadata = self.open(name)
        metadata.status = STATUS_ARCHIVED
        metadata.updated = _now()
        self.save(metadata)
        logger.info("Archived project: %s", name)
        return metadata

    def set_parent(self, name: str, parent: str | None) -> ProjectMetadata:
        """Persist the parent reference. Cycle checks belong to LinkGraph."""
        metadata = self.open(name)
        metadata.parent = parent
        metadata.updated = _now()
        self.save(metadata)
        return metadata

    def record_task(self, name: str) -> ProjectMetadata:
        metadata = self.open(name)
        metadata.last_task = _now()
        metadata.updated = metadata.last_task
        metadata.stats.total_tasks += 1
        self.save(metadata)
        return metadata

    def record_session_start(self, name: str) -> ProjectMetadata:
        metadata = self.open(name)
        metadata.stats.total_sessions += 1
        self.save(metadata)
        return metadata

    def next_task_number(self, name: str) -> int:
        """One past the highest ``NNN-`` task log prefix; never reset."""
        tasks_dir = self.tasks_dir(name)
        if not tasks_dir.is_dir():
            return 1
        highest = 0
        for entry in tasks_dir.iterdir():
            match = _TASK_FILE_RE.match(entry.name)
            if match:
                highest = max(highest, int(match.group(1)))
        return highest + 1
