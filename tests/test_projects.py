"""Tests for the project registry."""

from __future__ import annotations

import pytest
from pathlib import Path

from clancy.errors import ProjectExists, ProjectNotFound
from clancy.memory.projects import (
    METADATA_FILE,
    NOTE_FILES,
    ProjectRegistry,
    validate_name,
)


@pytest.fixture
def registry(tmp_path: Path) -> ProjectRegistry:
    return ProjectRegistry(tmp_path / "home")


class TestCreate:
    def test_creates_directory_structure(self, registry: ProjectRegistry):
        registry.create("auth-service")
        project_dir = registry.project_dir("auth-service")
        assert (project_dir / METADATA_FILE).is_file()
        assert (project_dir / "tasks").is_dir()
        for note_file in NOTE_FILES:
            assert (project_dir / "notes" / note_file).is_file()

    def test_metadata_defaults(self, registry: ProjectRegistry):
        metadata = registry.create("auth-service")
        assert metadata.name == "auth-service"
        assert metadata.parent is None
        assert metadata.status == "active"
        assert metadata.stats.total_tasks == 0

    def test_duplicate_raises(self, registry: ProjectRegistry):
        registry.create("auth-service")
        with pytest.raises(ProjectExists):
            registry.create("auth-service")

    def test_open_or_create_is_idempotent(self, registry: ProjectRegistry):
        first = registry.open_or_create("api")
        second = registry.open_or_create("api")
        assert first.created == second.created


class TestOpen:
    def test_missing_project(self, registry: ProjectRegistry):
        with pytest.raises(ProjectNotFound) as exc:
            registry.open("ghost")
        assert exc.value.name == "ghost"

    def test_round_trip_through_frontmatter(self, registry: ProjectRegistry):
        registry.create("api")
        registry.set_parent("api", "platform-core")
        metadata = registry.open("api")
        assert metadata.parent == "platform-core"

    def test_frontmatter_keys(self, registry: ProjectRegistry):
        metadata = registry.create("api")
        assert set(metadata.to_frontmatter()) == {
            "name",
            "created",
            "updated",
            "last_task",
            "parent",
            "status",
            "total_sessions",
            "total_tasks",
        }

    def test_missing_metadata_file_yields_defaults(self, registry: ProjectRegistry):
        registry.create("api")
        (registry.project_dir("api") / METADATA_FILE).unlink()
        metadata = registry.open("api")
        assert metadata.name == "api"
        assert metadata.parent is None

    def test_list_projects_sorted(self, registry: ProjectRegistry):
        for name in ("zeta", "alpha", "mid"):
            registry.create(name)
        assert [m.name for m in registry.list_projects()] == ["alpha", "mid", "zeta"]


class TestMutations:
    def test_archive(self, registry: ProjectRegistry):
        registry.create("old")
        registry.archive("old")
        assert registry.open("old").archived

    def test_record_task_and_session(self, registry: ProjectRegistry):
        registry.create("api")
        registry.record_session_start("api")
        registry.record_task("api")
        registry.record_task("api")
        metadata = registry.open("api")
        assert metadata.stats.total_sessions == 1
        assert metadata.stats.total_tasks == 2
        assert metadata.last_task is not None

    def test_next_task_number(self, registry: ProjectRegistry):
        registry.create("api")
        assert registry.next_task_number("api") == 1
        tasks_dir = registry.tasks_dir("api")
        (tasks_dir / "001-first.json").write_text("{}")
        (tasks_dir / "007-later.json").write_text("{}")
        (tasks_dir / "notes.txt").write_text("")
        assert registry.next_task_number("api") == 8


class TestValidateName:
    @pytest.mark.parametrize("name", ["", "  ", ".", "..", "a/b", "a\\b", "bad:name"])
    def test_rejects_bad_names(self, name: str):
        with pytest.raises(ValueError):
            validate_name(name)

    def test_strips_whitespace(self):
        assert validate_name("  api ") == "api"
