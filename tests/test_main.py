"""Tests for the command-line entry point."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from clancy.__main__ import main
from clancy.memory.projects import ProjectRegistry


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CLANCY_HOME", str(tmp_path / "home"))
    return tmp_path / "home"


def _run(monkeypatch: pytest.MonkeyPatch, *args: str) -> None:
    monkeypatch.setattr(sys, "argv", ["clancy", *args])
    main()


class TestArchive:
    def test_archives_project(self, home: Path, monkeypatch: pytest.MonkeyPatch, capsys):
        ProjectRegistry(home).create("old-api")
        _run(monkeypatch, "archive", "old-api")
        assert "Archived project: old-api" in capsys.readouterr().out
        assert ProjectRegistry(home).open("old-api").archived

    def test_unknown_project_exits(self, home: Path, monkeypatch: pytest.MonkeyPatch, capsys):
        with pytest.raises(SystemExit) as exc:
            _run(monkeypatch, "archive", "ghost")
        assert exc.value.code == 1
        assert "Project 'ghost' not found" in capsys.readouterr().err

    def test_listed_as_archived(self, home: Path, monkeypatch: pytest.MonkeyPatch, capsys):
        ProjectRegistry(home).create("old-api")
        _run(monkeypatch, "archive", "old-api")
        _run(monkeypatch, "projects")
        assert "old-api (archived)" in capsys.readouterr().out


class TestUsage:
    def test_missing_project_argument(self, home: Path, monkeypatch: pytest.MonkeyPatch):
        with pytest.raises(SystemExit):
            _run(monkeypatch, "archive")
