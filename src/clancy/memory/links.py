"""Link graph — single-parent inheritance between projects.

The parent reference lives in each child's metadata (a name, never an
owning pointer). An in-memory index of child -> parent is built once from
the registry and updated on every link/unlink, so cycle checks never rescan
the disk.
"""

from __future__ import annotations

import logging
import threading

from clancy.errors import AlreadyLinked, CycleDetected, ProjectNotFound
from clancy.memory.projects import ProjectRegistry

logger = logging.getLogger(__name__)

MAX_DEPTH = 32


class LinkGraph:
    """Acyclic child -> parent mapping over the project registry."""

    def __init__(self, registry: ProjectRegistry, max_depth: int = MAX_DEPTH) -> None:
        self.registry = registry
        self.max_depth = max_depth
        self._parents: dict[str, str | None] = {}
        # Covers the whole ancestor walk plus the write in link()
        self._lock = threading.Lock()
        self._build_index()

    def _build_index(self) -> None:
        self._parents.clear()
        for metadata in self.registry.list_projects():
            self._parents[metadata.name] = metadata.parent

    def reload(self) -> None:
        """Rebuild the index from disk (after out-of-band metadata edits)."""
        with self._lock:
            self._build_index()

    def parent(self, project: str) -> str | None:
        return self._parents.get(project)

    def children(self, project: str) -> list[str]:
        return sorted(child for child, parent in self._parents.items() if parent == project)

    def _require(self, name: str) -> None:
        if name not in self._parents:
            if not self.registry.exists(name):
                raise ProjectNotFound(name)
            self._parents[name] = self.registry.open(name).parent

    # ── Mutations ─────────────────────────────────────────────

    def link(self, child: str, parent: str) -> None:
        """Make ``parent`` the parent of ``child``.

        Raises CycleDetected for a self-link or when ``parent`` already
        descends from ``child``; AlreadyLinked when ``child`` has a different
        parent. Linking to the current parent again is a no-op.
        """
        with self._lock:
            self._require(child)
            self._require(parent)

            if child == parent:
                raise CycleDetected(f"Cannot link project '{child}' to itself")

            current = self._parents.get(child)
            if current == parent:
                logger.debug("%s already linked to %s", child, parent)
                return
            if current is not None:
                raise AlreadyLinked(child, current)

            for ancestor in [parent, *self._walk(parent)]:
                if ancestor == child:
                    raise CycleDetected(
                        f"Cannot link: would create circular reference "
                        f"({child} -> ... -> {parent})"
                    )

            self.registry.set_parent(child, parent)
            self._parents[child] = parent
        logger.info("Linked %s -> %s", child, parent)

    def unlink(self, child: str) -> str | None:
        """Remove the parent edge of ``child``; returns the old parent, if any."""
        with self._lock:
            self._require(child)
            previous = self._parents.get(child)
            if previous is None:
                logger.debug("%s has no parent link", child)
                return None
            self.registry.set_parent(child, None)
            self._parents[child] = None
        logger.info("Unlinked %s from %s", child, previous)
        return previous

    # ── Traversal ─────────────────────────────────────────────

    def ancestors(self, project: str) -> list[str]:
        """Parent chain of ``project``, nearest first.

        Reaching the depth ceiling means the stored graph holds a cycle,
        which link() never allows; that raises a fatal CycleDetected.
        """
        with self._lock:
            self._require(project)
            return self._walk(project)

    def _walk(self, project: str) -> list[str]:
        chain: list[str] = []
        current = self._parents.get(project)
        while current is not None:
            if len(chain) >= self.max_depth:
                raise CycleDetected(
                    f"Ancestor walk from '{project}' exceeded {self.max_depth} hops; "
                    "link graph is corrupted",
                    fatal=True,
                )
            if current not in self._parents and not self.registry.exists(current):
                logger.warning(
                    "Project %s has dangling parent %s", chain[-1] if chain else project, current
                )
                break
            chain.append(current)
            if current not in self._parents:
                self._parents[current] = self.registry.open(current).parent
            current = self._parents[current]
        return chain
