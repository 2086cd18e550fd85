"""Exception hierarchy for the note store, link graph and extraction merge."""

from __future__ import annotations


class ClancyError(Exception):
    """Base exception for clancy domain errors."""


class ProjectNotFound(ClancyError):
    """Raised when a named project does not exist on disk."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Project '{name}' not found")
        self.name = name


class ProjectExists(ClancyError):
    """Raised when creating a project whose directory already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Project '{name}' already exists")
        self.name = name


class PolicyViolation(ClancyError):
    """Raised when append is called on a replace category or vice versa."""

    def __init__(self, category: str, policy: str, operation: str) -> None:
        super().__init__(
            f"Cannot {operation} '{category}': category merge policy is '{policy}'"
        )
        self.category = category
        self.policy = policy
        self.operation = operation


class CycleDetected(ClancyError):
    """Raised when a link would create a cycle, or a cycle is found while walking.

    ``fatal`` is set when the cycle was found in stored data rather than
    rejected at write time; that means the link graph was corrupted outside
    the API.
    """

    def __init__(self, message: str, *, fatal: bool = False) -> None:
        super().__init__(message)
        self.fatal = fatal


class AlreadyLinked(ClancyError):
    """Raised when linking a child that already has a different parent."""

    def __init__(self, child: str, parent: str) -> None:
        super().__init__(
            f"Project '{child}' is already linked to '{parent}'; unlink it first"
        )
        self.child = child
        self.parent = parent


class ExtractionUnavailable(ClancyError):
    """Raised by a note extractor on transport, auth, rate-limit or timeout failure."""


class PlanError(ClancyError):
    """Raised when a plan file is missing or holds no runnable phases."""
