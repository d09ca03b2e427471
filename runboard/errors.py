"""
Exceptions and structured results for the ranking and points engine.

Exceptions are reserved for input that must be rejected before anything is
written (validation, unknown ids). Operations that touch many records report
per-record outcomes through the result dataclasses instead, so a caller can
always tell which records succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


class RunboardError(Exception):
    """Base exception for runboard errors."""

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message or message


class ValidationError(RunboardError):
    """Raised when a submitted run is missing required fields or is malformed."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            f"Invalid run: {'; '.join(self.errors)}",
            "Run is missing required fields or has invalid values",
        )


class NotFoundError(RunboardError):
    """Raised when a referenced run, player or reference entity does not exist."""

    def __init__(self, label: str, obj_id: str):
        self.label = label
        self.obj_id = obj_id
        super().__init__(f"{label} {obj_id!r} not found", f"{label} not found")


class StoreWriteError(RunboardError):
    """Raised by a store when a single write or write chunk could not be applied."""

    def __init__(self, operation: str, details: str | None = None):
        super().__init__(
            f"Store write failed during {operation}: {details}",
            "Could not save changes. Please try again later.",
        )


@dataclass
class BatchResult:
    updated: int = 0
    failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.errors

    def merge(self, other: "BatchResult") -> None:
        self.updated += other.updated
        self.failed.extend(other.failed)
        self.errors.extend(other.errors)


@dataclass
class GroupRefreshResult:
    """Outcome of re-ranking and re-pointing one comparison group."""

    ranks: dict[str, Optional[int]] = field(default_factory=dict)
    points: dict[str, int] = field(default_factory=dict)
    changed_players: set[str] = field(default_factory=set)
    batch: BatchResult = field(default_factory=BatchResult)
    truncated: bool = False


@dataclass
class AggregateResult:
    player_id: str
    ok: bool = True
    total_points: int = 0
    total_runs: int = 0
    failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    affected_players: set[str] = field(default_factory=set)


@dataclass
class TransitionResult:
    run_id: str
    ok: bool = True
    state: str = ""
    recomputed: list[AggregateResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class SweepResult:
    processed_runs: int = 0
    groups_refreshed: int = 0
    players_recomputed: int = 0
    batch: BatchResult = field(default_factory=BatchResult)
    cursor: Optional[str] = None
    done: bool = False
