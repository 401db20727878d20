"""Data model for tag mutations.

Principals and tags belong to the remote service; everything here is either a
read-only snapshot of remote state or a record of what a run did.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


class Direction(str, Enum):
    """Whether a tag is being added to or removed from a principal."""

    GRANT = "grant"
    REVOKE = "revoke"

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        """Accept a Direction, its value, or the legacy assign/remove verbs."""

        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        aliases = {"assign": cls.GRANT, "add": cls.GRANT, "remove": cls.REVOKE}
        if text in aliases:
            return aliases[text]
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Unknown direction: {value!r}. Must be one of: grant, revoke") from None


class OperationKind(str, Enum):
    """Kinds of single-item work accepted by the priority queue."""

    TAG_GRANT = "tagGrant"
    TAG_REVOKE = "tagRevoke"
    PRINCIPAL_FETCH = "principalFetch"


@dataclass(frozen=True)
class Principal:
    """Snapshot of a remote principal and its current tags."""

    id: str
    tags: FrozenSet[str] = frozenset()

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags


@dataclass(frozen=True)
class MutationRequest:
    """A single queued operation on one principal.

    Attributes:
        principal_id: The principal the operation targets.
        tag: Tag to grant or revoke (None for lookups).
        direction: Grant or revoke (None for lookups).
        priority: Higher drains first. 0 means "ask the priority function".
        enqueued_at: Monotonic timestamp set by the queue.
        caller_id: Originating caller used for priority; defaults to the principal.
    """

    principal_id: str
    tag: Optional[str] = None
    direction: Optional[Direction] = None
    priority: int = 0
    enqueued_at: float = 0.0
    caller_id: Optional[str] = None

    @property
    def priority_subject(self) -> str:
        return self.caller_id or self.principal_id


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one mutation (or lookup) for one principal."""

    principal_id: Optional[str]
    success: bool
    error: Optional[str] = None


@dataclass
class RunError:
    """One entry of a RunSummary's bounded error list.

    Per-principal failures set `principal_id`; chunk-level failures set
    `chunk` (1-based) and `principal_count` instead.
    """

    error: str
    principal_id: Optional[str] = None
    chunk: Optional[int] = None
    principal_count: Optional[int] = None


@dataclass
class RunSummary:
    """Aggregated outcome of one bulk or chunked execution.

    `processed` counts every requested principal on a single-batch run,
    no-ops included. On a chunked run it is `success_count + failed_count`.
    """

    success_count: int = 0
    failed_count: int = 0
    total_requested: int = 0
    errors: List[RunError] = field(default_factory=list)
    processed: int = 0

    @property
    def total_users(self) -> int:
        return self.total_requested

    def add_errors(self, errors: List[RunError], cap: int) -> None:
        """Append errors while keeping the list at most `cap` long."""

        room = cap - len(self.errors)
        if room > 0:
            self.errors.extend(errors[:room])

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        data = asdict(self)
        data["total_users"] = self.total_requested
        return data


@dataclass(frozen=True)
class QueueKey:
    """Identifies one independent queue: an operation kind within a group."""

    kind: OperationKind
    group_id: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.group_id}"
