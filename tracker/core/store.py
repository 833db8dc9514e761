"""
Data Models for the Tracker Dashboard.

This module defines two families of structures:

- Records: one dataclass per row of the relational store (users, tasks,
  subtasks, sub-subtasks, milestones, action history) plus the
  ``EntitySnapshot`` that groups the five readable collections.
- Derived views: the nested task tree annotated with dates, progress and
  timeline layout, and the ``Dashboard`` that bundles every view computed
  from one snapshot.

Key principles:
- Stored timestamps are timezone-aware (UTC)
- Milestone dates are calendar dates; "no date" is None, never a sentinel
- Records are never mutated by the core; derived views are rebuilt from
  scratch on every snapshot change
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, Optional

Category = Literal["dev", "test", "infra", "support"]
Role = Literal["user", "admin"]
ActionType = Literal["create", "update", "delete"]
EntityType = Literal["task", "subtask", "sub_subtask", "milestone", "user"]

CATEGORIES = ("dev", "test", "infra", "support")
ROLES = ("user", "admin")


def _require_aware(owner: str, name: str, value: Optional[datetime]) -> None:
    if value is not None and value.tzinfo is None:
        raise ValueError(f"{owner}: {name} must be timezone-aware")


@dataclass
class User:
    """
    Person that work can be assigned to.

    Parameters
    ----------
    id : str
        Unique user identifier
    full_name : str
        Display name
    email : str
        Contact email
    role : str
        One of: 'user', 'admin'
    created_at : Optional[datetime]
        When the user was added (timezone-aware UTC if set)
    """

    id: str
    full_name: str
    email: str = ""
    role: Role = "user"
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        _require_aware(f"User {self.id}", "created_at", self.created_at)


@dataclass
class Task:
    """Top-level unit of work, categorized as dev/test/infra/support."""

    id: str
    name: str
    category: str
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        _require_aware(f"Task {self.id}", "created_at", self.created_at)
        _require_aware(f"Task {self.id}", "updated_at", self.updated_at)


@dataclass
class Subtask:
    """Work item under a task, optionally assigned to a user."""

    id: str
    task_id: str
    name: str
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        _require_aware(f"Subtask {self.id}", "created_at", self.created_at)
        _require_aware(f"Subtask {self.id}", "updated_at", self.updated_at)


@dataclass
class SubSubtask:
    """Finest-grained work item; siblings are ordered by order_index."""

    id: str
    subtask_id: str
    name: str
    order_index: int = 0
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        _require_aware(f"SubSubtask {self.id}", "created_at", self.created_at)
        _require_aware(f"SubSubtask {self.id}", "updated_at", self.updated_at)


@dataclass
class Milestone:
    """
    Dated status marker attached to a subtask or a sub-subtask.

    Parameters
    ----------
    id : str
        Unique milestone identifier
    milestone_date : Optional[date]
        Calendar date of the milestone (None when the stored value is
        missing or unparsable)
    milestone_text : str
        Free-form status label, e.g. 'In progress' or 'CLOSED'
    subtask_id : Optional[str]
        Owning subtask (exclusive with sub_subtask_id)
    sub_subtask_id : Optional[str]
        Owning sub-subtask (exclusive with subtask_id)
    """

    id: str
    milestone_date: Optional[date]
    milestone_text: str
    subtask_id: Optional[str] = None
    sub_subtask_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate the single-parent attachment."""
        if bool(self.subtask_id) == bool(self.sub_subtask_id):
            raise ValueError(
                f"Milestone {self.id}: exactly one of subtask_id or "
                f"sub_subtask_id must be set"
            )
        _require_aware(f"Milestone {self.id}", "created_at", self.created_at)
        _require_aware(f"Milestone {self.id}", "updated_at", self.updated_at)


@dataclass
class ActionHistory:
    """Append-only audit record of a mutation."""

    action_type: ActionType
    entity_type: EntityType
    entity_id: str
    entity_name: str
    details: Dict[str, Any] = field(default_factory=dict)
    performed_by: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        _require_aware("ActionHistory", "timestamp", self.timestamp)


@dataclass
class EntitySnapshot:
    """
    Full in-memory copy of every readable collection at one point in time.

    Parameters
    ----------
    tasks : List[Task]
        Tasks in fetch order (category ascending)
    subtasks : List[Subtask]
        Subtasks in insertion order
    sub_subtasks : List[SubSubtask]
        Sub-subtasks ordered by order_index
    milestones : List[Milestone]
        Milestones in insertion order
    users : List[User]
        User directory
    version : int
        Incrementing version assigned by the entity store (0 = never fetched)
    fetched_at : Optional[datetime]
        When the snapshot was read (timezone-aware UTC)
    """

    tasks: List[Task] = field(default_factory=list)
    subtasks: List[Subtask] = field(default_factory=list)
    sub_subtasks: List[SubSubtask] = field(default_factory=list)
    milestones: List[Milestone] = field(default_factory=list)
    users: List[User] = field(default_factory=list)
    version: int = 0
    fetched_at: Optional[datetime] = None

    @classmethod
    def empty(cls) -> "EntitySnapshot":
        return cls()


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------


@dataclass
class BarLayout:
    """Proportional position of a bar on the day axis (fractions 0.0-1.0)."""

    left: float
    width: float


@dataclass
class SubSubtaskNode:
    """Sub-subtask with its assignee and milestones embedded."""

    sub_subtask: SubSubtask
    assignee: Optional[User] = None
    milestones: List[Milestone] = field(default_factory=list)

    # Filled by the progress calculator
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration: int = 0
    progress: int = 0
    is_closed: bool = False

    # Filled by the timeline layout
    layout: Optional[BarLayout] = None


@dataclass
class SubtaskNode:
    """Subtask with assignee, direct milestones and ordered sub-subtasks."""

    subtask: Subtask
    assignee: Optional[User] = None
    milestones: List[Milestone] = field(default_factory=list)
    sub_subtasks: List[SubSubtaskNode] = field(default_factory=list)
    is_planned: bool = False

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration: int = 0
    progress: int = 0
    is_closed: bool = False

    layout: Optional[BarLayout] = None


@dataclass
class TaskNode:
    """Task with its full subtask hierarchy and rolled-up metrics."""

    task: Task
    subtasks: List[SubtaskNode] = field(default_factory=list)
    color: str = ""
    opacity: float = 1.0

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration: int = 0
    progress: int = 0

    layout: Optional[BarLayout] = None


@dataclass
class EngineerSummary:
    """Per-user breakdown of assigned, non-placeholder work."""

    user_id: Optional[str]
    full_name: str
    role: Optional[str] = None
    subtask_ids: List[str] = field(default_factory=list)
    sub_subtask_ids: List[str] = field(default_factory=list)
    assigned_count: int = 0
    closed_count: int = 0
    average_progress: int = 0
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass
class KanbanCard:
    """Subtask or sub-subtask placed in a kanban column."""

    id: str
    kind: Literal["subtask", "sub_subtask"]
    name: str
    task_id: str
    task_name: str
    category: str
    color: str
    assignee_name: Optional[str] = None
    latest_milestone_text: Optional[str] = None
    latest_milestone_date: Optional[date] = None
    progress: int = 0


@dataclass
class KanbanColumn:
    """One milestone option (or the trailing unscheduled bucket)."""

    value: str
    label: str
    cards: List[KanbanCard] = field(default_factory=list)


@dataclass
class CalendarEntry:
    """Milestone projected onto a calendar day."""

    date: date
    milestone_id: str
    milestone_text: str
    task_id: str
    task_name: str
    category: str
    color: str
    subtask_id: str
    subtask_name: str
    sub_subtask_id: Optional[str] = None
    sub_subtask_name: Optional[str] = None
    is_closed: bool = False
    is_planned: bool = False


@dataclass
class Dashboard:
    """
    Every derived view computed from one entity snapshot.

    Parameters
    ----------
    snapshot_version : int
        Version of the entity snapshot the views were computed from
    fetched_at : Optional[datetime]
        When that snapshot was read
    tasks : List[TaskNode]
        Aggregated tree annotated with dates, progress and layout
    day_sequence : List[date]
        Padded, contiguous day axis shared by every bar
    engineers : List[EngineerSummary]
        Per-user breakdown
    kanban : List[KanbanColumn]
        Cards grouped by latest milestone label
    calendar : List[CalendarEntry]
        Milestones in date order
    error : Optional[str]
        Connectivity error from the last fetch attempt, if it failed
    """

    snapshot_version: int = 0
    fetched_at: Optional[datetime] = None
    tasks: List[TaskNode] = field(default_factory=list)
    day_sequence: List[date] = field(default_factory=list)
    engineers: List[EngineerSummary] = field(default_factory=list)
    kanban: List[KanbanColumn] = field(default_factory=list)
    calendar: List[CalendarEntry] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_stale(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert dashboard to JSON-serializable dictionary.

        Returns
        -------
        dict
            JSON-serializable representation
        """
        return {
            "snapshot_version": self.snapshot_version,
            "fetched_at": serialize(self.fetched_at),
            "error": self.error,
            "stale": self.is_stale,
            "day_sequence": [d.isoformat() for d in self.day_sequence],
            "tasks": [serialize(t) for t in self.tasks],
            "engineers": [serialize(e) for e in self.engineers],
            "kanban": [serialize(c) for c in self.kanban],
            "calendar": [serialize(e) for e in self.calendar],
        }

    def to_json(self) -> str:
        """Convert dashboard to JSON string."""
        return json.dumps(self.to_dict(), indent=2)


def serialize(value: Any) -> Any:
    """Recursively turn dataclasses, dates and containers into JSON values."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if hasattr(value, "__dataclass_fields__"):
        return {k: serialize(v) for k, v in vars(value).items()}
    return value
