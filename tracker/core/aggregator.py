"""
Dashboard Aggregator for the Tracker.

Turns one flat entity snapshot into every view the dashboards render.

The aggregator:
1. Joins tasks, subtasks, sub-subtasks and milestones into a nested tree
2. Resolves assignees against the user directory (unknown ids become None)
3. Derives dates and progress bottom-up
4. Lays every node out on a shared, padded day axis
5. Builds the engineer breakdown, kanban columns and calendar entries

Every step is a pure function of the snapshot: recomputing on an unchanged
snapshot yields an equal ``Dashboard``. Absent relations degrade to empty
lists or None; nothing here raises on sparse input.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple

from tracker.core.classifier import (
    UNSCHEDULED_COLUMN_LABEL,
    UNSCHEDULED_COLUMN_VALUE,
    Classifier,
)
from tracker.core.progress import ProgressCalculator, date_span, mean_progress
from tracker.core.store import (
    CalendarEntry,
    Dashboard,
    EngineerSummary,
    EntitySnapshot,
    KanbanCard,
    KanbanColumn,
    Milestone,
    SubSubtaskNode,
    SubtaskNode,
    TaskNode,
    User,
)
from tracker.core.timeline import PADDING_DAYS, layout_tree

logger = logging.getLogger(__name__)

UNASSIGNED_NAME = "Unassigned"


class Aggregator:
    """
    Single-pass builder of dashboard views from an entity snapshot.

    Parameters
    ----------
    classifier : Optional[Classifier]
        Color and status lookups (default: built-in display config)
    padding_days : int
        Days of padding on each side of the timeline axis
    """

    def __init__(self, classifier: Optional[Classifier] = None, padding_days: int = PADDING_DAYS):
        self.classifier = classifier or Classifier()
        self.progress = ProgressCalculator(self.classifier)
        self.padding_days = padding_days

    def create_dashboard(self, snapshot: EntitySnapshot, error: Optional[str] = None) -> Dashboard:
        """
        Compute every derived view for a snapshot.

        Parameters
        ----------
        snapshot : EntitySnapshot
            Latest (possibly stale or empty) snapshot
        error : Optional[str]
            Connectivity error to surface alongside stale data

        Returns
        -------
        Dashboard
            Annotated tree, day axis and secondary views
        """
        started = datetime.now(timezone.utc)

        tasks = self.build_tree(snapshot)
        self.progress.annotate(tasks)
        day_sequence = layout_tree(tasks, self.padding_days)

        dashboard = Dashboard(
            snapshot_version=snapshot.version,
            fetched_at=snapshot.fetched_at,
            tasks=tasks,
            day_sequence=day_sequence,
            engineers=self._build_engineers(tasks, snapshot.users),
            kanban=self._build_kanban(tasks),
            calendar=self._build_calendar(tasks),
            error=error,
        )

        elapsed_ms = (datetime.now(timezone.utc) - started).total_seconds() * 1000
        logger.info(
            f"Dashboard v{snapshot.version} built in {elapsed_ms:.1f}ms: "
            f"{len(tasks)} tasks, {len(day_sequence)} days, "
            f"{len(dashboard.calendar)} milestones"
        )
        return dashboard

    def build_tree(self, snapshot: EntitySnapshot) -> List[TaskNode]:
        """
        Join the flat collections into task -> subtask -> sub-subtask nodes.

        Tasks keep fetch order; subtasks keep insertion order; sub-subtasks
        are ordered by order_index (stable, so ties keep insertion order).
        Milestones attach to whichever parent id they carry.
        """
        users_by_id: Dict[str, User] = {u.id: u for u in snapshot.users}

        milestones_by_subtask: Dict[str, List[Milestone]] = defaultdict(list)
        milestones_by_sub_subtask: Dict[str, List[Milestone]] = defaultdict(list)
        for milestone in snapshot.milestones:
            if milestone.sub_subtask_id:
                milestones_by_sub_subtask[milestone.sub_subtask_id].append(milestone)
            elif milestone.subtask_id:
                milestones_by_subtask[milestone.subtask_id].append(milestone)

        children_by_subtask: Dict[str, List[SubSubtaskNode]] = defaultdict(list)
        for sub_subtask in sorted(snapshot.sub_subtasks, key=lambda s: s.order_index):
            children_by_subtask[sub_subtask.subtask_id].append(
                SubSubtaskNode(
                    sub_subtask=sub_subtask,
                    assignee=self._resolve(users_by_id, sub_subtask.assigned_to),
                    milestones=list(milestones_by_sub_subtask.get(sub_subtask.id, [])),
                )
            )

        subtasks_by_task: Dict[str, List[SubtaskNode]] = defaultdict(list)
        for subtask in snapshot.subtasks:
            subtasks_by_task[subtask.task_id].append(
                SubtaskNode(
                    subtask=subtask,
                    assignee=self._resolve(users_by_id, subtask.assigned_to),
                    milestones=list(milestones_by_subtask.get(subtask.id, [])),
                    sub_subtasks=list(children_by_subtask.get(subtask.id, [])),
                    is_planned=self.classifier.is_planned(subtask),
                )
            )

        return [
            TaskNode(
                task=task,
                subtasks=list(subtasks_by_task.get(task.id, [])),
                color=self.classifier.category_color(task.category),
                opacity=self.classifier.category_opacity(task.category),
            )
            for task in snapshot.tasks
        ]

    def _resolve(self, users_by_id: Dict[str, User], user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        return users_by_id.get(user_id)

    def _build_engineers(self, tasks: List[TaskNode], users: List[User]) -> List[EngineerSummary]:
        """Group assigned non-PLANNED work per user, directory order first."""
        buckets: Dict[Optional[str], List[Tuple[str, str, int, bool, Optional[date], Optional[date]]]] = defaultdict(list)

        for task_node in tasks:
            for subtask_node in task_node.subtasks:
                if subtask_node.is_planned:
                    continue
                owner = subtask_node.assignee.id if subtask_node.assignee else None
                buckets[owner].append((
                    "subtask", subtask_node.subtask.id, subtask_node.progress,
                    subtask_node.is_closed, subtask_node.start_date, subtask_node.end_date,
                ))
                for child in subtask_node.sub_subtasks:
                    owner = child.assignee.id if child.assignee else None
                    buckets[owner].append((
                        "sub_subtask", child.sub_subtask.id, child.progress,
                        child.is_closed, child.start_date, child.end_date,
                    ))

        summaries = [self._summarize(u.id, u.full_name, u.role, buckets.get(u.id, [])) for u in users]
        if buckets.get(None):
            summaries.append(self._summarize(None, UNASSIGNED_NAME, None, buckets[None]))
        return summaries

    def _summarize(self, user_id, full_name, role, items) -> EngineerSummary:
        start, _, _ = date_span(item[4] for item in items)
        _, end, _ = date_span(item[5] for item in items)
        return EngineerSummary(
            user_id=user_id,
            full_name=full_name,
            role=role,
            subtask_ids=[item[1] for item in items if item[0] == "subtask"],
            sub_subtask_ids=[item[1] for item in items if item[0] == "sub_subtask"],
            assigned_count=len(items),
            closed_count=sum(1 for item in items if item[3]),
            average_progress=mean_progress([item[2] for item in items]),
            start_date=start,
            end_date=end,
        )

    def _build_kanban(self, tasks: List[TaskNode]) -> List[KanbanColumn]:
        """Place each non-PLANNED subtask and sub-subtask by its latest milestone."""
        columns = [
            KanbanColumn(value=option.value, label=option.label)
            for option in self.classifier.config.milestone_options
        ]
        unscheduled = KanbanColumn(value=UNSCHEDULED_COLUMN_VALUE, label=UNSCHEDULED_COLUMN_LABEL)
        by_value = {column.value: column for column in columns}

        for task_node in tasks:
            for subtask_node in task_node.subtasks:
                if subtask_node.is_planned:
                    continue
                entries = [(
                    "subtask", subtask_node.subtask.id, subtask_node.subtask.name,
                    subtask_node.assignee, subtask_node.milestones, subtask_node.progress,
                )]
                entries.extend(
                    (
                        "sub_subtask", child.sub_subtask.id, child.sub_subtask.name,
                        child.assignee, child.milestones, child.progress,
                    )
                    for child in subtask_node.sub_subtasks
                )

                for kind, item_id, name, assignee, milestones, progress in entries:
                    latest = self._latest_milestone(milestones)
                    card = KanbanCard(
                        id=item_id,
                        kind=kind,
                        name=name,
                        task_id=task_node.task.id,
                        task_name=task_node.task.name,
                        category=task_node.task.category,
                        color=task_node.color,
                        assignee_name=assignee.full_name if assignee else None,
                        latest_milestone_text=latest.milestone_text if latest else None,
                        latest_milestone_date=latest.milestone_date if latest else None,
                        progress=progress,
                    )
                    option = self.classifier.milestone_option_for(card.latest_milestone_text)
                    column = by_value.get(option.value) if option else None
                    (column or unscheduled).cards.append(card)

        return columns + [unscheduled]

    def _latest_milestone(self, milestones: List[Milestone]) -> Optional[Milestone]:
        """Latest dated milestone; a later row wins ties. Undated ones are ignored."""
        latest = None
        for milestone in milestones:
            if milestone.milestone_date is None:
                continue
            if latest is None or milestone.milestone_date >= latest.milestone_date:
                latest = milestone
        return latest

    def _build_calendar(self, tasks: List[TaskNode]) -> List[CalendarEntry]:
        """Project every dated milestone onto its calendar day."""
        entries: List[CalendarEntry] = []
        for task_node in tasks:
            for subtask_node in task_node.subtasks:
                sources = [(None, None, subtask_node.milestones)]
                sources.extend(
                    (child.sub_subtask.id, child.sub_subtask.name, child.milestones)
                    for child in subtask_node.sub_subtasks
                )
                for sub_subtask_id, sub_subtask_name, milestones in sources:
                    for milestone in milestones:
                        if milestone.milestone_date is None:
                            continue
                        entries.append(CalendarEntry(
                            date=milestone.milestone_date,
                            milestone_id=milestone.id,
                            milestone_text=milestone.milestone_text,
                            task_id=task_node.task.id,
                            task_name=task_node.task.name,
                            category=task_node.task.category,
                            color=task_node.color,
                            subtask_id=subtask_node.subtask.id,
                            subtask_name=subtask_node.subtask.name,
                            sub_subtask_id=sub_subtask_id,
                            sub_subtask_name=sub_subtask_name,
                            is_closed=self.classifier.is_closed(milestone),
                            is_planned=subtask_node.is_planned,
                        ))

        entries.sort(key=lambda e: e.date)
        return entries
