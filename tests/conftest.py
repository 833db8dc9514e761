"""Shared fixtures for tracker tests."""

from datetime import date

import pytest

from tracker.core.data_source import SQLiteDataSource
from tracker.core.store import (
    EntitySnapshot,
    Milestone,
    SubSubtask,
    Subtask,
    Task,
    User,
)


class SnapshotBuilder:
    """Accumulates records and hands out an EntitySnapshot."""

    def __init__(self):
        self.snapshot = EntitySnapshot()
        self._ids = 0

    def _next(self, prefix):
        self._ids += 1
        return f"{prefix}{self._ids}"

    def user(self, full_name, role="user", user_id=None):
        user = User(id=user_id or self._next("u"), full_name=full_name, role=role)
        self.snapshot.users.append(user)
        return user

    def task(self, name, category="dev", task_id=None):
        task = Task(id=task_id or self._next("t"), name=name, category=category)
        self.snapshot.tasks.append(task)
        return task

    def subtask(self, task, name, assigned_to=None, subtask_id=None):
        subtask = Subtask(
            id=subtask_id or self._next("s"), task_id=task.id, name=name, assigned_to=assigned_to
        )
        self.snapshot.subtasks.append(subtask)
        return subtask

    def sub_subtask(self, subtask, name, order_index=0, assigned_to=None):
        sub_subtask = SubSubtask(
            id=self._next("ss"),
            subtask_id=subtask.id,
            name=name,
            order_index=order_index,
            assigned_to=assigned_to,
        )
        self.snapshot.sub_subtasks.append(sub_subtask)
        return sub_subtask

    def milestone(self, parent, day, text="In progress"):
        """Attach a milestone to a Subtask or SubSubtask; day is 'YYYY-MM-DD' or None."""
        milestone_date = date.fromisoformat(day) if day else None
        if isinstance(parent, SubSubtask):
            milestone = Milestone(
                id=self._next("m"), milestone_date=milestone_date,
                milestone_text=text, sub_subtask_id=parent.id,
            )
        else:
            milestone = Milestone(
                id=self._next("m"), milestone_date=milestone_date,
                milestone_text=text, subtask_id=parent.id,
            )
        self.snapshot.milestones.append(milestone)
        return milestone

    def build(self):
        return self.snapshot


@pytest.fixture
def builder():
    return SnapshotBuilder()


@pytest.fixture
def scenario_a(builder):
    """Task 'Auth' (dev) with one subtask 'Backend', opened and then closed."""
    task = builder.task("Auth", category="dev")
    backend = builder.subtask(task, "Backend")
    builder.milestone(backend, "2024-01-01", "In progress")
    builder.milestone(backend, "2024-01-10", "CLOSED")
    return builder.build()


@pytest.fixture
def sqlite_source(tmp_path):
    """SQLite data source with the full schema created."""
    source = SQLiteDataSource(tmp_path / "data" / "tracker.db")
    source.ensure_schema()
    return source
