"""
Create/update/delete operations used by the forms.

Every successful write fires the data source's change notifier so the
entity store re-fetches, and records the audit entries the forms rely on:

- users, tasks and milestones: every create, update and delete, including
  milestones removed along with a deleted parent
- subtasks: creation of a PLANNED placeholder only
- sub-subtasks: creation under a PLANNED subtask only
"""

import logging
import re
import sqlite3
import uuid
from contextlib import closing
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tracker.core.action_log import ActionLogger
from tracker.core.data_source import (
    DataSourceError,
    SQLiteDataSource,
    milestone_from_row,
    parse_date,
    sub_subtask_from_row,
    subtask_from_row,
    task_from_row,
    user_from_row,
)
from tracker.core.store import CATEGORIES, ROLES, Milestone, SubSubtask, Subtask, Task, User

logger = logging.getLogger(__name__)


class EntityNotFoundError(LookupError):
    """Raised when a mutation references a row that does not exist."""


def default_email(full_name: str) -> str:
    """Placeholder address derived from the name: 'Ada Lovelace' -> 'ada.lovelace@example.com'."""
    local_part = re.sub(r"\s+", ".", full_name.strip().lower())
    return f"{local_part}@example.com"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


class TrackerWriter:
    """
    Mutation collaborator over a SQLite store.

    Parameters
    ----------
    source : SQLiteDataSource
        Store to write to; its notifier is fired after each write
    action_logger : Optional[ActionLogger]
        Audit trail writer (default: one over the same source)
    """

    def __init__(self, source: SQLiteDataSource, action_logger: Optional[ActionLogger] = None):
        self.source = source
        self.actions = action_logger or ActionLogger(source)

    # -- users -------------------------------------------------------------

    def create_user(
        self,
        full_name: str,
        email: Optional[str] = None,
        role: str = "user",
        performed_by: Optional[str] = None,
    ) -> User:
        full_name = (full_name or "").strip()
        if not full_name:
            raise ValueError("full_name is required")
        if role not in ROLES:
            raise ValueError(f"Invalid role: {role}")
        email = (email or "").strip() or default_email(full_name)

        user_id = _new_id()
        row = self._insert_returning(
            "users",
            "INSERT INTO users (id, email, full_name, role, created_at) VALUES (?, ?, ?, ?, ?)",
            (user_id, email, full_name, role, _now()),
            user_id,
        )
        user = user_from_row(row)
        self.actions.log(
            "create", "user", user.id, full_name,
            {"email": email, "role": role}, performed_by,
        )
        self.source.notify_change()
        return user

    def delete_user(self, user_id: str, performed_by: Optional[str] = None) -> None:
        row = self._get("users", user_id)
        self._execute("DELETE FROM users WHERE id = ?", (user_id,))
        self.actions.log("delete", "user", user_id, row["full_name"], {}, performed_by)
        self.source.notify_change()

    # -- tasks -------------------------------------------------------------

    def create_task(self, name: str, category: str, created_by: Optional[str] = None) -> Task:
        name = (name or "").strip()
        if not name:
            raise ValueError("Task name is required")
        if category not in CATEGORIES:
            raise ValueError(f"Invalid category: {category}")

        task_id = _new_id()
        now = _now()
        row = self._insert_returning(
            "tasks",
            "INSERT INTO tasks (id, name, category, created_by, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (task_id, name, category, created_by, now, now),
            task_id,
        )
        task = task_from_row(row)
        self.actions.log("create", "task", task.id, name, {"category": category}, created_by)
        self.source.notify_change()
        return task

    def delete_task(self, task_id: str, performed_by: Optional[str] = None) -> None:
        row = self._get("tasks", task_id)
        cascaded = self._milestones_where(
            "subtask_id IN (SELECT id FROM subtasks WHERE task_id = ?) "
            "OR sub_subtask_id IN (SELECT ss.id FROM sub_subtasks ss "
            "JOIN subtasks s ON ss.subtask_id = s.id WHERE s.task_id = ?)",
            (task_id, task_id),
        )
        self._execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        self._log_cascaded(cascaded, "task", task_id, performed_by)
        self.actions.log(
            "delete", "task", task_id, row["name"], {"category": row["category"]}, performed_by
        )
        self.source.notify_change()

    # -- subtasks ----------------------------------------------------------

    def create_subtask(
        self,
        task_id: str,
        name: str,
        assigned_to: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Subtask:
        name = (name or "").strip()
        if not name:
            raise ValueError("Subtask name is required")
        task_row = self._get("tasks", task_id)

        subtask_id = _new_id()
        now = _now()
        row = self._insert_returning(
            "subtasks",
            "INSERT INTO subtasks (id, task_id, name, assigned_to, created_by, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (subtask_id, task_id, name, assigned_to or None, created_by, now, now),
            subtask_id,
        )
        subtask = subtask_from_row(row)
        if self.actions.should_log_subtask(name):
            self.actions.log(
                "create", "subtask", subtask.id, name,
                {"task_name": task_row["name"], "assigned_to": assigned_to}, created_by,
            )
        self.source.notify_change()
        return subtask

    def delete_subtask(self, subtask_id: str, performed_by: Optional[str] = None) -> None:
        self._get("subtasks", subtask_id)
        cascaded = self._milestones_where(
            "subtask_id = ? OR sub_subtask_id IN (SELECT id FROM sub_subtasks WHERE subtask_id = ?)",
            (subtask_id, subtask_id),
        )
        self._execute("DELETE FROM subtasks WHERE id = ?", (subtask_id,))
        self._log_cascaded(cascaded, "subtask", subtask_id, performed_by)
        self.source.notify_change()

    # -- sub-subtasks ------------------------------------------------------

    def next_order_index(self, conn: sqlite3.Connection, subtask_id: str) -> int:
        """One past the current maximum order_index, or 0 with no siblings."""
        row = conn.execute(
            "SELECT MAX(order_index) AS max_index FROM sub_subtasks WHERE subtask_id = ?",
            (subtask_id,),
        ).fetchone()
        if row is None or row["max_index"] is None:
            return 0
        return row["max_index"] + 1

    def create_sub_subtask(
        self,
        subtask_id: str,
        name: str,
        assigned_to: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> SubSubtask:
        name = (name or "").strip()
        if not name:
            raise ValueError("Sub-subtask name is required")
        parent = self._get("subtasks", subtask_id)

        sub_subtask_id = _new_id()
        now = _now()
        try:
            with closing(self.source.connect()) as conn:
                order_index = self.next_order_index(conn, subtask_id)
                conn.execute(
                    "INSERT INTO sub_subtasks "
                    "(id, subtask_id, name, order_index, assigned_to, created_by, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (sub_subtask_id, subtask_id, name, order_index, assigned_to or None,
                     created_by, now, now),
                )
                conn.commit()
                row = conn.execute(
                    "SELECT * FROM sub_subtasks WHERE id = ?", (sub_subtask_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise DataSourceError(f"Error creating sub-subtask: {e}") from e

        sub_subtask = sub_subtask_from_row(row)
        if self.actions.should_log_sub_subtask(parent["name"]):
            self.actions.log(
                "create", "sub_subtask", sub_subtask.id, name,
                {"subtask_name": parent["name"], "order_index": order_index}, created_by,
            )
        self.source.notify_change()
        return sub_subtask

    def delete_sub_subtask(self, sub_subtask_id: str, performed_by: Optional[str] = None) -> None:
        self._get("sub_subtasks", sub_subtask_id)
        cascaded = self._milestones_where("sub_subtask_id = ?", (sub_subtask_id,))
        self._execute("DELETE FROM sub_subtasks WHERE id = ?", (sub_subtask_id,))
        self._log_cascaded(cascaded, "sub_subtask", sub_subtask_id, performed_by)
        self.source.notify_change()

    # -- milestones --------------------------------------------------------

    def create_milestone(
        self,
        milestone_date: Any,
        milestone_text: str,
        subtask_id: Optional[str] = None,
        sub_subtask_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Milestone:
        if bool(subtask_id) == bool(sub_subtask_id):
            raise ValueError("Exactly one of subtask_id or sub_subtask_id must be given")
        parsed = parse_date(milestone_date)
        if parsed is None:
            raise ValueError(f"Invalid milestone date: {milestone_date!r}")
        milestone_text = (milestone_text or "").strip()
        if not milestone_text:
            raise ValueError("Milestone text is required")
        if subtask_id:
            self._get("subtasks", subtask_id)
        else:
            self._get("sub_subtasks", sub_subtask_id)

        milestone_id = _new_id()
        now = _now()
        row = self._insert_returning(
            "milestones",
            "INSERT INTO milestones "
            "(id, subtask_id, sub_subtask_id, milestone_date, milestone_text, created_by, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (milestone_id, subtask_id or None, sub_subtask_id or None, parsed.isoformat(),
             milestone_text, created_by, now, now),
            milestone_id,
        )
        milestone = milestone_from_row(row)
        self.actions.log(
            "create", "milestone", milestone.id, milestone_text,
            self._milestone_details(milestone), created_by,
        )
        self.source.notify_change()
        return milestone

    def update_milestone(
        self,
        milestone_id: str,
        milestone_text: Optional[str] = None,
        milestone_date: Any = None,
        performed_by: Optional[str] = None,
    ) -> Milestone:
        current = milestone_from_row(self._get("milestones", milestone_id))
        changes: Dict[str, Any] = {}
        if milestone_text is not None:
            milestone_text = milestone_text.strip()
            if not milestone_text:
                raise ValueError("Milestone text is required")
            changes["milestone_text"] = milestone_text
        if milestone_date is not None:
            parsed = parse_date(milestone_date)
            if parsed is None:
                raise ValueError(f"Invalid milestone date: {milestone_date!r}")
            changes["milestone_date"] = parsed.isoformat()
        if not changes:
            return current

        assignments = ", ".join(f"{column} = ?" for column in changes)
        self._execute(
            f"UPDATE milestones SET {assignments}, updated_at = ? WHERE id = ?",
            (*changes.values(), _now(), milestone_id),
        )
        updated = milestone_from_row(self._get("milestones", milestone_id))
        details = self._milestone_details(updated)
        details["previous_text"] = current.milestone_text
        details["previous_date"] = current.milestone_date.isoformat() if current.milestone_date else None
        self.actions.log("update", "milestone", milestone_id, updated.milestone_text, details, performed_by)
        self.source.notify_change()
        return updated

    def delete_milestone(self, milestone_id: str, performed_by: Optional[str] = None) -> None:
        milestone = milestone_from_row(self._get("milestones", milestone_id))
        self._execute("DELETE FROM milestones WHERE id = ?", (milestone_id,))
        self.actions.log(
            "delete", "milestone", milestone_id, milestone.milestone_text,
            self._milestone_details(milestone), performed_by,
        )
        self.source.notify_change()

    def _milestone_details(self, milestone: Milestone) -> Dict[str, Any]:
        return {
            "milestone_date": milestone.milestone_date.isoformat() if milestone.milestone_date else None,
            "subtask_id": milestone.subtask_id,
            "sub_subtask_id": milestone.sub_subtask_id,
        }

    def _milestones_where(self, condition: str, params: tuple) -> List[Milestone]:
        """Milestones that a parent delete is about to remove through ON DELETE CASCADE."""
        try:
            with closing(self.source.connect()) as conn:
                rows = conn.execute(
                    f"SELECT * FROM milestones WHERE {condition} ORDER BY rowid", params
                ).fetchall()
        except sqlite3.Error as e:
            raise DataSourceError(f"Error reading milestones: {e}") from e

        milestones = []
        for row in rows:
            try:
                milestones.append(milestone_from_row(row))
            except ValueError as e:
                logger.warning(f"Skipping invalid milestone row: {e}")
        return milestones

    def _log_cascaded(
        self,
        milestones: List[Milestone],
        parent_type: str,
        parent_id: str,
        performed_by: Optional[str],
    ) -> None:
        for milestone in milestones:
            details = self._milestone_details(milestone)
            details["deleted_with"] = {"entity_type": parent_type, "entity_id": parent_id}
            self.actions.log(
                "delete", "milestone", milestone.id, milestone.milestone_text, details, performed_by
            )

    # -- helpers -----------------------------------------------------------

    def _get(self, table: str, row_id: Optional[str]) -> sqlite3.Row:
        try:
            with closing(self.source.connect()) as conn:
                row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
        except sqlite3.Error as e:
            raise DataSourceError(f"Error reading {table}: {e}") from e
        if row is None:
            raise EntityNotFoundError(f"{table} row {row_id} not found")
        return row

    def _execute(self, sql: str, params: tuple) -> None:
        try:
            with closing(self.source.connect()) as conn:
                conn.execute(sql, params)
                conn.commit()
        except sqlite3.Error as e:
            raise DataSourceError(f"Error writing: {e}") from e

    def _insert_returning(self, table: str, sql: str, params: tuple, row_id: str) -> sqlite3.Row:
        try:
            with closing(self.source.connect()) as conn:
                conn.execute(sql, params)
                conn.commit()
                row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
        except sqlite3.Error as e:
            raise DataSourceError(f"Error writing {table}: {e}") from e
        logger.info(f"Inserted {table} row {row_id}")
        return row
