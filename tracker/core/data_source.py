"""
Data access for the tracker's relational store.

The core never talks to the database directly; it goes through a
``DataSource`` that offers a bulk snapshot read, a change subscription and
the persisted display configuration. ``SQLiteDataSource`` is the concrete
store used by the backend and the tests.
"""

import json
import logging
import sqlite3
from contextlib import closing
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from tracker.core.store import (
    ActionHistory,
    EntitySnapshot,
    Milestone,
    SubSubtask,
    Subtask,
    Task,
    User,
)

logger = logging.getLogger(__name__)

CONNECTIVITY_ERROR = (
    "Unable to connect to database. Please ensure the database schema is set up correctly."
)

REQUIRED_TABLES = [
    "users",
    "tasks",
    "subtasks",
    "sub_subtasks",
    "milestones",
    "app_config",
    "action_history",
]

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    full_name TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
    created_at TEXT
);
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    category TEXT NOT NULL CHECK (category IN ('dev', 'test', 'infra', 'support')),
    created_by TEXT,
    created_at TEXT,
    updated_at TEXT
);
CREATE TABLE IF NOT EXISTS subtasks (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    assigned_to TEXT,
    created_by TEXT,
    created_at TEXT,
    updated_at TEXT
);
CREATE TABLE IF NOT EXISTS sub_subtasks (
    id TEXT PRIMARY KEY,
    subtask_id TEXT NOT NULL REFERENCES subtasks(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    order_index INTEGER NOT NULL DEFAULT 0,
    assigned_to TEXT,
    created_by TEXT,
    created_at TEXT,
    updated_at TEXT,
    UNIQUE (subtask_id, order_index)
);
CREATE TABLE IF NOT EXISTS milestones (
    id TEXT PRIMARY KEY,
    subtask_id TEXT REFERENCES subtasks(id) ON DELETE CASCADE,
    sub_subtask_id TEXT REFERENCES sub_subtasks(id) ON DELETE CASCADE,
    milestone_date TEXT NOT NULL,
    milestone_text TEXT NOT NULL,
    created_by TEXT,
    created_at TEXT,
    updated_at TEXT
);
CREATE TABLE IF NOT EXISTS app_config (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    config_key TEXT NOT NULL UNIQUE,
    config_value TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS action_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action_type TEXT NOT NULL CHECK (action_type IN ('create', 'update', 'delete')),
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    entity_name TEXT NOT NULL,
    details TEXT NOT NULL DEFAULT '{}',
    performed_by TEXT,
    timestamp TEXT NOT NULL
);
"""


class DataSourceError(Exception):
    """Raised when the store cannot be read (connectivity failure)."""


class ChangeNotifier:
    """
    Observer hub with a single "snapshot invalidated" event.

    Callbacks take no arguments: every listener reacts the same way no
    matter which table changed.
    """

    def __init__(self) -> None:
        self._callbacks: List[Callable[[], None]] = []

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback and return its unsubscribe handle."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def notify(self) -> None:
        """Fire every registered callback once, in registration order."""
        for callback in list(self._callbacks):
            callback()

    def __len__(self) -> int:
        return len(self._callbacks)


class DataSource:
    """
    Interface the entity store and config loader depend on.

    Subclasses must override fetch_snapshot, load_app_config and
    insert_action; the base versions raise NotImplementedError.
    """

    def __init__(self) -> None:
        self.notifier = ChangeNotifier()

    def fetch_snapshot(self) -> EntitySnapshot:
        raise NotImplementedError

    def load_app_config(self) -> Dict[str, Any]:
        raise NotImplementedError

    def insert_action(self, record: ActionHistory) -> None:
        raise NotImplementedError

    def on_change(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Subscribe to mutation events on the four mutable tables."""
        return self.notifier.subscribe(callback)

    def notify_change(self) -> None:
        self.notifier.notify()


class SQLiteDataSource(DataSource):
    """
    SQLite-backed store.

    Parameters
    ----------
    db_path : Path
        Database file. Reads fail with DataSourceError if it is missing;
        ``ensure_schema`` creates it.
    """

    def __init__(self, db_path: Path):
        super().__init__()
        self.db_path = Path(db_path)

    def connect(self, create: bool = False) -> sqlite3.Connection:
        """Open a connection; refuse to create the file unless asked."""
        if not create and not self.db_path.exists():
            raise sqlite3.OperationalError(f"database not found at {self.db_path}")
        if create:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def check_schema(self) -> List[str]:
        """
        List the required tables that are missing.

        Returns
        -------
        List[str]
            Missing table names; empty when the schema is set up

        Raises
        ------
        DataSourceError
            If the database cannot be opened at all
        """
        if not self.db_path.exists():
            return list(REQUIRED_TABLES)
        try:
            with closing(self.connect()) as conn:
                rows = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table'"
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error checking schema at {self.db_path}: {e}")
            raise DataSourceError(f"Failed to check database schema: {e}") from e

        present = {row["name"] for row in rows}
        missing = [t for t in REQUIRED_TABLES if t not in present]
        if missing:
            logger.warning(f"Missing tables: {', '.join(missing)}")
        return missing

    def ensure_schema(self) -> None:
        """Create every required table that does not exist yet."""
        try:
            with closing(self.connect(create=True)) as conn:
                conn.executescript(SCHEMA)
                conn.commit()
        except sqlite3.Error as e:
            raise DataSourceError(f"Failed to set up database schema: {e}") from e
        logger.info(f"Schema ready at {self.db_path}")

    def fetch_snapshot(self) -> EntitySnapshot:
        """
        Read all five collections in one pass.

        Raises
        ------
        DataSourceError
            On any database error, with a human-readable message
        """
        try:
            with closing(self.connect()) as conn:
                task_rows = conn.execute(
                    "SELECT * FROM tasks ORDER BY category ASC, rowid ASC"
                ).fetchall()
                subtask_rows = conn.execute("SELECT * FROM subtasks ORDER BY rowid").fetchall()
                sub_subtask_rows = conn.execute(
                    "SELECT * FROM sub_subtasks ORDER BY order_index ASC, rowid ASC"
                ).fetchall()
                milestone_rows = conn.execute("SELECT * FROM milestones ORDER BY rowid").fetchall()
                user_rows = conn.execute("SELECT * FROM users ORDER BY rowid").fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error fetching snapshot from {self.db_path}: {e}")
            raise DataSourceError(CONNECTIVITY_ERROR) from e

        milestones = []
        for row in milestone_rows:
            try:
                milestones.append(milestone_from_row(row))
            except ValueError as e:
                logger.warning(f"Skipping invalid milestone row: {e}")

        snapshot = EntitySnapshot(
            tasks=[task_from_row(r) for r in task_rows],
            subtasks=[subtask_from_row(r) for r in subtask_rows],
            sub_subtasks=[sub_subtask_from_row(r) for r in sub_subtask_rows],
            milestones=milestones,
            users=[user_from_row(r) for r in user_rows],
            fetched_at=datetime.now(timezone.utc),
        )
        logger.info(
            f"Fetched snapshot: {len(snapshot.tasks)} tasks, {len(snapshot.subtasks)} subtasks, "
            f"{len(snapshot.sub_subtasks)} sub-subtasks, {len(snapshot.milestones)} milestones, "
            f"{len(snapshot.users)} users"
        )
        return snapshot

    def load_app_config(self) -> Dict[str, Any]:
        """
        Read app_config rows as {config_key: decoded value}.

        Undecodable values are skipped with a warning so the loader keeps
        that key's default.
        """
        try:
            with closing(self.connect()) as conn:
                rows = conn.execute("SELECT config_key, config_value FROM app_config").fetchall()
        except sqlite3.Error as e:
            raise DataSourceError(f"Error loading app_config: {e}") from e

        config: Dict[str, Any] = {}
        for row in rows:
            try:
                config[row["config_key"]] = json.loads(row["config_value"])
            except json.JSONDecodeError as e:
                logger.warning(f"Failed to parse app_config {row['config_key']}: {e}")
        return config

    def save_app_config(self, key: str, value: Any) -> None:
        """Insert or replace one display-config entry."""
        with closing(self.connect()) as conn:
            conn.execute(
                """
                INSERT INTO app_config (config_key, config_value) VALUES (?, ?)
                ON CONFLICT (config_key) DO UPDATE SET config_value = excluded.config_value
                """,
                (key, json.dumps(value)),
            )
            conn.commit()

    def insert_action(self, record: ActionHistory) -> None:
        with closing(self.connect()) as conn:
            conn.execute(
                """
                INSERT INTO action_history
                    (action_type, entity_type, entity_id, entity_name, details,
                     performed_by, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.action_type,
                    record.entity_type,
                    record.entity_id,
                    record.entity_name,
                    json.dumps(record.details),
                    record.performed_by,
                    record.timestamp.isoformat(),
                ),
            )
            conn.commit()

    def list_actions(self, limit: int = 100) -> List[ActionHistory]:
        """Most recent audit records first."""
        try:
            with closing(self.connect()) as conn:
                rows = conn.execute(
                    "SELECT * FROM action_history ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
        except sqlite3.Error as e:
            raise DataSourceError(f"Error loading action history: {e}") from e
        return [
            ActionHistory(
                action_type=row["action_type"],
                entity_type=row["entity_type"],
                entity_id=row["entity_id"],
                entity_name=row["entity_name"],
                details=json.loads(row["details"] or "{}"),
                performed_by=row["performed_by"],
                timestamp=parse_timestamp(row["timestamp"]) or datetime.now(timezone.utc),
            )
            for row in rows
        ]


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------


def parse_timestamp(ts_str: Optional[str]) -> Optional[datetime]:
    """Parse timestamp string to timezone-aware datetime."""
    if not ts_str:
        return None

    try:
        ts = datetime.fromisoformat(str(ts_str).replace("Z", "+00:00"))
        if ts.tzinfo is None:
            # Naive timestamps are stored as UTC
            ts = ts.replace(tzinfo=timezone.utc)
        return ts
    except (ValueError, AttributeError):
        return None


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a milestone date.

    Accepts date objects, 'YYYY-MM-DD' strings and full ISO timestamps.
    Returns None for missing or unparsable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    ts = parse_timestamp(text)
    if ts is None:
        logger.warning(f"Unparsable milestone date: {value!r}")
        return None
    return ts.date()


def user_from_row(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        full_name=row["full_name"],
        email=row["email"] or "",
        role=row["role"] or "user",
        created_at=parse_timestamp(row["created_at"]),
    )


def task_from_row(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        name=row["name"],
        category=row["category"],
        created_by=row["created_by"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def subtask_from_row(row: sqlite3.Row) -> Subtask:
    return Subtask(
        id=row["id"],
        task_id=row["task_id"],
        name=row["name"],
        assigned_to=row["assigned_to"],
        created_by=row["created_by"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def sub_subtask_from_row(row: sqlite3.Row) -> SubSubtask:
    return SubSubtask(
        id=row["id"],
        subtask_id=row["subtask_id"],
        name=row["name"],
        order_index=row["order_index"] or 0,
        assigned_to=row["assigned_to"],
        created_by=row["created_by"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def milestone_from_row(row: sqlite3.Row) -> Milestone:
    """Build a milestone; raises ValueError if it has zero or two parents."""
    return Milestone(
        id=row["id"],
        milestone_date=parse_date(row["milestone_date"]),
        milestone_text=row["milestone_text"] or "",
        subtask_id=row["subtask_id"],
        sub_subtask_id=row["sub_subtask_id"],
        created_by=row["created_by"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )
