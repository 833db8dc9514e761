"""Tests for the SQLite data source: schema, snapshot reads and parsing."""

import sqlite3
from contextlib import closing
from datetime import date, datetime, timezone

import pytest

from tracker.core.data_source import (
    CONNECTIVITY_ERROR,
    REQUIRED_TABLES,
    ChangeNotifier,
    DataSourceError,
    SQLiteDataSource,
    parse_date,
    parse_timestamp,
)
from tracker.core.store import ActionHistory


def insert(source, sql, params=()):
    with closing(source.connect()) as conn:
        conn.execute(sql, params)
        conn.commit()


class TestSchema:

    def test_missing_database_lists_every_table(self, tmp_path):
        source = SQLiteDataSource(tmp_path / "none.db")
        assert source.check_schema() == REQUIRED_TABLES
        assert not (tmp_path / "none.db").exists()

    def test_ensure_schema_creates_tables(self, sqlite_source):
        assert sqlite_source.check_schema() == []

    def test_partial_schema_reports_missing(self, sqlite_source):
        insert(sqlite_source, "DROP TABLE action_history")
        assert sqlite_source.check_schema() == ["action_history"]

    def test_ensure_schema_is_repeatable(self, sqlite_source):
        sqlite_source.ensure_schema()
        assert sqlite_source.check_schema() == []


class TestFetchSnapshot:

    def test_missing_database_is_connectivity_error(self, tmp_path):
        source = SQLiteDataSource(tmp_path / "none.db")
        with pytest.raises(DataSourceError, match=CONNECTIVITY_ERROR[:20]):
            source.fetch_snapshot()

    def test_missing_table_is_connectivity_error(self, sqlite_source):
        insert(sqlite_source, "DROP TABLE milestones")
        with pytest.raises(DataSourceError):
            sqlite_source.fetch_snapshot()

    def test_empty_database(self, sqlite_source):
        snapshot = sqlite_source.fetch_snapshot()
        assert snapshot.tasks == []
        assert snapshot.users == []
        assert snapshot.fetched_at.tzinfo is not None

    def test_rows_and_ordering(self, sqlite_source):
        insert(sqlite_source, "INSERT INTO tasks (id, name, category) VALUES ('t1', 'Support desk', 'support')")
        insert(sqlite_source, "INSERT INTO tasks (id, name, category) VALUES ('t2', 'Build', 'dev')")
        insert(sqlite_source, "INSERT INTO subtasks (id, task_id, name) VALUES ('s1', 't2', 'API')")
        insert(
            sqlite_source,
            "INSERT INTO sub_subtasks (id, subtask_id, name, order_index) VALUES ('c2', 's1', 'Two', 1)",
        )
        insert(
            sqlite_source,
            "INSERT INTO sub_subtasks (id, subtask_id, name, order_index) VALUES ('c1', 's1', 'One', 0)",
        )
        insert(
            sqlite_source,
            "INSERT INTO milestones (id, subtask_id, milestone_date, milestone_text) "
            "VALUES ('m1', 's1', '2024-01-05', 'In progress')",
        )
        insert(
            sqlite_source,
            "INSERT INTO users (id, email, full_name, created_at) "
            "VALUES ('u1', 'a@example.com', 'Ada', '2024-01-01T09:00:00')",
        )

        snapshot = sqlite_source.fetch_snapshot()

        assert [t.category for t in snapshot.tasks] == ["dev", "support"]
        assert [c.name for c in snapshot.sub_subtasks] == ["One", "Two"]
        assert snapshot.milestones[0].milestone_date == date(2024, 1, 5)
        assert snapshot.users[0].role == "user"
        assert snapshot.users[0].created_at == datetime(2024, 1, 1, 9, tzinfo=timezone.utc)

    def test_milestone_without_parent_is_skipped(self, sqlite_source):
        insert(sqlite_source, "INSERT INTO tasks (id, name, category) VALUES ('t1', 'X', 'dev')")
        insert(sqlite_source, "INSERT INTO subtasks (id, task_id, name) VALUES ('s1', 't1', 'S')")
        insert(
            sqlite_source,
            "INSERT INTO milestones (id, milestone_date, milestone_text) VALUES ('bad', '2024-01-01', 'x')",
        )
        insert(
            sqlite_source,
            "INSERT INTO milestones (id, subtask_id, milestone_date, milestone_text) "
            "VALUES ('good', 's1', 'garbage', 'x')",
        )

        snapshot = sqlite_source.fetch_snapshot()

        assert [m.id for m in snapshot.milestones] == ["good"]
        assert snapshot.milestones[0].milestone_date is None


class TestAppConfigAndHistory:

    def test_app_config_round_trip_and_bad_rows(self, sqlite_source):
        sqlite_source.save_app_config("row_colors", {"planned": "#000000"})
        sqlite_source.save_app_config("row_colors", {"planned": "#ffffff"})
        insert(
            sqlite_source,
            "INSERT INTO app_config (config_key, config_value) VALUES ('broken', '{oops')",
        )

        assert sqlite_source.load_app_config() == {"row_colors": {"planned": "#ffffff"}}

    def test_actions_listed_newest_first(self, sqlite_source):
        sqlite_source.insert_action(ActionHistory("create", "task", "t1", "First"))
        sqlite_source.insert_action(
            ActionHistory("delete", "task", "t1", "First", {"category": "dev"}, "u1")
        )

        actions = sqlite_source.list_actions()

        assert [a.action_type for a in actions] == ["delete", "create"]
        assert actions[0].details == {"category": "dev"}
        assert actions[0].performed_by == "u1"
        assert actions[0].timestamp.tzinfo is not None

    def test_list_actions_limit(self, sqlite_source):
        for i in range(5):
            sqlite_source.insert_action(ActionHistory("create", "task", f"t{i}", f"T{i}"))
        assert [a.entity_id for a in sqlite_source.list_actions(limit=2)] == ["t4", "t3"]

    def test_list_actions_without_database(self, tmp_path):
        with pytest.raises(DataSourceError):
            SQLiteDataSource(tmp_path / "none.db").list_actions()


class TestChangeNotifier:

    def test_notify_and_unsubscribe(self):
        notifier = ChangeNotifier()
        calls = []
        unsubscribe = notifier.subscribe(lambda: calls.append("a"))
        notifier.subscribe(lambda: calls.append("b"))

        notifier.notify()
        unsubscribe()
        unsubscribe()
        notifier.notify()

        assert calls == ["a", "b", "b"]
        assert len(notifier) == 1


class TestParsing:

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2024-01-05", date(2024, 1, 5)),
            ("2024-01-05T10:30:00Z", date(2024, 1, 5)),
            (date(2024, 2, 1), date(2024, 2, 1)),
            (datetime(2024, 2, 1, 23, 0), date(2024, 2, 1)),
            ("", None),
            (None, None),
            ("next week", None),
        ],
    )
    def test_parse_date(self, value, expected):
        assert parse_date(value) == expected

    def test_parse_timestamp(self):
        assert parse_timestamp("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert parse_timestamp("2024-01-01T00:00:00").tzinfo == timezone.utc
        assert parse_timestamp("nonsense") is None
        assert parse_timestamp(None) is None

    def test_connect_refuses_to_create(self, tmp_path):
        with pytest.raises(sqlite3.OperationalError):
            SQLiteDataSource(tmp_path / "none.db").connect()
