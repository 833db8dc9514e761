"""Tests for classification, display config parsing and settings loading."""

import json
from unittest.mock import Mock

from tracker.core.classifier import (
    NEUTRAL_GRAY,
    Classifier,
    DisplayConfig,
    is_closed_text,
    is_planned_name,
)
from tracker.core.config import (
    DATABASE_PATH_ENV,
    load_display_config,
    load_settings,
    parse_display_config,
)
from tracker.core.data_source import SQLiteDataSource
from tracker.core.store import Milestone


class TestClassifier:

    def test_known_category_colors(self):
        classifier = Classifier()
        assert classifier.category_color("dev") == "#3b82f6"
        assert classifier.category_color("test") == "#10b981"
        assert classifier.category_color("infra") == "#8b5cf6"
        assert classifier.category_color("support") == "#f97316"

    def test_unknown_category_is_gray(self):
        classifier = Classifier()
        assert classifier.category_color("sales") == NEUTRAL_GRAY
        assert classifier.category_color(None) == NEUTRAL_GRAY
        assert classifier.category_opacity("sales") == 0.6

    def test_closed_and_planned_sentinels(self):
        assert is_closed_text("CLOSED")
        assert is_closed_text(" closed ")
        assert not is_closed_text("Closed soon")
        assert not is_closed_text(None)
        assert is_planned_name("Planned")
        assert not is_planned_name("")

    def test_any_closed(self):
        classifier = Classifier()
        open_ = Milestone(id="1", milestone_date=None, milestone_text="In progress", subtask_id="s")
        done = Milestone(id="2", milestone_date=None, milestone_text="CLOSED", subtask_id="s")
        assert not classifier.any_closed([])
        assert not classifier.any_closed([open_])
        assert classifier.any_closed([open_, done])

    def test_milestone_option_matching(self):
        classifier = Classifier()
        assert classifier.milestone_option_for("in progress").value == "in-progress"
        assert classifier.milestone_option_for("prod-merge-done").label == "Prod Merge Done"
        assert classifier.milestone_option_for("Shipped") is None
        assert classifier.milestone_option_for(None) is None


class TestParseDisplayConfig:

    def test_empty_gives_defaults(self):
        assert parse_display_config({}) == DisplayConfig()

    def test_overrides_are_merged(self):
        config = parse_display_config({
            "milestone_options": [{"value": "qa", "label": "QA"}],
            "row_colors": {"planned": "#000000", "actualOpacity": 0.5},
            "category_colors": {"dev": "#111111"},
            "category_opacity": {"test": 0.9},
        })

        assert [o.label for o in config.milestone_options] == ["QA"]
        assert config.row_colors.planned == "#000000"
        assert config.row_colors.actual_opacity == 0.5
        assert config.row_colors.actual == "#eab308"
        assert config.category_colors["dev"] == "#111111"
        assert config.category_colors["infra"] == "#8b5cf6"
        assert config.category_opacity["test"] == 0.9

    def test_malformed_keys_fall_back_independently(self):
        config = parse_display_config({
            "milestone_options": [{"value": "missing label"}],
            "row_colors": "blue",
            "category_colors": ["#fff"],
            "category_opacity": {"dev": "opaque"},
        })
        assert config == DisplayConfig()

    def test_empty_option_list_keeps_defaults(self):
        config = parse_display_config({"milestone_options": []})
        assert len(config.milestone_options) == 7


class TestLoadDisplayConfig:

    def test_source_failure_gives_defaults(self):
        source = Mock()
        source.load_app_config.side_effect = RuntimeError("offline")
        assert load_display_config(source) == DisplayConfig()

    def test_reads_from_sqlite(self, sqlite_source):
        sqlite_source.save_app_config("category_colors", {"support": "#222222"})
        config = load_display_config(sqlite_source)
        assert config.category_colors["support"] == "#222222"

    def test_missing_database_gives_defaults(self, tmp_path):
        source = SQLiteDataSource(tmp_path / "absent.db")
        assert load_display_config(source) == DisplayConfig()


class TestLoadSettings:

    def test_reads_config_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv(DATABASE_PATH_ENV, raising=False)
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({
            "database_path": "db/app.db",
            "backend": {"port": 5000, "log_level": "debug"},
        }))

        settings = load_settings(config_path)

        assert settings.database_path == tmp_path / "db" / "app.db"
        assert settings.port == 5000
        assert settings.log_level == "debug"

    def test_missing_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv(DATABASE_PATH_ENV, raising=False)
        settings = load_settings(tmp_path / "nope.json")
        assert settings.database_path == tmp_path / "data" / "tracker.db"
        assert settings.port == 4301

    def test_invalid_json_and_port(self, tmp_path, monkeypatch):
        monkeypatch.delenv(DATABASE_PATH_ENV, raising=False)
        broken = tmp_path / "broken.json"
        broken.write_text("{not json")
        assert load_settings(broken).port == 4301

        bad_port = tmp_path / "port.json"
        bad_port.write_text(json.dumps({"backend": {"port": "abc"}}))
        assert load_settings(bad_port).port == 4301

    def test_non_object_config_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv(DATABASE_PATH_ENV, raising=False)
        listed = tmp_path / "list.json"
        listed.write_text(json.dumps(["x"]))

        settings = load_settings(listed)

        assert settings.database_path == tmp_path / "data" / "tracker.db"
        assert settings.port == 4301
        assert settings.log_level == "info"

    def test_environment_overrides_database_path(self, tmp_path, monkeypatch):
        target = tmp_path / "elsewhere.db"
        monkeypatch.setenv(DATABASE_PATH_ENV, str(target))
        assert load_settings(tmp_path / "nope.json").database_path == target
