"""
Configuration loading for the tracker backend.

Two independent sources:

- ``config.json`` at the repository root: where the database lives and how
  the API server runs. Missing or unreadable files fall back to defaults.
- ``app_config`` rows in the database: display configuration (milestone
  labels, row colors, category colors and opacity). Each key falls back to
  its built-in default on its own.

Neither failure is ever surfaced to the end user; both are logged.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from tracker.core.classifier import DisplayConfig, MilestoneOption, RowColors

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config.json"
DATABASE_PATH_ENV = "TRACKER_DATABASE_PATH"

MILESTONE_OPTIONS_KEY = "milestone_options"
ROW_COLORS_KEY = "row_colors"
CATEGORY_COLORS_KEY = "category_colors"
CATEGORY_OPACITY_KEY = "category_opacity"


@dataclass
class Settings:
    """Runtime settings for the data source and API server."""

    database_path: Path
    port: int = 4301
    log_level: str = "info"


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """
    Load settings from config.json with environment override.

    Parameters
    ----------
    config_path : Optional[Path]
        Path to config.json (default: repository root)

    Returns
    -------
    Settings
        Loaded settings; defaults for anything missing
    """
    config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    config: Dict[str, Any] = {}
    try:
        with open(config_path, "r") as f:
            config = json.load(f)
    except FileNotFoundError:
        logger.info(f"No config file at {config_path}, using defaults")
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not load {config_path}: {e}, using defaults")

    if not isinstance(config, dict):
        logger.warning(f"{config_path} is not a JSON object, using defaults")
        config = {}

    database_path = os.getenv(DATABASE_PATH_ENV) or config.get("database_path")
    if database_path:
        database_path = Path(database_path)
        if not database_path.is_absolute():
            database_path = config_path.parent / database_path
    else:
        database_path = config_path.parent / "data" / "tracker.db"

    backend = config.get("backend", {}) if isinstance(config.get("backend"), dict) else {}
    try:
        port = int(backend.get("port", 4301))
    except (TypeError, ValueError):
        logger.warning(f"Invalid backend port {backend.get('port')!r}, using 4301")
        port = 4301

    return Settings(
        database_path=database_path,
        port=port,
        log_level=str(backend.get("log_level", "info")),
    )


def parse_display_config(raw: Dict[str, Any]) -> DisplayConfig:
    """
    Build a DisplayConfig from decoded app_config values.

    Every key is optional and validated separately: a malformed value keeps
    that key's default and logs a warning.

    Parameters
    ----------
    raw : Dict[str, Any]
        Mapping of config_key to decoded config_value

    Returns
    -------
    DisplayConfig
        Configuration with defaults filled in
    """
    config = DisplayConfig()

    options = raw.get(MILESTONE_OPTIONS_KEY)
    if options is not None:
        try:
            parsed = [MilestoneOption(value=str(o["value"]), label=str(o["label"])) for o in options]
            if parsed:
                config.milestone_options = parsed
        except (KeyError, TypeError) as e:
            logger.warning(f"Malformed {MILESTONE_OPTIONS_KEY}, using defaults: {e}")

    row_colors = raw.get(ROW_COLORS_KEY)
    if row_colors is not None:
        try:
            defaults = RowColors()
            config.row_colors = RowColors(
                planned=str(row_colors.get("planned", defaults.planned)),
                actual=str(row_colors.get("actual", defaults.actual)),
                planned_opacity=float(row_colors.get("plannedOpacity", defaults.planned_opacity)),
                actual_opacity=float(row_colors.get("actualOpacity", defaults.actual_opacity)),
                sub_subtask_opacity=float(
                    row_colors.get("subSubtaskOpacity", defaults.sub_subtask_opacity)
                ),
            )
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Malformed {ROW_COLORS_KEY}, using defaults: {e}")

    category_colors = raw.get(CATEGORY_COLORS_KEY)
    if category_colors is not None:
        if isinstance(category_colors, dict):
            config.category_colors.update({str(k): str(v) for k, v in category_colors.items()})
        else:
            logger.warning(f"Malformed {CATEGORY_COLORS_KEY}, using defaults")

    category_opacity = raw.get(CATEGORY_OPACITY_KEY)
    if category_opacity is not None:
        try:
            config.category_opacity.update(
                {str(k): float(v) for k, v in category_opacity.items()}
            )
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Malformed {CATEGORY_OPACITY_KEY}, using defaults: {e}")

    return config


def load_display_config(source: Any) -> DisplayConfig:
    """
    Load display configuration from a data source.

    Parameters
    ----------
    source : DataSource
        Anything exposing ``load_app_config() -> Dict[str, Any]``

    Returns
    -------
    DisplayConfig
        Loaded configuration, or the built-in defaults if loading fails
    """
    try:
        raw = source.load_app_config()
    except Exception as e:
        logger.warning(f"Unable to load config from database, using defaults: {e}")
        return DisplayConfig()

    logger.info(f"Loaded {len(raw)} display config keys")
    return parse_display_config(raw)
