"""
Category and status classification shared by every dashboard.

Milestone text and subtask names carry two conventions that drive the
derived views:

- a subtask named ``PLANNED`` (any case) is a placeholder, not real work
- a milestone whose text is ``CLOSED`` (any case) marks its node complete

Both are kept here as named constants so callers never compare raw strings.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from tracker.core.store import Milestone, Subtask

logger = logging.getLogger(__name__)

PLANNED_SUBTASK_NAME = "PLANNED"
CLOSED_MILESTONE_TEXT = "CLOSED"

NEUTRAL_GRAY = "#6b7280"
DEFAULT_OPACITY = 0.6

UNSCHEDULED_COLUMN_VALUE = "unscheduled"
UNSCHEDULED_COLUMN_LABEL = "Unscheduled"


def is_planned_name(name: Optional[str]) -> bool:
    """True if a subtask name is the PLANNED placeholder sentinel."""
    return bool(name) and name.strip().upper() == PLANNED_SUBTASK_NAME


def is_closed_text(text: Optional[str]) -> bool:
    """True if a milestone label marks its node as closed."""
    return bool(text) and text.strip().upper() == CLOSED_MILESTONE_TEXT


@dataclass
class MilestoneOption:
    """Selectable milestone label (value is the stable key)."""

    value: str
    label: str


@dataclass
class RowColors:
    """Row tints used by the timeline views."""

    planned: str = "#6366f1"
    actual: str = "#eab308"
    planned_opacity: float = 0.3
    actual_opacity: float = 0.3
    sub_subtask_opacity: float = 0.2


def _default_milestone_options() -> List[MilestoneOption]:
    return [
        MilestoneOption("planned", "PLANNED"),
        MilestoneOption("closed", "CLOSED"),
        MilestoneOption("dev-complete", "Dev Complete"),
        MilestoneOption("dev-merge-done", "Dev Merge Done"),
        MilestoneOption("staging-merge-done", "Staging Merge Done"),
        MilestoneOption("prod-merge-done", "Prod Merge Done"),
        MilestoneOption("in-progress", "In progress"),
    ]


def _default_category_colors() -> Dict[str, str]:
    return {
        "dev": "#3b82f6",
        "test": "#10b981",
        "infra": "#8b5cf6",
        "support": "#f97316",
    }


def _default_category_opacity() -> Dict[str, float]:
    return {"dev": DEFAULT_OPACITY, "test": DEFAULT_OPACITY, "infra": DEFAULT_OPACITY, "support": DEFAULT_OPACITY}


@dataclass
class DisplayConfig:
    """
    Persisted display configuration with a complete built-in default set.

    Parameters
    ----------
    milestone_options : List[MilestoneOption]
        Milestone labels offered by the forms; also the kanban columns
    row_colors : RowColors
        Planned/actual row tints and opacities
    category_colors : Dict[str, str]
        Hex color per task category
    category_opacity : Dict[str, float]
        Bar opacity per task category
    """

    milestone_options: List[MilestoneOption] = field(default_factory=_default_milestone_options)
    row_colors: RowColors = field(default_factory=RowColors)
    category_colors: Dict[str, str] = field(default_factory=_default_category_colors)
    category_opacity: Dict[str, float] = field(default_factory=_default_category_opacity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "milestone_options": [vars(o) for o in self.milestone_options],
            "row_colors": vars(self.row_colors),
            "category_colors": dict(self.category_colors),
            "category_opacity": dict(self.category_opacity),
        }


class Classifier:
    """
    Color and status lookups applied uniformly across dashboards.

    Holds no state besides its configuration; every method is total.
    """

    def __init__(self, config: Optional[DisplayConfig] = None):
        self.config = config or DisplayConfig()

    def category_color(self, category: Optional[str]) -> str:
        """Color for a task category, neutral gray when unknown."""
        if not category:
            return NEUTRAL_GRAY
        return self.config.category_colors.get(category, NEUTRAL_GRAY)

    def category_opacity(self, category: Optional[str]) -> float:
        if not category:
            return DEFAULT_OPACITY
        return self.config.category_opacity.get(category, DEFAULT_OPACITY)

    def is_planned(self, subtask: Subtask) -> bool:
        return is_planned_name(subtask.name)

    def is_closed(self, milestone: Milestone) -> bool:
        return is_closed_text(milestone.milestone_text)

    def any_closed(self, milestones: Iterable[Milestone]) -> bool:
        """A node is closed iff one of its milestones is; empty never is."""
        return any(self.is_closed(m) for m in milestones)

    def milestone_option_for(self, text: Optional[str]) -> Optional[MilestoneOption]:
        """
        Find the configured option matching a milestone label.

        Matching is case-insensitive against either the option label or its
        value, so 'in progress', 'In progress' and 'in-progress' all resolve.
        """
        if not text:
            return None
        needle = text.strip().lower()
        for option in self.config.milestone_options:
            if needle in (option.label.strip().lower(), option.value.strip().lower()):
                return option
        return None
