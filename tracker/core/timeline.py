"""
Timeline layout for Gantt-style rendering.

Maps calendar dates onto a discretized, padded day axis and produces
proportional ``left``/``width`` fractions per node. No UI dependency: the
output is plain dates and floats that any renderer can scale.
"""

import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from tracker.core.store import BarLayout, TaskNode

logger = logging.getLogger(__name__)

PADDING_DAYS = 3

DatePair = Tuple[Optional[date], Optional[date]]


def build_day_sequence(pairs: Iterable[DatePair], padding_days: int = PADDING_DAYS) -> List[date]:
    """
    Build the contiguous day axis spanning every given date.

    Parameters
    ----------
    pairs : Iterable[Tuple[Optional[date], Optional[date]]]
        (start_date, end_date) pairs; None values are ignored
    padding_days : int
        Days added before the earliest and after the latest date

    Returns
    -------
    List[date]
        Days from min - padding to max + padding inclusive, or an empty
        list if no dates were given. Padding is clamped at date.min and
        date.max.
    """
    all_dates = [d for pair in pairs for d in pair if d is not None]
    if not all_dates:
        return []

    padding = timedelta(days=padding_days)
    earliest, latest = min(all_dates), max(all_dates)
    start = earliest - padding if earliest - date.min >= padding else date.min
    end = latest + padding if date.max - latest >= padding else date.max

    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


class TimelineLayout:
    """
    Positions bars on a fixed day axis.

    Parameters
    ----------
    day_sequence : List[date]
        Axis produced by ``build_day_sequence``
    """

    def __init__(self, day_sequence: List[date]):
        self.day_sequence = day_sequence
        self._index: Dict[date, int] = {d: i for i, d in enumerate(day_sequence)}

    def position(self, start_date: Optional[date], end_date: Optional[date]) -> Optional[BarLayout]:
        """
        Compute the bar for a date range.

        Returns None (no bar drawn) when either date is missing or falls
        outside the axis.
        """
        if start_date is None or end_date is None or not self.day_sequence:
            return None
        start = self._index.get(start_date)
        end = self._index.get(end_date)
        if start is None or end is None:
            logger.debug(f"Range {start_date}..{end_date} not on axis, skipping bar")
            return None

        total = len(self.day_sequence)
        return BarLayout(left=start / total, width=(end - start + 1) / total)


def collect_date_pairs(tasks: List[TaskNode]) -> List[DatePair]:
    """
    Gather every (start, end) pair the axis must cover.

    PLANNED subtasks and their sub-subtasks are placeholders and do not
    widen the axis.
    """
    pairs: List[DatePair] = []
    for task_node in tasks:
        pairs.append((task_node.start_date, task_node.end_date))
        for subtask_node in task_node.subtasks:
            if subtask_node.is_planned:
                continue
            pairs.append((subtask_node.start_date, subtask_node.end_date))
            for child in subtask_node.sub_subtasks:
                pairs.append((child.start_date, child.end_date))
    return pairs


def layout_tree(tasks: List[TaskNode], padding_days: int = PADDING_DAYS) -> List[date]:
    """
    Build the shared axis for a tree and assign each node its bar.

    Parameters
    ----------
    tasks : List[TaskNode]
        Tree already annotated by the progress calculator
    padding_days : int
        Axis padding on both sides

    Returns
    -------
    List[date]
        The day sequence used for the layout
    """
    day_sequence = build_day_sequence(collect_date_pairs(tasks), padding_days)
    layout = TimelineLayout(day_sequence)

    for task_node in tasks:
        task_node.layout = layout.position(task_node.start_date, task_node.end_date)
        for subtask_node in task_node.subtasks:
            if subtask_node.is_planned:
                subtask_node.layout = None
                for child in subtask_node.sub_subtasks:
                    child.layout = None
                continue
            subtask_node.layout = layout.position(subtask_node.start_date, subtask_node.end_date)
            for child in subtask_node.sub_subtasks:
                child.layout = layout.position(child.start_date, child.end_date)

    if day_sequence:
        logger.info(
            f"Timeline axis: {day_sequence[0]} to {day_sequence[-1]} "
            f"({len(day_sequence)} days)"
        )
    else:
        logger.info("Timeline axis empty: no dated milestones")
    return day_sequence
