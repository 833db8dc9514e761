"""
Progress calculation for the aggregated task tree.

Derives start date, end date, duration and completion percentage for each
node from milestone data, rolled up from leaves to root:

- sub-subtask: 100 if closed, else 0
- subtask: 100 if its own milestones close it, else the mean of its
  sub-subtasks, else 0
- task: mean of its non-PLANNED subtasks, 0 when there are none

Dates come only from a node's directly attached milestones, except at task
level where the dates of every non-PLANNED descendant are pooled.
"""

import math
from datetime import date
from typing import Iterable, List, Optional, Tuple

from tracker.core.classifier import Classifier
from tracker.core.store import Milestone, SubSubtaskNode, SubtaskNode, TaskNode


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (33.5 -> 34)."""
    return int(math.floor(value + 0.5))


def mean_progress(values: List[int]) -> int:
    """Rounded arithmetic mean, 0 for an empty list."""
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


def date_span(dates: Iterable[Optional[date]]) -> Tuple[Optional[date], Optional[date], int]:
    """
    Compute (start, end, duration_days) over the valid dates given.

    Parameters
    ----------
    dates : Iterable[Optional[date]]
        Candidate dates; None entries are skipped

    Returns
    -------
    tuple
        (start_date, end_date, duration) with (None, None, 0) if no dates
    """
    valid = [d for d in dates if d is not None]
    if not valid:
        return None, None, 0
    start, end = min(valid), max(valid)
    return start, end, (end - start).days


class ProgressCalculator:
    """
    Annotates a freshly built tree with derived dates and progress.

    The tree passed in must come straight from the aggregator; nodes are
    filled in place and nothing else is touched.
    """

    def __init__(self, classifier: Optional[Classifier] = None):
        self.classifier = classifier or Classifier()

    def annotate(self, tasks: List[TaskNode]) -> List[TaskNode]:
        """Fill derived fields bottom-up for every node and return the tree."""
        for task_node in tasks:
            self.annotate_task(task_node)
        return tasks

    def annotate_task(self, node: TaskNode) -> None:
        pooled: List[Optional[date]] = []
        rollup: List[int] = []

        for subtask_node in node.subtasks:
            self.annotate_subtask(subtask_node)
            if subtask_node.is_planned:
                continue
            rollup.append(subtask_node.progress)
            pooled.extend(m.milestone_date for m in subtask_node.milestones)
            for child in subtask_node.sub_subtasks:
                pooled.extend(m.milestone_date for m in child.milestones)

        node.start_date, node.end_date, node.duration = date_span(pooled)
        node.progress = mean_progress(rollup)

    def annotate_subtask(self, node: SubtaskNode) -> None:
        for child in node.sub_subtasks:
            self.annotate_sub_subtask(child)

        node.start_date, node.end_date, node.duration = self._own_span(node.milestones)
        node.is_closed = self.classifier.any_closed(node.milestones)
        if node.is_closed:
            node.progress = 100
        else:
            node.progress = mean_progress([c.progress for c in node.sub_subtasks])

    def annotate_sub_subtask(self, node: SubSubtaskNode) -> None:
        node.start_date, node.end_date, node.duration = self._own_span(node.milestones)
        node.is_closed = self.classifier.any_closed(node.milestones)
        node.progress = 100 if node.is_closed else 0

    def _own_span(self, milestones: List[Milestone]) -> Tuple[Optional[date], Optional[date], int]:
        return date_span(m.milestone_date for m in milestones)
