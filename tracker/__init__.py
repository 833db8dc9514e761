"""
Tracker - project-tracking dashboard core.

Tasks own subtasks, subtasks own sub-subtasks, and both carry dated
milestones. The core aggregates these flat records into a tree and derives
progress, timeline layout and the secondary dashboard views.
"""

__version__ = "1.0.0"
