"""Tests for the padded day axis and bar positioning."""

from datetime import date, timedelta

import pytest

from tracker.core.aggregator import Aggregator
from tracker.core.timeline import (
    PADDING_DAYS,
    TimelineLayout,
    build_day_sequence,
    collect_date_pairs,
    layout_tree,
)


def test_single_day_is_padded_both_sides():
    days = build_day_sequence([(date(2024, 1, 5), date(2024, 1, 5))])

    assert len(days) == 7
    assert days[0] == date(2024, 1, 2)
    assert days[-1] == date(2024, 1, 8)
    assert days.index(date(2024, 1, 5)) == 3


def test_single_day_bar_position():
    layout = TimelineLayout(build_day_sequence([(date(2024, 1, 5), date(2024, 1, 5))]))
    bar = layout.position(date(2024, 1, 5), date(2024, 1, 5))

    assert bar.left == pytest.approx(3 / 7)
    assert bar.width == pytest.approx(1 / 7)


def test_no_dates_gives_empty_axis():
    assert build_day_sequence([]) == []
    assert build_day_sequence([(None, None)]) == []
    assert TimelineLayout([]).position(date(2024, 1, 1), date(2024, 1, 1)) is None


def test_axis_is_contiguous_and_covers_everything():
    pairs = [
        (date(2024, 3, 10), date(2024, 3, 12)),
        (None, date(2024, 4, 2)),
        (date(2024, 2, 28), None),
    ]
    days = build_day_sequence(pairs)

    assert days[0] == date(2024, 2, 28) - timedelta(days=PADDING_DAYS)
    assert days[-1] == date(2024, 4, 2) + timedelta(days=PADDING_DAYS)
    assert all(b - a == timedelta(days=1) for a, b in zip(days, days[1:]))


def test_padding_is_configurable():
    days = build_day_sequence([(date(2024, 1, 5), date(2024, 1, 6))], padding_days=0)
    assert days == [date(2024, 1, 5), date(2024, 1, 6)]


def test_missing_endpoint_draws_no_bar():
    layout = TimelineLayout(build_day_sequence([(date(2024, 1, 5), date(2024, 1, 9))]))
    assert layout.position(None, date(2024, 1, 9)) is None
    assert layout.position(date(2024, 1, 5), None) is None


def test_date_off_axis_draws_no_bar():
    layout = TimelineLayout(build_day_sequence([(date(2024, 1, 5), date(2024, 1, 9))]))
    assert layout.position(date(2023, 6, 1), date(2024, 1, 9)) is None


def test_bars_stay_within_axis():
    days = build_day_sequence([(date(2024, 1, 1), date(2024, 1, 31))])
    layout = TimelineLayout(days)
    for start, end in [(days[0], days[-1]), (date(2024, 1, 10), date(2024, 1, 20))]:
        bar = layout.position(start, end)
        assert 0 <= bar.left < 1
        assert bar.left + bar.width <= 1 + 1e-9
    assert layout.position(days[0], days[-1]).width == pytest.approx(1.0)


def test_scenario_b_two_tasks_share_one_axis(builder):
    """Tasks on Jan 1 and Jan 20 land on one axis from Dec 29 to Jan 23."""
    first = builder.task("First")
    second = builder.task("Second")
    builder.milestone(builder.subtask(first, "S1"), "2024-01-01")
    builder.milestone(builder.subtask(second, "S2"), "2024-01-20")

    aggregator = Aggregator()
    tasks = aggregator.progress.annotate(aggregator.build_tree(builder.build()))
    days = layout_tree(tasks)

    assert days[0] == date(2023, 12, 29)
    assert days[-1] == date(2024, 1, 23)
    assert len(days) == 26
    assert tasks[0].layout.left == pytest.approx(3 / 26)
    assert tasks[1].layout.left == pytest.approx(22 / 26)
    assert tasks[0].layout.width == tasks[1].layout.width == pytest.approx(1 / 26)


def test_collect_skips_planned_subtrees(builder):
    task = builder.task("X")
    planned = builder.subtask(task, "PLANNED")
    builder.milestone(planned, "2030-01-01")

    aggregator = Aggregator()
    tasks = aggregator.progress.annotate(aggregator.build_tree(builder.build()))

    assert collect_date_pairs(tasks) == [(None, None)]
    assert layout_tree(tasks) == []


def test_padding_clamped_at_calendar_limits():
    upper = build_day_sequence([(date.max, date.max)])
    assert upper[0] == date(9999, 12, 28)
    assert upper[-1] == date.max

    lower = build_day_sequence([(date.min, date(1, 1, 2))])
    assert lower[0] == date.min
    assert lower[-1] == date(1, 1, 5)


def test_open_ended_placeholder_date_is_laid_out(builder):
    task = builder.task("X")
    subtask = builder.subtask(task, "Forever")
    builder.milestone(subtask, "9999-12-30")
    builder.milestone(subtask, "9999-12-31")

    dashboard = Aggregator().create_dashboard(builder.build())
    bar = dashboard.tasks[0].layout

    assert dashboard.day_sequence[0] == date(9999, 12, 27)
    assert dashboard.day_sequence[-1] == date.max
    assert bar.left == pytest.approx(3 / 5)
    assert bar.left + bar.width == pytest.approx(1.0)
