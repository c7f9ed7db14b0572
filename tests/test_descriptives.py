"""Tests for the descriptive summaries of the gesture table."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from gesturestan.descriptives import (
    compute_rates,
    mean_counts,
    mean_rates,
    summarize_by_condition,
    summarize_columns,
)


def test_compute_rates(example_table) -> None:
    rates = compute_rates(example_table)
    assert np.allclose(rates, example_table["gestures"] / example_table["dur"])
    assert rates.name == "rate"


def test_compute_rates_rejects_non_positive_durations(example_table) -> None:
    table = example_table.copy()
    table.loc[0, "dur"] = 0.0
    with pytest.raises(ValueError):
        compute_rates(table)


def test_mean_counts(example_table) -> None:
    counts = mean_counts(example_table)
    assert counts["friend"] == pytest.approx(3.5)
    assert counts["professor"] == pytest.approx(2.0)


def test_mean_rates_is_average_of_ratios(example_table) -> None:
    rates = mean_rates(example_table)
    assert rates["friend"] == pytest.approx((5 / 60 + 2 / 30) / 2)
    assert rates["professor"] == pytest.approx((3 / 60 + 1 / 30) / 2)

    # Not the ratio of the averages
    assert rates["friend"] != pytest.approx(7 / 90)


def test_mean_rates_equal_durations(example_table) -> None:
    table = example_table.assign(dur=60.0)
    rates = mean_rates(table).round(4)
    assert rates["friend"] == pytest.approx(0.0583)
    assert rates["professor"] == pytest.approx(0.0333)


def test_grouped_means_use_exactly_the_group_rows(gesture_table) -> None:
    counts = mean_counts(gesture_table)
    for level, value in counts.items():
        rows = gesture_table.loc[gesture_table["context"] == level, "gestures"]
        assert value == pytest.approx(rows.mean())


def test_summarize_by_condition(example_table) -> None:
    summary = summarize_by_condition(example_table, round_to=4)
    assert list(summary.columns) == ["gestures", "rate"]
    assert summary.loc["friend", "gestures"] == pytest.approx(3.5)
    assert summary.loc["professor", "gestures"] == pytest.approx(2.0)
    assert summary.loc["friend", "rate"] == pytest.approx(0.075)
    assert summary.loc["professor", "rate"] == pytest.approx(0.0417)


def test_summarize_by_other_column(example_table) -> None:
    summary = summarize_by_condition(example_table, by="gender")
    assert summary.loc["F", "gestures"] == pytest.approx(4.0)
    assert summary.loc["M", "gestures"] == pytest.approx(1.5)


def test_summarize_columns(example_table) -> None:
    overview = summarize_columns(example_table)
    assert set(overview) == set(example_table.columns)
    assert overview["context"]["friend"] == 2
    assert overview["gestures"]["max"] == 5
    assert isinstance(overview["dur"], pd.Series)
