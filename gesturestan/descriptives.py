# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Descriptive summaries of the gesture table.

The summaries here are the first look at the data before any model is fit: mean
gesture counts per condition and mean gesture rates per condition. The rate of a
trial is its count divided by its duration, and the per-condition rate is the
average of those row-wise ratios, which in general differs from the ratio of the
average count to the average duration.

The regression models do not use these rates. They enter duration as a
log-offset or as a rate denominator instead, so the numbers reported here and the
model-based estimates are not expected to agree exactly.
"""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

import pandas as pd

from gesturestan.defaults import CONDITION_COLUMN, COUNT_COLUMN, DURATION_COLUMN

if TYPE_CHECKING:
    from gesturestan import custom_types


def compute_rates(data: pd.DataFrame) -> pd.Series:
    """Compute the gesture rate (count per second) of every row.

    :param data: Gesture table
    :type data: pd.DataFrame

    :returns: ``gestures / dur`` for every row, named "rate"
    :rtype: pd.Series

    :raises ValueError: If any duration is not strictly positive
    """
    durations = data[DURATION_COLUMN]
    if (durations <= 0).any():
        raise ValueError("Rates are undefined for non-positive durations.")
    return (data[COUNT_COLUMN] / durations).rename("rate")


def mean_counts(data: pd.DataFrame, by: str = CONDITION_COLUMN) -> pd.Series:
    """Mean gesture count of each group.

    :param data: Gesture table
    :type data: pd.DataFrame
    :param by: Grouping column. Defaults to "context".
    :type by: str

    :returns: Mean count indexed by group level
    :rtype: pd.Series
    """
    return data.groupby(by, observed=True)[COUNT_COLUMN].mean()


def mean_rates(data: pd.DataFrame, by: str = CONDITION_COLUMN) -> pd.Series:
    """Mean gesture rate of each group, as the average of row-wise ratios.

    :param data: Gesture table
    :type data: pd.DataFrame
    :param by: Grouping column. Defaults to "context".
    :type by: str

    :returns: Mean of ``gestures / dur`` indexed by group level
    :rtype: pd.Series

    :raises ValueError: If any duration is not strictly positive
    """
    return compute_rates(data).groupby(data[by], observed=True).mean()


def summarize_by_condition(
    data: pd.DataFrame,
    by: str = CONDITION_COLUMN,
    round_to: Optional["custom_types.Integer"] = None,
) -> pd.DataFrame:
    """Mean count and mean rate side by side for each group.

    :param data: Gesture table
    :type data: pd.DataFrame
    :param by: Grouping column. Defaults to "context".
    :type by: str
    :param round_to: Number of decimals to round to. Defaults to None (no rounding).
    :type round_to: Optional[custom_types.Integer]

    :returns: Frame indexed by group with columns "gestures" and "rate"
    :rtype: pd.DataFrame

    Example:
        >>> summarize_by_condition(data, round_to=4)
                   gestures    rate
        context
        friend          3.5  0.0750
        professor       2.0  0.0417
    """
    summary = pd.concat(
        [mean_counts(data, by=by), mean_rates(data, by=by)], axis=1
    )
    if round_to is not None:
        summary = summary.round(round_to)
    return summary


def summarize_columns(data: pd.DataFrame) -> dict[str, pd.Series]:
    """Per-column overview of the table.

    Categorical columns are summarized by their level counts and numeric columns
    by ``describe()``.
    """
    return {
        col: (
            data[col].value_counts(sort=False)
            if isinstance(data[col].dtype, pd.CategoricalDtype)
            else data[col].describe()
        )
        for col in data.columns
    }
