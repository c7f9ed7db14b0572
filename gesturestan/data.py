# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Loading and validation of the gesture-count table.

The table holds one trial per participant per condition, with the fixed header
``ID, context, dur, language, gender, gestures``. Every participant contributes
exactly two rows, one per level of ``context``, which makes the design paired
and is the reason the models need per-participant random effects.
"""

from __future__ import annotations

import os

import numpy as np
import pandas as pd

from gesturestan.defaults import (
    CATEGORICAL_COLUMNS,
    CONDITION_COLUMN,
    COUNT_COLUMN,
    DURATION_COLUMN,
    EXPECTED_COLUMNS,
    ID_COLUMN,
    ROWS_PER_PARTICIPANT,
)
from gesturestan.exceptions import DataParseError, PairingError


def _coerce_numeric(data: pd.DataFrame, column: str) -> pd.Series:
    """Convert a column to numbers, raising DataParseError on failure."""
    try:
        return pd.to_numeric(data[column], errors="raise")
    except (ValueError, TypeError) as error:
        raise DataParseError(
            f"Column '{column}' contains values that are not numbers: {error}"
        ) from error


def load_gestures(
    path: str | os.PathLike,
    sep: str = ",",
    check_pairing: bool = True,
) -> pd.DataFrame:
    """Load the gesture-count table from a delimited file.

    :param path: Path to the delimited file
    :type path: Union[str, os.PathLike]
    :param sep: Field delimiter. Defaults to ",".
    :type sep: str
    :param check_pairing: Whether to enforce the participant pairing invariant.
        Defaults to True.
    :type check_pairing: bool

    :returns: Table with columns ``ID, context, dur, language, gender, gestures``.
        ``ID``, ``context``, ``language`` and ``gender`` are categoricals, ``dur``
        is float and ``gestures`` is int.
    :rtype: pd.DataFrame

    :raises DataParseError: If the header differs from the expected one, if any
        value is missing, if ``dur`` holds anything but finite positive numbers, or
        if ``gestures`` holds anything but non-negative integers
    :raises PairingError: If ``check_pairing`` is set and the pairing invariant
        does not hold

    Example:
        >>> data = load_gestures("dyads.csv")
        >>> data.dtypes["gestures"]
        dtype('int64')
    """
    # Load everything as strings first; types are coerced column by column
    try:
        data = pd.read_csv(path, sep=sep, dtype=str, skipinitialspace=True)
    except pd.errors.ParserError as error:
        raise DataParseError(f"Could not parse {path}: {error}") from error

    # The header must match exactly, in any order
    found = [str(col).strip() for col in data.columns]
    data.columns = found
    if missing := [col for col in EXPECTED_COLUMNS if col not in found]:
        raise DataParseError(f"Missing columns: {', '.join(missing)}")
    if extra := [col for col in found if col not in EXPECTED_COLUMNS]:
        raise DataParseError(f"Unexpected columns: {', '.join(extra)}")
    if len(set(found)) != len(found):
        raise DataParseError("Duplicated column names in header.")

    # No missing values anywhere
    if data.isna().any().any():
        bad_cols = data.columns[data.isna().any()].tolist()
        raise DataParseError(f"Missing values in columns: {', '.join(bad_cols)}")

    # Durations are positive real numbers
    durations = _coerce_numeric(data, DURATION_COLUMN).astype(float)
    if not np.all(np.isfinite(durations)):
        raise DataParseError(f"Column '{DURATION_COLUMN}' contains non-finite values.")
    if (durations <= 0).any():
        raise DataParseError(f"Column '{DURATION_COLUMN}' contains non-positive values.")
    data[DURATION_COLUMN] = durations

    # Counts are non-negative integers
    counts = _coerce_numeric(data, COUNT_COLUMN)
    if not np.all(np.mod(counts, 1) == 0):
        raise DataParseError(f"Column '{COUNT_COLUMN}' contains non-integer values.")
    if (counts < 0).any():
        raise DataParseError(f"Column '{COUNT_COLUMN}' contains negative values.")
    data[COUNT_COLUMN] = counts.astype(np.int64)

    # Everything else is categorical
    for col in CATEGORICAL_COLUMNS:
        data[col] = data[col].str.strip().astype("category")

    # Canonical column order
    data = data.loc[:, list(EXPECTED_COLUMNS)].reset_index(drop=True)

    if check_pairing:
        check_participant_pairing(data)

    return data


def check_participant_pairing(
    data: pd.DataFrame,
    id_column: str = ID_COLUMN,
    condition_column: str = CONDITION_COLUMN,
) -> None:
    """Check that every participant has exactly one row per condition.

    :param data: Gesture table
    :type data: pd.DataFrame
    :param id_column: Participant identifier column. Defaults to "ID".
    :type id_column: str
    :param condition_column: Condition column. Defaults to "context".
    :type condition_column: str

    :raises PairingError: If any participant has a number of rows other than two,
        or two rows sharing the same condition
    """
    grouped = data.groupby(id_column, observed=True)[condition_column]

    # Exactly two rows each
    row_counts = grouped.size()
    if len(bad := row_counts[row_counts != ROWS_PER_PARTICIPANT]) > 0:
        raise PairingError(
            f"Participants without exactly {ROWS_PER_PARTICIPANT} rows: "
            + ", ".join(f"{pid} ({n})" for pid, n in bad.items())
        )

    # And the two rows cover different conditions
    n_conditions = grouped.nunique()
    if len(bad := n_conditions[n_conditions != ROWS_PER_PARTICIPANT]) > 0:
        raise PairingError(
            "Participants with a repeated condition: "
            + ", ".join(str(pid) for pid in bad.index)
        )
