# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Design matrices and Stan data for a model specification.

This module turns a gesture table and a
:py:class:`~gesturestan.model.specification.ModelSpecification` into the arrays
the generated Stan program expects: the response, a treatment-coded
population-level design matrix, the participant-level design matrix and group
index, and the exposure vector. It also records the names of the coefficients so
that results can be labelled the way brms labels them (``b_Intercept``,
``b_contextprofessor``, ``sd_ID__Intercept``, ...).
"""

from __future__ import annotations

import dataclasses
import re

from typing import Any, TYPE_CHECKING

import numpy as np
import numpy.typing as npt
import pandas as pd

from gesturestan.model.specification import ModelSpecification

if TYPE_CHECKING:
    from gesturestan import custom_types


def clean_name(name: str) -> str:
    """Strip characters that cannot appear in a coefficient name."""
    return re.sub(r"[^0-9A-Za-z_]", "", name)


def _is_categorical(column: pd.Series) -> bool:
    """Categorical, string and boolean columns are treatment coded."""
    return isinstance(column.dtype, pd.CategoricalDtype) or not pd.api.types.is_numeric_dtype(
        column
    ) or pd.api.types.is_bool_dtype(column)


def _observed_levels(column: pd.Series) -> tuple[str, ...]:
    """Levels of a categorical column that occur in the data, in category order."""
    if isinstance(column.dtype, pd.CategoricalDtype):
        present = set(column.astype(str))
        return tuple(str(lvl) for lvl in column.cat.categories if str(lvl) in present)
    return tuple(sorted(set(column.astype(str))))


@dataclasses.dataclass
class DesignMatrices:
    """Arrays describing one model specification applied to one table.

    :ivar spec: The model specification
    :ivar response: Observed counts, shape (N,)
    :ivar X: Population-level design matrix without the intercept column, shape (N, K)
    :ivar coef_names: Names of the columns of `X`
    :ivar Z: Participant-level design matrix, shape (N, M). Empty (M = 0) without
        random effects
    :ivar re_names: Names of the columns of `Z` ("Intercept" first)
    :ivar group_index: Zero-based participant index of every row, shape (N,)
    :ivar group_levels: Participant identifiers in index order
    :ivar exposure: Trial durations, shape (N,)
    :ivar levels: Observed levels of every categorical predictor
    :ivar numeric_means: Means of the numeric predictors
    """

    spec: ModelSpecification
    response: npt.NDArray[np.int64]
    X: npt.NDArray[np.float64]
    coef_names: tuple[str, ...]
    Z: npt.NDArray[np.float64]
    re_names: tuple[str, ...]
    group_index: npt.NDArray[np.int64]
    group_levels: tuple[str, ...]
    exposure: npt.NDArray[np.float64]
    levels: dict[str, tuple[str, ...]]
    numeric_means: dict[str, float]

    @classmethod
    def from_data(
        cls, spec: ModelSpecification, data: pd.DataFrame
    ) -> "DesignMatrices":
        """Build the design for `spec` from the gesture table.

        :param spec: Model specification
        :type spec: ModelSpecification
        :param data: Gesture table
        :type data: pd.DataFrame

        :returns: Design matrices and metadata
        :rtype: DesignMatrices

        :raises KeyError: If a column named by the specification is missing

        Categorical predictors are treatment coded against their first level;
        numeric predictors enter as they are.
        """
        # Population-level design
        columns, coef_names = [], []
        levels, numeric_means = {}, {}
        for predictor in spec.predictors:
            column = data[predictor]
            if _is_categorical(column):
                levels[predictor] = _observed_levels(column)
                as_str = column.astype(str).to_numpy()
                for level in levels[predictor][1:]:
                    columns.append((as_str == level).astype(np.float64))
                    coef_names.append(clean_name(f"{predictor}{level}"))
            else:
                columns.append(column.to_numpy(dtype=np.float64))
                coef_names.append(clean_name(predictor))
                numeric_means[predictor] = float(column.mean())

        n_rows = len(data)
        X = (
            np.column_stack(columns)
            if columns
            else np.zeros((n_rows, 0), dtype=np.float64)
        )

        # Participant-level design
        group_codes, group_uniques = pd.factorize(data[spec.group].astype(str), sort=True)
        if spec.random_effects == "none":
            Z = np.zeros((n_rows, 0), dtype=np.float64)
            re_names = ()
        elif spec.random_effects == "intercept":
            Z = np.ones((n_rows, 1), dtype=np.float64)
            re_names = ("Intercept",)
        else:
            Z = np.column_stack([np.ones(n_rows), X])
            re_names = ("Intercept", *coef_names)

        return cls(
            spec=spec,
            response=data[spec.response].to_numpy(dtype=np.int64),
            X=X,
            coef_names=tuple(coef_names),
            Z=Z,
            re_names=re_names,
            group_index=group_codes.astype(np.int64),
            group_levels=tuple(str(g) for g in group_uniques),
            exposure=data[spec.duration].to_numpy(dtype=np.float64),
            levels=levels,
            numeric_means=numeric_means,
        )

    @property
    def n_obs(self) -> int:
        """Number of observations N."""
        return int(self.X.shape[0])

    @property
    def n_coefs(self) -> int:
        """Number of population-level slopes K."""
        return int(self.X.shape[1])

    @property
    def n_groups(self) -> int:
        """Number of participants J."""
        return len(self.group_levels)

    @property
    def n_re(self) -> int:
        """Number of participant-level terms M."""
        return int(self.Z.shape[1])

    def stan_data(self) -> dict[str, "custom_types.SampleType"]:
        """The data dictionary for the generated Stan program.

        :returns: Mapping from Stan data variable names to values
        :rtype: dict[str, custom_types.SampleType]
        """
        data: dict[str, Any] = {
            "N": self.n_obs,
            "Y": self.response,
            "K": self.n_coefs,
            "X": self.X,
        }
        if self.spec.has_exposure:
            data["expo"] = self.exposure
        if self.spec.has_random_effects:
            data.update(
                {
                    "J": self.n_groups,
                    "M": self.n_re,
                    "group": self.group_index + 1,  # Stan is 1-indexed
                    "Z": self.Z,
                }
            )
        return data

    def encode(self, **settings: Any) -> npt.NDArray[np.float64]:
        """Population-level design row for one setting of the predictors.

        Predictors not given are held at their reference level (categorical) or
        their mean (numeric).

        :param settings: Predictor values, e.g. ``context="professor"``
        :returns: Design row of length K
        :rtype: npt.NDArray[np.float64]

        :raises KeyError: If a predictor is not part of the model
        :raises ValueError: If a categorical level was not observed
        """
        if unknown := set(settings) - set(self.spec.predictors):
            raise KeyError(f"Not a predictor of the model: {', '.join(sorted(unknown))}")

        row = []
        for predictor in self.spec.predictors:
            if predictor in self.levels:
                observed = self.levels[predictor]
                value = str(settings.get(predictor, observed[0]))
                if value not in observed:
                    raise ValueError(
                        f"Level {value!r} of {predictor} not observed. Options are: "
                        f"{', '.join(observed)}."
                    )
                row.extend(float(value == level) for level in observed[1:])
            else:
                row.append(float(settings.get(predictor, self.numeric_means[predictor])))

        return np.array(row, dtype=np.float64)

    @property
    def mean_exposure(self) -> float:
        """Mean trial duration."""
        return float(self.exposure.mean())
