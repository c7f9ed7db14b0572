"""Tests for the design matrices of gesture count models."""

from __future__ import annotations

import numpy as np
import pytest

from gesturestan.model.design import DesignMatrices, clean_name
from gesturestan.model.specification import ModelSpecification


def test_clean_name() -> None:
    assert clean_name("contextprofessor") == "contextprofessor"
    assert clean_name("languagenon-native speaker") == "languagenonnativespeaker"


def test_fixed_effects_design(example_table) -> None:
    design = DesignMatrices.from_data(ModelSpecification(), example_table)

    assert design.coef_names == ("contextprofessor",)
    assert design.levels == {"context": ("friend", "professor")}
    assert np.array_equal(design.X[:, 0], [0.0, 1.0, 0.0, 1.0])
    assert design.n_obs == 4
    assert design.n_coefs == 1
    assert design.n_re == 0
    assert np.array_equal(design.response, [5, 3, 2, 1])

    data = design.stan_data()
    assert set(data) == {"N", "Y", "K", "X"}
    assert data["N"] == 4
    assert data["K"] == 1


def test_intercept_slope_design(example_table) -> None:
    spec = ModelSpecification(random_effects="intercept_slope", exposure="offset")
    design = DesignMatrices.from_data(spec, example_table)

    assert design.re_names == ("Intercept", "contextprofessor")
    assert np.array_equal(design.Z[:, 0], np.ones(4))
    assert np.array_equal(design.Z[:, 1], design.X[:, 0])
    assert design.group_levels == ("P1", "P2")
    assert np.array_equal(design.group_index, [0, 0, 1, 1])

    data = design.stan_data()
    assert set(data) == {"N", "Y", "K", "X", "expo", "J", "M", "group", "Z"}
    assert np.array_equal(data["group"], [1, 1, 2, 2])
    assert np.array_equal(data["expo"], [60.0, 60.0, 30.0, 30.0])
    assert data["J"] == 2
    assert data["M"] == 2


def test_intercept_only_design(example_table) -> None:
    spec = ModelSpecification(random_effects="intercept")
    design = DesignMatrices.from_data(spec, example_table)
    assert design.re_names == ("Intercept",)
    assert design.Z.shape == (4, 1)


def test_multiple_predictors(gesture_table) -> None:
    spec = ModelSpecification(predictors=("context", "language", "dur"))
    design = DesignMatrices.from_data(spec, gesture_table)

    # Reference levels are the first category
    assert design.coef_names == ("contextprofessor", "languagekorean", "dur")
    assert design.levels["language"] == ("catalan", "korean")
    assert design.numeric_means["dur"] == pytest.approx(gesture_table["dur"].mean())


def test_encode(gesture_table) -> None:
    spec = ModelSpecification(predictors=("context", "language", "dur"))
    design = DesignMatrices.from_data(spec, gesture_table)
    mean_dur = gesture_table["dur"].mean()

    assert np.allclose(design.encode(), [0.0, 0.0, mean_dur])
    assert np.allclose(design.encode(context="professor"), [1.0, 0.0, mean_dur])
    assert np.allclose(design.encode(language="korean", dur=10), [0.0, 1.0, 10.0])


def test_encode_rejects_unknown_settings(example_table) -> None:
    design = DesignMatrices.from_data(ModelSpecification(), example_table)
    with pytest.raises(KeyError):
        design.encode(gender="F")
    with pytest.raises(ValueError):
        design.encode(context="stranger")


def test_missing_column(example_table) -> None:
    with pytest.raises(KeyError):
        DesignMatrices.from_data(
            ModelSpecification(), example_table.drop(columns="gestures")
        )


def test_mean_exposure(example_table) -> None:
    design = DesignMatrices.from_data(ModelSpecification(exposure="rate"), example_table)
    assert design.mean_exposure == pytest.approx(45.0)
