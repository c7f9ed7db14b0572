"""Tests for the inspection of sampling results."""

from __future__ import annotations

import warnings

import arviz as az
import numpy as np
import pandas as pd
import pytest

from gesturestan.exceptions import HypothesisError
from gesturestan.model.results.hmc import (
    SUMMARY_COLUMN_NAMES,
    SampleResults,
    rename_summary_columns,
)


# ---------------------------------------------------------------------------
# Column renaming


def test_rename_summary_columns() -> None:
    frame = pd.DataFrame(
        np.zeros((1, 9)),
        columns=[
            "mean",
            "sd",
            "hdi_2.5%",
            "hdi_97.5%",
            "mcse_mean",
            "mcse_sd",
            "ess_bulk",
            "ess_tail",
            "r_hat",
        ],
    )
    renamed = rename_summary_columns(frame)
    assert list(renamed.columns) == [
        "estimate",
        "est_error",
        "lower",
        "upper",
        "mcse_estimate",
        "mcse_est_error",
        "bulk_ess",
        "tail_ess",
        "rhat",
    ]

    # Input untouched
    assert list(frame.columns)[0] == "mean"


def test_rename_is_a_bijection() -> None:
    names = list(SUMMARY_COLUMN_NAMES.values())
    assert len(set(names)) == len(names)

    frame = pd.DataFrame(np.zeros((1, len(SUMMARY_COLUMN_NAMES))), columns=list(SUMMARY_COLUMN_NAMES))
    renamed = rename_summary_columns(frame)
    assert len(set(renamed.columns)) == len(frame.columns)
    assert dict(zip(frame.columns, renamed.columns)) == SUMMARY_COLUMN_NAMES


def test_rename_orders_interval_bounds() -> None:
    frame = pd.DataFrame(np.zeros((1, 2)), columns=["eti_94%", "eti_3%"])
    assert list(rename_summary_columns(frame).columns) == ["upper", "lower"]


def test_rename_keeps_unknown_columns() -> None:
    frame = pd.DataFrame(np.zeros((1, 2)), columns=["mean", "custom"])
    assert list(rename_summary_columns(frame).columns) == ["estimate", "custom"]


@pytest.mark.parametrize(
    "columns",
    [
        ["mean", "estimate"],
        ["hdi_3%", "eti_lower"],
        ["hdi_3%", "hdi_50%", "hdi_97%"],
    ],
)
def test_rename_refuses_collisions(columns) -> None:
    frame = pd.DataFrame(np.zeros((1, len(columns))), columns=columns)
    with pytest.raises(ValueError):
        rename_summary_columns(frame)


# ---------------------------------------------------------------------------
# Construction and storage


def test_missing_groups(poisson_fixed_results) -> None:
    idata = az.InferenceData(posterior=poisson_fixed_results.inference_obj.posterior)
    with pytest.raises(ValueError, match="missing"):
        SampleResults(model=poisson_fixed_results.model, inference_obj=idata)


def test_save_and_load(tmp_path, poisson_mixed_results) -> None:
    path = str(tmp_path / "results.nc")
    poisson_mixed_results.save_netcdf(path)

    loaded = SampleResults.from_disk(path, model=poisson_mixed_results.model)
    assert np.allclose(
        loaded.inference_obj.posterior["b"].to_numpy(),
        poisson_mixed_results.inference_obj.posterior["b"].to_numpy(),
    )
    assert loaded.coefficient_draws().columns.tolist() == (
        poisson_mixed_results.coefficient_draws().columns.tolist()
    )


def test_from_disk_missing_file(tmp_path, poisson_fixed_model) -> None:
    with pytest.raises(FileNotFoundError):
        SampleResults.from_disk(str(tmp_path / "missing.nc"), model=poisson_fixed_model)


# ---------------------------------------------------------------------------
# Coefficients


def test_coefficient_names(poisson_fixed_results, poisson_mixed_results, negbinomial_results) -> None:
    assert poisson_fixed_results.coefficient_draws().columns.tolist() == [
        "b_Intercept",
        "b_contextprofessor",
    ]
    assert poisson_mixed_results.coefficient_draws().columns.tolist() == [
        "b_Intercept",
        "b_contextprofessor",
        "sd_ID__Intercept",
        "sd_ID__contextprofessor",
        "cor_ID__Intercept__contextprofessor",
    ]
    assert negbinomial_results.coefficient_draws().columns.tolist() == [
        "b_Intercept",
        "b_contextprofessor",
        "sd_ID__Intercept",
        "shape",
    ]


def test_posterior_samples(poisson_mixed_results) -> None:
    posterior = poisson_mixed_results.inference_obj.posterior
    n_draws = poisson_mixed_results.n_draws

    slope = poisson_mixed_results.posterior_samples("b_contextprofessor")
    assert slope.shape == (n_draws,)
    assert np.allclose(slope, posterior["b"].to_numpy()[..., 0].ravel())

    cor = poisson_mixed_results.posterior_samples("cor_ID__Intercept__contextprofessor")
    assert np.allclose(cor, posterior["L_1"].to_numpy()[..., 1, 0].ravel())


def test_posterior_samples_unknown_name(poisson_fixed_results) -> None:
    with pytest.raises(KeyError):
        poisson_fixed_results.posterior_samples("b_contextstranger")


def test_summary(poisson_mixed_results) -> None:
    summary = poisson_mixed_results.summary()
    assert summary.index.tolist() == poisson_mixed_results.coefficient_draws().columns.tolist()
    for column in ("estimate", "est_error", "lower", "upper", "bulk_ess", "tail_ess", "rhat"):
        assert column in summary.columns

    draws = poisson_mixed_results.coefficient_draws()
    assert summary.loc["b_contextprofessor", "estimate"] == pytest.approx(
        draws["b_contextprofessor"].mean()
    )
    assert (summary["lower"] < summary["estimate"]).all()
    assert (summary["estimate"] < summary["upper"]).all()


# ---------------------------------------------------------------------------
# Conditional effects and hypotheses


def test_conditional_effects_fixed(poisson_fixed_results) -> None:
    effects = poisson_fixed_results.conditional_effects()
    assert effects.index.name == "context"
    assert effects.index.tolist() == ["friend", "professor"]
    assert list(effects.columns)[:4] == ["estimate", "est_error", "lower", "upper"]

    posterior = poisson_fixed_results.inference_obj.posterior
    intercept = posterior["Intercept"].to_numpy().ravel()
    slope = posterior["b"].to_numpy()[..., 0].ravel()
    assert effects.loc["friend", "estimate"] == pytest.approx(np.exp(intercept).mean())
    assert effects.loc["professor", "estimate"] == pytest.approx(
        np.exp(intercept + slope).mean()
    )
    assert (effects["lower"] < effects["estimate"]).all()
    assert (effects["estimate"] < effects["upper"]).all()


def test_conditional_effects_use_mean_duration(poisson_mixed_results) -> None:
    effects = poisson_mixed_results.conditional_effects(prob=0.9)
    design = poisson_mixed_results.model.design
    intercept = poisson_mixed_results.inference_obj.posterior["Intercept"].to_numpy().ravel()
    assert effects.loc["friend", "estimate"] == pytest.approx(
        (np.exp(intercept) * design.mean_exposure).mean()
    )


def test_conditional_effects_unknown_effect(poisson_fixed_results) -> None:
    with pytest.raises(KeyError):
        poisson_fixed_results.conditional_effects(effect="gender")


def test_hypothesis_accepts_short_and_full_names(poisson_fixed_results) -> None:
    short = poisson_fixed_results.hypothesis("contextprofessor < 0")
    full = poisson_fixed_results.hypothesis("b_contextprofessor < 0")
    assert short.post_prob == full.post_prob
    assert short.post_prob > 0.99

    point = poisson_fixed_results.hypothesis("exp(Intercept + contextprofessor * 1) = 2.7")
    assert point.post_prob > 0.05

    with pytest.raises(HypothesisError):
        poisson_fixed_results.hypothesis("contextstranger < 0")


# ---------------------------------------------------------------------------
# Posterior predictive draws and diagnostics


def test_posterior_predictive_draws(poisson_mixed_results) -> None:
    observed, replicated = poisson_mixed_results.posterior_predictive_draws(n_draws=20, seed=3)
    design = poisson_mixed_results.model.design
    assert np.array_equal(observed, design.response)
    assert replicated.shape == (20, design.n_obs)

    # Seeded subsets are reproducible
    _, again = poisson_mixed_results.posterior_predictive_draws(n_draws=20, seed=3)
    assert np.array_equal(replicated, again)


def test_diagnose_reports_problems(poisson_mixed_results) -> None:
    with pytest.warns(UserWarning, match="diverged"):
        failures = poisson_mixed_results.diagnose(r_hat_thresh=1.5, ess_thresh=1)
    assert failures["divergent"] == 3
    assert failures["max_treedepth"] == 2
    assert failures["r_hat"] == []
    assert failures["ess_bulk"] == []


def test_diagnose_clean_fit(poisson_fixed_results) -> None:
    with warnings.catch_warnings(record=True) as record:
        warnings.simplefilter("always")
        failures = poisson_fixed_results.diagnose(r_hat_thresh=1.5, ess_thresh=1)
    assert failures["divergent"] == 0
    assert failures["max_treedepth"] == 0
    assert not any(
        "diverged" in str(w.message) or "tree depth" in str(w.message) for w in record
    )
