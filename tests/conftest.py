"""Shared fixtures: gesture tables and synthetic posteriors."""

from __future__ import annotations

import arviz as az
import numpy as np
import pandas as pd
import pytest

from scipy import stats

from gesturestan.model.model import GestureModel
from gesturestan.model.specification import ModelSpecification
from gesturestan.model.results.hmc import SampleResults

N_CHAINS = 2
N_DRAWS = 200
N_PARTICIPANTS = 12


# ---------------------------------------------------------------------------
# Tables


@pytest.fixture
def example_table() -> pd.DataFrame:
    """Two participants, one row per condition."""
    return pd.DataFrame(
        {
            "ID": pd.Categorical(["P1", "P1", "P2", "P2"]),
            "context": pd.Categorical(["friend", "professor", "friend", "professor"]),
            "dur": [60.0, 60.0, 30.0, 30.0],
            "language": pd.Categorical(["korean"] * 4),
            "gender": pd.Categorical(["F", "F", "M", "M"]),
            "gestures": np.array([5, 3, 2, 1], dtype=np.int64),
        }
    )


@pytest.fixture
def example_csv(tmp_path, example_table) -> str:
    path = tmp_path / "gestures.csv"
    example_table.to_csv(path, index=False)
    return str(path)


@pytest.fixture
def gesture_table() -> pd.DataFrame:
    """A paired table large enough to fit mixed models."""
    rng = np.random.default_rng(2024)
    ids = np.repeat([f"P{i + 1:02d}" for i in range(N_PARTICIPANTS)], 2)
    context = np.tile(["friend", "professor"], N_PARTICIPANTS)
    dur = np.repeat(rng.uniform(30, 90, N_PARTICIPANTS).round(1), 2)
    participant_effect = np.repeat(rng.normal(0, 0.3, N_PARTICIPANTS), 2)
    log_rate = np.log(0.07) - 0.4 * (context == "professor") + participant_effect
    gestures = rng.poisson(np.exp(log_rate) * dur)
    return pd.DataFrame(
        {
            "ID": pd.Categorical(ids),
            "context": pd.Categorical(context),
            "dur": dur,
            "language": pd.Categorical(np.tile(["korean", "catalan"], N_PARTICIPANTS)),
            "gender": pd.Categorical(np.repeat(["F", "M"] * (N_PARTICIPANTS // 2), 2)),
            "gestures": gestures.astype(np.int64),
        }
    )


# ---------------------------------------------------------------------------
# Synthetic posteriors


def synthetic_posterior(model: GestureModel, seed: int = 0) -> dict[str, np.ndarray]:
    """Draws of every Stan parameter of `model`, shaped (chain, draw, ...)."""
    rng = np.random.default_rng(seed)
    design, spec = model.design, model.spec
    shape = (N_CHAINS, N_DRAWS)

    posterior = {
        "Intercept": rng.normal(np.log(4.0 / 60.0 if spec.has_exposure else 4.0), 0.05, shape),
        "b": rng.normal(-0.4, 0.05, shape + (design.n_coefs,)),
    }
    if spec.has_random_effects:
        n_re, n_groups = design.n_re, design.n_groups
        posterior["sd_1"] = np.abs(rng.normal(0.3, 0.05, shape + (n_re,)))
        posterior["z_1"] = rng.normal(0, 1, shape + (n_re, n_groups))
        if spec.random_effects == "intercept_slope":
            rho = rng.uniform(-0.5, 0.5, shape)
            factor = np.zeros(shape + (2, 2))
            factor[..., 0, 0] = 1.0
            factor[..., 1, 0] = rho
            factor[..., 1, 1] = np.sqrt(1 - rho**2)
            posterior["L_1"] = factor
            posterior["Omega_1"] = factor @ np.swapaxes(factor, -1, -2)
            scaled = factor @ posterior["z_1"]
        else:
            scaled = posterior["z_1"]
        posterior["r_1"] = np.swapaxes(posterior["sd_1"][..., None] * scaled, -1, -2)
    if spec.family == "negbinomial":
        posterior["shape"] = rng.gamma(20.0, 0.5, shape)
    return posterior


def synthetic_mean(model: GestureModel, posterior: dict[str, np.ndarray]) -> np.ndarray:
    """Expected counts of every observation, shaped (chain, draw, obs)."""
    design, spec = model.design, model.spec
    eta = posterior["Intercept"][..., None] + posterior["b"] @ design.X.T
    if spec.has_random_effects:
        eta = eta + np.sum(posterior["r_1"][:, :, design.group_index, :] * design.Z, axis=-1)
    if spec.has_exposure:
        eta = eta + np.log(design.exposure)
    return np.exp(eta)


def synthetic_results(
    model: GestureModel, seed: int = 0, n_divergent: int = 0, n_saturated: int = 0
) -> SampleResults:
    """SampleResults built from synthetic draws, without running Stan."""
    rng = np.random.default_rng(seed + 1)
    design, spec = model.design, model.spec
    posterior = synthetic_posterior(model, seed=seed)

    coords = {"coef": list(design.coef_names), "obs": np.arange(design.n_obs)}
    dims = {"b": ["coef"], "y_rep": ["obs"], "log_lik": ["obs"], "Y": ["obs"]}
    if spec.has_random_effects:
        coords.update(
            {
                "re_term": list(design.re_names),
                "re_term_bis": list(design.re_names),
                "participant": list(design.group_levels),
            }
        )
        dims.update(
            {
                "sd_1": ["re_term"],
                "z_1": ["re_term", "participant"],
                "r_1": ["participant", "re_term"],
                "L_1": ["re_term", "re_term_bis"],
                "Omega_1": ["re_term", "re_term_bis"],
            }
        )

    # Log-likelihood and replicated data consistent with the draws
    mu = synthetic_mean(model, posterior)
    if spec.family == "negbinomial":
        phi = posterior["shape"][..., None] * (design.exposure if spec.exposure == "rate" else 1.0)
        log_lik = stats.nbinom.logpmf(design.response, phi, phi / (phi + mu))
        y_rep = rng.negative_binomial(phi, phi / (phi + mu))
    else:
        log_lik = stats.poisson.logpmf(design.response, mu)
        y_rep = rng.poisson(mu)

    # Sampler statistics
    diverging = np.zeros((N_CHAINS, N_DRAWS), dtype=bool)
    diverging.flat[:n_divergent] = True
    tree_depth = np.full((N_CHAINS, N_DRAWS), 3, dtype=np.int64)
    tree_depth.flat[:n_saturated] = spec.controls.max_treedepth

    inference_obj = az.from_dict(
        posterior=posterior,
        posterior_predictive={"y_rep": y_rep},
        log_likelihood={"log_lik": log_lik},
        observed_data={"Y": design.response},
        sample_stats={"diverging": diverging, "tree_depth": tree_depth},
        coords=coords,
        dims=dims,
    )
    return SampleResults(model=model, inference_obj=inference_obj)


@pytest.fixture
def poisson_fixed_model(gesture_table) -> GestureModel:
    return GestureModel(ModelSpecification(), gesture_table)


@pytest.fixture
def poisson_mixed_model(gesture_table) -> GestureModel:
    return GestureModel(
        ModelSpecification(random_effects="intercept_slope", exposure="offset"),
        gesture_table,
    )


@pytest.fixture
def negbinomial_model(gesture_table) -> GestureModel:
    return GestureModel(
        ModelSpecification(
            family="negbinomial", random_effects="intercept", exposure="rate"
        ),
        gesture_table,
    )


@pytest.fixture
def poisson_fixed_results(poisson_fixed_model) -> SampleResults:
    return synthetic_results(poisson_fixed_model)


@pytest.fixture
def poisson_mixed_results(poisson_mixed_model) -> SampleResults:
    return synthetic_results(poisson_mixed_model, n_divergent=3, n_saturated=2)


@pytest.fixture
def negbinomial_results(negbinomial_model) -> SampleResults:
    return synthetic_results(negbinomial_model, seed=7)
