# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Leave-one-out cross-validation with moment matching.

Pareto-smoothed importance sampling (PSIS) estimates the leave-one-out predictive
density of every observation from a single fit. It is unreliable for
observations whose importance ratios have a heavy right tail, which shows up as
a Pareto shape estimate ``k`` above a threshold. Influential observations in
small multilevel data sets commonly trigger this.

Moment matching (Paananen et al., 2021, "Implicitly adaptive importance
sampling") repairs these observations without refitting, by moving the posterior
draws with affine transforms until their moments match those of the
importance-weighted draws. PSIS-LOO, moment matching and the model comparison
are computed by :py:mod:`arviz_stats`; the transforms need the log posterior
density and the pointwise log-likelihood at arbitrary parameter values, which
:py:class:`~gesturestan.model.stan.bridge.StanDensity` evaluates with the
model's own Stan program.
"""

from __future__ import annotations

from typing import Mapping, Optional, TYPE_CHECKING

import arviz_stats as azs
import numpy as np
import pandas as pd
import xarray as xr

from gesturestan.defaults import DEFAULT_MAX_MM_ITERS

if TYPE_CHECKING:
    from arviz_stats.utils import ELPDData

    from gesturestan import custom_types
    from gesturestan.model.results.hmc import SampleResults
    from gesturestan.model.stan.bridge import StanDensity

# Pointwise log-likelihood variable of the generated programs
LOG_LIK_VAR = "log_lik"


def high_k_observations(
    elpd_data: "ELPDData", k_threshold: Optional["custom_types.Float"] = None
) -> np.ndarray:
    """Indices of the observations whose Pareto k exceeds a threshold.

    :param elpd_data: Pointwise result of :py:func:`arviz_stats.loo`
    :type elpd_data: arviz_stats.utils.ELPDData
    :param k_threshold: Threshold. Defaults to None (the threshold for the
        number of draws, ``elpd_data.good_k``).
    :type k_threshold: Optional[custom_types.Float]

    :returns: Zero-based observation indices
    :rtype: np.ndarray

    :raises ValueError: If `elpd_data` is not pointwise
    """
    if elpd_data.pareto_k is None:
        raise ValueError("A pointwise LOO result is needed. Use pointwise=True.")
    k_threshold = elpd_data.good_k if k_threshold is None else k_threshold
    return np.flatnonzero(np.asarray(elpd_data.pareto_k).ravel() > k_threshold)


def loo_moment_match(
    data: xr.DataTree,
    elpd_data: "ELPDData",
    density: "StanDensity",
    k_threshold: Optional["custom_types.Float"] = None,
    max_iters: "custom_types.Integer" = DEFAULT_MAX_MM_ITERS,
    split: bool = True,
    cov: bool = False,
) -> "ELPDData":
    """Moment-match the observations of a PSIS-LOO result with high Pareto k.

    :param data: The fit, with ``posterior`` and ``log_likelihood`` groups
    :type data: xr.DataTree
    :param elpd_data: Pointwise result of :py:func:`arviz_stats.loo` on `data`
    :type elpd_data: arviz_stats.utils.ELPDData
    :param density: Evaluates the log posterior density and the pointwise
        log-likelihood at unconstrained draws
    :type density: gesturestan.model.stan.bridge.StanDensity
    :param k_threshold: Pareto k above which an observation is moment matched.
        Defaults to None (``min(1 - 1 / log10(S), 0.7)`` for S draws).
    :type k_threshold: Optional[custom_types.Float]
    :param max_iters: Maximum number of iterations per observation. Defaults to 30.
    :type max_iters: custom_types.Integer
    :param split: Whether to use split importance sampling for the final
        weights. Defaults to True.
    :type split: bool
    :param cov: Whether to also match the covariance. Defaults to False.
    :type cov: bool

    :returns: New result with updated pointwise values, Pareto k and totals
    :rtype: arviz_stats.utils.ELPDData

    :raises ValueError: If `elpd_data` is not pointwise

    Observations that moment matching does not improve keep their PSIS values.
    :py:mod:`arviz_stats` warns about observations whose Pareto k stays above
    the threshold.
    """
    return azs.loo_moment_match(
        data,
        elpd_data,
        log_prob_upars_fn=density.log_prob_upars,
        log_lik_i_upars_fn=density.log_lik_i_upars,
        upars=density.unconstrain(data.posterior.to_dataset()),
        var_name=LOG_LIK_VAR,
        max_iters=int(max_iters),
        k_threshold=k_threshold,
        split=split,
        cov=cov,
        pointwise=True,
    )


def compare_models(
    results: Mapping[str, "SampleResults"],
    moment_match: bool = True,
    **loo_kwargs,
) -> pd.DataFrame:
    """Compare fitted models by expected log predictive density.

    :param results: Fitted models keyed by the name to report them under
    :type results: Mapping[str, SampleResults]
    :param moment_match: Whether to moment-match high Pareto k observations.
        Defaults to True.
    :type moment_match: bool
    :param loo_kwargs: Further arguments of :py:meth:`SampleResults.loo`

    :returns: Comparison table of :py:func:`arviz_stats.compare`, best model
        first. ``elpd_diff`` is the difference to the best model and ``dse`` its
        standard error.
    :rtype: pd.DataFrame

    :raises ValueError: If fewer than two models are given

    Example:
        >>> compare_models({"poisson": poisson_res, "negbinomial": negbin_res})
    """
    if len(results) < 2:
        raise ValueError("At least two models are needed for a comparison.")
    return azs.compare(
        {
            name: res.loo(moment_match=moment_match, **loo_kwargs)
            for name, res in results.items()
        }
    )
