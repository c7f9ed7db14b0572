# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Hamiltonian Monte Carlo (HMC) sampling results of gesture count models.

This module wraps the ArviZ ``InferenceData`` built from a CmdStanPy fit in a
:py:class:`SampleResults` object that answers the questions asked of a fitted
count model:

    - Summaries of the population-level, group-level and family parameters under
      brms-style names (``b_Intercept``, ``b_contextprofessor``,
      ``sd_ID__Intercept``, ``cor_ID__Intercept__contextprofessor``, ``shape``)
    - Conditional effects: the predicted mean count at each level of a
      predictor, random effects excluded
    - Hypothesis tests on functions of the coefficients
    - Posterior draws of individual coefficients
    - Leave-one-out cross-validation with moment matching
    - Sampler diagnostics (divergences, tree depth saturation, R-hat, ESS)

ArviZ's summaries name their columns after the statistic computed (``mean``,
``sd``, ``hdi_2.5%``, ...). :py:func:`rename_summary_columns` maps these to plain
names (``estimate``, ``est_error``, ``lower``, ``upper``, ...) for downstream
use, refusing any mapping that would merge two columns.
"""

from __future__ import annotations

import os.path
import re
import warnings

from typing import Any, Optional, TYPE_CHECKING

import arviz as az
import arviz_stats as azs
import numpy as np
import numpy.typing as npt
import pandas as pd
import xarray as xr

from cmdstanpy import CmdStanMCMC

import gesturestan

from gesturestan.defaults import (
    DEFAULT_CI_PROB,
    DEFAULT_ESS_THRESH,
    DEFAULT_MAX_MM_ITERS,
    DEFAULT_PPC_DRAWS,
    DEFAULT_RHAT_THRESH,
)
from gesturestan.model.results import hypothesis as hypothesis_module
from gesturestan.model.results import loo as loo_module
from gesturestan.model.stan.bridge import StanDensity

if TYPE_CHECKING:
    from arviz_stats.utils import ELPDData

    from gesturestan import custom_types
    from gesturestan.model.model import GestureModel

# Plain names of the statistics reported by `az.summary`
SUMMARY_COLUMN_NAMES: dict[str, str] = {
    "mean": "estimate",
    "sd": "est_error",
    "median": "median",
    "mad": "mad",
    "eti_lower": "lower",
    "eti_upper": "upper",
    "mcse_mean": "mcse_estimate",
    "mcse_sd": "mcse_est_error",
    "mcse_median": "mcse_median",
    "ess_bulk": "bulk_ess",
    "ess_tail": "tail_ess",
    "ess_median": "median_ess",
    "r_hat": "rhat",
}
"""Mapping from ArviZ summary column names to plain names. Interval columns
(``hdi_2.5%``, ``hdi_97.5%``, ``eti_2.5%``, ...) are mapped to ``lower`` and
``upper`` by their numeric order.
"""

_INTERVAL_COLUMN_RE = re.compile(r"^(hdi|eti)_([0-9.]+)%$")

# Sample statistics as named by ArviZ
_DIVERGENT = "diverging"
_TREE_DEPTH = "tree_depth"


def rename_summary_columns(frame: pd.DataFrame) -> pd.DataFrame:
    """Rename the columns of an ArviZ summary to plain names.

    :param frame: Output of :py:func:`arviz.summary`
    :type frame: pd.DataFrame

    :returns: Copy of `frame` with renamed columns, in the same order
    :rtype: pd.DataFrame

    :raises ValueError: If the renaming would give two columns the same name, or
        if there are more than two interval columns

    Columns without a known plain name keep their name.

    Example:
        >>> rename_summary_columns(az.summary(idata, kind="stats", hdi_prob=0.95)).columns
        Index(['estimate', 'est_error', 'lower', 'upper'], dtype='object')
    """
    mapping = {col: SUMMARY_COLUMN_NAMES[col] for col in frame.columns if col in SUMMARY_COLUMN_NAMES}

    # Interval bounds are named by their probability
    interval_cols = {
        col: float(match.group(2))
        for col in frame.columns
        if (match := _INTERVAL_COLUMN_RE.match(str(col))) is not None
    }
    if len(interval_cols) > 2:
        raise ValueError(
            f"Expected at most two interval columns, found: {', '.join(interval_cols)}"
        )
    for col, name in zip(sorted(interval_cols, key=interval_cols.get), ("lower", "upper")):
        mapping[col] = name

    # The renaming must be one-to-one
    new_names = [mapping.get(col, col) for col in frame.columns]
    if len(set(new_names)) != len(new_names):
        duplicated = sorted({name for name in new_names if new_names.count(name) > 1})
        raise ValueError(
            f"Renaming summary columns would collide on: {', '.join(duplicated)}"
        )

    return frame.rename(columns=mapping)


def _flatten_draws(values: xr.DataArray) -> npt.NDArray[np.floating]:
    """Stack the chain and draw dimensions of a variable, chain-major."""
    values = values.transpose("chain", "draw", ...)
    array = values.to_numpy()
    return array.reshape(array.shape[0] * array.shape[1], *array.shape[2:])


class SampleResults:
    """Analysis interface for the posterior of a gesture count model.

    :param model: The fitted model
    :type model: gesturestan.model.model.GestureModel
    :param inference_obj: InferenceData of the fit, or a path to a NetCDF file
        holding it
    :type inference_obj: Union[az.InferenceData, str]

    :raises ValueError: If the InferenceData lacks a posterior, a posterior
        predictive or a log-likelihood group

    :ivar model: The fitted model
    :ivar inference_obj: InferenceData of the fit. Groups: ``posterior`` (Stan
        variable names), ``posterior_predictive`` (``y_rep``), ``log_likelihood``
        (``log_lik``), ``observed_data`` (``Y``) and ``sample_stats``.

    Users will not typically instantiate this class directly. It is returned by
    :py:meth:`GestureModel.mcmc() <gesturestan.model.model.GestureModel.mcmc>`.
    """

    def __init__(
        self, model: "GestureModel", inference_obj: az.InferenceData | str
    ):
        # If the inference object is a string, we assume that it is a NetCDF file
        # to be loaded from disk
        if isinstance(inference_obj, str):
            inference_obj = az.from_netcdf(filename=inference_obj, engine="h5netcdf")

        # The arviz object must have the groups that the analyses need
        if missing_groups := (
            {"posterior", "posterior_predictive", "log_likelihood"}
            - set(inference_obj.groups())
        ):
            raise ValueError(
                f"ArviZ object is missing the following groups: {', '.join(sorted(missing_groups))}"
            )

        self.model = model
        self.inference_obj = inference_obj

    @classmethod
    def from_fit(cls, model: "GestureModel", fit: CmdStanMCMC) -> "SampleResults":
        """Build results from a CmdStanPy fit of the model's Stan program.

        :param model: The fitted model
        :type model: gesturestan.model.model.GestureModel
        :param fit: CmdStanPy sampling output
        :type fit: CmdStanMCMC

        :returns: Results object
        :rtype: SampleResults
        """
        design = model.design
        coords = {
            "coef": list(design.coef_names),
            "obs": np.arange(design.n_obs),
        }
        dims = {
            "b": ["coef"],
            "mu": ["obs"],
            "y_rep": ["obs"],
            "log_lik": ["obs"],
            "Y": ["obs"],
        }
        if model.spec.has_random_effects:
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

        inference_obj = az.from_cmdstanpy(
            posterior=fit,
            posterior_predictive="y_rep",
            log_likelihood="log_lik",
            observed_data={"Y": design.response},
            coords=coords,
            dims=dims,
        )

        # Note the tree depth limit for the diagnostics
        inference_obj.sample_stats.attrs["max_treedepth"] = int(
            fit.metadata.cmdstan_config["max_depth"]
        )

        return cls(model=model, inference_obj=inference_obj)

    @classmethod
    def from_disk(cls, path: str, model: "GestureModel") -> "SampleResults":
        """Load results saved with :py:meth:`save_netcdf`.

        :param path: Path to the NetCDF file
        :type path: str
        :param model: The model that was fit. Its table is needed to rebuild the
            design matrices.
        :type model: gesturestan.model.model.GestureModel

        :returns: Results object
        :rtype: SampleResults

        :raises FileNotFoundError: If the file doesn't exist
        """
        if not os.path.exists(path):
            raise FileNotFoundError(
                f"The file {path} does not exist. Please provide a valid path."
            )
        return cls(model=model, inference_obj=path)

    def save_netcdf(self, filename: str) -> None:
        """Save the ArviZ InferenceData object to NetCDF format.

        :param filename: Path where to save the NetCDF file
        :type filename: str
        """
        self.inference_obj.to_netcdf(filename, engine="h5netcdf")

    @property
    def n_draws(self) -> int:
        """Total number of posterior draws over all chains."""
        posterior = self.inference_obj.posterior
        return int(posterior.sizes["chain"] * posterior.sizes["draw"])

    def coefficient_dataset(self) -> xr.Dataset:
        """Draws of every reported coefficient under brms-style names.

        :returns: Dataset with one (chain, draw) variable per coefficient
        :rtype: xr.Dataset

        The variables are, in order, ``b_Intercept``, one ``b_<coef>`` per
        slope, one ``sd_<group>__<term>`` per group-level term, one
        ``cor_<group>__<term1>__<term2>`` per pair of group-level terms (with
        correlated random effects) and ``shape`` (negative binomial).
        """
        posterior = self.inference_obj.posterior
        design = self.model.design
        spec = self.model.spec
        group = spec.group

        variables = {"b_Intercept": posterior["Intercept"]}
        for k, name in enumerate(design.coef_names):
            variables[f"b_{name}"] = posterior["b"].isel(coef=k, drop=True)

        if spec.has_random_effects:
            for m, term in enumerate(design.re_names):
                variables[f"sd_{group}__{term}"] = posterior["sd_1"].isel(
                    re_term=m, drop=True
                )
            if spec.random_effects == "intercept_slope":
                for m1, term1 in enumerate(design.re_names):
                    for m2 in range(m1 + 1, design.n_re):
                        term2 = design.re_names[m2]
                        variables[f"cor_{group}__{term1}__{term2}"] = posterior[
                            "Omega_1"
                        ].isel(re_term=m1, re_term_bis=m2, drop=True)

        if spec.family == "negbinomial":
            variables["shape"] = posterior["shape"]

        return xr.Dataset(variables)

    def coefficient_draws(self) -> pd.DataFrame:
        """Draws of every reported coefficient, one column per coefficient.

        :returns: Frame with one row per draw (chain-major) and brms-style
            column names
        :rtype: pd.DataFrame
        """
        dataset = self.coefficient_dataset()
        return pd.DataFrame(
            {name: _flatten_draws(values) for name, values in dataset.items()}
        )

    def posterior_samples(self, name: str) -> npt.NDArray[np.floating]:
        """Draws of one coefficient.

        :param name: brms-style coefficient name, e.g. ``"b_contextprofessor"``
        :type name: str

        :returns: Draws, chain-major
        :rtype: npt.NDArray[np.floating]

        :raises KeyError: If no coefficient has that name

        Example:
            >>> slope = results.posterior_samples("b_contextprofessor")
        """
        dataset = self.coefficient_dataset()
        if name not in dataset:
            raise KeyError(
                f"Unknown coefficient '{name}'. Options are: {', '.join(dataset.data_vars)}."
            )
        return _flatten_draws(dataset[name])

    def summary(
        self,
        hdi_prob: "custom_types.Float" = DEFAULT_CI_PROB,
        round_to: Optional["custom_types.Integer"] = None,
    ) -> pd.DataFrame:
        """Summary table of the population-level, group-level and family parameters.

        :param hdi_prob: Probability mass of the highest density intervals.
            Defaults to 0.95.
        :type hdi_prob: custom_types.Float
        :param round_to: Number of decimals to round to. Defaults to None (no
            rounding).
        :type round_to: Optional[custom_types.Integer]

        :returns: One row per coefficient with columns ``estimate``,
            ``est_error``, ``lower``, ``upper``, ``mcse_estimate``,
            ``mcse_est_error``, ``bulk_ess``, ``tail_ess`` and ``rhat``
        :rtype: pd.DataFrame
        """
        summary = rename_summary_columns(
            az.summary(self.coefficient_dataset(), hdi_prob=hdi_prob, round_to="none")
        )
        return summary if round_to is None else summary.round(round_to)

    def conditional_effects(
        self,
        effect: str = "context",
        prob: "custom_types.Float" = DEFAULT_CI_PROB,
    ) -> pd.DataFrame:
        """Predicted mean count at each level of a categorical predictor.

        :param effect: Categorical predictor. Defaults to "context".
        :type effect: str
        :param prob: Probability mass of the highest density intervals. Defaults
            to 0.95.
        :type prob: custom_types.Float

        :returns: One row per level (index named after `effect`) with columns
            ``estimate``, ``est_error``, ``lower`` and ``upper``
        :rtype: pd.DataFrame

        :raises KeyError: If `effect` is not a categorical predictor of the model

        Predictions exclude the random effects, hold the other categorical
        predictors at their reference level and numeric ones at their mean, and
        use the mean trial duration when duration is part of the model.

        Example:
            >>> results.conditional_effects()
                       estimate  est_error  lower  upper
            context
            friend        4.0...
            professor     2.9...
        """
        design = self.model.design
        if effect not in design.levels:
            raise KeyError(
                f"'{effect}' is not a categorical predictor of the model. Options "
                f"are: {', '.join(design.levels)}."
            )

        posterior = self.inference_obj.posterior
        exposure = design.mean_exposure if self.model.spec.has_exposure else 1.0

        # Expected counts at each level
        predictions = {}
        for level in design.levels[effect]:
            row = xr.DataArray(design.encode(**{effect: level}), dims=["coef"])
            eta = posterior["Intercept"] + (posterior["b"] * row).sum("coef")
            predictions[level] = np.exp(eta) * exposure

        summary = rename_summary_columns(
            az.summary(
                xr.Dataset(predictions), kind="stats", hdi_prob=prob, round_to="none"
            )
        )
        summary.index.name = effect
        return summary

    def hypothesis(
        self,
        expression: str,
        alpha: "custom_types.Float" = 1 - DEFAULT_CI_PROB,
    ) -> hypothesis_module.HypothesisResult:
        """Evaluate a brms-style hypothesis on the posterior draws.

        :param expression: Hypothesis over coefficient names. Population-level
            coefficients may be named with or without the ``b_`` prefix.
        :type expression: str
        :param alpha: One minus the credible interval probability. Defaults to 0.05.
        :type alpha: custom_types.Float

        :returns: Test result
        :rtype: hypothesis_module.HypothesisResult

        :raises HypothesisError: If the hypothesis cannot be parsed or names an
            unknown coefficient

        Example:
            >>> results.hypothesis("exp(Intercept + contextprofessor * 1) = 4")
        """
        draws = self.coefficient_draws()
        draws = draws.assign(
            **{
                name.removeprefix("b_"): draws[name]
                for name in draws.columns
                if name.startswith("b_")
            }
        )
        return hypothesis_module.evaluate_hypothesis(expression, draws, alpha=alpha)

    def posterior_predictive_draws(
        self,
        n_draws: "custom_types.Integer" = DEFAULT_PPC_DRAWS,
        seed: Optional["custom_types.Integer"] = None,
    ) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
        """Observed counts and a random subset of replicated data sets.

        :param n_draws: Number of replicated data sets. Defaults to 50.
        :type n_draws: custom_types.Integer
        :param seed: Seed for choosing the subset. Defaults to None (drawn from
            the global RNG).
        :type seed: Optional[custom_types.Integer]

        :returns: Observed counts, shape (N,), and replicated counts, shape
            (n_draws, N)
        :rtype: tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]
        """
        replicated = _flatten_draws(self.inference_obj.posterior_predictive["y_rep"])
        rng = (
            gesturestan.RNG if seed is None else np.random.default_rng(seed)
        )
        chosen = rng.choice(
            replicated.shape[0], size=min(int(n_draws), replicated.shape[0]), replace=False
        )
        return (
            self.model.design.response.astype(np.int64),
            replicated[chosen].astype(np.int64),
        )

    @property
    def datatree(self) -> xr.DataTree:
        """The fit as an :py:class:`xarray.DataTree`, the input of :py:mod:`arviz_stats`."""
        return xr.DataTree.from_dict(
            {group: self.inference_obj[group] for group in self.inference_obj.groups()}
        )

    def loo(
        self,
        moment_match: bool = True,
        k_threshold: Optional["custom_types.Float"] = None,
        max_iters: "custom_types.Integer" = DEFAULT_MAX_MM_ITERS,
        output_dir: Optional[str] = None,
        **mm_kwargs: Any,
    ) -> "ELPDData":
        """PSIS leave-one-out cross-validation.

        :param moment_match: Whether to moment-match observations with a high
            Pareto k. Defaults to True.
        :type moment_match: bool
        :param k_threshold: Pareto k above which observations are moment matched.
            Defaults to None (the threshold for the number of draws).
        :type k_threshold: Optional[custom_types.Float]
        :param max_iters: Maximum number of moment-matching iterations per
            observation. Defaults to 30.
        :type max_iters: custom_types.Integer
        :param output_dir: Directory for the program compiled for moment
            matching. Defaults to None (temporary).
        :type output_dir: Optional[str]
        :param mm_kwargs: Further arguments of
            :py:func:`~gesturestan.model.results.loo.loo_moment_match`
            (``split``, ``cov``)

        :returns: Pointwise LOO result
        :rtype: arviz_stats.utils.ELPDData

        Moment matching evaluates the model's Stan program with BridgeStan, which
        is only compiled when some observation exceeds the threshold.
        """
        data = self.datatree

        # High Pareto k values are reported after moment matching instead
        with warnings.catch_warnings():
            if moment_match:
                warnings.filterwarnings(
                    "ignore",
                    category=UserWarning,
                    message="Estimated shape parameter of Pareto distribution",
                )
            elpd_data = azs.loo(data, pointwise=True, var_name=loo_module.LOG_LIK_VAR)

        if not moment_match:
            return elpd_data

        # Nothing to match
        if len(loo_module.high_k_observations(elpd_data, k_threshold)) == 0:
            return elpd_data

        return loo_module.loo_moment_match(
            data,
            elpd_data,
            density=StanDensity(self.model, output_dir=output_dir),
            k_threshold=k_threshold,
            max_iters=max_iters,
            **mm_kwargs,
        )

    def diagnose(
        self,
        max_treedepth: Optional["custom_types.Integer"] = None,
        r_hat_thresh: "custom_types.Float" = DEFAULT_RHAT_THRESH,
        ess_thresh: "custom_types.Float" = DEFAULT_ESS_THRESH,
    ) -> dict[str, Any]:
        """Check the sampler output and warn about any problems.

        :param max_treedepth: Tree depth limit used for sampling. Defaults to
            None (the limit recorded at sampling time, or the one of the
            model's sampler controls).
        :type max_treedepth: Optional[custom_types.Integer]
        :param r_hat_thresh: R-hat at or above which a coefficient has not
            converged. Defaults to 1.01.
        :type r_hat_thresh: custom_types.Float
        :param ess_thresh: Effective sample size per chain at or below which a
            coefficient is poorly sampled. Defaults to 100.
        :type ess_thresh: custom_types.Float

        :returns: Number of divergent transitions (``"divergent"``), number of
            transitions that saturated the tree depth (``"max_treedepth"``), and
            the names of the coefficients failing the R-hat (``"r_hat"``), bulk
            ESS (``"ess_bulk"``) and tail ESS (``"ess_tail"``) checks
        :rtype: dict[str, Any]

        Divergent transitions can usually be removed by raising ``adapt_delta``;
        saturated trees by raising ``max_treedepth``.
        """
        sample_stats = self.inference_obj.sample_stats
        if max_treedepth is None:
            max_treedepth = sample_stats.attrs.get(
                "max_treedepth", self.model.spec.controls.max_treedepth
            )

        # Sample-level tests
        failures: dict[str, Any] = {
            "divergent": int(sample_stats[_DIVERGENT].sum()),
            "max_treedepth": int((sample_stats[_TREE_DEPTH] >= max_treedepth).sum()),
        }

        # Variable-level tests
        diagnostics = az.summary(
            self.coefficient_dataset(), kind="diagnostics", round_to="none"
        )
        ess_thresh = ess_thresh * self.inference_obj.posterior.sizes["chain"]
        failures["r_hat"] = diagnostics.index[diagnostics["r_hat"] >= r_hat_thresh].tolist()
        failures["ess_bulk"] = diagnostics.index[diagnostics["ess_bulk"] <= ess_thresh].tolist()
        failures["ess_tail"] = diagnostics.index[diagnostics["ess_tail"] <= ess_thresh].tolist()

        # Report
        if failures["divergent"] > 0:
            warnings.warn(
                f"{failures['divergent']} of {self.n_draws} transitions diverged. "
                "Consider increasing adapt_delta."
            )
        if failures["max_treedepth"] > 0:
            warnings.warn(
                f"{failures['max_treedepth']} of {self.n_draws} transitions reached "
                f"the maximum tree depth of {max_treedepth}. Consider increasing "
                "max_treedepth."
            )
        for metric in ("r_hat", "ess_bulk", "ess_tail"):
            if failures[metric]:
                warnings.warn(
                    f"Coefficients failing the {metric} check: "
                    f"{', '.join(failures[metric])}."
                )

        return failures
