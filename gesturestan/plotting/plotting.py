# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Core plotting functions for GestureStan.

The module builds HoloViews objects for the three charts of a gesture count
analysis and writes them to disk as static images:

    - Conditional effects: predicted mean count per condition with credible
      intervals
    - Posterior densities: one density curve per labelled set of draws
    - Posterior predictive checks: densities of replicated data sets overlaid with
      the density of the observed counts

Charts are rendered with the matplotlib backend, so no browser or notebook is
needed to produce them.
"""

from __future__ import annotations

import os.path

from typing import Mapping, Optional, TYPE_CHECKING

import holoviews as hv
import hvplot
import hvplot.pandas  # pylint: disable=unused-import
import numpy as np
import numpy.typing as npt
import pandas as pd

from scipy import stats

from gesturestan.defaults import DEFAULT_PPC_DRAWS

if TYPE_CHECKING:
    from gesturestan import custom_types

hvplot.extension("matplotlib")

# Styling
_REPLICATE_COLOR = "#9ecae1"
_OBSERVED_COLOR = "#08306b"
_POINT_COLOR = "#08519c"
_N_GRID_POINTS = 200


def plot_conditional_effects(
    frame: pd.DataFrame, title: Optional[str] = None
) -> hv.Overlay:
    """Point and error-bar chart of conditional effects.

    :param frame: Output of
        :py:meth:`~gesturestan.model.results.hmc.SampleResults.conditional_effects`.
        The index holds the levels and must be named; the columns must include
        ``estimate``, ``lower`` and ``upper``.
    :type frame: pd.DataFrame
    :param title: Chart title. Defaults to None (no title).
    :type title: Optional[str]

    :returns: Estimates as points with their credible intervals as error bars
    :rtype: hv.Overlay

    :raises KeyError: If a required column is missing
    """
    if missing := {"estimate", "lower", "upper"} - set(frame.columns):
        raise KeyError(f"Missing columns: {', '.join(sorted(missing))}")

    # Levels are placed at integer positions and named by the ticks
    effect = frame.index.name or "level"
    positions = np.arange(len(frame), dtype=float)
    plotting_df = pd.DataFrame(
        {
            effect: positions,
            "estimate": frame["estimate"].to_numpy(),
            "below": (frame["estimate"] - frame["lower"]).to_numpy(),
            "above": (frame["upper"] - frame["estimate"]).to_numpy(),
        }
    )

    points = hv.Scatter(plotting_df, kdims=[effect], vdims=["estimate"]).opts(
        color=_POINT_COLOR, s=60
    )
    bars = hv.ErrorBars(
        plotting_df, kdims=[effect], vdims=["estimate", "below", "above"]
    ).opts(color=_POINT_COLOR)

    return (bars * points).opts(
        title=title or "",
        xlabel=effect,
        ylabel="Expected gesture count",
        xticks=list(zip(positions, frame.index.astype(str))),
        xlim=(-0.5, len(frame) - 0.5),
    )


def plot_posterior_density(
    samples: Mapping[str, npt.ArrayLike],
    title: Optional[str] = None,
    xlabel: str = "Value",
) -> hv.core.dimension.Dimensioned:
    """Kernel density chart of one or more sets of posterior draws.

    :param samples: Draws keyed by their legend label. All sets must have the same
        length.
    :type samples: Mapping[str, npt.ArrayLike]
    :param title: Chart title. Defaults to None (no title).
    :type title: Optional[str]
    :param xlabel: Label of the x axis. Defaults to "Value".
    :type xlabel: str

    :returns: One density curve per label
    :rtype: hv.core.dimension.Dimensioned

    :raises ValueError: If `samples` is empty

    Example:
        >>> plot_posterior_density({"Poisson": pois_slope, "Negative binomial": nb_slope})
    """
    if not samples:
        raise ValueError("At least one set of draws is needed.")

    plotting_df = pd.DataFrame(
        {label: np.asarray(draws, dtype=float).ravel() for label, draws in samples.items()}
    )
    return plotting_df.hvplot.kde(
        alpha=0.4, xlabel=xlabel, ylabel="Density", title=title or ""
    )


def _density_curve(
    values: npt.NDArray[np.floating], grid: npt.NDArray[np.floating]
) -> npt.NDArray[np.floating]:
    """Kernel density estimate of `values` on `grid`."""
    # All values equal: the kernel density estimate is undefined
    if np.ptp(values) == 0:
        return np.where(
            np.abs(grid - values[0]) <= (grid[1] - grid[0]) / 2,
            1 / (grid[1] - grid[0]),
            0.0,
        )
    return stats.gaussian_kde(values)(grid)


def plot_ppc(
    observed: npt.ArrayLike,
    replicated: npt.ArrayLike,
    n_draws: "custom_types.Integer" = DEFAULT_PPC_DRAWS,
    title: Optional[str] = None,
) -> hv.Overlay:
    """Posterior predictive check chart.

    :param observed: Observed counts, shape (N,)
    :type observed: npt.ArrayLike
    :param replicated: Replicated counts, shape (S, N)
    :type replicated: npt.ArrayLike
    :param n_draws: Number of replicated data sets to draw (the first `n_draws`
        rows of `replicated`). Defaults to 50.
    :type n_draws: custom_types.Integer
    :param title: Chart title. Defaults to None (no title).
    :type title: Optional[str]

    :returns: Density of every replicated data set (light) overlaid with the
        density of the observed data (dark)
    :rtype: hv.Overlay

    :raises ValueError: If the shapes of `observed` and `replicated` do not match
    """
    observed = np.asarray(observed, dtype=float)
    replicated = np.atleast_2d(np.asarray(replicated, dtype=float))
    if observed.ndim != 1 or replicated.shape[1] != observed.shape[0]:
        raise ValueError(
            f"Replicated data of shape {replicated.shape} does not match observed "
            f"data of shape {observed.shape}."
        )
    replicated = replicated[: int(n_draws)]

    # Common grid spanning every data set
    low = min(observed.min(), replicated.min())
    high = max(observed.max(), replicated.max())
    pad = max((high - low) * 0.1, 1.0)
    grid = np.linspace(low - pad, high + pad, _N_GRID_POINTS)

    kdims, vdims = ["Gesture count"], ["Density"]
    curves = [
        hv.Curve((grid, _density_curve(draw, grid)), kdims=kdims, vdims=vdims).opts(
            color=_REPLICATE_COLOR, alpha=0.5, linewidth=0.8
        )
        for draw in replicated
    ]
    curves.append(
        hv.Curve((grid, _density_curve(observed, grid)), kdims=kdims, vdims=vdims).opts(
            color=_OBSERVED_COLOR, linewidth=2
        )
    )

    return hv.Overlay(curves).opts(title=title or "")


def save_plot(plot: hv.core.dimension.Dimensioned, filename: str, output_dir: str) -> str:
    """Write a chart to disk as a static PNG image.

    :param plot: Chart to save
    :type plot: hv.core.dimension.Dimensioned
    :param filename: Name of the image file
    :type filename: str
    :param output_dir: Directory to write to
    :type output_dir: str

    :returns: Path of the written file
    :rtype: str

    :raises FileNotFoundError: If `output_dir` doesn't exist
    """
    if not os.path.isdir(output_dir):
        raise FileNotFoundError(f"Output directory {output_dir} does not exist.")

    path = os.path.join(output_dir, filename)
    hv.save(plot, path, fmt="png", backend="matplotlib")
    return path
