# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Plotting utilities for GestureStan.

This subpackage draws the charts of a gesture count analysis: conditional
effects, posterior densities and posterior predictive checks, plus a helper that
writes them to disk as PNG images.

The plotting utilities are built on top of holoviews and hvplot, rendered with
the matplotlib backend.
"""

from .plotting import (
    plot_conditional_effects,
    plot_posterior_density,
    plot_ppc,
    save_plot,
)
