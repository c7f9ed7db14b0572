# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
GestureStan: Bayesian count regression for paired gesture data with Stan.

GestureStan is a Python package for fitting Bayesian Poisson and negative-binomial
multilevel regression models to gesture-count data collected in a paired
(repeated-measures) design. Sampling is delegated to Stan through CmdStanPy and
posterior analysis to ArviZ; the package provides the glue around them.

Key Features:
    - Validated loading of the gesture table and descriptive summaries
    - Declarative model specifications (family, random effects, exposure, priors)
    - Automatic Stan code generation for every supported specification
    - Conditional effects, brms-style hypothesis tests and posterior draws
    - Leave-one-out cross-validation with moment matching
    - Static charts for conditional effects, posterior densities and PPCs

Global Variables:
    RNG: Global random number generator for reproducible computations
    __version__: Package version string

Example:
    >>> import gesturestan as gs
    >>> gs.manual_seed(42)
    >>> data = gs.load_gestures("dyads.csv")
    >>> results = gs.fit_model(data, family="poisson", exposure="offset")
"""

from typing import Optional, TYPE_CHECKING

from typeguard import install_import_hook

import numpy as np

# Define the version
__version__ = "0.1.0"

# Set up type checking
install_import_hook("gesturestan")

# Define the global random number generator
RNG: np.random.Generator
"""Global random number generator for GestureStan.

This generator provides seeds for Stan whenever a seed is not given explicitly.
It can be seeded using the manual_seed() function to ensure consistent results
across runs.

:type: np.random.Generator
"""

if TYPE_CHECKING:
    from gesturestan import custom_types


def manual_seed(seed: Optional["custom_types.Integer"] = None):
    """Set the seed for the global random number generator.

    :param seed: Seed value for random number generation. If None, uses
                system entropy to generate a random seed.
    :type seed: Union[custom_types.Integer, None]

    Example:
        >>> import gesturestan as gs
        >>> gs.manual_seed(42)
        >>> seed = gs.RNG.integers(0, 2**31 - 1)

    Note:
        This function modifies global state and should typically be called
        once at the beginning of a script or analysis.
    """
    global RNG  # pylint: disable=global-statement
    RNG = np.random.default_rng(seed)


manual_seed()  # Set the seed for the global random number generator

# Import objects that should be easily accessible from the package level
# pylint: disable=wrong-import-position
from gesturestan import utils

from gesturestan.data import check_participant_pairing, load_gestures
from gesturestan.descriptives import (
    compute_rates,
    mean_counts,
    mean_rates,
    summarize_by_condition,
)
from gesturestan.model import (
    GestureModel,
    ModelSpecification,
    Prior,
    SamplerControls,
    fit_model,
)

results = utils.lazy_import("gesturestan.model.results")
plotting = utils.lazy_import("gesturestan.plotting")
