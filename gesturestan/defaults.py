# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Default configuration values for GestureStan package components.

This module centralizes default values used across the GestureStan package,
including the expected layout of the input table, sampler settings, default
priors, Stan compiler options, diagnostic thresholds, and the names of the
charts written by the tutorial pipeline.

The module is organized into logical groups covering:
    - Input table layout
    - Stan model compilation and sampling settings
    - Default priors of the generated Stan programs
    - Diagnostic thresholds for model validation
    - Output artifacts

Default values cannot be programmatically altered. This documentation serves as a
reference for users and developers to understand the standard configuration used
by GestureStan.
"""

from typing import Any

# Input table layout
ID_COLUMN: str = "ID"
"""Name of the participant identifier column.

:type: str
"""

CONDITION_COLUMN: str = "context"
"""Name of the experimental condition column.

:type: str
"""

DURATION_COLUMN: str = "dur"
"""Name of the trial duration column (seconds).

:type: str
"""

COUNT_COLUMN: str = "gestures"
"""Name of the gesture count column.

:type: str
"""

EXPECTED_COLUMNS: tuple[str, ...] = (
    ID_COLUMN,
    CONDITION_COLUMN,
    DURATION_COLUMN,
    "language",
    "gender",
    COUNT_COLUMN,
)
"""Canonical header of the gesture table, in output order.

:type: tuple[str, ...]
"""

CATEGORICAL_COLUMNS: tuple[str, ...] = (ID_COLUMN, CONDITION_COLUMN, "language", "gender")
"""Columns that are loaded as pandas categoricals.

:type: tuple[str, ...]
"""

ROWS_PER_PARTICIPANT: int = 2
"""Number of rows every participant contributes (one per condition).

:type: int
"""

# Defaults for the Stan model
DEFAULT_FORCE_COMPILE: bool = False
"""Default setting for forcing Stan model recompilation.

When False, uses cached compiled models when available. When True,
forces recompilation even if a cached version exists.

:type: bool
"""

DEFAULT_STANC_OPTIONS: dict[str, Any] = {"warn-pedantic": True, "O1": True}
"""Default options passed to the Stan compiler (stanc).

:type: dict[str, bool]
"""

DEFAULT_CPP_OPTIONS: dict[str, Any] = {}
"""Default C++ compilation options for Stan models.

:type: dict[str, Any]
"""

DEFAULT_MODEL_NAME: str = "model"
"""Default name for generated Stan models.

:type: str
"""

# Sampler defaults
DEFAULT_CHAINS: int = 4
"""Default number of MCMC chains.

:type: int
"""

DEFAULT_ITER: int = 2000
"""Default total number of iterations per chain, warmup included.

:type: int
"""

DEFAULT_ADAPT_DELTA: float = 0.8
"""Default target acceptance probability of the NUTS step-size adaptation.

Raising it toward 1 shrinks the step size, which removes most divergent
transitions at the cost of slower sampling.

:type: float
"""

DEFAULT_MAX_TREEDEPTH: int = 10
"""Default maximum recursion depth of the NUTS trajectory builder.

:type: int
"""

ALL_CORES_ENV_VAR: str = "GESTURESTAN_USE_ALL_CORES"
"""Environment variable that, when set to a truthy value, runs chains in
parallel on all available cores.

:type: str
"""

# Default priors of the generated Stan programs
DEFAULT_INTERCEPT_PRIOR: tuple[float, float, float] = (3.0, 0.0, 2.5)
"""Student-t (degrees of freedom, location, scale) prior on the intercept.

:type: tuple[float, float, float]
"""

DEFAULT_SD_PRIOR: tuple[float, float, float] = (3.0, 0.0, 2.5)
"""Half Student-t (degrees of freedom, location, scale) prior on group-level
standard deviations.

:type: tuple[float, float, float]
"""

DEFAULT_LKJ_ETA: float = 1.0
"""Shape of the LKJ prior on group-level correlations.

:type: float
"""

DEFAULT_SHAPE_PRIOR: tuple[float, float] = (0.01, 0.01)
"""Gamma (shape, rate) prior on the negative-binomial shape parameter.

:type: tuple[float, float]
"""

# Defaults for Stan diagnostics
DEFAULT_ESS_THRESH: int = 100  # Per chain
"""Default threshold for Effective Sample Size (ESS) per chain.

:type: int
"""

DEFAULT_RHAT_THRESH: float = 1.01
"""Default threshold for R-hat convergence diagnostic.

:type: float
"""

DEFAULT_MAX_MM_ITERS: int = 30
"""Maximum number of moment-matching iterations per observation.

:type: int
"""

# Result inspection defaults
DEFAULT_CI_PROB: float = 0.95
"""Default probability mass of credible intervals.

:type: float
"""

DEFAULT_PPC_DRAWS: int = 50
"""Default number of replicated data sets drawn in posterior predictive checks.

:type: int
"""

# Output artifacts
CONDITIONAL_EFFECTS_PLOT: str = "conditional_effects.png"
"""File name of the conditional effects chart.

:type: str
"""

POISSON_PPC_PLOT: str = "pp_check_poisson.png"
"""File name of the Poisson posterior predictive check chart.

:type: str
"""

NEGBINOMIAL_PPC_PLOT: str = "pp_check_negbinomial.png"
"""File name of the negative-binomial posterior predictive check chart.

:type: str
"""

POSTERIOR_DENSITY_PLOT: str = "posterior_density.png"
"""File name of the posterior density chart.

:type: str
"""
