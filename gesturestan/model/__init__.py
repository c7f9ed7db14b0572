# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Model specification, Stan code generation and fitting for GestureStan.

This subpackage turns declarative model options into fitted Stan models. The
main interfaces are:

    - :py:class:`~gesturestan.model.specification.ModelSpecification`, which
      holds the family, predictors, random-effect structure, exposure handling,
      priors and sampler controls of one model
    - :py:class:`~gesturestan.model.model.GestureModel`, which binds a
      specification to a gesture table and fits it
    - :py:func:`~gesturestan.model.model.fit_model`, a one-call convenience

A typical workflow builds specifications incrementally:

    1. **Fixed effects**: a Poisson model with the condition as predictor.
    2. **Random effects**: random intercepts and slopes by participant, plus the
       log trial duration as an offset.
    3. **Overdispersion**: a negative-binomial model with duration as a rate
       denominator, a weakly informative slope prior and tighter sampler
       controls.

Example:
    >>> import gesturestan as gs
    >>> base = gs.ModelSpecification()
    >>> mixed = base.replace(random_effects="intercept_slope", exposure="offset")
    >>> res = gs.GestureModel(mixed, data).mcmc(seed=1024)
    >>> res.conditional_effects()
"""

from gesturestan.model.design import DesignMatrices
from gesturestan.model.model import GestureModel, fit_model
from gesturestan.model.specification import ModelSpecification, Prior, SamplerControls
