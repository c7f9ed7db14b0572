# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Stan probabilistic programming language integration for GestureStan.

This submodule connects GestureStan model specifications to the Stan
probabilistic programming language. It generates a Stan program for every
supported combination of family, random-effect structure, exposure handling and
priors, writes and compiles it through CmdStanPy, and turns the fitted output into
:py:class:`~gesturestan.model.results.hmc.SampleResults`.

**Key Components:**
    - Automatic Code Generation: Converts model specifications to Stan language
    - Compilation Management: Handles Stan-to-C++ compilation with caching
    - Sampling Interface: Passes sampler controls through to Stan's NUTS sampler
    - Density Evaluation: Exposes the log density of the same program through
      BridgeStan for moment-matched leave-one-out cross-validation
"""

from gesturestan.model.stan.stan_model import StanModel, StanProgram
from gesturestan.model.stan.bridge import StanDensity
