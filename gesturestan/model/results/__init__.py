# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Posterior analysis of fitted GestureStan models.

This submodule turns the output of a fit into the quantities reported in an
analysis of gesture counts:

   1. :py:class:`gesturestan.model.results.hmc.SampleResults`, which holds the
      results of calls to :py:meth:`gesturestan.model.model.GestureModel.mcmc`
      and provides summaries, conditional effects, hypothesis tests, posterior
      draws, diagnostics and leave-one-out cross-validation.
   2. :py:mod:`gesturestan.model.results.hypothesis`, which evaluates brms-style
      hypotheses on posterior draws.
   3. :py:mod:`gesturestan.model.results.loo`, which runs PSIS-LOO with moment
      matching for observations with high Pareto k values and compares models,
      both through :py:mod:`arviz_stats`.

The ``inference_obj`` attribute of the results class is an ArviZ InferenceData
object, so everything ArviZ offers remains available for further analysis.

Users will not typically instantiate result classes directly. Instead, they are
returned by :py:meth:`gesturestan.model.model.GestureModel.mcmc`:

.. code-block:: python

    import gesturestan as gs

    res = gs.GestureModel(spec, data).mcmc(seed=1024)
    res.summary()
    res.conditional_effects()
    res.hypothesis("exp(Intercept + contextprofessor * 1) = 4")
"""

from gesturestan.model.results.hmc import SampleResults, rename_summary_columns
from gesturestan.model.results.hypothesis import HypothesisResult, evaluate_hypothesis
from gesturestan.model.results.loo import compare_models, loo_moment_match
