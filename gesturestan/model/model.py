# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Models binding a specification to a gesture table.

A :py:class:`GestureModel` pairs a
:py:class:`~gesturestan.model.specification.ModelSpecification` with the table it
is fit to, builds the design matrices once, and exposes the two steps of a fit:
conversion to a compiled Stan model and sampling.
"""

from __future__ import annotations

import dataclasses

from typing import Any, Optional

import pandas as pd

from gesturestan import utils
from gesturestan.defaults import DEFAULT_FORCE_COMPILE
from gesturestan.model.design import DesignMatrices
from gesturestan.model.specification import ModelSpecification, SamplerControls
from gesturestan.model.stan import stan_model

hmc_results = utils.lazy_import("gesturestan.model.results.hmc")

# Fields of SamplerControls that `mcmc` accepts as overrides
_CONTROL_FIELDS = frozenset(
    field.name for field in dataclasses.fields(SamplerControls)
)


class GestureModel:
    """A model specification applied to a gesture table.

    :param spec: Model specification
    :type spec: ModelSpecification
    :param data: Gesture table (see :py:func:`gesturestan.data.load_gestures`)
    :type data: pd.DataFrame

    :ivar spec: The model specification
    :ivar data: The gesture table
    :ivar design: Design matrices built from the table

    Example:
        >>> spec = ModelSpecification(random_effects="intercept_slope", exposure="offset")
        >>> model = GestureModel(spec, data)
        >>> results = model.mcmc(seed=1024)
    """

    def __init__(self, spec: ModelSpecification, data: pd.DataFrame):
        self.spec = spec
        self.data = data
        self.design = DesignMatrices.from_data(spec, data)

    def __repr__(self) -> str:
        return f"GestureModel(\n{self.spec}\nObservations: {self.design.n_obs}\n)"

    def to_stan(self, **kwargs) -> "stan_model.StanModel":
        """Compile the model to Stan code for MCMC sampling.

        :param kwargs: Additional compilation options passed to StanModel

        :returns: Compiled Stan model ready for MCMC sampling
        :rtype: stan_model.StanModel
        """
        return stan_model.StanModel(self, **kwargs)

    def mcmc(
        self,
        *,
        output_dir: Optional[str] = None,
        force_compile: bool = DEFAULT_FORCE_COMPILE,
        stanc_options: Optional[dict[str, Any]] = None,
        cpp_options: Optional[dict[str, Any]] = None,
        model_name: Optional[str] = None,
        **overrides,
    ) -> "hmc_results.SampleResults":
        """Fit the model with Stan's NUTS sampler.

        :param output_dir: Directory for compilation and output files. Defaults to
            None, in which case all raw outputs are saved to a temporary directory
            and are accessible only for the lifetime of this Python process.
        :type output_dir: Optional[str]
        :param force_compile: Whether to force recompilation of Stan model.
            Defaults to False.
        :type force_compile: bool
        :param stanc_options: Options for Stan compiler. Defaults to None (uses
            DEFAULT_STANC_OPTIONS).
        :type stanc_options: Optional[dict[str, Any]]
        :param cpp_options: Options for C++ compilation. Defaults to None (uses
            DEFAULT_CPP_OPTIONS).
        :type cpp_options: Optional[dict[str, Any]]
        :param model_name: Name for compiled model. Defaults to None (derived from
            the program).
        :type model_name: Optional[str]
        :param overrides: Sampler controls replacing those of the specification
            (``adapt_delta``, ``max_treedepth``, ``iter``, ``warmup``, ``chains``,
            ``seed``, ``use_all_cores``). Anything else is passed to
            :py:meth:`cmdstanpy.CmdStanModel.sample`.

        :returns: MCMC results
        :rtype: hmc_results.SampleResults

        Example:
            >>> results = model.mcmc(adapt_delta=0.99, max_treedepth=15, seed=1)
        """
        # Split the overrides into sampler controls and CmdStanPy arguments
        control_overrides = {k: v for k, v in overrides.items() if k in _CONTROL_FIELDS}
        sample_kwargs = {k: v for k, v in overrides.items() if k not in _CONTROL_FIELDS}
        controls = dataclasses.replace(self.spec.controls, **control_overrides)

        # Build the Stan model and sample
        model = self.to_stan(
            output_dir=output_dir,
            force_compile=force_compile,
            stanc_options=stanc_options,
            cpp_options=cpp_options,
            model_name=model_name,
        )
        return model.sample(controls=controls, **sample_kwargs)


def fit_model(
    data: pd.DataFrame,
    spec: Optional[ModelSpecification] = None,
    **spec_options,
) -> "hmc_results.SampleResults":
    """Build and fit a model in one call.

    :param data: Gesture table
    :type data: pd.DataFrame
    :param spec: Base specification. Defaults to None (``ModelSpecification()``).
    :type spec: Optional[ModelSpecification]
    :param spec_options: Options of :py:class:`ModelSpecification` replacing those
        of `spec`. Sampler control fields (``adapt_delta``, ``seed``, ...) may be
        given directly.

    :returns: MCMC results
    :rtype: hmc_results.SampleResults

    Example:
        >>> results = fit_model(data, family="negbinomial", exposure="rate",
        ...                     priors=[Prior("b", 0, 0.5)], adapt_delta=0.99)
    """
    spec = ModelSpecification() if spec is None else spec

    # Sampler control fields are folded into the controls of the specification
    control_overrides = {
        k: spec_options.pop(k) for k in list(spec_options) if k in _CONTROL_FIELDS
    }
    if control_overrides:
        spec_options["controls"] = dataclasses.replace(
            spec_options.get("controls", spec.controls), **control_overrides
        )

    return GestureModel(spec.replace(**spec_options), data).mcmc()
