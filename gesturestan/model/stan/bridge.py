# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Posterior density of a GestureStan model evaluated by Stan itself.

Moment matching for leave-one-out cross-validation moves posterior draws around
on Stan's unconstrained scale and needs, at every moved draw, the log posterior
density and the log-likelihood of the left-out observation. This module gets
both from the generated Stan program through BridgeStan, so the density used for
matching is exactly the one that was sampled:

    - ``param_unconstrain`` maps the sampled draws to the unconstrained scale
    - ``log_density`` gives the log posterior density (with the Jacobian of the
      constraining transforms)
    - ``param_constrain`` with the generated quantities gives ``log_lik``

The callbacks take and return :py:class:`xarray.DataArray` objects with
``chain`` and ``draw`` dimensions, the layout
:py:func:`arviz_stats.loo_moment_match` works with.
"""

from __future__ import annotations

import hashlib
import os.path
import weakref

from tempfile import TemporaryDirectory
from typing import Optional, TYPE_CHECKING

import bridgestan
import numpy as np
import numpy.typing as npt
import xarray as xr

from cmdstanpy import write_stan_json

from gesturestan.defaults import DEFAULT_MODEL_NAME
from gesturestan.model.stan.stan_model import StanProgram

if TYPE_CHECKING:
    from gesturestan import custom_types
    from gesturestan.model.model import GestureModel

# Name of the parameter dimension of unconstrained draws
UPARS_DIM = "unconstrained_parameter"

_SAMPLE_DIMS = ("chain", "draw")


class StanDensity:
    """BridgeStan model of a GestureStan model and its table.

    :param model: Model whose posterior density is needed
    :type model: gesturestan.model.model.GestureModel
    :param output_dir: Directory for the Stan program, its data and the compiled
        library. Defaults to None (temporary).
    :type output_dir: Optional[str]
    :param seed: Seed of the random number generator used by the generated
        quantities. Defaults to 1024.
    :type seed: custom_types.Integer

    :raises FileNotFoundError: If `output_dir` doesn't exist

    :ivar model: Reference to the source model
    :ivar program: Generated StanProgram instance
    :ivar output_dir: Directory containing the Stan files
    :ivar bridge: The loaded :py:class:`bridgestan.StanModel`

    The compiled library is named after the program code, so a directory reused
    across calls compiles each program once.

    Example:
        >>> density = StanDensity(model)
        >>> upars = density.unconstrain(results.inference_obj.posterior)
        >>> density.log_prob_upars(upars)
    """

    def __init__(
        self,
        model: "GestureModel",
        output_dir: Optional[str] = None,
        seed: "custom_types.Integer" = 1024,
    ):
        # Note the underlying model and build its program
        self.model = model
        self.program = StanProgram(model.spec)

        # Set the output directory
        self._set_output_dir(output_dir)

        # Write the program and the data
        digest = hashlib.sha1(self.program.code.encode("utf-8")).hexdigest()
        self.stan_program_path = os.path.join(
            self.output_dir, f"{DEFAULT_MODEL_NAME}_{digest[:10]}_bridge.stan"
        )
        with open(self.stan_program_path, "w", encoding="utf-8") as f:
            f.write(self.program.code)
        self.data_path = os.path.join(self.output_dir, "data.json")
        write_stan_json(self.data_path, model.design.stan_data())

        # Compile and load
        library_path = bridgestan.compile_model(self.stan_program_path)
        self.bridge = bridgestan.StanModel(
            str(library_path), data=self.data_path, seed=int(seed)
        )
        self._rng = self.bridge.new_rng(int(seed))

        # Constrained parameter names, e.g. "L_1.2.1", and where each
        # observation's log-likelihood sits in the constrained output
        self.param_names = tuple(self.bridge.param_names())
        constrained_names = self.bridge.param_names(include_tp=True, include_gq=True)
        self._log_lik_index = np.array(
            [
                constrained_names.index(f"log_lik.{n + 1}")
                for n in range(model.design.n_obs)
            ]
        )

    def _set_output_dir(self, output_dir: Optional[str]) -> None:
        """Use `output_dir`, or a temporary directory removed with the object."""
        if output_dir is None:
            tempdir = TemporaryDirectory()
            weakref.finalize(self, tempdir.cleanup)
            output_dir = tempdir.name

        if not os.path.exists(output_dir):
            raise FileNotFoundError(f"Output directory {output_dir} does not exist.")

        self.output_dir = output_dir

    @property
    def n_params(self) -> int:
        """Number of unconstrained parameters."""
        return int(self.bridge.param_unc_num())

    def _constrained_draws(self, posterior: xr.Dataset) -> npt.NDArray[np.floating]:
        """Stack the sampled parameters in BridgeStan's order, shape (C, D, P)."""
        columns = []
        for name in self.param_names:
            variable, *indices = name.split(".")
            values = posterior[variable].transpose(*_SAMPLE_DIMS, ...).to_numpy()
            columns.append(values[(Ellipsis, *(int(i) - 1 for i in indices))])
        return np.stack(columns, axis=-1)

    def unconstrain(self, posterior: xr.Dataset) -> xr.DataArray:
        """Map posterior draws to Stan's unconstrained scale.

        :param posterior: Posterior group of the fit, with the Stan parameter
            names and dimension order
        :type posterior: xr.Dataset

        :returns: Unconstrained draws with dimensions ``chain``, ``draw`` and
            ``unconstrained_parameter``
        :rtype: xr.DataArray
        """
        constrained = self._constrained_draws(posterior)
        n_chains, n_draws = constrained.shape[:2]
        unconstrained = np.array(
            [
                self.bridge.param_unconstrain(np.ascontiguousarray(theta))
                for theta in constrained.reshape(n_chains * n_draws, -1)
            ]
        )
        return xr.DataArray(
            unconstrained.reshape(n_chains, n_draws, -1),
            dims=[*_SAMPLE_DIMS, UPARS_DIM],
            coords={dim: posterior[dim] for dim in _SAMPLE_DIMS},
        )

    def _map_draws(self, upars: xr.DataArray, function) -> xr.DataArray:
        """Apply `function` to every unconstrained draw, giving a (chain, draw) array."""
        param_dim = next(dim for dim in upars.dims if dim not in _SAMPLE_DIMS)
        values = upars.transpose(*_SAMPLE_DIMS, param_dim).to_numpy()
        n_chains, n_draws = values.shape[:2]
        mapped = np.array(
            [
                function(np.ascontiguousarray(theta, dtype=float))
                for theta in values.reshape(n_chains * n_draws, -1)
            ]
        )
        return xr.DataArray(
            mapped.reshape(n_chains, n_draws),
            dims=list(_SAMPLE_DIMS),
            coords={dim: upars[dim] for dim in _SAMPLE_DIMS if dim in upars.coords},
        )

    def log_prob_upars(self, upars: xr.DataArray) -> xr.DataArray:
        """Log posterior density of unconstrained draws, Jacobian included.

        :param upars: Unconstrained draws with dimensions ``chain``, ``draw`` and
            one parameter dimension
        :type upars: xr.DataArray

        :returns: Log density with dimensions ``chain`` and ``draw``
        :rtype: xr.DataArray
        """
        return self._map_draws(
            upars, lambda theta: self.bridge.log_density(theta, propto=True, jacobian=True)
        )

    def log_lik_i_upars(
        self, upars: xr.DataArray, i: "custom_types.Integer"
    ) -> xr.DataArray:
        """Log-likelihood of observation `i` at unconstrained draws.

        :param upars: Unconstrained draws with dimensions ``chain``, ``draw`` and
            one parameter dimension
        :type upars: xr.DataArray
        :param i: Zero-based index of the observation
        :type i: custom_types.Integer

        :returns: Log-likelihood with dimensions ``chain`` and ``draw``
        :rtype: xr.DataArray
        """
        index = self._log_lik_index[int(i)]
        return self._map_draws(
            upars,
            lambda theta: self.bridge.param_constrain(
                theta, include_tp=True, include_gq=True, rng=self._rng
            )[index],
        )
