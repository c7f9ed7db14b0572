# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Stan code generation and the CmdStanPy model wrapper.

This module translates a
:py:class:`~gesturestan.model.specification.ModelSpecification` into a Stan
program and manages compiling and running it. Every program follows the same
layout:

    - **data**: number of observations, the counts, the population-level design
      matrix and, where needed, the exposure vector, the number of participants,
      the participant index and the participant-level design matrix
    - **transformed data**: the log of the exposure vector
    - **parameters**: intercept, slopes, group-level standard deviations,
      Cholesky factor of the group-level correlation matrix, standardized
      group-level effects and the negative-binomial shape
    - **transformed parameters**: the participant-level effects, using the
      non-centered parameterization
    - **model**: priors and the likelihood
    - **generated quantities**: expected counts ``mu``, pointwise log-likelihood
      ``log_lik`` and replicated data ``y_rep``

Users will not normally interact with this module directly. Instead, they will
either (1) use the :py:meth:`GestureModel.to_stan()
<gesturestan.model.model.GestureModel.to_stan>` method to convert a model to a
:py:class:`~gesturestan.model.stan.stan_model.StanModel` instance or (2) use this
module implicitly when fitting a model via the :py:meth:`GestureModel.mcmc()
<gesturestan.model.model.GestureModel.mcmc>` method.
"""

from __future__ import annotations

import hashlib
import os.path
import weakref

from tempfile import TemporaryDirectory
from typing import Any, Optional, TYPE_CHECKING

from cmdstanpy import CmdStanModel, format_stan_file

from gesturestan import utils
from gesturestan.defaults import (
    DEFAULT_CPP_OPTIONS,
    DEFAULT_FORCE_COMPILE,
    DEFAULT_INTERCEPT_PRIOR,
    DEFAULT_LKJ_ETA,
    DEFAULT_MODEL_NAME,
    DEFAULT_SD_PRIOR,
    DEFAULT_SHAPE_PRIOR,
    DEFAULT_STANC_OPTIONS,
)
from gesturestan.model.specification import ModelSpecification, SamplerControls

if TYPE_CHECKING:
    from gesturestan import custom_types
    from gesturestan.model.model import GestureModel

results = utils.lazy_import("gesturestan.model.results")

# Function for combining a list of Stan code lines
DEFAULT_INDENTATION = 4


class StanProgram:
    """Stan program generated from a model specification.

    :param spec: Model specification to translate
    :type spec: ModelSpecification

    The program only depends on the specification; the sizes of all containers
    are read from the data block, so one program serves any table with the
    required columns.

    Example:
        >>> program = StanProgram(ModelSpecification(random_effects="intercept"))
        >>> print(program.code)
    """

    def __init__(self, spec: ModelSpecification):
        self.spec = spec

    def finalize_line(
        self, text: str, indentation_level: "custom_types.Integer" = 1
    ) -> str:
        """Apply indentation and Stan statement termination to a code line.

        :param text: Raw code text to format
        :type text: str
        :param indentation_level: Indentation level. Defaults to 1.
        :type indentation_level: custom_types.Integer

        :returns: Formatted Stan code line
        :rtype: str

        A semicolon is appended unless the line is blank, opens or closes a
        scope, already ends in a semicolon or is a comment.
        """
        # Pad the input text with spaces
        formatted = f"{' ' * DEFAULT_INDENTATION * indentation_level}{text}"

        # Add a semicolon to the end if not a bracket or blank
        if text and text[-1] not in {"{", "}", ";"} and not text.startswith("//"):
            formatted += ";"

        return formatted

    def combine_lines(
        self, lines: list[str], indentation_level: "custom_types.Integer" = 1
    ) -> str:
        """Combine multiple Stan code lines with consistent formatting.

        :param lines: List of code lines to combine
        :type lines: list[str]
        :param indentation_level: Indentation level for all lines. Defaults to 1.
        :type indentation_level: custom_types.Integer

        :returns: Combined and formatted Stan code
        :rtype: str
        """
        # Nothing if no lines
        if len(lines) == 0:
            return ""

        # Combine the lines
        return "\n".join(
            self.finalize_line(el, indentation_level=indentation_level) for el in lines
        )

    def _wrap_block(self, name: str, lines: list[str]) -> str:
        """Enclose lines in a named program block. Empty blocks are omitted."""
        if len(lines) == 0:
            return ""
        return f"{name} {{\n" + self.combine_lines(lines) + "\n}"

    @property
    def is_negbinomial(self) -> bool:
        """Whether the response is negative binomial."""
        return self.spec.family == "negbinomial"

    @property
    def is_correlated(self) -> bool:
        """Whether the model has correlated random intercepts and slopes."""
        return self.spec.random_effects == "intercept_slope"

    @property
    def shape_expression(self) -> str:
        """Stan expression of the negative-binomial shape for the whole vector."""
        return "phi" if self.spec.exposure == "rate" else "shape"

    @property
    def linear_predictor_lines(self) -> list[str]:
        """Statements that define ``eta``, the log of the expected counts.

        The exposure enters the same way for "offset" and "rate"; they differ only
        in the negative-binomial shape.
        """
        lines = ["vector[N] eta = Intercept + X * b"]
        if self.spec.has_random_effects:
            lines.append("eta += rows_dot_product(r_1[group], Z)")
        if self.spec.has_exposure:
            lines.append("eta += log_expo")
        if self.is_negbinomial and self.spec.exposure == "rate":
            lines.append("vector[N] phi = shape * expo")
        return lines

    def log_likelihood(self, index: str = "") -> str:
        """Stan log-probability expression of the response.

        :param index: Index of a single observation (e.g. "n"). Defaults to "" for
            the vectorized expression over all observations.
        :type index: str

        :returns: Stan expression
        :rtype: str
        """
        suffix = f"[{index}]" if index else ""
        if self.is_negbinomial:
            shape = self.shape_expression + (
                suffix if self.spec.exposure == "rate" else ""
            )
            return f"neg_binomial_2_log_lpmf(Y{suffix} | eta{suffix}, {shape})"
        return f"poisson_log_lpmf(Y{suffix} | eta{suffix})"

    def random_draw(self, index: str) -> str:
        """Stan expression drawing one replicated observation."""
        if self.is_negbinomial:
            shape = "phi[" + index + "]" if self.spec.exposure == "rate" else "shape"
            return f"neg_binomial_2_log_rng(eta[{index}], {shape})"
        return f"poisson_log_rng(eta[{index}])"

    @property
    def prior_lines(self) -> list[str]:
        """Prior statements for every parameter of the model."""
        lines = []

        # Intercept: user prior or the default Student-t
        if (intercept_prior := self.spec.prior_for("Intercept")) is not None:
            lines.append(intercept_prior.stan_statement())
        else:
            df, loc, scale = DEFAULT_INTERCEPT_PRIOR
            lines.append(f"target += student_t_lpdf(Intercept | {df}, {loc}, {scale})")

        # Slopes: flat unless the user gives a prior
        if (slope_prior := self.spec.prior_for("b")) is not None:
            lines.append(slope_prior.stan_statement())

        # Group-level terms. The SDs get a half Student-t.
        if self.spec.has_random_effects:
            df, loc, scale = DEFAULT_SD_PRIOR
            lines.append(
                f"target += student_t_lpdf(sd_1 | {df}, {loc}, {scale})"
                f" - M * student_t_lccdf(0 | {df}, {loc}, {scale})"
            )
            if self.is_correlated:
                lines.append(f"target += lkj_corr_cholesky_lpdf(L_1 | {DEFAULT_LKJ_ETA})")
            lines.append("target += std_normal_lpdf(to_vector(z_1))")

        # Family parameters
        if self.is_negbinomial:
            alpha, beta = DEFAULT_SHAPE_PRIOR
            lines.append(f"target += gamma_lpdf(shape | {alpha}, {beta})")

        return lines

    @property
    def data_block(self) -> str:
        """Generate Stan data block.

        :returns: Stan data block code
        :rtype: str
        """
        declarations = [
            "int<lower=1> N",
            "array[N] int<lower=0> Y",
            "int<lower=0> K",
            "matrix[N, K] X",
        ]
        if self.spec.has_exposure:
            declarations.append("vector<lower=0>[N] expo")
        if self.spec.has_random_effects:
            declarations.extend(
                [
                    "int<lower=1> J",
                    "int<lower=1> M",
                    "array[N] int<lower=1, upper=J> group",
                    "matrix[N, M] Z",
                ]
            )
        return self._wrap_block("data", declarations)

    @property
    def transformed_data_block(self) -> str:
        """Generate Stan transformed data block, empty without an exposure term.

        :returns: Stan transformed data block code or empty string if not needed
        :rtype: str
        """
        if not self.spec.has_exposure:
            return ""
        return self._wrap_block("transformed data", ["vector[N] log_expo = log(expo)"])

    @property
    def parameters_block(self) -> str:
        """Generate Stan parameters block.

        :returns: Stan parameters block code
        :rtype: str
        """
        declarations = ["real Intercept", "vector[K] b"]
        if self.spec.has_random_effects:
            declarations.append("vector<lower=0>[M] sd_1")
            if self.is_correlated:
                declarations.append("cholesky_factor_corr[M] L_1")
            declarations.append("matrix[M, J] z_1")
        if self.is_negbinomial:
            declarations.append("real<lower=0> shape")
        return self._wrap_block("parameters", declarations)

    @property
    def transformed_parameters_block(self) -> str:
        """Generate Stan transformed parameters block with the participant effects.

        :returns: Stan transformed parameters block code or empty string if not needed
        :rtype: str
        """
        if not self.spec.has_random_effects:
            return ""
        scaled = (
            "diag_pre_multiply(sd_1, L_1) * z_1"
            if self.is_correlated
            else "diag_pre_multiply(sd_1, z_1)"
        )
        return self._wrap_block(
            "transformed parameters", [f"matrix[J, M] r_1 = ({scaled})'"]
        )

    @property
    def model_block(self) -> str:
        """Generate Stan model block with priors and the likelihood.

        :returns: Stan model block code
        :rtype: str
        """
        return self._wrap_block(
            "model",
            self.linear_predictor_lines
            + self.prior_lines
            + [f"target += {self.log_likelihood()}"],
        )

    @property
    def generated_quantities_block(self) -> str:
        """Generate Stan generated quantities block.

        :returns: Stan generated quantities block code
        :rtype: str

        The linear predictor is rebuilt in a local scope so that it is not written
        to the output.
        """
        declarations = ["vector[N] mu", "vector[N] log_lik", "array[N] int y_rep"]
        if self.is_correlated:
            declarations.append(
                "matrix[M, M] Omega_1 = multiply_lower_tri_self_transpose(L_1)"
            )
        loop = [
            f"log_lik[n] = {self.log_likelihood('n')}",
            f"y_rep[n] = {self.random_draw('n')}",
        ]
        return "\n".join(
            [
                "generated quantities {",
                self.combine_lines(declarations),
                self.finalize_line("{"),
                self.combine_lines(self.linear_predictor_lines + ["mu = exp(eta)"], 2),
                self.finalize_line("for (n in 1:N) {", 2),
                self.combine_lines(loop, 3),
                self.finalize_line("}", 2),
                self.finalize_line("}"),
                "}",
            ]
        )

    @property
    def code(self) -> str:
        """Generate complete Stan program code.

        :returns: Complete Stan program as formatted string
        :rtype: str
        """
        # Join steps that have contents
        return "\n".join(
            val
            for val in (
                self.data_block,
                self.transformed_data_block,
                self.parameters_block,
                self.transformed_parameters_block,
                self.model_block,
                self.generated_quantities_block,
            )
            if len(val.strip()) > 0
        )

    @property
    def parameter_names(self) -> tuple[str, ...]:
        """Names of the variables declared in the parameters block."""
        names = ["Intercept", "b"]
        if self.spec.has_random_effects:
            names.append("sd_1")
            if self.is_correlated:
                names.append("L_1")
            names.append("z_1")
        if self.is_negbinomial:
            names.append("shape")
        return tuple(names)


class StanModel(CmdStanModel):
    """CmdStanModel built from a GestureStan model.

    :param model: Model to compile to Stan
    :type model: gesturestan.model.model.GestureModel
    :param output_dir: Directory for Stan files and compilation. Defaults to None
        (temporary).
    :type output_dir: Optional[str]
    :param force_compile: Whether to force recompilation. Defaults to False.
    :type force_compile: bool
    :param stanc_options: Options for Stan compiler. Defaults to None (uses defaults).
    :type stanc_options: Optional[dict[str, Any]]
    :param cpp_options: Options for C++ compilation. Defaults to None (uses defaults).
    :type cpp_options: Optional[dict[str, Any]]
    :param model_name: Name for compiled model. Defaults to None, in which case
        the name is derived from the program code so that different
        specifications never share an executable.
    :type model_name: Optional[str]

    :ivar model: Reference to the source model
    :ivar program: Generated StanProgram instance
    :ivar output_dir: Directory containing Stan files
    :ivar stan_executable_path: Path to compiled Stan executable
    """

    def __init__(
        self,
        model: "GestureModel",
        output_dir: Optional[str] = None,
        force_compile: bool = DEFAULT_FORCE_COMPILE,
        stanc_options: Optional[dict[str, Any]] = None,
        cpp_options: Optional[dict[str, Any]] = None,
        model_name: Optional[str] = None,
    ):
        # Set default options
        self._stanc_options = dict(stanc_options or DEFAULT_STANC_OPTIONS)
        cpp_options = dict(cpp_options or DEFAULT_CPP_OPTIONS)

        # Note the underlying model and build its program
        self.model = model
        self.program = StanProgram(model.spec)

        # Set the output directory
        self._set_output_dir(output_dir)

        # Get the model name
        if model_name is None:
            digest = hashlib.sha1(self.program.code.encode("utf-8")).hexdigest()
            model_name = f"{DEFAULT_MODEL_NAME}_{digest[:10]}"
        self.stan_executable_path = os.path.join(self.output_dir, model_name)

        # Write the Stan program
        self.write_stan_program()

        # Initialize the CmdStanModel
        super().__init__(
            stan_file=self.stan_program_path,
            exe_file=(
                self.stan_executable_path
                if os.path.exists(self.stan_executable_path) and not force_compile
                else None
            ),
            force_compile=force_compile,
            stanc_options=self._stanc_options,
            cpp_options=cpp_options,
        )

    def _set_output_dir(self, output_dir: Optional[str]) -> None:
        """Configure output directory with automatic cleanup for temporary directories.

        :param output_dir: Directory path or None for temporary directory
        :type output_dir: Optional[str]

        :raises FileNotFoundError: If specified directory doesn't exist
        """
        # Make a temporary directory if none is specified. Set up a weak reference
        # to clean up the temporary directory when the model is deleted.
        if output_dir is None:
            tempdir = TemporaryDirectory()
            weakref.finalize(self, tempdir.cleanup)
            output_dir = tempdir.name

        # Make sure the output directory exists
        if not os.path.exists(output_dir):
            raise FileNotFoundError(f"Output directory {output_dir} does not exist.")

        # Set the output directory
        self.output_dir = output_dir

    def write_stan_program(self) -> None:
        """Write and format the generated Stan program to disk.

        The written file can be inspected, modified, or used independently of
        GestureStan for debugging.
        """
        # Write the raw code
        with open(self.stan_program_path, "w", encoding="utf-8") as f:
            f.write(self.code())

        # Format the code
        format_stan_file(
            self.stan_program_path,
            overwrite_file=True,
            canonicalize=True,
            stanc_options=self._stanc_options,
        )

    def gather_inputs(self) -> dict[str, "custom_types.SampleType"]:
        """Gather the data dictionary for sampling from the model's table.

        :returns: Complete data dictionary for Stan sampling
        :rtype: dict[str, custom_types.SampleType]
        """
        return self.model.design.stan_data()

    def code(self) -> str:
        """Get the complete Stan program code.

        :returns: Stan program code as formatted string
        :rtype: str
        """
        return self.program.code

    def sample(  # pylint: disable=arguments-differ
        self,
        controls: Optional[SamplerControls] = None,
        **kwargs,
    ) -> "results.SampleResults":
        """Run NUTS on the model's table.

        :param controls: Sampler controls. Defaults to None (those of the model's
            specification).
        :type controls: Optional[SamplerControls]
        :param kwargs: Further keyword arguments passed to
            :py:meth:`cmdstanpy.CmdStanModel.sample` (e.g. ``show_progress``)

        :returns: Sampling results
        :rtype: results.SampleResults

        Errors raised by CmdStanPy or Stan (invalid settings, failed sampling)
        propagate unchanged.
        """
        controls = self.model.spec.controls if controls is None else controls

        # Run the sampler
        fit = super().sample(
            data=self.gather_inputs(), **controls.to_cmdstanpy(), **kwargs
        )

        # Build the results object
        return results.SampleResults.from_fit(model=self.model, fit=fit)

    @property
    def stan_program_path(self) -> str:
        """Get path to the generated Stan program file.

        :returns: Full path to .stan file
        :rtype: str
        """
        return self.stan_executable_path + ".stan"
