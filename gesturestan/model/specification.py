# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Declarative specifications of count regression models.

A :py:class:`ModelSpecification` collects everything that defines one fit: the
response family, the population-level predictors, the participant-level random
effect structure, how trial duration enters the model, any user priors, and the
sampler controls. Specifications are immutable; the tutorial builds them up
incrementally with :py:meth:`ModelSpecification.replace`.

Specifications do not check whether a combination of options is sensible. Any
combination is turned into a Stan program, and problems surface as whatever
Stan or CmdStanPy raise.
"""

from __future__ import annotations

import dataclasses

from typing import Any, Optional, TYPE_CHECKING

import gesturestan

from gesturestan import utils
from gesturestan.defaults import (
    COUNT_COLUMN,
    DEFAULT_ADAPT_DELTA,
    DEFAULT_CHAINS,
    DEFAULT_ITER,
    DEFAULT_MAX_TREEDEPTH,
    DURATION_COLUMN,
    ID_COLUMN,
    CONDITION_COLUMN,
)

if TYPE_CHECKING:
    from gesturestan import custom_types

# Recognized option values
FAMILIES = ("poisson", "negbinomial")
RANDOM_EFFECTS = ("none", "intercept", "intercept_slope")
EXPOSURES = ("none", "offset", "rate")
PRIOR_TARGETS = ("Intercept", "b")


def _check_option(name: str, value: str, options: tuple[str, ...]) -> None:
    """Raise a ValueError if `value` is not one of `options`."""
    if value not in options:
        raise ValueError(
            f"Invalid {name}: {value!r}. Options are: {', '.join(options)}."
        )


@dataclasses.dataclass(frozen=True)
class Prior:
    """Normal prior on a class of regression coefficients.

    :param parameter: Coefficient class the prior applies to, "b" for the slopes
        or "Intercept". Defaults to "b".
    :type parameter: custom_types.PriorTarget
    :param location: Mean of the normal prior. Defaults to 0.0.
    :type location: custom_types.Float
    :param scale: Standard deviation of the normal prior. Defaults to 1.0.
    :type scale: custom_types.Float

    :raises ValueError: If the parameter class is unknown or the scale is not positive

    Example:
        >>> Prior("b", 0.0, 0.5)
        prior(normal(0.0, 0.5), class = b)
    """

    parameter: str = "b"
    location: float = 0.0
    scale: float = 1.0

    def __post_init__(self):
        _check_option("prior parameter", self.parameter, PRIOR_TARGETS)
        if not self.scale > 0:
            raise ValueError(f"Prior scale must be positive, got {self.scale}.")

    def __repr__(self) -> str:
        return (
            f"prior(normal({self.location}, {self.scale}), class = {self.parameter})"
        )

    def stan_statement(self) -> str:
        """Stan `target` increment for this prior."""
        return (
            f"target += normal_lpdf({self.parameter} | {self.location}, {self.scale})"
        )


@dataclasses.dataclass(frozen=True)
class SamplerControls:
    """Settings passed to Stan's NUTS sampler.

    :param adapt_delta: Target acceptance probability. Defaults to 0.8.
    :type adapt_delta: custom_types.Float
    :param max_treedepth: Maximum recursion depth of the trajectory builder.
        Defaults to 10.
    :type max_treedepth: custom_types.Integer
    :param iter: Total iterations per chain, warmup included. Defaults to 2000.
    :type iter: custom_types.Integer
    :param warmup: Warmup iterations per chain. Defaults to None (half of `iter`).
    :type warmup: Optional[custom_types.Integer]
    :param chains: Number of chains. Defaults to 4.
    :type chains: custom_types.Integer
    :param seed: Random seed. Defaults to None (drawn from the global RNG when
        sampling starts).
    :type seed: Optional[custom_types.Integer]
    :param use_all_cores: Run chains in parallel on all available cores. Defaults
        to None (decided by the environment toggle).
    :type use_all_cores: Optional[bool]

    Divergent transitions reported after a fit are usually removed by raising
    `adapt_delta` toward 1 (e.g. 0.99); warnings about saturated tree depth by
    raising `max_treedepth`.
    """

    adapt_delta: float = DEFAULT_ADAPT_DELTA
    max_treedepth: int = DEFAULT_MAX_TREEDEPTH
    iter: int = DEFAULT_ITER
    warmup: Optional[int] = None
    chains: int = DEFAULT_CHAINS
    seed: Optional[int] = None
    use_all_cores: Optional[bool] = None

    @property
    def n_warmup(self) -> int:
        """Number of warmup iterations per chain."""
        return int(self.iter // 2 if self.warmup is None else self.warmup)

    @property
    def n_sampling(self) -> int:
        """Number of post-warmup iterations per chain."""
        return int(self.iter - self.n_warmup)

    def to_cmdstanpy(self) -> dict[str, Any]:
        """Keyword arguments for :py:meth:`cmdstanpy.CmdStanModel.sample`.

        :returns: Sampling keyword arguments
        :rtype: dict[str, Any]
        """
        parallel_chains = (
            min(self.chains, utils.available_cores())
            if utils.use_all_cores(self.use_all_cores)
            else 1
        )
        seed = (
            int(gesturestan.RNG.integers(0, 2**31 - 1))
            if self.seed is None
            else self.seed
        )
        return {
            "chains": self.chains,
            "parallel_chains": parallel_chains,
            "iter_warmup": self.n_warmup,
            "iter_sampling": self.n_sampling,
            "adapt_delta": self.adapt_delta,
            "max_treedepth": self.max_treedepth,
            "seed": seed,
        }


@dataclasses.dataclass(frozen=True)
class ModelSpecification:
    """Complete description of one count regression model.

    :param family: Response distribution. Defaults to "poisson".
    :type family: custom_types.Family
    :param predictors: Population-level predictors; categorical predictors are
        treatment coded. The intercept is always included. Defaults to ("context",).
    :type predictors: tuple[str, ...]
    :param random_effects: Participant-level structure: "none", "intercept"
        (random intercepts) or "intercept_slope" (random intercepts and slopes for
        all predictors, with correlations). Defaults to "none".
    :type random_effects: custom_types.RandomEffects
    :param exposure: Duration handling: "none", "offset" (``log(dur)`` added to the
        linear predictor) or "rate" (mean multiplied by ``dur``; for the negative
        binomial the shape is multiplied by ``dur`` too). Defaults to "none".
    :type exposure: custom_types.Exposure
    :param priors: User priors replacing the defaults. Defaults to ().
    :type priors: tuple[Prior, ...]
    :param controls: Sampler controls. Defaults to ``SamplerControls()``.
    :type controls: SamplerControls
    :param response: Count column. Defaults to "gestures".
    :type response: str
    :param group: Grouping column of the random effects. Defaults to "ID".
    :type group: str
    :param duration: Duration column. Defaults to "dur".
    :type duration: str

    :raises ValueError: If an option value is not recognized
    """

    family: str = "poisson"
    predictors: tuple[str, ...] = (CONDITION_COLUMN,)
    random_effects: str = "none"
    exposure: str = "none"
    priors: tuple[Prior, ...] = ()
    controls: SamplerControls = dataclasses.field(default_factory=SamplerControls)
    response: str = COUNT_COLUMN
    group: str = ID_COLUMN
    duration: str = DURATION_COLUMN

    def __post_init__(self):
        _check_option("family", self.family, FAMILIES)
        _check_option("random effect structure", self.random_effects, RANDOM_EFFECTS)
        _check_option("exposure", self.exposure, EXPOSURES)

        # Lists are accepted for convenience but stored as tuples
        object.__setattr__(self, "predictors", tuple(self.predictors))
        object.__setattr__(self, "priors", tuple(self.priors))

    def replace(self, **changes: Any) -> "ModelSpecification":
        """Copy of this specification with some options changed.

        Example:
            >>> base = ModelSpecification()
            >>> mixed = base.replace(random_effects="intercept", exposure="offset")
        """
        return dataclasses.replace(self, **changes)

    @property
    def has_random_effects(self) -> bool:
        """Whether the model has participant-level terms."""
        return self.random_effects != "none"

    @property
    def has_exposure(self) -> bool:
        """Whether duration enters the model."""
        return self.exposure != "none"

    def prior_for(self, parameter: "custom_types.PriorTarget") -> Optional[Prior]:
        """The user prior on a parameter class, if any (the last one given wins)."""
        matching = [prior for prior in self.priors if prior.parameter == parameter]
        return matching[-1] if matching else None

    @property
    def formula(self) -> str:
        """brms-style formula of the model.

        Example:
            >>> ModelSpecification(random_effects="intercept_slope", exposure="offset").formula
            'gestures ~ 1 + context + (1 + context | ID) + offset(log(dur))'
        """
        # Left-hand side
        lhs = self.response
        if self.exposure == "rate":
            lhs += f" | rate({self.duration})"

        # Population-level terms
        terms = ["1", *self.predictors]

        # Group-level terms
        if self.random_effects == "intercept":
            terms.append(f"(1 | {self.group})")
        elif self.random_effects == "intercept_slope":
            terms.append(f"({' + '.join(['1', *self.predictors])} | {self.group})")

        # Offsets
        if self.exposure == "offset":
            terms.append(f"offset(log({self.duration}))")

        return f"{lhs} ~ {' + '.join(terms)}"

    def __str__(self) -> str:
        lines = [
            f"Formula: {self.formula}",
            f"Family: {self.family}(link = 'log')",
        ]
        if self.priors:
            lines.append("Priors: " + ", ".join(repr(prior) for prior in self.priors))
        controls = self.controls
        lines.append(
            f"Sampler: chains = {controls.chains}, iter = {controls.iter}, "
            f"warmup = {controls.n_warmup}, adapt_delta = {controls.adapt_delta}, "
            f"max_treedepth = {controls.max_treedepth}"
        )
        return "\n".join(lines)
