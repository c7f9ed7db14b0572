# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Hypothesis tests on posterior draws.

Hypotheses are written the way brms writes them: an arithmetic expression over
coefficient names, a comparison operator and a second expression, for example
``"exp(Intercept + contextprofessor * 1) = 4"`` or ``"contextprofessor < 0"``.
Both sides are evaluated on every posterior draw with :py:meth:`pandas.DataFrame.eval`
over a frame holding one column per coefficient, and the test works with the draws
of ``lhs - rhs``.

Three operators are recognized:

    - ``<`` and ``>``: one-sided. The posterior probability is the share of draws
      satisfying the inequality and the evidence ratio is its odds.
    - ``=``: point hypothesis. The posterior probability is the two-sided tail
      probability of zero under the draws of ``lhs - rhs``. It is close to 1 when
      the stated value is central to the posterior and close to 0 when it lies
      far in a tail. No evidence ratio is reported.

Expressions may use numbers, coefficient names, arithmetic operators, parentheses
and the math functions pandas evaluates (``exp``, ``log``, ``sqrt``, ``abs``, ...).
Attribute access and names that are not coefficients are rejected with a
:py:class:`~gesturestan.exceptions.HypothesisError`.

Draws on which a side overflows keep their infinite value, so a hypothesis is
judged on every draw. Draws on which the difference is undefined (NaN) make the
hypothesis invalid.
"""

from __future__ import annotations

import dataclasses
import re

from typing import Mapping, TYPE_CHECKING

import numpy as np
import numpy.typing as npt
import pandas as pd

from gesturestan.defaults import DEFAULT_CI_PROB
from gesturestan.exceptions import HypothesisError

if TYPE_CHECKING:
    from gesturestan import custom_types

# A hypothesis is two expressions joined by exactly one comparison operator
_HYPOTHESIS_RE = re.compile(r"^([^<>=]+)(=|<|>)([^<>=]+)$")

# A name followed by a dot, i.e. attribute access
_ATTRIBUTE_RE = re.compile(r"[A-Za-z_]\w*\s*\.")

# What DataFrame.eval raises for expressions it cannot evaluate. Unknown names
# raise pandas' UndefinedVariableError, a NameError.
_EVAL_ERRORS = (NameError, SyntaxError, TypeError, ValueError, NotImplementedError)


def evaluate_expression(
    expression: str, draws: pd.DataFrame | Mapping[str, npt.ArrayLike]
) -> npt.NDArray[np.floating] | float:
    """Evaluate one side of a hypothesis on posterior draws.

    :param expression: Arithmetic expression over coefficient names
    :type expression: str
    :param draws: Draws of every coefficient, one column per coefficient
    :type draws: Union[pd.DataFrame, Mapping[str, npt.ArrayLike]]

    :returns: Draws of the expression, or a number if it names no coefficient
    :rtype: Union[npt.NDArray[np.floating], float]

    :raises HypothesisError: If the expression cannot be evaluated or names an
        unknown coefficient
    """
    expression = expression.strip()
    frame = pd.DataFrame(draws)
    if _ATTRIBUTE_RE.search(expression) is not None:
        raise HypothesisError(f"Attribute access is not allowed in '{expression}'.")

    # Only the columns of the frame are visible to the expression
    try:
        with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
            values = frame.eval(
                expression, engine="python", local_dict={}, global_dict={}
            )
        values = np.asarray(values, dtype=float)
    except _EVAL_ERRORS as error:
        raise HypothesisError(
            f"Could not evaluate '{expression}': {error}. Coefficients are: "
            f"{', '.join(map(str, frame.columns))}."
        ) from error

    # One value per draw, or a single number
    if values.ndim > 1 or (values.ndim == 1 and values.shape[0] != len(frame)):
        raise HypothesisError(f"'{expression}' does not give one value per draw.")

    return float(values) if values.ndim == 0 else values


@dataclasses.dataclass(frozen=True)
class HypothesisResult:
    """Outcome of a hypothesis test.

    :ivar hypothesis: The hypothesis in normalized form, ``(lhs) - (rhs) op 0``
    :ivar estimate: Posterior mean of ``lhs - rhs``
    :ivar est_error: Posterior standard deviation of ``lhs - rhs``
    :ivar lower: Lower bound of the credible interval (``-inf`` for ``<``)
    :ivar upper: Upper bound of the credible interval (``inf`` for ``>``)
    :ivar post_prob: Posterior probability of the hypothesis
    :ivar evid_ratio: Evidence ratio (NaN for point hypotheses)
    :ivar star: Whether the credible interval excludes zero
    :ivar draws: Posterior draws of ``lhs - rhs``
    """

    hypothesis: str
    estimate: float
    est_error: float
    lower: float
    upper: float
    post_prob: float
    evid_ratio: float
    star: bool
    draws: npt.NDArray[np.floating] = dataclasses.field(repr=False, compare=False)

    def to_frame(self) -> pd.DataFrame:
        """One-row table of the result, without the draws."""
        row = {
            field.name: getattr(self, field.name)
            for field in dataclasses.fields(self)
            if field.name != "draws"
        }
        return pd.DataFrame([row]).set_index("hypothesis")


def _quantiles(
    values: npt.NDArray[np.floating], probs: npt.ArrayLike
) -> npt.NDArray[np.floating]:
    """Linearly interpolated quantiles that tolerate infinite draws.

    Interpolating between two equal infinities gives NaN; those quantiles take
    the lower order statistic instead.
    """
    with np.errstate(invalid="ignore"):
        quantiles = np.quantile(values, probs)
    return np.where(np.isnan(quantiles), np.quantile(values, probs, method="lower"), quantiles)


def evaluate_hypothesis(
    expression: str,
    draws: pd.DataFrame | Mapping[str, npt.ArrayLike],
    alpha: "custom_types.Float" = 1 - DEFAULT_CI_PROB,
) -> HypothesisResult:
    """Evaluate a brms-style hypothesis on posterior draws.

    :param expression: Hypothesis, e.g. ``"exp(Intercept + contextprofessor) = 4"``
    :type expression: str
    :param draws: Draws of every coefficient, one column per coefficient. All
        columns must have the same length.
    :type draws: Union[pd.DataFrame, Mapping[str, npt.ArrayLike]]
    :param alpha: One minus the credible interval probability. One-sided
        hypotheses use a one-sided interval. Defaults to 0.05.
    :type alpha: custom_types.Float

    :returns: Test result. When some draws of ``lhs - rhs`` are infinite, the
        estimate is infinite and the error is NaN; the interval and the
        posterior probability still count every draw.
    :rtype: HypothesisResult

    :raises HypothesisError: If the hypothesis cannot be parsed, names an
        unknown coefficient, or is undefined (NaN) for any draw
    :raises ValueError: If `alpha` is not between 0 and 1

    Example:
        >>> res = evaluate_hypothesis("contextprofessor < 0", draws)
        >>> res.post_prob
        0.97
    """
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be between 0 and 1, got {alpha}.")

    # Split into the two sides
    if (match := _HYPOTHESIS_RE.match(expression.strip())) is None:
        raise HypothesisError(
            f"'{expression}' is not a hypothesis. Use exactly one of '=', '<' or '>'."
        )
    lhs, op, rhs = (part.strip() for part in match.groups())

    # Draws of the difference
    frame = pd.DataFrame(draws)
    n_draws = len(frame) if len(frame.columns) > 0 else 1
    with np.errstate(invalid="ignore"):
        diff = np.broadcast_to(
            np.asarray(
                evaluate_expression(lhs, frame) - evaluate_expression(rhs, frame),
                dtype=float,
            ),
            (n_draws,),
        )
    if (n_undefined := int(np.isnan(diff).sum())) > 0:
        raise HypothesisError(
            f"'{expression}' is undefined for {n_undefined} of {n_draws} draws."
        )

    # Credible interval and posterior probability
    if op == "=":
        lower, upper = _quantiles(diff, [alpha / 2, 1 - alpha / 2])
        post_prob = 2 * min(np.mean(diff > 0), np.mean(diff < 0))
        evid_ratio = np.nan
    else:
        if op == "<":
            lower, upper = -np.inf, _quantiles(diff, 1 - alpha)
            post_prob = np.mean(diff < 0)
        else:
            lower, upper = _quantiles(diff, alpha), np.inf
            post_prob = np.mean(diff > 0)
        evid_ratio = np.inf if post_prob == 1 else post_prob / (1 - post_prob)

    with np.errstate(invalid="ignore"):
        estimate = np.mean(diff)
        est_error = np.std(diff, ddof=1) if n_draws > 1 else np.nan

    return HypothesisResult(
        hypothesis=f"({lhs}) - ({rhs}) {op} 0",
        estimate=float(estimate),
        est_error=float(est_error),
        lower=float(lower),
        upper=float(upper),
        post_prob=float(post_prob),
        evid_ratio=float(evid_ratio),
        star=bool(not lower <= 0 <= upper),
        draws=np.array(diff),
    )
