# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Custom type definitions for GestureStan.

This module provides type aliases used throughout the GestureStan package for
type checking and documentation purposes.
"""

from typing import Literal, TYPE_CHECKING, Union

if TYPE_CHECKING:

    import numpy as np
    import numpy.typing as npt

# Scalar types
Integer = Union[int, "np.integer"]
"""Type alias for integer values.

Accepts both Python's built-in int and NumPy integer types.

:type: Union[int, np.integer]
"""

Float = Union[float, "np.floating"]
"""Type alias for floating-point values.

Accepts both Python's built-in float and NumPy floating-point types.

:type: Union[float, np.floating]
"""

SampleType = Union[int, float, "npt.NDArray"]
"""Type alias for values passed to Stan as data.

:type: Union[int, float, npt.NDArray]
"""

# Model option types
Family = Literal["poisson", "negbinomial"]
"""Response distribution of a count model.

:type: Literal["poisson", "negbinomial"]
"""

RandomEffects = Literal["none", "intercept", "intercept_slope"]
"""Group-level structure by participant.

:type: Literal["none", "intercept", "intercept_slope"]
"""

Exposure = Literal["none", "offset", "rate"]
"""Handling of trial duration in the model.

:type: Literal["none", "offset", "rate"]
"""

PriorTarget = Literal["Intercept", "b"]
"""Parameter class a user prior applies to.

:type: Literal["Intercept", "b"]
"""
