"""Custom exception classes for the GestureStan package.

This module defines the small hierarchy of custom exceptions raised by
GestureStan's own code. All custom exceptions inherit from the base
GestureStanError class to allow for unified exception handling when needed.
Failures inside Stan, CmdStanPy, pandas or ArviZ are not translated and
propagate as those libraries raise them.
"""


class GestureStanError(Exception):
    """Base class for all exceptions in the GestureStan package.

    :param message: Error message describing the exception
    :type message: str

    Example:
        >>> try:
        ...     data = load_gestures("dyads.csv")
        ... except GestureStanError as e:
        ...     print(f"GestureStan error occurred: {e}")
    """


class DataParseError(GestureStanError, ValueError):
    """Raised when an input table does not have the expected columns or types.

    :param message: Error message describing the inconsistency
    :type message: str
    """


class PairingError(GestureStanError, ValueError):
    """Raised when participants do not contribute exactly one row per condition."""


class HypothesisError(GestureStanError, ValueError):
    """Raised when a hypothesis string cannot be parsed or names unknown coefficients."""
