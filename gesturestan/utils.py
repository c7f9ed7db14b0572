# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Utility functions for the GestureStan package.

This module provides various utility functions that support the core
functionality of GestureStan, including:

    - Lazy importing mechanisms for performance optimization
    - Resolution of the "use all cores" toggle
    - Detection of a usable CmdStan installation

Users will not typically need to interact with this module directly--it is designed
to be used internally by GestureStan.
"""

from __future__ import annotations

import importlib.util
import os
import sys

from typing import Optional

from cmdstanpy import cmdstan_path

from gesturestan.defaults import ALL_CORES_ENV_VAR

# Values of the environment toggle that are read as "on"
_TRUTHY = {"1", "true", "yes", "on"}


def lazy_import(name: str):
    """Import a module only when it is first needed.

    This function implements lazy module importing to improve package import
    performance by deferring module loading until actual use.

    :param name: The fully qualified module name to import
    :type name: str

    :returns: The imported module
    :rtype: module

    :raises ImportError: If the specified module cannot be found

    .. note::
        If the module is already imported, returns the cached version
        from sys.modules for efficiency.
    """
    # Check if the module is already imported
    if name in sys.modules:
        return sys.modules[name]

    # If not, import it lazily (modified from here:
    # https://docs.python.org/3/library/importlib.html#implementing-lazy-imports)
    spec = importlib.util.find_spec(name)

    # If the spec is None, raise an ImportError
    if spec is None:
        raise ImportError(f"Module '{name}' not found.")

    # Create the module with a lazy loader
    spec.loader = importlib.util.LazyLoader(spec.loader)
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    spec.loader.exec_module(module)
    return module


def use_all_cores(flag: Optional[bool] = None) -> bool:
    """Resolve the "use all cores" toggle.

    :param flag: Explicit setting. When None, the environment variable named by
        :py:data:`~gesturestan.defaults.ALL_CORES_ENV_VAR` decides. Defaults to None.
    :type flag: Optional[bool]

    :returns: Whether chains should run in parallel on every available core
    :rtype: bool
    """
    if flag is not None:
        return flag
    return os.environ.get(ALL_CORES_ENV_VAR, "").strip().lower() in _TRUTHY


def available_cores() -> int:
    """Number of processor cores available to this process."""
    if hasattr(os, "sched_getaffinity"):
        return len(os.sched_getaffinity(0))
    return os.cpu_count() or 1


def cmdstan_available() -> bool:
    """Check whether CmdStanPy can locate a CmdStan installation.

    :returns: True if a CmdStan installation was found
    :rtype: bool
    """
    try:
        cmdstan_path()
    except ValueError:
        return False
    return True
