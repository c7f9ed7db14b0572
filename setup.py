"""
Installs GestureStan
"""

import re

from setuptools import find_packages, setup


# Get package information
def get_package_info():
    """
    Gets version information for the installation.
    """
    # Set up variables
    package_version = None

    # Open the file containing version info
    with open("gesturestan/__init__.py", "r", encoding="utf-8") as file:
        for line in file:
            # Check version
            if match_obj := re.match(r"__version__.+([0-9]+\.[0-9]+\.[0-9]+)", line):
                package_version = match_obj.group(1)

    # Checks on variables
    if package_version is None:
        raise IOError("Could not find information on version.")

    return package_version


# Run setup
setup(
    name="gesturestan",
    version=get_package_info(),
    packages=find_packages(include=["gesturestan", "gesturestan.*"]),
    python_requires=">=3.11",
    install_requires=[
        "arviz>=0.17,<1.0",
        "arviz-stats[xarray]>=0.7",
        "bridgestan>=2.5",
        "cmdstanpy",
        "h5netcdf",
        "holoviews",
        "hvplot",
        "matplotlib",
        "numpy",
        "pandas",
        "scipy",
        "typeguard",
        "xarray>=2024.10",
    ],
    extras_require={"test": ["pytest"]},
    entry_points={
        "console_scripts": [
            "gesturestan-tutorial=gesturestan.pipelines.tutorial:main",
        ]
    },
)
