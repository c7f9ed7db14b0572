"""Tests for the walkthrough pipeline: argument handling and a full run."""

from __future__ import annotations

import os.path
import sys
import warnings

import pytest

from gesturestan.defaults import (
    CONDITIONAL_EFFECTS_PLOT,
    NEGBINOMIAL_PPC_PLOT,
    POISSON_PPC_PLOT,
    POSTERIOR_DENSITY_PLOT,
)
from gesturestan.pipelines import tutorial
from gesturestan.utils import cmdstan_available


@pytest.fixture
def args(monkeypatch, example_csv, tmp_path):
    monkeypatch.setattr(
        sys, "argv", ["gesturestan-tutorial", "--data", example_csv, "--output_dir", str(tmp_path)]
    )
    return tutorial.parse_args()


def test_defaults(args) -> None:
    assert args.sep == ","
    assert args.seed == 1024
    assert args.nb_iter == 4000
    assert args.nb_warmup == 2000
    assert args.nb_adapt_delta == 0.99
    assert args.nb_max_treedepth == 15
    assert args.slope_prior_scale == 0.5
    assert not args.use_all_cores
    assert not args.force_compile
    tutorial.check_args(args)


@pytest.mark.parametrize(
    "field,value",
    [
        ("data", "missing.csv"),
        ("output_dir", "missing_dir"),
        ("seed", 0),
        ("iter", 0),
        ("ppc_draws", -1),
        ("nb_warmup", 4000),
        ("nb_adapt_delta", 1.0),
        ("slope_prior_scale", 0.0),
    ],
)
def test_invalid_arguments(args, tmp_path, field, value) -> None:
    if field in ("data", "output_dir"):
        value = str(tmp_path / value)
    setattr(args, field, value)
    with pytest.raises(ValueError):
        tutorial.check_args(args)


def test_missing_required_arguments(monkeypatch) -> None:
    monkeypatch.setattr(sys, "argv", ["gesturestan-tutorial"])
    with pytest.raises(SystemExit):
        tutorial.parse_args()


@pytest.mark.skipif(not cmdstan_available(), reason="CmdStan is not installed")
def test_run_tutorial_writes_charts(monkeypatch, gesture_table, tmp_path, capsys) -> None:
    data_path = str(tmp_path / "gestures.csv")
    gesture_table.to_csv(data_path, index=False)
    output_dir = tmp_path / "charts"
    output_dir.mkdir()

    monkeypatch.setattr(
        sys,
        "argv",
        [
            "gesturestan-tutorial",
            "--data", data_path,
            "--output_dir", str(output_dir),
            "--iter", "400",
            "--nb_iter", "400",
            "--nb_warmup", "200",
            "--ppc_draws", "5",
        ],
    )
    args = tutorial.parse_args()
    tutorial.check_args(args)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        tutorial.run_tutorial(args)

    for filename in (
        CONDITIONAL_EFFECTS_PLOT,
        POISSON_PPC_PLOT,
        NEGBINOMIAL_PPC_PLOT,
        POSTERIOR_DENSITY_PLOT,
    ):
        path = os.path.join(str(output_dir), filename)
        assert os.path.isfile(path)
        assert os.path.getsize(path) > 0

    # The comparison table is printed with both models
    printed = capsys.readouterr().out
    assert "poisson" in printed and "negbinomial" in printed
    assert "elpd_diff" in printed
