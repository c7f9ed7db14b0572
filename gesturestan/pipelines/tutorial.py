# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Runs the gesture count walkthrough from raw table to model comparison.

The pipeline fits three models of increasing complexity to a paired gesture
table and writes the charts of the analysis to the output directory:

    1. A Poisson model with the condition as the only predictor.
    2. A Poisson model with participant-level intercepts and slopes and the log
       trial duration as an offset. Its conditional effects are charted, tested
       with hypotheses and checked against replicated data.
    3. A negative-binomial model with the duration as a rate denominator, a
       weakly informative prior on the slopes and tighter sampler controls. Its
       replicated data are checked and its condition slope is compared with the
       one of the Poisson model.

The two mixed models are finally compared by leave-one-out cross-validation.
Nothing is retried: the first error ends the run.
"""

from __future__ import annotations

import argparse
import os.path

import gesturestan as gs

from gesturestan.defaults import (
    CONDITIONAL_EFFECTS_PLOT,
    CONDITION_COLUMN,
    DEFAULT_ITER,
    DEFAULT_PPC_DRAWS,
    NEGBINOMIAL_PPC_PLOT,
    POISSON_PPC_PLOT,
    POSTERIOR_DENSITY_PLOT,
)
from gesturestan.descriptives import summarize_columns
from gesturestan.model.results import compare_models
from gesturestan.plotting import (
    plot_conditional_effects,
    plot_posterior_density,
    plot_ppc,
    save_plot,
)


def define_base_parser() -> argparse.ArgumentParser:
    """Defines the base parser of the walkthrough."""
    # Build the base parser
    parser = argparse.ArgumentParser(add_help=False)

    # A few required arguments
    required_group = parser.add_argument_group("required arguments")
    required_group.add_argument(
        "--data",
        type=str,
        required=True,
        help="Path to the gesture table.",
    )
    required_group.add_argument(
        "--output_dir",
        type=str,
        required=True,
        help="Path to the folder where the charts will be saved.",
    )

    # Now some optionals
    optional_group = parser.add_argument_group("optional arguments")
    optional_group.add_argument(
        "--sep",
        type=str,
        default=",",
        help="Field separator of the gesture table. Default = ','.",
    )
    optional_group.add_argument(
        "--seed",
        type=int,
        default=1024,
        help="Random seed for reproducibility. Default = 1024.",
    )
    optional_group.add_argument(
        "--use_all_cores",
        action="store_true",
        help="Run the chains of every model in parallel on all available cores.",
    )

    return parser


def parse_args():
    """Parse command line arguments."""
    # Build the parser specifically for this pipeline
    parser = argparse.ArgumentParser(
        description="Walk through Bayesian count models of paired gesture data.",
        parents=[define_base_parser()],
    )

    # Sampler settings
    sampler_group = parser.add_argument_group("sampler settings")
    sampler_group.add_argument(
        "--iter",
        type=int,
        default=DEFAULT_ITER,
        help=(
            "Total iterations per chain, warmup included, of the Poisson models. "
            f"Default = {DEFAULT_ITER}."
        ),
    )
    sampler_group.add_argument(
        "--nb_iter",
        type=int,
        default=4000,
        help="Total iterations per chain of the negative-binomial model. Default = 4000.",
    )
    sampler_group.add_argument(
        "--nb_warmup",
        type=int,
        default=2000,
        help="Warmup iterations per chain of the negative-binomial model. Default = 2000.",
    )
    sampler_group.add_argument(
        "--nb_adapt_delta",
        type=float,
        default=0.99,
        help="Target acceptance probability of the negative-binomial model. Default = 0.99.",
    )
    sampler_group.add_argument(
        "--nb_max_treedepth",
        type=int,
        default=15,
        help="Maximum tree depth of the negative-binomial model. Default = 15.",
    )
    sampler_group.add_argument(
        "--slope_prior_scale",
        type=float,
        default=0.5,
        help=(
            "Scale of the normal prior on the slopes of the negative-binomial "
            "model. Default = 0.5."
        ),
    )
    sampler_group.add_argument(
        "--ppc_draws",
        type=int,
        default=DEFAULT_PPC_DRAWS,
        help=(
            "Number of replicated data sets in posterior predictive checks. "
            f"Default = {DEFAULT_PPC_DRAWS}."
        ),
    )
    sampler_group.add_argument(
        "--force_compile",
        action="store_true",
        help="Force compilation of the models even if they are already compiled.",
    )

    return parser.parse_args()


def check_args(args: argparse.Namespace) -> None:
    """Checks command line arguments for validity."""
    # The table must exist
    if not os.path.isfile(args.data):
        raise ValueError(f"Gesture table does not exist: {args.data}.")

    # Output dir must exist
    if not os.path.exists(args.output_dir):
        raise ValueError(f"Output directory does not exist: {args.output_dir}.")

    # Seed must be a positive integer
    if args.seed <= 0:
        raise ValueError("Seed must be a positive integer.")

    # Iterations and draws must be positive integers
    for arg in ("iter", "nb_iter", "nb_warmup", "nb_max_treedepth", "ppc_draws"):
        if getattr(args, arg) <= 0:
            raise ValueError(f"{arg} must be a positive integer.")
    if args.nb_warmup >= args.nb_iter:
        raise ValueError("nb_warmup must be smaller than nb_iter.")

    # Acceptance probability and prior scale
    if not 0 < args.nb_adapt_delta < 1:
        raise ValueError("nb_adapt_delta must be between 0 and 1.")
    if args.slope_prior_scale <= 0:
        raise ValueError("slope_prior_scale must be positive.")


def fit_and_report(model: gs.GestureModel, **fit_kwargs) -> "gs.results.SampleResults":
    """Fit a model, check the sampler and print the parameter summary."""
    print(model.spec.formula)
    res = model.mcmc(**fit_kwargs)

    # Run diagnostics on the results
    print("Running diagnostics...")
    _ = res.diagnose()

    print(res.summary(round_to=2))
    return res


def run_tutorial(args: argparse.Namespace) -> None:
    """Run the walkthrough."""
    gs.manual_seed(args.seed)
    fit_kwargs = {"force_compile": args.force_compile, "show_progress": False}

    # Load the data and take a first look
    print("Loading data...")
    data = gs.load_gestures(args.data, sep=args.sep)
    for column, counts in summarize_columns(data).items():
        print(f"\n{column}:\n{counts}")
    print("\nMean counts and rates by condition:")
    print(gs.summarize_by_condition(data, round_to=4))

    # Shared settings of the Poisson models
    base_spec = gs.ModelSpecification(
        controls=gs.SamplerControls(
            iter=args.iter, seed=args.seed, use_all_cores=args.use_all_cores or None
        )
    )

    # Poisson with fixed effects only
    print("\nFitting Poisson model with fixed effects...")
    fixed_res = fit_and_report(gs.GestureModel(base_spec, data), **fit_kwargs)

    # Poisson with participant-level intercepts and slopes and a duration offset
    print("\nFitting Poisson model with random intercepts and slopes...")
    poisson_spec = base_spec.replace(
        random_effects="intercept_slope", exposure="offset"
    )
    poisson_model = gs.GestureModel(poisson_spec, data)
    poisson_res = fit_and_report(poisson_model, **fit_kwargs)

    # Conditional effects
    print("\nConditional effects:")
    effects = poisson_res.conditional_effects(effect=CONDITION_COLUMN)
    print(effects.round(2))
    save_plot(
        plot_conditional_effects(effects, title="Conditional effects"),
        CONDITIONAL_EFFECTS_PLOT,
        args.output_dir,
    )

    # Hypotheses on the condition slope. Without exposure the fixed-effects model
    # predicts counts, so its second level is tested against the observed mean.
    slope = poisson_model.design.coef_names[0]
    second_level = poisson_model.design.levels[CONDITION_COLUMN][1]
    observed_mean = float(gs.mean_counts(data)[second_level])
    print("\nHypothesis tests:")
    for expression in (
        f"exp(Intercept + {slope} * 1) = {observed_mean:.2f}",
        f"{slope} < 0",
    ):
        print(fixed_res.hypothesis(expression).to_frame().round(3))

    # Posterior predictive check of the Poisson model
    print("\nChecking Poisson posterior predictive distribution...")
    observed, replicated = poisson_res.posterior_predictive_draws(n_draws=args.ppc_draws)
    save_plot(
        plot_ppc(observed, replicated, n_draws=args.ppc_draws, title="Poisson"),
        POISSON_PPC_PLOT,
        args.output_dir,
    )

    # Negative binomial with a rate exposure and a weakly informative slope prior
    print("\nFitting negative-binomial model...")
    nb_spec = poisson_spec.replace(
        family="negbinomial",
        exposure="rate",
        priors=(gs.Prior("b", 0.0, args.slope_prior_scale),),
        controls=gs.SamplerControls(
            adapt_delta=args.nb_adapt_delta,
            max_treedepth=args.nb_max_treedepth,
            iter=args.nb_iter,
            warmup=args.nb_warmup,
            seed=args.seed,
            use_all_cores=args.use_all_cores or None,
        ),
    )
    nb_res = fit_and_report(gs.GestureModel(nb_spec, data), **fit_kwargs)

    # Posterior predictive check of the negative-binomial model
    print("\nChecking negative-binomial posterior predictive distribution...")
    observed, replicated = nb_res.posterior_predictive_draws(n_draws=args.ppc_draws)
    save_plot(
        plot_ppc(observed, replicated, n_draws=args.ppc_draws, title="Negative binomial"),
        NEGBINOMIAL_PPC_PLOT,
        args.output_dir,
    )

    # Condition slope under both likelihoods
    save_plot(
        plot_posterior_density(
            {
                "Poisson": poisson_res.posterior_samples(f"b_{slope}"),
                "Negative binomial": nb_res.posterior_samples(f"b_{slope}"),
            },
            title=f"Posterior of b_{slope}",
            xlabel=f"b_{slope}",
        ),
        POSTERIOR_DENSITY_PLOT,
        args.output_dir,
    )

    # Leave-one-out comparison
    print("\nComparing models by leave-one-out cross-validation...")
    print(
        compare_models(
            {"poisson": poisson_res, "negbinomial": nb_res}, moment_match=True
        )
    )

    print(f"\nCharts saved to {args.output_dir}")


def main():
    """Main function to run the gesture count walkthrough."""
    # Parse command line arguments
    args = parse_args()

    # Check arguments
    check_args(args)

    # Run the walkthrough
    run_tutorial(args)


if __name__ == "__main__":
    main()
