"""
compass-mcmc: combinatorial polyfunctionality analysis of cell subsets.

This package estimates, per subject, which combinations of marker responses
("categories") are induced by a stimulus rather than occurring at background
rate, using an MCMC sampler over paired stimulated/unstimulated cell counts.

Modules
-------
counts
    Combinatorial cell counting from per-cell marker tables.
preprocess
    Category generation, subject pairing and category filtering.
state
    Sufficient statistics, response indicators and iteration state.
likelihood
    Log marginal likelihood with the category probabilities integrated out.
hyperparameters
    Updates of the Dirichlet concentration vectors.
probabilities
    Per-subject category-probability draws.
activation
    Moves over the per-subject response indicators.
config
    Sampler configuration.
sampler
    MCMC driver and multi-chain runner.
posterior
    Posterior summaries of finished chains.
simulate
    Synthetic per-cell data with known responses.

Example
-------
>>> import compass_mcmc as cm
>>> stim, unstim, truth = cm.simulate_compass_data(n_subjects=10, seed=1)
>>> data = cm.build_count_matrices(stim, unstim)
>>> fit = cm.fit_compass(data, cm.SamplerConfig(n_iterations=2000, burn_in=500))
>>> cm.mean_gamma(fit)
"""

__version__ = "0.1.0"

# activation
from .activation import (
    ActivationUpdate,
    update_active_set,
)

# config
from .config import SamplerConfig

# counts
from .counts import (
    cell_counts,
    cell_counts_character,
    combination_label,
    parse_combination,
    positivity_frame,
)

# errors
from .errors import (
    CellCountError,
    CompassError,
    InvalidActiveSetError,
    InvalidParameterError,
    ShapeMismatchError,
)

# hyperparameters
from .hyperparameters import (
    AlphaUpdate,
    HyperparameterUpdater,
    update_alpha_s_exp,
    update_alpha_s_exp_mh,
    update_alpha_u_nopu_exp,
    update_alpha_u_nopu_exp_mh,
)

# likelihood
from .likelihood import (
    dm_log_likelihood,
    marginal_log_likelihood,
    subject_log_likelihood,
    stimulated_log_likelihood,
    unstimulated_log_likelihood,
)

# posterior
from .posterior import (
    acceptance_rates,
    activation_probability,
    mean_gamma,
    posterior_diff,
    posterior_log_diff,
    posterior_ps,
    posterior_pu,
)

# preprocess
from .preprocess import (
    CompassData,
    build_count_matrices,
    default_category_filter,
    generate_categories,
)

# probabilities
from .probabilities import (
    ProbabilityDraw,
    sample_pu_ps,
    sample_pu_ps_full,
)

# sampler
from .sampler import (
    ChainResult,
    CompassFit,
    Trajectory,
    fisher_initial_indicators,
    fit_compass,
    initialize_state,
    mcmc_step,
    run_chain,
    run_chains,
)

# simulate
from .simulate import simulate_compass_data

# state
from .state import (
    AcceptanceCounters,
    ActiveSet,
    IterationState,
    SufficientStats,
    indicator_matrix,
)

__all__ = [
    # activation
    "ActivationUpdate",
    "update_active_set",
    # config
    "SamplerConfig",
    # counts
    "cell_counts",
    "cell_counts_character",
    "combination_label",
    "parse_combination",
    "positivity_frame",
    # errors
    "CellCountError",
    "CompassError",
    "InvalidActiveSetError",
    "InvalidParameterError",
    "ShapeMismatchError",
    # hyperparameters
    "AlphaUpdate",
    "HyperparameterUpdater",
    "update_alpha_s_exp",
    "update_alpha_s_exp_mh",
    "update_alpha_u_nopu_exp",
    "update_alpha_u_nopu_exp_mh",
    # likelihood
    "dm_log_likelihood",
    "marginal_log_likelihood",
    "subject_log_likelihood",
    "stimulated_log_likelihood",
    "unstimulated_log_likelihood",
    # posterior
    "acceptance_rates",
    "activation_probability",
    "mean_gamma",
    "posterior_diff",
    "posterior_log_diff",
    "posterior_ps",
    "posterior_pu",
    # preprocess
    "CompassData",
    "build_count_matrices",
    "default_category_filter",
    "generate_categories",
    # probabilities
    "ProbabilityDraw",
    "sample_pu_ps",
    "sample_pu_ps_full",
    # sampler
    "ChainResult",
    "CompassFit",
    "Trajectory",
    "fisher_initial_indicators",
    "fit_compass",
    "initialize_state",
    "mcmc_step",
    "run_chain",
    "run_chains",
    # simulate
    "simulate_compass_data",
    # state
    "AcceptanceCounters",
    "ActiveSet",
    "IterationState",
    "SufficientStats",
    "indicator_matrix",
]
