"""
MCMC driver.

One iteration updates, in order, the stimulated concentrations, the
unstimulated concentrations, the per-subject category probabilities and the
per-subject response indicators (together with the mass parameter
``gamma``). Retained iterations are written into a preallocated
:class:`Trajectory`.

Independent chains run in separate worker processes, each with its own
generator spawned from a single :class:`numpy.random.SeedSequence`.

Classes
-------
Trajectory
    Recorded draws of one chain.
ChainResult
    Trajectory, final state and settings of one chain.
CompassFit
    Chains fitted to a :class:`~compass_mcmc.preprocess.CompassData`.

Functions
---------
fisher_initial_indicators
    Starting responders from one-sided Fisher exact tests.
initialize_state
    Starting :class:`~compass_mcmc.state.IterationState` of a chain.
mcmc_step
    One full iteration.
run_chain
    Run a single chain.
run_chains
    Run several chains, in parallel when more than one core is available.
fit_compass
    Run the sampler on preprocessed count matrices.
"""
from __future__ import annotations

import logging
import os
import warnings
from dataclasses import dataclass, field
from multiprocessing import Pool, cpu_count
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import fisher_exact

from .activation import update_active_set
from .config import SamplerConfig
from .errors import InvalidParameterError
from .hyperparameters import HyperparameterUpdater
from .preprocess import CompassData
from .probabilities import ProbabilityDraw, sample_pu_ps, sample_pu_ps_full
from .state import AcceptanceCounters, IterationState, SufficientStats

logger = logging.getLogger(__name__)

# acceptance rates below this trigger a warning at the end of a chain
LOW_ACCEPTANCE = 0.01


@dataclass
class Trajectory:
    """Draws recorded at retained iterations.

    Attributes
    ----------
    iterations : np.ndarray
        1-based iteration numbers, shape (T,).
    alpha_s, alpha_u : np.ndarray
        Concentrations, shape (T, K).
    gamma : np.ndarray
        Mass parameter, shape (T,).
    indicators : np.ndarray
        Per-subject response indicators, shape (T, I, K).
    active : np.ndarray
        Categories with at least one responding subject, shape (T, K).
    pb1, pb2 : np.ndarray
        Cumulative activation proposals and acceptances, shape (T,).
    ps, pu : np.ndarray or None
        Category probabilities, shape (T, I, K), when stored.
    """
    iterations: np.ndarray
    alpha_s: np.ndarray
    alpha_u: np.ndarray
    gamma: np.ndarray
    indicators: np.ndarray
    active: np.ndarray
    pb1: np.ndarray
    pb2: np.ndarray
    ps: Optional[np.ndarray] = None
    pu: Optional[np.ndarray] = None

    @classmethod
    def allocate(cls, n_saved: int, n_subjects: int, n_categories: int,
                 store_probabilities: bool = True) -> "Trajectory":
        return cls(
            iterations=np.zeros(n_saved, dtype=np.int64),
            alpha_s=np.zeros((n_saved, n_categories)),
            alpha_u=np.zeros((n_saved, n_categories)),
            gamma=np.zeros(n_saved),
            indicators=np.zeros((n_saved, n_subjects, n_categories), dtype=bool),
            active=np.zeros((n_saved, n_categories), dtype=bool),
            pb1=np.zeros(n_saved, dtype=np.int64),
            pb2=np.zeros(n_saved, dtype=np.int64),
            ps=np.zeros((n_saved, n_subjects, n_categories)) if store_probabilities else None,
            pu=np.zeros((n_saved, n_subjects, n_categories)) if store_probabilities else None,
        )

    def __len__(self) -> int:
        return int(self.iterations.size)

    def record(self, slot: int, state: IterationState) -> None:
        self.iterations[slot] = state.iteration
        self.alpha_s[slot] = state.alpha_s
        self.alpha_u[slot] = state.alpha_u
        self.gamma[slot] = state.gamma
        self.indicators[slot] = state.indicators
        self.active[slot] = state.indicators.any(axis=0)
        self.pb1[slot] = state.counters.pb1
        self.pb2[slot] = state.counters.pb2
        if self.ps is not None:
            self.ps[slot] = state.ps
            self.pu[slot] = state.pu

    def truncate(self, n: int) -> "Trajectory":
        """Keep the first ``n`` records (used when a chain is cancelled)."""
        return Trajectory(
            iterations=self.iterations[:n].copy(),
            alpha_s=self.alpha_s[:n].copy(),
            alpha_u=self.alpha_u[:n].copy(),
            gamma=self.gamma[:n].copy(),
            indicators=self.indicators[:n].copy(),
            active=self.active[:n].copy(),
            pb1=self.pb1[:n].copy(),
            pb2=self.pb2[:n].copy(),
            ps=None if self.ps is None else self.ps[:n].copy(),
            pu=None if self.pu is None else self.pu[:n].copy(),
        )


@dataclass
class ChainResult:
    """Output of :func:`run_chain`.

    Attributes
    ----------
    trajectory : Trajectory
        Retained draws.
    final_state : IterationState
        State after the last completed iteration.
    stats : SufficientStats
        Count matrices the chain ran on.
    config : SamplerConfig
        Settings the chain ran with.
    cancelled : bool
        True if ``should_stop`` ended the chain early.
    subject_names, category_names : list, optional
        Row and column labels of the count matrices, when they were labeled.
    """
    trajectory: Trajectory
    final_state: IterationState
    stats: SufficientStats
    config: SamplerConfig
    cancelled: bool = False
    subject_names: Optional[List] = None
    category_names: Optional[List] = None

    @property
    def n_iterations(self) -> int:
        return self.final_state.iteration


@dataclass
class CompassFit:
    """Chains fitted to one preprocessed data set."""
    chains: List[ChainResult]
    data: CompassData
    config: SamplerConfig = field(default_factory=SamplerConfig)


def fisher_initial_indicators(stats: SufficientStats, threshold: float = 0.05) -> np.ndarray:
    """Start subjects as responders where their stimulated sample is enriched.

    For every subject and eligible category, a one-sided Fisher exact test
    compares the category's share of stimulated cells with its share of
    unstimulated cells. The subject starts as a responder in the category
    when p < ``threshold``.

    Returns
    -------
    np.ndarray
        Boolean indicators, shape (n_subjects, n_categories).
    """
    indicators = np.zeros((stats.n_subjects, stats.n_categories), dtype=bool)
    for k in stats.eligible_indices:
        for i in range(stats.n_subjects):
            n_sk, n_uk = int(stats.n_s[i, k]), int(stats.n_u[i, k])
            table = [[n_sk, int(stats.N_s[i]) - n_sk], [n_uk, int(stats.N_u[i]) - n_uk]]
            _, p_value = fisher_exact(table, alternative="greater")
            indicators[i, k] = p_value < threshold
    return indicators


def _draw_probabilities(alpha_u, alpha_s, gamma, indicators, stats, config, rng) -> ProbabilityDraw:
    if config.full_probabilities:
        return sample_pu_ps_full(alpha_u, alpha_s, gamma, indicators, stats, rng,
                                 eps=config.eps, floor_scale=config.floor_scale)
    return sample_pu_ps(alpha_u, alpha_s, gamma, indicators, stats, rng, eps=config.eps)


def build_updaters(config: SamplerConfig) -> Tuple[HyperparameterUpdater, HyperparameterUpdater]:
    """The ``alpha_s`` and ``alpha_u`` updaters described by ``config``."""
    update_s = HyperparameterUpdater("stimulated", config.rate_s, config.strategy,
                                     var_1=config.var_1, var_2=config.var_2, p_var=config.p_var)
    update_u = HyperparameterUpdater("unstimulated", config.rate_u, config.strategy,
                                     var_1=config.var_p, var_2=config.var_p, p_var=1.0)
    return update_s, update_u


def initialize_state(stats: SufficientStats, config: SamplerConfig, rng: np.random.Generator) -> IterationState:
    """Starting state of a chain.

    Concentrations start at ``alpha_s_init``/``alpha_u_init``, ``gamma`` at
    ``gamma_init`` or the prior mean, no subject responding (or responders
    from :func:`fisher_initial_indicators`), and ``Ps``/``Pu`` at a first
    draw.

    Raises
    ------
    InvalidParameterError
        If ``config.gamma_init`` is not below the number of categories.
    """
    K = stats.n_categories
    alpha_s = np.full(K, float(config.alpha_s_init))
    alpha_u = np.full(K, float(config.alpha_u_init))
    if config.gamma_init is not None:
        if config.gamma_init >= K:
            raise InvalidParameterError(f"gamma_init must be below the number of categories ({K}), "
                                        f"got {config.gamma_init}.")
        gamma = float(config.gamma_init)
    else:
        gamma = K * config.gamma_prior_a / (config.gamma_prior_a + config.gamma_prior_b)

    if config.init_with_fisher:
        indicators = fisher_initial_indicators(stats, config.fisher_threshold)
        logger.info(f"Fisher initialization started {int(indicators.sum())} subject/category responses "
                    f"in {int(indicators.any(axis=0).sum())} of {K} categories")
    else:
        indicators = np.zeros((stats.n_subjects, K), dtype=bool)

    draw = _draw_probabilities(alpha_u, alpha_s, gamma, indicators, stats, config, rng)
    return IterationState(
        alpha_s=alpha_s,
        alpha_u=alpha_u,
        gamma=gamma,
        indicators=indicators,
        ps=draw.ps,
        pu=draw.pu,
        counters=AcceptanceCounters.for_subjects(stats.n_subjects),
        iteration=0,
    )


def mcmc_step(
    state: IterationState,
    stats: SufficientStats,
    config: SamplerConfig,
    rng: np.random.Generator,
    updaters: Optional[Tuple[HyperparameterUpdater, HyperparameterUpdater]] = None,
) -> IterationState:
    """Run one iteration and return the new state; ``state`` is left untouched."""
    update_s, update_u = updaters if updaters is not None else build_updaters(config)

    alpha_s = update_s.update(state.alpha_s, stats, state.indicators, rng)
    alpha_u = update_u.update(state.alpha_u, stats, state.indicators, rng)
    draw = _draw_probabilities(alpha_u.alpha, alpha_s.alpha, state.gamma, state.indicators, stats, config, rng)
    activation = update_active_set(
        stats, state.gamma, alpha_u.alpha, alpha_s.alpha, state.indicators, state.counters, rng,
        gamma_prior_a=config.gamma_prior_a,
        gamma_prior_b=config.gamma_prior_b,
        flip_probability=config.flip_probability,
        n_proposals=config.n_activation_proposals,
    )

    counters = activation.counters
    counters.alpha_s_proposed += alpha_s.proposed
    counters.alpha_s_accepted += alpha_s.accepted
    counters.alpha_u_proposed += alpha_u.proposed
    counters.alpha_u_accepted += alpha_u.accepted
    return IterationState(
        alpha_s=alpha_s.alpha,
        alpha_u=alpha_u.alpha,
        gamma=activation.gamma,
        indicators=activation.indicators,
        ps=draw.ps,
        pu=draw.pu,
        counters=counters,
        iteration=state.iteration + 1,
    )


def _labels(x, axis: int) -> Optional[List]:
    if isinstance(x, pd.DataFrame):
        return list(x.index if axis == 0 else x.columns)
    return None


def _warn_low_acceptance(counters: AcceptanceCounters) -> None:
    for name, rate in (("activation", counters.activation_rate),
                       ("alpha_s", counters.alpha_s_rate),
                       ("alpha_u", counters.alpha_u_rate)):
        if np.isfinite(rate) and rate < LOW_ACCEPTANCE:
            warnings.warn(
                f"Acceptance rate of the {name} updates is {rate:.4f}; "
                f"consider more iterations or different proposal settings.",
                RuntimeWarning,
            )


def run_chain(
    n_s,
    n_u,
    config: Optional[SamplerConfig] = None,
    *,
    eligible: Optional[Sequence[bool]] = None,
    seed=None,
    initial_state: Optional[IterationState] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> ChainResult:
    """Run one chain for ``config.n_iterations`` iterations.

    Parameters
    ----------
    n_s, n_u : array-like or pd.DataFrame
        Stimulated and unstimulated counts, shape (n_subjects, n_categories).
        Labels of DataFrames are carried into the result.
    config : SamplerConfig, optional
        Sampler settings; defaults to ``SamplerConfig()``.
    eligible : sequence of bool, optional
        Categories that may be activated. Categories without stimulated
        cells are never eligible.
    seed : int or np.random.SeedSequence, optional
        Overrides ``config.seed``.
    initial_state : IterationState, optional
        Resume from this state instead of initializing. Iteration numbers,
        burn-in and thinning continue from ``initial_state.iteration``.
    should_stop : callable, optional
        Polled before every iteration; returning True ends the chain and the
        result is marked cancelled.

    Returns
    -------
    ChainResult
    """
    config = config if config is not None else SamplerConfig()
    stats = SufficientStats.from_counts(n_s, n_u, eligible)
    rng = np.random.default_rng(seed if seed is not None else config.seed)

    if initial_state is not None:
        state = initial_state.copy()
    else:
        state = initialize_state(stats, config, rng)
    state.validate(stats)

    updaters = build_updaters(config)
    start = state.iteration
    last = start + config.n_iterations
    trajectory = Trajectory.allocate(config.n_retained_after(start), stats.n_subjects, stats.n_categories,
                                     config.store_probabilities)
    logger.info(
        f"Running iterations {start + 1:,} to {last:,} on {stats.n_subjects} subjects x "
        f"{stats.n_categories} categories ({stats.eligible.sum()} eligible, strategy={config.strategy})"
    )

    slot = 0
    cancelled = False
    for _ in range(config.n_iterations):
        if should_stop is not None and should_stop():
            cancelled = True
            logger.warning(f"Chain cancelled after {state.iteration - start} of {config.n_iterations} iterations")
            break
        state = mcmc_step(state, stats, config, rng, updaters)
        t = state.iteration
        if config.is_retained(t):
            trajectory.record(slot, state)
            slot += 1
        if config.log_every and t % config.log_every == 0:
            logger.info(
                f"Iteration {t:,}/{last:,}: {int(state.indicators.sum())} responses in "
                f"{state.active.size} categories, gamma={state.gamma:.3f}, "
                f"activation acceptance={state.counters.activation_rate:.3f}"
            )

    if cancelled:
        trajectory = trajectory.truncate(slot)
    else:
        _warn_low_acceptance(state.counters)
    logger.info(f"Chain finished: {state.iteration} iterations, {len(trajectory)} retained")

    return ChainResult(
        trajectory=trajectory,
        final_state=state,
        stats=stats,
        config=config,
        cancelled=cancelled,
        subject_names=_labels(n_s, 0),
        category_names=_labels(n_s, 1),
    )


def _run_chain_worker(n_s, n_u, config, eligible, seed) -> ChainResult:
    return run_chain(n_s, n_u, config, eligible=eligible, seed=seed)


def default_num_cores() -> int:
    if hasattr(os, 'sched_getaffinity'):
        return max(1, len(os.sched_getaffinity(0)) - 2)
    return max(1, cpu_count() - 2)


def run_chains(
    n_s,
    n_u,
    config: Optional[SamplerConfig] = None,
    *,
    n_chains: Optional[int] = None,
    eligible: Optional[Sequence[bool]] = None,
    seed=None,
    num_cores: Optional[int] = None,
) -> List[ChainResult]:
    """Run independent chains with seeds spawned from one ``SeedSequence``.

    Chains run sequentially when one core is available (or requested) and in
    a ``multiprocessing.Pool`` otherwise. Results are in chain order and do
    not depend on the number of cores.
    """
    config = config if config is not None else SamplerConfig()
    n_chains = n_chains if n_chains is not None else config.n_chains
    if n_chains < 1:
        raise InvalidParameterError(f"n_chains must be at least 1, got {n_chains}.")
    root = np.random.SeedSequence(seed if seed is not None else config.seed)
    seeds = root.spawn(n_chains)

    if num_cores is None:
        num_cores = config.num_cores if config.num_cores is not None else default_num_cores()
    num_cores = min(num_cores, n_chains)

    arguments = [(n_s, n_u, config, eligible, child) for child in seeds]
    logger.info(f"Running {n_chains} chains on {num_cores} cores")
    if num_cores == 1:
        return [_run_chain_worker(*args) for args in arguments]
    with Pool(processes=num_cores) as pool:
        return pool.starmap(_run_chain_worker, arguments)


def fit_compass(data: CompassData, config: Optional[SamplerConfig] = None, *, seed=None,
                num_cores: Optional[int] = None) -> CompassFit:
    """Fit the model to preprocessed count matrices.

    The null (all-negative) category is never eligible for activation.
    """
    config = config if config is not None else SamplerConfig()
    chains = run_chains(data.n_s, data.n_u, config, eligible=data.eligible, seed=seed, num_cores=num_cores)
    return CompassFit(chains=chains, data=data, config=config)
