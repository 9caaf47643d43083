"""
Posterior summaries of finished chains.

All functions accept a :class:`~compass_mcmc.sampler.ChainResult`, a list of
chains (pooled over their retained iterations) or a
:class:`~compass_mcmc.sampler.CompassFit`. For a fit, the null category is
left out of the per-category summaries unless ``include_null=True``.

Functions
---------
posterior_ps
    Posterior mean of the stimulated probabilities.
posterior_pu
    Posterior mean of the unstimulated probabilities.
posterior_diff
    Posterior mean of ``Ps - Pu``.
posterior_log_diff
    Posterior mean of ``log Ps - log Pu``.
mean_gamma
    Posterior probability that each subject responds in each category.
activation_probability
    Fraction of retained iterations in which any subject responded in each
    category.
acceptance_rates
    Final acceptance rates per chain, or per subject and chain.
"""
from __future__ import annotations

from typing import List, Sequence, Union

import numpy as np
import pandas as pd

from .sampler import ChainResult, CompassFit

Result = Union[ChainResult, Sequence[ChainResult], CompassFit]


def _chains(result: Result) -> List[ChainResult]:
    if isinstance(result, CompassFit):
        chains = list(result.chains)
    elif isinstance(result, ChainResult):
        chains = [result]
    else:
        chains = list(result)
    if not chains:
        raise ValueError("No chains to summarize.")
    shapes = {c.stats.n_s.shape for c in chains}
    if len(shapes) != 1:
        raise ValueError(f"Chains were run on count matrices of different shapes: {sorted(shapes)}")
    return chains


def _keep_columns(result: Result, n_categories: int, include_null: bool) -> np.ndarray:
    keep = np.ones(n_categories, dtype=bool)
    if isinstance(result, CompassFit) and not include_null:
        keep[-1] = False
    return keep


def _frame(values: np.ndarray, chains: List[ChainResult], keep: np.ndarray) -> pd.DataFrame:
    first = chains[0]
    index = first.subject_names if first.subject_names is not None else range(values.shape[0])
    columns = first.category_names if first.category_names is not None else range(values.shape[1])
    out = pd.DataFrame(values, index=pd.Index(index), columns=pd.Index(columns))
    return out.loc[:, keep]


def _stacked(chains: List[ChainResult], name: str) -> np.ndarray:
    draws = []
    for chain in chains:
        values = getattr(chain.trajectory, name)
        if values is None:
            raise ValueError(f"Chain did not store {name}; rerun with store_probabilities=True.")
        draws.append(values)
    stacked = np.concatenate(draws, axis=0)
    if stacked.shape[0] == 0:
        raise ValueError("Chains have no retained iterations.")
    return stacked


def posterior_ps(result: Result, include_null: bool = False) -> pd.DataFrame:
    """Posterior mean of ``Ps`` (subjects x categories)."""
    chains = _chains(result)
    ps = _stacked(chains, "ps").mean(axis=0)
    return _frame(ps, chains, _keep_columns(result, ps.shape[1], include_null))


def posterior_pu(result: Result, include_null: bool = False) -> pd.DataFrame:
    """Posterior mean of ``Pu`` (subjects x categories)."""
    chains = _chains(result)
    pu = _stacked(chains, "pu").mean(axis=0)
    return _frame(pu, chains, _keep_columns(result, pu.shape[1], include_null))


def posterior_diff(result: Result, include_null: bool = False) -> pd.DataFrame:
    """Posterior mean difference in proportions, ``E[Ps - Pu]``."""
    chains = _chains(result)
    diff = (_stacked(chains, "ps") - _stacked(chains, "pu")).mean(axis=0)
    return _frame(diff, chains, _keep_columns(result, diff.shape[1], include_null))


def posterior_log_diff(result: Result, include_null: bool = False) -> pd.DataFrame:
    """Posterior mean log ratio, ``E[log Ps - log Pu]``.

    Entries that are exactly zero in some draw (restricted draws) give
    non-finite values; use full draws for log ratios.
    """
    chains = _chains(result)
    with np.errstate(divide="ignore", invalid="ignore"):
        log_diff = (np.log(_stacked(chains, "ps")) - np.log(_stacked(chains, "pu"))).mean(axis=0)
    return _frame(log_diff, chains, _keep_columns(result, log_diff.shape[1], include_null))


def mean_gamma(result: Result, include_null: bool = False) -> pd.DataFrame:
    """Posterior mean of the response indicators (subjects x categories).

    Entry ``(i, k)`` is the fraction of retained iterations in which
    subject ``i`` responded in category ``k``.
    """
    chains = _chains(result)
    gamma = _stacked(chains, "indicators").mean(axis=0)
    return _frame(gamma, chains, _keep_columns(result, gamma.shape[1], include_null))


def activation_probability(result: Result, include_null: bool = False) -> pd.Series:
    """Fraction of retained iterations in which each category was in ``Istar``."""
    chains = _chains(result)
    active = _stacked(chains, "active")
    first = chains[0]
    index = first.category_names if first.category_names is not None else range(active.shape[1])
    out = pd.Series(active.mean(axis=0), index=pd.Index(index), name="activation_probability")
    return out.loc[_keep_columns(result, active.shape[1], include_null)]


def acceptance_rates(result: Result, by_subject: bool = False) -> pd.DataFrame:
    """Acceptance rates of the MH updates.

    Parameters
    ----------
    result : ChainResult, list of ChainResult or CompassFit
        Finished chains.
    by_subject : bool
        If True, return the activation acceptance rate of every subject
        (rows) in every chain (columns). Subjects without proposals get NaN.

    Returns
    -------
    pd.DataFrame
        One row per chain, or one row per subject with ``by_subject``.
    """
    chains = _chains(result)
    if by_subject:
        first = chains[0]
        n_subjects = first.stats.n_subjects
        index = first.subject_names if first.subject_names is not None else range(n_subjects)
        columns = {}
        for c, chain in enumerate(chains):
            counters = chain.final_state.counters.copy()
            counters.ensure_subjects(n_subjects)
            columns[c] = counters.subject_rates
        out = pd.DataFrame(columns, index=pd.Index(index))
        out.columns.name = "chain"
        return out

    rows = []
    for chain in chains:
        counters = chain.final_state.counters
        rows.append({
            "activation": counters.activation_rate,
            "alpha_s": counters.alpha_s_rate,
            "alpha_u": counters.alpha_u_rate,
            "pb1": counters.pb1,
            "pb2": counters.pb2,
            "iterations": chain.final_state.iteration,
            "cancelled": chain.cancelled,
        })
    return pd.DataFrame(rows, index=pd.Index(range(len(rows)), name="chain"))
