"""
Metropolis-Hastings moves over the per-subject response indicators.

Every subject ``i`` carries a row of indicators ``G[i, k]``: the subject
responds to the stimulus in category ``k``. A proposal changes one
subject's row and is accepted on the difference of that subject's marginal
log-likelihood (``Ps``/``Pu`` integrated out) plus the log prior ratio.
Each eligible (subject, category) pair responds a priori with probability
``π = γ / K``; after the moves ``π`` is redrawn from its Beta conditional
and ``γ = K · π``.

Two move types, mixed with probability ``flip_probability``:

- flip: pick an eligible category uniformly and toggle it for the subject.
  Prior log-odds ``log(π / (1 - π))`` enter the acceptance ratio.
- swap: turn one of the subject's response categories off and one eligible
  non-response category on. The number of responses is preserved and the
  prior ratio is one. Skipped when either side is empty.

The categories in which any subject responds form ``Istar`` and ``mk[k]``
counts the responding subjects of category ``k``.

Functions
---------
update_active_set
    One round of moves for every subject plus the ``γ`` update.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .errors import InvalidActiveSetError, InvalidParameterError, ShapeMismatchError
from .likelihood import subject_log_likelihood
from .state import (
    AcceptanceCounters,
    ActiveSet,
    SufficientStats,
    _check_concentration,
    check_indicators,
    indicator_matrix,
)

# keeps the prior log-odds finite
_PI_CLIP = 1e-12


@dataclass(frozen=True)
class ActivationUpdate:
    """Outcome of :func:`update_active_set`.

    Attributes
    ----------
    indicators : np.ndarray
        New response indicators, shape (I, K).
    active : ActiveSet
        Categories with at least one responding subject (``Istar``).
    gamma : float
        New mass parameter.
    mk : np.ndarray
        Number of responding subjects per category.
    counters : AcceptanceCounters
        Tallies with this round's proposals added.
    """
    indicators: np.ndarray
    active: ActiveSet
    gamma: float
    mk: np.ndarray
    counters: AcceptanceCounters


def _check_summaries(indicators: np.ndarray, mk, active, size: Optional[int]) -> None:
    K = indicators.shape[1]
    current = ActiveSet.from_indicators(indicators)
    if mk is not None:
        mk = np.asarray(mk)
        if mk.shape != (K,):
            raise ShapeMismatchError(f"mk must have length {K}, got shape {mk.shape}.")
        if not np.array_equal(mk, indicators.sum(axis=0)):
            raise InvalidActiveSetError("mk does not match the number of responding subjects per category.")
    if active is not None:
        declared = active if isinstance(active, ActiveSet) else ActiveSet.from_indices(active, K, size=size)
        declared.validate(K)
        if size is not None and int(size) != declared.size:
            raise InvalidActiveSetError(f"Declared active-set size {size} does not match {declared.size} categories.")
        if declared != current:
            raise InvalidActiveSetError(
                f"Active set {declared.indices.tolist()} does not match the categories with responding "
                f"subjects {current.indices.tolist()}."
            )
    elif size is not None and int(size) != current.size:
        raise InvalidActiveSetError(f"Declared active-set size {size} does not match {current.size} categories.")


def update_active_set(
    stats: SufficientStats,
    gamma: float,
    alpha_u,
    alpha_s,
    indicators,
    counters: AcceptanceCounters,
    rng: np.random.Generator,
    *,
    mk=None,
    active=None,
    size: Optional[int] = None,
    gamma_prior_a: float = 1.0,
    gamma_prior_b: float = 1.0,
    flip_probability: float = 0.5,
    n_proposals: Optional[int] = None,
) -> ActivationUpdate:
    """Update the response indicators and the mass parameter.

    Parameters
    ----------
    stats : SufficientStats
        Count matrices and the eligibility mask.
    gamma : float
        Current mass parameter, must lie in (0, K).
    alpha_u, alpha_s : array-like
        Current concentrations, shape (K,).
    indicators : array-like of bool or ActiveSet
        Current response indicators, shape (I, K). A length-K mask, an
        ActiveSet or category indices start every subject from the same
        categories.
    counters : AcceptanceCounters
        Tallies so far. Not modified; an updated copy is returned.
    rng : np.random.Generator
        Source of randomness.
    mk : array-like of int, optional
        Responding subjects per category; checked against ``indicators``.
    active : ActiveSet or array-like of int, optional
        Categories with responding subjects (``Istar``); checked against
        ``indicators``.
    size : int, optional
        Declared size of ``active`` (``mKstar``).
    gamma_prior_a, gamma_prior_b : float
        Beta prior on ``π = γ / K``.
    flip_probability : float
        Probability of a flip move rather than a swap move.
    n_proposals : int, optional
        Moves per subject. Defaults to the number of eligible categories.

    Returns
    -------
    ActivationUpdate

    Raises
    ------
    InvalidActiveSetError
        If the indicators activate ineligible categories, disagree with
        ``mk``/``active``/``size``, or ``gamma`` lies outside (0, K).
    """
    n_subjects, K = stats.n_subjects, stats.n_categories
    G = indicator_matrix(indicators, n_subjects, K)
    check_indicators(G, stats)
    _check_summaries(G, mk, active, size)
    if not (np.isfinite(gamma) and 0.0 < gamma < K):
        raise InvalidActiveSetError(f"gamma must lie in (0, {K}), got {gamma}.")
    alpha_u = _check_concentration(alpha_u, K, "alpha_u")
    alpha_s = _check_concentration(alpha_s, K, "alpha_s")
    for name, value in (("gamma_prior_a", gamma_prior_a), ("gamma_prior_b", gamma_prior_b)):
        if not (np.isfinite(value) and value > 0):
            raise InvalidParameterError(f"{name} must be finite and positive, got {value}.")
    if not 0.0 <= flip_probability <= 1.0:
        raise InvalidParameterError(f"flip_probability must lie in [0, 1], got {flip_probability}.")
    counters = counters.copy()
    counters.ensure_subjects(n_subjects)

    eligible = stats.eligible_indices
    n_moves = eligible.size if n_proposals is None else int(n_proposals)
    if eligible.size:
        pi = np.clip(gamma / K, _PI_CLIP, 1.0 - _PI_CLIP)
        log_odds = np.log(pi) - np.log1p(-pi)

        for i in range(n_subjects):
            n_s, n_u, row = stats.n_s[i], stats.n_u[i], G[i]
            current = subject_log_likelihood(n_s, n_u, alpha_u, alpha_s, row)
            for _ in range(n_moves):
                if rng.random() < flip_probability:
                    k = int(rng.choice(eligible))
                    proposal = row.copy()
                    proposal[k] = not proposal[k]
                    log_prior = log_odds if proposal[k] else -log_odds
                else:
                    inside = np.flatnonzero(row)
                    outside = eligible[~row[eligible]]
                    if inside.size == 0 or outside.size == 0:
                        continue
                    proposal = row.copy()
                    proposal[int(rng.choice(inside))] = False
                    proposal[int(rng.choice(outside))] = True
                    log_prior = 0.0

                counters.pb1 += 1
                counters.subject_proposed[i] += 1
                candidate = subject_log_likelihood(n_s, n_u, alpha_u, alpha_s, proposal)
                if np.log(rng.random()) < candidate - current + log_prior:
                    row = proposal
                    current = candidate
                    counters.pb2 += 1
                    counters.subject_accepted[i] += 1
            G[i] = row

    n_responses = int(G.sum())
    pi = rng.beta(gamma_prior_a + n_responses, gamma_prior_b + n_subjects * eligible.size - n_responses)
    gamma = float(K * np.clip(pi, _PI_CLIP, 1.0 - _PI_CLIP))
    return ActivationUpdate(indicators=G, active=ActiveSet.from_indicators(G), gamma=gamma,
                            mk=G.sum(axis=0), counters=counters)
