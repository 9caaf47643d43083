"""
Log marginal likelihood of the stimulated/unstimulated count pair.

The model, per subject i with response indicators G_i (the
categories S_i in which the subject responds) and background B_i (the
complement of S_i):

    Pu_i ~ Dirichlet(α_u)
    n_u,i | Pu_i ~ Multinomial(N_u,i, Pu_i)

    Q_i ~ Dirichlet(α_s[S_i], Σ α_s[B_i])
    Ps_i[S_i] = Q_i[S_i],  Ps_i[B_i] = Q_i[bucket] · Pu_i[B_i] / Σ Pu_i[B_i]
    n_s,i | Ps_i ~ Multinomial(N_s,i, Ps_i)

Categories in which a subject does not respond share a single stimulated
bucket whose internal shape is the subject's background shape of ``Pu``.
Integrating out ``Q`` and ``Pu`` leaves a product of Dirichlet-Multinomial
terms that is evaluated here in log space. Multinomial coefficients are
dropped since they never depend on the parameters.

For a subject that responds nowhere, ``Ps_i = Pu_i`` and its likelihood
reduces to the Dirichlet-Multinomial of the pooled counts ``n_u + n_s``
under ``α_u``.

The ``active`` argument of every function is either an (I, K) boolean
indicator matrix or a category set shared by all subjects (see
:func:`~compass_mcmc.state.indicator_matrix`).

Functions
---------
dm_log_likelihood
    Dirichlet-Multinomial log-likelihood of a count matrix.
stimulated_log_likelihood
    Stimulated part, integrating out the per-subject active probabilities.
unstimulated_log_likelihood
    Unstimulated part, integrating out ``Pu``.
marginal_log_likelihood
    Sum of both parts for given response indicators.
subject_log_likelihood
    Both parts for a single subject's counts and indicator row.
"""
from __future__ import annotations

import numpy as np
from scipy.special import gammaln

from .state import SufficientStats, indicator_matrix


def dm_log_likelihood_per_subject(counts: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """Per-row Dirichlet-Multinomial log-likelihood, without the multinomial coefficient."""
    N = counts.sum(axis=1)
    alpha_sum = alpha.sum()
    return (gammaln(alpha_sum) - gammaln(N + alpha_sum) +
            np.sum(gammaln(counts + alpha) - gammaln(alpha), axis=1))


def dm_log_likelihood(counts: np.ndarray, alpha: np.ndarray) -> float:
    """Compute the Dirichlet-Multinomial log-likelihood of a count matrix.

    Parameters
    ----------
    counts : np.ndarray
        Count matrix, shape (n_subjects, n_categories).
    alpha : np.ndarray
        Concentration vector shared by all rows, shape (n_categories,).

    Returns
    -------
    float
        Log-likelihood summed over rows.
    """
    # DirMult(n | α) = Γ(Σα) / Γ(N + Σα) × Π_k Γ(n_k + α_k) / Γ(α_k)
    return float(np.sum(dm_log_likelihood_per_subject(np.asarray(counts, dtype=float),
                                                      np.asarray(alpha, dtype=float))))


def _bucket_sum(values: np.ndarray, background: np.ndarray) -> np.ndarray:
    return np.where(background, values, 0.0).sum(axis=1)


def _stimulated_terms(n_s: np.ndarray, alpha_s: np.ndarray, mask: np.ndarray) -> np.ndarray:
    background = ~mask
    has_background = background.any(axis=1)
    A = alpha_s.sum()

    ll = gammaln(A) - gammaln(A + n_s.sum(axis=1))
    ll = ll + np.sum(np.where(mask, gammaln(n_s + alpha_s) - gammaln(alpha_s), 0.0), axis=1)

    # rows without background contribute nothing here
    A_B = np.where(has_background, _bucket_sum(np.broadcast_to(alpha_s, mask.shape), background), 1.0)
    m = _bucket_sum(n_s, background)
    return ll + np.where(has_background, gammaln(A_B + m) - gammaln(A_B), 0.0)


def _unstimulated_terms(n_s: np.ndarray, n_u: np.ndarray, alpha_u: np.ndarray, mask: np.ndarray) -> np.ndarray:
    background = ~mask
    has_background = background.any(axis=1)
    A = alpha_u.sum()

    ll = gammaln(A) - gammaln(A + n_u.sum(axis=1))
    ll = ll + np.sum(np.where(mask, gammaln(n_u + alpha_u) - gammaln(alpha_u), 0.0), axis=1)

    A_B = np.where(has_background, _bucket_sum(np.broadcast_to(alpha_u, mask.shape), background), 1.0)
    c = _bucket_sum(n_u, background)
    m = _bucket_sum(n_s, background)
    # stimulated background cells share the Pu[B] shape
    ll = ll + np.where(has_background, gammaln(A_B + c) - gammaln(A_B + c + m), 0.0)
    return ll + np.sum(np.where(background, gammaln(alpha_u + n_u + n_s) - gammaln(alpha_u), 0.0), axis=1)


def stimulated_log_likelihood_per_subject(stats: SufficientStats, alpha_s: np.ndarray, active) -> np.ndarray:
    mask = indicator_matrix(active, stats.n_subjects, stats.n_categories)
    return _stimulated_terms(stats.n_s, np.asarray(alpha_s, dtype=float), mask)


def unstimulated_log_likelihood_per_subject(stats: SufficientStats, alpha_u: np.ndarray, active) -> np.ndarray:
    mask = indicator_matrix(active, stats.n_subjects, stats.n_categories)
    return _unstimulated_terms(stats.n_s, stats.n_u, np.asarray(alpha_u, dtype=float), mask)


def subject_log_likelihood(n_s_row: np.ndarray, n_u_row: np.ndarray, alpha_u: np.ndarray, alpha_s: np.ndarray,
                           mask_row: np.ndarray) -> float:
    """Marginal log-likelihood of one subject for one row of indicators.

    No validation is done; this is the inner scoring function of the
    activation moves.
    """
    n_s, n_u, mask = n_s_row[None, :], n_u_row[None, :], mask_row[None, :]
    return float(_stimulated_terms(n_s, alpha_s, mask)[0] + _unstimulated_terms(n_s, n_u, alpha_u, mask)[0])


def stimulated_log_likelihood(stats: SufficientStats, alpha_s: np.ndarray, active) -> float:
    """Stimulated contribution to the marginal log-likelihood.

    Parameters
    ----------
    stats : SufficientStats
        Count matrices and totals.
    alpha_s : np.ndarray
        Stimulated concentrations, shape (K,).
    active : array-like of bool or ActiveSet
        Response indicators of shape (I, K), or categories shared by all
        subjects.
    """
    return float(np.sum(stimulated_log_likelihood_per_subject(stats, alpha_s, active)))


def unstimulated_log_likelihood(stats: SufficientStats, alpha_u: np.ndarray, active) -> float:
    """Unstimulated contribution to the marginal log-likelihood.

    Includes the background cells of the stimulated condition, which share
    the unstimulated shape.
    """
    return float(np.sum(unstimulated_log_likelihood_per_subject(stats, alpha_u, active)))


def marginal_log_likelihood(stats: SufficientStats, alpha_u: np.ndarray, alpha_s: np.ndarray, active) -> float:
    """Log marginal likelihood of both conditions for given response indicators."""
    return (stimulated_log_likelihood(stats, alpha_s, active) +
            unstimulated_log_likelihood(stats, alpha_u, active))
