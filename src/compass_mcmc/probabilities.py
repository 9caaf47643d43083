"""
Per-subject category-probability draws.

Given subject i's response categories S_i, background B_i and the
concentrations, the conditional posterior of the subject factorizes into

    Ps_i[S_i], q_i  ~ Dirichlet(α_s[S_i] + n_s,i[S_i],  Σα_s[B_i] + m_i)
    Pu_i[S_i], b_i  ~ Dirichlet(α_u[S_i] + n_u,i[S_i],  Σα_u[B_i] + c_i)
    r_i             ~ Dirichlet(α_u[B_i] + n_u,i[B_i] + n_s,i[B_i])
    Ps_i[B_i] = q_i · r_i,   Pu_i[B_i] = b_i · r_i

with ``m_i``/``c_i`` the stimulated/unstimulated background totals. All
Dirichlet draws are normalized gamma variates clamped below at ``eps``.

Both entry points make the same generator calls (one gamma variate per
subject and category for each condition, then the buckets, then the
background shape), so for a fixed seed the full draw restricted to a
subject's response categories reproduces the restricted draw.

Functions
---------
sample_pu_ps
    Draw restricted to each subject's response categories (zero elsewhere).
sample_pu_ps_full
    Draw over all categories with a floor on non-responding entries.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

from .errors import InvalidActiveSetError, InvalidParameterError
from .state import SufficientStats, _check_concentration, indicator_matrix

DEFAULT_EPS = 1e-300


@dataclass(frozen=True)
class ProbabilityDraw:
    """Category-probability draws for every subject.

    Attributes
    ----------
    ps : np.ndarray
        Stimulated probabilities, shape (n_subjects, n_categories).
    pu : np.ndarray
        Unstimulated probabilities, same shape.
    """
    ps: np.ndarray
    pu: np.ndarray


class _Variates(NamedTuple):
    g_s: np.ndarray
    g_u: np.ndarray
    bucket_s: np.ndarray
    bucket_u: np.ndarray
    shape: np.ndarray


def _prepare(alpha_u, alpha_s, gamma, active, stats: SufficientStats, eps: float):
    K = stats.n_categories
    alpha_u = _check_concentration(alpha_u, K, "alpha_u")
    alpha_s = _check_concentration(alpha_s, K, "alpha_s")
    mask = indicator_matrix(active, stats.n_subjects, K)
    if not (np.isfinite(gamma) and 0.0 < gamma < K):
        raise InvalidActiveSetError(f"gamma must lie in (0, {K}), got {gamma}.")
    if not (0.0 < eps < 1.0):
        raise InvalidParameterError(f"eps must lie in (0, 1), got {eps}.")
    return alpha_u, alpha_s, mask


def _draw_variates(alpha_u, alpha_s, mask, stats: SufficientStats, rng: np.random.Generator,
                   eps: float) -> _Variates:
    background = ~mask
    has_background = background.any(axis=1)
    n_s, n_u = stats.n_s, stats.n_u

    g_s = np.where(mask, np.maximum(rng.gamma(alpha_s + n_s), eps), 0.0)
    g_u = np.where(mask, np.maximum(rng.gamma(alpha_u + n_u), eps), 0.0)

    m = np.where(background, n_s, 0).sum(axis=1)
    c = np.where(background, n_u, 0).sum(axis=1)
    shape_s = np.where(has_background, np.where(background, alpha_s, 0.0).sum(axis=1) + m, 1.0)
    shape_u = np.where(has_background, np.where(background, alpha_u, 0.0).sum(axis=1) + c, 1.0)
    bucket_s = np.where(has_background, np.maximum(rng.gamma(shape_s), eps), 0.0)
    bucket_u = np.where(has_background, np.maximum(rng.gamma(shape_u), eps), 0.0)

    shape = np.where(background, np.maximum(rng.gamma(alpha_u + n_u + n_s), eps), 0.0)
    totals = shape.sum(axis=1, keepdims=True)
    shape = shape / np.where(totals > 0, totals, 1.0)
    return _Variates(g_s, g_u, bucket_s, bucket_u, shape)


def _compose_full(v: _Variates, mask, gamma: float, alpha_u, alpha_s, stats: SufficientStats,
                  floor_scale: float) -> ProbabilityDraw:
    background = ~mask
    total_s = v.g_s.sum(axis=1) + v.bucket_s
    total_u = v.g_u.sum(axis=1) + v.bucket_u
    ps = (v.g_s + v.bucket_s[:, None] * v.shape) / total_s[:, None]
    pu = (v.g_u + v.bucket_u[:, None] * v.shape) / total_u[:, None]

    if floor_scale > 0:
        pseudo = floor_scale * gamma / stats.n_categories
        floor_s = (pseudo / (stats.N_s + alpha_s.sum()))[:, None]
        floor_u = (pseudo / (stats.N_u + alpha_u.sum()))[:, None]
        ps = np.where(background, np.maximum(ps, floor_s), ps)
        pu = np.where(background, np.maximum(pu, floor_u), pu)

    ps /= ps.sum(axis=1, keepdims=True)
    pu /= pu.sum(axis=1, keepdims=True)
    return ProbabilityDraw(ps=ps, pu=pu)


def sample_pu_ps(alpha_u, alpha_s, gamma: float, active, stats: SufficientStats, rng: np.random.Generator,
                 eps: float = DEFAULT_EPS) -> ProbabilityDraw:
    """Draw ``Ps`` and ``Pu`` restricted to each subject's response categories.

    Each row is a Dirichlet draw over the categories in which the subject
    responds; other entries are zero. A subject that responds nowhere has
    nothing to restrict to and receives its row of the full draw of
    :func:`sample_pu_ps_full` instead.

    Parameters
    ----------
    alpha_u, alpha_s : array-like
        Concentrations, shape (K,).
    gamma : float
        Mass parameter, must lie in (0, K).
    active : array-like of bool or ActiveSet
        Response indicators, shape (I, K), or categories shared by every
        subject (a mask, an ActiveSet or category indices).
    stats : SufficientStats
        Count matrices.
    rng : np.random.Generator
        Source of randomness.
    eps : float
        Lower clamp of the gamma variates.

    Returns
    -------
    ProbabilityDraw
    """
    alpha_u, alpha_s, mask = _prepare(alpha_u, alpha_s, gamma, active, stats, eps)
    v = _draw_variates(alpha_u, alpha_s, mask, stats, rng, eps)
    full = _compose_full(v, mask, gamma, alpha_u, alpha_s, stats, floor_scale=1.0)

    responds = mask.any(axis=1)
    sum_s = v.g_s.sum(axis=1, keepdims=True)
    sum_u = v.g_u.sum(axis=1, keepdims=True)
    ps = np.where(responds[:, None], v.g_s / np.where(sum_s > 0, sum_s, 1.0), full.ps)
    pu = np.where(responds[:, None], v.g_u / np.where(sum_u > 0, sum_u, 1.0), full.pu)
    return ProbabilityDraw(ps=ps, pu=pu)


def sample_pu_ps_full(alpha_u, alpha_s, gamma: float, active, stats: SufficientStats, rng: np.random.Generator,
                      eps: float = DEFAULT_EPS, floor_scale: float = 1.0) -> ProbabilityDraw:
    """Draw ``Ps`` and ``Pu`` over all categories.

    Response entries come from the same generator calls as in
    :func:`sample_pu_ps`, so restricting this draw to a subject's response
    categories and renormalizing reproduces the restricted draw. The other
    entries are floored at ``floor_scale * gamma / K`` pseudo-cells, i.e.
    ``floor_scale * gamma / K / (N_i + Σα)``, and each row is renormalized.

    Returns
    -------
    ProbabilityDraw
        Rows are simplices over all K categories.
    """
    alpha_u, alpha_s, mask = _prepare(alpha_u, alpha_s, gamma, active, stats, eps)
    if not (np.isfinite(floor_scale) and floor_scale >= 0):
        raise InvalidParameterError(f"floor_scale must be finite and non-negative, got {floor_scale}.")
    v = _draw_variates(alpha_u, alpha_s, mask, stats, rng, eps)
    return _compose_full(v, mask, gamma, alpha_u, alpha_s, stats, floor_scale)
