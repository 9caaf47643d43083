"""
Coordinate-wise updates of the Dirichlet concentration vectors.

Each ``α[k]`` carries an ``Exponential(λ)`` prior and is updated in turn
against its conditional log density

    log p(α_k | rest) = L(α) - λ · α_k,   α_k > 0

where ``L`` is the stimulated or unstimulated part of the marginal
likelihood (see :mod:`compass_mcmc.likelihood`). The conditional only needs
per-subject sums that stay fixed during a sweep, so one evaluation costs
O(I) plus one background sum per subject that does not respond in ``k``.

Two strategies share this target:

- ``"metropolis"``: normal random-walk proposal, variance ``var_1`` with
  probability ``p_var`` else ``var_2``. Non-positive proposals are rejected.
- ``"gibbs"``: univariate slice sampling (stepping out and shrinkage), a
  move that leaves the exact conditional invariant. A coordinate only stays
  put, and counts as not accepted, when shrinkage runs out of steps.

Classes
-------
AlphaUpdate
    Updated vector plus proposal/acceptance tallies.
HyperparameterUpdater
    One updater per condition and strategy.

Functions
---------
update_alpha_s_exp, update_alpha_s_exp_mh
    Stimulated concentrations, slice and Metropolis variants.
update_alpha_u_nopu_exp, update_alpha_u_nopu_exp_mh
    Unstimulated concentrations with ``Pu`` integrated out.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal, Tuple

import numpy as np
from scipy.special import gammaln

from .errors import InvalidParameterError
from .state import SufficientStats, _check_concentration, indicator_matrix

Condition = Literal["stimulated", "unstimulated"]
Strategy = Literal["gibbs", "metropolis"]

CONDITIONS = ("stimulated", "unstimulated")
STRATEGIES = ("gibbs", "metropolis")


@dataclass(frozen=True)
class AlphaUpdate:
    """Result of one sweep over a concentration vector.

    Attributes
    ----------
    alpha : np.ndarray
        Updated concentrations, a new array.
    proposed : int
        Number of coordinate proposals made.
    accepted : int
        Number of proposals that changed the coordinate.
    """
    alpha: np.ndarray
    proposed: int
    accepted: int


class _StimulatedConditional:
    """Conditional of one ``α_s[k]`` with the other coordinates fixed."""

    def __init__(self, stats: SufficientStats, mask: np.ndarray, rate: float):
        self.rate = rate
        self.mask = mask
        self.background = ~mask
        self.N = stats.N_s.astype(float)
        self.n = stats.n_s.astype(float)
        self.m = np.where(self.background, stats.n_s, 0).sum(axis=1).astype(float)

    def __call__(self, value: float, k: int, alpha: np.ndarray) -> float:
        if value <= 0:
            return -np.inf
        A = alpha.sum() - alpha[k] + value
        logp = np.sum(gammaln(A) - gammaln(A + self.N)) - self.rate * value

        responding = self.mask[:, k]
        logp += np.sum(gammaln(value + self.n[responding, k])) - responding.sum() * gammaln(value)

        rows = self.background[:, k]
        if rows.any():
            bg = self.background[rows]
            A_B = bg @ alpha - alpha[k] + value
            logp += np.sum(gammaln(A_B + self.m[rows]) - gammaln(A_B))
        return float(logp)


class _UnstimulatedConditional:
    """Conditional of one ``α_u[k]`` with ``Pu`` integrated out."""

    def __init__(self, stats: SufficientStats, mask: np.ndarray, rate: float):
        self.rate = rate
        self.mask = mask
        self.background = ~mask
        self.N = stats.N_u.astype(float)
        self.n_u = stats.n_u.astype(float)
        self.pooled = (stats.n_u + stats.n_s).astype(float)
        self.c = np.where(self.background, stats.n_u, 0).sum(axis=1).astype(float)
        self.m = np.where(self.background, stats.n_s, 0).sum(axis=1).astype(float)

    def __call__(self, value: float, k: int, alpha: np.ndarray) -> float:
        if value <= 0:
            return -np.inf
        A = alpha.sum() - alpha[k] + value
        logp = np.sum(gammaln(A) - gammaln(A + self.N)) - self.rate * value

        responding = self.mask[:, k]
        logp += np.sum(gammaln(value + self.n_u[responding, k])) - responding.sum() * gammaln(value)

        rows = self.background[:, k]
        if rows.any():
            bg = self.background[rows]
            A_B = bg @ alpha - alpha[k] + value
            c, m = self.c[rows], self.m[rows]
            logp += np.sum(gammaln(A_B + c) - gammaln(A_B + c + m))
            logp += np.sum(gammaln(value + self.pooled[rows, k])) - rows.sum() * gammaln(value)
        return float(logp)


@dataclass(frozen=True)
class HyperparameterUpdater:
    """Sweep a concentration vector one coordinate at a time.

    Parameters
    ----------
    condition : {"stimulated", "unstimulated"}
        Which part of the likelihood the vector belongs to.
    rate : float
        Rate ``λ`` of the exponential prior on every coordinate.
    strategy : {"gibbs", "metropolis"}
        Slice-sampling move or random-walk Metropolis-Hastings.
    var_1, var_2 : float
        Proposal variances. ``var_1`` also sets the slice width.
    p_var : float
        Probability of proposing with ``var_1`` rather than ``var_2``.
    max_steps : int
        Bound on the stepping-out and shrinkage loops of the slice sampler.
    """
    condition: Condition
    rate: float
    strategy: Strategy = "metropolis"
    var_1: float = 10.0
    var_2: float = 1.0
    p_var: float = 0.5
    max_steps: int = 200

    def __post_init__(self):
        if self.condition not in CONDITIONS:
            raise InvalidParameterError(f"condition must be one of {CONDITIONS}, got {self.condition!r}.")
        if self.strategy not in STRATEGIES:
            raise InvalidParameterError(f"strategy must be one of {STRATEGIES}, got {self.strategy!r}.")
        for name in ("rate", "var_1", "var_2"):
            value = getattr(self, name)
            if not (np.isfinite(value) and value > 0):
                raise InvalidParameterError(f"{name} must be finite and positive, got {value}.")
        if not 0.0 <= self.p_var <= 1.0:
            raise InvalidParameterError(f"p_var must lie in [0, 1], got {self.p_var}.")
        if self.max_steps < 1:
            raise InvalidParameterError(f"max_steps must be at least 1, got {self.max_steps}.")

    def log_conditional(self, stats: SufficientStats, active) -> Callable[[float, int, np.ndarray], float]:
        """Return ``f(value, k, alpha)``, the log conditional of coordinate ``k``."""
        mask = indicator_matrix(active, stats.n_subjects, stats.n_categories)
        if self.condition == "stimulated":
            return _StimulatedConditional(stats, mask, self.rate)
        return _UnstimulatedConditional(stats, mask, self.rate)

    def update(self, alpha, stats: SufficientStats, active, rng: np.random.Generator) -> AlphaUpdate:
        """Run one sweep over all coordinates.

        Parameters
        ----------
        alpha : array-like
            Current concentrations, shape (K,). Not modified.
        stats : SufficientStats
            Count matrices.
        active : array-like of bool or ActiveSet
            Current response indicators, shape (I, K), or categories shared
            by every subject.
        rng : np.random.Generator
            Source of randomness.

        Returns
        -------
        AlphaUpdate
        """
        alpha = _check_concentration(alpha, stats.n_categories, f"alpha_{self.condition[0]}").copy()
        logp = self.log_conditional(stats, active)
        step = self._slice_step if self.strategy == "gibbs" else self._metropolis_step

        accepted = 0
        for k in range(alpha.size):
            value, moved = step(lambda v: logp(v, k, alpha), alpha[k], rng)
            alpha[k] = value
            accepted += int(moved)
        return AlphaUpdate(alpha=alpha, proposed=alpha.size, accepted=accepted)

    def _metropolis_step(self, logp, x0: float, rng: np.random.Generator) -> Tuple[float, bool]:
        var = self.var_1 if rng.random() < self.p_var else self.var_2
        x1 = x0 + np.sqrt(var) * rng.standard_normal()
        if x1 <= 0:
            return x0, False
        log_ratio = logp(x1) - logp(x0)
        if np.log(rng.random()) < log_ratio:
            return x1, True
        return x0, False

    def _slice_step(self, logp, x0: float, rng: np.random.Generator) -> Tuple[float, bool]:
        # Neal (2003), stepping out with a bounded number of steps
        width = np.sqrt(self.var_1)
        level = logp(x0) - rng.exponential()
        left = x0 - width * rng.random()
        right = left + width
        steps_left = int(rng.random() * self.max_steps)
        steps_right = self.max_steps - 1 - steps_left
        while steps_left > 0 and left > 0 and logp(left) > level:
            left -= width
            steps_left -= 1
        while steps_right > 0 and logp(right) > level:
            right += width
            steps_right -= 1
        left = max(left, 0.0)

        for _ in range(self.max_steps):
            x1 = left + rng.random() * (right - left)
            if logp(x1) > level:
                return x1, True
            if x1 < x0:
                left = x1
            else:
                right = x1
        return x0, False


def update_alpha_s_exp(alpha_s, stats: SufficientStats, active, lambda_s: float, rng: np.random.Generator,
                       var_1: float = 10.0, var_2: float = 1.0, p_var: float = 0.5) -> AlphaUpdate:
    """Slice-sampling sweep over ``α_s`` under an ``Exponential(lambda_s)`` prior."""
    updater = HyperparameterUpdater("stimulated", lambda_s, "gibbs", var_1=var_1, var_2=var_2, p_var=p_var)
    return updater.update(alpha_s, stats, active, rng)


def update_alpha_s_exp_mh(alpha_s, stats: SufficientStats, active, lambda_s: float, rng: np.random.Generator,
                          var_1: float = 10.0, var_2: float = 1.0, p_var: float = 0.5) -> AlphaUpdate:
    """Random-walk Metropolis-Hastings sweep over ``α_s``.

    Each coordinate proposes with variance ``var_1`` with probability
    ``p_var`` and with ``var_2`` otherwise.
    """
    updater = HyperparameterUpdater("stimulated", lambda_s, "metropolis", var_1=var_1, var_2=var_2, p_var=p_var)
    return updater.update(alpha_s, stats, active, rng)


def update_alpha_u_nopu_exp(alpha_u, stats: SufficientStats, active, lambda_u: float, rng: np.random.Generator,
                            var_p: float = 1.0) -> AlphaUpdate:
    """Slice-sampling sweep over ``α_u`` with ``Pu`` integrated out."""
    updater = HyperparameterUpdater("unstimulated", lambda_u, "gibbs", var_1=var_p, var_2=var_p, p_var=1.0)
    return updater.update(alpha_u, stats, active, rng)


def update_alpha_u_nopu_exp_mh(alpha_u, stats: SufficientStats, active, lambda_u: float, rng: np.random.Generator,
                               var_p: float = 1.0) -> AlphaUpdate:
    """Random-walk Metropolis-Hastings sweep over ``α_u``, proposal variance ``var_p``."""
    updater = HyperparameterUpdater("unstimulated", lambda_u, "metropolis", var_1=var_p, var_2=var_p, p_var=1.0)
    return updater.update(alpha_u, stats, active, rng)
