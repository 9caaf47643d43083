"""
Sampler configuration.

Classes
-------
SamplerConfig
    Frozen, validated settings for one or more chains.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import numpy as np

from .errors import InvalidParameterError
from .hyperparameters import STRATEGIES, Strategy


@dataclass(frozen=True)
class SamplerConfig:
    """Settings of the MCMC driver.

    Attributes
    ----------
    n_iterations : int
        Iterations per chain (per call when a chain is resumed).
    burn_in : int
        Leading iterations that are not recorded. Iteration numbers count
        from the start of the chain, also across resumed runs.
    thin : int
        Record every ``thin``-th iteration after burn-in.
    strategy : {"metropolis", "gibbs"}
        Update rule for both concentration vectors.
    rate_s, rate_u : float
        Rates of the exponential priors on ``alpha_s`` and ``alpha_u``.
    alpha_s_init, alpha_u_init : float
        Starting value of every concentration.
    var_1, var_2, p_var : float
        Proposal mixture for ``alpha_s``.
    var_p : float
        Proposal variance for ``alpha_u``.
    gamma_prior_a, gamma_prior_b : float
        Beta prior on ``gamma / K``, the prior probability that a subject
        responds in an eligible category.
    gamma_init : float, optional
        Starting mass parameter. Defaults to the prior mean ``K * a / (a + b)``.
        Must lie below ``K``; checked when a chain starts.
    flip_probability : float
        Probability of a flip (rather than swap) activation move.
    n_activation_proposals : int, optional
        Activation moves per subject and iteration. Defaults to the number
        of eligible categories.
    floor_scale : float
        Pseudo-cell multiplier of the floor on inactive probabilities.
    eps : float
        Lower clamp of gamma variates in Dirichlet draws.
    full_probabilities : bool
        Draw ``Ps``/``Pu`` over all categories rather than the active ones.
    store_probabilities : bool
        Keep the ``Ps``/``Pu`` trajectory (memory grows with I * K per
        retained iteration).
    init_with_fisher : bool
        Start with categories that pass a one-sided Fisher exact test.
    fisher_threshold : float
        p-value cut-off for ``init_with_fisher``.
    seed : int, optional
        Seed of the chain's generator.
    n_chains : int
        Number of independent chains for :func:`~compass_mcmc.sampler.run_chains`.
    num_cores : int, optional
        Worker processes for multiple chains.
    log_every : int
        Log progress every this many iterations (0 disables).
    """
    n_iterations: int = 40000
    burn_in: int = 0
    thin: int = 1
    strategy: Strategy = "metropolis"
    rate_s: float = 0.1
    rate_u: float = 0.1
    alpha_s_init: float = 10.0
    alpha_u_init: float = 10.0
    var_1: float = 10.0
    var_2: float = 1.0
    p_var: float = 0.5
    var_p: float = 1.0
    gamma_prior_a: float = 1.0
    gamma_prior_b: float = 1.0
    gamma_init: Optional[float] = None
    flip_probability: float = 0.5
    n_activation_proposals: Optional[int] = None
    floor_scale: float = 1.0
    eps: float = 1e-300
    full_probabilities: bool = True
    store_probabilities: bool = True
    init_with_fisher: bool = False
    fisher_threshold: float = 0.05
    seed: Optional[int] = None
    n_chains: int = 1
    num_cores: Optional[int] = None
    log_every: int = 0

    def __post_init__(self):
        if self.n_iterations < 1:
            raise InvalidParameterError(f"n_iterations must be at least 1, got {self.n_iterations}.")
        if not 0 <= self.burn_in < self.n_iterations:
            raise InvalidParameterError(
                f"burn_in must lie in [0, n_iterations={self.n_iterations}), got {self.burn_in}."
            )
        if self.thin < 1:
            raise InvalidParameterError(f"thin must be at least 1, got {self.thin}.")
        if self.strategy not in STRATEGIES:
            raise InvalidParameterError(f"strategy must be one of {STRATEGIES}, got {self.strategy!r}.")

        for name in ("rate_s", "rate_u", "alpha_s_init", "alpha_u_init", "var_1", "var_2", "var_p",
                     "gamma_prior_a", "gamma_prior_b"):
            value = getattr(self, name)
            if not (np.isfinite(value) and value > 0):
                raise InvalidParameterError(f"{name} must be finite and positive, got {value}.")
        for name in ("p_var", "flip_probability"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidParameterError(f"{name} must lie in [0, 1], got {value}.")

        if self.gamma_init is not None and not (np.isfinite(self.gamma_init) and self.gamma_init > 0):
            raise InvalidParameterError(f"gamma_init must be finite and positive, got {self.gamma_init}.")
        if self.n_activation_proposals is not None and self.n_activation_proposals < 0:
            raise InvalidParameterError(
                f"n_activation_proposals must be non-negative, got {self.n_activation_proposals}."
            )
        if not (np.isfinite(self.floor_scale) and self.floor_scale >= 0):
            raise InvalidParameterError(f"floor_scale must be finite and non-negative, got {self.floor_scale}.")
        if not 0.0 < self.eps < 1.0:
            raise InvalidParameterError(f"eps must lie in (0, 1), got {self.eps}.")
        if not 0.0 < self.fisher_threshold <= 1.0:
            raise InvalidParameterError(f"fisher_threshold must lie in (0, 1], got {self.fisher_threshold}.")
        if self.n_chains < 1:
            raise InvalidParameterError(f"n_chains must be at least 1, got {self.n_chains}.")
        if self.num_cores is not None and self.num_cores < 1:
            raise InvalidParameterError(f"num_cores must be at least 1, got {self.num_cores}.")
        if self.log_every < 0:
            raise InvalidParameterError(f"log_every must be non-negative, got {self.log_every}.")

    @property
    def n_retained(self) -> int:
        """Number of iterations recorded in the trajectory of a fresh chain."""
        return self.n_retained_after(0)

    def n_retained_after(self, start: int) -> int:
        """Number of recorded iterations when a chain resumes after iteration ``start``."""
        first = self.burn_in + 1
        if start >= first:
            first += -(-(start + 1 - first) // self.thin) * self.thin
        return len(range(first, start + self.n_iterations + 1, self.thin))

    def is_retained(self, iteration: int) -> bool:
        """Whether 1-based ``iteration`` is recorded."""
        return iteration > self.burn_in and (iteration - self.burn_in - 1) % self.thin == 0

    def replace(self, **changes) -> "SamplerConfig":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "SamplerConfig":
        """Build a config from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise InvalidParameterError(f"Unknown sampler settings: {unknown}")
        return cls(**dict(values))

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)
