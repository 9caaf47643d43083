from __future__ import annotations

import pytest

from compass_mcmc import InvalidParameterError, SamplerConfig


def test_defaults_are_valid():
    config = SamplerConfig()
    assert config.strategy == "metropolis"
    assert config.n_retained == config.n_iterations


@pytest.mark.parametrize(
    "n_iterations, burn_in, thin",
    [(10, 0, 1), (10, 3, 1), (10, 3, 2), (10, 9, 4), (7, 2, 3)],
)
def test_retained_iterations_match_count(n_iterations, burn_in, thin):
    config = SamplerConfig(n_iterations=n_iterations, burn_in=burn_in, thin=thin)
    retained = [t for t in range(1, n_iterations + 1) if config.is_retained(t)]
    assert len(retained) == config.n_retained
    assert retained[0] == burn_in + 1


@pytest.mark.parametrize("start", [0, 2, 5, 9, 30])
@pytest.mark.parametrize("burn_in, thin", [(0, 1), (6, 1), (4, 3)])
def test_retained_iterations_after_resume_match_count(start, burn_in, thin):
    config = SamplerConfig(n_iterations=8, burn_in=burn_in, thin=thin)
    retained = [t for t in range(start + 1, start + 9) if config.is_retained(t)]
    assert config.n_retained_after(start) == len(retained)


@pytest.mark.parametrize(
    "changes",
    [
        {"n_iterations": 0},
        {"burn_in": 50, "n_iterations": 50},
        {"thin": 0},
        {"strategy": "nuts"},
        {"rate_s": 0.0},
        {"var_p": -1.0},
        {"p_var": 1.1},
        {"flip_probability": -0.1},
        {"gamma_init": 0.0},
        {"eps": 0.0},
        {"floor_scale": -1.0},
        {"n_chains": 0},
        {"num_cores": 0},
        {"fisher_threshold": 0.0},
    ],
)
def test_invalid_values_raise(changes):
    with pytest.raises(InvalidParameterError):
        SamplerConfig(**changes)


def test_from_dict_round_trip_and_unknown_keys():
    config = SamplerConfig.from_dict({"n_iterations": 200, "strategy": "gibbs", "seed": 3})
    assert SamplerConfig.from_dict(config.to_dict()) == config
    with pytest.raises(InvalidParameterError, match="n_iter"):
        SamplerConfig.from_dict({"n_iter": 10})


def test_replace_validates():
    config = SamplerConfig(n_iterations=100)
    assert config.replace(thin=5).n_retained == 20
    with pytest.raises(InvalidParameterError):
        config.replace(burn_in=100)
