from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from compass_mcmc import (
    SamplerConfig,
    acceptance_rates,
    activation_probability,
    build_count_matrices,
    fit_compass,
    mean_gamma,
    posterior_diff,
    posterior_log_diff,
    posterior_ps,
    posterior_pu,
    run_chain,
    simulate_compass_data,
)


@pytest.fixture
def labeled_chain(small_counts):
    n_s, n_u = small_counts
    index = ["s1", "s2", "s3"]
    columns = ["a", "b", "c", "null"]
    return run_chain(pd.DataFrame(n_s, index=index, columns=columns),
                     pd.DataFrame(n_u, index=index, columns=columns),
                     SamplerConfig(n_iterations=80, burn_in=20, seed=6))


def test_posterior_means_are_labeled_simplices(labeled_chain):
    ps = posterior_ps(labeled_chain)
    pu = posterior_pu(labeled_chain)
    assert list(ps.index) == ["s1", "s2", "s3"]
    assert list(ps.columns) == ["a", "b", "c", "null"]
    np.testing.assert_allclose(ps.sum(axis=1), 1.0, atol=1e-9)
    np.testing.assert_allclose(pu.sum(axis=1), 1.0, atol=1e-9)


def test_differences_are_consistent(labeled_chain):
    diff = posterior_diff(labeled_chain)
    np.testing.assert_allclose(diff.to_numpy(),
                               posterior_ps(labeled_chain).to_numpy() - posterior_pu(labeled_chain).to_numpy())
    log_diff = posterior_log_diff(labeled_chain)
    assert np.all(np.isfinite(log_diff.to_numpy()))
    assert log_diff.loc["s1", "a"] > 0


def test_activation_probability_and_rates(labeled_chain):
    prob = activation_probability(labeled_chain)
    assert list(prob.index) == ["a", "b", "c", "null"]
    assert prob.between(0, 1).all()
    np.testing.assert_allclose(prob.to_numpy(), labeled_chain.trajectory.active.mean(axis=0))

    rates = acceptance_rates([labeled_chain, labeled_chain])
    assert len(rates) == 2
    assert (rates["pb1"] >= rates["pb2"]).all()


def test_pooling_chains_averages_draws(labeled_chain):
    pooled = posterior_ps([labeled_chain, labeled_chain])
    pd.testing.assert_frame_equal(pooled, posterior_ps(labeled_chain))


def test_missing_probabilities_raise(small_counts):
    result = run_chain(*small_counts, SamplerConfig(n_iterations=5, store_probabilities=False, seed=0))
    with pytest.raises(ValueError, match="store_probabilities"):
        posterior_ps(result)
    assert len(activation_probability(result)) == 4


def test_fit_summaries_leave_out_the_null_category():
    stimulated, unstimulated, _ = simulate_compass_data(n_subjects=5, n_cells_s=600, n_cells_u=600,
                                                        background_rate=0.05, seed=3)
    data = build_count_matrices(stimulated, unstimulated, category_filter=None)
    fit = fit_compass(data, SamplerConfig(n_iterations=30, n_chains=2), seed=1, num_cores=1)

    assert len(fit.chains) == 2
    diff = posterior_diff(fit)
    assert "null" not in diff.columns
    assert diff.shape == (data.n_s.shape[0], data.n_s.shape[1] - 1)
    assert "null" in posterior_ps(fit, include_null=True).columns
    assert not fit.chains[0].trajectory.active[:, -1].any()


def test_mean_gamma_is_a_labeled_probability_matrix(labeled_chain):
    gamma = mean_gamma(labeled_chain)
    assert list(gamma.index) == ["s1", "s2", "s3"]
    assert list(gamma.columns) == ["a", "b", "c", "null"]
    assert ((gamma >= 0) & (gamma <= 1)).all().all()
    np.testing.assert_allclose(gamma.to_numpy(), labeled_chain.trajectory.indicators.mean(axis=0))
    np.testing.assert_allclose(activation_probability(labeled_chain).to_numpy(),
                               labeled_chain.trajectory.indicators.any(axis=1).mean(axis=0))


def test_subjects_with_different_evidence_get_different_response_probabilities():
    n_s = np.array([[300, 50, 650], [5, 50, 945]])
    n_u = np.array([[5, 50, 945], [5, 50, 945]])
    result = run_chain(n_s, n_u, SamplerConfig(n_iterations=400, burn_in=100, seed=12))
    gamma = mean_gamma(result)
    assert gamma.loc[0, 0] > 0.9
    assert gamma.loc[1, 0] < 0.5
    assert activation_probability(result).loc[0] > 0.9


def test_acceptance_rates_by_subject(labeled_chain):
    rates = acceptance_rates([labeled_chain, labeled_chain], by_subject=True)
    assert list(rates.index) == ["s1", "s2", "s3"]
    assert rates.shape == (3, 2)
    counters = labeled_chain.final_state.counters
    np.testing.assert_allclose(rates[0].to_numpy(), counters.subject_accepted / counters.subject_proposed)
    assert rates.stack().between(0, 1).all()
