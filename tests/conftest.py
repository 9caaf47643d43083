from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from compass_mcmc import SamplerConfig, SufficientStats


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def small_counts():
    """Three subjects, four categories; category 0 is induced by stimulation."""
    n_s = np.array([
        [50, 5, 3, 942],
        [40, 2, 6, 952],
        [60, 4, 2, 934],
    ])
    n_u = np.array([
        [2, 4, 3, 991],
        [1, 3, 5, 991],
        [3, 5, 2, 990],
    ])
    return n_s, n_u


@pytest.fixture
def stats(small_counts):
    return SufficientStats.from_counts(*small_counts)


@pytest.fixture
def quick_config():
    return SamplerConfig(n_iterations=50, seed=11)


@pytest.fixture
def cell_tables():
    """Per-cell tables for two subjects over three markers."""
    rng = np.random.default_rng(3)
    markers = ["IFNg", "IL2", "TNFa"]
    tables = {}
    for name, n_cells in (("donor_a", 400), ("donor_b", 250)):
        tables[name] = pd.DataFrame(rng.random((n_cells, 3)) < 0.3, columns=markers)
    return tables
