"""
Synthetic per-cell data with known responses.

Functions
---------
simulate_compass_data
    Generate paired stimulated/unstimulated cell tables.
"""
from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .counts import combination_label
from .errors import InvalidParameterError

DEFAULT_MARKERS = ("IFNg", "IL2", "TNFa", "CD154")
DEFAULT_RESPONSES = (("IFNg", "TNFa"), ("IFNg", "IL2", "TNFa"))


def simulate_compass_data(
    n_subjects: int = 20,
    markers: Sequence[str] = DEFAULT_MARKERS,
    n_cells_s: int = 5000,
    n_cells_u: int = 5000,
    background_rate: float = 0.01,
    response_categories: Sequence[Sequence[str]] = DEFAULT_RESPONSES,
    responder_fraction: float = 0.5,
    response_rate: float = 0.01,
    background_rates: Optional[Sequence[float]] = None,
    seed: int = 42,
) -> Tuple[Dict[str, pd.DataFrame], Dict[str, pd.DataFrame], Dict]:
    """Generate per-cell marker tables for paired samples.

    Every cell is positive for each marker independently with the marker's
    background rate, in both conditions. In the stimulated sample of a
    responder, a further ``Binomial(n_cells_s, response_rate)`` cells per
    response category are replaced by cells expressing exactly that
    category's markers.

    Parameters
    ----------
    n_subjects : int
        Number of subjects.
    markers : sequence of str
        Marker names.
    n_cells_s, n_cells_u : int
        Cells per stimulated / unstimulated sample.
    background_rate : float
        Per-marker positivity rate of unresponsive cells.
    response_categories : sequence of sequence of str
        Positive markers of each induced category.
    responder_fraction : float
        Probability that a subject responds.
    response_rate : float
        Expected fraction of stimulated cells per response category.
    background_rates : sequence of float, optional
        Per-marker background rates, overriding ``background_rate``.
    seed : int
        Random seed.

    Returns
    -------
    stimulated, unstimulated : dict
        Subject -> boolean ``pd.DataFrame`` (cells x markers).
    truth : dict
        ``responders`` (subject names), ``response_categories`` (labels) and
        ``background_rates``.
    """
    markers = list(markers)
    if n_subjects < 1:
        raise InvalidParameterError(f"n_subjects must be at least 1, got {n_subjects}")
    rates = np.full(len(markers), background_rate) if background_rates is None else np.asarray(background_rates, float)
    if rates.shape != (len(markers),) or np.any((rates < 0) | (rates > 1)):
        raise InvalidParameterError("Background rates must be probabilities, one per marker.")
    for name, value in (("responder_fraction", responder_fraction), ("response_rate", response_rate)):
        if not 0.0 <= value <= 1.0:
            raise InvalidParameterError(f"{name} must lie in [0, 1], got {value}")

    patterns = []
    for category in response_categories:
        unknown = [m for m in category if m not in markers]
        if unknown:
            raise InvalidParameterError(f"Response category {tuple(category)} names unknown markers {unknown}")
        patterns.append(np.isin(markers, list(category)))

    rng = np.random.default_rng(seed)
    subjects = [f"subject_{i + 1:02d}" for i in range(n_subjects)]
    responders = []
    stimulated, unstimulated = {}, {}
    for subject in subjects:
        cells_u = rng.random((n_cells_u, len(markers))) < rates
        cells_s = rng.random((n_cells_s, len(markers))) < rates

        if rng.random() < responder_fraction:
            responders.append(subject)
            order = rng.permutation(n_cells_s)
            start = 0
            for pattern in patterns:
                n_resp = min(rng.binomial(n_cells_s, response_rate), n_cells_s - start)
                cells_s[order[start:start + n_resp]] = pattern
                start += n_resp

        stimulated[subject] = pd.DataFrame(cells_s, columns=markers)
        unstimulated[subject] = pd.DataFrame(cells_u, columns=markers)

    truth = {
        "responders": responders,
        "response_categories": [combination_label(p, markers) for p in patterns],
        "background_rates": rates,
    }
    return stimulated, unstimulated, truth
