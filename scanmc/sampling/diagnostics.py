"""Convergence diagnostics for the MCMC and PMC samplers.

This module provides the potential-scale-reduction factor (R-value) across
Markov chains and the importance-sampling statistics monitored by PMC:
normalized effective sample size, normalized perplexity and the relative
standard deviation of a monitored statistic.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from scipy.special import xlogy

from scanmc.utils.logging import get_logger

logger = get_logger(__name__)

# Default convergence thresholds
DEFAULT_RVALUE_CRITERION = 1.1


def _stack_histories(histories: Sequence[np.ndarray] | np.ndarray) -> np.ndarray:
    """Return histories as ``(n_chains, n_samples, n_parameters)``.

    Chains of different lengths are truncated to the shortest one, keeping
    their most recent samples.
    """
    if isinstance(histories, np.ndarray) and histories.ndim == 3:
        return histories

    arrays = [np.asarray(h, dtype=float) for h in histories]
    arrays = [a.reshape(-1, 1) if a.ndim == 1 else a for a in arrays]
    n = min(a.shape[0] for a in arrays)
    return np.stack([a[a.shape[0] - n :] for a in arrays])


def compute_r_values(
    histories: Sequence[np.ndarray] | np.ndarray,
    strict: bool = True,
) -> np.ndarray:
    """Compute the R-value (Gelman-Rubin diagnostic) for each parameter.

    R-value measures chain convergence by comparing within-chain and
    between-chain variance. Values close to 1.0 indicate convergence.

    With ``m`` chains of ``n`` samples, ``W`` the mean within-chain variance
    and ``B/n`` the variance of the chain means:

    - relaxed: ``R = sqrt(((n - 1)/n W + B/n) / W)`` (Gelman & Rubin 1992)
    - strict: ``R = ((n - 1)/n W + (m + 1)/m B/n) / W``, i.e. the pooled
      variance corrected for the sampling variability of the chain means and
      not square-rooted, which only passes a threshold later.

    Parameters
    ----------
    histories : sequence of np.ndarray or np.ndarray
        Per-chain samples, each ``(n_samples, n_parameters)``.
    strict : bool
        Select the strict or relaxed definition.

    Returns
    -------
    np.ndarray
        R-value per parameter. Chains that are constant and identical give
        1.0; constant but different chains give ``inf``. Fewer than two
        chains give NaN.
    """
    samples = _stack_histories(histories)
    n_chains, n_samples, n_params = samples.shape

    if n_chains < 2 or n_samples < 2:
        # Cannot compute R-value with single chain
        return np.full(n_params, np.nan)

    chain_means = np.mean(samples, axis=1)
    between = np.var(chain_means, axis=0, ddof=1)  # B / n
    within = np.mean(np.var(samples, axis=1, ddof=1), axis=0)  # W

    if strict:
        pooled = (n_samples - 1) / n_samples * within + (n_chains + 1) / n_chains * between
    else:
        pooled = (n_samples - 1) / n_samples * within + between

    r_values = np.empty(n_params)
    for i in range(n_params):
        if within[i] > 0:
            ratio = pooled[i] / within[i]
            r_values[i] = ratio if strict else np.sqrt(ratio)
        elif between[i] > 0:
            r_values[i] = np.inf
        else:
            r_values[i] = 1.0

    return r_values


def r_value_dict(names: Sequence[str], r_values: np.ndarray) -> dict[str, float]:
    """Map parameter names to their R-value."""
    return {name: float(r) for name, r in zip(names, r_values)}


def max_r_value(r_values: np.ndarray) -> float:
    """Largest finite-or-infinite R-value, ignoring NaN entries."""
    r_values = np.asarray(r_values, dtype=float)
    valid = r_values[~np.isnan(r_values)]
    if valid.size == 0:
        return np.nan
    return float(np.max(valid))


def effective_sample_size(weights: np.ndarray) -> float:
    """ESS = 1 / sum(w^2) of the normalized weights (0.0 if degenerate)."""
    w = np.asarray(weights, dtype=float)
    w = np.where(np.isfinite(w), w, 0.0)
    total = float(np.sum(w))
    if not (np.isfinite(total) and total > 0.0):
        return 0.0
    w = w / total
    return float(1.0 / np.sum(w * w))


def normalized_effective_sample_size(weights: np.ndarray) -> float:
    """ESS divided by the number of samples, in ``[0, 1]``."""
    n = np.asarray(weights).size
    if n == 0:
        return 0.0
    return effective_sample_size(weights) / n


def normalized_perplexity(weights: np.ndarray) -> float:
    """``exp(H) / N`` with ``H`` the Shannon entropy of the normalized weights.

    Equals 1.0 for uniform weights and tends to ``1/N`` when a single sample
    carries all the weight.
    """
    w = np.asarray(weights, dtype=float)
    n = w.size
    if n == 0:
        return 0.0
    w = np.where(np.isfinite(w), w, 0.0)
    total = float(np.sum(w))
    if not total > 0.0:
        return 0.0
    w = w / total
    entropy = -float(np.sum(xlogy(w, w)))
    return float(np.exp(entropy) / n)


def relative_std_deviation(values: Sequence[float]) -> float:
    """Sample standard deviation divided by the absolute mean."""
    values = np.asarray(values, dtype=float)
    if values.size < 2:
        return np.inf
    mean = float(np.mean(values))
    if mean == 0.0:
        return np.inf
    return float(np.std(values, ddof=1) / abs(mean))


def acceptance_summary(acceptance_rates: dict[int, float]) -> str:
    """One-line summary of per-chain acceptance rates for the run log."""
    parts = [f"chain {k}: {100.0 * v:.1f}%" for k, v in sorted(acceptance_rates.items())]
    return ", ".join(parts)
