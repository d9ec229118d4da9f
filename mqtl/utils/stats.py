"""
Statistical utilities for mQTL analysis
"""

import numpy as np
from typing import Tuple
from scipy import stats

from .errors import InvalidThresholdError


def bonferroni_threshold(alpha: float, n_tests: int) -> float:
    """Bonferroni significance cutoff alpha / n_tests

    Args:
        alpha: Family-wise error rate, in (0, 1]
        n_tests: Number of tests in the family (must be positive)

    Returns:
        Per-test significance threshold
    """
    if n_tests is None or n_tests <= 0:
        raise InvalidThresholdError(f"Total variant count must be positive, got {n_tests}")
    if not (0.0 < alpha <= 1.0):
        raise InvalidThresholdError(f"Alpha must be in (0, 1], got {alpha}")
    return alpha / n_tests


def two_sided_t_pvalue(t_stats: np.ndarray, df: np.ndarray) -> np.ndarray:
    """Two-tailed Student's t p-values

    Args:
        t_stats: Array of t-statistics (sign ignored)
        df: Degrees of freedom (same shape as t_stats)

    Returns:
        Two-tailed p-values clipped to [0, 1]
    """
    p = 2.0 * stats.t.sf(np.abs(t_stats), df)
    return np.clip(p, 0.0, 1.0)


def genomic_inflation_factor(pvalues: np.ndarray) -> float:
    """Calculate genomic inflation factor (lambda)

    Args:
        pvalues: Array of p-values

    Returns:
        Genomic inflation factor (lambda)
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid_pvals = pvalues[np.isfinite(pvalues) & (pvalues > 0)]
    if len(valid_pvals) == 0:
        return 1.0

    chi2_values = stats.chi2.isf(valid_pvals, df=1)
    median_chi2 = np.median(chi2_values)
    expected_median = stats.chi2.ppf(0.5, df=1)

    return float(median_chi2 / expected_median)


def qq_plot_data(pvalues: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Prepare data for Q-Q plot

    Args:
        pvalues: Array of observed p-values

    Returns:
        Tuple of (expected_pvalues, observed_pvalues) for plotting
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid_pvals = pvalues[np.isfinite(pvalues) & (pvalues > 0)]
    valid_pvals = np.sort(valid_pvals)
    n = len(valid_pvals)

    if n == 0:
        return np.array([]), np.array([])

    # Expected p-values under null hypothesis
    expected_pvals = np.arange(1, n + 1) / (n + 1)

    return expected_pvals, valid_pvals
