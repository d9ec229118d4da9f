"""
Metabolite matrix cleaning: degenerate-column exclusion, z-score
normalization, outlier masking and sparse-column removal.

Every step takes a MetaboliteMatrix and returns a new one; inputs are never
modified. Column statistics always ignore missing (NaN) values and use the
sample standard deviation (ddof=1).
"""

from dataclasses import dataclass, field
from typing import List, Tuple
import warnings

import numpy as np

from ..utils.data_types import MetaboliteMatrix
from ..utils.errors import DegenerateColumnError

VARIANCE_EPS = 1e-12


def column_statistics(values: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-column (mean, sd, n_observed) over non-missing values

    Columns with fewer than two observations get NaN mean/sd.
    """
    observed = ~np.isnan(values)
    counts = observed.sum(axis=0)
    filled = np.where(observed, values, 0.0)
    with np.errstate(invalid='ignore', divide='ignore'):
        means = filled.sum(axis=0) / counts
        centered = np.where(observed, values - means, 0.0)
        sds = np.sqrt((centered * centered).sum(axis=0) / (counts - 1))
    means[counts == 0] = np.nan
    sds[counts < 2] = np.nan
    return means, sds, counts


def find_degenerate_columns(matrix: MetaboliteMatrix) -> List[str]:
    """Metabolites whose observed values have no spread

    A column is degenerate when it has fewer than two observations or a
    standard deviation of (numerically) zero.
    """
    _, sds, _ = column_statistics(matrix.values)
    bad = ~np.isfinite(sds) | (sds <= VARIANCE_EPS)
    return [mid for mid, flag in zip(matrix.metabolite_ids, bad) if flag]


def exclude_degenerate_columns(matrix: MetaboliteMatrix,
                               verbose: bool = True) -> Tuple[MetaboliteMatrix, List[str]]:
    """Drop zero-variance metabolites before normalization"""
    degenerate = find_degenerate_columns(matrix)
    for metabolite_id in degenerate:
        if verbose:
            print(f"   Excluding metabolite '{metabolite_id}': zero variance")
    if degenerate:
        warnings.warn(f"Excluded {len(degenerate)} zero-variance metabolite column(s): {degenerate[:5]}")
    return matrix.drop_columns(degenerate), degenerate


def normalize(matrix: MetaboliteMatrix) -> MetaboliteMatrix:
    """Z-score every column: (x - mean) / sd over observed values

    Raises:
        DegenerateColumnError: a column has zero variance (or < 2 observations)
    """
    values = matrix.values
    means, sds, _ = column_statistics(values)
    for j, metabolite_id in enumerate(matrix.metabolite_ids):
        if not np.isfinite(sds[j]) or sds[j] <= VARIANCE_EPS:
            raise DegenerateColumnError(
                metabolite_id,
                f"Cannot normalize metabolite '{metabolite_id}': zero variance or fewer than two observations",
            )
    normalized = (values - means) / sds
    return matrix.with_values(normalized)


def mask_outliers(matrix: MetaboliteMatrix, k: float = 3.0) -> MetaboliteMatrix:
    """Replace values outside [mean - k*sd, mean + k*sd] with NaN

    Bounds come from the column as passed in (normally already normalized).
    Rows are never removed.
    """
    if k <= 0:
        raise ValueError(f"Outlier multiplier must be positive, got {k}")
    values = matrix.values
    means, sds, _ = column_statistics(values)
    lower = means - k * sds
    upper = means + k * sds
    with np.errstate(invalid='ignore'):
        outside = (values < lower) | (values > upper)
    # columns without a defined sd are left untouched
    outside &= np.isfinite(sds)[np.newaxis, :]
    masked = values.copy()
    masked[outside] = np.nan
    return matrix.with_values(masked)


def drop_sparse_columns(matrix: MetaboliteMatrix,
                        min_fraction: float = 0.5) -> MetaboliteMatrix:
    """Drop metabolites observed in fewer than min_fraction of samples"""
    if not (0.0 <= min_fraction <= 1.0):
        raise ValueError(f"min_fraction must be within [0, 1], got {min_fraction}")
    fractions = matrix.non_missing_fraction()
    sparse = [mid for mid, frac in zip(matrix.metabolite_ids, fractions) if frac < min_fraction]
    return matrix.drop_columns(sparse)


@dataclass
class PreprocessSummary:
    n_input_metabolites: int = 0
    degenerate: List[str] = field(default_factory=list)
    n_masked_values: int = 0
    sparse: List[str] = field(default_factory=list)
    n_output_metabolites: int = 0


@dataclass
class PreprocessResult:
    matrix: MetaboliteMatrix
    summary: PreprocessSummary


def MQTL_Preprocess(matrix: MetaboliteMatrix,
                    outlier_sd: float = 3.0,
                    min_non_missing_fraction: float = 0.5,
                    verbose: bool = True) -> PreprocessResult:
    """Clean a raw metabolite matrix for association testing

    Steps, in order:
        1. exclude zero-variance columns
        2. z-score normalization
        3. mask values beyond outlier_sd standard deviations
        4. drop columns observed in fewer than min_non_missing_fraction samples

    Args:
        matrix: Raw metabolite measurements
        outlier_sd: Outlier multiplier k
        min_non_missing_fraction: Column retention threshold (evaluated after masking)
        verbose: Print progress information

    Returns:
        PreprocessResult with the cleaned matrix and a summary of what was removed
    """
    summary = PreprocessSummary(n_input_metabolites=matrix.n_metabolites)

    cleaned, summary.degenerate = exclude_degenerate_columns(matrix, verbose=verbose)
    cleaned = normalize(cleaned)
    n_missing_before = int(cleaned.missing_mask.sum())
    cleaned = mask_outliers(cleaned, k=outlier_sd)
    summary.n_masked_values = int(cleaned.missing_mask.sum()) - n_missing_before
    retained_before = cleaned.metabolite_ids
    cleaned = drop_sparse_columns(cleaned, min_fraction=min_non_missing_fraction)
    kept = set(cleaned.metabolite_ids)
    summary.sparse = [mid for mid in retained_before if mid not in kept]
    summary.n_output_metabolites = cleaned.n_metabolites

    if verbose:
        print(f"   Metabolites in: {summary.n_input_metabolites}")
        print(f"   Zero-variance excluded: {len(summary.degenerate)}")
        print(f"   Outlier values masked (>{outlier_sd} SD): {summary.n_masked_values}")
        print(f"   Sparse columns dropped (<{min_non_missing_fraction:.0%} observed): {len(summary.sparse)}")
        print(f"   Metabolites retained: {summary.n_output_metabolites}")

    return PreprocessResult(matrix=cleaned, summary=summary)
