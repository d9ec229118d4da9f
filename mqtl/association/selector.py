"""
Bonferroni selection of variants from an external first-pass scan
"""

from typing import Mapping, List, Union

import numpy as np
import pandas as pd

from ..utils.stats import bonferroni_threshold


def _as_series(pvalues: Union[Mapping[str, float], pd.Series, pd.DataFrame]) -> pd.Series:
    if isinstance(pvalues, pd.DataFrame):
        if 'SNP' not in pvalues.columns or 'P' not in pvalues.columns:
            raise ValueError("P-value DataFrame must contain 'SNP' and 'P' columns")
        return pd.Series(pvalues['P'].to_numpy(), index=pvalues['SNP'].astype(str).to_numpy())
    if isinstance(pvalues, pd.Series):
        return pvalues
    if isinstance(pvalues, Mapping):
        return pd.Series(dict(pvalues), dtype=np.float64)
    raise ValueError("pvalues must be a mapping, Series, or DataFrame with SNP/P columns")


def select_variants(pvalues: Union[Mapping[str, float], pd.Series, pd.DataFrame],
                    total_variant_count: int,
                    alpha: float = 0.05) -> List[str]:
    """Variants passing a fixed-denominator Bonferroni threshold

    Args:
        pvalues: First-pass p-values keyed by variant id
        total_variant_count: Number of variants tested in the first pass
            (the Bonferroni denominator, not the number kept here)
        alpha: Family-wise error rate

    Returns:
        Variant ids with p < alpha / total_variant_count, ascending by p-value

    Raises:
        InvalidThresholdError: total_variant_count <= 0 or alpha outside (0, 1]
    """
    threshold = bonferroni_threshold(alpha, total_variant_count)
    series = pd.to_numeric(_as_series(pvalues), errors='coerce').astype(np.float64)
    series = series[np.isfinite(series.to_numpy())]

    # strict inequality: a p-value equal to the threshold is not significant
    passing = series[series.to_numpy() < threshold]
    order = np.argsort(passing.to_numpy(), kind='mergesort')
    return [str(v) for v in passing.index.to_numpy()[order]]


MQTL_SelectVariants = select_variants
