"""
Manhattan table preparation and Manhattan / Q-Q plotting for mQTL results
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from typing import Optional, Union, Dict, List, Tuple
import re

from ..results.filtering import JoinResult
from ..utils.stats import genomic_inflation_factor, qq_plot_data

MANHATTAN_COLUMNS = ['variantId', 'chromosome', 'position', 'pvalue']


def _natural_sort_key(value) -> List[Union[int, str]]:
    """Return a key for natural sorting of chromosome labels."""

    text = str(value).strip()
    if not text:
        return [""]
    parts = re.split(r'(\d+)', text)
    key: List[Union[int, str]] = []
    for part in parts:
        if part.isdigit():
            key.append(int(part))
        else:
            key.append(part.lower())
    return key


def prepare_manhattan_table(joined: Union[pd.DataFrame, JoinResult]) -> pd.DataFrame:
    """Order joined rows by genome position for plotting

    Args:
        joined: Output of join_variant_positions (or its table)

    Returns:
        DataFrame with columns [variantId, chromosome, position, pvalue]
        ordered by natural chromosome order, then position. Ties are broken by
        p-value and variant id so the order is fully determined.
    """
    table = joined.table if isinstance(joined, JoinResult) else joined
    missing = [c for c in MANHATTAN_COLUMNS if c not in table.columns]
    if missing:
        raise ValueError(f"Joined table missing columns: {missing}")

    out = table[MANHATTAN_COLUMNS].copy()
    out['chromosome'] = out['chromosome'].astype(str)
    out['position'] = out['position'].astype('int64')
    out['pvalue'] = out['pvalue'].astype(np.float64)
    if out.empty:
        return out.reset_index(drop=True)

    chrom_order = sorted(out['chromosome'].unique(), key=_natural_sort_key)
    rank = {chrom: i for i, chrom in enumerate(chrom_order)}
    out['_chrom_rank'] = out['chromosome'].map(rank)
    out = out.sort_values(['_chrom_rank', 'position', 'pvalue', 'variantId'], kind='mergesort')
    return out.drop(columns='_chrom_rank').reset_index(drop=True)


def annotation_mask(table: pd.DataFrame, annotation_threshold: Optional[float]) -> np.ndarray:
    """Points whose -log10(p) exceeds annotation_threshold"""
    if annotation_threshold is None or table.empty:
        return np.zeros(len(table), dtype=bool)
    pvalues = table['pvalue'].to_numpy(dtype=np.float64)
    with np.errstate(divide='ignore'):
        log_p = -np.log10(pvalues)
    return log_p > annotation_threshold


def plot_manhattan_with_positions(ax, chromosomes: np.ndarray, positions: np.ndarray,
                                  log_pvalues: np.ndarray, colors: Optional[List[str]] = None,
                                  point_size: float = 3.0,
                                  label_mask: Optional[np.ndarray] = None,
                                  labels: Optional[np.ndarray] = None):
    """Plot Manhattan points at cumulative chromosome positions"""

    unique_chromosomes = sorted(np.unique(chromosomes), key=_natural_sort_key)

    if colors is None:
        colors = ['#1f77b4', '#ff7f0e']  # Blue, Orange alternating

    cumulative_pos = np.zeros_like(positions, dtype=np.float64)
    tick_positions = []
    tick_labels = []

    if label_mask is not None and label_mask.shape != log_pvalues.shape:
        raise ValueError("label_mask must match the shape of the plotted values")

    current_pos = 0.0
    for i, chrom in enumerate(unique_chromosomes):
        chrom_indices = np.where(chromosomes == chrom)[0]
        chrom_positions = positions[chrom_indices].astype(np.float64)

        min_pos = np.min(chrom_positions)
        max_pos = np.max(chrom_positions)
        if max_pos > min_pos:
            chrom_length = (max_pos - min_pos) / 1e6  # Mb
            norm_positions = (chrom_positions - min_pos) / 1e6
        else:
            norm_positions = np.zeros_like(chrom_positions)
            chrom_length = 1.0

        plot_positions = current_pos + norm_positions
        cumulative_pos[chrom_indices] = plot_positions

        ax.scatter(plot_positions, log_pvalues[chrom_indices],
                   c=colors[i % len(colors)], s=point_size, alpha=0.8, edgecolors='none')

        tick_positions.append(current_pos + chrom_length / 2)
        tick_labels.append(str(chrom))
        current_pos += chrom_length

    if label_mask is not None and labels is not None and np.any(label_mask):
        for x, y, text in zip(cumulative_pos[label_mask], log_pvalues[label_mask], labels[label_mask]):
            ax.annotate(str(text), (x, y), xytext=(2, 4), textcoords='offset points', fontsize=7)

    ax.set_xticks(tick_positions)
    ax.set_xticklabels(tick_labels)
    ax.set_xlabel('Chromosome', fontsize=12)
    return cumulative_pos


def create_manhattan_plot(table: pd.DataFrame,
                          annotation_threshold: Optional[float] = None,
                          threshold: Optional[float] = None,
                          title: str = "mQTL Manhattan Plot",
                          figsize: Tuple[int, int] = (12, 6),
                          colors: Optional[List[str]] = None,
                          point_size: float = 10.0) -> plt.Figure:
    """Create Manhattan plot from a prepared table

    Args:
        table: Output of prepare_manhattan_table
        annotation_threshold: Label points with -log10(p) above this value
        threshold: Optional p-value drawn as a horizontal line
        title: Plot title
        figsize: Figure size
        colors: Alternating chromosome colors
        point_size: Point size

    Returns:
        matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    if table.empty:
        ax.text(0.5, 0.5, 'No significant associations to plot',
                ha='center', va='center', transform=ax.transAxes)
    else:
        pvalues = table['pvalue'].to_numpy(dtype=np.float64)
        # p == 0 comes from perfect fits; draw it at the smallest positive double
        with np.errstate(divide='ignore'):
            log_pvalues = -np.log10(np.maximum(pvalues, np.finfo(np.float64).tiny))
        plot_manhattan_with_positions(
            ax,
            chromosomes=table['chromosome'].to_numpy(),
            positions=table['position'].to_numpy(),
            log_pvalues=log_pvalues,
            colors=colors,
            point_size=point_size,
            label_mask=annotation_mask(table, annotation_threshold),
            labels=table['variantId'].to_numpy(),
        )

    if threshold is not None and threshold > 0:
        ax.axhline(y=-np.log10(threshold), color='red', linestyle='--', alpha=0.8, linewidth=1.5)

    ax.set_ylabel(r'$-\log_{10}(P)$', fontsize=12)
    if title and title.strip():
        ax.set_title(title)

    plt.tight_layout()
    return fig


def create_qq_plot(pvalues: np.ndarray,
                   title: str = "Q-Q Plot",
                   figsize: Tuple[int, int] = (6, 6)) -> plt.Figure:
    """Create Q-Q plot for scan p-values

    Args:
        pvalues: Array of p-values
        title: Plot title
        figsize: Figure size

    Returns:
        matplotlib Figure object
    """

    fig, ax = plt.subplots(figsize=figsize)

    expected_pvals, observed_pvals = qq_plot_data(np.asarray(pvalues, dtype=np.float64))
    if len(observed_pvals) == 0:
        ax.text(0.5, 0.5, 'No valid p-values for Q-Q plot',
                ha='center', va='center', transform=ax.transAxes)
        ax.set_title(title)
        return fig

    obs_log = -np.log10(observed_pvals)
    exp_log = -np.log10(expected_pvals)

    ax.scatter(exp_log, obs_log, alpha=0.6, s=2, edgecolors='none')

    max_val = max(np.max(exp_log), np.max(obs_log))
    ax.plot([0, max_val], [0, max_val], 'r--', alpha=0.8, label='Null hypothesis')

    lambda_gc = genomic_inflation_factor(observed_pvals)

    ax.set_xlabel(r'Expected $-\log_{10}(P)$')
    ax.set_ylabel(r'Observed $-\log_{10}(P)$')
    ax.set_title(f'{title}\nλ = {lambda_gc:.3f}')
    ax.grid(True, alpha=0.3)
    ax.legend()

    plt.tight_layout()
    return fig


def calculate_scan_summary(pvalues: np.ndarray, threshold: float = 0.05) -> Dict:
    """Summary statistics over scan p-values"""
    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid = pvalues[~np.isnan(pvalues) & (pvalues >= 0) & (pvalues <= 1)]
    if len(valid) == 0:
        return {
            'n_tests': 0,
            'n_significant': 0,
            'min_pvalue': np.nan,
            'median_pvalue': np.nan,
            'lambda_gc': np.nan,
        }
    return {
        'n_tests': int(len(valid)),
        'n_significant': int(np.sum(valid < threshold)),
        'min_pvalue': float(np.min(valid)),
        'median_pvalue': float(np.median(valid)),
        'lambda_gc': genomic_inflation_factor(valid),
    }


def MQTL_Report(table: pd.DataFrame,
                scan_pvalues: Optional[np.ndarray] = None,
                annotation_threshold: Optional[float] = None,
                p_threshold: float = 0.05,
                plot_types: Tuple[str, ...] = ("manhattan", "qq"),
                output_prefix: str = "mQTL_results",
                dpi: int = 300,
                save_plots: bool = True,
                verbose: bool = True) -> Dict:
    """Generate Manhattan / Q-Q figures and summary statistics

    Args:
        table: Prepared Manhattan table (prepare_manhattan_table)
        scan_pvalues: All fitted p-values from the pairwise scan (Q-Q plot and
            summary); the Q-Q plot is skipped when None
        annotation_threshold: -log10(p) label threshold
        p_threshold: Pairwise significance cutoff shown on the Manhattan plot
        plot_types: Any of "manhattan", "qq"
        output_prefix: Prefix for output files
        dpi: Plot resolution
        save_plots: Save plots to files
        verbose: Print progress information

    Returns:
        Dictionary with 'plots', 'summary', 'files_created' and 'labelled'
    """
    report = {
        'plots': {},
        'summary': {},
        'files_created': [],
        'labelled': [],
    }

    label_mask = annotation_mask(table, annotation_threshold)
    report['labelled'] = table.loc[label_mask, 'variantId'].tolist()

    if "manhattan" in plot_types:
        if verbose:
            print("Creating Manhattan plot...")
        fig = create_manhattan_plot(table, annotation_threshold=annotation_threshold,
                                    threshold=p_threshold)
        report['plots']['manhattan'] = fig
        if save_plots:
            filename = f"{output_prefix}_manhattan.png"
            fig.savefig(filename, dpi=dpi, bbox_inches='tight')
            report['files_created'].append(filename)

    if scan_pvalues is not None:
        report['summary'] = calculate_scan_summary(scan_pvalues, threshold=p_threshold)
        if "qq" in plot_types:
            if verbose:
                print("Creating Q-Q plot...")
            fig = create_qq_plot(scan_pvalues, title="Q-Q Plot - pairwise scan")
            report['plots']['qq'] = fig
            if save_plots:
                filename = f"{output_prefix}_qq.png"
                fig.savefig(filename, dpi=dpi, bbox_inches='tight')
                report['files_created'].append(filename)

    if verbose:
        print(f"Report complete. Created {len(report['files_created'])} plot files.")
    return report
