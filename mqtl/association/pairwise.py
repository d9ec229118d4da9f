"""
Exhaustive pairwise metabolite x variant association scan.

For every (metabolite, variant) pair an ordinary least squares fit
metabolite ~ 1 + dosage is computed on the complete cases of that pair
(samples where both values are observed). One metabolite's full variant
sweep is vectorised over all variants:

    W      = observed(y) & observed(G)            (n x m complete-case mask)
    n_j    = sum(W[:, j])
    dx, dy = W-masked deviations from complete-case means
    Sxx    = sum(dx^2),  Sxy = sum(dx * dy)
    beta   = Sxy / Sxx
    RSS    = sum((dy - beta * dx)^2)
    se     = sqrt(RSS / (n_j - 2) / Sxx)
    t      = beta / se,  p = 2 * sf_t(|t|, n_j - 2)

Metabolites are the unit of parallel work. Each worker builds its own
record list from read-only inputs; lists are concatenated once in metabolite
order, so the output does not depend on the number of workers.
"""

import itertools
import os
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, Future
from typing import Optional, List, Dict, Iterator, Tuple, Sequence, Deque

import numpy as np
import pandas as pd
from tqdm import tqdm

from ..utils.data_types import (
    MetaboliteMatrix, GenotypeMatrix, AssociationRecord, AssociationStatus,
    records_to_dataframe,
)
from ..utils.errors import AlignmentError, AssociationCancelledError
from ..utils.stats import two_sided_t_pvalue

MIN_COMPLETE_CASES = 3


def _check_alignment(metabolites: MetaboliteMatrix, genotypes: GenotypeMatrix) -> None:
    met_ids = tuple(metabolites.sample_ids)
    geno_ids = tuple(genotypes.sample_ids)
    if met_ids == geno_ids:
        return
    if set(met_ids) != set(geno_ids):
        raise AlignmentError(
            "Metabolite and genotype matrices contain different samples "
            f"({len(set(met_ids) - set(geno_ids))} metabolite-only, "
            f"{len(set(geno_ids) - set(met_ids))} genotype-only)"
        )
    first = next(i for i, (a, b) in enumerate(zip(met_ids, geno_ids)) if a != b)
    raise AlignmentError(
        f"Sample order differs between metabolite and genotype matrices at row {first} "
        f"('{met_ids[first]}' vs '{geno_ids[first]}')"
    )


def _fit_sweep(y: np.ndarray,
               G: np.ndarray,
               G_observed: np.ndarray,
               min_complete_cases: int) -> Dict[str, np.ndarray]:
    """Vectorised simple regressions of y on each column of G

    Returns per-variant arrays: n_obs, effect, se, pvalue and status codes
    (0 = ok, 1 = insufficient data, 2 = numeric error).
    """
    W = G_observed & ~np.isnan(y)[:, np.newaxis]
    n_obs = W.sum(axis=0)
    Y = np.broadcast_to(y[:, np.newaxis], G.shape)

    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        g_max = np.where(W, G, -np.inf).max(axis=0)
        g_min = np.where(W, G, np.inf).min(axis=0)
        y_max = np.where(W, Y, -np.inf).max(axis=0)
        y_min = np.where(W, Y, np.inf).min(axis=0)

        mean_x = np.where(W, G, 0.0).sum(axis=0) / n_obs
        mean_y = np.where(W, Y, 0.0).sum(axis=0) / n_obs
        dx = np.where(W, G - mean_x, 0.0)
        dy = np.where(W, Y - mean_y, 0.0)

        sxx = np.einsum('ij,ij->j', dx, dx)
        sxy = np.einsum('ij,ij->j', dx, dy)
        beta = sxy / sxx
        resid = dy - beta * dx
        rss = np.einsum('ij,ij->j', resid, resid)
        df = (n_obs - 2).astype(np.float64)
        se = np.sqrt(rss / df / sxx)
        t_stats = beta / se

    # Slope undefined: too few cases, constant dosage, or constant metabolite
    insufficient = (n_obs < min_complete_cases) | ~(g_max > g_min) | ~(y_max > y_min)

    # A perfect fit (se == 0 with finite beta) is a defined limit with p = 0
    fit_ok = (~insufficient & np.isfinite(beta) & np.isfinite(se) & (se >= 0)
              & ~np.isnan(t_stats))
    pvalues = np.full(G.shape[1], np.nan)
    if np.any(fit_ok):
        pvalues[fit_ok] = two_sided_t_pvalue(t_stats[fit_ok], df[fit_ok])
    fit_ok &= np.isfinite(pvalues)

    status = np.full(G.shape[1], 2, dtype=np.int8)
    status[fit_ok] = 0
    status[insufficient] = 1

    return {
        'n_obs': n_obs,
        'effect': beta,
        'se': se,
        'pvalue': pvalues,
        'status': status,
    }


_STATUS_CODES = {
    0: AssociationStatus.OK,
    1: AssociationStatus.INSUFFICIENT_DATA,
    2: AssociationStatus.NUMERIC_ERROR,
}


def _sweep_records(metabolite_id: str,
                   y: np.ndarray,
                   G: np.ndarray,
                   G_observed: np.ndarray,
                   variant_ids: Sequence[str],
                   min_complete_cases: int) -> List[AssociationRecord]:
    """Records for one metabolite against every variant"""
    fit = _fit_sweep(y, G, G_observed, min_complete_cases)
    records = []
    for j, variant_id in enumerate(variant_ids):
        status = _STATUS_CODES[int(fit['status'][j])]
        if status is AssociationStatus.OK:
            records.append(AssociationRecord(
                variant_id=variant_id,
                metabolite_id=metabolite_id,
                pvalue=float(fit['pvalue'][j]),
                status=status,
                effect=float(fit['effect'][j]),
                se=float(fit['se'][j]),
                n_obs=int(fit['n_obs'][j]),
            ))
        else:
            records.append(AssociationRecord(
                variant_id=variant_id,
                metabolite_id=metabolite_id,
                pvalue=None,
                status=status,
                n_obs=int(fit['n_obs'][j]),
            ))
    return records


def iter_metabolite_sweeps(metabolites: MetaboliteMatrix,
                           genotypes: GenotypeMatrix,
                           n_workers: Optional[int] = None,
                           cancel_event: Optional[threading.Event] = None,
                           min_complete_cases: int = MIN_COMPLETE_CASES,
                           verbose: bool = False) -> Iterator[Tuple[str, List[AssociationRecord]]]:
    """Stream (metabolite_id, records) one metabolite sweep at a time

    Sweeps are yielded in metabolite column order regardless of which worker
    finishes first. At most 2 * n_workers sweeps are in flight, so peak memory
    stays at O(samples x variants) per worker.

    Raises:
        AlignmentError: sample order differs between the matrices
        AssociationCancelledError: cancel_event was set before all sweeps finished
    """
    _check_alignment(metabolites, genotypes)
    if min_complete_cases < MIN_COMPLETE_CASES:
        raise ValueError(f"min_complete_cases must be >= {MIN_COMPLETE_CASES}, got {min_complete_cases}")

    n_workers = n_workers or os.cpu_count() or 1
    if n_workers < 1:
        raise ValueError(f"n_workers must be >= 1, got {n_workers}")

    G = genotypes.values
    G_observed = genotypes.observed_mask
    Y = metabolites.values
    variant_ids = list(genotypes.variant_ids)
    metabolite_ids = list(metabolites.metabolite_ids)
    total = len(metabolite_ids)

    def cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    progress = tqdm(total=total, desc="Metabolite sweeps", unit="metabolite", disable=not verbose)
    try:
        if n_workers == 1:
            for idx, metabolite_id in enumerate(metabolite_ids):
                if cancelled():
                    raise AssociationCancelledError(idx, total)
                records = _sweep_records(metabolite_id, Y[:, idx], G, G_observed,
                                         variant_ids, min_complete_cases)
                progress.update(1)
                yield metabolite_id, records
            return

        window = 2 * n_workers
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            pending: Deque[Tuple[str, Future]] = deque()
            next_idx = 0
            completed = 0
            try:
                while next_idx < total or pending:
                    while next_idx < total and len(pending) < window:
                        if cancelled():
                            break
                        metabolite_id = metabolite_ids[next_idx]
                        future = executor.submit(_sweep_records, metabolite_id, Y[:, next_idx], G,
                                                 G_observed, variant_ids, min_complete_cases)
                        pending.append((metabolite_id, future))
                        next_idx += 1
                    if cancelled():
                        raise AssociationCancelledError(completed, total)
                    metabolite_id, future = pending.popleft()
                    records = future.result()
                    completed += 1
                    progress.update(1)
                    yield metabolite_id, records
            finally:
                for _, future in pending:
                    future.cancel()
    finally:
        progress.close()


class PairwiseScanResult:
    """Association records from a full metabolite x variant scan"""

    def __init__(self, records: List[AssociationRecord],
                 metabolite_ids: Sequence[str],
                 variant_ids: Sequence[str],
                 elapsed_seconds: float = 0.0):
        self.records = records
        self.metabolite_ids = tuple(metabolite_ids)
        self.variant_ids = tuple(variant_ids)
        self.elapsed_seconds = elapsed_seconds

    @property
    def n_pairs(self) -> int:
        return len(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    def status_counts(self) -> Dict[str, int]:
        """Number of records per AssociationStatus value"""
        counts = {status.value: 0 for status in AssociationStatus}
        for rec in self.records:
            counts[rec.status.value] += 1
        return counts

    def pvalues(self) -> np.ndarray:
        """P-values of successfully fitted pairs"""
        return np.array([rec.pvalue for rec in self.records if rec.is_ok], dtype=np.float64)

    def to_dataframe(self) -> pd.DataFrame:
        return records_to_dataframe(self.records)


def MQTL_PairwiseScan(metabolites: MetaboliteMatrix,
                      genotypes: GenotypeMatrix,
                      n_workers: Optional[int] = None,
                      cancel_event: Optional[threading.Event] = None,
                      min_complete_cases: int = MIN_COMPLETE_CASES,
                      verbose: bool = True) -> PairwiseScanResult:
    """Test every (metabolite, variant) pair with a univariate regression

    Args:
        metabolites: Cleaned metabolite matrix (samples x metabolites)
        genotypes: Selected variant dosages (samples x variants), same sample order
        n_workers: Worker threads (default: number of CPUs)
        cancel_event: Set to abort remaining sweeps
        min_complete_cases: Minimum complete cases for a pair to be fitted
        verbose: Print progress information

    Returns:
        PairwiseScanResult with one AssociationRecord per pair, ordered by
        metabolite then variant
    """
    start = time.time()
    if verbose:
        print(f"Pairwise scan: {metabolites.n_metabolites} metabolites x "
              f"{genotypes.n_variants} variants over {metabolites.n_samples} samples")

    per_metabolite = [
        records for _, records in iter_metabolite_sweeps(
            metabolites, genotypes,
            n_workers=n_workers,
            cancel_event=cancel_event,
            min_complete_cases=min_complete_cases,
            verbose=verbose,
        )
    ]
    records = list(itertools.chain.from_iterable(per_metabolite))
    result = PairwiseScanResult(records, metabolites.metabolite_ids, genotypes.variant_ids,
                                elapsed_seconds=time.time() - start)

    if verbose:
        counts = result.status_counts()
        print(f"Pairwise scan complete in {result.elapsed_seconds:.2f} seconds. "
              f"{counts[AssociationStatus.OK.value]}/{result.n_pairs} pairs fitted")
        ok_p = result.pvalues()
        if ok_p.size > 0:
            print(f"Minimum p-value: {np.min(ok_p):.2e}")

    return result
