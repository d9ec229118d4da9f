"""Tests for the pairwise metabolite x variant regression scan."""

import threading

import numpy as np
import pytest
import statsmodels.api as sm
from scipy import stats

from mqtl.association.pairwise import MQTL_PairwiseScan, iter_metabolite_sweeps
from mqtl.utils.data_types import MetaboliteMatrix, GenotypeMatrix, AssociationStatus
from mqtl.utils.errors import AlignmentError, AssociationCancelledError


def _random_inputs(n_samples=60, n_metabolites=4, n_variants=6, missing_rate=0.1, seed=1):
    rng = np.random.default_rng(seed)
    sample_ids = [f"S{i:03d}" for i in range(n_samples)]
    dosages = rng.integers(0, 3, size=(n_samples, n_variants)).astype(float)
    values = rng.normal(size=(n_samples, n_metabolites))
    values[:, 0] += 0.7 * dosages[:, 0]
    dosages[rng.random(dosages.shape) < missing_rate] = np.nan
    values[rng.random(values.shape) < missing_rate] = np.nan
    metabolites = MetaboliteMatrix(values, sample_ids=sample_ids,
                                   column_ids=[f"M{j}" for j in range(n_metabolites)])
    genotypes = GenotypeMatrix(dosages, sample_ids=sample_ids,
                               column_ids=[f"rs{k}_A" for k in range(n_variants)])
    return metabolites, genotypes


def test_records_ordered_by_metabolite_then_variant() -> None:
    metabolites, genotypes = _random_inputs(n_metabolites=3, n_variants=4)

    result = MQTL_PairwiseScan(metabolites, genotypes, n_workers=2, verbose=False)

    assert result.n_pairs == 12
    pairs = [(rec.metabolite_id, rec.variant_id) for rec in result]
    expected = [(m, v) for m in metabolites.metabolite_ids for v in genotypes.variant_ids]
    assert pairs == expected


def test_matches_linregress_on_complete_cases() -> None:
    metabolites, genotypes = _random_inputs()

    result = MQTL_PairwiseScan(metabolites, genotypes, n_workers=1, verbose=False)

    for rec in result:
        y = metabolites.column(rec.metabolite_id)
        x = genotypes.column(rec.variant_id)
        keep = ~np.isnan(x) & ~np.isnan(y)
        reference = stats.linregress(x[keep], y[keep])

        assert rec.status is AssociationStatus.OK
        assert rec.n_obs == int(keep.sum())
        assert rec.effect == pytest.approx(reference.slope, rel=1e-9, abs=1e-12)
        assert rec.se == pytest.approx(reference.stderr, rel=1e-9)
        assert rec.pvalue == pytest.approx(reference.pvalue, rel=1e-7, abs=1e-15)


def test_matches_statsmodels_ols() -> None:
    metabolites, genotypes = _random_inputs(n_metabolites=1, n_variants=1, seed=7)
    result = MQTL_PairwiseScan(metabolites, genotypes, n_workers=1, verbose=False)
    rec = result.records[0]

    y = metabolites.values[:, 0]
    x = genotypes.values[:, 0]
    keep = ~np.isnan(x) & ~np.isnan(y)
    fit = sm.OLS(y[keep], sm.add_constant(x[keep])).fit()

    assert rec.effect == pytest.approx(fit.params[1], rel=1e-9)
    assert rec.se == pytest.approx(fit.bse[1], rel=1e-9)
    assert rec.pvalue == pytest.approx(fit.pvalues[1], rel=1e-7)


def test_recovers_planted_association() -> None:
    rng = np.random.default_rng(42)
    n = 200
    dosage = rng.integers(0, 3, size=n).astype(float)
    y = 0.8 * dosage + rng.normal(size=n)
    ids = [f"S{i}" for i in range(n)]
    metabolites = MetaboliteMatrix(y[:, None], sample_ids=ids, column_ids=["M1"])
    genotypes = GenotypeMatrix(dosage[:, None], sample_ids=ids, column_ids=["rs1_A"])

    rec = MQTL_PairwiseScan(metabolites, genotypes, n_workers=1, verbose=False).records[0]

    assert rec.is_ok
    assert rec.pvalue < 1e-6
    assert rec.effect == pytest.approx(0.8, abs=0.25)


@pytest.mark.parametrize("n_workers", [2, 4])
def test_output_independent_of_worker_count(n_workers) -> None:
    metabolites, genotypes = _random_inputs(n_metabolites=9, n_variants=5, seed=3)

    serial = MQTL_PairwiseScan(metabolites, genotypes, n_workers=1, verbose=False)
    parallel = MQTL_PairwiseScan(metabolites, genotypes, n_workers=n_workers, verbose=False)

    assert parallel.records == serial.records


def test_insufficient_data_statuses() -> None:
    ids = [f"S{i}" for i in range(6)]
    metabolites = MetaboliteMatrix(
        np.array([
            [1.0, 2.0, np.nan],
            [2.0, 2.0, np.nan],
            [0.5, 2.0, np.nan],
            [3.0, 2.0, np.nan],
            [1.5, 2.0, 1.0],
            [2.5, 2.0, 4.0],
        ]),
        sample_ids=ids,
        column_ids=["varying", "constant", "two_obs"],
    )
    genotypes = GenotypeMatrix(
        np.array([
            [0.0, 1.0],
            [1.0, 1.0],
            [2.0, 1.0],
            [0.0, 1.0],
            [1.0, 1.0],
            [2.0, 1.0],
        ]),
        sample_ids=ids,
        column_ids=["rs1_A", "monomorphic_C"],
    )

    result = MQTL_PairwiseScan(metabolites, genotypes, n_workers=1, verbose=False)
    by_pair = {(rec.metabolite_id, rec.variant_id): rec for rec in result}

    assert by_pair[("varying", "rs1_A")].status is AssociationStatus.OK
    for key in [("varying", "monomorphic_C"), ("constant", "rs1_A"), ("two_obs", "rs1_A")]:
        rec = by_pair[key]
        assert rec.status is AssociationStatus.INSUFFICIENT_DATA
        assert rec.pvalue is None
        assert rec.effect is None
    assert by_pair[("two_obs", "rs1_A")].n_obs == 2

    counts = result.status_counts()
    assert counts == {"Ok": 1, "InsufficientData": 5, "NumericError": 0}
    assert result.pvalues().shape == (1,)


def test_perfect_fit_is_ok_with_tiny_pvalue() -> None:
    ids = [f"S{i}" for i in range(8)]
    dosage = np.array([0, 1, 2, 0, 1, 2, 1, 0], dtype=float)
    metabolites = MetaboliteMatrix((2.0 * dosage + 1.0)[:, None], sample_ids=ids, column_ids=["M1"])
    genotypes = GenotypeMatrix(dosage[:, None], sample_ids=ids, column_ids=["rs1_A"])

    rec = MQTL_PairwiseScan(metabolites, genotypes, n_workers=1, verbose=False).records[0]

    assert rec.status is AssociationStatus.OK
    assert rec.effect == pytest.approx(2.0)
    assert rec.pvalue < 1e-10


def test_missing_values_reduce_complete_cases() -> None:
    metabolites, genotypes = _random_inputs(n_samples=30, n_metabolites=1, n_variants=1,
                                            missing_rate=0.0, seed=5)
    values = metabolites.values.copy()
    values[:4, 0] = np.nan
    dosages = genotypes.values.copy()
    dosages[2:7, 0] = np.nan
    metabolites = metabolites.with_values(values)
    genotypes = genotypes.with_values(dosages)

    rec = MQTL_PairwiseScan(metabolites, genotypes, n_workers=1, verbose=False).records[0]

    assert rec.n_obs == 30 - 7


def test_misaligned_samples_rejected() -> None:
    metabolites, genotypes = _random_inputs(n_samples=10)
    shuffled = genotypes.reorder_samples(list(reversed(genotypes.sample_ids)))

    with pytest.raises(AlignmentError):
        MQTL_PairwiseScan(metabolites, shuffled, n_workers=1, verbose=False)

    other = GenotypeMatrix(genotypes.values, sample_ids=[f"X{i}" for i in range(10)],
                           column_ids=genotypes.variant_ids)
    with pytest.raises(AlignmentError):
        MQTL_PairwiseScan(metabolites, other, n_workers=1, verbose=False)


@pytest.mark.parametrize("n_workers", [1, 2])
def test_cancel_before_start(n_workers) -> None:
    metabolites, genotypes = _random_inputs()
    event = threading.Event()
    event.set()

    with pytest.raises(AssociationCancelledError) as excinfo:
        MQTL_PairwiseScan(metabolites, genotypes, n_workers=n_workers, cancel_event=event, verbose=False)

    assert excinfo.value.completed_sweeps == 0
    assert excinfo.value.total_sweeps == metabolites.n_metabolites


@pytest.mark.parametrize("n_workers", [1, 2])
def test_cancel_between_sweeps(n_workers) -> None:
    metabolites, genotypes = _random_inputs(n_metabolites=6)
    event = threading.Event()

    sweeps = iter_metabolite_sweeps(metabolites, genotypes, n_workers=n_workers, cancel_event=event)
    metabolite_id, records = next(sweeps)
    assert metabolite_id == "M0"
    assert len(records) == genotypes.n_variants

    event.set()
    with pytest.raises(AssociationCancelledError) as excinfo:
        next(sweeps)
    assert excinfo.value.completed_sweeps == 1


def test_null_pvalues_roughly_uniform() -> None:
    rng = np.random.default_rng(11)
    n = 100
    ids = [f"S{i}" for i in range(n)]
    metabolites = MetaboliteMatrix(rng.normal(size=(n, 50)), sample_ids=ids)
    genotypes = GenotypeMatrix(rng.integers(0, 3, size=(n, 40)).astype(float), sample_ids=ids)

    pvalues = MQTL_PairwiseScan(metabolites, genotypes, n_workers=4, verbose=False).pvalues()

    assert pvalues.size == 2000
    assert 0.02 < np.mean(pvalues < 0.05) < 0.09
    assert 0.4 < np.median(pvalues) < 0.6


def test_scan_result_dataframe() -> None:
    metabolites, genotypes = _random_inputs(n_metabolites=2, n_variants=2)
    df = MQTL_PairwiseScan(metabolites, genotypes, n_workers=1, verbose=False).to_dataframe()

    assert len(df) == 4
    assert list(df.columns) == ["variantId", "metaboliteId", "pvalue", "effect", "se", "n_obs", "status"]
