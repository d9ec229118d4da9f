import pandas as pd

from mqtl.results.filtering import (
    filter_records,
    normalize_variant_id,
    join_variant_positions,
    RunDiagnostics,
    format_diagnostics,
)
from mqtl.utils.data_types import AssociationRecord, AssociationStatus, VariantMap
from mqtl.utils.errors import MissingVariantMappingError


def _variant_map() -> VariantMap:
    return VariantMap(pd.DataFrame({"SNP": ["rs1", "rs2"], "CHROM": ["1", "2"], "POS": [100, 50]}))


def test_filter_records_strict_threshold_and_ok_only() -> None:
    records = [
        AssociationRecord("rs1_A", "M1", 0.01),
        AssociationRecord("rs2_G", "M1", 0.05),
        AssociationRecord("rs3_T", "M1", None, status=AssociationStatus.INSUFFICIENT_DATA),
        AssociationRecord("rs4_C", "M2", None, status=AssociationStatus.NUMERIC_ERROR),
        AssociationRecord("rs5_C", "M2", 0.049),
    ]

    kept = filter_records(records, p_threshold=0.05)

    assert [(r.variant_id, r.metabolite_id) for r in kept] == [("rs1_A", "M1"), ("rs5_C", "M2")]


def test_normalize_variant_id_strips_allele_suffix() -> None:
    assert normalize_variant_id("rs123_A") == "rs123"
    assert normalize_variant_id("rs123") == "rs123"
    assert normalize_variant_id("rs9_AT_extra") == "rs9"
    assert normalize_variant_id("rs9:A", separator=":") == "rs9"


def test_join_variant_positions_attaches_coordinates() -> None:
    records = [
        AssociationRecord("rs1_A", "M1", 0.01),
        AssociationRecord("rs2_G", "M2", 0.002),
    ]

    joined = join_variant_positions(records, _variant_map())

    table = joined.table
    assert list(table.columns) == ["variantId", "metaboliteId", "pvalue", "chromosome", "position"]
    assert table["variantId"].tolist() == ["rs1", "rs2"]
    assert table["chromosome"].tolist() == ["1", "2"]
    assert table["position"].tolist() == [100, 50]
    assert table["position"].dtype == "int64"
    assert joined.diagnostics.n_joined == 2
    assert joined.diagnostics.n_missing == 0


def test_join_variant_positions_uses_id_lookup() -> None:
    vmap = VariantMap(pd.DataFrame({"SNP": ["1_100", "1_200"], "CHROM": ["1", "1"], "POS": [100, 200]}))
    records = [
        AssociationRecord("1_200_G", "M1", 0.01),
        AssociationRecord("1_100_A", "M2", 0.02),
    ]

    joined = join_variant_positions(records, vmap, id_lookup={"1_100_A": "1_100", "1_200_G": "1_200"})

    assert joined.table["variantId"].tolist() == ["1_200", "1_100"]
    assert joined.table["position"].tolist() == [200, 100]
    assert joined.diagnostics.n_missing == 0


def test_join_records_missing_mapping_in_diagnostics() -> None:
    records = [
        AssociationRecord("rs1_A", "M1", 0.01),
        AssociationRecord("rs3_G", "M2", 0.02),
        AssociationRecord("rs3_G", "M1", 0.03),
    ]

    joined = join_variant_positions(records, _variant_map())

    assert joined.table["variantId"].tolist() == ["rs1"]
    diag = joined.diagnostics
    assert diag.n_records == 3
    assert diag.n_missing == 2
    assert all(isinstance(err, MissingVariantMappingError) for err in diag.missing)
    assert diag.missing[0].variant_id == "rs3"
    assert diag.missing[0].metabolite_id == "M2"
    assert diag.missing_variant_ids == ["rs3"]


def test_join_empty_records() -> None:
    joined = join_variant_positions([], _variant_map())
    assert joined.table.empty
    assert list(joined.table.columns) == ["variantId", "metaboliteId", "pvalue", "chromosome", "position"]


def test_run_diagnostics_summary() -> None:
    joined = join_variant_positions([AssociationRecord("rs3_G", "M2", 0.02)], _variant_map())
    diagnostics = RunDiagnostics.from_run(
        {"Ok": 5, "InsufficientData": 1, "NumericError": 0},
        n_significant=1,
        join=joined.diagnostics,
        variants_selected=3,
    )

    assert diagnostics.n_pairs == 6
    assert diagnostics.n_missing_mapping == 1

    df = diagnostics.to_dataframe()
    metrics = dict(zip(df["metric"], df["value"]))
    assert metrics["pairs_tested"] == 6
    assert metrics["status_InsufficientData"] == 1
    assert metrics["missing_variant_mapping"] == 1
    assert metrics["variants_selected"] == 3

    text = format_diagnostics(diagnostics)
    assert "Pairs tested: 6" in text
    assert "Unmapped variants: rs3" in text
