"""Integration tests for MQTLPipeline end-to-end workflows."""

import threading
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import pandas as pd
import pytest

from mqtl.association.pairwise import MQTL_PairwiseScan
from mqtl.cli import utils as cli_utils
from mqtl.pipelines.mqtl import MQTLPipeline
from mqtl.results.filtering import filter_records
from mqtl.utils.config import MQTLConfig
from mqtl.utils.data_types import AssociationStatus
from mqtl.utils.errors import AlignmentError, AssociationCancelledError, InputFormatError

SAMPLE_IDS = [f"S{i:02d}" for i in range(1, 11)]
RS1_DOSAGE = [0, 0, 1, 1, 2, 2, 0, 1, 2, 1]
# rs2 and rs3 have zero covariance with both metabolites among complete cases;
# the missing rs3 call sits where its observed mean would be
RS2_DOSAGE = [1, 1, 0, 2, 1, 1, 1, 2, 1, 0]
RS3_DOSAGE = [2, 0, "NA", 1, 0, 2, 1, 1, 1, 1]
# 2 * rs1 plus small noise orthogonal to rs1
M1 = [0.1, 0.0, 2.05, 1.95, 4.0, 3.9, -0.1, 2.05, 4.1, 1.95]
# no slope against any variant
M2 = [5, 3, 7, 2, 6, 4, 6, 8, 4, 3]
ALLELES = ("A", "C", "G")


def _write_inputs(tmp_path: Path, variant_ids=("rs1", "rs2", "rs3"), map_variants=None) -> dict:
    if map_variants is None:
        map_variants = variant_ids
    fam = tmp_path / "cohort.fam"
    fam.write_text("".join(f"F{sid[1:]} {sid} 0 0 1 -9\n" for sid in SAMPLE_IDS))

    columns = " ".join(f"{v}_{a}" for v, a in zip(variant_ids, ALLELES))
    raw_lines = [f"FID IID PAT MAT SEX PHENOTYPE {columns}"]
    # dosage rows in reverse order to exercise alignment
    for i in reversed(range(len(SAMPLE_IDS))):
        sid = SAMPLE_IDS[i]
        raw_lines.append(f"F{sid[1:]} {sid} 0 0 1 -9 {RS1_DOSAGE[i]} {RS2_DOSAGE[i]} {RS3_DOSAGE[i]}")
    raw = tmp_path / "cohort.raw"
    raw.write_text("\n".join(raw_lines) + "\n")

    positions = {v: (str(k + 1), (k + 1) * 1000) for k, v in enumerate(variant_ids)}
    map_file = tmp_path / "cohort.map"
    map_file.write_text("".join(
        f"{positions[v][0]} {v} 0 {positions[v][1]}\n" for v in map_variants
    ))

    first_pass = tmp_path / "cohort.qassoc"
    first_pass.write_text(
        " CHR SNP BP P\n"
        + "".join(f"   {positions[v][0]} {v} {positions[v][1]} {p}\n"
                  for v, p in zip(variant_ids, ("1e-9", "0.2", "0.04")))
    )

    metabolites = tmp_path / "metabolites.csv"
    met_df = pd.DataFrame({"ID": SAMPLE_IDS, "M1": M1, "M2": M2}).iloc[[3, 0, 9, 1, 2, 4, 8, 5, 7, 6]]
    met_df.to_csv(metabolites, index=False)

    return {
        'family_file': fam,
        'dosage_file': raw,
        'map_file': map_file,
        'first_pass_file': first_pass,
        'metabolite_file': metabolites,
    }


def test_pipeline_end_to_end(tmp_path: Path) -> None:
    inputs = _write_inputs(tmp_path)
    out = tmp_path / "results"

    pipeline = MQTLPipeline(output_dir=str(out), config=MQTLConfig(n_workers=2), verbose=False)
    pipeline.load_data(**inputs)
    diagnostics = pipeline.run()

    assert pipeline.selected_variants == ["rs1"]
    assert pipeline.selected_genotypes.variant_ids == ("rs1_A",)
    assert diagnostics.n_pairs == 2
    assert diagnostics.status_counts["Ok"] == 2
    assert diagnostics.n_significant == 1
    assert diagnostics.n_joined == 1
    assert diagnostics.n_missing_mapping == 0

    assoc = pd.read_csv(out / "mQTL_filtered_associations.tsv", sep="\t")
    assert assoc[["variantId", "metaboliteId"]].values.tolist() == [["rs1_A", "M1"]]
    assert assoc["pvalue"].iloc[0] < 1e-6

    viz = pd.read_csv(out / "mQTL_manhattan_table.tsv", sep="\t", dtype={"chromosome": str})
    assert list(viz.columns) == ["variantId", "chromosome", "position", "pvalue"]
    assert viz[["variantId", "chromosome", "position"]].values.tolist() == [["rs1", "1", 1000]]

    assert (out / "significant_variants.txt").read_text() == "rs1\n"
    assert (out / "mQTL_diagnostics.csv").exists()
    assert (out / "mQTL_all_pairs.csv").exists()
    assert (out / "mQTL_manhattan.png").exists()
    assert (out / "mQTL_qq.png").exists()

    pheno_files = sorted(p.name for p in (out / "phenotypes").iterdir())
    assert pheno_files == ["pheno_M1.txt", "pheno_M2.txt"]
    first_line = (out / "phenotypes" / "pheno_M1.txt").read_text().splitlines()[0]
    assert first_line.split()[:2] == ["F01", "S01"]


def test_pipeline_reports_unmapped_variants(tmp_path: Path) -> None:
    inputs = _write_inputs(tmp_path, map_variants=("rs2", "rs3"))
    pipeline = MQTLPipeline(output_dir=str(tmp_path / "results"),
                            config=MQTLConfig(n_workers=1), verbose=False)
    pipeline.load_data(**inputs)

    with pytest.warns(UserWarning, match="absent from the position map"):
        diagnostics = pipeline.run(outputs=[])

    assert diagnostics.n_significant == 1
    assert diagnostics.n_joined == 0
    assert diagnostics.n_missing_mapping == 1
    assert diagnostics.missing_variant_ids == ["rs1"]
    assert pipeline.manhattan_table.empty


def test_pipeline_total_variant_count_controls_selection(tmp_path: Path) -> None:
    inputs = _write_inputs(tmp_path)
    # 0.05 / 1 keeps rs3 (p = 0.04) as well
    pipeline = MQTLPipeline(output_dir=str(tmp_path / "results"),
                            config=MQTLConfig(total_variant_count=1, n_workers=1), verbose=False)
    pipeline.load_data(**inputs)
    pipeline.align_samples()
    pipeline.preprocess()
    pipeline.select_variants()

    assert pipeline.selected_variants == ["rs1", "rs3"]
    assert pipeline.selected_genotypes.variant_ids == ("rs1_A", "rs3_G")


def test_pairwise_filter_over_all_variants(tmp_path: Path) -> None:
    inputs = _write_inputs(tmp_path)
    pipeline = MQTLPipeline(output_dir=str(tmp_path / "results"), verbose=False)
    pipeline.load_data(**inputs)
    pipeline.align_samples()
    pipeline.preprocess()

    scan = MQTL_PairwiseScan(pipeline.metabolites, pipeline.genotypes, n_workers=2, verbose=False)
    kept = filter_records(scan.records, 0.05)

    assert len(scan.records) == 6
    assert all(r.status is AssociationStatus.OK for r in scan.records)
    assert [(r.variant_id, r.metabolite_id) for r in kept] == [("rs1_A", "M1")]


def test_pipeline_matches_ids_containing_separator(tmp_path: Path) -> None:
    inputs = _write_inputs(tmp_path, variant_ids=("1_100", "1_200", "2_300"))
    pipeline = MQTLPipeline(output_dir=str(tmp_path / "results"),
                            config=MQTLConfig(total_variant_count=1, n_workers=1), verbose=False)
    pipeline.load_data(**inputs)
    diagnostics = pipeline.run(outputs=[])

    assert pipeline.selected_variants == ["1_100", "2_300"]
    assert pipeline.selected_genotypes.variant_ids == ("1_100_A", "2_300_G")
    assert diagnostics.n_missing_mapping == 0
    assert pipeline.manhattan_table["variantId"].tolist() == ["1_100"]


def test_pipeline_rejects_ambiguous_dosage_columns(tmp_path: Path) -> None:
    inputs = _write_inputs(tmp_path)
    raw = inputs['dosage_file']
    raw.write_text(raw.read_text().replace("rs2_C", "rs1_C", 1))
    pipeline = MQTLPipeline(output_dir=str(tmp_path / "results"), verbose=False)
    pipeline.load_data(**inputs)

    with pytest.raises(InputFormatError, match="several dosage columns"):
        pipeline.select_variants()


def test_pipeline_rejects_misaligned_samples(tmp_path: Path) -> None:
    inputs = _write_inputs(tmp_path)
    inputs['family_file'].write_text("".join(f"F{sid[1:]} {sid} 0 0 1 -9\n" for sid in SAMPLE_IDS[:-1]))

    pipeline = MQTLPipeline(output_dir=str(tmp_path / "results"), verbose=False)
    pipeline.load_data(**inputs)
    with pytest.raises(AlignmentError):
        pipeline.align_samples()


def test_pipeline_steps_out_of_order(tmp_path: Path) -> None:
    pipeline = MQTLPipeline(output_dir=str(tmp_path / "results"), verbose=False)
    with pytest.raises(RuntimeError):
        pipeline.run_scan()


def test_pipeline_cancelled_scan(tmp_path: Path) -> None:
    inputs = _write_inputs(tmp_path)
    pipeline = MQTLPipeline(output_dir=str(tmp_path / "results"), verbose=False)
    pipeline.load_data(**inputs)
    event = threading.Event()
    event.set()

    with pytest.raises(AssociationCancelledError):
        pipeline.run(outputs=[], cancel_event=event)


def test_cli_main_end_to_end(tmp_path: Path) -> None:
    inputs = _write_inputs(tmp_path)
    out = tmp_path / "cli_results"

    code = cli_utils.main([
        "--fam", str(inputs['family_file']),
        "--raw", str(inputs['dosage_file']),
        "--map", str(inputs['map_file']),
        "--first-pass", str(inputs['first_pass_file']),
        "--metabolites", str(inputs['metabolite_file']),
        "-o", str(out),
        "-j", "1",
        "-q",
        "--outputs", "phenotype_tables",
    ])

    assert code == 0
    assoc = pd.read_csv(out / "mQTL_filtered_associations.tsv", sep="\t")
    assert len(assoc) == 1
    assert not (out / "mQTL_manhattan.png").exists()
