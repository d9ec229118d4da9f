"""
mQTL Pipeline Module

Object-oriented wrapper around the full metabolite QTL workflow: loading
PLINK outputs and metabolite measurements, sample alignment, metabolite
cleaning, Bonferroni variant selection, the pairwise scan, significance
filtering, position joining and Manhattan preparation.
"""

import threading
import time
import warnings
from collections import defaultdict
from pathlib import Path
from typing import List, Optional, Dict, Any, Tuple

import pandas as pd

from ..data.loaders import (
    load_family_file, load_raw_dosage_file, load_position_map,
    load_first_pass_pvalues, load_metabolite_file, align_to_samples,
)
from ..data.writers import (
    write_phenotype_tables, write_variant_list, write_association_table,
    write_visualization_table,
)
from ..utils.config import MQTLConfig
from ..utils.errors import InputFormatError
from ..utils.data_types import (
    SampleTable, MetaboliteMatrix, GenotypeMatrix, VariantMap, AssociationRecord,
)
from ..preprocessing.metabolites import MQTL_Preprocess, PreprocessSummary
from ..association.selector import select_variants
from ..association.pairwise import MQTL_PairwiseScan, PairwiseScanResult
from ..results.filtering import (
    filter_records, join_variant_positions,
    JoinResult, RunDiagnostics, format_diagnostics,
)
from ..visualization.manhattan import prepare_manhattan_table, MQTL_Report

OUTPUT_CHOICES: Tuple[str, ...] = (
    'phenotype_tables',
    'all_pair_pvalues',
    'manhattan',
    'qq',
)


class MQTLPipeline:
    """
    High-level pipeline for metabolite QTL mapping.

    Typical workflow:
        1. Initialize pipeline with output directory and MQTLConfig
        2. Load family, dosage, position map, first-pass and metabolite files
        3. Align samples to the family file order
        4. Clean the metabolite matrix
        5. Select Bonferroni-significant variants from the first-pass test
        6. Scan every (metabolite, variant) pair
        7. Filter, join positions, prepare the Manhattan table and save

    Example:
        >>> from mqtl.pipelines.mqtl import MQTLPipeline
        >>> pipeline = MQTLPipeline(output_dir='./mqtl_out')
        >>> pipeline.load_data(
        ...     family_file='cohort.fam',
        ...     dosage_file='cohort.raw',
        ...     map_file='cohort.map',
        ...     first_pass_file='cohort.qassoc',
        ...     metabolite_file='metabolites.csv',
        ... )
        >>> pipeline.run()
    """

    def __init__(self, output_dir: str = "./mQTL_results",
                 config: Optional[MQTLConfig] = None,
                 verbose: bool = True):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.config = (config or MQTLConfig()).validate()
        self.verbose = verbose

        # Inputs
        self.samples: Optional[SampleTable] = None
        self.raw_metabolites: Optional[MetaboliteMatrix] = None
        self.genotypes: Optional[GenotypeMatrix] = None
        self.variant_map: Optional[VariantMap] = None
        self.first_pass_pvalues: Optional[pd.Series] = None

        # Derived state
        self.metabolites: Optional[MetaboliteMatrix] = None
        self.preprocess_summary: Optional[PreprocessSummary] = None
        self.alignment_summary: Dict[str, int] = {}
        self.selected_variants: List[str] = []
        self.selected_genotypes: Optional[GenotypeMatrix] = None
        self.variant_column_ids: Dict[str, str] = {}
        self.scan: Optional[PairwiseScanResult] = None
        self.significant: List[AssociationRecord] = []
        self.join: Optional[JoinResult] = None
        self.manhattan_table: Optional[pd.DataFrame] = None
        self.diagnostics: Optional[RunDiagnostics] = None
        self.files_created: List[Path] = []

    def log(self, message: str):
        """Internal logger"""
        if self.verbose:
            print(message)

    def log_step(self, step_name: str, start_time: Optional[float] = None):
        """Log a pipeline step with optional timing"""
        if start_time is not None:
            elapsed = time.time() - start_time
            self.log(f"{step_name} completed in {elapsed:.2f} seconds")
        else:
            self.log(f"{step_name}...")

    def load_data(self,
                  family_file: str,
                  dosage_file: str,
                  map_file: str,
                  first_pass_file: str,
                  metabolite_file: str,
                  metabolite_id_column: str = 'ID',
                  metabolite_columns: Optional[List[str]] = None):
        """
        Load all inputs into memory.

        Args:
            family_file: PLINK .fam file
            dosage_file: PLINK --recodeA .raw file
            map_file: PLINK .map file
            first_pass_file: First-pass association table with SNP and P columns
            metabolite_file: Metabolite measurements (ID column + one column per metabolite)
            metabolite_id_column: Sample id column in the metabolite file
            metabolite_columns: Metabolites to load (default: all numeric columns)

        Raises:
            InputFormatError: A file is malformed
        """
        t = time.time()
        self.log_step("Loading data")

        self.samples = load_family_file(family_file)
        self.log(f"   Loaded {self.samples.n_samples} samples from family file")

        self.genotypes, _ = load_raw_dosage_file(dosage_file)
        self.log(f"   Loaded dosages: {self.genotypes.n_samples} samples x {self.genotypes.n_variants} variants")

        self.variant_map = load_position_map(map_file)
        self.log(f"   Loaded position map for {self.variant_map.n_markers} variants")

        self.first_pass_pvalues = load_first_pass_pvalues(first_pass_file)
        self.log(f"   Loaded first-pass p-values for {len(self.first_pass_pvalues)} variants")

        self.raw_metabolites = load_metabolite_file(metabolite_file,
                                                    id_column=metabolite_id_column,
                                                    metabolite_columns=metabolite_columns)
        self.log(f"   Loaded {self.raw_metabolites.n_metabolites} metabolites for "
                 f"{self.raw_metabolites.n_samples} samples")

        self.log_step("Data loading", t)

    def align_samples(self):
        """Reorder metabolite and dosage rows to the family file order.

        Raises:
            AlignmentError: sample identifier sets differ between inputs
        """
        self._require('samples', 'raw_metabolites', 'genotypes')
        self.log_step("Aligning samples")
        self.raw_metabolites, self.genotypes, self.alignment_summary = align_to_samples(
            self.samples, self.raw_metabolites, self.genotypes
        )
        self.log(f"   Aligned {self.samples.n_samples} samples across family, dosage and metabolite data")

    def preprocess(self, write_phenotypes: bool = False):
        """Clean the metabolite matrix (normalize, mask outliers, drop sparse)."""
        self._require('raw_metabolites')
        t = time.time()
        self.log_step("Preprocessing metabolites")
        result = MQTL_Preprocess(
            self.raw_metabolites,
            outlier_sd=self.config.outlier_sd,
            min_non_missing_fraction=self.config.min_non_missing_fraction,
            verbose=self.verbose,
        )
        self.metabolites = result.matrix
        self.preprocess_summary = result.summary

        if write_phenotypes:
            if self.samples is None:
                raise RuntimeError("Family data required to write phenotype tables")
            paths = write_phenotype_tables(self.samples, self.metabolites,
                                           self.output_dir / "phenotypes")
            self.files_created.extend(paths)
            self.log(f"   Wrote {len(paths)} phenotype tables to {self.output_dir / 'phenotypes'}")
        self.log_step("Preprocessing", t)

    def select_variants(self):
        """Bonferroni selection on the first-pass p-values.

        The denominator is config.total_variant_count, or the number of
        variants in the first-pass file when unset.
        """
        self._require('first_pass_pvalues', 'genotypes')
        total = self.config.total_variant_count
        if total is None:
            total = len(self.first_pass_pvalues)
        threshold = self.config.bonferroni_alpha / total if total > 0 else float('nan')
        self.log_step("Selecting variants")
        self.selected_variants = select_variants(self.first_pass_pvalues, total,
                                                 alpha=self.config.bonferroni_alpha)
        self.log(f"   Bonferroni threshold: {threshold:.2e} (alpha={self.config.bonferroni_alpha}, n={total})")
        self.log(f"   {len(self.selected_variants)} variants pass")

        path = write_variant_list(self.selected_variants, self.output_dir / "significant_variants.txt")
        self.files_created.append(path)

        # dosage columns are "<id>" or "<id><sep><allele>"; match the whole id
        sep = self.config.variant_id_separator
        column_ids = set(self.genotypes.variant_ids)
        by_base: Dict[str, List[str]] = defaultdict(list)
        for column_id in self.genotypes.variant_ids:
            if sep in column_id:
                by_base[column_id.rsplit(sep, 1)[0]].append(column_id)
        columns: List[str] = []
        absent = []
        self.variant_column_ids = {}
        for variant_id in self.selected_variants:
            if variant_id in column_ids:
                column_id = variant_id
            elif len(by_base.get(variant_id, [])) == 1:
                column_id = by_base[variant_id][0]
            elif variant_id in by_base:
                raise InputFormatError(
                    f"Variant {variant_id} matches several dosage columns: {by_base[variant_id]}"
                )
            else:
                absent.append(variant_id)
                continue
            if column_id not in self.variant_column_ids:
                self.variant_column_ids[column_id] = variant_id
                columns.append(column_id)
        if absent:
            warnings.warn(
                f"{len(absent)} selected variants have no dosage column and are skipped: {absent[:5]}"
            )
        self.selected_genotypes = self.genotypes.select_variants(columns)

    def run_scan(self, cancel_event: Optional[threading.Event] = None):
        """Pairwise association scan over cleaned metabolites and selected variants."""
        self._require('metabolites', 'selected_genotypes')
        t = time.time()
        self.log_step("Running pairwise association scan")
        self.scan = MQTL_PairwiseScan(
            self.metabolites,
            self.selected_genotypes,
            n_workers=self.config.n_workers,
            cancel_event=cancel_event,
            min_complete_cases=self.config.min_complete_cases,
            verbose=self.verbose,
        )
        self.log_step("Pairwise scan", t)

    def filter_and_join(self):
        """Significance filter and position join; records unmapped variants."""
        self._require('scan', 'variant_map')
        self.significant = filter_records(self.scan.records, self.config.pair_p_threshold)
        self.log(f"   {len(self.significant)} pairs with p < {self.config.pair_p_threshold}")
        self.join = join_variant_positions(self.significant, self.variant_map,
                                           separator=self.config.variant_id_separator,
                                           id_lookup=self.variant_column_ids)
        if self.join.diagnostics.n_missing:
            warnings.warn(
                f"{self.join.diagnostics.n_missing} significant records reference variants "
                f"absent from the position map: {self.join.diagnostics.missing_variant_ids[:5]}"
            )
        self.manhattan_table = prepare_manhattan_table(self.join)

        extra: Dict[str, Any] = {}
        if self.preprocess_summary is not None:
            extra = {
                'metabolites_input': self.preprocess_summary.n_input_metabolites,
                'metabolites_zero_variance': len(self.preprocess_summary.degenerate),
                'values_masked': self.preprocess_summary.n_masked_values,
                'metabolites_sparse': len(self.preprocess_summary.sparse),
                'metabolites_tested': self.preprocess_summary.n_output_metabolites,
            }
        extra['variants_selected'] = len(self.selected_variants)
        self.diagnostics = RunDiagnostics.from_run(
            self.scan.status_counts(),
            n_significant=len(self.significant),
            join=self.join.diagnostics,
            **extra,
        )

    def save_results(self, outputs: Optional[List[str]] = None):
        """Write filtered tables, diagnostics and requested plots."""
        self._require('scan', 'join', 'manhattan_table', 'diagnostics')
        outputs = list(outputs) if outputs is not None else list(OUTPUT_CHOICES)

        path = write_association_table(self.significant, self.output_dir / "mQTL_filtered_associations.tsv")
        self.files_created.append(path)

        path = write_visualization_table(self.manhattan_table, self.output_dir / "mQTL_manhattan_table.tsv")
        self.files_created.append(path)

        path = self.output_dir / "mQTL_diagnostics.csv"
        self.diagnostics.to_dataframe().to_csv(path, index=False)
        self.files_created.append(path)

        if 'all_pair_pvalues' in outputs:
            path = self.output_dir / "mQTL_all_pairs.csv"
            self.scan.to_dataframe().to_csv(path, index=False)
            self.files_created.append(path)

        plot_types = tuple(p for p in ('manhattan', 'qq') if p in outputs)
        if plot_types:
            try:
                report = MQTL_Report(
                    self.manhattan_table,
                    scan_pvalues=self.scan.pvalues(),
                    annotation_threshold=self.config.annotation_threshold,
                    p_threshold=self.config.pair_p_threshold,
                    plot_types=plot_types,
                    output_prefix=str(self.output_dir / "mQTL"),
                    save_plots=True,
                    verbose=self.verbose,
                )
            except Exception as e:
                self.log(f"   Plotting error: {e}")
            else:
                import matplotlib.pyplot as plt
                for fig in report['plots'].values():
                    plt.close(fig)
                self.files_created.extend(Path(f) for f in report['files_created'])

        self.log(f"\nSaved results to {self.output_dir}")

    def run(self, outputs: Optional[List[str]] = None,
            cancel_event: Optional[threading.Event] = None) -> RunDiagnostics:
        """Align, preprocess, select, scan, filter and save in one call."""
        outputs = list(outputs) if outputs is not None else list(OUTPUT_CHOICES)
        t = time.time()
        self.align_samples()
        self.preprocess(write_phenotypes='phenotype_tables' in outputs)
        self.select_variants()
        self.run_scan(cancel_event=cancel_event)
        self.filter_and_join()
        self.save_results(outputs)
        self.log("\n" + format_diagnostics(self.diagnostics))
        self.log_step("mQTL analysis", t)
        return self.diagnostics

    def _require(self, *attributes: str):
        missing = [name for name in attributes if getattr(self, name) is None]
        if missing:
            raise RuntimeError(f"Pipeline step out of order; missing: {', '.join(missing)}")
