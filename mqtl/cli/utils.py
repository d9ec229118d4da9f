import argparse
import sys
from typing import List, Optional

from ..pipelines.mqtl import MQTLPipeline, OUTPUT_CHOICES
from ..utils.config import MQTLConfig
from ..utils.errors import MQTLError


def normalize_outputs(outputs: List[str]) -> List[str]:
    """Helper to normalize output choices (comma splitting, dedup)"""
    if not outputs:
        return list(OUTPUT_CHOICES)
    valid = []
    for item in outputs:
        for part in str(item).split(','):
            part = part.strip().lower()
            if part in OUTPUT_CHOICES and part not in valid:
                valid.append(part)
    return valid if valid else list(OUTPUT_CHOICES)


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments for the mQTL pipeline"""
    parser = argparse.ArgumentParser(
        description="Metabolite QTL mapping from PLINK outputs and metabolite measurements",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Required inputs
    parser.add_argument("--fam", required=True,
                        help="PLINK family file (.fam)")
    parser.add_argument("--raw", required=True,
                        help="PLINK additive dosage file (--recodeA .raw)")
    parser.add_argument("--map", "-m", required=True,
                        help="PLINK map file (.map)")
    parser.add_argument("--first-pass", required=True,
                        help="First-pass association table with SNP and P columns")
    parser.add_argument("--metabolites", "-p", required=True,
                        help="Metabolite file (CSV/TSV with ID column and metabolite columns)")
    parser.add_argument("--metabolite-id-column", default='ID',
                        help="Column name for sample IDs in metabolite file")
    parser.add_argument("--metabolite-columns", default=None,
                        help="Comma-separated metabolites to analyze (default: all)")
    parser.add_argument("--outputdir", "-o", default="./mQTL_results",
                        help="Output directory")

    # Thresholds
    parser.add_argument("--outlier-sd", type=float, default=3.0,
                        help="Mask normalized values beyond this many SDs")
    parser.add_argument("--min-non-missing", type=float, default=0.5,
                        help="Minimum observed fraction to keep a metabolite")
    parser.add_argument("--alpha", type=float, default=0.05,
                        help="Bonferroni alpha for variant selection")
    parser.add_argument("--n-variants", type=int, default=None,
                        help="Bonferroni denominator (default: rows in first-pass file)")
    parser.add_argument("--pair-threshold", type=float, default=0.05,
                        help="p-value cutoff for (variant, metabolite) pairs")
    parser.add_argument("--annotate", type=float, default=None,
                        help="Label Manhattan points with -log10(p) above this value")
    parser.add_argument("--min-complete-cases", type=int, default=3,
                        help="Minimum complete cases per regression")
    parser.add_argument("--variant-separator", default="_",
                        help="Separator before the allele suffix in dosage column names")

    # Execution
    parser.add_argument("--workers", "-j", type=int, default=None,
                        help="Worker threads for the pairwise scan (default: CPU count)")
    parser.add_argument("--quiet", "-q", action='store_true',
                        help="Suppress progress output")

    # Output
    parser.add_argument("--outputs", nargs='+',
                        default=list(OUTPUT_CHOICES),
                        help=f"Outputs to generate, space or comma separated: {', '.join(OUTPUT_CHOICES)}")

    return parser.parse_args(argv)


def build_config(args) -> MQTLConfig:
    """MQTLConfig from parsed arguments (validated)"""
    config = MQTLConfig(
        outlier_sd=args.outlier_sd,
        min_non_missing_fraction=args.min_non_missing,
        bonferroni_alpha=args.alpha,
        total_variant_count=args.n_variants,
        pair_p_threshold=args.pair_threshold,
        annotation_threshold=args.annotate,
        n_workers=args.workers,
        min_complete_cases=args.min_complete_cases,
        variant_id_separator=args.variant_separator,
    )
    return config.validate()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    columns = ([c.strip() for c in args.metabolite_columns.split(',') if c.strip()]
               if args.metabolite_columns else None)

    pipeline = MQTLPipeline(output_dir=args.outputdir, config=config, verbose=not args.quiet)
    try:
        pipeline.load_data(
            family_file=args.fam,
            dosage_file=args.raw,
            map_file=args.map,
            first_pass_file=args.first_pass,
            metabolite_file=args.metabolites,
            metabolite_id_column=args.metabolite_id_column,
            metabolite_columns=columns,
        )
        pipeline.run(outputs=normalize_outputs(args.outputs))
    except (MQTLError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0
