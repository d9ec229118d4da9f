"""
Output writers for mQTL results
"""

import csv
from pathlib import Path
from typing import Union, Iterable, List, Optional

import pandas as pd

from ..utils.data_types import SampleTable, MetaboliteMatrix, AssociationRecord
from ..utils.errors import AlignmentError

ASSOCIATION_COLUMNS = ['variantId', 'metaboliteId', 'pvalue']
VISUALIZATION_COLUMNS = ['variantId', 'chromosome', 'position', 'pvalue']


def _safe_filename(name: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in str(name))


def write_phenotype_table(samples: SampleTable,
                          metabolites: MetaboliteMatrix,
                          metabolite_id: str,
                          path: Union[str, Path],
                          missing_token: str = 'NA') -> Path:
    """Write a PLINK --pheno style table for one metabolite

    Three whitespace-separated columns (FID, IID, value), no header and no
    quoting.
    """
    if tuple(samples.sample_ids) != tuple(metabolites.sample_ids):
        raise AlignmentError("Metabolite matrix is not aligned to the family table")
    path = Path(path)
    df = pd.DataFrame({
        'FID': samples.family_ids,
        'IID': samples.sample_ids,
        'VALUE': metabolites.column(metabolite_id),
    })
    df.to_csv(path, sep=' ', header=False, index=False,
              na_rep=missing_token, quoting=csv.QUOTE_NONE)
    return path


def write_phenotype_tables(samples: SampleTable,
                           metabolites: MetaboliteMatrix,
                           output_dir: Union[str, Path],
                           prefix: str = 'pheno') -> List[Path]:
    """One phenotype table per metabolite column"""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for metabolite_id in metabolites.metabolite_ids:
        target = output_dir / f"{prefix}_{_safe_filename(metabolite_id)}.txt"
        written.append(write_phenotype_table(samples, metabolites, metabolite_id, target))
    return written


def write_variant_list(variant_ids: Iterable[str], path: Union[str, Path]) -> Path:
    """One variant identifier per line"""
    path = Path(path)
    with open(path, 'w') as handle:
        for variant_id in variant_ids:
            handle.write(f"{variant_id}\n")
    return path


def read_variant_list(path: Union[str, Path]) -> List[str]:
    with open(path, 'r') as handle:
        return [line.strip() for line in handle if line.strip()]


def write_association_table(records: Iterable[AssociationRecord],
                            path: Union[str, Path],
                            sep: str = '\t') -> Path:
    """Filtered association table [variantId, metaboliteId, pvalue]"""
    path = Path(path)
    rows = [(rec.variant_id, rec.metabolite_id, rec.pvalue) for rec in records]
    df = pd.DataFrame(rows, columns=ASSOCIATION_COLUMNS)
    df.to_csv(path, sep=sep, index=False, quoting=csv.QUOTE_NONE)
    return path


def write_visualization_table(table: pd.DataFrame,
                              path: Union[str, Path],
                              sep: str = '\t',
                              columns: Optional[List[str]] = None) -> Path:
    """Final visualization table [variantId, chromosome, position, pvalue]"""
    path = Path(path)
    columns = columns or VISUALIZATION_COLUMNS
    missing = [c for c in columns if c not in table.columns]
    if missing:
        raise ValueError(f"Visualization table missing columns: {missing}")
    table[columns].to_csv(path, sep=sep, index=False, quoting=csv.QUOTE_NONE)
    return path
