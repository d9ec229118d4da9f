"""
Data loading utilities for PLINK text outputs and metabolite tables
"""

import pandas as pd
import numpy as np
from pathlib import Path
from typing import Union, Optional, List, Dict, Tuple
import warnings

from ..utils.data_types import (
    SampleRecord, SampleTable, MetaboliteMatrix, GenotypeMatrix, VariantMap
)
from ..utils.errors import InputFormatError, AlignmentError

NA_VALUES = [
    '', 'NA', 'NaN', 'nan', 'NAN', 'na', 'N/A', 'n/a', 'Null', 'NULL',
    '.', '-', '--'
]

FAMILY_COLUMNS = ['FID', 'IID', 'PAT', 'MAT', 'SEX', 'PHENO']
RAW_METADATA_COLUMNS = ['FID', 'IID', 'PAT', 'MAT', 'SEX', 'PHENOTYPE']
MAP_COLUMNS = ['CHROM', 'SNP', 'CM', 'POS']


def detect_file_format(filepath: Union[str, Path]) -> str:
    """Detect delimiter style of a tabular file

    Args:
        filepath: Path to file

    Returns:
        Detected format: 'csv', 'tsv' or 'whitespace'
    """
    filepath = Path(filepath)
    suffix = filepath.suffix.lower()
    if suffix == '.csv':
        return 'csv'
    if suffix == '.tsv':
        return 'tsv'

    try:
        with open(filepath, 'r') as f:
            first_line = f.readline().rstrip('\n')
    except OSError as exc:
        raise InputFormatError(f"Cannot read file: {exc}", path=filepath) from exc

    if '\t' in first_line and ',' not in first_line:
        return 'tsv'
    elif ',' in first_line:
        return 'csv'
    return 'whitespace'


def _read_whitespace_table(filepath: Path, header: Optional[int], **kwargs) -> pd.DataFrame:
    """pd.read_csv on a whitespace-delimited file, errors mapped to InputFormatError"""
    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")
    try:
        return pd.read_csv(filepath, sep=r'\s+', header=header, **kwargs)
    except pd.errors.EmptyDataError as exc:
        raise InputFormatError("File is empty", path=filepath) from exc
    except pd.errors.ParserError as exc:
        raise InputFormatError(str(exc).strip(), path=filepath) from exc


def _check_short_rows(df: pd.DataFrame, filepath: Path, first_data_line: int) -> None:
    """Rows with fewer fields than the header come back NaN-padded"""
    short = df.iloc[:, -1].isna()
    if short.any():
        first_bad = int(np.flatnonzero(short.to_numpy())[0])
        raise InputFormatError(
            f"Expected {df.shape[1]} columns, found fewer",
            path=filepath, line=first_bad + first_data_line,
        )


def load_family_file(filepath: Union[str, Path]) -> SampleTable:
    """Load a PLINK .fam file

    Args:
        filepath: Whitespace-delimited file with columns
            [FID, IID, PAT, MAT, SEX, PHENO] and no header

    Returns:
        SampleTable in file order
    """
    filepath = Path(filepath)
    df = _read_whitespace_table(filepath, header=None, dtype=str,
                                keep_default_na=False, na_values=[])
    if df.shape[1] != len(FAMILY_COLUMNS):
        raise InputFormatError(
            f"Family file must have {len(FAMILY_COLUMNS)} columns, got {df.shape[1]}",
            path=filepath, line=1,
        )
    df = df.replace('', np.nan)
    _check_short_rows(df, filepath, first_data_line=1)
    df.columns = FAMILY_COLUMNS

    records = []
    for line_no, row in enumerate(df.itertuples(index=False), start=1):
        try:
            sex = int(row.SEX)
        except ValueError as exc:
            raise InputFormatError(f"Invalid sex code '{row.SEX}'", path=filepath, line=line_no) from exc
        pheno = pd.to_numeric(row.PHENO, errors='coerce')
        if pd.isna(pheno) or pheno == -9:
            pheno = None
        records.append(SampleRecord(
            family_id=row.FID,
            sample_id=row.IID,
            paternal_id=row.PAT,
            maternal_id=row.MAT,
            sex=sex,
            phenotype=None if pheno is None else float(pheno),
        ))
    return SampleTable(records)


def load_raw_dosage_file(filepath: Union[str, Path]) -> Tuple[GenotypeMatrix, pd.DataFrame]:
    """Load a PLINK --recodeA .raw dosage file

    Args:
        filepath: Whitespace-delimited file: header row, six metadata columns
            (FID IID PAT MAT SEX PHENOTYPE) then one column per variant with
            0/1/2/NA dosages.

    Returns:
        Tuple of (GenotypeMatrix keyed by IID, metadata DataFrame)
    """
    filepath = Path(filepath)
    # NA tokens stay literal here so padded short rows are the only NaN cells
    df = _read_whitespace_table(filepath, header=0, keep_default_na=False,
                                na_values=[], dtype=str)
    if df.shape[1] < len(RAW_METADATA_COLUMNS) + 1:
        raise InputFormatError(
            f"Raw dosage file needs {len(RAW_METADATA_COLUMNS)} metadata columns plus at least one variant, "
            f"got {df.shape[1]} columns",
            path=filepath, line=1,
        )
    _check_short_rows(df, filepath, first_data_line=2)
    meta_cols = list(df.columns[:len(RAW_METADATA_COLUMNS)])
    if [c.upper() for c in meta_cols[:2]] != ['FID', 'IID']:
        warnings.warn(
            f"{filepath}: unexpected metadata header {meta_cols}; treating first six columns as metadata"
        )
    metadata = df.iloc[:, :len(RAW_METADATA_COLUMNS)].copy()
    metadata.columns = RAW_METADATA_COLUMNS
    metadata['FID'] = metadata['FID'].astype(str)
    metadata['IID'] = metadata['IID'].astype(str)

    dosage_df = df.iloc[:, len(RAW_METADATA_COLUMNS):]
    dosage_df = dosage_df.mask(dosage_df.isin(NA_VALUES))
    try:
        dosages = dosage_df.apply(pd.to_numeric, errors='raise').to_numpy(dtype=np.float64)
    except (ValueError, TypeError) as exc:
        raise InputFormatError(f"Non-numeric dosage value: {exc}", path=filepath) from exc

    observed = dosages[~np.isnan(dosages)]
    bad = ~np.isin(observed, [0.0, 1.0, 2.0, -9.0])
    if bad.any():
        warnings.warn(
            f"{filepath}: {int(bad.sum())} dosage values outside {{0, 1, 2}}; kept as-is"
        )

    geno = GenotypeMatrix(dosages,
                          sample_ids=metadata['IID'].tolist(),
                          column_ids=[str(c) for c in dosage_df.columns])
    return geno, metadata


def load_position_map(filepath: Union[str, Path]) -> VariantMap:
    """Load a PLINK .map file

    Args:
        filepath: Whitespace-delimited [chromosome, variantId, geneticPosition,
            basePairPosition], no header

    Returns:
        VariantMap
    """
    filepath = Path(filepath)
    df = _read_whitespace_table(filepath, header=None, dtype=str)
    if df.shape[1] != len(MAP_COLUMNS):
        raise InputFormatError(
            f"Position map must have {len(MAP_COLUMNS)} columns, got {df.shape[1]}",
            path=filepath, line=1,
        )
    _check_short_rows(df, filepath, first_data_line=1)
    df.columns = MAP_COLUMNS
    pos = pd.to_numeric(df['POS'], errors='coerce')
    if pos.isna().any():
        bad_line = int(np.flatnonzero(pos.isna().to_numpy())[0]) + 1
        raise InputFormatError(
            f"Invalid base-pair position '{df['POS'].iloc[bad_line - 1]}'",
            path=filepath, line=bad_line,
        )
    df['POS'] = pos.astype(np.int64)
    df['CM'] = pd.to_numeric(df['CM'], errors='coerce')
    return VariantMap(df[['SNP', 'CHROM', 'POS', 'CM']], metadata={'source': str(filepath)})


def load_first_pass_pvalues(filepath: Union[str, Path],
                            id_column: str = 'SNP',
                            pvalue_column: str = 'P') -> pd.Series:
    """Load variant p-values from a first-pass association file

    Args:
        filepath: Whitespace-delimited table with a header containing at least
            the variant id and p-value columns (PLINK .assoc/.qassoc/.linear)
        id_column: Variant id column name
        pvalue_column: P-value column name

    Returns:
        Series of p-values indexed by variant id (file order)
    """
    filepath = Path(filepath)
    df = _read_whitespace_table(filepath, header=0, na_values=NA_VALUES, keep_default_na=True)

    # PLINK --linear writes one row per term; keep the additive test
    if 'TEST' in df.columns:
        df = df[df['TEST'].astype(str).str.upper() == 'ADD']

    col_lookup = {c.upper(): c for c in df.columns}
    resolved = {}
    for wanted in (id_column, pvalue_column):
        if wanted in df.columns:
            resolved[wanted] = wanted
        elif wanted.upper() in col_lookup:
            resolved[wanted] = col_lookup[wanted.upper()]
        else:
            raise InputFormatError(
                f"Missing required column '{wanted}' (found {list(df.columns)})",
                path=filepath, line=1,
            )

    pvalues = pd.to_numeric(df[resolved[pvalue_column]], errors='coerce')
    series = pd.Series(pvalues.to_numpy(dtype=np.float64),
                       index=df[resolved[id_column]].astype(str).to_numpy(),
                       name='P')
    if series.index.duplicated().any():
        n_dups = int(series.index.duplicated().sum())
        warnings.warn(f"{filepath}: {n_dups} duplicated variant ids; keeping first occurrence")
        series = series[~series.index.duplicated(keep='first')]
    return series


def load_metabolite_file(filepath: Union[str, Path],
                         id_column: str = 'ID',
                         metabolite_columns: Optional[List[str]] = None) -> MetaboliteMatrix:
    """Load raw metabolite measurements

    Args:
        filepath: CSV/TSV/whitespace table, one row per sample
        id_column: Name of the sample id column
        metabolite_columns: Metabolites to keep (default: every numeric column)

    Returns:
        MetaboliteMatrix keyed by sample id
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Metabolite file not found: {filepath}")
    file_format = detect_file_format(filepath)
    sep = {'csv': ',', 'tsv': '\t', 'whitespace': r'\s+'}[file_format]
    try:
        df = pd.read_csv(filepath, sep=sep, na_values=NA_VALUES, keep_default_na=True)
    except pd.errors.ParserError as exc:
        raise InputFormatError(str(exc).strip(), path=filepath) from exc

    if id_column not in df.columns:
        possible_id_cols = ['ID', 'id', 'IID', 'sample', 'Sample', 'SampleID', 'sample_id']
        present = [c for c in df.columns if c in possible_id_cols]
        if present:
            detected = present[0]
        else:
            detected = df.columns[0]
            warnings.warn(
                "No recognized ID column found; using first column '{}' as ID.".format(detected)
            )
        df = df.rename(columns={detected: id_column})

    df[id_column] = df[id_column].astype(str)
    if df[id_column].duplicated().any():
        dups = df.loc[df[id_column].duplicated(), id_column].tolist()
        raise AlignmentError(f"{filepath}: duplicated sample ids {dups[:5]}")

    if metabolite_columns is None:
        candidates = [c for c in df.columns if c != id_column]
        metabolite_columns = []
        for col in candidates:
            converted = pd.to_numeric(df[col], errors='coerce')
            if converted.notna().any() or df[col].isna().all():
                metabolite_columns.append(col)
            else:
                warnings.warn(f"{filepath}: skipping non-numeric column '{col}'")
    else:
        missing = [c for c in metabolite_columns if c not in df.columns]
        if missing:
            raise InputFormatError(f"Metabolite columns not found: {missing}", path=filepath, line=1)

    values = df[metabolite_columns].apply(pd.to_numeric, errors='coerce')
    return MetaboliteMatrix(values.to_numpy(dtype=np.float64),
                            sample_ids=df[id_column].tolist(),
                            column_ids=[str(c) for c in metabolite_columns])


def align_to_samples(samples: SampleTable,
                     metabolites: MetaboliteMatrix,
                     genotypes: GenotypeMatrix) -> Tuple[MetaboliteMatrix, GenotypeMatrix, Dict[str, int]]:
    """Reorder both matrices to the family file sample order

    Alignment is by identifier. Every input must carry exactly the same
    sample set; any difference is an AlignmentError.
    """
    reference = samples.sample_ids
    ref_set = set(reference)
    summary = {
        'n_family': len(reference),
        'n_metabolite_samples': metabolites.n_samples,
        'n_genotype_samples': genotypes.n_samples,
    }
    for label, ids in (('metabolite', metabolites.sample_ids), ('genotype', genotypes.sample_ids)):
        other = set(ids)
        if other != ref_set:
            missing = sorted(ref_set - other)
            extra = sorted(other - ref_set)
            raise AlignmentError(
                f"Sample identifiers in {label} data differ from family file: "
                f"{len(missing)} missing {missing[:5]}, {len(extra)} unexpected {extra[:5]}"
            )
    return metabolites.reorder_samples(reference), genotypes.reorder_samples(reference), summary
