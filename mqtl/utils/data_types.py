"""
Core data structures for mqtl package
"""

from dataclasses import dataclass
from enum import Enum
import numpy as np
import pandas as pd
from typing import Optional, Union, Tuple, Dict, Any, List, Sequence, Iterable
from pathlib import Path

from .errors import AlignmentError


@dataclass(frozen=True)
class SampleRecord:
    """One row of a PLINK family file"""

    family_id: str
    sample_id: str
    paternal_id: str = "0"
    maternal_id: str = "0"
    sex: int = 0
    phenotype: Optional[float] = None


class SampleTable:
    """Ordered collection of SampleRecord rows

    The order of the table defines the sample order every matrix is aligned to.
    """

    def __init__(self, records: Iterable[SampleRecord]):
        self.records: List[SampleRecord] = list(records)
        ids = [rec.sample_id for rec in self.records]
        seen = set()
        dups = []
        for sid in ids:
            if sid in seen:
                dups.append(sid)
            seen.add(sid)
        if dups:
            raise AlignmentError(f"Duplicate sample identifiers in family table: {dups[:5]}")
        self._index = {sid: idx for idx, sid in enumerate(ids)}

    @property
    def sample_ids(self) -> List[str]:
        """Sample identifiers in table order"""
        return [rec.sample_id for rec in self.records]

    @property
    def family_ids(self) -> List[str]:
        return [rec.family_id for rec in self.records]

    @property
    def n_samples(self) -> int:
        return len(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __getitem__(self, sample_id: str) -> SampleRecord:
        return self.records[self._index[sample_id]]

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to pandas DataFrame with PLINK column names"""
        return pd.DataFrame({
            'FID': self.family_ids,
            'IID': self.sample_ids,
            'PAT': [rec.paternal_id for rec in self.records],
            'MAT': [rec.maternal_id for rec in self.records],
            'SEX': [rec.sex for rec in self.records],
            'PHENO': [rec.phenotype for rec in self.records],
        })


def _build_index(ids: Sequence[str], kind: str) -> Dict[str, int]:
    index: Dict[str, int] = {}
    for idx, name in enumerate(ids):
        if name in index:
            raise ValueError(f"Duplicate {kind} identifier: {name}")
        index[name] = idx
    return index


class _LabelledMatrix:
    """Immutable samples x columns float matrix with NaN as missing

    The identifier -> column index mapping is built once at construction and
    the underlying array is flagged read-only, so every transformation has to
    produce a new object.
    """

    _column_kind = "column"

    def __init__(self, data: Union[np.ndarray, pd.DataFrame],
                 sample_ids: Optional[Sequence[str]] = None,
                 column_ids: Optional[Sequence[str]] = None):
        if isinstance(data, pd.DataFrame):
            if sample_ids is None:
                sample_ids = [str(i) for i in data.index]
            if column_ids is None:
                column_ids = [str(c) for c in data.columns]
            values = data.to_numpy(dtype=np.float64, copy=True)
        elif isinstance(data, np.ndarray):
            values = np.array(data, dtype=np.float64, copy=True)
        else:
            raise ValueError("Data must be numpy array or DataFrame")

        if values.ndim != 2:
            raise ValueError(f"{type(self).__name__} must be 2D, got shape {values.shape}")
        n_rows, n_cols = values.shape
        if sample_ids is None:
            sample_ids = [f"S{i}" for i in range(n_rows)]
        if column_ids is None:
            column_ids = [f"{self._column_kind}{j}" for j in range(n_cols)]
        if len(sample_ids) != n_rows:
            raise ValueError(f"Got {len(sample_ids)} sample ids for {n_rows} rows")
        if len(column_ids) != n_cols:
            raise ValueError(f"Got {len(column_ids)} {self._column_kind} ids for {n_cols} columns")

        values.setflags(write=False)
        self._data = values
        self._sample_ids: Tuple[str, ...] = tuple(str(s) for s in sample_ids)
        self._column_ids: Tuple[str, ...] = tuple(str(c) for c in column_ids)
        _build_index(self._sample_ids, "sample")
        self._column_index = _build_index(self._column_ids, self._column_kind)

    @property
    def values(self) -> np.ndarray:
        """Read-only view of the underlying array"""
        return self._data

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    @property
    def n_samples(self) -> int:
        return self._data.shape[0]

    @property
    def sample_ids(self) -> Tuple[str, ...]:
        return self._sample_ids

    @property
    def missing_mask(self) -> np.ndarray:
        return np.isnan(self._data)

    @property
    def observed_mask(self) -> np.ndarray:
        return ~np.isnan(self._data)

    def column_position(self, column_id: str) -> int:
        return self._column_index[column_id]

    def column(self, column_id: str) -> np.ndarray:
        """Values for a single column, looked up through the fixed schema"""
        return self._data[:, self._column_index[column_id]]

    def _new(self, values: np.ndarray, sample_ids: Sequence[str], column_ids: Sequence[str]):
        return type(self)(values, sample_ids=sample_ids, column_ids=column_ids)

    def select_columns(self, column_ids: Sequence[str]):
        """New matrix restricted to (and ordered by) column_ids"""
        missing = [c for c in column_ids if c not in self._column_index]
        if missing:
            raise KeyError(f"Unknown {self._column_kind} ids: {missing[:5]}")
        idx = [self._column_index[c] for c in column_ids]
        return self._new(self._data[:, idx], self._sample_ids, list(column_ids))

    def drop_columns(self, column_ids: Iterable[str]):
        drop = set(column_ids)
        keep = [c for c in self._column_ids if c not in drop]
        return self.select_columns(keep)

    def with_values(self, values: np.ndarray):
        """New matrix with the same labels and replacement values"""
        if values.shape != self._data.shape:
            raise ValueError(f"Replacement values have shape {values.shape}, expected {self._data.shape}")
        return self._new(values, self._sample_ids, self._column_ids)

    def reorder_samples(self, sample_ids: Sequence[str]):
        """Reorder rows to match sample_ids (same identifier set required)"""
        sample_ids = [str(s) for s in sample_ids]
        if set(sample_ids) != set(self._sample_ids) or len(sample_ids) != len(self._sample_ids):
            own = set(self._sample_ids)
            other = set(sample_ids)
            raise AlignmentError(
                f"{type(self).__name__} sample set differs from reference: "
                f"{len(own - other)} extra, {len(other - own)} missing"
            )
        pos = {sid: i for i, sid in enumerate(self._sample_ids)}
        order = [pos[sid] for sid in sample_ids]
        return self._new(self._data[order, :], sample_ids, self._column_ids)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to pandas DataFrame indexed by sample id"""
        return pd.DataFrame(self._data, index=list(self._sample_ids),
                            columns=list(self._column_ids))


class MetaboliteMatrix(_LabelledMatrix):
    """Samples x metabolites measurement matrix (NaN = missing)"""

    _column_kind = "metabolite"

    @property
    def metabolite_ids(self) -> Tuple[str, ...]:
        return self._column_ids

    @property
    def n_metabolites(self) -> int:
        return self._data.shape[1]

    def non_missing_fraction(self) -> np.ndarray:
        """Per-column fraction of observed values"""
        if self.n_samples == 0:
            return np.zeros(self.n_metabolites)
        return self.observed_mask.sum(axis=0) / float(self.n_samples)


class GenotypeMatrix(_LabelledMatrix):
    """Samples x variants allele dosage matrix

    Dosages are 0/1/2 with NaN marking missing calls. The rMVP-style -9
    sentinel is accepted on input and converted to NaN.
    """

    _column_kind = "variant"

    def __init__(self, data: Union[np.ndarray, pd.DataFrame],
                 sample_ids: Optional[Sequence[str]] = None,
                 column_ids: Optional[Sequence[str]] = None):
        super().__init__(data, sample_ids=sample_ids, column_ids=column_ids)
        if np.any(self._data == -9):
            values = self._data.copy()
            values[values == -9] = np.nan
            values.setflags(write=False)
            self._data = values

    @property
    def variant_ids(self) -> Tuple[str, ...]:
        return self._column_ids

    @property
    def n_variants(self) -> int:
        return self._data.shape[1]

    def select_variants(self, variant_ids: Sequence[str]) -> "GenotypeMatrix":
        return self.select_columns(variant_ids)


class VariantMap:
    """Variant position map

    Expected columns: [SNP, CHROM, POS], optionally CM (genetic position).
    """

    def __init__(self, data: Union[pd.DataFrame, str, Path], metadata: Optional[Dict[str, Any]] = None):
        if isinstance(data, (str, Path)):
            self.data = pd.read_csv(data)
        elif isinstance(data, pd.DataFrame):
            self.data = data.copy()
        else:
            raise ValueError("Data must be DataFrame or file path")

        self.metadata: Dict[str, Any] = dict(metadata) if metadata else {}

        required_cols = ['SNP', 'CHROM', 'POS']
        for col in required_cols:
            if col not in self.data.columns:
                raise ValueError(f"Missing required column: {col}")

        self.data['SNP'] = self.data['SNP'].astype(str)
        self.data['CHROM'] = self.data['CHROM'].astype(str)
        # First occurrence wins for duplicated ids
        first = ~self.data['SNP'].duplicated(keep='first')
        self._lookup: Dict[str, Tuple[str, int]] = {
            snp: (chrom, int(pos))
            for snp, chrom, pos in zip(self.data.loc[first, 'SNP'],
                                       self.data.loc[first, 'CHROM'],
                                       self.data.loc[first, 'POS'])
        }

    @property
    def snp_ids(self) -> pd.Series:
        """SNP identifiers"""
        return self.data['SNP']

    @property
    def chromosomes(self) -> pd.Series:
        """Chromosome labels"""
        return self.data['CHROM']

    @property
    def positions(self) -> pd.Series:
        """Physical positions"""
        return self.data['POS']

    @property
    def n_markers(self) -> int:
        """Number of markers"""
        return len(self.data)

    def __contains__(self, variant_id: str) -> bool:
        return variant_id in self._lookup

    def lookup(self, variant_id: str) -> Tuple[str, int]:
        """(chromosome, base-pair position) for variant_id; KeyError if absent"""
        return self._lookup[variant_id]

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to pandas DataFrame"""
        return self.data.copy()


class AssociationStatus(str, Enum):
    """Outcome of a single (variant, metabolite) regression"""

    OK = "Ok"
    INSUFFICIENT_DATA = "InsufficientData"
    NUMERIC_ERROR = "NumericError"


@dataclass(frozen=True)
class AssociationRecord:
    """Result of one (variant, metabolite) regression

    pvalue, effect and se are None whenever status is not OK.
    """

    variant_id: str
    metabolite_id: str
    pvalue: Optional[float]
    status: AssociationStatus = AssociationStatus.OK
    effect: Optional[float] = None
    se: Optional[float] = None
    n_obs: int = 0

    @property
    def is_ok(self) -> bool:
        return self.status is AssociationStatus.OK

    def to_row(self) -> Dict[str, Any]:
        return {
            'variantId': self.variant_id,
            'metaboliteId': self.metabolite_id,
            'pvalue': self.pvalue,
            'effect': self.effect,
            'se': self.se,
            'n_obs': self.n_obs,
            'status': self.status.value,
        }


def records_to_dataframe(records: Iterable[AssociationRecord]) -> pd.DataFrame:
    """Tabulate association records"""
    rows = [rec.to_row() for rec in records]
    columns = ['variantId', 'metaboliteId', 'pvalue', 'effect', 'se', 'n_obs', 'status']
    return pd.DataFrame(rows, columns=columns)
