"""
Significance filtering of association records and joining with variant
positions
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Dict, Mapping, Optional, Any

import pandas as pd

from ..utils.data_types import AssociationRecord, AssociationStatus, VariantMap
from ..utils.errors import MissingVariantMappingError

JOINED_COLUMNS = ['variantId', 'metaboliteId', 'pvalue', 'chromosome', 'position']


def filter_records(records: Iterable[AssociationRecord],
                   p_threshold: float = 0.05) -> List[AssociationRecord]:
    """Keep successfully fitted records with p < p_threshold"""
    return [
        rec for rec in records
        if rec.status is AssociationStatus.OK
        and rec.pvalue is not None
        and rec.pvalue < p_threshold
    ]


def normalize_variant_id(variant_id: str, separator: str = "_") -> str:
    """Strip an allele suffix: everything from the first separator on

    >>> normalize_variant_id("rs123_A")
    'rs123'
    """
    return str(variant_id).split(separator, 1)[0]


@dataclass
class JoinDiagnostics:
    n_records: int = 0
    n_joined: int = 0
    missing: List[MissingVariantMappingError] = field(default_factory=list)

    @property
    def n_missing(self) -> int:
        return len(self.missing)

    @property
    def missing_variant_ids(self) -> List[str]:
        seen = []
        for err in self.missing:
            if err.variant_id not in seen:
                seen.append(err.variant_id)
        return seen


@dataclass
class JoinResult:
    table: pd.DataFrame
    diagnostics: JoinDiagnostics


def join_variant_positions(records: Iterable[AssociationRecord],
                           variant_map: VariantMap,
                           separator: str = "_",
                           id_lookup: Optional[Mapping[str, str]] = None) -> JoinResult:
    """Attach chromosome/position to significant records

    id_lookup maps a record's dosage column id to its map id; ids it does not
    cover are normalized at the first separator. Records whose map id is
    absent from the map are excluded and kept in the diagnostics as MissingVariantMappingError instances.

    Returns:
        JoinResult with columns [variantId, metaboliteId, pvalue, chromosome, position]
    """
    rows = []
    diagnostics = JoinDiagnostics()
    for rec in records:
        diagnostics.n_records += 1
        variant_id = None
        if id_lookup is not None:
            variant_id = id_lookup.get(rec.variant_id)
        if variant_id is None:
            variant_id = normalize_variant_id(rec.variant_id, separator)
        try:
            chrom, pos = variant_map.lookup(variant_id)
        except KeyError:
            diagnostics.missing.append(MissingVariantMappingError(variant_id, rec.metabolite_id))
            continue
        rows.append((variant_id, rec.metabolite_id, rec.pvalue, chrom, pos))
    diagnostics.n_joined = len(rows)
    table = pd.DataFrame(rows, columns=JOINED_COLUMNS)
    table['position'] = table['position'].astype('int64')
    return JoinResult(table=table, diagnostics=diagnostics)


@dataclass
class RunDiagnostics:
    """End-of-run summary across preprocessing, scan, filter and join"""

    status_counts: Dict[str, int] = field(default_factory=dict)
    n_pairs: int = 0
    n_significant: int = 0
    n_joined: int = 0
    n_missing_mapping: int = 0
    missing_variant_ids: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_run(cls, status_counts: Dict[str, int],
                 n_significant: int,
                 join: Optional[JoinDiagnostics] = None,
                 **extra: Any) -> "RunDiagnostics":
        return cls(
            status_counts=dict(status_counts),
            n_pairs=int(sum(status_counts.values())),
            n_significant=n_significant,
            n_joined=join.n_joined if join is not None else 0,
            n_missing_mapping=join.n_missing if join is not None else 0,
            missing_variant_ids=join.missing_variant_ids if join is not None else [],
            extra=dict(extra),
        )

    def to_dataframe(self) -> pd.DataFrame:
        rows = [('pairs_tested', self.n_pairs)]
        rows += [(f'status_{name}', count) for name, count in self.status_counts.items()]
        rows += [
            ('significant_pairs', self.n_significant),
            ('joined_rows', self.n_joined),
            ('missing_variant_mapping', self.n_missing_mapping),
        ]
        rows += [(key, value) for key, value in self.extra.items()]
        return pd.DataFrame(rows, columns=['metric', 'value'])


def format_diagnostics(diagnostics: RunDiagnostics) -> str:
    lines = ["Run diagnostics:", f"   Pairs tested: {diagnostics.n_pairs}"]
    for name, count in diagnostics.status_counts.items():
        lines.append(f"   {name}: {count}")
    lines.append(f"   Significant pairs: {diagnostics.n_significant}")
    lines.append(f"   Joined with positions: {diagnostics.n_joined}")
    lines.append(f"   Missing variant mapping: {diagnostics.n_missing_mapping}")
    if diagnostics.missing_variant_ids:
        preview = ', '.join(diagnostics.missing_variant_ids[:5])
        if len(diagnostics.missing_variant_ids) > 5:
            preview += ', ...'
        lines.append(f"   Unmapped variants: {preview}")
    return "\n".join(lines)
