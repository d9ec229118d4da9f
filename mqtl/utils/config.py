"""
Run configuration for the mQTL pipeline
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

from .errors import InvalidThresholdError


@dataclass
class MQTLConfig:
    """Tunable thresholds for one pipeline run

    Attributes:
        outlier_sd: Values further than outlier_sd standard deviations from the
            column mean are masked after normalization.
        min_non_missing_fraction: Metabolite columns observed in fewer than this
            fraction of samples (after masking) are dropped.
        bonferroni_alpha: Family-wise alpha for variant selection.
        total_variant_count: Bonferroni denominator. None means the number of
            variants in the first-pass association file.
        pair_p_threshold: Cutoff applied to (variant, metabolite) p-values.
        annotation_threshold: -log10(p) above which Manhattan points are labelled.
            None disables labels.
        n_workers: Worker threads for the pairwise scan (None = cpu count).
        min_complete_cases: Minimum complete cases per regression.
        variant_id_separator: Separator before the allele suffix in dosage
            column names (PLINK --recodeA writes rs123_A).
    """

    outlier_sd: float = 3.0
    min_non_missing_fraction: float = 0.5
    bonferroni_alpha: float = 0.05
    total_variant_count: Optional[int] = None
    pair_p_threshold: float = 0.05
    annotation_threshold: Optional[float] = None
    n_workers: Optional[int] = None
    min_complete_cases: int = 3
    variant_id_separator: str = "_"

    def validate(self) -> "MQTLConfig":
        if self.outlier_sd <= 0:
            raise ValueError(f"outlier_sd must be positive, got {self.outlier_sd}")
        if not (0.0 <= self.min_non_missing_fraction <= 1.0):
            raise ValueError(
                f"min_non_missing_fraction must be within [0, 1], got {self.min_non_missing_fraction}"
            )
        if not (0.0 < self.bonferroni_alpha <= 1.0):
            raise InvalidThresholdError(f"bonferroni_alpha must be in (0, 1], got {self.bonferroni_alpha}")
        if self.total_variant_count is not None and self.total_variant_count <= 0:
            raise InvalidThresholdError(
                f"total_variant_count must be positive, got {self.total_variant_count}"
            )
        if not (0.0 < self.pair_p_threshold <= 1.0):
            raise ValueError(f"pair_p_threshold must be in (0, 1], got {self.pair_p_threshold}")
        if self.n_workers is not None and self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {self.n_workers}")
        if self.min_complete_cases < 3:
            raise ValueError("min_complete_cases must be at least 3 (two fitted parameters plus one df)")
        if not self.variant_id_separator:
            raise ValueError("variant_id_separator must be a non-empty string")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
