"""
Exception types raised by the mQTL pipeline

Structural problems (bad files, misaligned samples, bad thresholds) are fatal.
Per-pair problems inside the association scan are recorded on the
AssociationRecord instead of being raised.
"""

from typing import Optional, Union
from pathlib import Path


class MQTLError(ValueError):
    """Base class for all mqtl errors"""


class InputFormatError(MQTLError):
    """Malformed input file (wrong column count, unparsable values)"""

    def __init__(self, message: str,
                 path: Optional[Union[str, Path]] = None,
                 line: Optional[int] = None):
        self.path = str(path) if path is not None else None
        self.line = line
        location = ""
        if self.path is not None:
            location = self.path
            if line is not None:
                location += f":{line}"
            location += ": "
        super().__init__(f"{location}{message}")


class AlignmentError(MQTLError):
    """Sample identifiers differ across inputs"""


class DegenerateColumnError(MQTLError):
    """Column with zero variance (or too few observations to have one)"""

    def __init__(self, column_id: str, message: Optional[str] = None):
        self.column_id = column_id
        super().__init__(message or f"Column '{column_id}' has zero variance")


class NumericError(MQTLError):
    """Regression fit is singular or otherwise undefined

    The scan never raises this; it records AssociationStatus.NUMERIC_ERROR,
    whose value is this class name, on the failed pair.
    """


class MissingVariantMappingError(MQTLError):
    """Variant identifier absent from the position map"""

    def __init__(self, variant_id: str, metabolite_id: Optional[str] = None):
        self.variant_id = variant_id
        self.metabolite_id = metabolite_id
        msg = f"Variant '{variant_id}' not found in position map"
        if metabolite_id is not None:
            msg += f" (metabolite '{metabolite_id}')"
        super().__init__(msg)


class InvalidThresholdError(MQTLError):
    """Bonferroni parameters that cannot produce a threshold"""


class AssociationCancelledError(RuntimeError):
    """Pairwise scan aborted through its cancel event"""

    def __init__(self, completed_sweeps: int, total_sweeps: int):
        self.completed_sweeps = completed_sweeps
        self.total_sweeps = total_sweeps
        super().__init__(
            f"Association scan cancelled after {completed_sweeps}/{total_sweeps} metabolite sweeps"
        )
