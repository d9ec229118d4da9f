"""
Result filtering, position joining and run diagnostics
"""

from .filtering import (
    filter_records, normalize_variant_id, join_variant_positions,
    RunDiagnostics, format_diagnostics,
)

__all__ = ['filter_records', 'normalize_variant_id', 'join_variant_positions',
           'RunDiagnostics', 'format_diagnostics']
