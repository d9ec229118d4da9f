"""
Variant selection and pairwise association testing
"""

from .selector import MQTL_SelectVariants, select_variants
from .pairwise import MQTL_PairwiseScan, PairwiseScanResult, iter_metabolite_sweeps

__all__ = ['MQTL_SelectVariants', 'select_variants', 'MQTL_PairwiseScan',
           'PairwiseScanResult', 'iter_metabolite_sweeps']
