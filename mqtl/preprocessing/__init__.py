"""
Metabolite preprocessing
"""

from .metabolites import MQTL_Preprocess, normalize, mask_outliers, drop_sparse_columns

__all__ = ['MQTL_Preprocess', 'normalize', 'mask_outliers', 'drop_sparse_columns']
