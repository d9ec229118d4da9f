"""
Manhattan table preparation and plotting
"""

from .manhattan import MQTL_Report, prepare_manhattan_table, annotation_mask

__all__ = ['MQTL_Report', 'prepare_manhattan_table', 'annotation_mask']
