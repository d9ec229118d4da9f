"""
mqtl: metabolite QTL mapping

Cleans a metabolite matrix, selects variants that pass a Bonferroni
threshold in a first-pass association test, regresses every metabolite on
every selected variant dosage in parallel, and prepares significant pairs
for Manhattan plotting.
"""

__version__ = "0.1.0"

from .utils.config import MQTLConfig
from .preprocessing.metabolites import MQTL_Preprocess
from .association.selector import MQTL_SelectVariants
from .association.pairwise import MQTL_PairwiseScan
from .visualization.manhattan import MQTL_Report
from .pipelines.mqtl import MQTLPipeline

__all__ = [
    'MQTLConfig',
    'MQTL_Preprocess',
    'MQTL_SelectVariants',
    'MQTL_PairwiseScan',
    'MQTL_Report',
    'MQTLPipeline',
]
