"""
End-to-end mQTL pipeline
"""

from .mqtl import MQTLPipeline, OUTPUT_CHOICES

__all__ = ['MQTLPipeline', 'OUTPUT_CHOICES']
