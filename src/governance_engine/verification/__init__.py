"""
Verification System

Concurrent governor execution, result aggregation and compliance scoring.
"""

from .aggregator import ResultAggregator, verify_artifact
from .scoring import build_compliance_record, compute_score, effective_weights

__all__ = [
    "ResultAggregator",
    "verify_artifact",
    "build_compliance_record",
    "compute_score",
    "effective_weights",
]
