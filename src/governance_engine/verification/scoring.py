"""
Compliance scoring.

The weighting and warning penalty are policy, not law: both are driven by
RunConfig. The blocking gate is not configurable.
"""

from typing import Dict, Mapping, Optional

from ..main import ComplianceRecord, Severity, VerificationResult


def compute_score(
    results: Mapping[str, VerificationResult],
    weights: Mapping[str, float],
    warning_penalty: float,
) -> float:
    """
    Weighted fraction of clean governors minus a per-warning penalty.

    A governor is clean when it finished OK with no error or blocking
    findings; timeouts and crashes never count as clean. The result is
    clamped to [0, 1]. Zero total weight scores 0.
    """
    total_weight = sum(weights.get(name, 1.0) for name in results)
    if total_weight <= 0:
        return 0.0

    clean_weight = sum(
        weights.get(name, 1.0) for name, result in results.items() if result.is_clean
    )
    warnings = sum(result.count(Severity.WARNING) for result in results.values())

    score = clean_weight / total_weight - warning_penalty * warnings
    return max(0.0, min(1.0, score))


def build_compliance_record(
    artifact_fingerprint: str,
    results: Mapping[str, VerificationResult],
    weights: Mapping[str, float],
    threshold: float,
    warning_penalty: float,
) -> ComplianceRecord:
    """Score the results and apply the absolute blocking gate"""
    score = compute_score(results, weights, warning_penalty)
    has_blocking = any(result.has_blocking for result in results.values())

    return ComplianceRecord(
        artifact_fingerprint=artifact_fingerprint,
        per_governor_results=dict(results),
        score=score,
        passed=(score >= threshold) and not has_blocking,
        threshold=threshold,
    )


def effective_weights(
    declared: Mapping[str, float],
    overrides: Optional[Mapping[str, float]] = None,
) -> Dict[str, float]:
    """Declared governor weights with configured overrides applied"""
    weights = dict(declared)
    for name, weight in (overrides or {}).items():
        if name in weights:
            weights[name] = weight
    return weights
