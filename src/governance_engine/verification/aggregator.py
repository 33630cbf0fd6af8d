"""
Verification Result Aggregator

Runs every registered governor against one artifact concurrently and merges
the outcomes into a single ComplianceRecord.

A slow or broken governor never blocks the others: each runs as its own task
with its own timeout, and the whole pass is bounded by a global ceiling of
the largest governor timeout plus a fixed overhead. Failures are absorbed
here and reported as non-passing results (fail-closed).
"""

import asyncio
import logging
import time
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from ..cache import VerificationCache
from ..errors import GovernorCrash, GovernorTimeout
from ..governors.base import CallableGovernor, Governor
from ..main import (
    Artifact,
    ComplianceRecord,
    GovernorStatus,
    Severity,
    VerificationResult,
)
from .scoring import build_compliance_record, effective_weights

logger = logging.getLogger(__name__)


class ResultAggregator:
    """
    Owns the governor registry and the verification pass.

    The aggregator never branches on governor type; it only reads each
    governor's spec (name, weight, blocking_rule_ids, timeout_ms).
    """

    def __init__(
        self,
        governors: Optional[Iterable[Governor]] = None,
        cache: Optional[VerificationCache] = None,
        per_governor_timeout_ms: int = 10000,
        overhead_ms: int = 500,
    ):
        self._governors: Dict[str, Governor] = {}
        self.cache = cache
        self.per_governor_timeout_ms = per_governor_timeout_ms
        self.overhead_ms = overhead_ms

        self._stats = {
            "passes": 0,
            "governor_runs": 0,
            "cache_hits": 0,
            "timeouts": 0,
            "crashes": 0,
        }

        for governor in governors or []:
            self.register(governor)

    # =========================================================================
    # Registry
    # =========================================================================

    def register(self, governor: Governor) -> None:
        """Register a governor; names must be unique"""
        if governor.name in self._governors:
            raise ValueError(f"Governor already registered: {governor.name}")
        self._governors[governor.name] = governor
        logger.info(f"Registered governor: {governor.name} (weight={governor.weight})")

    def register_callable(
        self,
        name: str,
        verify: Callable[[Artifact], object],
        weight: float = 1.0,
        blocking_rule_ids: Iterable[str] = (),
        timeout_ms: Optional[int] = None,
    ) -> Governor:
        """Register an external plugin given as a bare verify callable"""
        governor = CallableGovernor(
            name=name,
            verify=verify,
            weight=weight,
            blocking_rule_ids=blocking_rule_ids,
            timeout_ms=timeout_ms,
        )
        self.register(governor)
        return governor

    def unregister(self, name: str) -> None:
        self._governors.pop(name, None)

    @property
    def governors(self) -> List[Governor]:
        return list(self._governors.values())

    def weights(self, overrides: Optional[Mapping[str, float]] = None) -> Dict[str, float]:
        declared = {name: g.weight for name, g in self._governors.items()}
        return effective_weights(declared, overrides)

    def timeout_for(self, governor: Governor, default_ms: Optional[int] = None) -> float:
        """Per-governor timeout in seconds"""
        timeout_ms = governor.spec.timeout_ms or default_ms or self.per_governor_timeout_ms
        return timeout_ms / 1000

    def global_timeout(
        self,
        default_ms: Optional[int] = None,
        overhead_ms: Optional[int] = None,
    ) -> float:
        """Ceiling for one whole pass, in seconds"""
        overhead = (self.overhead_ms if overhead_ms is None else overhead_ms) / 1000
        if not self._governors:
            return overhead
        longest = max(self.timeout_for(g, default_ms) for g in self._governors.values())
        return longest + overhead

    # =========================================================================
    # Verification pass
    # =========================================================================

    async def aggregate(
        self,
        artifact: Artifact,
        threshold: float = 0.9,
        warning_penalty: float = 0.05,
        weights: Optional[Mapping[str, float]] = None,
        per_governor_timeout_ms: Optional[int] = None,
        overhead_ms: Optional[int] = None,
    ) -> ComplianceRecord:
        """
        Verify an artifact with every governor and build its ComplianceRecord.

        Cancelling this coroutine cancels every in-flight governor task;
        cancelled tasks never write to the cache.
        """
        governors = list(self._governors.values())
        ceiling = self.global_timeout(per_governor_timeout_ms, overhead_ms)
        self._stats["passes"] += 1

        if not governors:
            logger.warning("No governors registered - artifact cannot pass")

        results: Dict[str, VerificationResult] = {}
        tasks: Dict[asyncio.Task, Governor] = {}

        for governor in governors:
            cached = self.cache.lookup(governor.name, artifact.fingerprint) if self.cache else None
            if cached is not None:
                self._stats["cache_hits"] += 1
                results[governor.name] = cached
                continue
            task = asyncio.create_task(
                self._run_governor(
                    governor, artifact, self.timeout_for(governor, per_governor_timeout_ms)
                ),
                name=f"governor-{governor.name}",
            )
            tasks[task] = governor

        try:
            if tasks:
                done, pending = await asyncio.wait(tasks.keys(), timeout=ceiling)
                for task in pending:
                    task.cancel()
                if pending:
                    await asyncio.gather(*pending, return_exceptions=True)

                for task, governor in tasks.items():
                    if task in done:
                        results[governor.name] = task.result()
                    else:
                        self._stats["timeouts"] += 1
                        logger.warning(
                            f"Governor {governor.name} exceeded the aggregate ceiling "
                            f"({ceiling:.2f}s)"
                        )
                        results[governor.name] = self._failed_result(
                            governor,
                            artifact,
                            GovernorStatus.TIMEOUT,
                            "Aggregate verification ceiling exceeded",
                            int(ceiling * 1000),
                        )
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        # Registration order, independent of completion order
        ordered = {g.name: results[g.name] for g in governors}

        record = build_compliance_record(
            artifact_fingerprint=artifact.fingerprint,
            results=ordered,
            weights=self.weights(weights),
            threshold=threshold,
            warning_penalty=warning_penalty,
        )

        logger.info(
            f"Verified {artifact.short_id}: score={record.score:.3f} "
            f"passed={record.passed} failing={list(record.failing_governors)}"
        )
        return record

    async def _run_governor(
        self,
        governor: Governor,
        artifact: Artifact,
        timeout: float,
    ) -> VerificationResult:
        """Run one governor with its timeout, absorbing every failure"""
        start = time.monotonic()
        self._stats["governor_runs"] += 1

        try:
            result = await asyncio.wait_for(governor.verify(artifact), timeout=timeout)
        except (asyncio.TimeoutError, GovernorTimeout) as e:
            self._stats["timeouts"] += 1
            logger.warning(f"Governor {governor.name} timed out after {timeout:.2f}s")
            return self._failed_result(
                governor, artifact, GovernorStatus.TIMEOUT,
                str(e) or f"Timed out after {timeout:.2f}s", self._elapsed_ms(start),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats["crashes"] += 1
            logger.error(f"Governor {governor.name} crashed: {e}")
            return self._failed_result(
                governor, artifact, GovernorStatus.CRASHED,
                f"{type(e).__name__}: {e}", self._elapsed_ms(start),
            )

        if not isinstance(result, VerificationResult):
            self._stats["crashes"] += 1
            error = GovernorCrash(governor.name, f"verify() returned {type(result).__name__}")
            logger.error(str(error))
            return self._failed_result(
                governor, artifact, GovernorStatus.CRASHED, str(error), self._elapsed_ms(start),
            )

        result = self._normalize(governor, result)

        if self.cache is not None and result.status == GovernorStatus.OK:
            result = self.cache.store(result)

        return result

    def _normalize(self, governor: Governor, result: VerificationResult) -> VerificationResult:
        """Promote violations of declared blocking rules to BLOCKING"""
        if not governor.blocking_rule_ids:
            return result

        violations = tuple(
            replace(v, severity=Severity.BLOCKING)
            if v.rule_id in governor.blocking_rule_ids and v.severity != Severity.BLOCKING
            else v
            for v in result.violations
        )
        if violations == result.violations:
            return result
        return replace(result, violations=violations)

    def _failed_result(
        self,
        governor: Governor,
        artifact: Artifact,
        status: GovernorStatus,
        error: str,
        duration_ms: int,
    ) -> VerificationResult:
        return VerificationResult(
            governor_id=governor.name,
            artifact_fingerprint=artifact.fingerprint,
            violations=(),
            duration_ms=duration_ms,
            status=status,
            error=error,
        )

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)


async def verify_artifact(
    artifact: Artifact,
    governors: Iterable[Governor],
    threshold: float = 0.9,
    warning_penalty: float = 0.05,
    per_governor_timeout_ms: int = 10000,
) -> ComplianceRecord:
    """One-shot verification without a correction loop"""
    aggregator = ResultAggregator(
        governors=governors,
        per_governor_timeout_ms=per_governor_timeout_ms,
    )
    return await aggregator.aggregate(
        artifact,
        threshold=threshold,
        warning_penalty=warning_penalty,
    )
