"""
Governor Interface

A governor is a pluggable verification unit. The engine only relies on the
contract below and on the capability metadata in GovernorSpec; how a
governor reasons internally (rule engine, solver, pattern matcher) is its own
business.
"""

import asyncio
import functools
import inspect
import logging
import os
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, FrozenSet, Iterable, List, Optional

from ..errors import GovernorCrash
from ..main import Artifact, Severity, Span, VerificationResult, Violation

logger = logging.getLogger(__name__)

# Synchronous checks run on this pool, not the loop's default executor.
# A check that hangs past its timeout keeps its worker until it returns.
_executor: Optional[ThreadPoolExecutor] = None


def governor_executor() -> ThreadPoolExecutor:
    """Shared worker pool for synchronous governor checks"""
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(
            max_workers=int(os.getenv("GOV_GOVERNOR_WORKERS", "8")),
            thread_name_prefix="governor",
        )
    return _executor


async def run_sync_check(fn: Callable[..., Any], *args: Any) -> Any:
    """Run a blocking check on the governor pool"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(governor_executor(), functools.partial(fn, *args))


@dataclass(frozen=True)
class GovernorSpec:
    """Capability metadata the engine is allowed to act on"""
    name: str
    weight: float = 1.0
    blocking_rule_ids: FrozenSet[str] = field(default_factory=frozenset)
    timeout_ms: Optional[int] = None  # None = engine default

    def __post_init__(self):
        if not self.name:
            raise ValueError("Governor name must not be empty")
        if self.weight < 0:
            raise ValueError(f"Governor {self.name} weight must not be negative")
        object.__setattr__(self, "blocking_rule_ids", frozenset(self.blocking_rule_ids))


class Governor(ABC):
    """
    Base class for governors.

    Subclasses implement check(), which runs in a worker thread so that
    CPU-bound rule evaluation does not stall the other governors. Governors
    that do their own async I/O may override verify() instead.
    """

    def __init__(self, spec: GovernorSpec):
        self.spec = spec

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def weight(self) -> float:
        return self.spec.weight

    @property
    def blocking_rule_ids(self) -> FrozenSet[str]:
        return self.spec.blocking_rule_ids

    async def verify(self, artifact: Artifact) -> VerificationResult:
        """
        Verify an artifact.

        Exceptions propagate; the aggregator turns them into timeout or
        crashed results so that one broken governor never aborts a run.
        """
        start = time.monotonic()
        violations = await run_sync_check(self._collect, artifact)
        return VerificationResult(
            governor_id=self.name,
            artifact_fingerprint=artifact.fingerprint,
            violations=tuple(violations),
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    @abstractmethod
    def check(self, artifact: Artifact) -> Iterable[Violation]:
        """Return the violations found in the artifact"""
        pass

    def violation(
        self,
        rule_id: str,
        message: str,
        severity: Severity = Severity.ERROR,
        location: Optional[Span] = None,
    ) -> Violation:
        """Build a violation stamped with this governor's id"""
        return Violation(
            governor_id=self.name,
            severity=severity,
            message=message,
            rule_id=rule_id,
            location=location,
        )

    def _collect(self, artifact: Artifact) -> List[Violation]:
        violations = list(self.check(artifact))
        for v in violations:
            if not isinstance(v, Violation):
                raise GovernorCrash(self.name, f"check() yielded {type(v).__name__}, not Violation")
        return violations

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, weight={self.weight})"


class CallableGovernor(Governor):
    """
    Adapter for externally registered governor plugins.

    The plugin's verify callable may be sync or async and may return either a
    VerificationResult or an iterable of Violations.
    """

    def __init__(
        self,
        name: str,
        verify: Callable[[Artifact], Any],
        weight: float = 1.0,
        blocking_rule_ids: Iterable[str] = (),
        timeout_ms: Optional[int] = None,
    ):
        super().__init__(GovernorSpec(
            name=name,
            weight=weight,
            blocking_rule_ids=frozenset(blocking_rule_ids),
            timeout_ms=timeout_ms,
        ))
        self._verify_fn = verify

    async def verify(self, artifact: Artifact) -> VerificationResult:
        start = time.monotonic()

        if inspect.iscoroutinefunction(self._verify_fn):
            outcome = await self._verify_fn(artifact)
        else:
            outcome = await run_sync_check(self._verify_fn, artifact)
            if inspect.isawaitable(outcome):
                outcome = await outcome

        duration_ms = int((time.monotonic() - start) * 1000)

        if isinstance(outcome, VerificationResult):
            if outcome.governor_id != self.name:
                raise GovernorCrash(
                    self.name,
                    f"Plugin returned a result for governor {outcome.governor_id}",
                )
            if outcome.artifact_fingerprint != artifact.fingerprint:
                raise GovernorCrash(self.name, "Plugin returned a result for another artifact")
            return outcome

        if outcome is None:
            outcome = ()

        try:
            violations = tuple(outcome)
        except TypeError:
            raise GovernorCrash(
                self.name,
                f"Plugin returned {type(outcome).__name__}, expected violations",
            )

        if not all(isinstance(v, Violation) for v in violations):
            raise GovernorCrash(self.name, "Plugin returned non-Violation items")

        return VerificationResult(
            governor_id=self.name,
            artifact_fingerprint=artifact.fingerprint,
            violations=violations,
            duration_ms=duration_ms,
        )

    def check(self, artifact: Artifact) -> Iterable[Violation]:
        raise NotImplementedError("CallableGovernor delegates to its plugin in verify()")
