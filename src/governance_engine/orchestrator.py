"""
Governance Orchestrator - Core Orchestration Logic

Implements the verify-and-correct loop:

    GENERATING -> VERIFYING -> (ACCEPTED | CORRECTING) -> GENERATING ...

A run ends ACCEPTED or FAILED(reason). Every decision after a verification
pass is a function of the IterationRecord history alone (see next_state),
so a finished run can be replayed from its history.
"""

import asyncio
import inspect
import logging
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .cache import GenerationCache, VerificationCache
from .correction import CorrectionSynthesizer
from .errors import (
    ConfigError,
    GenerationError,
    GenerationFailed,
    GlobalTimeout,
    IterationLimitExceeded,
    NoProgress,
    RunTerminated,
    Stalled,
)
from .generators.base import BaseGenerator
from .governors.base import Governor
from .main import (
    Artifact,
    ComplianceRecord,
    CorrectionDirective,
    FailureReason,
    IterationRecord,
    RunConfig,
    RunResult,
    RunState,
    TerminalState,
)
from .metrics import MetricsCollector, get_metrics
from .verification.aggregator import ResultAggregator

logger = logging.getLogger(__name__)


def is_stalled(previous: ComplianceRecord, current: ComplianceRecord) -> bool:
    """Same score and same set of (governor, rule) findings"""
    return (
        previous.score == current.score
        and previous.violation_refs == current.violation_refs
    )


def next_state(
    history: Sequence[IterationRecord],
    max_iterations: int,
) -> Tuple[RunState, Optional[FailureReason], str]:
    """
    Transition out of VERIFYING, decided from the history alone.

    Returns ACCEPTED, FAILED(stalled), FAILED(iteration-limit) or CORRECTING.
    """
    if not history:
        raise ValueError("next_state requires at least one iteration")

    latest = history[-1]
    record = latest.compliance_record

    if record.passed:
        return RunState.ACCEPTED, None, (
            f"Accepted at iteration {latest.iteration_index} with score {record.score:.3f}"
        )

    if len(history) >= 2 and is_stalled(history[-2].compliance_record, record):
        return RunState.FAILED, FailureReason.STALLED, (
            f"Iterations {history[-2].iteration_index} and {latest.iteration_index} "
            f"produced identical compliance (score {record.score:.3f}, "
            f"{len(record.violation_refs)} rule(s))"
        )

    if latest.iteration_index >= max_iterations:
        return RunState.FAILED, FailureReason.ITERATION_LIMIT, (
            f"Not accepted after {max_iterations} iteration(s); "
            f"last score {record.score:.3f}"
        )

    return RunState.CORRECTING, None, ""


class GovernanceOrchestrator:
    """
    Drives candidates through verification and correction.

    Key Features:
    1. Concurrent governor verification with fail-closed timeouts
    2. Absolute blocking gate on acceptance
    3. Bounded, de-duplicated correction directives
    4. Stall, no-progress, iteration and wall-clock termination
    5. Content-addressed caching of verification and generation

    The core guarantee: If a run is ACCEPTED, its final artifact passed the
    compliance gate.
    """

    def __init__(
        self,
        governors: Optional[Iterable[Governor]] = None,
        generator: Optional[BaseGenerator] = None,
        config: Optional[RunConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = (config or RunConfig()).validate()
        self.verification_cache = VerificationCache(self.config.cache_capacity)
        self.generation_cache = GenerationCache(self.config.cache_capacity)
        self._aggregator = ResultAggregator(
            governors=governors,
            cache=self.verification_cache,
            per_governor_timeout_ms=self.config.per_governor_timeout_ms,
            overhead_ms=self.config.aggregator_overhead_ms,
        )
        self._generator = generator
        self._metrics = metrics or get_metrics()
        self._event_handlers: Dict[str, List[Callable]] = {}

        # Statistics
        self._stats = {
            "runs_started": 0,
            "runs_accepted": 0,
            "runs_failed": 0,
            "iterations": 0,
            "generation_calls": 0,
            "generation_cache_hits": 0,
            "generation_retries": 0,
            "directives_issued": 0,
        }
        self._failures_by_reason: Dict[str, int] = {}

        logger.info(
            f"Governance orchestrator initialized with "
            f"{len(self._aggregator.governors)} governor(s)"
        )

    # =========================================================================
    # Registration
    # =========================================================================

    def register_governor(self, governor: Governor) -> None:
        """Register a governor plugin"""
        self._aggregator.register(governor)

    def register_callable(
        self,
        name: str,
        verify: Callable[[Artifact], Any],
        weight: float = 1.0,
        blocking_rule_ids: Iterable[str] = (),
        timeout_ms: Optional[int] = None,
    ) -> Governor:
        """Register a governor plugin given as {name, weight, blocking_rule_ids, verify}"""
        return self._aggregator.register_callable(
            name, verify, weight=weight, blocking_rule_ids=blocking_rule_ids, timeout_ms=timeout_ms,
        )

    def register_generator(self, generator: BaseGenerator) -> None:
        """Register the generation collaborator"""
        self._generator = generator
        logger.info(f"Registered generator: {generator.name}")

    @property
    def governors(self) -> List[Governor]:
        return self._aggregator.governors

    @property
    def aggregator(self) -> ResultAggregator:
        return self._aggregator

    # =========================================================================
    # Run entry point
    # =========================================================================

    async def run(
        self,
        prompt: str,
        context: Optional[Dict[str, Any]] = None,
        config: Optional[RunConfig] = None,
        initial_artifact: Optional[Artifact] = None,
    ) -> RunResult:
        """
        Run the verify-and-correct loop to a terminal state.

        Args:
            prompt: Task prompt for the generator
            context: Caller context passed to the generator
            config: Per-run config (defaults to the orchestrator's). Its
                cache_capacity is ignored; the shared caches keep the
                capacity they were built with.
            initial_artifact: Candidate to verify on iteration 1 instead of
                generating one

        Returns:
            RunResult with the final artifact, compliance record, full
            history and terminal state. Cancellation propagates.
        """
        config = (config or self.config).validate()
        if self._generator is None and initial_artifact is None:
            raise ConfigError("No generator registered and no initial artifact given")

        if config.cache_capacity != self.verification_cache.capacity:
            # Caches are shared by every run; their size is fixed at construction
            logger.debug(
                f"Ignoring per-run cache_capacity={config.cache_capacity} "
                f"(shared caches hold {self.verification_cache.capacity})"
            )

        run_id = str(uuid.uuid4())[:8]
        history: List[IterationRecord] = []
        start = time.monotonic()
        deadline = start + config.global_timeout_ms / 1000

        self._stats["runs_started"] += 1
        self._metrics.run_started(run_id)
        logger.info(f"[{run_id}] Run started (max_iterations={config.max_iterations})")
        await self._emit_event("run.started", run_id, config=config)

        try:
            terminal = await self._run_loop(
                run_id, prompt, dict(context or {}), config, initial_artifact, history, deadline,
            )
        except RunTerminated as e:
            terminal = TerminalState(
                state=RunState.FAILED,
                reason=FailureReason(e.reason),
                detail=e.detail,
            )
        except asyncio.CancelledError:
            self._metrics.run_cancelled(run_id)
            logger.warning(f"[{run_id}] Cancelled after {len(history)} iteration(s)")
            raise

        last = history[-1] if history else None
        result = RunResult(
            run_id=run_id,
            final_artifact=last.artifact if last else None,
            final_compliance_record=last.compliance_record if last else None,
            history=tuple(history),
            terminal_state=terminal,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

        self._metrics.run_finished(run_id, result)
        if terminal.accepted:
            self._stats["runs_accepted"] += 1
            logger.info(f"[{run_id}] ACCEPTED after {len(history)} iteration(s)")
            await self._emit_event("run.accepted", run_id, result=result)
        else:
            self._stats["runs_failed"] += 1
            reason = terminal.reason.value
            self._failures_by_reason[reason] = self._failures_by_reason.get(reason, 0) + 1
            logger.warning(
                f"[{run_id}] FAILED({reason}) after {len(history)} iteration(s): {terminal.detail}"
            )
            await self._emit_event("run.failed", run_id, result=result)

        return result

    async def _run_loop(
        self,
        run_id: str,
        prompt: str,
        context: Dict[str, Any],
        config: RunConfig,
        initial_artifact: Optional[Artifact],
        history: List[IterationRecord],
        deadline: float,
    ) -> TerminalState:
        """
        THE VERIFY-AND-CORRECT LOOP

        Appends to history as it goes; termination other than acceptance is
        signalled by raising a RunTerminated subclass.
        """
        synthesizer = CorrectionSynthesizer(max_directives=config.max_directives_per_iteration)
        weights = self._aggregator.weights(config.governor_weights)
        directives: Tuple[CorrectionDirective, ...] = ()
        artifact: Optional[Artifact] = None

        for iteration in range(1, config.max_iterations + 1):
            # --- GENERATING ---
            if iteration == 1 and initial_artifact is not None:
                artifact = initial_artifact
            else:
                generation_context = self._generation_context(context, directives, artifact, iteration)
                await self._emit_event("run.generating", run_id, iteration=iteration)
                artifact = await self._generate(run_id, prompt, generation_context, config, deadline)

            # --- VERIFYING ---
            await self._emit_event("run.verifying", run_id, iteration=iteration, artifact=artifact)
            record = await self._verify(artifact, config, deadline)

            iteration_record = IterationRecord(
                iteration_index=iteration,
                artifact=artifact,
                compliance_record=record,
                directives_applied=directives,
            )
            history.append(iteration_record)
            self._stats["iterations"] += 1
            self._metrics.iteration_recorded(run_id, record)
            await self._emit_event("run.iteration", run_id, record=iteration_record)

            state, reason, detail = next_state(history, config.max_iterations)
            if state == RunState.ACCEPTED:
                return TerminalState(state=RunState.ACCEPTED, detail=detail)
            if reason == FailureReason.STALLED:
                raise Stalled(detail)
            if reason == FailureReason.ITERATION_LIMIT:
                raise IterationLimitExceeded(detail)

            # --- CORRECTING ---
            directives = synthesizer.synthesize(record, history, weights)
            if not directives:
                raise NoProgress(
                    f"Iteration {iteration} failed (score {record.score:.3f}) "
                    f"but yielded no actionable directives"
                )

            self._stats["directives_issued"] += len(directives)
            logger.info(f"[{run_id}] Iteration {iteration}: issuing {len(directives)} directive(s)")
            await self._emit_event("run.correcting", run_id, iteration=iteration, directives=directives)

        # next_state reports the iteration limit on the last pass
        raise IterationLimitExceeded(f"Not accepted after {config.max_iterations} iteration(s)")

    # =========================================================================
    # Stages
    # =========================================================================

    async def _generate(
        self,
        run_id: str,
        prompt: str,
        context: Dict[str, Any],
        config: RunConfig,
        deadline: float,
    ) -> Artifact:
        """Obtain an artifact from the cache or the generator, with retries"""
        cached = self.generation_cache.lookup(prompt, context)
        if cached is not None:
            self._stats["generation_cache_hits"] += 1
            self._metrics.generation_recorded(run_id, cached=True)
            logger.info(f"[{run_id}] Generation cache hit: {cached.short_id}")
            return cached

        if self._generator is None:
            raise GenerationFailed("No generator registered")

        attempts = config.generation_retries + 1
        generation_timeout = config.generation_timeout_ms / 1000

        for attempt in range(1, attempts + 1):
            remaining = self._remaining(deadline)
            if remaining <= 0:
                raise GlobalTimeout("Run budget exhausted before generation")

            budget_bound = remaining <= generation_timeout
            self._stats["generation_calls"] += 1
            self._metrics.generation_recorded(run_id, cached=False)

            try:
                artifact = await asyncio.wait_for(
                    self._generator.generate(prompt, context),
                    timeout=min(remaining, generation_timeout),
                )
            except asyncio.TimeoutError:
                if budget_bound:
                    raise GlobalTimeout(
                        f"Generation exceeded the run budget of {config.global_timeout_ms}ms"
                    )
                error = GenerationError(f"Generation timed out after {config.generation_timeout_ms}ms")
            except GenerationError as e:
                error = e
            except Exception as e:
                logger.exception(f"[{run_id}] Unexpected generator error")
                error = GenerationError(f"Unexpected generator error: {e}")
            else:
                if isinstance(artifact, Artifact):
                    return self.generation_cache.store(prompt, context, artifact)
                error = GenerationError(
                    f"Generator returned {type(artifact).__name__}, not Artifact",
                    retriable=False,
                )

            logger.warning(f"[{run_id}] Generation attempt {attempt}/{attempts} failed: {error}")
            if not error.retriable or attempt == attempts:
                raise GenerationFailed(str(error))

            delay = config.retry_delay_ms * (config.retry_backoff_multiplier ** (attempt - 1)) / 1000
            if delay >= self._remaining(deadline):
                raise GlobalTimeout("Run budget exhausted while waiting to retry generation")

            self._stats["generation_retries"] += 1
            await asyncio.sleep(delay)

        raise GenerationFailed("Generation attempts exhausted")

    async def _verify(
        self,
        artifact: Artifact,
        config: RunConfig,
        deadline: float,
    ) -> ComplianceRecord:
        """Run the aggregator within the remaining run budget"""
        remaining = self._remaining(deadline)
        if remaining <= 0:
            raise GlobalTimeout("Run budget exhausted before verification")

        try:
            return await asyncio.wait_for(
                self._aggregator.aggregate(
                    artifact,
                    threshold=config.score_threshold,
                    warning_penalty=config.warning_penalty,
                    weights=config.governor_weights,
                    per_governor_timeout_ms=config.per_governor_timeout_ms,
                    overhead_ms=config.aggregator_overhead_ms,
                ),
                timeout=remaining,
            )
        except asyncio.TimeoutError:
            raise GlobalTimeout(
                f"Verification exceeded the run budget of {config.global_timeout_ms}ms"
            )

    @staticmethod
    def _generation_context(
        context: Dict[str, Any],
        directives: Sequence[CorrectionDirective],
        previous: Optional[Artifact],
        iteration: int,
    ) -> Dict[str, Any]:
        """Caller context plus the directives for this round"""
        generation_context = dict(context)
        if previous is not None and directives:
            generation_context.update({
                "directives": [d.to_dict() for d in directives],
                "previous_artifact": previous.text,
                "previous_fingerprint": previous.fingerprint,
                "iteration": iteration,
            })
        return generation_context

    @staticmethod
    def _remaining(deadline: float) -> float:
        return deadline - time.monotonic()

    # =========================================================================
    # Event System
    # =========================================================================

    def on(self, event: str, handler: Callable) -> None:
        """Register event handler"""
        if event not in self._event_handlers:
            self._event_handlers[event] = []
        self._event_handlers[event].append(handler)

    async def _emit_event(self, event: str, run_id: str, **kwargs) -> None:
        """Call registered handlers; handler errors never affect the run"""
        handlers = self._event_handlers.get(event, [])
        for handler in handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(event, run_id, **kwargs)
                else:
                    handler(event, run_id, **kwargs)
            except Exception as e:
                logger.error(f"Event handler error for {event}: {e}")

        logger.debug(f"[{run_id}] event: {event}")

    # =========================================================================
    # Statistics and Monitoring
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics"""
        return {
            **self._stats,
            "failures_by_reason": dict(self._failures_by_reason),
            "aggregator": self._aggregator.get_stats(),
            "verification_cache": self.verification_cache.stats(),
            "generation_cache": self.generation_cache.stats(),
        }
