"""
Run Explanation Export

Derives a human- and machine-readable account of a run from its
IterationRecord history: per-iteration scores, failing governors with their
reasons, violation counts, the directives fed into each round, and where the
run crossed the threshold or stopped.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .main import (
    GovernorStatus,
    IterationRecord,
    RunResult,
    Severity,
    TerminalState,
)


@dataclass(frozen=True)
class GovernorFailure:
    """Why one governor did not come back clean"""
    governor_id: str
    status: str
    reasons: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "governor_id": self.governor_id,
            "status": self.status,
            "reasons": list(self.reasons),
        }


@dataclass(frozen=True)
class IterationExplanation:
    iteration_index: int
    artifact_fingerprint: str
    score: float
    threshold: float
    passed: bool
    failing_governors: Tuple[GovernorFailure, ...]
    violation_counts: Dict[str, int]
    directives_applied: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration_index": self.iteration_index,
            "artifact_fingerprint": self.artifact_fingerprint,
            "score": self.score,
            "threshold": self.threshold,
            "passed": self.passed,
            "failing_governors": [f.to_dict() for f in self.failing_governors],
            "violation_counts": dict(self.violation_counts),
            "directives_applied": list(self.directives_applied),
        }


@dataclass(frozen=True)
class RunExplanation:
    iterations: Tuple[IterationExplanation, ...]
    first_passing_iteration: Optional[int]
    first_threshold_iteration: Optional[int] = None
    terminal_state: Optional[TerminalState] = None
    run_id: Optional[str] = None
    duration_ms: Optional[int] = None
    score_trend: Tuple[float, ...] = field(default=())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "terminal_state": self.terminal_state.to_dict() if self.terminal_state else None,
            "duration_ms": self.duration_ms,
            "first_passing_iteration": self.first_passing_iteration,
            "first_threshold_iteration": self.first_threshold_iteration,
            "score_trend": list(self.score_trend),
            "iterations": [i.to_dict() for i in self.iterations],
        }

    def render_text(self) -> str:
        """Plain-text report, one block per iteration"""
        lines: List[str] = []
        header = "Run"
        if self.run_id:
            header += f" {self.run_id}"
        if self.terminal_state is not None:
            header += f": {self.terminal_state}"
        lines.append(header)
        if self.terminal_state is not None and self.terminal_state.detail:
            lines.append(f"  {self.terminal_state.detail}")

        if self.first_threshold_iteration is not None:
            lines.append(f"Compliance first reached the threshold at iteration {self.first_threshold_iteration}")
        else:
            lines.append("Compliance never reached the threshold")
        if self.first_passing_iteration is None:
            if self.first_threshold_iteration is not None:
                lines.append("No iteration passed the blocking gate")
        elif self.first_passing_iteration != self.first_threshold_iteration:
            lines.append(f"First passing iteration: {self.first_passing_iteration}")

        for item in self.iterations:
            verdict = "PASS" if item.passed else "FAIL"
            lines.append("")
            lines.append(
                f"Iteration {item.iteration_index} [{item.artifact_fingerprint[:12]}] "
                f"score={item.score:.3f} {verdict}"
            )
            counts = ", ".join(
                f"{name}={count}" for name, count in item.violation_counts.items() if count
            )
            lines.append(f"  violations: {counts or 'none'}")
            if item.directives_applied:
                lines.append(f"  directives applied: {', '.join(item.directives_applied)}")
            for failure in item.failing_governors:
                lines.append(f"  {failure.governor_id} ({failure.status}):")
                for reason in failure.reasons:
                    lines.append(f"    - {reason}")

        return "\n".join(lines)


def _explain_iteration(record: IterationRecord) -> IterationExplanation:
    compliance = record.compliance_record
    failures = []
    for name in compliance.failing_governors:
        result = compliance.per_governor_results[name]
        if result.status != GovernorStatus.OK:
            reasons: Tuple[str, ...] = (result.error or result.status.value,)
        else:
            reasons = tuple(
                f"[{v.severity.value}] {v.rule_id}: {v.message}"
                for v in result.violations
                if v.severity >= Severity.ERROR
            )
        failures.append(GovernorFailure(
            governor_id=name,
            status=result.status.value,
            reasons=reasons,
        ))

    counts = {severity.value: 0 for severity in Severity}
    for violation in compliance.violations:
        counts[violation.severity.value] += 1

    directives = tuple(
        ",".join(d.rule_ids) + (" (repeat)" if d.repeat else "")
        for d in record.directives_applied
    )

    return IterationExplanation(
        iteration_index=record.iteration_index,
        artifact_fingerprint=record.artifact.fingerprint,
        score=compliance.score,
        threshold=compliance.threshold,
        passed=compliance.passed,
        failing_governors=tuple(failures),
        violation_counts=counts,
        directives_applied=directives,
    )


def explain_history(
    history: Sequence[IterationRecord],
    terminal_state: Optional[TerminalState] = None,
) -> RunExplanation:
    """Explanation derived purely from an IterationRecord history"""
    iterations = tuple(_explain_iteration(record) for record in history)
    first_passing = next(
        (item.iteration_index for item in iterations if item.passed),
        None,
    )
    first_threshold = next(
        (item.iteration_index for item in iterations if item.score >= item.threshold),
        None,
    )
    return RunExplanation(
        iterations=iterations,
        first_passing_iteration=first_passing,
        first_threshold_iteration=first_threshold,
        terminal_state=terminal_state,
        score_trend=tuple(item.score for item in iterations),
    )


def explain_run(result: RunResult) -> RunExplanation:
    """Explanation of a finished run, including its terminal state"""
    explanation = explain_history(result.history, result.terminal_state)
    return RunExplanation(
        iterations=explanation.iterations,
        first_passing_iteration=explanation.first_passing_iteration,
        first_threshold_iteration=explanation.first_threshold_iteration,
        terminal_state=result.terminal_state,
        run_id=result.run_id,
        duration_ms=result.duration_ms,
        score_trend=explanation.score_trend,
    )
