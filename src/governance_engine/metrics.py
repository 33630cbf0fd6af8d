"""
Metrics Tracking

Tracks run, iteration and generation metrics for monitoring and analysis.
"""

import json
import os
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .main import ComplianceRecord, GovernorStatus

if TYPE_CHECKING:
    from .main import RunResult


@dataclass
class RunMetrics:
    """Metrics for a single run"""
    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: int = 0
    terminal_state: str = "running"
    reason: Optional[str] = None

    iterations: int = 0
    generation_calls: int = 0
    generation_cache_hits: int = 0
    scores: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "terminal_state": self.terminal_state,
            "reason": self.reason,
            "iterations": self.iterations,
            "generation_calls": self.generation_calls,
            "generation_cache_hits": self.generation_cache_hits,
            "scores": list(self.scores),
        }


class MetricsCollector:
    """
    Collects and stores metrics for the orchestrator.

    Provides real-time statistics and historical data export. Per-run
    records and timing samples are kept for the most recent ``max_runs``
    runs only; the aggregate counters cover the whole process lifetime.
    """

    def __init__(self, metrics_path: Optional[Path] = None, max_runs: Optional[int] = None):
        self.metrics_path = metrics_path or Path(
            os.getenv("GOV_METRICS_PATH", ".governance/metrics")
        )
        self.max_runs = max_runs if max_runs is not None else int(
            os.getenv("GOV_METRICS_MAX_RUNS", "1000")
        )
        if self.max_runs < 1:
            raise ValueError("max_runs must be at least 1")

        self._run_metrics: "OrderedDict[str, RunMetrics]" = OrderedDict()
        self._start_time = datetime.now()

        # Aggregate counters
        self._counters = {
            "runs_started": 0,
            "runs_accepted": 0,
            "runs_failed": 0,
            "runs_cancelled": 0,
            "iterations": 0,
            "verification_passes": 0,
            "verification_failures": 0,
            "generation_calls": 0,
            "generation_cache_hits": 0,
            "governor_timeouts": 0,
            "governor_crashes": 0,
        }
        self._failures_by_reason: Dict[str, int] = {}

        # Timing samples, oldest dropped first
        self._timing = self._new_timing()

    # =========================================================================
    # Run Tracking
    # =========================================================================

    def run_started(self, run_id: str) -> None:
        """Record run start"""
        self._run_metrics[run_id] = RunMetrics(run_id=run_id, started_at=datetime.now())
        while len(self._run_metrics) > self.max_runs:
            self._run_metrics.popitem(last=False)
        self._counters["runs_started"] += 1

    def iteration_recorded(self, run_id: str, record: ComplianceRecord) -> None:
        """Record one verification pass"""
        if run_id in self._run_metrics:
            metrics = self._run_metrics[run_id]
            metrics.iterations += 1
            metrics.scores.append(record.score)

        self._counters["iterations"] += 1
        if record.passed:
            self._counters["verification_passes"] += 1
        else:
            self._counters["verification_failures"] += 1

        for result in record.per_governor_results.values():
            self._timing["governor_duration_ms"].append(result.duration_ms)
            if result.status == GovernorStatus.TIMEOUT:
                self._counters["governor_timeouts"] += 1
            elif result.status == GovernorStatus.CRASHED:
                self._counters["governor_crashes"] += 1

    def generation_recorded(self, run_id: str, cached: bool = False) -> None:
        """Record a generation call or cache hit"""
        key = "generation_cache_hits" if cached else "generation_calls"
        if run_id in self._run_metrics:
            metrics = self._run_metrics[run_id]
            setattr(metrics, key, getattr(metrics, key) + 1)
        self._counters[key] += 1

    def run_finished(self, run_id: str, result: "RunResult") -> None:
        """Record run completion"""
        terminal = result.terminal_state
        if run_id in self._run_metrics:
            metrics = self._run_metrics[run_id]
            metrics.completed_at = datetime.now()
            metrics.duration_ms = result.duration_ms
            metrics.terminal_state = terminal.state.value
            metrics.reason = terminal.reason.value if terminal.reason else None

        self._timing["run_duration_ms"].append(result.duration_ms)

        if terminal.accepted:
            self._counters["runs_accepted"] += 1
        else:
            self._counters["runs_failed"] += 1
            reason = terminal.reason.value if terminal.reason else "unknown"
            self._failures_by_reason[reason] = self._failures_by_reason.get(reason, 0) + 1

    def run_cancelled(self, run_id: str) -> None:
        """Record a run cancelled before reaching a terminal state"""
        if run_id in self._run_metrics:
            metrics = self._run_metrics[run_id]
            metrics.completed_at = datetime.now()
            metrics.duration_ms = int((metrics.completed_at - metrics.started_at).total_seconds() * 1000)
            metrics.terminal_state = "cancelled"
        self._counters["runs_cancelled"] += 1

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get summary statistics"""
        uptime_seconds = (datetime.now() - self._start_time).total_seconds()

        run_durations = self._timing["run_duration_ms"]
        avg_duration = sum(run_durations) / len(run_durations) if run_durations else 0
        finished = self._counters["runs_accepted"] + self._counters["runs_failed"]
        verifications = self._counters["verification_passes"] + self._counters["verification_failures"]
        lookups = self._counters["generation_calls"] + self._counters["generation_cache_hits"]

        return {
            "uptime_seconds": int(uptime_seconds),
            "counters": self._counters.copy(),
            "failures_by_reason": dict(self._failures_by_reason),
            "rates": {
                "acceptance_rate": (
                    self._counters["runs_accepted"] / finished if finished > 0 else 0
                ),
                "verification_pass_rate": (
                    self._counters["verification_passes"] / verifications
                    if verifications > 0 else 0
                ),
                "avg_iterations_per_run": (
                    self._counters["iterations"] / finished if finished > 0 else 0
                ),
                "generation_cache_hit_rate": (
                    self._counters["generation_cache_hits"] / lookups if lookups > 0 else 0
                ),
            },
            "timing": {
                "avg_run_duration_ms": avg_duration,
                "min_run_duration_ms": min(run_durations) if run_durations else 0,
                "max_run_duration_ms": max(run_durations) if run_durations else 0,
            },
        }

    def get_run_metrics(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Get metrics for a specific run"""
        if run_id in self._run_metrics:
            return self._run_metrics[run_id].to_dict()
        return None

    # =========================================================================
    # Export
    # =========================================================================

    def export_metrics(self, filename: Optional[str] = None) -> Path:
        """Export metrics to JSON file"""
        if filename is None:
            filename = f"metrics_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"

        self.metrics_path.mkdir(parents=True, exist_ok=True)
        filepath = self.metrics_path / filename

        data = {
            "exported_at": datetime.now().isoformat(),
            "summary": self.get_summary(),
            "runs": [m.to_dict() for m in self._run_metrics.values()],
        }

        with open(filepath, "w") as f:
            json.dump(data, f, indent=2)

        return filepath

    def reset(self) -> None:
        """Reset all metrics"""
        self._run_metrics.clear()
        self._failures_by_reason.clear()
        self._start_time = datetime.now()
        for key in self._counters:
            self._counters[key] = 0
        self._timing = self._new_timing()

    def _new_timing(self) -> Dict[str, "deque[int]"]:
        samples = self.max_runs * 10
        return {
            "run_duration_ms": deque(maxlen=self.max_runs),
            "governor_duration_ms": deque(maxlen=samples),
        }


# Global instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector"""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
