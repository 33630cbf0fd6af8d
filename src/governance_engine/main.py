"""
Configuration and Types for the Governance Engine

Immutable data model shared by governors, the aggregator, the correction
synthesizer and the orchestration loop, plus the run configuration.
"""

import hashlib
import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .errors import ConfigError


class Severity(Enum):
    """Violation severity, ordered from least to most serious"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    BLOCKING = "blocking"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __ge__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
    Severity.BLOCKING: 3,
}


class GovernorStatus(Enum):
    """Outcome of a single governor pass"""
    OK = "ok"
    TIMEOUT = "timeout"
    CRASHED = "crashed"


class RunState(Enum):
    """Orchestration loop states"""
    GENERATING = "generating"
    VERIFYING = "verifying"
    CORRECTING = "correcting"
    ACCEPTED = "accepted"
    FAILED = "failed"


class FailureReason(Enum):
    """Machine-readable reason attached to a FAILED run"""
    NO_PROGRESS = "no-progress"
    STALLED = "stalled"
    ITERATION_LIMIT = "iteration-limit"
    TIMEOUT = "timeout"
    GENERATION_ERROR = "generation-error"


def fingerprint_text(text: str) -> str:
    """Stable content hash of a piece of text"""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# =========================================================================
# Artifacts and findings
# =========================================================================

@dataclass(frozen=True)
class Artifact:
    """
    Immutable snapshot of candidate source text.

    Identity is the fingerprint: two artifacts with the same bytes compare
    equal and share cache entries regardless of metadata.
    """
    text: str
    fingerprint: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        expected = fingerprint_text(self.text)
        if self.fingerprint and self.fingerprint != expected:
            raise ValueError("Artifact fingerprint does not match its text")
        object.__setattr__(self, "fingerprint", expected)

    @classmethod
    def from_text(cls, text: str, **metadata: Any) -> "Artifact":
        return cls(text=text, metadata=dict(metadata))

    @property
    def short_id(self) -> str:
        return self.fingerprint[:12]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "text": self.text,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class Span:
    """Location of a finding inside an artifact (1-based lines and columns)"""
    start_line: int
    start_col: int = 1
    end_line: Optional[int] = None
    end_col: Optional[int] = None

    def __str__(self) -> str:
        if self.end_line is None or self.end_line == self.start_line:
            return f"line {self.start_line}, col {self.start_col}"
        return f"lines {self.start_line}-{self.end_line}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_line": self.start_line,
            "start_col": self.start_col,
            "end_line": self.end_line,
            "end_col": self.end_col,
        }


@dataclass(frozen=True)
class Violation:
    """A single finding reported by a governor"""
    governor_id: str
    severity: Severity
    message: str
    rule_id: str
    location: Optional[Span] = None

    @property
    def ref(self) -> Tuple[str, str]:
        return (self.governor_id, self.rule_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "governor_id": self.governor_id,
            "severity": self.severity.value,
            "message": self.message,
            "rule_id": self.rule_id,
            "location": self.location.to_dict() if self.location else None,
        }


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of one governor over one artifact"""
    governor_id: str
    artifact_fingerprint: str
    violations: Tuple[Violation, ...] = ()
    duration_ms: int = 0
    status: GovernorStatus = GovernorStatus.OK
    error: Optional[str] = None

    @property
    def is_clean(self) -> bool:
        """OK status and no error or blocking findings"""
        if self.status != GovernorStatus.OK:
            return False
        return not any(v.severity >= Severity.ERROR for v in self.violations)

    @property
    def has_blocking(self) -> bool:
        return any(v.severity == Severity.BLOCKING for v in self.violations)

    def count(self, severity: Severity) -> int:
        return sum(1 for v in self.violations if v.severity == severity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "governor_id": self.governor_id,
            "artifact_fingerprint": self.artifact_fingerprint,
            "violations": [v.to_dict() for v in self.violations],
            "duration_ms": self.duration_ms,
            "status": self.status.value,
            "error": self.error,
        }


@dataclass(frozen=True)
class ComplianceRecord:
    """Aggregated judgment for one artifact; derived, never mutated"""
    artifact_fingerprint: str
    per_governor_results: Dict[str, VerificationResult]
    score: float
    passed: bool
    threshold: float

    @property
    def violations(self) -> Tuple[Violation, ...]:
        return tuple(
            v for result in self.per_governor_results.values() for v in result.violations
        )

    @property
    def blocking_violations(self) -> Tuple[Violation, ...]:
        return tuple(v for v in self.violations if v.severity == Severity.BLOCKING)

    @property
    def violation_refs(self) -> FrozenSet[Tuple[str, str]]:
        return frozenset(v.ref for v in self.violations)

    @property
    def failing_governors(self) -> Tuple[str, ...]:
        return tuple(
            name for name, result in self.per_governor_results.items()
            if not result.is_clean
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifact_fingerprint": self.artifact_fingerprint,
            "per_governor_results": {
                name: result.to_dict() for name, result in self.per_governor_results.items()
            },
            "score": self.score,
            "passed": self.passed,
            "threshold": self.threshold,
        }


@dataclass(frozen=True)
class CorrectionDirective:
    """Instruction for the generator derived from one or more violations"""
    violation_refs: FrozenSet[Tuple[str, str]]
    instruction_text: str
    priority: int
    blocking: bool = False
    repeat: bool = False

    @property
    def rule_ids(self) -> Tuple[str, ...]:
        return tuple(sorted({rule_id for _, rule_id in self.violation_refs}))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "violation_refs": [list(ref) for ref in sorted(self.violation_refs)],
            "instruction_text": self.instruction_text,
            "priority": self.priority,
            "blocking": self.blocking,
            "repeat": self.repeat,
        }


@dataclass(frozen=True)
class IterationRecord:
    """One generate-verify round of a run (append-only history entry)"""
    iteration_index: int
    artifact: Artifact
    compliance_record: ComplianceRecord
    directives_applied: Tuple[CorrectionDirective, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration_index": self.iteration_index,
            "artifact": self.artifact.to_dict(),
            "compliance_record": self.compliance_record.to_dict(),
            "directives_applied": [d.to_dict() for d in self.directives_applied],
        }


@dataclass(frozen=True)
class TerminalState:
    """Where a run ended and why"""
    state: RunState
    reason: Optional[FailureReason] = None
    detail: str = ""

    @property
    def accepted(self) -> bool:
        return self.state == RunState.ACCEPTED

    def __str__(self) -> str:
        if self.reason:
            return f"{self.state.value.upper()}({self.reason.value})"
        return self.state.value.upper()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class RunResult:
    """Everything a caller needs to act on, or explain, a finished run"""
    run_id: str
    final_artifact: Optional[Artifact]
    final_compliance_record: Optional[ComplianceRecord]
    history: Tuple[IterationRecord, ...]
    terminal_state: TerminalState
    duration_ms: int = 0

    @property
    def accepted(self) -> bool:
        return self.terminal_state.accepted

    @property
    def iterations(self) -> int:
        return len(self.history)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "final_artifact": self.final_artifact.to_dict() if self.final_artifact else None,
            "final_compliance_record": (
                self.final_compliance_record.to_dict()
                if self.final_compliance_record else None
            ),
            "history": [record.to_dict() for record in self.history],
            "terminal_state": self.terminal_state.to_dict(),
            "duration_ms": self.duration_ms,
        }


# =========================================================================
# Configuration
# =========================================================================

@dataclass
class RunConfig:
    """
    Configuration for one orchestration run.

    Controls iteration and time budgets, the compliance policy, correction
    volume and cache sizing.
    """
    # Loop budget
    max_iterations: int = 5
    global_timeout_ms: int = 300000  # 5 minutes

    # Compliance policy
    score_threshold: float = 0.9
    warning_penalty: float = 0.05
    governor_weights: Dict[str, float] = field(default_factory=dict)

    # Verification
    per_governor_timeout_ms: int = 10000  # 10 seconds
    aggregator_overhead_ms: int = 500

    # Correction
    max_directives_per_iteration: int = 5

    # Generation
    generation_timeout_ms: int = 120000  # 2 minutes
    generation_retries: int = 0
    retry_delay_ms: int = 1000
    retry_backoff_multiplier: float = 2.0

    # Cache
    cache_capacity: int = 1024

    def validate(self) -> "RunConfig":
        """Check value ranges, raising ConfigError on the first bad one"""
        if self.max_iterations < 1:
            raise ConfigError("max_iterations must be at least 1")
        if not 0.0 <= self.score_threshold <= 1.0:
            raise ConfigError("score_threshold must be within [0, 1]")
        if self.warning_penalty < 0:
            raise ConfigError("warning_penalty must not be negative")
        for name in ("per_governor_timeout_ms", "global_timeout_ms", "generation_timeout_ms"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.aggregator_overhead_ms < 0:
            raise ConfigError("aggregator_overhead_ms must not be negative")
        if self.max_directives_per_iteration < 1:
            raise ConfigError("max_directives_per_iteration must be at least 1")
        if self.generation_retries < 0:
            raise ConfigError("generation_retries must not be negative")
        if self.cache_capacity < 0:
            raise ConfigError("cache_capacity must not be negative")
        if not isinstance(self.governor_weights, dict):
            raise ConfigError("governor_weights must be a mapping of governor name to weight")
        for name, weight in self.governor_weights.items():
            if isinstance(weight, bool) or not isinstance(weight, (int, float)):
                raise ConfigError(f"Weight for governor {name} must be a number")
            if weight < 0:
                raise ConfigError(f"Weight for governor {name} must not be negative")
        return self

    def merged(self, **overrides: Any) -> "RunConfig":
        """Copy of this config with the non-None overrides applied"""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}")
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes).validate()

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RunConfig":
        return cls().merged(**(data or {}))

    @classmethod
    def from_yaml(cls, path: str) -> "RunConfig":
        """Load config from YAML file"""
        import yaml

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        return cls.from_dict(data)

    @classmethod
    def from_env(cls) -> "RunConfig":
        """Load config from environment variables"""
        try:
            return cls(
                max_iterations=int(os.getenv("GOV_MAX_ITERATIONS", "5")),
                score_threshold=float(os.getenv("GOV_SCORE_THRESHOLD", "0.9")),
                warning_penalty=float(os.getenv("GOV_WARNING_PENALTY", "0.05")),
                per_governor_timeout_ms=int(os.getenv("GOV_GOVERNOR_TIMEOUT_MS", "10000")),
                global_timeout_ms=int(os.getenv("GOV_GLOBAL_TIMEOUT_MS", "300000")),
                max_directives_per_iteration=int(os.getenv("GOV_MAX_DIRECTIVES", "5")),
                generation_timeout_ms=int(os.getenv("GOV_GENERATION_TIMEOUT_MS", "120000")),
                generation_retries=int(os.getenv("GOV_GENERATION_RETRIES", "0")),
                cache_capacity=int(os.getenv("GOV_CACHE_CAPACITY", "1024")),
            ).validate()
        except ValueError as e:
            raise ConfigError(f"Invalid environment configuration: {e}") from e
