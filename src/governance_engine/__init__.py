"""
Governance Engine

Verification orchestration for generated source code. Candidates are
produced by a generation collaborator, checked concurrently by independent
governors, scored against a compliance policy and, when they fall short,
fed back with targeted correction directives until they are accepted or the
run terminates with a named reason.

CRITICAL RULES:
1. An artifact with a blocking violation is never accepted
2. A governor that times out or crashes counts as non-passing
3. Every run ends ACCEPTED or FAILED(reason), within its iteration and time budget
"""

__version__ = "1.0.0"

from .cache import GenerationCache, LRUCache, VerificationCache, fingerprint_context
from .correction import CorrectionSynthesizer
from .errors import (
    ConfigError,
    GenerationError,
    GenerationFailed,
    GlobalTimeout,
    GovernanceError,
    GovernorCrash,
    GovernorError,
    GovernorTimeout,
    IterationLimitExceeded,
    NoProgress,
    RunTerminated,
    Stalled,
)
from .explain import IterationExplanation, RunExplanation, explain_history, explain_run
from .generators import BaseGenerator, ClaudeGenerator, GeneratorConfig, HttpGenerator, MockGenerator
from .governors import (
    ArchitectureGovernor,
    CallableGovernor,
    Governor,
    GovernorSpec,
    SecurityGovernor,
    StyleGovernor,
    TypeGovernor,
    get_default_governors,
)
from .main import (
    Artifact,
    ComplianceRecord,
    CorrectionDirective,
    FailureReason,
    GovernorStatus,
    IterationRecord,
    RunConfig,
    RunResult,
    RunState,
    Severity,
    Span,
    TerminalState,
    VerificationResult,
    Violation,
)
from .orchestrator import GovernanceOrchestrator, next_state
from .verification import ResultAggregator, verify_artifact

__all__ = [
    # Orchestration
    "GovernanceOrchestrator",
    "next_state",
    "RunConfig",
    # Verification
    "ResultAggregator",
    "verify_artifact",
    "CorrectionSynthesizer",
    # Governors
    "Governor",
    "GovernorSpec",
    "CallableGovernor",
    "ArchitectureGovernor",
    "TypeGovernor",
    "StyleGovernor",
    "SecurityGovernor",
    "get_default_governors",
    # Generators
    "BaseGenerator",
    "GeneratorConfig",
    "ClaudeGenerator",
    "HttpGenerator",
    "MockGenerator",
    # Cache
    "LRUCache",
    "VerificationCache",
    "GenerationCache",
    "fingerprint_context",
    # Types
    "Artifact",
    "Span",
    "Severity",
    "Violation",
    "GovernorStatus",
    "VerificationResult",
    "ComplianceRecord",
    "CorrectionDirective",
    "IterationRecord",
    "RunState",
    "FailureReason",
    "TerminalState",
    "RunResult",
    # Explanation
    "RunExplanation",
    "IterationExplanation",
    "explain_run",
    "explain_history",
    # Errors
    "GovernanceError",
    "ConfigError",
    "GovernorError",
    "GovernorTimeout",
    "GovernorCrash",
    "GenerationError",
    "RunTerminated",
    "NoProgress",
    "Stalled",
    "IterationLimitExceeded",
    "GlobalTimeout",
    "GenerationFailed",
    # Meta
    "__version__",
]
