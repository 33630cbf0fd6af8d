"""
Exception taxonomy for the governance engine.

Governor failures are absorbed by the aggregator; run termination errors are
raised inside the loop and converted to a FAILED terminal state by run().
"""

from typing import Optional


class GovernanceError(Exception):
    """Base exception for governance engine errors"""
    pass


class ConfigError(GovernanceError):
    """Invalid run or engine configuration"""
    pass


class GovernorError(GovernanceError):
    """Base class for failures inside a single governor"""

    def __init__(self, governor_id: str, message: str = ""):
        self.governor_id = governor_id
        super().__init__(message or f"Governor {governor_id} failed")


class GovernorTimeout(GovernorError):
    """Governor did not finish within its timeout"""
    pass


class GovernorCrash(GovernorError):
    """Governor raised or returned something unusable"""
    pass


class GenerationError(GovernanceError):
    """The generation collaborator failed to produce an artifact"""

    def __init__(self, message: str, retriable: bool = True):
        self.retriable = retriable
        super().__init__(message)


class RunTerminated(GovernanceError):
    """Raised inside the loop to end a run in a FAILED state"""

    reason: Optional[str] = None

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(detail or self.reason)


class NoProgress(RunTerminated):
    """Correction produced nothing actionable"""
    reason = "no-progress"


class Stalled(RunTerminated):
    """Two consecutive compliance records were indistinguishable"""
    reason = "stalled"


class IterationLimitExceeded(RunTerminated):
    """Iteration budget used up without acceptance"""
    reason = "iteration-limit"


class GlobalTimeout(RunTerminated):
    """Run wall-clock budget exceeded"""
    reason = "timeout"


class GenerationFailed(RunTerminated):
    """Generation failed and retries (if any) were exhausted"""
    reason = "generation-error"
