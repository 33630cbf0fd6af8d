"""
Base Output Formatter
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Sequence

from ..explain import RunExplanation
from ..main import Artifact, ComplianceRecord, CorrectionDirective, RunResult


class OutputLevel(Enum):
    """Output verbosity levels"""
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2
    DEBUG = 3


class BaseFormatter(ABC):
    """Base class for output formatters"""

    def __init__(self, level: OutputLevel = OutputLevel.NORMAL):
        self.level = level

    def at_least(self, level: OutputLevel) -> bool:
        return self.level.value >= level.value

    @abstractmethod
    def run_started(self, run_id: str, prompt: str) -> None:
        """Format run started message"""
        pass

    @abstractmethod
    def iteration(self, run_id: str, index: int, artifact: Artifact, record: ComplianceRecord) -> None:
        """Format one verification pass"""
        pass

    @abstractmethod
    def correcting(self, run_id: str, directives: Sequence[CorrectionDirective]) -> None:
        """Format directives issued for the next round"""
        pass

    @abstractmethod
    def run_finished(self, result: RunResult) -> None:
        """Format the terminal state"""
        pass

    @abstractmethod
    def compliance(self, record: ComplianceRecord) -> None:
        """Format a standalone compliance record"""
        pass

    @abstractmethod
    def explanation(self, explanation: RunExplanation) -> None:
        """Format a run explanation"""
        pass

    @abstractmethod
    def summary(self, stats: Dict[str, Any]) -> None:
        """Format summary statistics"""
        pass
