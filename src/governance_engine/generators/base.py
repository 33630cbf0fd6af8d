"""
Base Generator Interface

All generation collaborators must implement this interface. The engine
treats generation as an opaque, fallible call:
prompt + context -> Artifact, or GenerationError.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..main import Artifact

logger = logging.getLogger(__name__)

CODE_BLOCK = re.compile(r"```[\w+-]*\n(.*?)```", re.DOTALL)


@dataclass
class GeneratorConfig:
    """Configuration for a generator"""
    name: str
    timeout_ms: int = 120000  # 2 minutes
    provider: str = "claude"
    model: str = "claude-3-5-sonnet-20241022"
    temperature: float = 0.2
    max_tokens: int = 4096
    metadata: Dict[str, Any] = field(default_factory=dict)


class BaseGenerator(ABC):
    """
    Base class for all generation collaborators.

    Each generator connects to a specific text-generation backend
    (Claude, an HTTP service, a scripted mock) and exposes generate().
    """

    def __init__(self, config: Optional[GeneratorConfig] = None):
        self.config = config or GeneratorConfig(name="base")
        self._is_running = False
        self._calls = 0
        self._last_call_at: Optional[datetime] = None

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the generator (connect to services, load models, etc.)"""
        pass

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Artifact:
        """
        Produce a candidate artifact.

        Args:
            prompt: The task prompt
            context: Caller context; during correction rounds it also carries
                "directives", "previous_artifact", "previous_fingerprint"
                and "iteration"

        Returns:
            The generated Artifact

        Raises:
            GenerationError: if no artifact could be produced
        """
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Check generator health and connectivity"""
        pass

    async def shutdown(self) -> None:
        """Clean up resources"""
        self._is_running = False
        logger.info(f"Generator {self.name} shut down")

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def _build_prompt(
        self,
        prompt: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Build the full prompt, rendering correction directives if present"""
        context = context or {}
        parts = [f"# Task\n{prompt}"]

        extra = {
            k: v for k, v in context.items()
            if k not in ("directives", "previous_artifact", "previous_fingerprint", "iteration")
        }
        if extra:
            parts.append("\n## Context:")
            for key in sorted(extra):
                parts.append(f"- {key}: {extra[key]}")

        previous = context.get("previous_artifact")
        if previous:
            parts.append(f"\n## Previous Attempt (iteration {context.get('iteration', '?')}):")
            parts.append(f"```\n{previous}\n```")

        directives: List[Dict[str, Any]] = context.get("directives") or []
        if directives:
            parts.append("\n## Required Corrections (highest priority first):")
            for i, directive in enumerate(directives, start=1):
                parts.append(f"{i}. (priority {directive.get('priority', 0)}) "
                             f"{directive.get('instruction_text', '')}")
            parts.append(
                "\nApply every correction above. Keep everything that already "
                "complies unchanged."
            )

        parts.append("\nReturn the complete source in a single fenced code block.")
        return "\n".join(parts)

    @staticmethod
    def _extract_source(output: str) -> str:
        """Pull the source out of a fenced block, or use the raw output"""
        match = CODE_BLOCK.search(output)
        if match:
            return match.group(1)
        return output

    def _track_call(self) -> None:
        self._calls += 1
        self._last_call_at = datetime.now()

    def _artifact(self, text: str, **metadata: Any) -> Artifact:
        return Artifact.from_text(text, generator=self.name, **metadata)
