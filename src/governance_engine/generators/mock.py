"""
Mock Generator for Testing

A scripted generator for exercising the orchestration loop without real
text-generation services.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..errors import GenerationError
from ..main import Artifact
from .base import BaseGenerator, GeneratorConfig

logger = logging.getLogger(__name__)

Responder = Callable[[str, Dict[str, Any]], Any]


class MockGenerator(BaseGenerator):
    """
    Mock generator.

    Returns scripted responses in order (the last one repeats), or delegates
    to a responder callable. Per-call latencies and failures are scriptable
    so timeout and retry behavior can be driven deterministically.
    """

    def __init__(
        self,
        responses: Union[Sequence[str], Responder, None] = None,
        latencies_ms: Optional[Sequence[int]] = None,
        failures: Optional[Sequence[int]] = None,
        config: Optional[GeneratorConfig] = None,
    ):
        super().__init__(config or GeneratorConfig(
            name="mock",
            provider="mock",
            model="mock",
        ))
        if callable(responses):
            self._responder: Optional[Responder] = responses
            self._responses: List[str] = []
        else:
            self._responder = None
            self._responses = list(responses or ["pass\n"])
        self.latencies_ms = list(latencies_ms or [])
        self.failures = set(failures or [])  # 1-based call numbers that raise
        self.calls: List[Dict[str, Any]] = []

    async def initialize(self) -> None:
        """Initialize mock generator"""
        self._is_running = True
        logger.info("Mock generator initialized")

    async def generate(
        self,
        prompt: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Artifact:
        """Return the next scripted response"""
        self._track_call()
        call_number = self._calls
        context = context or {}
        self.calls.append({"prompt": prompt, "context": context})

        latency = self._latency_for(call_number)
        if latency:
            await asyncio.sleep(latency / 1000)

        if call_number in self.failures:
            raise GenerationError(f"Simulated generation failure on call {call_number}")

        if self._responder is not None:
            text = self._responder(prompt, context)
            if inspect.isawaitable(text):
                text = await text
        else:
            index = min(call_number - 1, len(self._responses) - 1)
            text = self._responses[index]

        return self._artifact(text, call=call_number)

    async def health_check(self) -> Dict[str, Any]:
        """Mock health check"""
        return {
            "status": "healthy",
            "provider": "mock",
            "calls": self._calls,
        }

    @property
    def call_count(self) -> int:
        return self._calls

    def _latency_for(self, call_number: int) -> int:
        if not self.latencies_ms:
            return 0
        index = min(call_number - 1, len(self.latencies_ms) - 1)
        return self.latencies_ms[index]
