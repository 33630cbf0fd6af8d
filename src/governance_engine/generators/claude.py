"""
Claude Generator

Generation collaborator backed by the Anthropic Messages API.
"""

import logging
import os
import time
from typing import Any, Dict, Optional

from ..errors import GenerationError
from ..main import Artifact
from .base import BaseGenerator, GeneratorConfig

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE = """You are a code generation worker inside a verify-and-correct loop.
Every candidate you produce is checked by independent governors
(architecture, type, style, security) before it is accepted.

CRITICAL RULES:
1. Produce the complete source file, never a diff or a fragment
2. When corrections are listed, apply every one of them
3. Do not reintroduce problems that earlier corrections removed
4. Keep compliant code unchanged
5. Return the source in exactly one fenced code block"""


class ClaudeGenerator(BaseGenerator):
    """
    Generator using Claude models.

    The correction directives in the context are rendered into the user
    message; the fenced code block of the reply becomes the artifact.
    """

    def __init__(self, config: Optional[GeneratorConfig] = None):
        super().__init__(config or GeneratorConfig(
            name="claude",
            provider="anthropic",
            model=os.getenv("GOV_CLAUDE_MODEL", "claude-3-5-sonnet-20241022"),
        ))
        self._client = None

    async def initialize(self) -> None:
        """Initialize the Claude client"""
        from anthropic import AsyncAnthropic

        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise GenerationError(
                "ANTHROPIC_API_KEY environment variable is required",
                retriable=False,
            )

        self._client = AsyncAnthropic(
            api_key=api_key,
            timeout=self.config.timeout_ms / 1000,
        )
        self._is_running = True
        logger.info(f"Claude generator initialized with model: {self.config.model}")

    async def generate(
        self,
        prompt: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Artifact:
        """Generate a candidate with Claude"""
        if not self._client:
            await self.initialize()

        self._track_call()
        start = time.monotonic()
        full_prompt = self._build_prompt(prompt, context)

        try:
            response = await self._client.messages.create(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                system=SYSTEM_MESSAGE,
                messages=[{"role": "user", "content": full_prompt}],
            )
        except Exception as e:
            logger.error(f"Claude generation error: {e}")
            raise GenerationError(f"Claude request failed: {e}") from e

        output = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not output.strip():
            raise GenerationError("Claude returned an empty response")

        return self._artifact(
            self._extract_source(output),
            model=self.config.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    async def health_check(self) -> Dict[str, Any]:
        """Check Claude API health"""
        try:
            if not self._client:
                await self.initialize()

            start = time.monotonic()
            await self._client.messages.create(
                model=self.config.model,
                max_tokens=10,
                messages=[{"role": "user", "content": "ping"}],
            )

            return {
                "status": "healthy",
                "provider": "anthropic",
                "model": self.config.model,
                "latency_ms": int((time.monotonic() - start) * 1000),
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "provider": "anthropic",
                "error": str(e),
            }
