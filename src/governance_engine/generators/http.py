"""
HTTP Generator

Generation collaborator reached over HTTP. The service receives the prompt,
the context and the rendered prompt and answers with the generated source.
"""

import logging
import os
from typing import Any, Dict, Optional

import httpx

from ..errors import GenerationError
from ..main import Artifact
from .base import BaseGenerator, GeneratorConfig

logger = logging.getLogger(__name__)


class HttpGenerator(BaseGenerator):
    """
    Generator for an HTTP generation service.

    Expects POST {service_url}/generate to return JSON with a "text" (or
    "output") field. 5xx responses and transport errors are retriable,
    4xx responses are not.
    """

    def __init__(
        self,
        service_url: Optional[str] = None,
        config: Optional[GeneratorConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config or GeneratorConfig(
            name="http",
            provider="http",
        ))
        self._service_url = service_url
        self._transport = transport

    async def initialize(self) -> None:
        """Resolve the service URL"""
        if not self._service_url:
            self._service_url = os.getenv(
                "GOV_GENERATOR_URL",
                "http://localhost:8082"
            )
        self._is_running = True
        logger.info(f"HTTP generator initialized with service: {self._service_url}")

    async def generate(
        self,
        prompt: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Artifact:
        """Request a candidate from the generation service"""
        if not self._service_url:
            await self.initialize()

        self._track_call()
        payload = {
            "prompt": prompt,
            "context": context or {},
            "rendered_prompt": self._build_prompt(prompt, context),
            "config": {
                "model": self.config.model,
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
            },
        }

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self._service_url}/generate",
                    json=payload,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Generation service returned {status}")
            raise GenerationError(
                f"Generation service returned {status}",
                retriable=status >= 500,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Generation service error: {e}")
            raise GenerationError(f"Generation service error: {e}") from e

        text = data.get("text", data.get("output"))
        if not isinstance(text, str):
            raise GenerationError("Generation service response has no text", retriable=False)

        return self._artifact(
            self._extract_source(text),
            service_url=self._service_url,
            job_id=data.get("job_id"),
        )

    async def health_check(self) -> Dict[str, Any]:
        """Check generation service health"""
        if not self._service_url:
            await self.initialize()

        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get(f"{self._service_url}/health")
                health_data = response.json()

                return {
                    "status": "healthy" if health_data.get("status") == "ok" else "unhealthy",
                    "provider": "http",
                    "service_url": self._service_url,
                    "service_status": health_data,
                }
        except Exception as e:
            return {
                "status": "unhealthy",
                "provider": "http",
                "error": str(e),
            }

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout if timeout is not None else self.config.timeout_ms / 1000,
            transport=self._transport,
        )
