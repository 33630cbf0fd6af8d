"""
Tests for generation collaborators
"""

import json

import httpx
import pytest

from governance_engine import (
    GenerationError,
    GeneratorConfig,
    HttpGenerator,
    MockGenerator,
)
from governance_engine.generators import ClaudeGenerator


class TestPromptBuilding:
    """Tests for the shared prompt renderer"""

    def test_renders_directives_and_previous_attempt(self):
        """Should render context, previous attempt and directives into the prompt"""
        generator = MockGenerator()
        prompt = generator._build_prompt("Write a parser", {
            "lang": "python",
            "previous_artifact": "eval(x)",
            "previous_fingerprint": "abc",
            "iteration": 2,
            "directives": [
                {"priority": 3, "instruction_text": "Remove eval"},
                {"priority": 1, "instruction_text": "Add annotations"},
            ],
        })

        assert prompt.startswith("# Task\nWrite a parser")
        assert "- lang: python" in prompt
        assert "eval(x)" in prompt
        assert "1. (priority 3) Remove eval" in prompt
        assert "2. (priority 1) Add annotations" in prompt
        assert "previous_fingerprint" not in prompt

    def test_extracts_fenced_source(self):
        """Should take the fenced block when there is one"""
        output = "Here you go:\n```python\nx = 1\n```\nDone."
        assert MockGenerator._extract_source(output) == "x = 1\n"
        assert MockGenerator._extract_source("x = 2") == "x = 2"


class TestMockGenerator:
    """Tests for the scripted generator"""

    @pytest.mark.asyncio
    async def test_scripted_responses_repeat_last(self):
        """Should repeat the last scripted response"""
        generator = MockGenerator(["a", "b"])
        texts = [(await generator.generate("p")).text for _ in range(3)]
        assert texts == ["a", "b", "b"]
        assert generator.call_count == 3

    @pytest.mark.asyncio
    async def test_responder_callable(self):
        """Should build the response from a callable"""
        generator = MockGenerator(lambda prompt, context: f"{prompt}:{context.get('n')}")
        artifact = await generator.generate("p", {"n": 7})
        assert artifact.text == "p:7"
        assert artifact.metadata["generator"] == "mock"

    @pytest.mark.asyncio
    async def test_scripted_failure(self):
        """Should fail only on the scripted call"""
        generator = MockGenerator(["a"], failures=[2])
        await generator.generate("p")
        with pytest.raises(GenerationError):
            await generator.generate("p")
        assert (await generator.generate("p")).text == "a"


class TestHttpGenerator:
    """Tests for the HTTP generation service client"""

    @pytest.mark.asyncio
    async def test_generate(self):
        """Should post the prompt and return the extracted source"""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, json={"text": "```\nx = 1\n```", "job_id": "job-1"})

        generator = HttpGenerator(
            service_url="http://gen.test",
            transport=httpx.MockTransport(handler),
        )
        artifact = await generator.generate("write x", {"lang": "py"})

        assert artifact.text == "x = 1\n"
        assert artifact.metadata["job_id"] == "job-1"
        assert seen["url"] == "http://gen.test/generate"
        assert seen["payload"]["context"] == {"lang": "py"}
        assert "# Task" in seen["payload"]["rendered_prompt"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,retriable", [(503, True), (400, False)])
    async def test_http_errors(self, status, retriable):
        """Should mark server errors retriable and client errors not"""
        generator = HttpGenerator(
            service_url="http://gen.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(status)),
        )
        with pytest.raises(GenerationError) as exc_info:
            await generator.generate("write x")
        assert exc_info.value.retriable is retriable

    @pytest.mark.asyncio
    async def test_missing_text(self):
        """Should reject a response without text"""
        generator = HttpGenerator(
            service_url="http://gen.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"status": "ok"})),
        )
        with pytest.raises(GenerationError) as exc_info:
            await generator.generate("write x")
        assert not exc_info.value.retriable

    @pytest.mark.asyncio
    async def test_health_check(self):
        """Should report healthy when the service answers"""
        generator = HttpGenerator(
            service_url="http://gen.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"status": "ok"})),
        )
        health = await generator.health_check()
        assert health["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_service_url_from_env(self, monkeypatch):
        """Should read the service URL from the environment"""
        monkeypatch.setenv("GOV_GENERATOR_URL", "http://env.test")
        generator = HttpGenerator(config=GeneratorConfig(name="http", provider="http"))
        await generator.initialize()
        assert generator._service_url == "http://env.test"


class TestClaudeGenerator:
    @pytest.mark.asyncio
    async def test_requires_api_key(self, monkeypatch):
        """Should fail permanently without an API key"""
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(GenerationError) as exc_info:
            await ClaudeGenerator().initialize()
        assert not exc_info.value.retriable
