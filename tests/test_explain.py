"""
Tests for run explanation export
"""

import pytest

from governance_engine import (
    FailureReason,
    GovernanceOrchestrator,
    MockGenerator,
    RunConfig,
    Severity,
    Violation,
    explain_history,
    explain_run,
)
from governance_engine.metrics import MetricsCollector


def verify(artifact):
    if "eval" in artifact.text:
        return [
            Violation("security", Severity.ERROR, "no eval", "security.eval"),
            Violation("security", Severity.WARNING, "shadowed name", "security.shadow"),
        ]
    return []


class TestExplainRun:
    """Tests for explanations of finished runs"""

    @pytest.fixture
    def orchestrator(self, tmp_path):
        orchestrator = GovernanceOrchestrator(
            generator=MockGenerator(["eval(x)\n", "int(x)\n"]),
            config=RunConfig(max_iterations=3),
            metrics=MetricsCollector(metrics_path=tmp_path),
        )
        orchestrator.register_callable("security", verify)
        orchestrator.register_callable("style", lambda a: [])
        return orchestrator

    @pytest.mark.asyncio
    async def test_accepted_run(self, orchestrator):
        """Should explain each iteration of an accepted run"""
        result = await orchestrator.run("parse x")
        explanation = explain_run(result)

        assert explanation.run_id == result.run_id
        assert explanation.first_passing_iteration == 2
        assert len(explanation.iterations) == 2

        first, second = explanation.iterations
        assert not first.passed
        assert first.violation_counts["error"] == 1
        assert first.violation_counts["warning"] == 1
        assert [f.governor_id for f in first.failing_governors] == ["security"]
        assert first.failing_governors[0].reasons == ("[error] security.eval: no eval",)
        assert second.passed
        assert second.directives_applied == ("security.eval", "security.shadow")
        assert explanation.score_trend == (first.score, second.score)

    @pytest.mark.asyncio
    async def test_to_dict_and_text(self, orchestrator):
        """Should export as a dict and as plain text"""
        result = await orchestrator.run("parse x")
        explanation = explain_run(result)

        data = explanation.to_dict()
        assert data["terminal_state"]["state"] == "accepted"
        assert data["iterations"][0]["failing_governors"][0]["status"] == "ok"

        text = explanation.render_text()
        assert "ACCEPTED" in text
        assert "first reached the threshold at iteration 2" in text
        assert "Iteration 1" in text and "FAIL" in text
        assert "security.eval: no eval" in text

    @pytest.mark.asyncio
    async def test_failed_run_never_reaches_threshold(self, tmp_path):
        """Should report a run that never reached the threshold"""
        orchestrator = GovernanceOrchestrator(
            generator=MockGenerator(["eval(a)\n", "eval(b)\n"]),
            metrics=MetricsCollector(metrics_path=tmp_path),
        )
        orchestrator.register_callable("security", verify)

        result = await orchestrator.run("parse x")
        explanation = explain_run(result)

        assert result.terminal_state.reason == FailureReason.STALLED
        assert explanation.first_passing_iteration is None
        assert "FAILED(stalled)" in explanation.render_text()
        assert "never reached the threshold" in explanation.render_text()

    @pytest.mark.asyncio
    async def test_crashed_governor_reason(self, tmp_path):
        """Should use the crash message as the failure reason"""
        def crash(artifact):
            raise RuntimeError("boom")

        orchestrator = GovernanceOrchestrator(
            generator=MockGenerator(["x\n"]),
            config=RunConfig(max_iterations=1),
            metrics=MetricsCollector(metrics_path=tmp_path),
        )
        orchestrator.register_callable("broken", crash)

        result = await orchestrator.run("write x")
        failure = explain_run(result).iterations[0].failing_governors[0]

        assert failure.status == "crashed"
        assert "boom" in failure.reasons[0]

    @pytest.mark.asyncio
    async def test_history_only(self, orchestrator):
        """Should explain a bare history without a terminal state"""
        result = await orchestrator.run("parse x")
        explanation = explain_history(result.history)

        assert explanation.terminal_state is None
        assert explanation.run_id is None
        assert explanation.first_passing_iteration == 2
        assert explanation.render_text().startswith("Run")

    @pytest.mark.asyncio
    async def test_threshold_met_but_blocked(self, tmp_path):
        """Should report the threshold crossing separately from the blocking gate"""
        def leak(artifact):
            return [Violation("secrets", Severity.BLOCKING, "hard-coded key", "secrets.key")]

        orchestrator = GovernanceOrchestrator(
            generator=MockGenerator(["key = 1\n"]),
            config=RunConfig(max_iterations=1, score_threshold=0.5),
            metrics=MetricsCollector(metrics_path=tmp_path),
        )
        orchestrator.register_callable("style", lambda a: [])
        orchestrator.register_callable("secrets", leak)

        explanation = explain_run(await orchestrator.run("write a key"))

        assert explanation.iterations[0].score == 0.5
        assert explanation.iterations[0].threshold == 0.5
        assert explanation.first_threshold_iteration == 1
        assert explanation.first_passing_iteration is None
        assert explanation.to_dict()["first_threshold_iteration"] == 1
        text = explanation.render_text()
        assert "first reached the threshold at iteration 1" in text
        assert "No iteration passed the blocking gate" in text

    def test_empty_history(self):
        """Should explain an empty history"""
        explanation = explain_history(())
        assert explanation.iterations == ()
        assert explanation.first_passing_iteration is None
