"""
Tests for the data model and run configuration
"""

import pytest

from governance_engine import (
    Artifact,
    ComplianceRecord,
    ConfigError,
    CorrectionDirective,
    FailureReason,
    GovernorStatus,
    RunConfig,
    RunState,
    Severity,
    Span,
    TerminalState,
    VerificationResult,
    Violation,
)
from governance_engine.main import fingerprint_text


class TestArtifact:
    """Tests for Artifact identity"""

    def test_fingerprint_is_content_hash(self):
        """Should derive the fingerprint from the text"""
        artifact = Artifact.from_text("x = 1\n")
        assert artifact.fingerprint == fingerprint_text("x = 1\n")
        assert len(artifact.short_id) == 12

    def test_identical_text_is_equal(self):
        """Should treat byte-identical artifacts as interchangeable"""
        a = Artifact.from_text("x = 1\n", generator="one")
        b = Artifact.from_text("x = 1\n", generator="two")
        assert a == b
        assert hash(a) == hash(b)

    def test_different_text_differs(self):
        """Should fingerprint different text differently"""
        assert Artifact.from_text("a").fingerprint != Artifact.from_text("b").fingerprint

    def test_rejects_mismatched_fingerprint(self):
        """Should refuse a fingerprint that does not match the text"""
        with pytest.raises(ValueError):
            Artifact(text="x = 1", fingerprint="deadbeef")

    def test_is_immutable(self):
        """Should not allow fields to change"""
        artifact = Artifact.from_text("x = 1")
        with pytest.raises(AttributeError):
            artifact.text = "y = 2"


class TestSeverity:
    """Tests for severity ordering"""

    def test_ordering(self):
        """Should order severities from info to blocking"""
        assert Severity.INFO < Severity.WARNING < Severity.ERROR < Severity.BLOCKING
        assert Severity.BLOCKING >= Severity.ERROR
        assert max([Severity.WARNING, Severity.BLOCKING, Severity.INFO], key=lambda s: s.rank) == Severity.BLOCKING


class TestVerificationResult:
    """Tests for VerificationResult cleanliness"""

    def _result(self, *severities, status=GovernorStatus.OK):
        return VerificationResult(
            governor_id="g",
            artifact_fingerprint="fp",
            violations=tuple(
                Violation("g", s, "msg", f"rule-{i}") for i, s in enumerate(severities)
            ),
            status=status,
        )

    def test_clean_with_only_warnings(self):
        """Should count warnings and infos as clean"""
        result = self._result(Severity.WARNING, Severity.INFO)
        assert result.is_clean
        assert result.count(Severity.WARNING) == 1

    def test_error_is_not_clean(self):
        """Should not count a result with errors as clean"""
        assert not self._result(Severity.ERROR).is_clean

    def test_blocking_detected(self):
        """Should detect a blocking violation"""
        result = self._result(Severity.BLOCKING)
        assert result.has_blocking
        assert not result.is_clean

    def test_timeout_and_crash_are_not_clean(self):
        """Should never treat a failed governor as clean"""
        assert not self._result(status=GovernorStatus.TIMEOUT).is_clean
        assert not self._result(status=GovernorStatus.CRASHED).is_clean

    def test_to_dict(self):
        """Should serialize status and violations"""
        data = self._result(Severity.ERROR).to_dict()
        assert data["status"] == "ok"
        assert data["violations"][0]["severity"] == "error"


class TestComplianceRecord:
    """Tests for derived views on ComplianceRecord"""

    def test_violation_refs_and_failing_governors(self):
        """Should collect violation refs and failing governors"""
        clean = VerificationResult("a", "fp")
        dirty = VerificationResult(
            "b", "fp",
            violations=(
                Violation("b", Severity.ERROR, "bad", "b.rule", Span(3)),
                Violation("b", Severity.WARNING, "meh", "b.other"),
            ),
        )
        record = ComplianceRecord(
            artifact_fingerprint="fp",
            per_governor_results={"a": clean, "b": dirty},
            score=0.45,
            passed=False,
            threshold=0.9,
        )

        assert record.violation_refs == frozenset({("b", "b.rule"), ("b", "b.other")})
        assert record.failing_governors == ("b",)
        assert record.blocking_violations == ()
        assert record.to_dict()["per_governor_results"]["b"]["violations"][0]["location"]["start_line"] == 3


class TestTerminalState:
    """Tests for terminal states"""

    def test_accepted(self):
        """Should render an accepted state"""
        state = TerminalState(RunState.ACCEPTED)
        assert state.accepted
        assert str(state) == "ACCEPTED"

    def test_failed_with_reason(self):
        """Should render a failed state with its reason"""
        state = TerminalState(RunState.FAILED, FailureReason.STALLED, "same findings")
        assert not state.accepted
        assert str(state) == "FAILED(stalled)"
        assert state.to_dict() == {"state": "failed", "reason": "stalled", "detail": "same findings"}


class TestCorrectionDirective:
    def test_rule_ids_sorted_and_unique(self):
        """Should sort and de-duplicate rule ids"""
        directive = CorrectionDirective(
            violation_refs=frozenset({("b", "r2"), ("a", "r1"), ("c", "r1")}),
            instruction_text="fix",
            priority=2,
        )
        assert directive.rule_ids == ("r1", "r2")


class TestRunConfig:
    """Tests for configuration loading and validation"""

    def test_defaults(self):
        """Should use documented defaults"""
        config = RunConfig()
        assert config.max_iterations == 5
        assert config.score_threshold == 0.9
        assert config.max_directives_per_iteration == 5
        assert config.warning_penalty == 0.05
        assert config.generation_retries == 0
        assert config.validate() is config

    @pytest.mark.parametrize("overrides", [
        {"max_iterations": 0},
        {"score_threshold": 1.5},
        {"warning_penalty": -0.1},
        {"per_governor_timeout_ms": 0},
        {"global_timeout_ms": -1},
        {"max_directives_per_iteration": 0},
        {"cache_capacity": -1},
        {"governor_weights": {"style": -1.0}},
        {"governor_weights": ["style", 1.0]},
        {"governor_weights": {"style": "heavy"}},
    ])
    def test_invalid_values_rejected(self, overrides):
        """Should raise ConfigError on out-of-range values"""
        with pytest.raises(ConfigError):
            RunConfig(**overrides).validate()

    def test_merged_ignores_none_and_rejects_unknown(self):
        """Should skip None overrides and reject unknown keys"""
        config = RunConfig().merged(max_iterations=3, score_threshold=None)
        assert config.max_iterations == 3
        assert config.score_threshold == 0.9

        with pytest.raises(ConfigError):
            RunConfig().merged(not_a_field=1)

    def test_from_yaml(self, tmp_path):
        """Should load settings from a YAML file"""
        path = tmp_path / "config.yml"
        path.write_text(
            "max_iterations: 7\n"
            "score_threshold: 0.8\n"
            "governor_weights:\n"
            "  security: 2.0\n"
        )
        config = RunConfig.from_yaml(str(path))
        assert config.max_iterations == 7
        assert config.score_threshold == 0.8
        assert config.governor_weights == {"security": 2.0}

    def test_from_yaml_requires_mapping(self, tmp_path):
        """Should reject a YAML file that is not a mapping"""
        path = tmp_path / "config.yml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            RunConfig.from_yaml(str(path))

    def test_from_env(self, monkeypatch):
        """Should read GOV_* environment variables"""
        monkeypatch.setenv("GOV_MAX_ITERATIONS", "3")
        monkeypatch.setenv("GOV_SCORE_THRESHOLD", "0.75")
        monkeypatch.setenv("GOV_CACHE_CAPACITY", "16")
        config = RunConfig.from_env()
        assert config.max_iterations == 3
        assert config.score_threshold == 0.75
        assert config.cache_capacity == 16

    def test_from_env_invalid(self, monkeypatch):
        """Should raise ConfigError on a malformed variable"""
        monkeypatch.setenv("GOV_MAX_ITERATIONS", "many")
        with pytest.raises(ConfigError):
            RunConfig.from_env()

    def test_round_trip_dict(self):
        """Should rebuild the same config from its dict"""
        config = RunConfig(max_iterations=2, governor_weights={"type": 0.5})
        assert RunConfig.from_dict(config.to_dict()) == config
