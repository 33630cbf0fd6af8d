"""
Tests for correction directive synthesis
"""

import pytest

from governance_engine import (
    Artifact,
    ComplianceRecord,
    CorrectionDirective,
    CorrectionSynthesizer,
    IterationRecord,
    Severity,
    VerificationResult,
    Violation,
)
from governance_engine.correction import MAX_LOCATIONS_PER_DIRECTIVE
from governance_engine.main import Span


def make_record(text, *violations, passed=False, score=0.5):
    """ComplianceRecord for an artifact with the given violations"""
    artifact = Artifact.from_text(text)
    by_governor = {}
    for v in violations:
        by_governor.setdefault(v.governor_id, []).append(v)
    results = {
        gid: VerificationResult(gid, artifact.fingerprint, tuple(vs))
        for gid, vs in by_governor.items()
    }
    record = ComplianceRecord(
        artifact_fingerprint=artifact.fingerprint,
        per_governor_results=results,
        score=score,
        passed=passed,
        threshold=0.9,
    )
    return artifact, record


def v(governor, rule, severity=Severity.ERROR, line=None):
    return Violation(governor, severity, f"{rule} broken", rule, Span(line) if line else None)


def directive_for(*refs, priority=2):
    return CorrectionDirective(violation_refs=frozenset(refs), instruction_text="fix", priority=priority)


class TestOrdering:
    """Tests for deterministic directive ordering"""

    @pytest.fixture
    def synthesizer(self):
        return CorrectionSynthesizer(max_directives=5)

    def test_passed_record_yields_nothing(self, synthesizer):
        """Should issue no directives for a passing record"""
        _, record = make_record("ok", passed=True, score=1.0)
        assert synthesizer.synthesize(record) == ()

    def test_blocking_then_weight_then_rule_id(self, synthesizer):
        """Should order blocking first, then heavier governors, then rule_id"""
        _, record = make_record(
            "code",
            v("style", "style.b"),
            v("style", "style.a"),
            v("security", "security.secret", Severity.BLOCKING),
            v("type", "type.z"),
        )
        weights = {"style": 1.0, "security": 1.0, "type": 3.0}

        directives = synthesizer.synthesize(record, weights=weights)

        assert [d.rule_ids for d in directives] == [
            ("security.secret",),
            ("type.z",),
            ("style.a",),
            ("style.b",),
        ]
        assert directives[0].blocking
        assert directives[0].priority == 3
        assert directives[1].priority == 2

    def test_deterministic(self, synthesizer):
        """Should produce the same sequence for the same record and history"""
        _, record = make_record(
            "code",
            v("b", "r2"), v("a", "r1"), v("c", "r3", Severity.WARNING), v("a", "r0", Severity.BLOCKING),
        )
        first = synthesizer.synthesize(record, weights={"a": 1.0, "b": 2.0})
        for _ in range(5):
            assert synthesizer.synthesize(record, weights={"a": 1.0, "b": 2.0}) == first

    def test_capped(self):
        """Should issue no more than max_directives per iteration"""
        synthesizer = CorrectionSynthesizer(max_directives=2)
        _, record = make_record("code", v("g", "r1"), v("g", "r2"), v("g", "r3"))

        directives = synthesizer.synthesize(record)

        assert len(directives) == 2
        assert [d.rule_ids for d in directives] == [("r1",), ("r2",)]

    def test_info_is_not_actionable(self, synthesizer):
        """Should ignore info findings"""
        _, record = make_record("code", v("style", "style.ws", Severity.INFO))
        assert synthesizer.synthesize(record) == ()

    def test_one_directive_per_rule_across_governors(self, synthesizer):
        """Should merge one rule reported by several governors"""
        _, record = make_record(
            "code",
            v("lint", "no-eval", line=3),
            v("security", "no-eval", line=3),
            v("security", "no-eval", line=9),
        )
        directives = synthesizer.synthesize(record)

        assert len(directives) == 1
        assert directives[0].violation_refs == frozenset({("lint", "no-eval"), ("security", "no-eval")})
        assert "line 9" in directives[0].instruction_text
        assert "lint, security" in directives[0].instruction_text

    def test_instruction_truncates_locations(self, synthesizer):
        """Should list only the first few locations in the instruction"""
        violations = [v("g", "r", line=i) for i in range(1, MAX_LOCATIONS_PER_DIRECTIVE + 4)]
        _, record = make_record("code", *violations)

        text = synthesizer.synthesize(record)[0].instruction_text
        assert "and 3 more occurrence(s)" in text

    def test_invalid_cap(self):
        """Should reject a cap below one"""
        with pytest.raises(ValueError):
            CorrectionSynthesizer(max_directives=0)


class TestHistory:
    """Tests for de-duplication and regression against the run history"""

    @pytest.fixture
    def synthesizer(self):
        return CorrectionSynthesizer()

    def test_persistent_violation_not_reissued(self, synthesizer):
        """Should drop an applied directive while its violation was never fixed"""
        a1, r1 = make_record("v1", v("g", "X"))
        a2, r2 = make_record("v2", v("g", "X"), v("g", "Y"), score=0.4)
        history = [
            IterationRecord(1, a1, r1),
            IterationRecord(2, a2, r2, (directive_for(("g", "X")),)),
        ]

        directives = synthesizer.synthesize(r2, history)

        assert [d.rule_ids for d in directives] == [("Y",)]
        assert not directives[0].repeat

    def test_only_persistent_violations_yield_nothing(self, synthesizer):
        """Should not repeat directives for violations that never went away"""
        a1, r1 = make_record("v1", v("g", "X"))
        a2, r2 = make_record("v2", v("g", "X"), score=0.4)
        history = [
            IterationRecord(1, a1, r1),
            IterationRecord(2, a2, r2, (directive_for(("g", "X")),)),
        ]
        assert synthesizer.synthesize(r2, history) == ()

    def test_regression_is_reissued_with_escalation(self, synthesizer):
        """Should re-issue a violation that was fixed and came back as a repeat"""
        a1, r1 = make_record("v1", v("g", "X"))
        a2, r2 = make_record("v2", v("g", "Y"), score=0.6)
        a3, r3 = make_record("v3", v("g", "X"), score=0.55)
        history = [
            IterationRecord(1, a1, r1),
            IterationRecord(2, a2, r2, (directive_for(("g", "X")),)),
            IterationRecord(3, a3, r3, (directive_for(("g", "Y")),)),
        ]

        directives = synthesizer.synthesize(r3, history)

        assert len(directives) == 1
        directive = directives[0]
        assert directive.repeat
        assert directive.priority == 3  # error base 2, issued once before
        assert directive.instruction_text.startswith("REPEAT")

    def test_new_violation_not_deduplicated(self, synthesizer):
        """Should direct a violation that was never directed before"""
        a1, r1 = make_record("v1", v("g", "X"))
        history = [IterationRecord(1, a1, r1)]
        directives = synthesizer.synthesize(r1, history)
        assert [d.rule_ids for d in directives] == [("X",)]
