"""
Tests for the governor contract and the built-in governors
"""

import pytest

from governance_engine import (
    Artifact,
    ArchitectureGovernor,
    CallableGovernor,
    GovernorCrash,
    GovernorSpec,
    SecurityGovernor,
    Severity,
    StyleGovernor,
    TypeGovernor,
    VerificationResult,
    Violation,
    get_default_governors,
)
from governance_engine.governors import ImportRule, PatternRule


def rule_ids(result: VerificationResult):
    return sorted(v.rule_id for v in result.violations)


class TestGovernorSpec:
    def test_rejects_empty_name(self):
        """Should reject an empty governor name"""
        with pytest.raises(ValueError):
            GovernorSpec(name="")

    def test_rejects_negative_weight(self):
        """Should reject a negative weight"""
        with pytest.raises(ValueError):
            GovernorSpec(name="g", weight=-1)

    def test_blocking_rule_ids_frozen(self):
        """Should freeze the declared blocking rules"""
        spec = GovernorSpec(name="g", blocking_rule_ids={"r"})
        assert spec.blocking_rule_ids == frozenset({"r"})


class TestSecurityGovernor:
    """Tests for security patterns"""

    @pytest.fixture
    def governor(self):
        return SecurityGovernor()

    @pytest.mark.asyncio
    async def test_detects_hardcoded_secret(self, governor):
        """Should report a hardcoded secret as blocking"""
        artifact = Artifact.from_text('API_KEY = "sk-12345"\n')
        result = await governor.verify(artifact)

        assert rule_ids(result) == ["security.hardcoded-secret"]
        assert result.has_blocking
        assert result.violations[0].location.start_line == 1

    @pytest.mark.asyncio
    async def test_detects_dynamic_exec(self, governor):
        """Should flag eval and exec calls"""
        result = await governor.verify(Artifact.from_text("value = eval(user_input)\n"))
        assert rule_ids(result) == ["security.dynamic-exec"]
        assert result.violations[0].severity == Severity.ERROR

    @pytest.mark.asyncio
    async def test_detects_sql_interpolation(self, governor):
        """Should flag SQL built with string interpolation"""
        result = await governor.verify(
            Artifact.from_text('cursor.execute(f"SELECT * FROM users WHERE id = {uid}")\n')
        )
        assert "security.sql-injection" in rule_ids(result)

    @pytest.mark.asyncio
    async def test_clean_code(self, governor):
        """Should pass safe code"""
        result = await governor.verify(Artifact.from_text("def add(a: int, b: int) -> int:\n    return a + b\n"))
        assert result.is_clean
        assert result.violations == ()


class TestStyleGovernor:
    """Tests for style rules"""

    @pytest.mark.asyncio
    async def test_reports_style_issues(self):
        """Should report line length, trailing whitespace and tabs"""
        governor = StyleGovernor(max_line_length=20)
        text = "x = 1   \n\tprint(x)\n" + "y = " + "1" * 30 + "\n"
        result = await governor.verify(Artifact.from_text(text))

        assert rule_ids(result) == [
            "style.debug-output",
            "style.line-length",
            "style.tab-indent",
            "style.trailing-whitespace",
        ]
        # Style findings never make a governor unclean
        assert result.is_clean

    @pytest.mark.asyncio
    async def test_custom_rules(self):
        """Should apply caller-supplied pattern rules"""
        governor = StyleGovernor(rules=[
            PatternRule("style.todo", r"TODO", "Unresolved TODO", Severity.ERROR),
        ])
        result = await governor.verify(Artifact.from_text("# TODO: remove\n"))
        assert rule_ids(result) == ["style.todo"]
        assert not result.is_clean


class TestTypeGovernor:
    """Tests for Python type constraints"""

    @pytest.mark.asyncio
    async def test_syntax_error_is_blocking(self):
        """Should block source that does not parse"""
        result = await TypeGovernor().verify(Artifact.from_text("def broken(:\n"))
        assert rule_ids(result) == ["type.syntax"]
        assert result.has_blocking

    @pytest.mark.asyncio
    async def test_missing_annotations(self):
        """Should flag unannotated parameters and returns"""
        text = "def area(w, h):\n    return w * h\n\ndef _private(x):\n    return x\n"
        result = await TypeGovernor().verify(Artifact.from_text(text))

        assert rule_ids(result) == ["type.missing-param-annotation", "type.missing-return-annotation"]
        assert all(v.severity == Severity.WARNING for v in result.violations)

    @pytest.mark.asyncio
    async def test_annotated_methods(self):
        """Should accept annotated methods and skip self"""
        text = (
            "class Box:\n"
            "    def size(self, scale: float) -> float:\n"
            "        return scale\n"
        )
        result = await TypeGovernor().verify(Artifact.from_text(text))
        assert result.violations == ()

    @pytest.mark.asyncio
    async def test_annotations_optional(self):
        """Should stay quiet when annotations are not required"""
        result = await TypeGovernor(require_annotations=False).verify(
            Artifact.from_text("def f(x):\n    return x\n")
        )
        assert result.violations == ()


class TestArchitectureGovernor:
    """Tests for layering rules"""

    @pytest.mark.asyncio
    async def test_forbidden_import(self):
        """Should flag imports of internal modules"""
        governor = ArchitectureGovernor()
        result = await governor.verify(Artifact.from_text("from _internal.db import session\n"))

        assert rule_ids(result) == ["architecture.no-internal-imports"]
        assert result.has_blocking
        assert "architecture.no-internal-imports" in governor.blocking_rule_ids

    @pytest.mark.asyncio
    async def test_custom_rule(self):
        """Should apply a caller-supplied import rule"""
        governor = ArchitectureGovernor(rules=[
            ImportRule("architecture.ui-no-db", "app.db", "UI must not import the database layer",
                       severity=Severity.ERROR),
        ])
        result = await governor.verify(Artifact.from_text("import app.db.models\nimport app.dbx\n"))

        assert rule_ids(result) == ["architecture.ui-no-db"]
        assert governor.blocking_rule_ids == frozenset()


class TestCallableGovernor:
    """Tests for externally registered plugins"""

    @pytest.mark.asyncio
    async def test_sync_callable_returning_violations(self):
        """Should wrap violations returned by a sync callable"""
        governor = CallableGovernor(
            "custom",
            lambda artifact: [Violation("custom", Severity.ERROR, "nope", "custom.rule")],
        )
        result = await governor.verify(Artifact.from_text("x"))
        assert result.governor_id == "custom"
        assert rule_ids(result) == ["custom.rule"]

    @pytest.mark.asyncio
    async def test_async_callable_returning_result(self):
        """Should pass through a result from an async callable"""
        async def verify(artifact):
            return VerificationResult("custom", artifact.fingerprint)

        result = await CallableGovernor("custom", verify).verify(Artifact.from_text("x"))
        assert result.is_clean

    @pytest.mark.asyncio
    async def test_none_means_clean(self):
        """Should treat a None return as clean"""
        result = await CallableGovernor("custom", lambda a: None).verify(Artifact.from_text("x"))
        assert result.violations == ()

    @pytest.mark.asyncio
    async def test_wrong_governor_id_is_crash(self):
        """Should refuse a result stamped for another governor"""
        governor = CallableGovernor(
            "custom",
            lambda artifact: VerificationResult("other", artifact.fingerprint),
        )
        with pytest.raises(GovernorCrash):
            await governor.verify(Artifact.from_text("x"))

    @pytest.mark.asyncio
    async def test_bad_return_is_crash(self):
        """Should crash on a return that is not violations"""
        with pytest.raises(GovernorCrash):
            await CallableGovernor("custom", lambda a: 42).verify(Artifact.from_text("x"))

        with pytest.raises(GovernorCrash):
            await CallableGovernor("custom", lambda a: ["not a violation"]).verify(Artifact.from_text("x"))


class TestDefaultGovernors:
    @pytest.mark.asyncio
    async def test_unique_names(self):
        """Should register default governors under distinct names"""
        names = [g.name for g in get_default_governors()]
        assert names == ["architecture", "type", "style", "security"]

    @pytest.mark.asyncio
    async def test_clean_module_passes_all(self):
        """Should pass a clean module through every default governor"""
        text = "def add(a: int, b: int) -> int:\n    return a + b\n"
        artifact = Artifact.from_text(text)
        for governor in get_default_governors():
            result = await governor.verify(artifact)
            assert result.violations == (), governor.name
