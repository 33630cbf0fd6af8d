"""
Built-in Governors

Scaffolding for the common governor kinds. Each ships a small default rule
set that callers are expected to replace with their own; the engine treats
all of them exactly like any external plugin.
"""

import ast
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from ..main import Artifact, Severity, Span, Violation
from .base import Governor, GovernorSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternRule:
    """Line-oriented regex rule"""
    rule_id: str
    pattern: str
    message: str
    severity: Severity = Severity.ERROR
    flags: int = 0

    def compile(self) -> "re.Pattern":
        return re.compile(self.pattern, self.flags)


class PatternGovernor(Governor):
    """
    Governor that matches regex rules line by line.

    Every match is reported with its line/column span.
    """

    RULES: Sequence[PatternRule] = ()

    def __init__(self, spec: GovernorSpec, rules: Optional[Sequence[PatternRule]] = None):
        super().__init__(spec)
        self.rules = tuple(rules if rules is not None else self.RULES)
        self._compiled = [(rule, rule.compile()) for rule in self.rules]

    def check(self, artifact: Artifact) -> Iterable[Violation]:
        violations = []
        for line_no, line in enumerate(artifact.text.splitlines(), start=1):
            for rule, regex in self._compiled:
                for match in regex.finditer(line):
                    violations.append(self.violation(
                        rule_id=rule.rule_id,
                        message=rule.message,
                        severity=rule.severity,
                        location=Span(
                            start_line=line_no,
                            start_col=match.start() + 1,
                            end_line=line_no,
                            end_col=match.end() + 1,
                        ),
                    ))
        return violations


class SecurityGovernor(PatternGovernor):
    """
    Security patterns.

    Checks:
    - Hardcoded secrets/credentials (blocking)
    - SQL built by string concatenation or interpolation
    - Dynamic code execution
    """

    RULES = (
        PatternRule(
            rule_id="security.hardcoded-secret",
            pattern=r'(password|passwd|api_key|secret|token)\s*=\s*["\'][^"\']+["\']',
            message="Possible hardcoded secret detected",
            severity=Severity.BLOCKING,
            flags=re.IGNORECASE,
        ),
        PatternRule(
            rule_id="security.sql-injection",
            pattern=r'(query|execute)\s*\(\s*(f["\']|["\'].*["\']\s*(\+|%))',
            message="Potential SQL injection: query built from untrusted string",
            severity=Severity.ERROR,
        ),
        PatternRule(
            rule_id="security.dynamic-exec",
            pattern=r'\b(eval|exec)\s*\(',
            message="Dynamic code execution",
            severity=Severity.ERROR,
        ),
    )

    def __init__(
        self,
        rules: Optional[Sequence[PatternRule]] = None,
        weight: float = 1.0,
        blocking_rule_ids: Iterable[str] = ("security.hardcoded-secret",),
    ):
        super().__init__(
            GovernorSpec(
                name="security",
                weight=weight,
                blocking_rule_ids=frozenset(blocking_rule_ids),
            ),
            rules,
        )


class StyleGovernor(PatternGovernor):
    """
    Style rules.

    Checks:
    - Line length
    - Trailing whitespace and tab indentation
    - Stray debug output
    """

    RULES = (
        PatternRule(
            rule_id="style.trailing-whitespace",
            pattern=r"[ \t]+$",
            message="Trailing whitespace",
            severity=Severity.INFO,
        ),
        PatternRule(
            rule_id="style.tab-indent",
            pattern=r"^\t+",
            message="Tab indentation",
            severity=Severity.WARNING,
        ),
        PatternRule(
            rule_id="style.debug-output",
            pattern=r"\b(console\.log|print)\s*\(",
            message="Debug output left in code",
            severity=Severity.WARNING,
        ),
    )

    def __init__(
        self,
        rules: Optional[Sequence[PatternRule]] = None,
        max_line_length: int = 120,
        weight: float = 1.0,
    ):
        super().__init__(GovernorSpec(name="style", weight=weight), rules)
        self.max_line_length = max_line_length

    def check(self, artifact: Artifact) -> Iterable[Violation]:
        violations = list(super().check(artifact))
        for line_no, line in enumerate(artifact.text.splitlines(), start=1):
            if len(line) > self.max_line_length:
                violations.append(self.violation(
                    rule_id="style.line-length",
                    message=f"Line longer than {self.max_line_length} characters ({len(line)})",
                    severity=Severity.WARNING,
                    location=Span(start_line=line_no, start_col=self.max_line_length + 1),
                ))
        return violations


class TypeGovernor(Governor):
    """
    Type constraints for Python source.

    Checks:
    - Source parses (syntax errors are blocking)
    - Public functions annotate their parameters and return type
    """

    def __init__(self, weight: float = 1.0, require_annotations: bool = True):
        super().__init__(GovernorSpec(
            name="type",
            weight=weight,
            blocking_rule_ids=frozenset({"type.syntax"}),
        ))
        self.require_annotations = require_annotations

    def check(self, artifact: Artifact) -> Iterable[Violation]:
        try:
            tree = ast.parse(artifact.text)
        except SyntaxError as e:
            return [self.violation(
                rule_id="type.syntax",
                message=f"Source does not parse: {e.msg}",
                severity=Severity.BLOCKING,
                location=Span(start_line=e.lineno or 1, start_col=e.offset or 1),
            )]

        if not self.require_annotations:
            return []

        violations = []
        for node in ast.walk(tree):
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                continue
            if node.name.startswith("_"):
                continue

            missing = [
                arg.arg for arg in node.args.args + node.args.kwonlyargs
                if arg.annotation is None and arg.arg not in ("self", "cls")
            ]
            if missing:
                violations.append(self.violation(
                    rule_id="type.missing-param-annotation",
                    message=f"Function {node.name} has unannotated parameters: {', '.join(missing)}",
                    severity=Severity.WARNING,
                    location=Span(start_line=node.lineno, start_col=node.col_offset + 1),
                ))
            if node.returns is None:
                violations.append(self.violation(
                    rule_id="type.missing-return-annotation",
                    message=f"Function {node.name} has no return annotation",
                    severity=Severity.WARNING,
                    location=Span(start_line=node.lineno, start_col=node.col_offset + 1),
                ))

        return violations


@dataclass(frozen=True)
class ImportRule:
    """Forbids importing modules under a prefix"""
    rule_id: str
    module_prefix: str
    message: str
    severity: Severity = Severity.BLOCKING


class ArchitectureGovernor(Governor):
    """
    Architecture (layering) rules.

    Checks:
    - No imports from forbidden module prefixes
    """

    DEFAULT_RULES = (
        ImportRule(
            rule_id="architecture.no-internal-imports",
            module_prefix="_internal",
            message="Private internal modules must not be imported",
        ),
    )

    _IMPORT_LINE = re.compile(r"^\s*(?:from\s+([\w.]+)\s+import|import\s+([\w.]+))")

    def __init__(self, rules: Optional[Sequence[ImportRule]] = None, weight: float = 1.0):
        self.rules = tuple(rules if rules is not None else self.DEFAULT_RULES)
        super().__init__(GovernorSpec(
            name="architecture",
            weight=weight,
            blocking_rule_ids=frozenset(
                r.rule_id for r in self.rules if r.severity == Severity.BLOCKING
            ),
        ))

    def check(self, artifact: Artifact) -> Iterable[Violation]:
        violations = []
        for line_no, line in enumerate(artifact.text.splitlines(), start=1):
            match = self._IMPORT_LINE.match(line)
            if not match:
                continue
            module = match.group(1) or match.group(2)
            for rule in self.rules:
                if module == rule.module_prefix or module.startswith(rule.module_prefix + "."):
                    violations.append(self.violation(
                        rule_id=rule.rule_id,
                        message=f"{rule.message} ({module})",
                        severity=rule.severity,
                        location=Span(start_line=line_no, start_col=1),
                    ))
        return violations


def get_default_governors() -> List[Governor]:
    """One instance of each built-in governor"""
    return [
        ArchitectureGovernor(),
        TypeGovernor(),
        StyleGovernor(),
        SecurityGovernor(),
    ]
