"""
Correction Synthesizer

Turns the violations of a failing ComplianceRecord into a short, ordered
list of CorrectionDirectives for the next generation call.

Output depends only on the record and the run history, so the same inputs
always produce the same directive sequence.
"""

import logging
from collections import OrderedDict
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from .main import (
    ComplianceRecord,
    CorrectionDirective,
    IterationRecord,
    Severity,
    Violation,
)

logger = logging.getLogger(__name__)

Ref = Tuple[str, str]

BASE_PRIORITY = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
    Severity.BLOCKING: 3,
}

MAX_LOCATIONS_PER_DIRECTIVE = 10


class CorrectionSynthesizer:
    """
    Builds correction directives.

    Policy:
    1. One directive per rule_id, covering every governor that reported it
    2. Directives already applied earlier in the run are dropped unless the
       violation reappeared after having been fixed; those are re-issued
       with escalated priority and marked as a repeat
    3. Order: blocking first, then heavier governors, then rule_id
    4. At most max_directives per iteration
    """

    def __init__(
        self,
        max_directives: int = 5,
        min_severity: Severity = Severity.WARNING,
    ):
        if max_directives < 1:
            raise ValueError("max_directives must be at least 1")
        self.max_directives = max_directives
        self.min_severity = min_severity

    def synthesize(
        self,
        record: ComplianceRecord,
        history: Sequence[IterationRecord] = (),
        weights: Optional[Mapping[str, float]] = None,
    ) -> Tuple[CorrectionDirective, ...]:
        """Directives for a failing record, given the run history so far"""
        if record.passed:
            return ()

        weights = weights or {}
        applied = self._applied_iterations(history)

        candidates = []
        for rule_id, violations in self._group_by_rule(record.violations).items():
            refs = frozenset(v.ref for v in violations)
            repeat = False
            times_issued = 0

            if refs and all(ref in applied for ref in refs):
                first_applied = min(min(applied[ref]) for ref in refs)
                if not self._reappeared(refs, history, first_applied, record):
                    logger.debug(f"Skipping {rule_id}: already directed and never fixed")
                    continue
                repeat = True
                times_issued = max(len(applied[ref]) for ref in refs)

            blocking = any(v.severity == Severity.BLOCKING for v in violations)
            severity = max((v.severity for v in violations), key=lambda s: s.rank)
            priority = BASE_PRIORITY[severity] + times_issued

            directive = CorrectionDirective(
                violation_refs=refs,
                instruction_text=self._instruction(rule_id, violations, repeat, times_issued),
                priority=priority,
                blocking=blocking,
                repeat=repeat,
            )
            weight = max(weights.get(gid, 1.0) for gid, _ in refs)
            candidates.append((self._sort_key(directive, rule_id, weight), directive))

        candidates.sort(key=lambda item: item[0])
        directives = tuple(d for _, d in candidates[: self.max_directives])

        if len(candidates) > self.max_directives:
            logger.info(
                f"Capped directives at {self.max_directives} "
                f"({len(candidates) - self.max_directives} deferred)"
            )
        return directives

    # =========================================================================
    # History analysis
    # =========================================================================

    @staticmethod
    def _applied_iterations(history: Sequence[IterationRecord]) -> Dict[Ref, List[int]]:
        """ref -> iteration indices whose artifact was produced with a directive for it"""
        applied: Dict[Ref, List[int]] = {}
        for iteration in history:
            for directive in iteration.directives_applied:
                for ref in directive.violation_refs:
                    applied.setdefault(ref, []).append(iteration.iteration_index)
        return applied

    @staticmethod
    def _reappeared(
        refs: FrozenSet[Ref],
        history: Sequence[IterationRecord],
        first_applied: int,
        current: ComplianceRecord,
    ) -> bool:
        """True if some record since the first directive was free of all refs"""
        for iteration in history:
            if iteration.iteration_index < first_applied:
                continue
            if iteration.compliance_record == current:
                continue
            if not refs & iteration.compliance_record.violation_refs:
                return True
        return False

    # =========================================================================
    # Formatting
    # =========================================================================

    def _group_by_rule(self, violations: Sequence[Violation]) -> "OrderedDict[str, List[Violation]]":
        groups: "OrderedDict[str, List[Violation]]" = OrderedDict()
        for v in violations:
            if v.severity < self.min_severity:
                continue
            groups.setdefault(v.rule_id, []).append(v)
        return groups

    @staticmethod
    def _sort_key(directive: CorrectionDirective, rule_id: str, weight: float):
        governors = tuple(sorted(gid for gid, _ in directive.violation_refs))
        return (0 if directive.blocking else 1, -weight, rule_id, governors)

    @staticmethod
    def _instruction(
        rule_id: str,
        violations: Sequence[Violation],
        repeat: bool,
        times_issued: int,
    ) -> str:
        governors = ", ".join(sorted({v.governor_id for v in violations}))
        severity = max((v.severity for v in violations), key=lambda s: s.rank)

        lines = []
        if repeat:
            lines.append(
                f"REPEAT: this violation was fixed before and has reappeared "
                f"(directed {times_issued} time(s) already). Fix it without undoing other corrections."
            )
        lines.append(f"[{severity.value.upper()}] Resolve rule {rule_id} reported by {governors}:")

        for v in violations[:MAX_LOCATIONS_PER_DIRECTIVE]:
            where = f"{v.location}: " if v.location else ""
            lines.append(f"- {where}{v.message}")
        if len(violations) > MAX_LOCATIONS_PER_DIRECTIVE:
            lines.append(f"- ... and {len(violations) - MAX_LOCATIONS_PER_DIRECTIVE} more occurrence(s)")

        return "\n".join(lines)
