"""
Console Output Formatter

Console output with colors and formatting.
"""

import sys
from datetime import datetime
from typing import Any, Dict, Sequence

from ..explain import RunExplanation
from ..main import Artifact, ComplianceRecord, CorrectionDirective, RunResult, Severity
from .base import BaseFormatter, OutputLevel


class ConsoleFormatter(BaseFormatter):
    """
    Console formatter with colored output.

    Uses ANSI escape codes for colors in terminal environments.
    Falls back to plain text when not in a TTY.
    """

    # ANSI color codes
    COLORS = {
        "reset": "\033[0m",
        "bold": "\033[1m",
        "dim": "\033[2m",
        "green": "\033[32m",
        "yellow": "\033[33m",
        "red": "\033[31m",
        "blue": "\033[34m",
        "cyan": "\033[36m",
        "magenta": "\033[35m",
    }

    # State symbols
    SYMBOLS = {
        "generating": "◐",
        "verifying": "◕",
        "correcting": "◑",
        "accepted": "●",
        "failed": "✗",
    }

    SEVERITY_COLORS = {
        Severity.INFO: "dim",
        Severity.WARNING: "yellow",
        Severity.ERROR: "red",
        Severity.BLOCKING: "magenta",
    }

    def __init__(self, level: OutputLevel = OutputLevel.NORMAL, use_colors: bool = True):
        super().__init__(level)
        self.use_colors = use_colors and sys.stdout.isatty()

    def _c(self, color: str, text: str) -> str:
        """Apply color to text"""
        if self.use_colors:
            return f"{self.COLORS.get(color, '')}{text}{self.COLORS['reset']}"
        return text

    def _symbol(self, state: str) -> str:
        return self.SYMBOLS.get(state, "○")

    def _timestamp(self) -> str:
        return datetime.now().strftime("%H:%M:%S")

    def run_started(self, run_id: str, prompt: str) -> None:
        """Format run started message"""
        symbol = self._c("blue", self._symbol("generating"))
        first_line = prompt.strip().splitlines()[0] if prompt.strip() else ""
        print(f"{symbol} {self._c('cyan', run_id)} {first_line[:80]}")

    def iteration(self, run_id: str, index: int, artifact: Artifact, record: ComplianceRecord) -> None:
        """Format one verification pass"""
        if not self.at_least(OutputLevel.NORMAL):
            return

        color = "green" if record.passed else "yellow"
        symbol = self._c("magenta", self._symbol("verifying"))
        ts = self._c("dim", f"[{self._timestamp()}]")
        verdict = self._c(color, "PASS" if record.passed else "FAIL")

        print(f"  {symbol} {ts} iteration {index} {artifact.short_id} score={record.score:.3f} {verdict}")

        if self.at_least(OutputLevel.VERBOSE):
            for violation in record.violations:
                self._violation(violation)

    def correcting(self, run_id: str, directives: Sequence[CorrectionDirective]) -> None:
        """Format directives issued for the next round"""
        if not self.at_least(OutputLevel.NORMAL):
            return

        symbol = self._c("cyan", self._symbol("correcting"))
        print(f"  {symbol} {len(directives)} correction directive(s)")

        if self.at_least(OutputLevel.VERBOSE):
            for directive in directives:
                marker = self._c("yellow", " (repeat)") if directive.repeat else ""
                print(f"    - p{directive.priority} {', '.join(directive.rule_ids)}{marker}")

    def run_finished(self, result: RunResult) -> None:
        """Format the terminal state"""
        terminal = result.terminal_state
        seconds = result.duration_ms / 1000
        duration = self._c("dim", f" ({seconds:.1f}s, {result.iterations} iteration(s))")

        if terminal.accepted:
            symbol = self._c("green", self._symbol("accepted"))
            print(f"{symbol} {self._c('green', result.run_id)} {self._c('green', str(terminal))}{duration}")
        else:
            symbol = self._c("red", self._symbol("failed"))
            print(f"{symbol} {self._c('red', result.run_id)} {self._c('red', str(terminal))}{duration}")
            if terminal.detail:
                print(f"  {self._c('red', 'Reason:')} {terminal.detail}")

    def compliance(self, record: ComplianceRecord) -> None:
        """Format a standalone compliance record"""
        if record.passed:
            status = self._c("green", "✓ PASSED")
        else:
            status = self._c("red", "✗ NOT PASSED")

        print(f"{status} score={record.score:.3f} threshold={record.threshold:.2f}")

        for name, result in record.per_governor_results.items():
            color = "green" if result.is_clean else "red"
            extra = f" ({result.error})" if result.error else ""
            print(f"  {self._c(color, name)}: {result.status.value}, "
                  f"{len(result.violations)} violation(s){extra}")
            for violation in result.violations:
                self._violation(violation)

    def explanation(self, explanation: RunExplanation) -> None:
        """Format a run explanation"""
        print()
        print(explanation.render_text())

    def _violation(self, violation) -> None:
        color = self.SEVERITY_COLORS.get(violation.severity, "dim")
        where = f" ({violation.location})" if violation.location else ""
        print(f"    {self._c(color, violation.severity.value.upper()):s} "
              f"{violation.rule_id}{where}: {violation.message}")

    def summary(self, stats: Dict[str, Any]) -> None:
        """Format summary statistics"""
        print()
        print(self._c("bold", "═" * 50))
        print(self._c("bold", "  GOVERNANCE SUMMARY"))
        print(self._c("bold", "═" * 50))

        counters = stats.get("counters", {})
        rates = stats.get("rates", {})
        timing = stats.get("timing", {})

        print(f"\n  {self._c('bold', 'Runs:')}")
        print(f"    Accepted: {self._c('green', str(counters.get('runs_accepted', 0)))}")
        print(f"    Failed:   {self._c('red', str(counters.get('runs_failed', 0)))}")
        print(f"    Total:    {counters.get('runs_started', 0)}")

        failures = stats.get("failures_by_reason", {})
        if failures:
            for reason, count in sorted(failures.items()):
                print(f"      {reason}: {count}")

        print(f"\n  {self._c('bold', 'Verification:')}")
        print(f"    Iterations:         {counters.get('iterations', 0)}")
        print(f"    Governor timeouts:  {self._c('yellow', str(counters.get('governor_timeouts', 0)))}")
        print(f"    Governor crashes:   {self._c('red', str(counters.get('governor_crashes', 0)))}")

        print(f"\n  {self._c('bold', 'Rates:')}")
        print(f"    Acceptance rate:    {rates.get('acceptance_rate', 0) * 100:.1f}%")
        print(f"    Pass rate:          {rates.get('verification_pass_rate', 0) * 100:.1f}%")
        print(f"    Generation cache:   {rates.get('generation_cache_hit_rate', 0) * 100:.1f}%")

        avg_duration = timing.get("avg_run_duration_ms", 0) / 1000
        print(f"\n  {self._c('bold', 'Timing:')}")
        print(f"    Avg run duration:   {avg_duration:.1f}s")

        print()
        print(self._c("bold", "═" * 50))


def print_banner(version: str = "") -> None:
    """Print the engine banner"""
    title = f"GOVERNANCE ENGINE {version}".strip()
    banner = f"""
╔═══════════════════════════════════════════════════════════╗
║                                                           ║
║{title:^59}║
║{'generate  >  verify  >  correct':^59}║
║                                                           ║
╚═══════════════════════════════════════════════════════════╝
"""
    print(banner)
