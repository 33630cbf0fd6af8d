"""
Governance Engine CLI

Command-line interface for the verify-and-correct loop.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from . import __version__
from .errors import ConfigError, GovernanceError
from .explain import explain_run
from .generators import ClaudeGenerator, HttpGenerator, MockGenerator
from .generators.base import BaseGenerator
from .governors import get_default_governors
from .logging_config import setup_logging
from .main import Artifact, RunConfig
from .metrics import get_metrics
from .orchestrator import GovernanceOrchestrator
from .output.console import ConsoleFormatter, OutputLevel, print_banner
from .verification import verify_artifact

DEFAULT_CONFIG_FILE = "governance-engine.yml"

DEFAULT_CONFIG = """# Governance Engine Configuration

# Loop budget
max_iterations: 5
global_timeout_ms: 300000  # 5 minutes

# Compliance policy
score_threshold: 0.9
warning_penalty: 0.05
governor_weights:
  architecture: 1.0
  type: 1.0
  style: 0.5
  security: 2.0

# Verification
per_governor_timeout_ms: 10000  # 10 seconds
aggregator_overhead_ms: 500

# Correction
max_directives_per_iteration: 5

# Generation
generation_timeout_ms: 120000  # 2 minutes
generation_retries: 0
retry_delay_ms: 1000
retry_backoff_multiplier: 2.0

# Cache
cache_capacity: 1024
"""


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="governance-engine",
        description="Governance Engine - generate, verify and correct source code",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the verify-and-correct loop")
    run_parser.add_argument("prompt", help="Task prompt for the generator")
    run_parser.add_argument("--context", help="JSON file with generation context")
    run_parser.add_argument("--seed", help="Source file verified as the first candidate")
    run_parser.add_argument(
        "--generator",
        choices=["claude", "http", "mock"],
        default="claude",
        help="Generation collaborator to use",
    )
    run_parser.add_argument("--generator-url", help="Service URL for the http generator")
    run_parser.add_argument("--max-iterations", type=int, help="Maximum iterations")
    run_parser.add_argument("--threshold", type=float, help="Compliance score threshold")
    run_parser.add_argument("--timeout-ms", type=int, help="Global run budget in ms")
    run_parser.add_argument("--output", "-o", help="Write the accepted artifact to this file")
    run_parser.add_argument("--json", action="store_true", help="Print the run result as JSON")

    # Verify command
    verify_parser = subparsers.add_parser("verify", help="Verify one file with the default governors")
    verify_parser.add_argument("path", help="Source file to verify")
    verify_parser.add_argument("--threshold", type=float, help="Compliance score threshold")
    verify_parser.add_argument("--json", action="store_true", help="Print the record as JSON")

    # Config command
    config_parser = subparsers.add_parser("config", help="Show/initialize configuration")
    config_parser.add_argument("--show", action="store_true", help="Show current config")
    config_parser.add_argument("--init", action="store_true", help="Initialize config file")

    # Global options
    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase verbosity",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Quiet mode",
    )
    parser.add_argument(
        "--log-file",
        help="Log to file",
    )
    parser.add_argument(
        "--config",
        help="Config file path",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )

    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> RunConfig:
    """Config file if given, else environment, then command-line overrides"""
    if args.config and Path(args.config).exists():
        config = RunConfig.from_yaml(args.config)
    else:
        config = RunConfig.from_env()

    return config.merged(
        max_iterations=getattr(args, "max_iterations", None),
        score_threshold=getattr(args, "threshold", None),
        global_timeout_ms=getattr(args, "timeout_ms", None),
    )


def build_generator(args: argparse.Namespace) -> BaseGenerator:
    if args.generator == "mock":
        return MockGenerator()
    if args.generator == "http":
        return HttpGenerator(service_url=args.generator_url)
    return ClaudeGenerator()


def load_context(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ConfigError(f"Context file {path} must contain a JSON object")
    return data


async def run_loop(args: argparse.Namespace, formatter: ConsoleFormatter) -> int:
    """Run the verify-and-correct loop"""
    config = load_config(args)
    context = load_context(args.context)
    seed = Artifact.from_text(Path(args.seed).read_text(), source=args.seed) if args.seed else None

    generator = build_generator(args)
    orchestrator = GovernanceOrchestrator(
        governors=get_default_governors(),
        generator=generator,
        config=config,
    )

    if not args.json:
        orchestrator.on("run.started", lambda event, run_id, **kw: formatter.run_started(run_id, args.prompt))
        orchestrator.on(
            "run.iteration",
            lambda event, run_id, record, **kw: formatter.iteration(
                run_id, record.iteration_index, record.artifact, record.compliance_record,
            ),
        )
        orchestrator.on(
            "run.correcting",
            lambda event, run_id, directives, **kw: formatter.correcting(run_id, directives),
        )

    await generator.initialize()
    try:
        result = await orchestrator.run(args.prompt, context=context, initial_artifact=seed)
    finally:
        await generator.shutdown()

    explanation = explain_run(result)

    if args.json:
        print(json.dumps({
            "result": result.to_dict(),
            "explanation": explanation.to_dict(),
        }, indent=2))
    else:
        formatter.run_finished(result)
        if formatter.at_least(OutputLevel.VERBOSE):
            formatter.explanation(explanation)
        formatter.summary(get_metrics().get_summary())

    if args.output and result.accepted and result.final_artifact is not None:
        Path(args.output).write_text(result.final_artifact.text)

    return 0 if result.accepted else 1


async def verify_file(args: argparse.Namespace, formatter: ConsoleFormatter) -> int:
    """Verify a single file against the default governors"""
    config = load_config(args)
    artifact = Artifact.from_text(Path(args.path).read_text(), source=args.path)

    record = await verify_artifact(
        artifact,
        get_default_governors(),
        threshold=config.score_threshold,
        warning_penalty=config.warning_penalty,
        per_governor_timeout_ms=config.per_governor_timeout_ms,
    )

    if args.json:
        print(json.dumps(record.to_dict(), indent=2))
    else:
        formatter.compliance(record)

    return 0 if record.passed else 1


def show_config(args: argparse.Namespace) -> int:
    """Show or initialize configuration"""
    if args.init:
        config_path = Path(DEFAULT_CONFIG_FILE)
        if config_path.exists():
            print(f"Config already exists: {config_path}")
            return 1

        config_path.write_text(DEFAULT_CONFIG)
        print(f"Created config: {config_path}")
        return 0

    if args.show:
        print(json.dumps(load_config(args).to_dict(), indent=2))
        return 0

    return 0


def main(argv: Optional[list] = None) -> int:
    """Main entry point"""
    args = parse_args(argv)

    log_level = "DEBUG" if args.verbose >= 2 else ("INFO" if args.verbose >= 1 else "WARNING")
    if args.quiet:
        log_level = "ERROR"

    setup_logging(
        level=log_level,
        log_file=args.log_file,
        use_colors=not args.no_color,
    )

    output_level = OutputLevel.DEBUG if args.verbose >= 2 else (
        OutputLevel.VERBOSE if args.verbose >= 1 else (
            OutputLevel.QUIET if args.quiet else OutputLevel.NORMAL
        )
    )
    formatter = ConsoleFormatter(level=output_level, use_colors=not args.no_color)

    if not args.quiet and args.command == "run" and not args.json:
        print_banner(__version__)

    try:
        if args.command == "run":
            return asyncio.run(run_loop(args, formatter))
        elif args.command == "verify":
            return asyncio.run(verify_file(args, formatter))
        elif args.command == "config":
            return show_config(args)
        else:
            print("Use --help for usage information")
            return 1
    except (GovernanceError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
