"""Developer CLI over a single memory pipeline.

Provides subcommands for capturing a turn, showing consolidated memories,
toggling capture for a subject and forgetting a stored fact.
"""

import argparse
import asyncio
import sys

from .config import MemoryConfig
from .memory.models import DisplaySection, ExtractionOutcome
from .memory.result import ErrorKind
from .memory.pipeline import MemoryPipeline, build_pipeline


def _get_pipeline() -> MemoryPipeline:
    """Create a pipeline with config loaded from the environment."""
    return build_pipeline(MemoryConfig.from_env())


def _format_outcome(outcome: ExtractionOutcome) -> str:
    if outcome.skipped:
        return "Capture is disabled for this subject."

    lines = []
    if outcome.error == ErrorKind.LOCAL_ONLY.value:
        lines.append("No extraction service configured (facts from local rules)")
    elif outcome.error:
        source = "local rules" if outcome.fallback_used else "service"
        lines.append(f"Extraction error: {outcome.error} (facts from {source})")
    if not outcome.facts:
        lines.append("No facts extracted.")
    for fact in outcome.facts:
        lines.append(f"  {fact.category}/{fact.key}: {fact.value}")
    if outcome.mentioned_keys:
        lines.append(f"Mentioned again: {', '.join(outcome.mentioned_keys)}")
    return "\n".join(lines)


def _format_sections(sections: list[DisplaySection]) -> str:
    lines = []
    for section in sections:
        lines.append(f"\n{section.category}")
        lines.append("-" * 40)
        for memory in section.memories:
            ids = ",".join(str(i) for i in memory.source_fact_ids)
            marker = " (merged)" if memory.is_merged else ""
            lines.append(f"  [{ids}] {memory.value}{marker}")
    return "\n".join(lines)


def cmd_capture(args: argparse.Namespace) -> int:
    """Run one extraction over a user turn."""
    pipeline = _get_pipeline()
    try:
        outcome = asyncio.run(
            pipeline.extract(args.identity, args.subject, args.name, user_turns=[args.text])
        )
    finally:
        pipeline.close()

    print(_format_outcome(outcome))
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Show consolidated memories for a subject."""
    pipeline = _get_pipeline()
    try:
        sections = asyncio.run(pipeline.display(args.identity, args.subject, args.limit))
    finally:
        pipeline.close()

    if not sections:
        print("No memories found.")
        return 0

    print(_format_sections(sections))
    return 0


def cmd_continuity(args: argparse.Namespace) -> int:
    """Turn capture on or off for a subject."""
    enabled = args.state == "on"
    pipeline = _get_pipeline()
    try:
        result = asyncio.run(pipeline.set_enabled(args.identity, args.subject, enabled))
    finally:
        pipeline.close()

    if not result.ok:
        print(f"Error: {result.detail}")
        return 1

    print(f"Capture {'enabled' if enabled else 'disabled'} for {args.subject}")
    return 0


def cmd_forget(args: argparse.Namespace) -> int:
    """Delete stored facts by id."""
    pipeline = _get_pipeline()
    try:
        result = asyncio.run(pipeline.facts.delete_facts(args.identity, args.ids))
    finally:
        pipeline.close()

    if not result.ok:
        print(f"Error: {result.detail}")
        return 1
    if not result.value:
        print("Error: No matching facts found.")
        return 1

    print(f"Deleted {result.value} fact(s)")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="keepsake",
        description="Capture and inspect remembered facts",
    )

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    capture_parser = subparsers.add_parser("capture", help="Extract facts from a user turn")
    capture_parser.add_argument("identity", help="Acting user")
    capture_parser.add_argument("subject", help="Subject id")
    capture_parser.add_argument("name", help="Subject display name")
    capture_parser.add_argument("text", help="User turn text")

    show_parser = subparsers.add_parser("show", help="Show memories for a subject")
    show_parser.add_argument("identity", help="Acting user")
    show_parser.add_argument("subject", help="Subject id")
    show_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=None,
        help="Maximum stored facts to read",
    )

    continuity_parser = subparsers.add_parser("continuity", help="Toggle capture for a subject")
    continuity_parser.add_argument("identity", help="Acting user")
    continuity_parser.add_argument("subject", help="Subject id")
    continuity_parser.add_argument("state", choices=["on", "off"], help="New state")

    forget_parser = subparsers.add_parser("forget", help="Delete stored facts")
    forget_parser.add_argument("identity", help="Acting user")
    forget_parser.add_argument("ids", type=int, nargs="+", help="Fact ids")

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "capture": cmd_capture,
        "show": cmd_show,
        "continuity": cmd_continuity,
        "forget": cmd_forget,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except ValueError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(run_cli())
