"""
Command-line interface for agent-loop.

The user message is read from stdin; the assistant's answer goes to stdout
(or --output-file). Logs, diffs and stats go to stderr.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import structlog

from .agent import SessionManager, stats_report
from .agent.session import format_models, list_models, refresh_models
from .config import Settings, get_settings
from .errors import AgentLoopError, ProviderError
from .storage import ConversationStore

logger = structlog.get_logger()


def configure_logging(level: str) -> None:
    """Configure structlog to render key/value events on stderr."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.WARNING),
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-loop",
        description="Tool-using coding assistant; reads the message from stdin",
    )

    parser.add_argument("--model", help="Model to use (claude-* or an Ollama model)")
    parser.add_argument("--max-tokens", type=int, help="Maximum tokens per provider call")
    parser.add_argument("--max-cost", type=float, help="Maximum cost in dollars per turn (0 = unlimited)")
    parser.add_argument("--max-iterations", type=int, help="Maximum agentic loop iterations (0 = unlimited)")
    parser.add_argument("--timeout", type=float, help="Provider request timeout in seconds")
    parser.add_argument("--truncate", type=int, help="Keep only the last N history messages")
    parser.add_argument(
        "--tool",
        help='Tool permissions: none, read, write, command, all (comma-separated); default is dry-run',
    )
    parser.add_argument("--output", choices=["text", "json"], help="Output format")
    parser.add_argument("--output-file", help="Write the answer to this file instead of stdout")
    parser.add_argument("--system", help="System prompt for this run")
    parser.add_argument("--resume-dir", help="Directory containing .claude/ (default: current directory)")
    parser.add_argument("--ollama-url", help="Ollama API URL")
    parser.add_argument(
        "--verbosity",
        choices=["silent", "normal", "verbose", "debug"],
        help="How much to log to stderr",
    )

    modes = parser.add_mutually_exclusive_group()
    modes.add_argument("--stats", action="store_true", help="Show conversation statistics")
    modes.add_argument("--reset", action="store_true", help="Delete the conversation directory")
    modes.add_argument("--prune-old", type=int, metavar="N", help="Keep only the newest N turns")
    modes.add_argument(
        "--replay",
        nargs="?",
        const="",
        metavar="ID",
        help="Re-execute the tools of a stored turn (latest when no ID)",
    )
    modes.add_argument("--execute", action="store_true", help="Re-run the newest stored user message")
    modes.add_argument("--models-list", action="store_true", help="List available models")
    modes.add_argument("--models-refresh", action="store_true", help="Refresh the cached model list")

    return parser


def settings_from_args(args: argparse.Namespace, base: Settings) -> Settings:
    """Apply command-line overrides on top of environment settings."""
    overrides: dict[str, Any] = {
        "max_tokens": args.max_tokens,
        "max_cost": args.max_cost,
        "max_iterations": args.max_iterations,
        "timeout_seconds": args.timeout,
        "truncate": args.truncate,
        "tool": args.tool.strip().lower() if args.tool is not None else None,
        "output": args.output,
        "output_file": args.output_file,
        "conversation_dir": args.resume_dir,
        "ollama_url": args.ollama_url,
        "verbosity": args.verbosity,
    }
    return base.model_copy(update={k: v for k, v in overrides.items() if v is not None})


def read_input() -> str:
    if sys.stdin.isatty():
        raise AgentLoopError("no input provided (pipe or redirect required)")
    message = sys.stdin.read()
    if not message:
        raise AgentLoopError("no input provided")
    return message


def write_output(settings: Settings, text: str) -> None:
    if settings.output_file:
        try:
            with open(settings.output_file, "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            raise AgentLoopError(f"writing output file: {e}") from e
        return

    sys.stdout.write(text if text.endswith("\n") else text + "\n")
    sys.stdout.flush()


async def run(args: argparse.Namespace, settings: Settings) -> None:
    """Dispatch one CLI invocation."""
    if args.models_list or args.models_refresh:
        store = ConversationStore(settings.claude_dir)
        if args.models_refresh:
            cache = await refresh_models(settings, store)
        else:
            cache = await list_models(settings, store)
        write_output(settings, format_models(cache))
        return

    if args.stats:
        print(stats_report(ConversationStore(settings.claude_dir)), file=sys.stderr)
        return

    if args.reset:
        ConversationStore(settings.claude_dir).reset()
        logger.info("Reset conversation", directory=str(settings.claude_dir))
        return

    if args.prune_old is not None:
        if args.prune_old <= 0:
            raise AgentLoopError("--prune-old needs a positive count")
        pruned = ConversationStore(settings.claude_dir).prune(args.prune_old)
        print(f"Pruned {pruned} turns", file=sys.stderr)
        return

    session = SessionManager(settings, model=args.model, system_prompt=args.system)

    if args.replay is not None:
        count = await session.replay(args.replay or None)
        print(f"Replayed {count} tools", file=sys.stderr)
        return

    if args.execute:
        result = await session.resume()
    else:
        result = await session.run(read_input())

    if settings.wants_json and result.final_response is not None:
        write_output(settings, result.final_response.model_dump_json(indent=2, exclude_none=True))
    else:
        write_output(settings, result.text)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = settings_from_args(args, get_settings())
    configure_logging(settings.effective_log_level)

    try:
        asyncio.run(run(args, settings))
    except ProviderError as e:
        if settings.wants_json and e.payload is not None:
            print(json.dumps(e.payload, indent=2, default=str))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except AgentLoopError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("Error: interrupted", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
