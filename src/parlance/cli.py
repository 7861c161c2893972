"""Command-line entry point.

Model text streams to stdout; notices, tool activity and errors go to a rich
console on stderr so piped output stays clean.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys
import threading
from typing import TYPE_CHECKING

from rich.console import Console
from rich.text import Text

from parlance import __version__
from parlance.config import load_config
from parlance.errors import ConfigurationError
from parlance.events import (
    Aborted,
    Completed,
    Errored,
    Notice,
    TextDelta,
    ToolExecuting,
)
from parlance.fallback import format_api_error
from parlance.orchestrator import Orchestrator
from parlance.session import CancellationToken, Session
from parlance.tools import builtin_registry

if TYPE_CHECKING:
    from collections.abc import Sequence

    from parlance.config import Config
    from parlance.messages import Message
    from parlance.tools import ToolRegistry

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_TIMEOUT = 124
EXIT_ABORTED = 130

# Grace period after the session timeout before the watchdog force-exits.
_WATCHDOG_GRACE_S = 5.0

_console = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="parlance",
        description="Chat with an LLM that can call local tools.",
    )
    parser.add_argument("words", nargs="*", help="Prompt text (alternative to -p).")
    parser.add_argument("-p", "--prompt", default=None, help="Prompt to send.")
    parser.add_argument("-m", "--model", default=None, help="Model identifier.")
    parser.add_argument(
        "--fallback-model",
        default=None,
        help="Model to switch to when the active model's quota is exhausted.",
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        default=None,
        help="Maximum model calls per session.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Wall-clock budget in seconds for a non-interactive run.",
    )
    parser.add_argument(
        "--no-stream",
        action="store_true",
        help="Wait for complete replies instead of streaming.",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use the offline echo provider (no API key needed).",
    )
    parser.add_argument(
        "--settings", default=None, help="JSON or TOML settings file."
    )
    parser.add_argument(
        "--base-dir",
        default=".",
        help="Directory the built-in file tools are confined to.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log to stderr (-v info, -vv debug).",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


def _configure_logging(verbosity: int) -> None:
    if verbosity <= 0:
        return
    logging.basicConfig(
        level=logging.DEBUG if verbosity > 1 else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _read_prompt(args: argparse.Namespace) -> str | None:
    prompt = args.prompt if args.prompt is not None else " ".join(args.words)
    if not sys.stdin.isatty():
        piped = sys.stdin.read()
        if piped.strip():
            prompt = f"{piped.rstrip()}\n\n{prompt}" if prompt else piped
    return prompt or None


def _print_error(error: BaseException, config: Config | None = None) -> None:
    if config is not None:
        text = format_api_error(
            error, active_model=config.model, fallback_model=config.fallback_model
        )
    else:
        text = f"Error: {error}"
        hint = getattr(error, "hint", None)
        if hint:
            text += f"\nHint: {hint}"
    _console.print(Text(text, style="bold red"))


def _install_sigint(token: CancellationToken) -> None:
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")


async def _drive(orchestrator: Orchestrator, prompt: str) -> int:
    """Render events for one prompt and return the exit code."""
    wrote_text = False
    async for event in orchestrator.run(prompt):
        if isinstance(event, TextDelta):
            sys.stdout.write(event.text)
            sys.stdout.flush()
            wrote_text = True
        elif isinstance(event, ToolExecuting):
            if wrote_text:
                sys.stdout.write("\n")
                wrote_text = False
            _console.print(
                Text(f"  ⚙ {event.name}", style="cyan"),
                Text(str(event.args)[:200], style="dim"),
            )
        elif isinstance(event, Notice):
            _console.print(Text(event.message, style="yellow"))
        elif isinstance(event, Completed):
            if wrote_text:
                sys.stdout.write("\n")
                sys.stdout.flush()
            return EXIT_OK
        elif isinstance(event, Errored):
            if wrote_text:
                sys.stdout.write("\n")
            _print_error(event.error, orchestrator.session.config)
            return EXIT_ERROR
        elif isinstance(event, Aborted):
            if wrote_text:
                sys.stdout.write("\n")
            _console.print(Text(f"Aborted: {event.reason}", style="yellow"))
            return EXIT_ABORTED
    return EXIT_ERROR  # pragma: no cover


async def _run_session(
    config: Config,
    tools: ToolRegistry,
    prompt: str,
    history: Sequence[Message] = (),
) -> tuple[int, list[Message]]:
    """Run one prompt in a fresh Session; return exit code and final history."""
    token = CancellationToken()
    _install_sigint(token)
    async with Session(config, token=token, history=history) as session:
        code = await _drive(Orchestrator(session, tools), prompt)
        return code, list(session.history)


async def _run_once(config: Config, tools: ToolRegistry, prompt: str) -> int:
    try:
        async with asyncio.timeout(config.timeout_s):
            code, _ = await _run_session(config, tools, prompt)
            return code
    except TimeoutError:
        _console.print(
            Text(
                f"Operation timed out after {config.timeout_s:g} seconds. This may "
                "be due to API quota limits or service unavailability.",
                style="bold red",
            )
        )
        return EXIT_TIMEOUT


def _start_watchdog(timeout_s: float | None) -> threading.Timer | None:
    """Force-exit if the event loop cannot unwind after the timeout."""
    if timeout_s is None:
        return None

    def _expire() -> None:
        sys.stderr.write("parlance: session did not stop after timeout; exiting\n")
        sys.stderr.flush()
        os._exit(EXIT_TIMEOUT)

    timer = threading.Timer(timeout_s + _WATCHDOG_GRACE_S, _expire)
    timer.daemon = True
    timer.start()
    return timer


def _repl(config: Config, tools: ToolRegistry) -> int:
    """Interactive loop: one Session per prompt, history carried across."""
    history: list[Message] = []
    _console.print(
        Text(f"parlance {__version__} · {config.model} · /exit to quit", style="dim")
    )
    code = EXIT_OK
    while True:
        try:
            line = input("> ")
        except (EOFError, KeyboardInterrupt):
            _console.print()
            return code
        line = line.strip()
        if not line:
            continue
        if line in ("/exit", "/quit"):
            return code
        if line == "/clear":
            history = []
            continue
        try:
            code, history = asyncio.run(_run_session(config, tools, line, history))
        except ConfigurationError as e:
            _print_error(e)
            return EXIT_ERROR


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return its exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = load_config(
            settings_file=args.settings,
            model=args.model,
            fallback_model=args.fallback_model,
            max_session_turns=args.max_turns,
            timeout_s=args.timeout,
            stream=False if args.no_stream else None,
            use_mock=True if args.mock else None,
        )
    except ConfigurationError as e:
        _print_error(e)
        return EXIT_ERROR
    logger.debug("Resolved %s", config)

    tools = builtin_registry(args.base_dir)
    prompt = _read_prompt(args)
    if prompt is None:
        if sys.stdin.isatty():
            return _repl(config, tools)
        parser.error("a prompt is required (use -p, positional text or stdin)")

    watchdog = _start_watchdog(config.timeout_s)
    try:
        return asyncio.run(_run_once(config, tools, prompt))
    except ConfigurationError as e:
        _print_error(e)
        return EXIT_ERROR
    except KeyboardInterrupt:
        return EXIT_ABORTED
    finally:
        if watchdog is not None:
            watchdog.cancel()


def run_cli() -> None:
    """Console-script wrapper that exits with ``main()``'s status."""
    sys.exit(main())
