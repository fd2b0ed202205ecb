"""GreetBot CLI: request a greeting and watch the agent work.

Usage:
    greetbot greet "Ada" --style Formal
    greetbot watch SESSION_ID --until-idle
    greetbot --config greetbot.yaml --json watch SESSION_ID
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from greetbot.adapters.activity import AgentActivity
from greetbot.adapters.agent_client import AgentClient
from greetbot.engine.config import ActivityConfig
from greetbot.engine.errors import ConfigError, GreetingError
from greetbot.engine.greeting import DEFAULT_STYLE, GREETING_STYLES, request_greeting
from greetbot.engine.reducer import ActivitySnapshot
from greetbot.engine.yaml_config import load_yaml_config

logger = logging.getLogger(__name__)


def _setup_logging(log_level: str) -> Path:
    """Log to ~/.greetbot/logs/greetbot.log; warnings also go to stderr."""
    log_dir = Path.home() / ".greetbot" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "greetbot.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.WARNING)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


class ActivityPrinter:
    """Prints snapshot transitions as console lines."""

    def __init__(self, console: Console, as_json: bool = False) -> None:
        self._console = console
        self._as_json = as_json
        self._previous = ActivitySnapshot()

    def __call__(self, snapshot: ActivitySnapshot) -> None:
        if self._as_json:
            self._console.print_json(json.dumps(snapshot.to_dict(), default=str))
        else:
            self._print_changes(self._previous, snapshot)
        self._previous = snapshot

    def _print_changes(self, prev: ActivitySnapshot, cur: ActivitySnapshot) -> None:
        out = self._console
        if cur.is_connected != prev.is_connected:
            if cur.is_connected:
                out.print("[green]●[/] feed connected")
            else:
                out.print("[dim]○ feed disconnected[/]")
        if cur.active_agent_id and cur.active_agent_id != prev.active_agent_id:
            label = cur.active_agent_name or cur.active_agent_id
            out.print(f"[bold]▶ {escape(label)}[/] started")
        if cur.is_processing != prev.is_processing:
            out.print("[yellow]… processing[/]" if cur.is_processing else "[dim green]✓ idle[/]")
        if cur.thinking_events and (
            not prev.thinking_events
            or cur.thinking_events[-1] is not prev.thinking_events[-1]
        ):
            out.print(f"  [italic]{escape(cur.last_thinking_message or '')}[/]")


def _load_config(path: str | None) -> ActivityConfig:
    if path:
        return load_yaml_config(path)
    return ActivityConfig.from_env()


async def _linger(activity: AgentActivity, seconds: float) -> None:
    """Keep the feed open a little longer to catch trailing events."""
    if seconds <= 0 or activity.session_id is None:
        return
    await asyncio.sleep(seconds)


async def _run_greet(args: argparse.Namespace, config: ActivityConfig, console: Console) -> int:
    agent_id = args.agent_id or config.agent_id
    async with AgentClient(config) as client, AgentActivity(config=config) as activity:
        activity.add_listener(ActivityPrinter(console, as_json=args.json))
        try:
            greeting = await request_greeting(
                client, activity, args.name, style=args.style, agent_id=agent_id,
            )
        except GreetingError as exc:
            console.print(f"[red]✗ {escape(str(exc))}[/]")
            return 1
        await _linger(activity, args.linger)

    if args.json:
        console.print_json(json.dumps({
            "greeting": greeting.greeting,
            "style": greeting.style,
            "name": greeting.name,
        }))
    else:
        console.print(f"\n[bold]{escape(greeting.greeting)}[/]")
        console.print(f"[dim]{escape(greeting.style)} greeting for {escape(greeting.name)}[/]")
    return 0


async def _run_watch(args: argparse.Namespace, config: ActivityConfig, console: Console) -> int:
    async with AgentActivity(config=config) as activity:
        printer = ActivityPrinter(console, as_json=args.json)
        activity.set_session(args.session_id)
        seen_processing = False

        async def _follow() -> None:
            nonlocal seen_processing
            async for snapshot in activity.updates():
                printer(snapshot)
                seen_processing = seen_processing or snapshot.is_processing
                if args.until_idle and seen_processing and not snapshot.is_processing:
                    return

        try:
            if args.timeout > 0:
                await asyncio.wait_for(_follow(), timeout=args.timeout)
            else:
                await _follow()
        except asyncio.TimeoutError:
            logger.info("watch: stopped after %.0fs", args.timeout)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="greetbot",
        description="GreetBot: greetings from a remote agent, with live activity",
    )
    parser.add_argument(
        "--config", "-c", metavar="PATH", default=None,
        help="YAML config file (default: GREETBOT_* env vars)",
    )
    parser.add_argument(
        "--log-level", default=None,
        help="Log level for ~/.greetbot/logs/greetbot.log (default: INFO)",
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Print snapshots and results as JSON",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    greet = sub.add_parser("greet", help="Request a greeting")
    greet.add_argument("name", help="Who to greet")
    greet.add_argument(
        "--style", choices=GREETING_STYLES, default=DEFAULT_STYLE,
        help="Greeting style (default: Casual)",
    )
    greet.add_argument(
        "--agent-id", default=None,
        help="Agent to ask (default: from config)",
    )
    greet.add_argument(
        "--linger", type=float, default=0.0, metavar="SECONDS",
        help="Keep watching the feed after the greeting arrives",
    )

    watch = sub.add_parser("watch", help="Watch the activity feed of a session")
    watch.add_argument("session_id", help="Session id returned by a request")
    watch.add_argument(
        "--until-idle", action="store_true",
        help="Exit once the agent goes from processing to idle",
    )
    watch.add_argument(
        "--timeout", type=float, default=0.0, metavar="SECONDS",
        help="Stop watching after this many seconds (default: no limit)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    console = Console()

    try:
        config = _load_config(args.config)
    except (ConfigError, FileNotFoundError) as exc:
        console.print(f"[red]Config error:[/] {escape(str(exc))}")
        sys.exit(2)

    log_level = (args.log_level or config.log_level).upper()
    log_file = _setup_logging(log_level)
    logger.info(
        "Starting greetbot %s cwd=%s config=%s log=%s",
        args.command, Path.cwd(), args.config or "<env>", log_file,
    )

    runner = _run_greet if args.command == "greet" else _run_watch
    try:
        code = asyncio.run(runner(args, config, console))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
