#!/usr/bin/env python3
"""
Echo - Tool-Orchestrating Executive Assistant
==============================================

Main entry point for the Echo command-line client.

Usage:
    python main.py                  # Interactive mode against the configured planner
    python main.py --mock-llm       # Offline planner, no API key needed
    python main.py --thread work    # Continue a named conversation thread
    python main.py --help           # Show help

Type 'help' at the prompt for local commands.
"""

import argparse
import asyncio
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

# Ensure project root is in path
sys.path.insert(0, str(Path(__file__).parent))

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.errors import EchoError, ErrorHandler, StartupError
from core.session import OrchestratorContext, SessionManager, TurnOutcome
from infra.config import AppConfig, load_config, require_credential
from infra.logging import configure_logging
from planner import MockPlanner, OpenAIChatPlanner, PlannerAdapter
from providers import ProcessSupervisor
from tools.policy import PolicyConfig
from tools.registry import ToolRegistry


# Setup rich console
console = Console()

HELP_TEXT = """
[bold]Just type a request, for example:[/bold]
  - list the files in my workspace
  - find the latest email from Dana and draft a reply
  - search the web for python 3.13 release notes

[bold]Local commands:[/bold]
  - help      (show this)
  - tools     (list available tools)
  - history   (show conversation summary)
  - clear     (clear conversation history)
  - quit      (exit, also 'exit')
"""


def print_banner(config: AppConfig, planner: PlannerAdapter, thread_id: str) -> None:
    """Print the Echo banner."""
    banner = Text()
    banner.append("Echo", style="bold cyan")
    banner.append(" - Executive Assistant\n", style="dim")

    if planner.name == "mock":
        banner.append("Planner: mock (offline)\n", style="yellow")
    else:
        banner.append(f"Planner: {config.planner.model}\n", style="green")

    banner.append(f"Thread: {thread_id}\n\n", style="dim")
    banner.append("Type ", style="dim")
    banner.append("help", style="bold green")
    banner.append(" for commands | ", style="dim")
    banner.append("quit", style="bold red")
    banner.append(" to exit", style="dim")

    console.print(Panel(banner, title="Welcome", border_style="blue"))


def print_tools(registry: ToolRegistry) -> None:
    """Print the merged tool catalog."""
    table = Table(title=f"Available tools ({len(registry)})")
    table.add_column("Tool", style="bold")
    table.add_column("Provider", style="cyan")
    table.add_column("Class")
    table.add_column("Description", style="dim")

    for tool in registry.list_tools():
        table.add_row(tool.name, tool.provider_id, tool.tool_class.value, tool.description)

    console.print(table)


def print_outcome(outcome: TurnOutcome) -> None:
    """Print the final answer of a turn."""
    console.print(f"[bold green]Echo:[/bold green] {outcome.text}")
    if outcome.cycles:
        console.print(
            f"[dim]{outcome.cycles} cycles, {outcome.tools_executed} tool calls[/dim]"
        )


class LineReader:
    """
    Reads stdin on a daemon thread and hands lines to the event loop.

    The thread is a daemon so a pending read never blocks exit.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._thread = threading.Thread(target=self._run, name="stdin-reader", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        while True:
            line = sys.stdin.readline()
            item = line.rstrip("\n") if line else None
            try:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
            except RuntimeError:
                return  # loop already closed
            if item is None:
                return

    async def readline(self) -> Optional[str]:
        """Next line, or None at end of input."""
        return await self._queue.get()


async def run_repl(
    manager: SessionManager,
    registry: ToolRegistry,
    thread_id: str,
    error_handler: ErrorHandler
) -> None:
    """Interactive line loop."""
    reader = LineReader(asyncio.get_running_loop())
    reader.start()

    while True:
        console.print("\n[bold cyan]>[/bold cyan] ", end="")
        line = await reader.readline()
        if line is None:
            break

        text = line.strip()
        if not text:
            continue

        command = text.lower()

        if command in ("quit", "exit"):
            break

        if command == "help":
            console.print(HELP_TEXT)
            continue

        if command == "tools":
            print_tools(registry)
            continue

        if command == "history":
            console.print(f"[bold]Conversation Summary:[/bold] {manager.summary(thread_id)}")
            continue

        if command == "clear":
            count = manager.reset(thread_id)
            console.print(f"[green]Cleared {count} entries from history[/green]")
            continue

        try:
            with console.status("[yellow]Working...[/yellow]"):
                outcome = await manager.handle_message(thread_id, text)
        except EchoError as e:
            console.print(f"[bold red]Error:[/bold red] {error_handler.handle(e)}")
            continue

        print_outcome(outcome)


def build_planner(config: AppConfig, use_mock: bool) -> PlannerAdapter:
    """Select the planner backend. The credential is checked before any provider starts."""
    if use_mock:
        return MockPlanner()
    api_key = require_credential(config.planner)
    return OpenAIChatPlanner(config.planner, api_key=api_key)


async def run(args: argparse.Namespace, error_handler: ErrorHandler) -> int:
    """Start providers, run the loop, always tear down."""
    config = load_config(args.config)

    configure_logging(
        level=getattr(logging, (args.log_level or config.logging.level).upper(), logging.INFO),
        log_dir=config.logging.dir,
        file=config.logging.file,
        rich_console=console,
    )
    logger = logging.getLogger("echo.main")

    policy_config = PolicyConfig.load(config.policy_path)
    planner = build_planner(config, args.mock_llm)

    workspace = Path(config.workspace_dir).expanduser().resolve()
    workspace.mkdir(parents=True, exist_ok=True)
    logger.info(f"Workspace: {workspace}")

    supervisor = ProcessSupervisor(
        startup_timeout=config.supervisor.startup_timeout_seconds,
        shutdown_timeout=config.supervisor.shutdown_timeout_seconds,
    )

    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()

    def on_signal(signame: str) -> None:
        logger.info(f"Received {signame}, shutting down")
        main_task.cancel()

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal, sig.name)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; KeyboardInterrupt still ends asyncio.run
            pass

    try:
        console.print("[dim]Starting providers...[/dim]")
        handles = await supervisor.start(config.providers, str(workspace))

        context = OrchestratorContext.assemble(
            handles,
            planner,
            policy_config=policy_config,
            executor_timeout=config.executor.timeout_seconds,
        )
        manager = SessionManager(
            context,
            max_cycles=config.session.max_cycles,
            max_history_turns=config.session.max_history_turns,
            planning_timeout=config.planner.timeout_seconds,
        )

        print_banner(config, planner, args.thread)
        console.print(f"[dim]{len(context.registry)} tools from {len(handles)} providers[/dim]")
        await run_repl(manager, context.registry, args.thread, error_handler)

    except asyncio.CancelledError:
        console.print("\n[yellow]Interrupted.[/yellow]")
    finally:
        console.print("[yellow]Shutting down...[/yellow]")
        await supervisor.teardown()
        await planner.aclose()
        for sig in installed:
            loop.remove_signal_handler(sig)

    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Echo - Tool-Orchestrating Executive Assistant"
    )
    parser.add_argument(
        "--config", "-c",
        default="config.yaml",
        help="Path to configuration file"
    )
    parser.add_argument(
        "--log-level", "-l",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides config)"
    )
    parser.add_argument(
        "--mock-llm",
        action="store_true",
        help="Use the offline mock planner (no API key needed)"
    )
    parser.add_argument(
        "--thread", "-t",
        default="cli",
        help="Conversation thread id"
    )

    args = parser.parse_args()

    load_dotenv()
    error_handler = ErrorHandler()

    try:
        return asyncio.run(run(args, error_handler))
    except StartupError as e:
        console.print(f"[bold red]{error_handler.handle(e)}[/bold red]")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
