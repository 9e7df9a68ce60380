"""Command line entry points for running the agent loop."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from agent_looper.loop.contracts import LoopEvent
from agent_looper.loop.logging_utils import LoopLogger, setup_logging

console = Console()
logger = logging.getLogger(__name__)

QUIT_WORDS = {"quit", "exit"}


def format_event(event: LoopEvent) -> str:
    """Render a loop event as console markup."""
    stamp = event.timestamp.strftime("%H:%M:%S")
    if event.kind == "result":
        return f"[green]{escape(f'[{stamp}]')} result:[/green] {escape(str(event.payload))}"
    return f"[dim]{escape(f'[{stamp}]')}[/dim] {escape(str(event.payload))}"


async def _print_events(stream) -> None:
    async for event in stream.subscribe():
        console.print(format_event(event), markup=True, highlight=False)


async def _interactive(controller, stream) -> None:
    printer = asyncio.create_task(_print_events(stream))
    console.print(
        "[cyan]Commands: start <task>, add_pending <task>, stop, status, quit[/cyan]"
    )

    try:
        while True:
            try:
                line = await asyncio.to_thread(console.input, "[bold]looper> [/bold]")
            except EOFError:
                break

            text = line.strip()
            if not text:
                continue
            if text.lower() in QUIT_WORDS:
                break

            ack = controller.submit(text)
            console.print(f"[yellow]{escape(ack)}[/yellow]", highlight=False)
    finally:
        if controller.is_running:
            console.print("[dim]Stopping loop...[/dim]")
        outcome = await controller.shutdown()
        stream.close()
        await printer

    if outcome is not None:
        console.print(f"[cyan]{escape(outcome.describe())}[/cyan]", highlight=False)


@click.group()
@click.version_option(package_name="agent-looper")
def cli() -> None:
    """Iterative multi-agent loop: producer, critic and judge."""


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="TOML config file (default: looper.toml or pyproject.toml in the current directory)",
)
@click.option(
    "--max-iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Override max_iterations from the config",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
def run(config_path: Path | None, max_iterations: int | None, verbose: bool) -> None:
    """Start an interactive loop session.

    Each line typed is submitted as a command. Events from the running loop
    are printed as they arrive. ``quit`` or end of input stops the loop.
    """
    from agent_looper.loop.streaming import LoopStreamManager
    from agent_looper.loop.utils.config import build_controller, load_settings

    setup_logging(verbose)

    settings = load_settings(config_path)
    if max_iterations is not None:
        settings = settings.model_copy(update={"max_iterations": max_iterations})

    async def session() -> None:
        stream = LoopStreamManager()
        try:
            controller = build_controller(settings, sink=stream)
        except ValueError as e:
            raise click.ClickException(str(e))

        LoopLogger.get(verbose).set_context(controller)
        console.print(
            f"[cyan]Agents: {' -> '.join(controller.agent_names)}, "
            f"judge: {controller.judge_name}, max iterations: {controller.max_iterations}[/cyan]"
        )
        await _interactive(controller, stream)

    try:
        asyncio.run(session())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")


@cli.command("judge-parse")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def judge_parse(file: Path) -> None:
    """Parse judge output from FILE and print the decision as JSON."""
    from agent_looper.loop.judge import parse_judge_output

    decision = parse_judge_output(file.read_text(encoding="utf-8"))
    console.print_json(decision.model_dump_json())
    if decision.fallback:
        raise click.exceptions.Exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
