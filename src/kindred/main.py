"""Kindred main entry point.

Provides a text-mode REPL that plays the chat transport: every line typed
is one turn for the configured user and thread.
"""

from __future__ import annotations

import asyncio
import logging
import logging.config
import signal
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from .brain.orchestrator import ConversationOrchestrator
from .config import KindredConfig
from .memory import MemoryManager

logger = logging.getLogger(__name__)

# Rich console for output
console = Console()


class CommandHandler:
    """Handles REPL slash commands."""

    def __init__(
        self,
        config: KindredConfig,
        orchestrator: ConversationOrchestrator,
        user_id: str,
        thread_id: str,
    ) -> None:
        """Initialize the command handler.

        Args:
            config: Kindred configuration.
            orchestrator: The initialized orchestrator.
            user_id: User the REPL speaks as.
            thread_id: Thread the REPL writes to.
        """
        self.config = config
        self.orchestrator = orchestrator
        self.user_id = user_id
        self.thread_id = thread_id

    @property
    def memory(self) -> MemoryManager:
        return self.orchestrator.memory

    async def handle(self, command: str) -> bool:
        """Handle a REPL command.

        Args:
            command: Command string starting with '/'.

        Returns:
            False when the REPL should exit, True otherwise.
        """
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else ""

        if cmd in ("/quit", "/exit"):
            return False

        if cmd == "/help":
            self._print_help()
        elif cmd == "/memory":
            self._print_memory(arg)
        elif cmd == "/traits":
            self._print_traits()
        elif cmd == "/affect":
            self._print_affect()
        elif cmd == "/import":
            await self._import_files()
        elif cmd == "/stats":
            self._print_stats()
        elif cmd == "/config":
            self._print_config()
        else:
            console.print(f"[red]Unknown command: {cmd}[/red]")
            console.print("Type [bold]/help[/bold] for available commands")

        return True

    def _print_help(self) -> None:
        """Print help message."""
        help_table = Table(title="Available Commands")
        help_table.add_column("Command", style="cyan")
        help_table.add_column("Description")

        commands = [
            ("/help", "Show this help message"),
            ("/memory [query]", "Show long-term memories, ranked by query if given"),
            ("/traits", "Show accumulated traits"),
            ("/affect", "Show this thread's affect state"),
            ("/import", "Import .txt files from the data directory"),
            ("/stats", "Show timing statistics"),
            ("/config", "Show current configuration"),
            ("/quit, /exit", "Exit the REPL"),
            ("save to ltm: ...", "Store a memory explicitly (| type: x | tags: a, b)"),
        ]

        for cmd, desc in commands:
            help_table.add_row(cmd, desc)

        console.print(help_table)

    def _print_memory(self, query: str) -> None:
        """Print long-term memories."""
        if query:
            memories = self.memory.recall(self.user_id, query, limit=10)
        else:
            memories = self.memory.memories(self.user_id)

        if not memories:
            console.print("[yellow]No memories found[/yellow]")
            return

        memory_table = Table(title="Long-Term Memories")
        memory_table.add_column("#", style="cyan")
        memory_table.add_column("Type", style="magenta")
        memory_table.add_column("Summary")

        for i, memory in enumerate(memories[:20], 1):
            memory_table.add_row(str(i), memory.type or "", memory.summary[:100])

        console.print(memory_table)

    def _print_traits(self) -> None:
        traits = self.memory.traits(self.user_id)
        console.print(f"[bold]Traits:[/bold] {', '.join(traits) or '(none)'}")

    def _print_affect(self) -> None:
        """Print the affect state of the current thread."""
        state = self.orchestrator.affect.get(self.thread_id)

        affect_table = Table(title=f"Affect ({self.thread_id})")
        affect_table.add_column("Field", style="cyan")
        affect_table.add_column("Value")

        affect_table.add_row("Emotional Weight", f"{state.emotional_weight:.2f}")
        affect_table.add_row("Energy", f"{state.energy:.2f}")
        affect_table.add_row("Investment", f"{state.investment:.2f}")
        affect_table.add_row("Attunement", f"{state.attunement:.2f}")
        affect_table.add_row("Mid-Thought", str(state.mid_thought))
        affect_table.add_row("Topic", state.topic[:60])

        console.print(affect_table)

    async def _import_files(self) -> None:
        imported = await self.memory.import_data_files(self.user_id)
        if imported:
            console.print(f"[green]✓[/green] Imported {len(imported)} file(s) into long-term memory")
        else:
            console.print(f"[yellow]No .txt files found in {self.config.memory.data_dir}[/yellow]")

    def _print_stats(self) -> None:
        """Print timing statistics."""
        stats = self.orchestrator.get_timing_stats()
        if not stats:
            console.print("[yellow]No turns handled yet[/yellow]")
            return

        stats_table = Table(title="Timing (ms)")
        stats_table.add_column("Operation", style="cyan")
        stats_table.add_column("Avg")
        stats_table.add_column("Min")
        stats_table.add_column("Max")
        stats_table.add_column("Count")

        for operation, values in stats.items():
            stats_table.add_row(
                operation,
                f"{values['avg']:.0f}",
                f"{values['min']:.0f}",
                f"{values['max']:.0f}",
                str(int(values["count"])),
            )

        console.print(stats_table)

    def _print_config(self) -> None:
        """Print current configuration."""
        config_table = Table(title="Configuration")
        config_table.add_column("Setting", style="cyan")
        config_table.add_column("Value")

        config_table.add_row("Name", self.config.name)
        config_table.add_row("User Name", self.config.user_name)
        config_table.add_row("Version", self.config.version)
        config_table.add_row("Log Level", self.config.log_level)
        config_table.add_row("", "")
        config_table.add_row("Provider", self.config.llm.provider.value)
        config_table.add_row("Model", self.config.llm.model)
        config_table.add_row("Base URL", self.config.llm.base_url)
        config_table.add_row("", "")
        config_table.add_row("Bot ID", self.config.memory.bot_id)
        config_table.add_row("Database", self.config.memory.db_path)
        config_table.add_row("Data Directory", self.config.memory.data_dir)
        config_table.add_row("Distill Interval", str(self.config.memory.distill_interval))
        config_table.add_row("Emotional Distillation", str(self.config.memory.emotional_distillation))

        console.print(config_table)


class KindredREPL:
    """Interactive REPL for Kindred."""

    def __init__(self, config: KindredConfig, user_id: str, thread_id: str) -> None:
        """Initialize the REPL.

        Args:
            config: Kindred configuration.
            user_id: User the REPL speaks as.
            thread_id: Thread the REPL writes to.
        """
        self.config = config
        self.user_id = user_id
        self.thread_id = thread_id
        self.running = False

        self.orchestrator = ConversationOrchestrator(config)
        self.command_handler = CommandHandler(config, self.orchestrator, user_id, thread_id)

    async def initialize(self) -> None:
        """Initialize the orchestrator and its memory."""
        console.print(f"[bold cyan]Initializing {self.config.name}...[/bold cyan]")
        try:
            await self.orchestrator.initialize()
            console.print("[green]✓[/green] Memory initialized")
        except Exception as e:
            console.print(f"[red]✗[/red] Failed to initialize: {e}")
            raise

    async def run(self) -> None:
        """Run the text REPL."""
        self.running = True
        self._print_welcome()

        while self.running:
            try:
                user_input = Prompt.ask(
                    f"[bold yellow]{self.config.user_name}[/bold yellow]",
                    console=console,
                )

                if not user_input.strip():
                    continue

                if user_input.startswith("/"):
                    should_continue = await self.command_handler.handle(user_input)
                    if not should_continue:
                        self.running = False
                        console.print("[yellow]Goodbye![/yellow]")
                    continue

                await self._process_input(user_input)

            except KeyboardInterrupt:
                console.print("\n[yellow]Interrupt received[/yellow]")
                continue
            except EOFError:
                break
            except Exception as e:
                console.print(f"[red]Error: {e}[/red]")
                logger.exception("REPL error")

    async def _process_input(self, user_input: str) -> None:
        """Run one turn and show the reply."""
        with console.status(f"[dim]{self.config.name} is typing...[/dim]"):
            result = await self.orchestrator.handle_turn(self.user_id, self.thread_id, user_input)

        if result is None:
            return

        console.print(f"[bold cyan]{self.config.name}:[/bold cyan] {result.reply}")
        if result.distilled:
            console.print(f"[dim]Distilled {len(result.distilled)} new memories[/dim]")
        console.print()

    def _print_welcome(self) -> None:
        """Print welcome message."""
        welcome_text = f"""
[bold cyan]Welcome to {self.config.name}[/bold cyan]

[bold]Version:[/bold] {self.config.version}
[bold]Model:[/bold] {self.config.llm.model} ({self.config.llm.provider.value})
[bold]User:[/bold] {self.user_id}   [bold]Thread:[/bold] {self.thread_id}

Type your message to chat, or [bold]/help[/bold] for commands.
"""
        console.print(Panel(welcome_text, border_style="cyan"))

    async def shutdown(self) -> None:
        """Shutdown the REPL and cleanup."""
        self.running = False
        await self.orchestrator.close()


def setup_signal_handlers(repl: KindredREPL) -> None:
    """Setup signal handlers for graceful shutdown.

    Args:
        repl: REPL instance to shutdown on signal.
    """

    def signal_handler(sig, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {sig}, shutting down...")
        repl.running = False

    signal.signal(signal.SIGTERM, signal_handler)


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Path to YAML config file",
)
@click.option(
    "--user",
    "-u",
    default="local-user",
    show_default=True,
    help="User id the REPL speaks as",
)
@click.option(
    "--thread",
    "-t",
    default="repl",
    show_default=True,
    help="Conversation thread id",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable verbose/debug logging",
)
def main(
    config: str | None,
    user: str,
    thread: str,
    verbose: bool,
) -> None:
    """
    Kindred - a chat companion with short-term and long-term memory.
    """
    # Load configuration
    try:
        kindred_config = KindredConfig.load(yaml_path=Path(config) if config else None)
    except Exception as e:
        console.print(f"[red]Failed to load configuration: {e}[/red]")
        sys.exit(1)

    if verbose:
        kindred_config.log_level = "DEBUG"
    logging.config.dictConfig(kindred_config.get_log_config())
    logger.info(f"Loaded configuration for {kindred_config.name}")

    async def run_kindred() -> None:
        repl = KindredREPL(kindred_config, user_id=user, thread_id=thread)
        setup_signal_handlers(repl)
        try:
            await repl.initialize()
            await repl.run()
        finally:
            await repl.shutdown()

    try:
        asyncio.run(run_kindred())
    except KeyboardInterrupt:
        console.print("\n[yellow]Goodbye![/yellow]")
    except Exception as e:
        console.print(f"[red]Fatal error: {e}[/red]")
        logger.exception("Fatal error in main")
        sys.exit(1)


if __name__ == "__main__":
    main()
