"""
interfaces/console.py — Operator Console

Line-based command console that runs next to the gateway session.
Uses rich for terminal rendering and aioconsole for async input so the
event loop keeps serving the socket and heartbeat while waiting for input.

Commands:
    online | idle | dnd | invisible   set the presence status
    custom <text>                     set the custom status text
    status                            show the current session state
    help                              list commands
    exit                              shut down gracefully

Usage:
    console = OperatorConsole(manager)
    await console.run()
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Optional

import aioconsole
from rich import box
from rich.console import Console
from rich.table import Table

from gateway.presence import PresenceStatus
from gateway.session_manager import GatewaySessionManager
from observability.logger import get_logger

log = get_logger(__name__)

InputFn = Callable[[str], Awaitable[str]]

_PROMPT = "> "

_COMMANDS: list[tuple[str, str]] = [
    ("online", "Set status to online"),
    ("idle", "Set status to idle"),
    ("dnd", "Set status to do not disturb"),
    ("invisible", "Set status to invisible"),
    ("custom <text>", "Set the custom status text"),
    ("status", "Show current status"),
    ("help", "Show this list"),
    ("exit", "Stop the tool"),
]

_STATUS_COLOURS = {
    PresenceStatus.ONLINE.value: "green",
    PresenceStatus.IDLE.value: "yellow",
    PresenceStatus.DND.value: "red",
    PresenceStatus.INVISIBLE.value: "dim",
}


class OperatorConsole:
    """Reads operator commands and applies them to a GatewaySessionManager."""

    def __init__(
        self,
        manager: GatewaySessionManager,
        console: Optional[Console] = None,
        get_input: Optional[InputFn] = None,
    ):
        self._manager = manager
        self.console = console or Console()
        self._get_input = get_input or aioconsole.ainput

    async def run(self) -> None:
        """Read commands until `exit`, EOF, or the session terminates."""
        self.print_help()
        while not self._manager.terminated:
            try:
                line = await self._get_input(_PROMPT)
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Input closed.[/]")
                break
            if not await self.dispatch(line):
                break

    async def dispatch(self, line: str) -> bool:
        """Apply one command line. Returns False when the console should stop."""
        text = line.strip()
        if not text:
            return True
        command, _, arg = text.partition(" ")
        command = command.lower()

        if command in {s.value for s in PresenceStatus}:
            await self._set_status(command)
        elif command == "custom":
            await self._set_custom(arg.strip())
        elif command == "status":
            self._show_status()
        elif command == "help":
            self.print_help()
        elif command in ("exit", "quit"):
            self.console.print("[dim]Stopping...[/]")
            await self._manager.shutdown()
            return False
        else:
            self.console.print(f"[red]Unknown command:[/] {command}. Type [bold]help[/] for a list.")
        return True

    # ── Commands ──────────────────────────────────────────────────────────────

    async def _set_status(self, status: str) -> None:
        sent = await self._manager.update_presence(status=status)
        colour = _STATUS_COLOURS.get(status, "white")
        if sent:
            self.console.print(f"Status updated to [{colour}]{status}[/]")
        else:
            self.console.print(
                f"Status set to [{colour}]{status}[/] "
                f"[dim](not connected; applied on next identify)[/]"
            )
        log.info("console.status_set", status=status, sent=sent)

    async def _set_custom(self, text: str) -> None:
        if not text:
            self.console.print("[yellow]Usage:[/] custom <text>")
            return
        sent = await self._manager.update_presence(custom_status=text)
        suffix = "" if sent else " [dim](not connected; applied on next identify)[/]"
        self.console.print(f"Custom status set to [bold]{text}[/]{suffix}")
        log.info("console.custom_status_set", custom_status=text, sent=sent)

    def _show_status(self) -> None:
        state = self._manager.state
        table = Table(box=box.SIMPLE, show_header=False)
        table.add_column("Field", style="dim")
        table.add_column("Value")
        colour = _STATUS_COLOURS.get(state.status, "white")
        table.add_row("Status", f"[{colour}]{state.status}[/]")
        table.add_row("Custom status", state.custom_status or "-")
        table.add_row("Connection", state.phase.value)
        table.add_row("Session", state.session_id or "-")
        table.add_row("Sequence", "-" if state.sequence is None else str(state.sequence))
        table.add_row("Reconnect attempts", str(state.reconnect_attempts))
        latency = self._manager.heartbeat.latency_ms
        table.add_row("Heartbeat latency", "-" if latency is None else f"{latency} ms")
        self.console.print(table)

    def print_help(self) -> None:
        table = Table(title="Available commands", box=box.SIMPLE)
        table.add_column("Command", style="bold")
        table.add_column("Description")
        for name, description in _COMMANDS:
            table.add_row(name, description)
        self.console.print(table)
