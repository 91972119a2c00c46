"""
Interactive terminal chat on top of a ChatSession.

Tokens are printed as they arrive; Ctrl+C while a reply is streaming cancels
that reply and keeps the partial text. Lines starting with ``/`` are commands.
"""

from __future__ import annotations

import asyncio
import shlex
import signal
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..errors import CodepadError
from ..events import EV_CHAT_ERROR, EV_CONVERSATION_CLEARED, EV_STREAM_EVENT
from ..session.chat import ChatSession


CommandHandler = Callable[["TerminalChat", str], Awaitable[None]]

ON_VALUES = {"on", "true", "1", "yes"}
OFF_VALUES = {"off", "false", "0", "no"}


@dataclass
class Command:
    name: str
    help: str
    handler: CommandHandler
    aliases: List[str] = field(default_factory=list)


class TerminalChat:
    def __init__(
        self,
        session: ChatSession,
        console: Optional[Console] = None,
        input_func: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.session = session
        self.console = console or Console()
        self.input_func = input_func or self.console.input
        self.commands: Dict[str, Command] = {}
        self._stop = False
        self._stream_started = False
        self._register_commands()
        self._attach_bus_handlers()

    def _register_commands(self) -> None:
        self.register(Command("help", "Show help or /help <cmd>", TerminalChat._cmd_help, aliases=["h"]))
        self.register(Command("exit", "Exit", TerminalChat._cmd_exit, aliases=["quit", "q"]))
        self.register(Command("clear", "Clear the conversation", TerminalChat._cmd_clear))
        self.register(Command("history", "Show the conversation", TerminalChat._cmd_history))
        self.register(Command("provider", "Get/Set provider: /provider [id]", TerminalChat._cmd_provider, aliases=["p"]))
        self.register(Command("model", "Get/Set model: /model [id]", TerminalChat._cmd_model, aliases=["m"]))
        self.register(Command("models", "List models of the current provider", TerminalChat._cmd_models))
        self.register(Command("stream", "Get/Set streaming: /stream [on|off]", TerminalChat._cmd_stream))
        self.register(Command("system", "Get/Set system prompt: /system [text|clear]", TerminalChat._cmd_system))
        self.register(Command("status", "Show provider/model/streaming", TerminalChat._cmd_status))

    def register(self, cmd: Command) -> None:
        self.commands[cmd.name] = cmd
        for a in cmd.aliases:
            self.commands[a] = cmd

    def _attach_bus_handlers(self) -> None:
        bus = self.session.bus

        def on_stream_event(payload: Dict[str, Any]) -> None:
            event = payload.get("event") or {}
            if event.get("type") == "content" and event.get("text"):
                if not self._stream_started:
                    self.console.print("[bold cyan]assistant:[/] ", end="")
                    self._stream_started = True
                self.console.print(event["text"], end="", markup=False, highlight=False)

        def on_error(payload: Dict[str, Any]) -> None:
            self._end_stream_line()
            self.console.print(f"[red]error:[/] {escape(str(payload.get('message')))}", highlight=False)

        def on_cleared(_payload: Dict[str, Any]) -> None:
            self.console.print("[dim]conversation cleared[/]")

        bus.subscribe(EV_STREAM_EVENT, on_stream_event)
        bus.subscribe(EV_CHAT_ERROR, on_error)
        bus.subscribe(EV_CONVERSATION_CLEARED, on_cleared)

    def _end_stream_line(self) -> None:
        if self._stream_started:
            self.console.print()
            self._stream_started = False

    # Commands

    async def _cmd_help(self, arg: str) -> None:
        arg = arg.strip().lstrip("/")
        if arg and arg in self.commands:
            cmd = self.commands[arg]
            alias_str = f" (aliases: {', '.join(cmd.aliases)})" if cmd.aliases else ""
            self.console.print(f"/{cmd.name}{alias_str} - {cmd.help}", markup=False)
            return
        self.console.print("Commands:")
        seen = set()
        for key in sorted(self.commands):
            cmd = self.commands[key]
            if cmd.name in seen:
                continue
            seen.add(cmd.name)
            self.console.print(f"  /{cmd.name:<9} - {cmd.help}", markup=False)

    async def _cmd_exit(self, arg: str) -> None:  # noqa: ARG002
        self._stop = True

    async def _cmd_clear(self, arg: str) -> None:  # noqa: ARG002
        self.session.clear()

    async def _cmd_history(self, arg: str) -> None:  # noqa: ARG002
        messages = self.session.messages
        if not messages:
            self.console.print("[dim]no messages[/]")
            return
        for msg in messages:
            suffix = f" [red]({msg.status.value}: {escape(msg.error)})[/]" if msg.error else ""
            self.console.print(f"[bold]{msg.role.value}:[/] ", end="")
            self.console.print(msg.content, end="", markup=False, highlight=False)
            self.console.print(suffix)

    async def _cmd_provider(self, arg: str) -> None:
        arg = arg.strip()
        if not arg:
            self.console.print(f"provider: {self.session.selection.provider_id}", markup=False)
            return
        selection = self.session.select(provider_id=shlex.split(arg)[0])
        self.console.print(f"provider set to {selection.provider_id} (model: {selection.model})", markup=False)

    async def _cmd_model(self, arg: str) -> None:
        arg = arg.strip()
        if not arg:
            self.console.print(f"model: {self.session.selection.model}", markup=False)
            return
        selection = self.session.select(model=shlex.split(arg)[0])
        self.console.print(f"model set to {selection.model}", markup=False)

    async def _cmd_models(self, arg: str) -> None:
        provider_id = arg.strip() or self.session.selection.provider_id
        models = await self.session.list_models(provider_id)
        if not models:
            self.console.print(f"[dim]no models available for {provider_id}[/]")
            return
        table = Table(title=f"Models ({provider_id})")
        table.add_column("id")
        table.add_column("name")
        for m in models:
            table.add_row(m.id, m.display_name)
        self.console.print(table)

    async def _cmd_stream(self, arg: str) -> None:
        a = arg.strip().lower()
        if not a:
            self.console.print(f"streaming: {self.session.selection.stream}")
            return
        if a in ON_VALUES:
            self.session.select(stream=True)
        elif a in OFF_VALUES:
            self.session.select(stream=False)
        else:
            self.console.print("usage: /stream [on|off]", markup=False)
            return
        self.console.print(f"streaming set to {self.session.selection.stream}")

    async def _cmd_system(self, arg: str) -> None:
        s = arg.strip()
        if not s:
            self.console.print(f"system: {self.session.selection.system_prompt!r}", markup=False)
            return
        if s.lower() == "clear":
            self.session.controller.selection.system_prompt = None
            self.console.print("system prompt cleared")
            return
        self.session.select(system_prompt=s)
        self.console.print("system prompt set")

    async def _cmd_status(self, arg: str) -> None:  # noqa: ARG002
        sel = self.session.selection
        self.console.print(
            f"provider: {sel.provider_id}; model: {sel.model}; streaming: {sel.stream}; "
            f"temperature: {sel.temperature}; max_tokens: {sel.max_tokens}; "
            f"messages: {len(self.session.store)}",
            markup=False,
        )

    # Loop

    async def handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        if line.startswith("/"):
            parts = line[1:].split(None, 1)
            name = parts[0] if parts else ""
            args = parts[1] if len(parts) > 1 else ""
            cmd = self.commands.get(name)
            if cmd is None:
                self.console.print(f"unknown command: /{name}", markup=False)
                return
            try:
                await cmd.handler(self, args)
            except CodepadError as e:
                self.console.print(f"[red]error:[/] {escape(str(e))}", highlight=False)
            return
        await self.send(line)

    async def send(self, prompt: str) -> None:
        loop = asyncio.get_running_loop()
        cancel_on_sigint = True
        try:
            loop.add_signal_handler(signal.SIGINT, lambda: loop.create_task(self.session.cancel()))
        except (NotImplementedError, RuntimeError, ValueError):
            # No signal support here (Windows, non-main thread)
            cancel_on_sigint = False
        try:
            result = await self.session.send(prompt)
        finally:
            if cancel_on_sigint:
                loop.remove_signal_handler(signal.SIGINT)
            self._end_stream_line()

        if result.cancelled:
            self.console.print("[yellow]\\[cancelled][/]")

    async def run(self) -> None:
        self.console.print("Codepad chat. Type /help for commands, Ctrl+C cancels a reply, /exit quits.")
        while not self._stop:
            try:
                line = await asyncio.to_thread(self.input_func, "> ")
            except (EOFError, KeyboardInterrupt):
                self.console.print()
                break
            await self.handle_line(line)
