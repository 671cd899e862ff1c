"""Rich renderers for endpoints, errors and conversation history."""

from __future__ import annotations

import json

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from streamchat.config import EndpointConfig
from streamchat.llm.errors import ChatError
from streamchat.llm.types import ChatTurn, Role
from streamchat.types import ConfigurationTestResult

ROLE_COLORS = {
    Role.USER: "blue",
    Role.ASSISTANT: "green",
    Role.SYSTEM: "dim",
}


class OutputFormatter:
    """Rich-based output formatting for the streamchat CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_endpoint_list(self, endpoints: list[EndpointConfig], active_id: str) -> None:
        table = Table(title="Endpoints")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name")
        table.add_column("Model", no_wrap=True)
        table.add_column("Base URL")
        table.add_column("Key env", no_wrap=True)

        for e in endpoints:
            marker = " *" if e.id == active_id else ""
            table.add_row(f"{e.id}{marker}", e.name, e.model_id, e.base_url, e.api_key_env)

        self.console.print(table)

    def format_config(self, config: dict) -> None:
        json_str = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(json_str, "json", theme="monokai"))

    def format_error(self, error: Exception) -> None:
        if isinstance(error, ChatError):
            body = (
                f"[bold red]{error.description}[/bold red]\n\n"
                f"[dim]{error.recovery_suggestion}[/dim]"
            )
            title = type(error).__name__
        else:
            body = f"[bold red]{error}[/bold red]"
            title = "Error"
        self.console.print(Panel(body, title=title, border_style="red"))

    def format_test_result(self, result: ConfigurationTestResult) -> None:
        color = "green" if result.successful else "red"
        self.console.print(Panel(
            f"[bold {color}]{result.summary}[/bold {color}]\n\n"
            f"{result.content}",
            title="Configuration test",
            border_style=color,
        ))

    def format_history(self, history: list[ChatTurn]) -> None:
        if not history:
            self.console.print("[dim]No messages.[/dim]")
            return

        for turn in history:
            color = ROLE_COLORS.get(turn.role, "white")
            images = f" [dim](+{len(turn.attachment_ids)} images)[/dim]" if turn.has_images else ""
            self.console.print(
                f"  [{color}]{turn.role.value:>9s}[/{color}]  {turn.text[:100]}{images}"
            )

    def export_history(self, history: list[ChatTurn], fmt: str = "markdown") -> str:
        if fmt == "json":
            return json.dumps([t.to_wire() for t in history], indent=2, ensure_ascii=False)

        lines: list[str] = ["# Conversation\n"]
        for turn in history:
            lines.append(f"**{turn.role.value}**\n")
            if turn.role is Role.USER:
                lines.append(f"> {turn.text}\n")
            else:
                lines.append(f"{turn.text}\n")
            for attachment_id in turn.attachment_ids:
                lines.append(f"_image: {attachment_id}_\n")
        return "\n".join(lines)
