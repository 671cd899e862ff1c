"""Interactive chat session handler."""

from __future__ import annotations

import asyncio
from pathlib import Path

from rich.console import Console

from streamchat.cli.output import OutputFormatter
from streamchat.images import ImageStore
from streamchat.llm.errors import ChatError
from streamchat.llm.titles import TitleGenerator
from streamchat.llm.types import Role
from streamchat.session import ChatSession
from streamchat.types import ImageAttachment


class ChatHandler:
    """
    Manages the interactive chat loop.

    Handles streaming output, inline commands and pending image attachments.
    """

    def __init__(
        self,
        session: ChatSession,
        images: ImageStore,
        titles: TitleGenerator | None = None,
        console: Console | None = None,
    ) -> None:
        self.session = session
        self.images = images
        self.titles = titles or TitleGenerator()
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self.pending: list[ImageAttachment] = []
        self._running = True

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        parts = command.strip().split(None, 1)
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else ""

        if cmd == "/quit":
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/image":
            if not arg:
                self.console.print("  Usage: /image PATH")
                return True
            if len(self.pending) >= self.session.max_image_count:
                self.console.print(
                    f"  [red]Error:[/red] at most {self.session.max_image_count} images per message"
                )
                return True
            try:
                attachment = self.images.import_file(Path(arg))
            except (OSError, ValueError) as e:
                self.console.print(f"  [red]Error:[/red] {e}")
                return True
            self.pending.append(attachment)
            self.console.print(f"  Attached {attachment.filename} ({len(self.pending)} pending)")
            return True

        if cmd == "/history":
            self.formatter.format_history(self.session.history)
            return True

        if cmd == "/clear":
            await self._discard_images()
            self.session.clear()
            self.console.print("  [dim]Conversation cleared.[/dim]")
            return True

        if cmd == "/title":
            await self._print_title()
            return True

        if cmd == "/help":
            self.console.print(
                "  [bold]Commands:[/bold]\n"
                "  /image PATH - Attach an image to the next message\n"
                "  /history    - Show the conversation\n"
                "  /clear      - Start a new conversation\n"
                "  /title      - Suggest a title for the conversation\n"
                "  /quit       - Exit the chat\n"
                "  /help       - Show this help\n"
            )
            return True

        return False

    async def _print_title(self) -> None:
        history = self.session.history
        first_user = next((t for t in history if t.role is Role.USER), None)
        if first_user is None:
            self.console.print("  [dim]Nothing to title yet.[/dim]")
            return
        first_reply = next((t for t in history if t.role is Role.ASSISTANT), None)
        endpoint = self.session.endpoint
        try:
            title = await self.titles.generate(
                first_user.text,
                endpoint.base_url,
                endpoint.model_id,
                self.session.credentials.get_api_key(endpoint.id),
                ai_response=first_reply.text if first_reply else None,
            )
        except ChatError as e:
            self.formatter.format_error(e)
            return
        self.console.print(f"  [bold]{title}[/bold]")

    async def handle_input(self, user_input: str) -> bool:
        """Send user input and stream the reply. Returns False on failure."""
        attachments, self.pending = self.pending, []
        try:
            async for event in self.session.send(user_input, attachments):
                if event.delta:
                    self.console.print(event.delta, end="", markup=False)
                if event.error is not None:
                    self.console.print()
                    self.formatter.format_error(event.error)
                    return False
        except ValueError as e:
            self.console.print(f"\n[red]Error:[/red] {e}")
            return False
        finally:
            # Images the history did not take are never referenced again.
            kept = self._history_image_ids()
            await self.images.delete_many(a.id for a in attachments if a.id not in kept)

        # Newline after streaming
        self.console.print()
        return True

    def _history_image_ids(self) -> set[str]:
        return {i for turn in self.session.history for i in turn.attachment_ids}

    async def _discard_images(self) -> None:
        """Delete every image held by the conversation or waiting to be sent."""
        ids = self._history_image_ids() | {a.id for a in self.pending}
        self.pending.clear()
        if ids:
            await self.images.delete_many(ids)

    async def run_loop(self) -> None:
        """Main interactive loop."""
        self.console.print(
            f"[bold]streamchat[/bold] - {self.session.endpoint.name} "
            f"({self.session.endpoint.model_id})\n"
            "[dim]Type /help for commands, /quit to exit.[/dim]\n"
        )

        try:
            while self._running:
                try:
                    user_input = await asyncio.get_running_loop().run_in_executor(
                        None, lambda: input("you> ").strip()
                    )
                except (EOFError, KeyboardInterrupt):
                    self.console.print("\n[dim]Goodbye.[/dim]")
                    break

                if not user_input and not self.pending:
                    continue

                if user_input.startswith("/"):
                    handled = await self.handle_command(user_input)
                    if handled:
                        continue

                self.console.print("[dim]assistant>[/dim] ", end="")
                await self.handle_input(user_input)
        finally:
            await self._discard_images()
