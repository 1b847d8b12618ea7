#!/usr/bin/env python3
"""Interactive chat CLI for trying out the search agent service."""

import sys

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt


class ChatCLI:
    """Interactive chat interface for the search agent service."""

    def __init__(self, base_url: str = "http://localhost:8000"):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.conversation_id: str | None = None
        self.console = Console()
        self.client = httpx.Client(timeout=120.0)

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]Search Agent - Interactive Chat[/bold blue]\n"
                "Ask anything; the assistant searches the web when it needs to.\n"
                "Commands: /help, /new, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print("[green]Connected to search agent service[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif user_input.lower() == "/help":
                    self._show_help()
                    continue
                elif user_input.lower() == "/new":
                    self.conversation_id = None
                    self.console.print("[yellow]Started a new conversation[/yellow]")
                    continue
                elif user_input.strip() == "":
                    continue

                response = self._send_message(user_input)
                if response:
                    self._display_response(response)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _send_message(self, message: str) -> dict | None:
        """Send message to the chat endpoint."""
        payload = {"message": message}
        if self.conversation_id:
            payload["conversationId"] = self.conversation_id

        try:
            with self.console.status("[dim]Thinking...[/dim]"):
                response = self.client.post(f"{self.base_url}/chat", json=payload)
        except httpx.HTTPError as e:
            self.console.print(f"[red]Connection error: {e}[/red]")
            return None

        if response.status_code != 200:
            try:
                error = response.json().get("error", response.text)
            except ValueError:
                error = response.text
            self.console.print(f"[red]API Error: {response.status_code} - {error}[/red]")
            return None

        data = response.json()
        self.conversation_id = data.get("conversationId")
        return data

    def _display_response(self, response: dict) -> None:
        """Display the assistant's answer as markdown."""
        assistant_text = response.get("response", "No response")

        self.console.print(
            Panel(
                Markdown(assistant_text),
                title="[bold green]Assistant[/bold green]",
                subtitle=f"[dim]{self.conversation_id}[/dim]",
                border_style="green",
                padding=(1, 2),
            )
        )

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /new - Start a new conversation
• /quit or /exit - Exit the chat

[bold]Try asking:[/bold]
1. "What's the weather in Paris today?"
2. "Who won the most recent Tour de France?"
3. "Summarize that in one sentence."
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"

    chat = ChatCLI(base_url)
    chat.start()


if __name__ == "__main__":
    main()
